"""Tests for the field-group decoders"""

import pytest

from fardriver.codec import build_checksum_frame, build_flash_frame, words_le
from fardriver.decoders import FLASH_DECODERS, SHADOW_OFFSETS
from fardriver.soc import SoCEstimator
from fardriver.types import Frame, GearMode, TireConfig


def flash(group_id, **bytes_at):
    """Flash frame with payload bytes given as p0=..., p11=..."""
    payload = [0] * 12
    for key, value in bytes_at.items():
        payload[int(key[1:])] = value
    return build_flash_frame(group_id, payload)


def checksum(group_id, **bytes_at):
    """Checksum frame with bytes given by their frame offset, a2=... a13=..."""
    payload = [0] * 12
    for key, value in bytes_at.items():
        payload[int(key[1:]) - 2] = value
    return build_checksum_frame(group_id, payload)


def status(p0=0x01, e1=0, e2=0, rpm=0):
    return flash(226, p0=p0, p2=e1, p3=e2, p6=rpm & 0xFF, p7=rpm >> 8)


# Live telemetry

def test_electrical(dispatcher, state):
    """Test voltage, signed current and power"""
    state.update(rated_voltage=72.0)
    assert dispatcher.parse_packet(flash(232, p0=0x20, p1=0x03, p4=100, p10=0x10, p11=0x02))

    assert state.voltage == 80.0
    assert state.line_current == 25.0
    assert state.input_power == 2000.0
    assert state.throttle_depth == 0x0210
    assert state.soc == SoCEstimator(72).calculate_soc(80.0)
    assert state.voltage_ema == pytest.approx(80.0)


def test_electrical_negative_current(dispatcher, state):
    dispatcher.parse_packet(flash(232, p0=0x20, p1=0x03, p4=0xD8, p5=0xFF))
    assert state.line_current == -10.0
    assert state.input_power == -800.0
    assert state.current_trip is None


def test_electrical_starts_trip_and_feeds_it(dispatcher, state, clock):
    state.update(rated_voltage=72.0, battery_rated_capacity_ah=40)
    dispatcher.parse_packet(flash(232, p0=0x20, p1=0x03, p4=40))
    trip = state.current_trip

    assert trip is not None
    assert trip.start_voltage == 80.0
    assert trip.rated_capacity_ah == 40

    clock.advance(1000)
    dispatcher.parse_packet(flash(232, p0=0x20, p1=0x03, p4=40))
    assert state.current_trip is trip
    assert trip.cumulative_energy_wh == pytest.approx(800 / 3600)


def test_electrical_tracks_sag(dispatcher, state):
    state.update(resting_voltage_ema=84.0)
    dispatcher.parse_packet(flash(232, p0=0x20, p1=0x03, p4=120))  # 80 V, 30 A
    assert state.voltage_sag == pytest.approx(4.0)
    assert state.current_trip.max_voltage_sag == pytest.approx(4.0)


def test_phase_currents(dispatcher, state):
    dispatcher.parse_packet(flash(238, p4=0x00, p5=0x01, p6=0x00, p7=0xFF, p8=0xFF, p9=0x00))
    assert state.phase_a_current == pytest.approx(31.25)
    assert state.phase_c_current == pytest.approx(31.25)
    assert state.phase_b_current == pytest.approx(-62.5)


def test_phase_currents_forwarded_to_trip(dispatcher, state):
    dispatcher.parse_packet(flash(232, p0=0x20, p1=0x03, p4=40))
    dispatcher.parse_packet(flash(238, p4=0x00, p5=0x01, p6=0x00, p7=0xFF, p8=0xFF, p9=0x00))

    trip = state.current_trip
    assert trip.max_phase_a_current == pytest.approx(31.25)
    assert trip.max_phase_b_current == pytest.approx(62.5)
    assert trip.max_phase_c_current == pytest.approx(31.25)


def test_motor_temperature_signed(dispatcher, state):
    dispatcher.parse_packet(flash(244, p0=0xF6, p1=0xFF))
    assert state.motor_temperature == -10


def test_global_status(dispatcher, state):
    dispatcher.parse_packet(flash(214, p2=0x20, p3=0x20, p4=0x08, p6=0x04, p10=45))
    assert state.mos_temperature == 45
    assert state.global_state1 == 0x2020
    assert state.global_state3 == 0x04
    assert state.weak_status == "Weak"
    assert state.learn_status == "AutoLearn"
    assert state.motor_status == "MotorRun"

    dispatcher.parse_packet(flash(214))
    assert state.weak_status == "MTPA"
    assert state.learn_status == ""
    assert state.motor_status == "MotorStop"


def test_temperature_forwarded_to_trip(dispatcher, state):
    state.update(line_current=5.0, motor_temperature=33)
    trip = state.start_trip_if_needed()
    dispatcher.parse_packet(flash(214, p10=50))
    assert trip.mos_temperature == 50
    assert trip.motor_temperature == 33


def test_motor_state(dispatcher, state):
    dispatcher.parse_packet(flash(250, p4=0x02, p5=0x80, p9=0x03))
    assert state.motor_stop_state == 0x8002
    assert state.motor_running_state == 0x0300


@pytest.mark.parametrize("p0,expected", [
    (0x01, GearMode.D_LOW),
    (0x05, GearMode.D_MEDIUM),
    (0x09, GearMode.D_HIGH),
    (0x02, GearMode.REVERSE),
    (0x00, GearMode.NEUTRAL),
    (0x03, GearMode.D_LOW),
])
def test_gear_mode(dispatcher, state, p0, expected):
    dispatcher.parse_packet(status(p0=p0))
    assert state.gear_mode == expected


def test_gear_mode_boost_and_cruise(dispatcher, state):
    state.update(global_state3=0x04)
    dispatcher.parse_packet(status(p0=0x01))
    assert state.gear_mode == GearMode.BOOST

    state.update(motor_stop_state=0x02)
    dispatcher.parse_packet(status(p0=0x01))
    assert state.gear_mode == GearMode.CRUISE
    assert state.gear_mode.label == "Cruise"


@pytest.mark.parametrize("p0,roll", [
    (0x01, 0),
    (0x21, 1),
    (0x22, -1),
    (0x32, 1),
    (0x31, -1),
])
def test_roll_direction(dispatcher, state, p0, roll):
    dispatcher.parse_packet(status(p0=p0))
    assert state.roll == roll


def test_main_status_flags(dispatcher, state):
    dispatcher.parse_packet(flash(226, p0=0x81, p1=0xB8, p3=0x80, p4=64, p6=0x10, p7=0x27))
    assert state.comp_phone_ok is True
    assert state.function_state == 128
    assert state.pass_ok == 3
    assert state.hall_sensor_type == 1
    assert state.motor_cutoff_applied is True
    assert state.modulation == 0.5
    assert state.rpm == 10000
    assert state.is_bms_enabled is False


def test_fault_debounce(dispatcher, state):
    """Test faults clear only after six clean frames"""
    dispatcher.parse_packet(status(e1=0x01))
    assert [f.code for f in state.controller_faults] == [1]

    for _ in range(5):
        dispatcher.parse_packet(status())
    assert [f.code for f in state.controller_faults] == [1]

    dispatcher.parse_packet(status())
    assert state.controller_faults == []


def test_fault_frame_resets_clean_count(dispatcher, state):
    dispatcher.parse_packet(status(e1=0x01))
    for _ in range(4):
        dispatcher.parse_packet(status())
    dispatcher.parse_packet(status(e2=0x08))
    assert state.clean_fault_frames == 0
    assert [f.code for f in state.controller_faults] == [12]

    for _ in range(5):
        dispatcher.parse_packet(status())
    assert state.controller_faults != []


def test_top_bit_of_second_error_byte_is_clean(dispatcher, state):
    dispatcher.parse_packet(status(e2=0x80))
    assert state.controller_faults == []
    assert state.clean_fault_frames == 1


def test_fault_disambiguation_uses_global_state(dispatcher, state):
    state.update(global_state2=0x8000, global_state1=0x0800)
    dispatcher.parse_packet(status(e1=0x10, e2=0x04))
    assert [f.code for f in state.controller_faults] == [5, 17]


def test_alarm_flag(dispatcher, state):
    dispatcher.parse_packet(status(e1=0x20))
    assert state.alarm_active is True
    dispatcher.parse_packet(status(e1=0x01))
    assert state.alarm_active is False


def test_speed_from_status(dispatcher, state, clock):
    state.apply_config(tire=TireConfig(120, 70, 6), gear_ratio=1.0)
    state.update(motor_pole_pairs=4)

    dispatcher.parse_packet(status(rpm=600))
    clock.advance(1000)
    dispatcher.parse_packet(status(rpm=600))

    assert state.calculated_speed.mps > 0
    assert state.odometer_m == pytest.approx(state.calculated_speed.mps)


def test_speed_needs_configuration(dispatcher, state):
    dispatcher.parse_packet(status(rpm=600))
    assert state.calculated_speed.mps == 0
    assert state.last_distance_update_time is None


def test_trip_receives_corrected_rpm(dispatcher, state, clock):
    state.apply_config(tire=TireConfig(120, 70, 6), gear_ratio=1.0)
    state.update(motor_pole_pairs=16, line_current=5.0)
    trip = state.start_trip_if_needed()

    dispatcher.parse_packet(status(rpm=4000))
    assert trip.max_rpm == 1000
    assert trip.reading_count == 1


def test_tire_from_controller_when_unset(dispatcher, state):
    dispatcher.parse_packet(flash(208, p3=100, p4=70, p5=6, p6=25, p7=120, p8=0xE8, p9=0x03))
    assert state.avg_power == 400
    assert state.avg_speed == 25
    assert state.wheel_ratio == 70
    assert state.wheel_radius == 6
    assert state.wheel_width == 120
    assert state.rate_ratio == 1000
    assert state.motor_gear_ratio == 1.0


def test_tire_config_not_overwritten(dispatcher, state):
    state.apply_config(tire=TireConfig(130, 60, 6.5), gear_ratio=4.2)
    dispatcher.parse_packet(flash(208, p4=70, p5=6, p7=120, p8=0xE8, p9=0x03))
    assert state.wheel_width == 130
    assert state.motor_gear_ratio == 4.2


# Configuration groups

def test_shadow_mirrored_little_endian(dispatcher, state):
    payload = list(range(1, 13))
    dispatcher.parse_packet(build_flash_frame(99, payload))
    assert state.flash_memory[54:60] == words_le(payload)
    assert state.flash_memory[54] == 0x0201


def test_shadow_offsets_never_overlap_between_layouts():
    """Only the alternate layouts of one block may share words"""
    aliases = {60: 105, 66: 124, 72: 130, 78: 136, 84: 142, 90: 148}
    by_offset = {}
    for group, offset in SHADOW_OFFSETS.items():
        by_offset.setdefault(offset, set()).add(aliases.get(group, group))
    for groups in by_offset.values():
        assert len(groups) == 1
    spans = sorted(set(SHADOW_OFFSETS.values()))
    for a, b in zip(spans, spans[1:]):
        assert b - a >= 6
    assert max(spans) + 6 <= 160


def test_alternate_layout_shares_shadow(state):
    raw = flash(105, p0=0x34, p1=0x12, p10=5, p11=ord("A"))
    FLASH_DECODERS[60](Frame(raw=raw, group_id=60), state)
    assert state.flash_memory[60] == 0x1234
    assert state.parameter_index_primary == "5"
    assert state.parameter_index_secondary == "A"
    assert state.controller_distance_low == 0


def test_direction_and_park(dispatcher, state):
    dispatcher.parse_packet(flash(6, p5=0x80, p11=0x60))
    assert state.is_direction_toggled is True
    assert state.park_configuration == 3


def test_motor_rating(dispatcher, state):
    state.update(line_current=5.0)
    trip = state.start_trip_if_needed()
    dispatcher.parse_packet(flash(18, p4=16, p6=0xE0, p7=0x2E, p8=0xB8, p9=0x0B, p10=0xD0, p11=0x02))
    assert state.motor_pole_pairs == 16
    assert state.max_speed == 12000
    assert state.high_speed_name_value == 100.0
    assert state.rated_power == 3000
    assert state.rated_power_percentage == 30.0
    assert state.rated_voltage == 72.0
    assert trip.motor_pole_pairs == 16


def test_battery_rating(dispatcher, state):
    dispatcher.parse_packet(flash(24, p0=0xB8, p1=0x0B, p2=0x90, p3=0x01, p6=0x07, p8=40))
    assert state.rated_speed == 3000
    assert state.max_line_current == 100.0
    assert state.follow_configuration == 3
    assert state.battery_rated_capacity_ah == 40


def test_protection_and_relay_bits(dispatcher, state):
    # relay word 0x0411 -> bits 0, 4, 10
    dispatcher.parse_packet(flash(30, p2=0x58, p3=0x02, p4=ord("F"), p5=ord("D"), p6=0x04, p7=0x11))
    assert state.low_voltage_protection == 60.0
    assert state.low_voltage_restore == 62.0
    assert state.custom_code_primary + state.custom_code_secondary == "FD"
    assert state.custom_data == "FD"
    assert state.relay_delay == 0x0411
    assert state.is_brake_control_toggled
    assert state.is_high_speed_toggled
    assert state.is_gear_memory_enabled
    assert not state.is_left_turn_toggled
    assert not state.is_force_drive_enabled


def test_runtime_and_custom_limits(dispatcher, state):
    dispatcher.parse_packet(flash(36, p1=30, p2=12, p4=0x01, p5=0x90, p6=0x03, p7=0x20, p8=0x17, p9=0x70))
    assert (state.hours, state.minutes) == (12, 30)
    assert state.custom_max_line_current == 100.0
    assert state.custom_max_phase_current == 200.0
    assert state.low_speed == 6000
    assert state.low_speed_line_current == 50.0


def test_mid_speed_and_phase_ratio(dispatcher, state):
    state.update(custom_max_phase_current=400.0)
    dispatcher.parse_packet(flash(42, p0=0x23, p1=0x28, p6=0x20, p7=0x03))
    assert state.mid_speed == 9000
    assert state.mid_speed_name_value == 75.0
    assert state.max_phase_current == 200.0
    assert state.high_speed_name_value == 50.0


def test_speed_band_percentages_round_half_up(dispatcher, state):
    dispatcher.parse_packet(flash(48, p0=0x01, p1=0x2C, p6=16, p7=64, p8=128, p9=0))
    assert state.low_speed_line_current == 13
    assert state.mid_speed_line_current == 50
    assert state.low_speed_phase_current == 100
    assert state.mid_speed_phase_current == 0
    assert state.stop_back_current == 300


def test_enabled_limits(dispatcher, state):
    dispatcher.parse_packet(flash(99, p0=0x90, p1=0x01, p2=0x20, p3=0x03))
    assert state.enabled_max_line_current == 100.0
    assert state.enabled_max_phase_current == 200.0


@pytest.mark.parametrize("index,primary", [(5, "5"), (15, "5"), (65, "A")])
def test_parameter_index(dispatcher, state, index, primary):
    dispatcher.parse_packet(flash(105, p8=0x10, p9=0x27, p10=index, p11=0))
    assert state.parameter_index == index
    assert state.parameter_index_primary == primary
    assert state.parameter_index_secondary == "_"
    assert state.controller_distance_low == 10000


def test_counters_and_distance(dispatcher, state):
    dispatcher.parse_packet(flash(105, p8=0x10, p9=0x27))
    dispatcher.parse_packet(flash(124, p2=0x78, p3=0x56, p4=0x34, p5=0x12, p6=1))
    assert state.crc_info_c0 == 0x12345678
    assert state.crc_info_c1 == 1
    assert state.total_time == 0x12345678
    assert state.controller_distance == 10000


def test_counters_reconcile_trip_energy(dispatcher, state, clock):
    state.update(line_current=5.0)
    trip = state.start_trip_if_needed()
    dispatcher.parse_packet(flash(124, p2=1))

    trip.record_consumption(80.0, 10.0, 80.0)
    clock.advance(30_000)
    trip.record_consumption(80.0, 10.0, 80.0)
    before = trip.cumulative_energy_wh

    # One controller unit is a minute: twice the integrated time
    dispatcher.parse_packet(flash(124, p2=2))
    assert trip.cumulative_energy_wh == pytest.approx(before * 2)


def test_versions(dispatcher, state):
    dispatcher.parse_packet(flash(130, p0=0xF4, p1=0x01, p11=ord("7")))
    assert state.controller_version_major == "7"
    assert state.hardware_version == "7"
    assert state.throttle_voltage == pytest.approx(5.0)

    FLASH_DECODERS[72](Frame(raw=flash(130, p10=ord("8"), p11=ord("3")), group_id=72), state)
    assert state.controller_version_major == "8"
    assert state.controller_version_minor == "3"
    assert state.software_version_major == "3"


def test_serial_number(dispatcher, state):
    head = b"FD72AB1234"
    tail = b"56789XYZ\x00\x00"
    dispatcher.parse_packet(build_flash_frame(160, [0, 0] + list(head)))
    assert state.serial_reception_status == 1
    assert state.serial_number == ""

    dispatcher.parse_packet(build_flash_frame(166, list(tail) + [0, 0]))
    assert state.serial_number == "FD72AB123456789XYZ"
    assert state.focused_serial_number == "FD72AB123456789XYZ"
    assert state.serial_reception_status == 2
    assert state.has_serial_number == 2


def test_serial_tail_without_head_ignored(dispatcher, state):
    dispatcher.parse_packet(build_flash_frame(166, list(b"56789XYZ") + [0] * 4))
    assert state.serial_number == ""
    assert state.serial_reception_status == 0


def test_serial_kept_when_vcu_seen(dispatcher, state):
    state.update(is_vcu_frame_received=True, serial_number="VCU")
    dispatcher.parse_packet(build_flash_frame(160, [0, 0] + list(b"ABCDEFGHIJ")))
    dispatcher.parse_packet(build_flash_frame(166))
    assert state.serial_number == "VCU"
    assert state.focused_serial_number == "ABCDEFGHIJ"


def test_general_parameters(dispatcher, state):
    dispatcher.parse_packet(flash(184, p8=0x30, p9=0x01, p11=0x80))
    assert state.general_parameter0 == 0x3001
    assert state.en_modify == 3
    assert state.is_new_blue_key_enabled is True

    dispatcher.parse_packet(flash(184))
    assert state.is_new_blue_key_enabled is True


def test_acceleration_and_throttle_insert(dispatcher, state):
    dispatcher.parse_packet(flash(190, p1=0x50))
    dispatcher.parse_packet(flash(196, p8=0x01, p9=0x02))
    assert state.acceleration_coefficient == 5
    assert state.throttle_insert == 0x0102


def test_shadow_only_groups(dispatcher, state):
    dispatcher.parse_packet(flash(172, p0=0xCD, p1=0xAB))
    assert state.flash_memory[114] == 0xABCD


# Checksum mode

def test_checksum_motor(dispatcher, state):
    assert dispatcher.parse_packet(checksum(8, a10=4, a11=1, a12=0x02, a13=0xD0))
    assert state.motor_pole_pairs == 4
    assert state.is_direction_toggled is True
    assert state.rated_voltage == 72.0


def test_checksum_speeds(dispatcher, state):
    dispatcher.parse_packet(checksum(9, a4=0x0B, a5=0xB8, a6=0x2E, a7=0xE0, a8=0x23, a9=0x28))
    assert (state.rated_speed, state.max_speed, state.mid_speed) == (3000, 12000, 9000)


@pytest.mark.parametrize("index,chars", [
    (5, ("5", "_")),
    (15, ("5", "R")),
    (65, ("A", "_")),
    (97, ("A", "R")),
])
def test_checksum_limits_index_chars(dispatcher, state, index, chars):
    dispatcher.parse_packet(checksum(10, a5=index, a6=0x01, a7=0x20))
    assert (state.parameter_index_primary, state.parameter_index_secondary) == chars
    assert state.max_phase_current == 0x0120 / 4
    assert state.custom_max_phase_current == state.max_phase_current
    assert state.custom_max_line_current == state.max_line_current
    assert state.rated_power == 0x20 * 100


def test_checksum_protection(dispatcher, state):
    dispatcher.parse_packet(checksum(11, a6=0x02, a7=0x58, a8=0x02, a9=0x6C, a10=0x00, a11=0x28))
    assert state.low_voltage_protection == 60.0
    assert state.low_voltage_restore == 62.0
    assert state.stop_back_current == 10.0


def test_checksum_versions_and_capacity(dispatcher, state):
    dispatcher.parse_packet(checksum(12, a13=42))
    dispatcher.parse_packet(checksum(13, a5=40, a10=ord("1"), a11=ord("2")))
    assert state.software_version == 42
    assert state.battery_rated_capacity_ah == 40
    assert state.controller_version_major == "1"
    assert state.software_version_major == "2"


def test_checksum_custom_code(dispatcher, state):
    dispatcher.parse_packet(checksum(14, a2=ord("Q"), a3=ord("S"), a11=0x06, a12=0x17, a13=0x70))
    assert state.custom_data == "QS"
    assert state.hall_sensor_type == 1
    assert state.park_configuration == 2
    assert state.low_speed == 6000


def test_checksum_speed_bands_without_bms(dispatcher, state):
    dispatcher.parse_packet(checksum(18, a7=64, a8=128, a9=16, a10=0))
    assert state.low_speed_line_current == 50
    assert state.mid_speed_line_current == 100
    assert state.low_speed_phase_current == 13


def test_checksum_bms_frames(dispatcher, state):
    dispatcher.parse_packet(checksum(32))
    assert state.is_bms_enabled is True

    dispatcher.parse_packet(checksum(18, a2=ord("B"), a8=20, a9=ord("M")))
    assert state.parameter_index_primary == "B"
    assert state.parameter_index_secondary == "M"
    assert state.series_configuration == 20

    dispatcher.parse_packet(checksum(0, a5=0x02))
    assert state.is_bms_enabled is False
    assert state.follow_configuration == 2


def test_checksum_serial(dispatcher, state):
    dispatcher.parse_packet(checksum(19, **{f"a{i}": c for i, c in zip(range(2, 8), b"ABCDEF")}))
    dispatcher.parse_packet(checksum(20, **{f"a{i}": c for i, c in zip(range(2, 12), b"0123456789")}))
    assert state.serial_number == "ABCDEF  0123456789"


def test_checksum_enabled_limits(dispatcher, state):
    dispatcher.parse_packet(checksum(21, a2=0x01, a3=0x90, a4=0x03, a5=0x20, a8=7))
    assert state.enabled_max_line_current == 400
    assert state.enabled_max_phase_current == 800
    assert state.general_parameter0 == 7


def test_checksum_bms_versions(dispatcher, state):
    dispatcher.parse_packet(checksum(41, a9=0x03, a10=0x48, a11=ord("4"), a12=ord("1"), a13=9))
    assert state.rated_voltage == 84.0
    assert state.controller_version_major == "4"
    assert state.controller_version_minor == "1"
    assert state.software_version == 9


def test_checksum_blue_key_and_custom_code(dispatcher, state):
    dispatcher.parse_packet(checksum(15, a4=0x01))
    dispatcher.parse_packet(checksum(47, a12=ord("K"), a13=ord("Z")))
    assert state.is_new_blue_key_enabled is True
    assert state.custom_data == "KZ"


def test_checksum_opaque_group_kept_verbatim(dispatcher, state):
    frame = checksum(43, a2=1, a3=2, a13=12)
    dispatcher.parse_packet(frame)
    assert state.opaque_payloads[43] == frame[2:14]


def test_custom_data_follows_latest_custom_code(dispatcher, state):
    """Flash and checksum custom codes both land in custom_data"""
    dispatcher.parse_packet(flash(30, p4=ord("A"), p5=ord("B")))
    assert (state.custom_code_primary, state.custom_code_secondary) == ("A", "B")
    assert state.custom_data == "AB"

    dispatcher.parse_packet(checksum(47, a12=ord("C"), a13=ord("D")))
    assert state.custom_data == "CD"
