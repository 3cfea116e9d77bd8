"""
Flash-read decoders.

A flash-read frame carries one six-word field group read out of the
controller's parameter flash, or one of the live telemetry groups the
controller interleaves with them. Every decoder receives the whole
Frame but only reads its 12-byte payload.

Configuration groups are first mirrored word-for-word into the flash
shadow, then the fields we understand are decoded out of them.
"""

import logging
from typing import Dict

from ..codec import combine, extract_char, signed16, signed24, words_le
from ..faults import ALARM_BIT, CLEAR_AFTER_CLEAN_FRAMES, decode_faults, is_clean
from ..soc import SoCEstimator
from ..state import ControllerState
from ..types import Frame, GearMode
from .common import (
    DecoderTable,
    complete_serial,
    fill_serial,
    flash_index_chars,
    make_registry,
    speed_name_value,
    speed_percent,
)


logger = logging.getLogger(__name__)

FLASH_DECODERS: DecoderTable = {}
flash_decoder = make_registry(FLASH_DECODERS)

# Field group -> first shadow word. 60-96 are the alternate firmware
# layout of 105-148 and land on the same words.
SHADOW_OFFSETS: Dict[int, int] = {
    **{group: group for group in range(0, 49, 6)},
    99: 54,
    105: 60, 60: 60,
    124: 66, 66: 66,
    130: 72, 72: 72,
    136: 78, 78: 78,
    142: 84, 84: 84,
    148: 90, 90: 90,
    96: 96,
    160: 102,
    166: 108,
    172: 114,
    178: 120,
    184: 126,
    190: 132,
    196: 138,
    202: 144,
    154: 154,
}

PHASE_CURRENT_SCALE = 1.953125

# Relay configuration word: bit -> state flag
RELAY_FLAGS = (
    (0, "is_brake_control_toggled"),
    (1, "is_left_turn_toggled"),
    (2, "is_parking_gear_toggled"),
    (3, "is_auto_back_protection_toggled"),
    (4, "is_high_speed_toggled"),
    (6, "is_push_assist_toggled"),
    (7, "is_force_drive_enabled"),
    (10, "is_gear_memory_enabled"),
)


def _mirror(frame: Frame, state: ControllerState) -> None:
    state.write_flash(SHADOW_OFFSETS[frame.group_id], words_le(frame.payload))


# Live telemetry

@flash_decoder(226)
def decode_main_status(frame: Frame, state: ControllerState) -> None:
    """Gear, roll direction, faults, modulation and motor RPM"""
    p = frame.payload

    gear = p[0] & 0x03
    xs_control = (p[0] >> 2) & 0x03
    rolling = (p[0] >> 5) & 0x01
    reversing = (p[0] >> 4) & 0x01

    if not rolling:
        roll = 0
    elif not reversing:
        roll = 1 if gear < 2 or gear == 3 else -1
    else:
        roll = 1 if gear >= 2 else -1

    state.update(
        is_bms_enabled=False,
        hall_sensor_type=(p[1] >> 5) & 0x01,
        gear=gear,
        xs_control=xs_control,
        roll=roll,
        pass_ok=(p[1] & 0x18) >> 3,
        comp_phone_ok=bool(p[0] & 0x80),
        function_state=128 if p[1] & 0x80 else 0,
    )

    _update_faults(state, p[2], p[3])

    state.update(
        motor_cutoff_applied=bool(p[3] & 0x80),
        modulation=p[4] / 128,
        rpm=combine(p[7], p[6]),
    )

    if state.can_calculate_speed:
        rpm = state.corrected_rpm
        reading = state.calculate_speed_and_distance(rpm)
        if state.current_trip is not None:
            state.current_trip.record_speed_and_distance(rpm, reading.mps, reading.delta_distance_m)

    state.update(gear_mode=_gear_mode(state))


def _update_faults(state: ControllerState, error1: int, error2: int) -> None:
    if is_clean(error1, error2):
        clean = state.clean_fault_frames + 1
        state.update(clean_fault_frames=clean)
        if clean == CLEAR_AFTER_CLEAN_FRAMES:
            state.update(controller_faults=[], alarm_active=False)
        return

    faults = decode_faults(error1, error2, state.global_state1,
                           state.global_state2, state.motor_stop_state)
    if faults != state.controller_faults:
        logger.warning(f"Controller faults: {', '.join(str(f) for f in faults)}")
    state.update(
        clean_fault_frames=0,
        controller_faults=faults,
        alarm_active=bool(error1 & ALARM_BIT),
    )


def _gear_mode(state: ControllerState) -> GearMode:
    if state.motor_stop_state & 0x02:
        return GearMode.CRUISE
    if state.gear == 1:
        if state.global_state3 & 0x04:
            return GearMode.BOOST
        if state.xs_control == 0:
            return GearMode.D_LOW
        if state.xs_control == 1:
            return GearMode.D_MEDIUM
        return GearMode.D_HIGH
    if state.gear == 2:
        return GearMode.REVERSE
    if state.gear == 0:
        return GearMode.NEUTRAL
    return GearMode.D_LOW


@flash_decoder(232)
def decode_electrical(frame: Frame, state: ControllerState) -> None:
    """
    Pack voltage, line current and throttle.

    This is also where a trip starts, where it receives its energy
    samples and where voltage sag is tracked.
    """
    p = frame.payload

    voltage = combine(p[1], p[0]) / 10
    state.update(voltage=voltage)
    state.smooth_voltage(voltage)

    if state.rated_voltage > 0:
        state.update(soc=SoCEstimator(state.rated_voltage).calculate_soc(voltage))
        if state.current_trip is not None:
            state.current_trip.rated_voltage = state.rated_voltage

    line_current = signed16(combine(p[5], p[4])) / 4
    state.update(
        input_power=voltage * line_current,
        line_current=line_current,
        throttle_depth=combine(p[11], p[10]),
    )

    state.start_trip_if_needed()
    if state.current_trip is not None:
        state.current_trip.record_consumption(voltage, line_current, state.voltage_ema)

    state.update_voltage_sag(voltage, line_current)


@flash_decoder(238)
def decode_phase_currents(frame: Frame, state: ControllerState) -> None:
    """Phase A and C from 24-bit readings; B closes the sum"""
    p = frame.payload
    phase_a = PHASE_CURRENT_SCALE * abs(signed24((p[4] << 16) | (p[5] << 8) | p[6])) ** 0.5
    phase_c = PHASE_CURRENT_SCALE * abs(signed24((p[7] << 16) | (p[8] << 8) | p[9])) ** 0.5
    state.update(
        phase_a_current=phase_a,
        phase_c_current=phase_c,
        phase_b_current=-(phase_a + phase_c),
    )
    if state.current_trip is not None:
        state.current_trip.record_phase_currents(
            state.phase_a_current, state.phase_b_current, state.phase_c_current)


@flash_decoder(244)
def decode_motor_temperature(frame: Frame, state: ControllerState) -> None:
    p = frame.payload
    state.update(motor_temperature=signed16(combine(p[1], p[0])))


@flash_decoder(214)
def decode_global_status(frame: Frame, state: ControllerState) -> None:
    """Controller temperature and the four global status words"""
    p = frame.payload

    state.update(mos_temperature=combine(p[11], p[10]))
    if state.current_trip is not None:
        state.current_trip.record_temperature(state.mos_temperature, state.motor_temperature)

    gs1 = combine(p[3], p[2])
    gs2 = combine(p[5], p[4])
    state.update(
        global_state1=gs1,
        global_state2=gs2,
        global_state3=combine(p[7], p[6]),
        global_state4=combine(p[9], p[8]),
        weak_status="Weak" if gs2 & 0x08 else "MTPA",
        learn_status="AutoLearn" if gs1 & 0x20 else "",
        motor_status="MotorRun" if gs1 & 0x2000 else "MotorStop",
    )


@flash_decoder(250)
def decode_motor_state(frame: Frame, state: ControllerState) -> None:
    p = frame.payload
    state.update(
        motor_stop_state=combine(p[5], p[4]),
        motor_running_state=p[9] << 8,
    )


@flash_decoder(208)
def decode_averages_and_tire(frame: Frame, state: ControllerState) -> None:
    """Averages, plus tire geometry unless the rider already configured it"""
    p = frame.payload
    state.update(avg_power=p[3] * 4, avg_speed=p[6])

    if not state.has_tire_config:
        rate_ratio = combine(p[9], p[8])
        state.update(
            wheel_ratio=p[4],
            wheel_radius=p[5],
            wheel_width=p[7],
            rate_ratio=rate_ratio,
            motor_gear_ratio=rate_ratio / 1000,
        )


# Configuration groups

@flash_decoder(0, 12, 66, 78, 84, 90, 96, 136, 142, 148, 154, 172, 178, 202)
def decode_shadow_only(frame: Frame, state: ControllerState) -> None:
    """Groups with no decoded fields; kept in the shadow only"""
    _mirror(frame, state)


@flash_decoder(6)
def decode_direction(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload
    state.update(
        is_direction_toggled=bool(p[5] & 0x80),
        park_configuration=(p[11] >> 5) & 0x03,
    )


@flash_decoder(18)
def decode_motor_rating(frame: Frame, state: ControllerState) -> None:
    """Pole pairs, max speed, rated voltage and rated power"""
    _mirror(frame, state)
    p = frame.payload

    max_speed = combine(p[7], p[6])
    rated_power = combine(p[9], p[8])
    state.update(
        motor_pole_pairs=p[4],
        max_speed=max_speed,
        high_speed_name_value=speed_name_value(max_speed),
        rated_voltage=combine(p[11], p[10]) / 10,
        rated_power=rated_power,
        rated_power_percentage=rated_power / 100,
    )
    if state.current_trip is not None:
        state.current_trip.motor_pole_pairs = state.motor_pole_pairs


@flash_decoder(24)
def decode_battery_rating(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload
    state.update(
        rated_speed=combine(p[1], p[0]),
        battery_rated_capacity_ah=combine(p[9], p[8]),
        max_line_current=combine(p[3], p[2]) / 4,
        follow_configuration=p[6] & 0x03,
    )
    if state.current_trip is not None:
        state.current_trip.rated_capacity_ah = state.battery_rated_capacity_ah


@flash_decoder(30)
def decode_protection_and_relay(frame: Frame, state: ControllerState) -> None:
    """Custom code, low-voltage protection and the relay configuration bits"""
    _mirror(frame, state)
    p = frame.payload

    relay_delay = combine(p[6], p[7])
    low_voltage_protection = combine(p[3], p[2]) / 10
    primary = extract_char(p[4])
    secondary = extract_char(p[5])
    state.update(
        custom_code_primary=primary,
        custom_code_secondary=secondary,
        custom_data=primary + secondary,
        relay_delay=relay_delay,
        low_voltage_protection=low_voltage_protection,
        low_voltage_restore=low_voltage_protection + 2,
    )
    state.update(**{name: bool(relay_delay >> bit & 1) for bit, name in RELAY_FLAGS})


@flash_decoder(36)
def decode_runtime_and_custom_limits(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload

    low_speed = combine(p[8], p[9])
    state.update(
        minutes=p[1],
        hours=p[2],
        custom_max_line_current=combine(p[4], p[5]) / 4,
        custom_max_phase_current=combine(p[6], p[7]) / 4,
        low_speed=low_speed,
        low_speed_line_current=speed_name_value(low_speed),
    )


@flash_decoder(42)
def decode_mid_speed(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload

    mid_speed = combine(p[0], p[1])
    max_phase_current = combine(p[7], p[6]) / 4
    if state.custom_max_phase_current > 0:
        high_speed_name_value = max_phase_current * 100 / state.custom_max_phase_current
    else:
        high_speed_name_value = 100.0
    state.update(
        mid_speed=mid_speed,
        mid_speed_name_value=speed_name_value(mid_speed),
        max_phase_current=max_phase_current,
        high_speed_name_value=high_speed_name_value,
    )


@flash_decoder(48)
def decode_speed_band_currents(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload
    state.update(
        low_speed_line_current=speed_percent(p[6]),
        mid_speed_line_current=speed_percent(p[7]),
        low_speed_phase_current=speed_percent(p[8]),
        mid_speed_phase_current=speed_percent(p[9]),
        stop_back_current=combine(p[0], p[1]),
    )


@flash_decoder(99)
def decode_enabled_limits(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload
    state.update(
        enabled_max_line_current=combine(p[1], p[0]) / 4,
        enabled_max_phase_current=combine(p[3], p[2]) / 4,
    )


@flash_decoder(105, 60)
def decode_parameter_index(frame: Frame, state: ControllerState) -> None:
    """Parameter index and special code; 105 also carries the low distance word"""
    _mirror(frame, state)
    p = frame.payload

    special_code = extract_char(p[11])
    primary, secondary = flash_index_chars(p[10], special_code)
    state.update(
        parameter_index=p[10],
        special_code=special_code,
        parameter_index_primary=primary,
        parameter_index_secondary=secondary,
    )
    if frame.group_id == 105:
        state.update(controller_distance_low=combine(p[9], p[8]))


@flash_decoder(124)
def decode_counters(frame: Frame, state: ControllerState) -> None:
    """Controller uptime counters; uptime also reconciles trip energy"""
    _mirror(frame, state)
    p = frame.payload

    crc_info_c0 = (p[5] << 24) | (p[4] << 16) | (p[3] << 8) | p[2]
    crc_info_c1 = (p[9] << 24) | (p[8] << 16) | (p[7] << 8) | p[6]
    state.update(crc_info_c0=crc_info_c0, crc_info_c1=crc_info_c1, total_time=crc_info_c0)
    state.reconcile_energy_with_controller_time(state.total_time)

    # High word sits past the 12-byte payload
    state.update(controller_distance=state.controller_distance_low)


@flash_decoder(130, 72)
def decode_versions(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload

    if frame.group_id == 130:
        major = extract_char(p[11])
        state.update(
            controller_version_major=major,
            hardware_version=major,
            throttle_voltage=combine(p[1], p[0]) * 0.01,
        )
    else:
        minor = extract_char(p[11])
        major = extract_char(p[10])
        state.update(
            controller_version_major=major,
            hardware_version=major,
            controller_version_minor=minor,
            software_version_major=minor,
        )


@flash_decoder(160)
def decode_serial_head(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    fill_serial(state, 0, frame.payload[2:12])
    state.update(serial_reception_status=1)


@flash_decoder(166)
def decode_serial_tail(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    fill_serial(state, 10, frame.payload[0:10])
    complete_serial(state)


@flash_decoder(184)
def decode_general_parameters(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload

    general_parameter0 = combine(p[8], p[9])
    state.update(
        general_parameter0=general_parameter0,
        en_modify=(general_parameter0 >> 12) & 0x03,
    )
    if p[11] & 0x80:
        state.update(is_new_blue_key_enabled=True)


@flash_decoder(190)
def decode_acceleration(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    state.update(acceleration_coefficient=frame.payload[1] >> 4)


@flash_decoder(196)
def decode_throttle_insert(frame: Frame, state: ControllerState) -> None:
    _mirror(frame, state)
    p = frame.payload
    state.update(throttle_insert=combine(p[8], p[9]))
