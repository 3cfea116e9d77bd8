"""
Checksum-mode decoders.

Older firmware and BMS-attached controllers send checksummed frames
whose second byte names the field group directly. Offsets here index
the full 16-byte frame, marker included.
"""

from ..codec import combine, extract_char
from ..state import ControllerState
from ..types import Frame
from .common import (
    DecoderTable,
    checksum_index_chars,
    complete_serial,
    fill_serial,
    make_registry,
    speed_percent,
)


CHECKSUM_DECODERS: DecoderTable = {}
checksum_decoder = make_registry(CHECKSUM_DECODERS)

# Group 43 payload bytes, kept verbatim
OPAQUE_GROUP = 43


@checksum_decoder(0)
def decode_follow(frame: Frame, state: ControllerState) -> None:
    state.update(is_bms_enabled=False, follow_configuration=frame.raw[5] & 0x03)


@checksum_decoder(8)
def decode_motor(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    state.update(
        motor_pole_pairs=a[10],
        is_direction_toggled=a[11] != 0,
        rated_voltage=combine(a[12], a[13]) / 10,
    )


@checksum_decoder(9)
def decode_speeds(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    state.update(
        rated_speed=combine(a[4], a[5]),
        max_speed=combine(a[6], a[7]),
        mid_speed=combine(a[8], a[9]),
    )


@checksum_decoder(10)
def decode_limits(frame: Frame, state: ControllerState) -> None:
    """Current limits, parameter index and rated power"""
    a = frame.raw

    max_line_current = combine(a[0], a[1]) / 4
    max_phase_current = combine(a[6], a[7]) / 4
    primary, secondary = checksum_index_chars(a[5], state.special_code)
    state.update(
        max_line_current=max_line_current,
        max_phase_current=max_phase_current,
        parameter_index=a[5],
        parameter_index_primary=primary,
        parameter_index_secondary=secondary,
        hall_sensor_type=a[6],
        rated_power_percentage=a[7],
        rated_power=a[7] * 100,
        custom_max_line_current=max_line_current,
        custom_max_phase_current=max_phase_current,
    )


@checksum_decoder(11)
def decode_protection(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    state.update(
        low_voltage_restore=combine(a[8], a[9]) / 10,
        low_voltage_protection=combine(a[6], a[7]) / 10,
        stop_back_current=combine(a[10], a[11]) / 4,
    )


@checksum_decoder(12)
def decode_software_version(frame: Frame, state: ControllerState) -> None:
    version = frame.raw[13]
    state.update(software_version=version, software_version_minor=version)


@checksum_decoder(13)
def decode_versions_and_capacity(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    major = extract_char(a[10])
    minor = extract_char(a[11])
    state.update(
        controller_version_major=major,
        controller_version_minor=minor,
        hardware_version=major,
        software_version_major=minor,
        battery_rated_capacity_ah=a[5],
    )


@checksum_decoder(14)
def decode_custom_code(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    primary = extract_char(a[2])
    secondary = extract_char(a[3])
    state.update(
        custom_code_primary=primary,
        custom_code_secondary=secondary,
        custom_data=primary + secondary,
        hall_sensor_type=(a[11] >> 2) & 0x01,
        park_configuration=((a[11] >> 1) & 0x01) << 1,
        low_speed=combine(a[12], a[13]),
    )


@checksum_decoder(15)
def decode_blue_key(frame: Frame, state: ControllerState) -> None:
    if frame.raw[4] & 0x01:
        state.update(is_new_blue_key_enabled=True)


@checksum_decoder(18)
def decode_bms_or_speed_bands(frame: Frame, state: ControllerState) -> None:
    """With a BMS: index chars and series count. Without: speed-band currents."""
    a = frame.raw
    if state.is_bms_enabled:
        state.update(
            parameter_index_primary=extract_char(a[2]),
            parameter_index_secondary=extract_char(a[9]),
            series_configuration=a[8],
        )
    else:
        state.update(
            low_speed_line_current=speed_percent(a[7]),
            mid_speed_line_current=speed_percent(a[8]),
            low_speed_phase_current=speed_percent(a[9]),
            mid_speed_phase_current=speed_percent(a[10]),
        )


@checksum_decoder(19)
def decode_serial_head(frame: Frame, state: ControllerState) -> None:
    fill_serial(state, 0, frame.raw[0:8])
    state.update(serial_reception_status=1)


@checksum_decoder(20)
def decode_serial_tail(frame: Frame, state: ControllerState) -> None:
    fill_serial(state, 8, frame.raw[0:12])
    complete_serial(state)


@checksum_decoder(21)
def decode_enabled_limits(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    state.update(
        enabled_max_line_current=combine(a[2], a[3]),
        enabled_max_phase_current=combine(a[4], a[5]),
        general_parameter0=a[8],
    )


@checksum_decoder(32)
def decode_bms_present(frame: Frame, state: ControllerState) -> None:
    state.update(is_bms_enabled=True)


@checksum_decoder(41)
def decode_bms_versions(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    version = a[13]
    state.update(
        rated_voltage=combine(a[9], a[10]) / 10,
        controller_version_major=extract_char(a[11]),
        controller_version_minor=extract_char(a[12]),
        software_version=version,
        software_version_minor=version,
    )


@checksum_decoder(OPAQUE_GROUP)
def decode_opaque(frame: Frame, state: ControllerState) -> None:
    payloads = dict(state.opaque_payloads)
    payloads[OPAQUE_GROUP] = bytes(frame.payload)
    state.update(opaque_payloads=payloads)


@checksum_decoder(47)
def decode_bms_custom_code(frame: Frame, state: ControllerState) -> None:
    a = frame.raw
    primary = extract_char(a[12])
    secondary = extract_char(a[13])
    state.update(custom_code_primary=primary, custom_code_secondary=secondary,
                 custom_data=primary + secondary)
