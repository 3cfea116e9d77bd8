"""
Pieces shared by the flash-read and checksum-mode decoders.
"""

import math
from typing import Callable, Dict, Sequence, Tuple

from ..codec import bytes_to_string, printable
from ..state import ControllerState
from ..types import Frame


# decoder(frame, state) -> None; mutates state only
Decoder = Callable[[Frame, ControllerState], None]
DecoderTable = Dict[int, Decoder]

DEL = 0x7F


def make_registry(table: DecoderTable) -> Callable[..., Callable[[Decoder], Decoder]]:
    """
    Build a decorator that registers a function for one or more group ids.

    Example:
        @flash_decoder(105, 60)
        def decode_parameter_index(frame, state): ...
    """
    def register(*group_ids: int) -> Callable[[Decoder], Decoder]:
        def wrap(func: Decoder) -> Decoder:
            for group_id in group_ids:
                if group_id in table:
                    raise ValueError(f"Group {group_id} already has a decoder")
                table[group_id] = func
            return func
        return wrap
    return register


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (round() rounds to even)"""
    return math.floor(value + 0.5)


def speed_percent(raw: int) -> int:
    """Speed-band current limit, raw byte in 1/128ths, as a whole percentage"""
    return round_half_up(raw * 100 / 128)


def speed_name_value(speed: int) -> float:
    return speed * 100 / 12000


def special_code_char(special_code: str) -> str:
    """Secondary parameter-index char: the special code if it is visible, else '_'"""
    if special_code and "0" <= special_code < chr(DEL):
        return special_code
    return "_"


def flash_index_chars(index: int, special_code: str) -> Tuple[str, str]:
    """Primary and secondary parameter-index characters from a flash-read frame"""
    if index < 10:
        primary = chr(index + 48)
    elif index < 20:
        primary = chr(index + 38)
    else:
        primary = chr(index)
    return primary, special_code_char(special_code)


def checksum_index_chars(index: int, special_code: str) -> Tuple[str, str]:
    """Primary and secondary parameter-index characters from a checksum-mode frame"""
    if index < 10:
        return chr(index + 48), "_"
    if index < 20:
        return chr(index + 38), "R"
    if index < 58:
        return chr(index), special_code_char(special_code)
    if index < 91:
        return chr(index), "_"
    return chr(index - 32), "R"


def fill_serial(state: ControllerState, start: int, data: Sequence[int]) -> None:
    """Copy printable serial-number bytes into the buffer starting at a slot"""
    buffer = list(state.serial_buffer)
    for i, byte in enumerate(data):
        buffer[start + i] = printable(byte)
    state.update(serial_buffer=buffer)


def complete_serial(state: ControllerState) -> None:
    """Second half of the serial number arrived; publish it if the first half did too"""
    if state.serial_reception_status != 1:
        return
    serial = bytes_to_string(state.serial_buffer)
    state.update(focused_serial_number=serial)
    if not state.is_vcu_frame_received:
        state.update(serial_number=serial)
    state.update(serial_reception_status=2, has_serial_number=2)
