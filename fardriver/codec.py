"""
Byte codec - the bit twiddling underneath every decoder.

Combining bytes, sign extension, printable characters, the additive
checksum, plus the frame builders used by the replay transport and tests.
"""

from typing import Iterable, List, Sequence


FRAME_LENGTH = 16
FRAME_MARKER = 0xAA
PAYLOAD_LENGTH = 12

FLASH_READ_FLAG = 0x80
FLASH_READ_MASK = 0xC0

# Slot -> field group, in the order the controller cycles through them
FLASH_READ_ADDRESSES = (
    226, 232, 238, 0, 6, 12, 18, 226, 232, 238, 24, 30, 36, 42, 226,
    232, 238, 48, 93, 99, 105, 226, 232, 238, 124, 130, 136, 142, 226,
    232, 238, 148, 154, 160, 166, 226, 232, 238, 172, 178, 184, 190,
    226, 232, 238, 196, 202, 208, 226, 232, 238, 214, 220, 244, 250,
)


def combine(high: int, low: int) -> int:
    """Two bytes to an unsigned 16-bit value, high byte first."""
    return (high << 8) | low


def signed16(value: int) -> int:
    """Two's complement on 16 bits."""
    return value - 0x10000 if value & 0x8000 else value


def signed24(value: int) -> int:
    """Two's complement on 24 bits (bit 23 is the sign)."""
    return value - 0x1000000 if value & 0x800000 else value


def extract_char(byte: int) -> str:
    """Byte to its character."""
    return chr(byte)


def printable(byte: int) -> int:
    """Keep visible ASCII, map everything else to a space."""
    return byte if 32 < byte <= 126 else 32


def bytes_to_string(data: Iterable[int]) -> str:
    """Printable ASCII string, trimmed."""
    return "".join(chr(printable(b)) for b in data).strip()


def checksum(data: Iterable[int]) -> int:
    """Additive checksum over the given bytes."""
    return sum(data)


def to_hex(num: int, length: int = 2) -> str:
    """Zero padded uppercase hex."""
    return f"{num:0{length}X}"


def words_le(payload: Sequence[int]) -> List[int]:
    """Split a payload into little-endian 16-bit words."""
    return [combine(payload[i + 1], payload[i]) for i in range(0, len(payload) - 1, 2)]


def flash_slot(group_id: int) -> int:
    """First indirection slot that resolves to a field group. Raises ValueError if none."""
    return FLASH_READ_ADDRESSES.index(group_id)


def _pad(payload: Sequence[int]) -> bytes:
    if len(payload) > PAYLOAD_LENGTH:
        raise ValueError(f"Payload must be at most {PAYLOAD_LENGTH} bytes, got {len(payload)}")
    return bytes(payload) + bytes(PAYLOAD_LENGTH - len(payload))


def build_flash_frame(group_id: int, payload: Sequence[int] = ()) -> bytes:
    """Build a flash-read frame that routes to the given field group."""
    head = bytes([FRAME_MARKER, FLASH_READ_FLAG | flash_slot(group_id)]) + _pad(payload)
    total = checksum(head)
    return head + bytes([(total >> 8) & 0xFF, total & 0xFF])


def build_checksum_frame(group_id: int, payload: Sequence[int] = ()) -> bytes:
    """Build a checksum-mode frame; payload lands at frame offsets 2..13."""
    if (group_id & FLASH_READ_MASK) == FLASH_READ_FLAG:
        raise ValueError(f"Group {group_id} would be routed as a flash read")
    head = bytes([FRAME_MARKER, group_id]) + _pad(payload)
    total = checksum(head)
    return head + bytes([(total >> 8) & 0xFF, total & 0xFF])
