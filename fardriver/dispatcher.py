"""
FrameDispatcher - validates raw notifications and routes them to decoders.

Malformed input never raises out of parse_packet(); it is logged and the
frame is dropped. The next frame arrives tens of milliseconds later and
supersedes whatever was lost.
"""

import logging
from typing import Optional

from .codec import (
    FLASH_READ_ADDRESSES,
    FLASH_READ_FLAG,
    FLASH_READ_MASK,
    FRAME_LENGTH,
    FRAME_MARKER,
    checksum,
    combine,
    to_hex,
)
from .decoders import CHECKSUM_DECODERS, FLASH_DECODERS, DecoderTable
from .state import ControllerState
from .types import Frame


logger = logging.getLogger(__name__)


class FrameDispatcher:
    """
    Routes 16-byte frames from the transport into a ControllerState.

    Flash-read frames (selector top bits 10) resolve their field group
    through the slot table; every other frame must pass the additive
    checksum and names its group directly.
    """

    def __init__(
        self,
        state: ControllerState,
        flash_decoders: Optional[DecoderTable] = None,
        checksum_decoders: Optional[DecoderTable] = None,
    ) -> None:
        """
        Args:
            state: State the decoders write into
            flash_decoders: Override the flash-read table (tests)
            checksum_decoders: Override the checksum-mode table (tests)

        Raises:
            TypeError: state is None
        """
        if state is None:
            raise TypeError("FrameDispatcher requires a ControllerState")

        self.state = state
        self.flash_decoders = FLASH_DECODERS if flash_decoders is None else flash_decoders
        self.checksum_decoders = CHECKSUM_DECODERS if checksum_decoders is None else checksum_decoders
        self.dropped_frames = 0

    def parse_packet(self, data) -> bool:
        """
        Validate, route and decode one frame.

        Args:
            data: Raw notification bytes (bytes, bytearray or list of ints)

        Returns:
            True if a decoder ran to completion
        """
        try:
            raw = bytes(data)
        except (TypeError, ValueError) as e:
            return self._drop(f"Unreadable frame {data!r}: {e}")

        if len(raw) != FRAME_LENGTH:
            return self._drop(f"Invalid frame length {len(raw)}: {raw.hex()}")
        if raw[0] != FRAME_MARKER:
            return self._drop(f"Invalid frame marker 0x{to_hex(raw[0])}: {raw.hex()}")

        selector = raw[1]
        if (selector & FLASH_READ_MASK) == FLASH_READ_FLAG:
            slot = selector & 0x7F
            if slot >= len(FLASH_READ_ADDRESSES):
                return self._drop(f"Flash-read slot {slot} out of range")
            frame = Frame(raw=raw, group_id=FLASH_READ_ADDRESSES[slot])
            decoders = self.flash_decoders
        else:
            expected = combine(raw[14], raw[15])
            actual = checksum(raw[:14])
            if actual != expected:
                return self._drop(
                    f"Checksum mismatch for group {selector}: "
                    f"0x{to_hex(actual, 4)} != 0x{to_hex(expected, 4)}"
                )
            frame = Frame(raw=raw, group_id=selector)
            decoders = self.checksum_decoders

        self.state.update(frame_reception_count=self.state.frame_reception_count + 1)

        decoder = decoders.get(frame.group_id)
        if decoder is None:
            return self._drop(f"No decoder for field group {frame.group_id}")

        try:
            decoder(frame, self.state)
        except Exception as e:
            logger.error(f"Decoder for group {frame.group_id} failed: {e}", exc_info=True)
            self.dropped_frames += 1
            return False

        return True

    def _drop(self, reason: str) -> bool:
        logger.warning(reason)
        self.dropped_frames += 1
        return False
