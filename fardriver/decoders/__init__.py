"""Field-group decoders, one static table per frame mode"""

from .checksum import CHECKSUM_DECODERS
from .common import Decoder, DecoderTable
from .flash import FLASH_DECODERS, SHADOW_OFFSETS

__all__ = [
    "CHECKSUM_DECODERS",
    "FLASH_DECODERS",
    "SHADOW_OFFSETS",
    "Decoder",
    "DecoderTable",
]
