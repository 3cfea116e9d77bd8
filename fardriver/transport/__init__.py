"""
Mock Transport - For testing and demos without a controller.

Plays a list of prepared frames into the notification callback, the
same way a BLE link would deliver them. RideScripts builds those lists.
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

from ..codec import build_checksum_frame, build_flash_frame
from ..interfaces import DisconnectCallback, NotificationCallback


logger = logging.getLogger(__name__)


class MockTransport:
    """
    Mock transport for testing.

    Frames are queued up front (or with queue()) and delivered by play().
    """

    def __init__(
        self,
        frames: Optional[Iterable[bytes]] = None,
        interval: float = 0.0,
        connection_delay: float = 0.0,
        fail_connect: bool = False,
    ) -> None:
        """
        Args:
            frames: Frames to deliver on play()
            interval: Delay between frames, seconds
            connection_delay: Delay to simulate connection time
            fail_connect: Make connect() report failure
        """
        self._frames: List[bytes] = list(frames or [])
        self._interval = interval
        self._connection_delay = connection_delay
        self._fail_connect = fail_connect

        self._connected = False
        self._callback: Optional[NotificationCallback] = None
        self._disconnect_callback: Optional[DisconnectCallback] = None
        self._frames_sent = 0
        self.address: Optional[str] = None

    async def connect(self, address: str) -> bool:
        """Simulate connection"""
        logger.info(f"[MOCK] Connecting to {address}")
        await asyncio.sleep(self._connection_delay)

        if self._fail_connect:
            logger.warning("[MOCK] Connection refused")
            return False

        self.address = address
        self._connected = True
        logger.info("[MOCK] Connected successfully")
        return True

    async def disconnect(self) -> None:
        """Simulate requested disconnection"""
        logger.info("[MOCK] Disconnecting")
        self._connected = False
        self._callback = None

    async def start_notifications(self, callback: NotificationCallback) -> bool:
        if not self._connected:
            logger.warning("[MOCK] Cannot start notifications - not connected")
            return False
        self._callback = callback
        return True

    def set_disconnect_callback(self, callback: Optional[DisconnectCallback]) -> None:
        self._disconnect_callback = callback

    def queue(self, frames: Iterable[bytes]) -> None:
        """Add frames for the next play()"""
        self._frames.extend(frames)

    async def play(self) -> int:
        """
        Deliver every queued frame.

        Stops early if the link drops mid-way.

        Returns:
            Number of frames delivered
        """
        delivered = 0
        while self._frames and self._connected and self._callback is not None:
            frame = self._frames.pop(0)
            self._callback(frame)
            self._frames_sent += 1
            delivered += 1
            if self._interval > 0:
                await asyncio.sleep(self._interval)
        logger.debug(f"[MOCK] Delivered {delivered} frames")
        return delivered

    def simulate_disconnect(self) -> None:
        """Drop the link as if the controller went out of range"""
        logger.info("[MOCK] Link lost")
        self._connected = False
        self._callback = None
        if self._disconnect_callback is not None:
            self._disconnect_callback()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def frames_sent(self) -> int:
        """Total frames delivered (for testing)"""
        return self._frames_sent

    @property
    def pending_frames(self) -> int:
        return len(self._frames)


def _u16(value: int) -> List[int]:
    """Little-endian 16-bit word"""
    value &= 0xFFFF
    return [value & 0xFF, value >> 8]


def _be16(value: int) -> List[int]:
    value &= 0xFFFF
    return [value >> 8, value & 0xFF]


class RideScripts:
    """Canned frame sequences for demos and tests"""

    @staticmethod
    def handshake(
        pole_pairs: int = 4,
        rated_voltage: float = 72.0,
        capacity_ah: int = 40,
        low_voltage_protection: float = 60.0,
        tire: Sequence[int] = (120, 70, 6),
        rate_ratio: int = 1000,
    ) -> List[bytes]:
        """
        Configuration a controller reports right after connecting.

        Args:
            pole_pairs: Motor pole pairs
            rated_voltage: Nominal pack voltage
            capacity_ah: Pack capacity
            low_voltage_protection: Cut-off voltage
            tire: (width mm, aspect ratio %, rim radius in)
            rate_ratio: Gear ratio x 1000
        """
        width, ratio, radius = tire
        motor = [0] * 8 + [pole_pairs, 0] + _be16(round(rated_voltage * 10))
        capacity = [0, 0, 0, capacity_ah, 0, 0, 0, 0, ord("1"), ord("2")]
        protection = [0] * 4 + _be16(round(low_voltage_protection * 10)) \
            + _be16(round((low_voltage_protection + 2) * 10))
        tire_frame = [0, 0, 0, 0, ratio, radius, 0, width] + _u16(rate_ratio)
        return [
            build_checksum_frame(8, motor),
            build_checksum_frame(13, capacity),
            build_checksum_frame(11, protection),
            build_flash_frame(208, tire_frame),
        ]

    @staticmethod
    def electrical(voltage: float, line_current: float, throttle: int = 0) -> bytes:
        payload = _u16(round(voltage * 10)) + [0, 0] + _u16(round(line_current * 4)) \
            + [0, 0, 0, 0] + _u16(throttle)
        return build_flash_frame(232, payload)

    @staticmethod
    def main_status(rpm: int, gear: int = 1, error1: int = 0, error2: int = 0) -> bytes:
        payload = [gear & 0x03, 0, error1, error2, 128, 0] + _u16(rpm)
        return build_flash_frame(226, payload)

    @staticmethod
    def temperatures(mos: int, motor: int) -> List[bytes]:
        return [
            build_flash_frame(244, _u16(motor)),
            build_flash_frame(214, [0] * 10 + _u16(mos)),
        ]

    @classmethod
    def ride(
        cls,
        samples: int = 20,
        voltage: float = 80.0,
        line_current: float = 30.0,
        rpm: int = 600,
        sag_per_sample: float = 0.05,
    ) -> List[bytes]:
        """
        Idle at rest, accelerate under load, coast back to rest.

        Args:
            samples: Loaded electrical/status frame pairs
            voltage: Resting pack voltage
            line_current: Current drawn under load
            rpm: Motor RPM under load
            sag_per_sample: Voltage drop per loaded sample
        """
        frames = []
        for _ in range(3):
            frames.append(cls.electrical(voltage, 0))
            frames.append(cls.main_status(0, gear=0))

        for i in range(samples):
            loaded = voltage - 2.0 - i * sag_per_sample
            frames.append(cls.electrical(loaded, line_current, throttle=800))
            frames.append(cls.main_status(rpm))
            if i % 5 == 0:
                frames.extend(cls.temperatures(30 + i // 5, 25 + i // 5))

        frames.append(cls.electrical(voltage - 0.5, 0))
        frames.append(cls.main_status(0, gear=0))
        return frames

    @classmethod
    def faults(cls, error1: int = 0x01, error2: int = 0x00, clean_frames: int = 6) -> List[bytes]:
        """A faulted status frame followed by clean ones"""
        return [cls.main_status(0, error1=error1, error2=error2)] + \
            [cls.main_status(0) for _ in range(clean_frames)]


__all__ = ["MockTransport", "RideScripts"]
