"""
Elapsed-time tracking on two clocks.

The phone clock is precise but BLE delivery stalls (backgrounding, OS
throttling) show up as huge gaps, so local deltas are clamped to the
typical cadence. The controller's uptime counter is authoritative but
coarse, and jumps after a reconnect, so its deltas are clamped too.
"""

from dataclasses import dataclass
from statistics import median
from typing import Deque, Optional
from collections import deque
import math


@dataclass(frozen=True)
class TrackedDelta:
    """Elapsed time for one measurement window"""
    delta_ms: float
    clamped: bool = False


class TimeDeltaTracker:
    """Clamped elapsed time between local samples and controller ticks"""

    def __init__(
        self,
        max_local_interval_multiplier: float = 2.0,
        local_window_size: int = 10,
        controller_time_unit_ms: float = 60000.0,
        max_controller_delta_ms: float = 600000.0,
    ) -> None:
        """
        Args:
            max_local_interval_multiplier: Local deltas above this many times the median are clamped
            local_window_size: Recent local deltas kept for the median
            controller_time_unit_ms: Milliseconds per controller counter unit
            max_controller_delta_ms: Largest controller delta accepted as-is
        """
        self.max_local_interval_multiplier = max_local_interval_multiplier
        self.controller_time_unit_ms = controller_time_unit_ms
        self.max_controller_delta_ms = max_controller_delta_ms

        self._last_local_timestamp: Optional[float] = None
        self._local_deltas: Deque[float] = deque(maxlen=local_window_size)
        self._last_controller_ms: Optional[float] = None

    def note_local_sample(self, timestamp: float) -> Optional[TrackedDelta]:
        """
        Record a local clock sample.

        Args:
            timestamp: Local time in ms

        Returns:
            Delta since the previous sample, or None on the first sample
            and on non-increasing time
        """
        if self._last_local_timestamp is None:
            self._last_local_timestamp = timestamp
            return None

        raw_delta = timestamp - self._last_local_timestamp
        self._last_local_timestamp = timestamp

        if not math.isfinite(raw_delta) or raw_delta <= 0:
            return None

        delta = raw_delta
        clamped = False

        typical = self.typical_local_delta
        if typical is not None:
            max_allowed = typical * self.max_local_interval_multiplier
            if delta > max_allowed:
                delta = max_allowed
                clamped = True

        self._local_deltas.append(delta)
        return TrackedDelta(delta, clamped)

    def note_controller_time(self, raw_controller_time: float) -> Optional[TrackedDelta]:
        """
        Record the controller uptime counter.

        Args:
            raw_controller_time: Counter value in controller units

        Returns:
            Delta in ms since the previous reading, or None on the first
            reading and when the counter did not advance
        """
        controller_ms = raw_controller_time * self.controller_time_unit_ms
        if not math.isfinite(controller_ms):
            return None

        if self._last_controller_ms is None:
            self._last_controller_ms = controller_ms
            return None

        delta = controller_ms - self._last_controller_ms
        self._last_controller_ms = controller_ms

        if delta <= 0:
            return None

        if delta > self.max_controller_delta_ms:
            return TrackedDelta(self.max_controller_delta_ms, True)
        return TrackedDelta(delta, False)

    @property
    def typical_local_delta(self) -> Optional[float]:
        """Median of the recent local deltas"""
        if not self._local_deltas:
            return None
        return median(self._local_deltas)

    def reset(self) -> None:
        """Forget both clocks"""
        self._last_local_timestamp = None
        self._last_controller_ms = None
        self._local_deltas.clear()
