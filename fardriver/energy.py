"""
Energy integration with controller-clock reconciliation.

Power samples are integrated over clamped local deltas. Whenever the
controller reports its uptime, the pending window is rescaled so the
integrated time matches the controller's, within sane bounds.
"""

import logging
from typing import Optional

from .timing import TimeDeltaTracker


logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000


class EnergyIntegrator:
    """Integrates watts into watt-hours"""

    def __init__(
        self,
        time_tracker: Optional[TimeDeltaTracker] = None,
        correction_tolerance: float = 0.05,
        min_correction_ratio: float = 0.25,
        max_correction_ratio: float = 4.0,
    ) -> None:
        """
        Args:
            time_tracker: Clock tracker, default options if omitted
            correction_tolerance: Ratio deviation ignored by reconciliation (0.05 = 5%)
            min_correction_ratio: Lower clamp for the reconciliation ratio
            max_correction_ratio: Upper clamp for the reconciliation ratio
        """
        self.time_tracker = time_tracker or TimeDeltaTracker()
        self.correction_tolerance = correction_tolerance
        self.min_correction_ratio = min_correction_ratio
        self.max_correction_ratio = max_correction_ratio

        self._pending_delta_ms = 0.0
        self._pending_energy_wh = 0.0
        self._total_energy_wh = 0.0

    def record_sample(self, power_w: float, timestamp: float) -> float:
        """
        Integrate one power sample.

        Non-positive power contributes nothing but still advances the
        pending window.

        Args:
            power_w: Instantaneous power in watts
            timestamp: Local time in ms

        Returns:
            Energy added by this sample, Wh
        """
        delta = self.time_tracker.note_local_sample(timestamp)
        if delta is None:
            return 0.0

        self._pending_delta_ms += delta.delta_ms

        if power_w <= 0:
            return 0.0

        energy_wh = power_w * delta.delta_ms / MS_PER_HOUR
        self._pending_energy_wh += energy_wh
        self._total_energy_wh += energy_wh
        return energy_wh

    def apply_controller_timestamp(self, raw_controller_time: float) -> float:
        """
        Reconcile the pending window against the controller clock.

        Args:
            raw_controller_time: Controller uptime counter

        Returns:
            Correction merged into the total, Wh (0 when none was needed)
        """
        controller_delta = self.time_tracker.note_controller_time(raw_controller_time)

        if controller_delta is None or self._pending_delta_ms == 0:
            self._reset_pending_window()
            return 0.0

        ratio = controller_delta.delta_ms / self._pending_delta_ms

        if abs(1 - ratio) <= self.correction_tolerance:
            self._reset_pending_window()
            return 0.0

        bounded = min(self.max_correction_ratio, max(self.min_correction_ratio, ratio))
        corrected = self._pending_energy_wh * bounded
        correction = corrected - self._pending_energy_wh

        self._total_energy_wh += correction
        logger.debug(f"Energy reconciled: ratio={ratio:.3f} (used {bounded:.3f}), {correction:+.4f} Wh")

        self._reset_pending_window()
        return correction

    @property
    def total_energy_wh(self) -> float:
        """Cumulative energy including corrections"""
        return self._total_energy_wh

    @property
    def pending_delta_ms(self) -> float:
        """Local time integrated since the last reconciliation"""
        return self._pending_delta_ms

    @property
    def pending_energy_wh(self) -> float:
        """Energy integrated since the last reconciliation"""
        return self._pending_energy_wh

    def reset(self) -> None:
        """Zero everything, including the clocks"""
        self._reset_pending_window()
        self._total_energy_wh = 0.0
        self.time_tracker.reset()

    def _reset_pending_window(self) -> None:
        self._pending_delta_ms = 0.0
        self._pending_energy_wh = 0.0
