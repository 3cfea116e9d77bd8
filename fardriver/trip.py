"""
CurrentTrip - one ride's running aggregator.

Energy, speed, distance, temperatures, voltage sag, GPS and the route,
accumulated from the moment current first flows until the trip is
explicitly ended.
"""

import logging
import math
import uuid
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional

from .energy import EnergyIntegrator
from .soc import estimate_range_m
from .timing import TimeDeltaTracker
from .types import RoutePoint, TripPhase, TripSummary, now_ms


logger = logging.getLogger(__name__)

OBSERVER_INTERVAL_MS = 2000
MIN_ROUTE_SPACING_MS = 800

MPS_TO_KMH = 3.6

TripObserver = Callable[[TripSummary], Any]


class CurrentTrip:
    """
    Running totals for a single ride.

    Samples are only accepted while the trip is ACTIVE; once end() has
    run the record is frozen.
    """

    def __init__(
        self,
        start_time: Optional[float] = None,
        start_voltage: float = 0.0,
        rated_voltage: float = 0.0,
        rated_capacity_ah: float = 0.0,
        motor_pole_pairs: int = 0,
        low_voltage_protection: float = 0.0,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        """
        Args:
            start_time: ms since epoch, defaults to now
            start_voltage: Pack voltage at the start
            rated_voltage: Nominal pack voltage
            rated_capacity_ah: Pack capacity
            motor_pole_pairs: Motor pole pairs at the start
            low_voltage_protection: Controller cut-off voltage
            clock: Millisecond clock
        """
        self._clock = clock
        self.id = uuid.uuid4().hex
        self.phase = TripPhase.ACTIVE

        self.start_time = clock() if start_time is None else start_time
        self.end_time: Optional[float] = None

        self.rated_voltage = rated_voltage
        self.rated_capacity_ah = rated_capacity_ah
        self.motor_pole_pairs = motor_pole_pairs
        self.low_voltage_protection = low_voltage_protection

        # Electrical
        self.start_voltage = start_voltage
        self.end_voltage = start_voltage
        self.voltage = start_voltage
        self.max_voltage = 0.0
        self.min_voltage: Optional[float] = None
        self.max_line_current = 0.0
        self.max_input_power = 0.0
        self.max_input_power_voltage = 0.0
        self.max_input_power_current = 0.0
        self.max_phase_a_current = 0.0
        self.max_phase_b_current = 0.0
        self.max_phase_c_current = 0.0
        self.cumulative_energy_wh = 0.0
        self.avg_power_w = 0.0

        # Motion
        self.max_speed_mps = 0.0
        self.max_rpm = 0.0
        self.reading_count = 0
        self.cumulative_speed_mps = 0.0
        self.distance_m = 0.0
        self.avg_speed_mps = 0.0
        self.estimated_range_m = 0.0

        # GPS
        self.gps_sample_count = 0
        self.gps_cumulative_speed_mps = 0.0
        self.gps_avg_speed_mps = 0.0
        self.gps_max_speed_mps = 0.0

        # Thermal
        self.mos_temperature = 0.0
        self.motor_temperature = 0.0

        # Voltage sag
        self.last_voltage_sag = 0.0
        self.max_voltage_sag = 0.0
        self.max_voltage_sag_current = 0.0
        self.max_voltage_sag_timestamp = 0.0

        self.route: List[RoutePoint] = []

        self._energy = EnergyIntegrator(TimeDeltaTracker())
        self._last_voltage_ema = 0.0
        self._observer: Optional[TripObserver] = None
        self._last_publish = self.start_time

    @property
    def is_active(self) -> bool:
        return self.phase == TripPhase.ACTIVE

    def register_observer(self, callback: TripObserver) -> None:
        """
        Register the live snapshot callback (replaces any previous one).

        Callback signature: callback(summary: TripSummary)
        """
        self._observer = callback

    # Samples

    def record_consumption(self, voltage: float, line_current: float, voltage_ema: float) -> None:
        """Feed one electrical sample into energy, range and electrical maxima"""
        if not self.is_active:
            return

        now = self._clock()
        input_power = voltage * line_current

        energy_wh = self._energy.record_sample(input_power, now)
        self._last_voltage_ema = voltage_ema
        if energy_wh:
            self.cumulative_energy_wh += energy_wh
        self._update_range_estimate(voltage_ema)

        if input_power > self.max_input_power:
            self.max_input_power = input_power
            self.max_input_power_voltage = voltage
            self.max_input_power_current = line_current
        self.max_line_current = max(self.max_line_current, line_current)
        self.max_voltage = max(self.max_voltage, voltage)
        self.min_voltage = voltage if self.min_voltage is None else min(self.min_voltage, voltage)
        self.voltage = voltage
        self.end_voltage = voltage

        self._maybe_publish(now)

    def record_phase_currents(self, phase_a: float, phase_b: float, phase_c: float) -> None:
        """Largest phase current magnitudes seen on each phase"""
        if not self.is_active:
            return
        self.max_phase_a_current = max(self.max_phase_a_current, abs(phase_a))
        self.max_phase_b_current = max(self.max_phase_b_current, abs(phase_b))
        self.max_phase_c_current = max(self.max_phase_c_current, abs(phase_c))

    def record_temperature(self, mos_temperature: float, motor_temperature: float) -> None:
        """Latest controller and motor temperatures"""
        if not self.is_active:
            return
        self.mos_temperature = mos_temperature
        self.motor_temperature = motor_temperature

    def record_speed_and_distance(self, rpm: float, speed_mps: float, delta_distance_m: float) -> None:
        """Feed one speed sample and the distance covered since the last one"""
        if not self.is_active:
            return

        self.max_speed_mps = max(self.max_speed_mps, speed_mps)
        self.max_rpm = max(self.max_rpm, rpm)
        self.reading_count += 1
        self.cumulative_speed_mps += speed_mps
        if math.isfinite(delta_distance_m):
            self.distance_m += delta_distance_m

        self._maybe_publish(self._clock())

    def record_gps_speed(self, speed_mps: float) -> None:
        """GPS ground speed; negative or non-finite readings are ignored"""
        if not self.is_active:
            return
        if speed_mps is None or not math.isfinite(speed_mps) or speed_mps < 0:
            return

        self.gps_sample_count += 1
        self.gps_cumulative_speed_mps += speed_mps
        self.gps_avg_speed_mps = self.gps_cumulative_speed_mps / self.gps_sample_count
        self.gps_max_speed_mps = max(self.gps_max_speed_mps, speed_mps)

        self._maybe_publish(self._clock())

    def record_voltage_sag(self, sag: float, line_current: float, timestamp: float) -> None:
        """Latest sag and the trip's worst one"""
        if not self.is_active:
            return
        self.last_voltage_sag = sag
        if sag > self.max_voltage_sag:
            self.max_voltage_sag = sag
            self.max_voltage_sag_current = line_current
            self.max_voltage_sag_timestamp = timestamp

    def record_route_point(self, point: RoutePoint) -> bool:
        """
        Append a GPS fix to the route.

        Rejected when coordinates are missing or non-finite, when it is
        closer than MIN_ROUTE_SPACING_MS to the previous fix, or when its
        timestamp does not move forward.

        Returns:
            True if the point was kept
        """
        if not self.is_active:
            return False
        if point.latitude is None or point.longitude is None:
            return False
        if not (math.isfinite(point.latitude) and math.isfinite(point.longitude)):
            return False

        if self.route:
            last = self.route[-1].timestamp
            if point.timestamp - last < MIN_ROUTE_SPACING_MS or point.timestamp <= last:
                return False

        self.route.append(point)
        self._maybe_publish(self._clock())
        return True

    def reconcile_energy_with_controller_time(self, raw_total_time: float) -> float:
        """
        Rescale pending energy against the controller uptime counter.

        Returns:
            Correction applied, Wh
        """
        if not self.is_active:
            return 0.0

        correction = self._energy.apply_controller_timestamp(raw_total_time)
        if correction:
            self.cumulative_energy_wh += correction
            self._update_range_estimate(self._last_voltage_ema)
        return correction

    # Derived values

    def calculate_averages(self, end_time: Optional[float] = None) -> None:
        """Distance-based average speed and energy-based average power"""
        if end_time is None:
            end_time = self._clock()
        if self.start_time <= 0:
            return

        seconds = (end_time - self.start_time) / 1000
        hours = seconds / 3600

        self.avg_speed_mps = self.distance_m / seconds if seconds > 0 else 0.0
        self.avg_power_w = self.cumulative_energy_wh / hours if hours > 0 else 0.0

    def end(self) -> None:
        """Finalize: stamp the end time (if unset) and recompute averages"""
        if self.phase == TripPhase.ENDED:
            return
        if self.end_time is None:
            self.end_time = self._clock()
        self.calculate_averages(self.end_time)
        self.phase = TripPhase.ENDED
        logger.info(
            f"Trip {self.id} ended: {self.distance_m / 1000:.2f} km, "
            f"{self.cumulative_energy_wh:.1f} Wh"
        )

    @property
    def max_phase_current(self) -> float:
        return max(self.max_phase_a_current, self.max_phase_b_current, self.max_phase_c_current)

    @property
    def wh_per_km(self) -> float:
        if self.distance_m <= 0:
            return 0.0
        return self.cumulative_energy_wh / (self.distance_m / 1000)

    def summary(self) -> TripSummary:
        """Display-ready snapshot"""
        return TripSummary(
            trip_id=self.id,
            distance_km=self.distance_m / 1000,
            remaining_km=self.estimated_range_m / 1000,
            energy_wh=self.cumulative_energy_wh,
            max_speed_kmh=self.max_speed_mps * MPS_TO_KMH,
            avg_speed_kmh=self.avg_speed_mps * MPS_TO_KMH,
            avg_power_w=self.avg_power_w,
            wh_per_km=self.wh_per_km,
            start_time=self.start_time,
            max_voltage_sag=self.max_voltage_sag,
            max_phase_current=self.max_phase_current,
            gps_max_speed_kmh=self.gps_max_speed_mps * MPS_TO_KMH,
            gps_avg_speed_kmh=self.gps_avg_speed_mps * MPS_TO_KMH,
            gps_sample_count=self.gps_sample_count,
            timestamp=self._clock(),
        )

    def to_record(self) -> Dict[str, Any]:
        """JSON-serializable record of the whole trip"""
        return {
            "id": self.id,
            "phase": self.phase.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "rated_voltage": self.rated_voltage,
            "rated_capacity_ah": self.rated_capacity_ah,
            "motor_pole_pairs": self.motor_pole_pairs,
            "low_voltage_protection": self.low_voltage_protection,
            "start_voltage": self.start_voltage,
            "end_voltage": self.end_voltage,
            "max_voltage": self.max_voltage,
            "min_voltage": self.min_voltage,
            "max_line_current": self.max_line_current,
            "max_input_power": self.max_input_power,
            "max_input_power_voltage": self.max_input_power_voltage,
            "max_input_power_current": self.max_input_power_current,
            "max_phase_a_current": self.max_phase_a_current,
            "max_phase_b_current": self.max_phase_b_current,
            "max_phase_c_current": self.max_phase_c_current,
            "cumulative_energy_wh": self.cumulative_energy_wh,
            "avg_power_w": self.avg_power_w,
            "max_speed_mps": self.max_speed_mps,
            "max_rpm": self.max_rpm,
            "reading_count": self.reading_count,
            "cumulative_speed_mps": self.cumulative_speed_mps,
            "distance_m": self.distance_m,
            "avg_speed_mps": self.avg_speed_mps,
            "estimated_range_m": self.estimated_range_m,
            "gps_sample_count": self.gps_sample_count,
            "gps_avg_speed_mps": self.gps_avg_speed_mps,
            "gps_max_speed_mps": self.gps_max_speed_mps,
            "mos_temperature": self.mos_temperature,
            "motor_temperature": self.motor_temperature,
            "last_voltage_sag": self.last_voltage_sag,
            "max_voltage_sag": self.max_voltage_sag,
            "max_voltage_sag_current": self.max_voltage_sag_current,
            "max_voltage_sag_timestamp": self.max_voltage_sag_timestamp,
            "route": [asdict(point) for point in self.route],
        }

    # Internals

    def _update_range_estimate(self, voltage_ema: float) -> None:
        wh_per_meter = self.cumulative_energy_wh / self.distance_m if self.distance_m > 0 else 0.0
        self.estimated_range_m = estimate_range_m(
            self.rated_voltage,
            voltage_ema,
            self.rated_capacity_ah,
            wh_per_meter,
            self.low_voltage_protection,
        )

    def _maybe_publish(self, now: float) -> None:
        if self._observer is None:
            return
        if now - self._last_publish <= OBSERVER_INTERVAL_MS:
            return

        self._last_publish = now
        self.calculate_averages(now)
        try:
            self._observer(self.summary())
        except Exception as e:
            logger.error(f"Error in trip observer: {e}", exc_info=True)
