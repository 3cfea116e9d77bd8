"""
ControllerState - the live telemetry record for one connected controller.

Decoders write through update(), which is also where field subscribers
get notified. On top of the raw fields this tracks smoothed and resting
voltage, voltage sag, wheel speed and odometer, and owns at most one
active CurrentTrip.
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Sequence

from .trip import CurrentTrip
from .types import Fault, GearMode, RoutePoint, SpeedReading, TireConfig, now_ms


logger = logging.getLogger(__name__)

FLASH_MEMORY_SIZE = 160
SERIAL_BUFFER_SIZE = 20

VOLTAGE_EMA_ALPHA = 0.15
RESTING_VOLTAGE_ALPHA = 0.1
RESTING_CURRENT_THRESHOLD = 5.0   # A, at or below counts as resting
LOAD_CURRENT_THRESHOLD = 20.0     # A, at or above counts as loaded

POLE_PAIR_CORRECTION_THRESHOLD = 16

INCH_TO_M = 0.0254
MM_PER_INCH = 25.4
MPS_TO_KMH = 3.6
MPS_TO_MPH = 2.23694

FieldObserver = Callable[[Any, Any], Any]


def correct_rpm(raw_rpm: float, pole_pairs: int) -> float:
    """
    Hall-sensor RPM correction.

    Controllers configured with 16 or more pole pairs report RPM scaled
    by pole_pairs / 4.
    """
    if pole_pairs >= POLE_PAIR_CORRECTION_THRESHOLD:
        return raw_rpm * 4 / pole_pairs
    return raw_rpm


def wheel_speed_mps(width_mm: float, aspect_ratio: float, rim_radius_in: float,
                    gear_ratio: float, rpm: float) -> float:
    """
    Ground speed from motor RPM through the gear reduction and tire.

    Args:
        width_mm: Tire width
        aspect_ratio: Sidewall height as % of width
        rim_radius_in: Rim radius
        gear_ratio: Motor turns per wheel turn
        rpm: Motor RPM (already corrected)

    Returns:
        Speed in m/s
    """
    sidewall_in = width_mm * (aspect_ratio / 100) / MM_PER_INCH
    radius_m = (rim_radius_in + sidewall_in) * INCH_TO_M
    circumference_m = radius_m * 2 * math.pi
    return circumference_m * rpm / gear_ratio / 60


class ControllerState:
    """
    Mutable telemetry record with per-field change subscriptions.

    Subscribers are keyed by field name, one callback per field:
    callback(new_value, old_value). They fire synchronously from
    update() and only when the value actually changed.
    """

    def __init__(self, clock: Callable[[], float] = now_ms) -> None:
        """
        Args:
            clock: Millisecond clock used for speed, sag and trip timestamps
        """
        self._clock = clock
        self._observers: Dict[str, FieldObserver] = {}
        self._ending_trip = False

        self.flash_memory: List[int] = [0] * FLASH_MEMORY_SIZE
        self.frame_reception_count = 0

        # Identity and firmware
        self.is_bms_enabled = False
        self.controller_version_major = "0"
        self.controller_version_minor = "0"
        self.hardware_version = ""
        self.software_version = 0
        self.software_version_major: Any = 0
        self.software_version_minor = 0
        self.custom_code_primary = " "
        self.custom_code_secondary = " "
        self.custom_data = ""
        self.special_code = " "
        self.parameter_index = 0
        self.parameter_index_primary = "0"
        self.parameter_index_secondary = "_"
        self.serial_buffer: List[int] = [32] * SERIAL_BUFFER_SIZE
        self.serial_reception_status = 0
        self.serial_number = ""
        self.focused_serial_number = ""
        self.has_serial_number = 0
        self.is_vcu_frame_received = False
        self.is_new_blue_key_enabled = False

        # Motor and battery configuration
        self.motor_pole_pairs = 0
        self.is_direction_toggled = False
        self.follow_configuration = 0
        self.park_configuration = 0
        self.rated_voltage = 0.0
        self.rated_power = 0
        self.rated_power_percentage = 0.0
        self.rated_speed = 0
        self.max_speed = 0
        self.mid_speed = 0
        self.low_speed = 0
        self.high_speed_name_value = 0.0
        self.mid_speed_name_value = 0.0
        self.max_line_current = 0.0
        self.max_phase_current = 0.0
        self.custom_max_line_current = 0.0
        self.custom_max_phase_current = 0.0
        self.enabled_max_line_current = 0.0
        self.enabled_max_phase_current = 0.0
        self.stop_back_current = 0.0
        self.low_speed_line_current = 0.0
        self.mid_speed_line_current = 0.0
        self.low_speed_phase_current = 0.0
        self.mid_speed_phase_current = 0.0
        self.battery_rated_capacity_ah = 0
        self.low_voltage_protection = 0.0
        self.low_voltage_restore = 0.0
        self.hall_sensor_type = 0
        self.series_configuration = 0
        self.general_parameter0 = 0
        self.en_modify = 0  # bits 12-13 of general_parameter0, meaning unknown
        self.acceleration_coefficient = 0
        self.throttle_insert = 0
        self.minutes = 0
        self.hours = 0

        # Relay configuration bits
        self.relay_delay = 0
        self.is_brake_control_toggled = False
        self.is_left_turn_toggled = False
        self.is_parking_gear_toggled = False
        self.is_auto_back_protection_toggled = False
        self.is_high_speed_toggled = False
        self.is_push_assist_toggled = False
        self.is_force_drive_enabled = False
        self.is_gear_memory_enabled = False

        # Live electrical
        self.voltage = 0.0
        self.line_current = 0.0
        self.input_power = 0.0
        self.throttle_depth = 0
        self.throttle_voltage = 0.0
        self.phase_a_current = 0.0
        self.phase_b_current = 0.0
        self.phase_c_current = 0.0
        self.soc: Optional[float] = None
        self.avg_power = 0
        self.avg_speed = 0

        # Thermal and global status
        self.motor_temperature = 0
        self.mos_temperature = 0
        self.global_state1 = 0
        self.global_state2 = 0
        self.global_state3 = 0
        self.global_state4 = 0
        self.weak_status = ""
        self.learn_status = ""
        self.motor_status = ""
        self.motor_stop_state = 0
        self.motor_running_state = 0

        # Main status
        self.gear = 0
        self.xs_control = 0
        self.roll = 0
        self.pass_ok = 0
        self.comp_phone_ok = False
        self.function_state = 0
        self.motor_cutoff_applied = False
        self.modulation = 0.0
        self.rpm = 0
        self.gear_mode: Optional[GearMode] = None
        self.controller_faults: List[Fault] = []
        self.clean_fault_frames = 0
        self.alarm_active = False

        # Controller counters
        self.controller_distance_low = 0
        self.controller_distance = 0
        self.crc_info_c0 = 0
        self.crc_info_c1 = 0
        self.total_time = 0

        # Unidentified payloads kept verbatim, keyed by field group
        self.opaque_payloads: Dict[int, bytes] = {}

        # Tire, gear and speed
        self.wheel_width = 0.0
        self.wheel_ratio = 0.0
        self.wheel_radius = 0.0
        self.rate_ratio = 0
        self.motor_gear_ratio = 0.0
        self.prefer_gps_speed = False
        self.gps_speed_mps: Optional[float] = None
        self.calculated_speed = SpeedReading()
        self.odometer_m = 0.0
        self.last_distance_update_time: Optional[float] = None

        # Voltage smoothing and sag
        self.voltage_ema = 0.0
        self.resting_voltage_ema = 0.0
        self.voltage_sag = 0.0
        self.max_voltage_sag = 0.0
        self.max_voltage_sag_current = 0.0
        self.max_voltage_sag_timestamp = 0.0

        self.current_trip: Optional[CurrentTrip] = None

        self._field_names = frozenset(name for name in vars(self) if not name.startswith("_"))

    # Field access and subscriptions

    @property
    def field_names(self) -> frozenset:
        return self._field_names

    def update(self, **changes: Any) -> None:
        """
        Set one or more fields and notify their subscribers.

        Raises:
            AttributeError: Unknown field name
        """
        for name, value in changes.items():
            if name not in self._field_names:
                raise AttributeError(f"ControllerState has no field '{name}'")
            old_value = getattr(self, name)
            setattr(self, name, value)
            if old_value != value:
                self._notify(name, value, old_value)

    def subscribe(self, field_name: str, callback: FieldObserver) -> None:
        """
        Watch one field. Replaces any existing subscriber for that field.

        Callback signature: callback(new_value, old_value)

        Raises:
            AttributeError: Unknown field name
        """
        if field_name not in self._field_names:
            raise AttributeError(f"ControllerState has no field '{field_name}'")
        self._observers[field_name] = callback

    def unsubscribe(self, field_name: str) -> None:
        """Stop watching a field (no-op if nobody was)"""
        self._observers.pop(field_name, None)

    def unsubscribe_all(self) -> None:
        self._observers.clear()

    def _notify(self, name: str, new_value: Any, old_value: Any) -> None:
        callback = self._observers.get(name)
        if callback is None:
            return
        try:
            callback(new_value, old_value)
        except Exception as e:
            logger.error(f"Error in '{name}' observer: {e}", exc_info=True)

    def write_flash(self, offset: int, words: Sequence[int]) -> None:
        """Mirror raw register words into the flash shadow"""
        self.flash_memory[offset:offset + len(words)] = list(words)

    # Injected configuration

    def set_gear_ratio(self, value: Optional[float]) -> None:
        if value:
            self.update(motor_gear_ratio=value)

    def set_wheel_width(self, value: Optional[float]) -> None:
        if value:
            self.update(wheel_width=value)

    def set_wheel_ratio(self, value: Optional[float]) -> None:
        if value:
            self.update(wheel_ratio=value)

    def set_wheel_radius(self, value: Optional[float]) -> None:
        if value:
            self.update(wheel_radius=value)

    def set_battery(self, rated_voltage: Optional[float] = None,
                    capacity_ah: Optional[float] = None) -> None:
        if rated_voltage:
            self.update(rated_voltage=rated_voltage)
        if capacity_ah:
            self.update(battery_rated_capacity_ah=capacity_ah)

    def apply_config(
        self,
        tire: Optional[TireConfig] = None,
        gear_ratio: Optional[float] = None,
        rated_voltage: Optional[float] = None,
        rated_capacity_ah: Optional[float] = None,
        prefer_gps_speed: Optional[bool] = None,
    ) -> None:
        """
        Inject rider-supplied configuration. Unset (falsy) values are ignored,
        so controller-reported values stay in place.
        """
        if tire is not None:
            self.set_wheel_width(tire.width_mm)
            self.set_wheel_ratio(tire.aspect_ratio)
            self.set_wheel_radius(tire.rim_radius_in)
        self.set_gear_ratio(gear_ratio)
        self.set_battery(rated_voltage, rated_capacity_ah)
        if prefer_gps_speed is not None:
            self.update(prefer_gps_speed=prefer_gps_speed)

    @property
    def has_tire_config(self) -> bool:
        """Everything the speed calculation needs from the rider or controller"""
        return bool(self.wheel_ratio and self.wheel_radius and self.wheel_width and self.motor_gear_ratio)

    # Voltage

    def smooth_voltage(self, voltage: float) -> None:
        """Always-on voltage EMA; seeded with the first reading"""
        ema = self.voltage_ema or voltage
        self.update(voltage_ema=voltage * VOLTAGE_EMA_ALPHA + ema * (1 - VOLTAGE_EMA_ALPHA))

    def update_voltage_sag(self, voltage: float, line_current: float) -> float:
        """
        Track resting voltage and sag under load.

        Resting voltage only moves while the pack is (nearly) unloaded.
        Sag is measured only under real load and against an existing
        resting baseline; otherwise it reads zero.

        Returns:
            Instantaneous sag in volts
        """
        current = abs(line_current)

        if current <= RESTING_CURRENT_THRESHOLD:
            resting = self.resting_voltage_ema or voltage
            self.update(resting_voltage_ema=voltage * RESTING_VOLTAGE_ALPHA
                        + resting * (1 - RESTING_VOLTAGE_ALPHA))

        if current >= LOAD_CURRENT_THRESHOLD and self.resting_voltage_ema:
            sag = max(self.resting_voltage_ema - voltage, 0.0)
            timestamp = self._clock()
            self.update(voltage_sag=sag)

            if sag > self.max_voltage_sag:
                self.update(
                    max_voltage_sag=sag,
                    max_voltage_sag_current=line_current,
                    max_voltage_sag_timestamp=timestamp,
                )

            if self.current_trip is not None:
                self.current_trip.record_voltage_sag(sag, line_current, timestamp)
            return sag

        self.update(voltage_sag=0.0)
        return 0.0

    # Speed and distance

    @property
    def corrected_rpm(self) -> float:
        return correct_rpm(self.rpm, self.motor_pole_pairs)

    @property
    def can_calculate_speed(self) -> bool:
        return self.motor_gear_ratio > 0 and self.wheel_radius > 0 and self.motor_pole_pairs > 0

    def calculate_speed_and_distance(self, rpm: float, now: Optional[float] = None) -> SpeedReading:
        """
        Speed from RPM, and distance since the previous call.

        The first call only establishes the time baseline.

        Args:
            rpm: Corrected motor RPM
            now: ms timestamp, defaults to the state clock
        """
        if now is None:
            now = self._clock()

        speed_mps = wheel_speed_mps(self.wheel_width, self.wheel_ratio, self.wheel_radius,
                                    self.motor_gear_ratio, rpm)

        delta_m = 0.0
        if self.last_distance_update_time is not None:
            delta_m = speed_mps * (now - self.last_distance_update_time) / 1000
            self.update(odometer_m=self.odometer_m + delta_m)
        self.last_distance_update_time = now

        reading = SpeedReading(
            mps=speed_mps,
            kmh=speed_mps * MPS_TO_KMH,
            mph=speed_mps * MPS_TO_MPH,
            delta_distance_m=delta_m,
        )
        self.update(calculated_speed=reading)
        return reading

    @property
    def display_speed_kmh(self) -> float:
        """GPS speed when preferred and available, wheel speed otherwise"""
        if self.prefer_gps_speed and self.gps_speed_mps is not None:
            return self.gps_speed_mps * MPS_TO_KMH
        return self.calculated_speed.kmh

    # GPS

    def record_gps_sample(self, speed_mps: Optional[float]) -> None:
        """GPS ground speed from the phone; invalid readings are ignored"""
        if speed_mps is None or not math.isfinite(speed_mps) or speed_mps < 0:
            return
        self.update(gps_speed_mps=speed_mps)
        if self.current_trip is not None:
            self.current_trip.record_gps_speed(speed_mps)

    def record_location(
        self,
        latitude: float,
        longitude: float,
        timestamp: Optional[float] = None,
        altitude: Optional[float] = None,
        heading: Optional[float] = None,
        speed_mps: Optional[float] = None,
    ) -> bool:
        """
        Add a GPS fix to the active trip's route, with a telemetry snapshot.

        Returns:
            True if the trip kept the point
        """
        trip = self.current_trip
        if trip is None:
            return False

        point = RoutePoint(
            timestamp=self._clock() if timestamp is None else timestamp,
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            heading=heading,
            speed_mps=speed_mps,
            line_current=self.line_current,
            voltage=self.voltage,
            input_power=self.input_power,
            mos_temperature=self.mos_temperature,
            motor_temperature=self.motor_temperature,
            voltage_sag=trip.last_voltage_sag,
        )
        accepted = trip.record_route_point(point)
        self.record_gps_sample(speed_mps)
        return accepted

    # Trip lifecycle

    def start_trip_if_needed(self) -> Optional[CurrentTrip]:
        """
        Open a trip the first time current flows with no trip active.

        Returns:
            The newly created trip, or None
        """
        if self._ending_trip or self.current_trip is not None or self.line_current <= 0:
            return None

        trip = CurrentTrip(
            start_time=self._clock(),
            start_voltage=self.voltage,
            rated_voltage=self.rated_voltage,
            rated_capacity_ah=self.battery_rated_capacity_ah,
            motor_pole_pairs=self.motor_pole_pairs,
            low_voltage_protection=self.low_voltage_protection,
            clock=self._clock,
        )
        logger.info(f"Trip {trip.id} started at {self.voltage:.1f}V")
        self.update(current_trip=trip)
        return trip

    def end_trip(self) -> Optional[CurrentTrip]:
        """
        Finalize and detach the active trip.

        Observers fired while detaching cannot start a new trip until
        this call returns.

        Returns:
            The ended trip, or None if there was none (or an end is
            already in progress)
        """
        if self._ending_trip or self.current_trip is None:
            return None

        self._ending_trip = True
        try:
            trip = self.current_trip
            trip.end()
            self.update(current_trip=None)
            return trip
        finally:
            self._ending_trip = False

    def reconcile_energy_with_controller_time(self, raw_total_time: float) -> float:
        if self.current_trip is None:
            return 0.0
        return self.current_trip.reconcile_energy_with_controller_time(raw_total_time)
