"""
Core data types for the Fardriver telemetry decoder.

Everything that flows between the dispatcher, the controller state, the
trip aggregator and the session layer, fully typed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import time


def now_ms() -> float:
    """Wall clock in milliseconds"""
    return time.time() * 1000.0


class GearMode(Enum):
    """Gear / power mode shown on the dash, valued by its one-letter code"""
    CRUISE = "C"
    D_LOW = "1"
    D_MEDIUM = "2"
    D_HIGH = "3"
    BOOST = "B"
    REVERSE = "R"
    NEUTRAL = "N"

    @property
    def label(self) -> str:
        """Long name of the mode"""
        labels = {
            GearMode.CRUISE: "Cruise",
            GearMode.D_LOW: "Drive",
            GearMode.D_MEDIUM: "Drive",
            GearMode.D_HIGH: "Drive",
            GearMode.BOOST: "Boost",
            GearMode.REVERSE: "Reverse",
            GearMode.NEUTRAL: "Neutral",
        }
        return labels[self]


class TripPhase(Enum):
    """Trip lifecycle. A state with no trip attached is the implicit idle phase."""
    ACTIVE = "active"
    ENDED = "ended"


class SessionState(Enum):
    """ControllerSession state machine states"""
    DISCONNECTED = "disconnected"  # No link to the controller
    CONNECTING = "connecting"      # Transport connect in flight
    STREAMING = "streaming"        # Notifications flowing into the dispatcher


@dataclass(frozen=True)
class Frame:
    """
    One validated 16-byte frame, already resolved to its field group.

    Built by the FrameDispatcher after length and marker checks, so the
    assertion below only fires on programming errors.
    """
    raw: bytes
    group_id: int

    def __post_init__(self) -> None:
        """Validate size"""
        assert len(self.raw) == 16, f"frame must be 16 bytes, got {len(self.raw)}"

    @property
    def selector(self) -> int:
        """Mode / id byte"""
        return self.raw[1]

    @property
    def payload(self) -> bytes:
        """The 12 data bytes between selector and trailer"""
        return self.raw[2:14]

    @property
    def trailer(self) -> int:
        """Trailing pair, high byte first"""
        return (self.raw[14] << 8) | self.raw[15]

    @property
    def is_flash_read(self) -> bool:
        """Top two selector bits are 10"""
        return (self.raw[1] & 0xC0) == 0x80


@dataclass(frozen=True)
class Fault:
    """One entry of the controller fault catalog"""
    code: int
    title: str
    description: str

    def __str__(self) -> str:
        return f"{self.code}. {self.title}"


@dataclass
class SpeedReading:
    """Speed derived from motor RPM and tire geometry"""
    mps: float = 0.0
    kmh: float = 0.0
    mph: float = 0.0
    delta_distance_m: float = 0.0


@dataclass
class TireConfig:
    """Tire and rim geometry as entered by the rider"""
    width_mm: float = 0.0           # Tread width
    aspect_ratio: float = 0.0       # Sidewall height, % of width
    rim_radius_in: float = 0.0      # Half the rim diameter

    def __post_init__(self) -> None:
        """Validate ranges"""
        assert self.width_mm >= 0, f"width_mm out of range: {self.width_mm}"
        assert self.aspect_ratio >= 0, f"aspect_ratio out of range: {self.aspect_ratio}"
        assert self.rim_radius_in >= 0, f"rim_radius_in out of range: {self.rim_radius_in}"

    @classmethod
    def from_rim_diameter(cls, width_mm: float, aspect_ratio: float,
                          rim_diameter_in: float) -> "TireConfig":
        """Build from the rim diameter printed on the tire"""
        return cls(width_mm=width_mm, aspect_ratio=aspect_ratio,
                   rim_radius_in=rim_diameter_in / 2)

    @property
    def is_complete(self) -> bool:
        """All three dimensions known"""
        return self.width_mm > 0 and self.aspect_ratio > 0 and self.rim_radius_in > 0


@dataclass
class RoutePoint:
    """One GPS fix inside a trip, with a telemetry snapshot"""
    timestamp: float                         # ms since epoch
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed_mps: Optional[float] = None
    line_current: Optional[float] = None
    voltage: Optional[float] = None
    input_power: Optional[float] = None
    mos_temperature: Optional[float] = None
    motor_temperature: Optional[float] = None
    voltage_sag: Optional[float] = None


@dataclass
class TripSummary:
    """
    Display-ready snapshot of a trip.

    This is what trip observers receive. Units are metric; convert at the
    presentation layer if miles are wanted.
    """
    trip_id: str
    distance_km: float = 0.0
    remaining_km: float = 0.0
    energy_wh: float = 0.0
    max_speed_kmh: float = 0.0
    avg_speed_kmh: float = 0.0
    avg_power_w: float = 0.0
    wh_per_km: float = 0.0
    start_time: float = 0.0
    max_voltage_sag: float = 0.0
    max_phase_current: float = 0.0
    gps_max_speed_kmh: float = 0.0
    gps_avg_speed_kmh: float = 0.0
    gps_sample_count: int = 0
    timestamp: float = field(default_factory=now_ms)


@dataclass
class SessionConfig:
    """Configuration for the ControllerSession"""
    connect_timeout: float = 10.0       # Seconds before a BLE connect is abandoned
    end_trip_on_disconnect: bool = True # Finalize and hand off the trip when the link drops
