"""
Fardriver controller telemetry.

Decodes the 16-byte BLE frames of Fardriver motor controllers into a
live ControllerState and aggregates rides into trips.
"""

from .dispatcher import FrameDispatcher
from .energy import EnergyIntegrator
from .session import ControllerSession
from .soc import SoCEstimator
from .state import ControllerState
from .timing import TimeDeltaTracker
from .trip import CurrentTrip
from .types import (
    Fault,
    Frame,
    GearMode,
    RoutePoint,
    SessionConfig,
    SessionState,
    SpeedReading,
    TireConfig,
    TripPhase,
    TripSummary,
)

__version__ = "0.1.0"

__all__ = [
    "ControllerSession",
    "ControllerState",
    "CurrentTrip",
    "EnergyIntegrator",
    "Fault",
    "Frame",
    "FrameDispatcher",
    "GearMode",
    "RoutePoint",
    "SessionConfig",
    "SessionState",
    "SoCEstimator",
    "SpeedReading",
    "TimeDeltaTracker",
    "TireConfig",
    "TripPhase",
    "TripSummary",
]
