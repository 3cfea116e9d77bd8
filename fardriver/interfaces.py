"""
Core interfaces (protocols) for pluggable components.

The decoding core never talks to a Bluetooth stack directly; anything
that can deliver 16-byte notifications satisfies Transport. Finished
trips leave through a TripSink.
"""

from typing import Any, Callable, Dict, Optional, Protocol


NotificationCallback = Callable[[bytes], Any]
DisconnectCallback = Callable[[], Any]


class Transport(Protocol):
    """
    Interface for controller links (BLE, replay, mock, ...).
    """

    async def connect(self, address: str) -> bool:
        """
        Establish the link.

        Args:
            address: Device address (BLE MAC or platform UUID)

        Returns:
            True if connected
        """
        ...

    async def disconnect(self) -> None:
        """Close the link. Safe to call when not connected."""
        ...

    async def start_notifications(self, callback: NotificationCallback) -> bool:
        """
        Start delivering raw frames.

        Args:
            callback: Called once per notification with its bytes

        Returns:
            True if notifications are flowing
        """
        ...

    def set_disconnect_callback(self, callback: Optional[DisconnectCallback]) -> None:
        """
        Register a callback for link loss not requested through disconnect().
        """
        ...

    @property
    def is_connected(self) -> bool:
        ...


class TripSink(Protocol):
    """Destination for finished trip records"""

    def save_trip(self, record: Dict[str, Any]) -> None:
        """
        Persist one trip.

        Args:
            record: CurrentTrip.to_record() output (JSON-serializable)
        """
        ...
