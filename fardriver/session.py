"""
ControllerSession - connection lifecycle around one controller.

Wires a Transport's notifications into a FrameDispatcher, tracks the
link state, and hands finished trips to the registered sinks when the
link goes away (on request or not).
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from .dispatcher import FrameDispatcher
from .interfaces import Transport, TripSink
from .state import ControllerState
from .trip import CurrentTrip
from .types import SessionConfig, SessionState


logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], Any]


class ControllerSession:
    """
    DISCONNECTED -> CONNECTING -> STREAMING -> DISCONNECTED.

    Frame decoding itself is synchronous and happens inside the
    transport's notification callback.
    """

    def __init__(
        self,
        transport: Transport,
        state: Optional[ControllerState] = None,
        config: Optional[SessionConfig] = None,
        dispatcher: Optional[FrameDispatcher] = None,
    ) -> None:
        """
        Args:
            transport: Link to the controller
            state: State to decode into (new one if omitted)
            config: Session configuration
            dispatcher: Dispatcher to use (built around state if omitted)
        """
        self.transport = transport
        self.state = state if state is not None else ControllerState()
        self.config = config or SessionConfig()
        self.dispatcher = dispatcher or FrameDispatcher(self.state)

        self.session_state = SessionState.DISCONNECTED
        self.last_trip: Optional[CurrentTrip] = None

        self._state_callbacks: List[StateCallback] = []
        self._trip_sinks: List[TripSink] = []

    def add_state_callback(self, callback: StateCallback) -> None:
        """
        Register callback for state changes.

        Callback signature: callback(old_state, new_state)
        """
        self._state_callbacks.append(callback)

    def add_trip_sink(self, sink: TripSink) -> None:
        """Register a destination for finished trip records"""
        self._trip_sinks.append(sink)

    @property
    def is_streaming(self) -> bool:
        return self.session_state == SessionState.STREAMING

    async def start(self, address: str) -> bool:
        """
        Connect and start streaming telemetry into the state.

        Args:
            address: Controller address

        Returns:
            True once notifications are flowing
        """
        if self.session_state != SessionState.DISCONNECTED:
            logger.warning(f"Session already {self.session_state.value}")
            return self.is_streaming

        self._transition_to(SessionState.CONNECTING)

        try:
            connected = await asyncio.wait_for(
                self.transport.connect(address),
                timeout=self.config.connect_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Connection to {address} timed out after {self.config.connect_timeout}s")
            connected = False

        if not connected:
            self._transition_to(SessionState.DISCONNECTED)
            return False

        self.transport.set_disconnect_callback(self.handle_disconnect)
        if not await self.transport.start_notifications(self.dispatcher.parse_packet):
            logger.error("Could not start telemetry notifications")
            await self.transport.disconnect()
            self._transition_to(SessionState.DISCONNECTED)
            return False

        self._transition_to(SessionState.STREAMING)
        return True

    async def stop(self) -> Optional[CurrentTrip]:
        """
        End the active trip and disconnect.

        Returns:
            The trip that was ended, if any
        """
        trip = self._finish_trip()
        self.transport.set_disconnect_callback(None)
        await self.transport.disconnect()
        self._transition_to(SessionState.DISCONNECTED)
        return trip

    def handle_disconnect(self) -> None:
        """Link lost without a stop() request"""
        logger.warning("Controller disconnected unexpectedly")
        if self.config.end_trip_on_disconnect:
            self._finish_trip()
        self._transition_to(SessionState.DISCONNECTED)

    def _finish_trip(self) -> Optional[CurrentTrip]:
        trip = self.state.end_trip()
        if trip is None:
            return None

        self.last_trip = trip
        record = trip.to_record()
        for sink in self._trip_sinks:
            try:
                sink.save_trip(record)
            except Exception as e:
                logger.error(f"Error saving trip {trip.id}: {e}", exc_info=True)
        return trip

    def _transition_to(self, new_state: SessionState) -> None:
        """
        Transition to new state.

        Args:
            new_state: State to transition to
        """
        if new_state == self.session_state:
            return

        old_state = self.session_state
        logger.info(f"State transition: {old_state.value} -> {new_state.value}")
        self.session_state = new_state

        for callback in self._state_callbacks:
            try:
                callback(old_state, new_state)
            except Exception as e:
                logger.error(f"Error in state callback: {e}", exc_info=True)
