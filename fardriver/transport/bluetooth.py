"""
Bluetooth Transport - Fardriver BLE link over Bleak.

The controller exposes a single FFE0 service; telemetry arrives as
16-byte notifications on FFEC. No pairing or encryption is involved.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from ..interfaces import DisconnectCallback, NotificationCallback


logger = logging.getLogger(__name__)

FARDRIVER_SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
FARDRIVER_NOTIFY_CHAR_UUID = "0000ffec-0000-1000-8000-00805f9b34fb"

# Advertised name prefixes seen on Fardriver BLE dongles
FARDRIVER_DEVICE_PREFIXES = ["FarDriver", "FD", "YuanQu"]


async def scan(duration: float = 10.0, filter_fardriver: bool = True) -> List[Tuple[str, str]]:
    """
    Scan for BLE devices.

    Args:
        duration: Scan duration in seconds
        filter_fardriver: Only keep devices that advertise the FFE0 service
            or whose name looks like a controller

    Returns:
        List of (address, name) tuples
    """
    discovered = await BleakScanner.discover(timeout=duration, return_adv=True)

    results = []
    for device, adv in discovered.values():
        name = device.name or adv.local_name or "Unknown"
        if filter_fardriver and not _looks_like_fardriver(name, adv.service_uuids):
            continue
        results.append((device.address, name))
    return results


def _looks_like_fardriver(name: str, service_uuids: List[str]) -> bool:
    if FARDRIVER_SERVICE_UUID in (uuid.lower() for uuid in service_uuids):
        return True
    return any(name.lower().startswith(p.lower()) for p in FARDRIVER_DEVICE_PREFIXES)


class BluetoothTransport:
    """
    Transport adapter for a Fardriver controller.

    Wraps BleakClient to satisfy the Transport protocol.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        """
        Args:
            timeout: Connection timeout in seconds
        """
        self._timeout = timeout
        self._client: Optional[BleakClient] = None
        self._disconnect_callback: Optional[DisconnectCallback] = None
        self._closing = False

    async def connect(self, address: str) -> bool:
        """
        Connect to the controller.

        Args:
            address: BLE MAC address (or CoreBluetooth UUID on macOS)

        Returns:
            True if connected
        """
        logger.info(f"Connecting to controller: {address}")
        self._closing = False
        try:
            self._client = BleakClient(
                address,
                timeout=self._timeout,
                disconnected_callback=self._on_disconnected,
            )
            await self._client.connect()
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Connection failed: {e}", exc_info=True)
            self._client = None
            return False

        logger.info("Connected successfully")
        return self._client.is_connected

    async def disconnect(self) -> None:
        """Disconnect from the controller"""
        if self._client is None:
            return

        self._closing = True
        try:
            if self._client.is_connected:
                await self._client.stop_notify(FARDRIVER_NOTIFY_CHAR_UUID)
                await self._client.disconnect()
        except BleakError as e:
            logger.error(f"Disconnect error: {e}", exc_info=True)
        finally:
            self._client = None
            logger.info("Disconnected")

    async def start_notifications(self, callback: NotificationCallback) -> bool:
        """
        Subscribe to the telemetry characteristic.

        Args:
            callback: Called with each notification's bytes
        """
        if not self.is_connected:
            logger.warning("Cannot start notifications - not connected")
            return False

        service = self._client.services.get_service(FARDRIVER_SERVICE_UUID)
        if service is None:
            logger.error(f"Service {FARDRIVER_SERVICE_UUID} not found on device")
            return False

        def handler(_characteristic, data: bytearray) -> None:
            callback(bytes(data))

        try:
            await self._client.start_notify(FARDRIVER_NOTIFY_CHAR_UUID, handler)
        except BleakError as e:
            logger.error(f"Failed to start notifications: {e}", exc_info=True)
            return False

        logger.info("Telemetry notifications started")
        return True

    def set_disconnect_callback(self, callback: Optional[DisconnectCallback]) -> None:
        self._disconnect_callback = callback

    def _on_disconnected(self, _client: BleakClient) -> None:
        if self._closing:
            return
        logger.warning("Controller link lost")
        if self._disconnect_callback is not None:
            try:
                self._disconnect_callback()
            except Exception as e:
                logger.error(f"Error in disconnect callback: {e}", exc_info=True)

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected
