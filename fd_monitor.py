#!/usr/bin/env python3
"""
Fardriver Monitor - live, replayed or simulated controller telemetry.

Usage:
    python fd_monitor.py --address AA:BB:CC:DD:EE:FF   # Live over BLE
    python fd_monitor.py --replay capture.txt          # Replay hex frames
    python fd_monitor.py --demo                        # Canned ride, no hardware
    python fd_monitor.py --scan                        # Find controllers
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fardriver.session import ControllerSession
from fardriver.state import ControllerState
from fardriver.transport import MockTransport, RideScripts
from fardriver.trip import CurrentTrip
from fd_config import FdConfig
from fd_utils import read_frames


logger = logging.getLogger(__name__)

STATUS_EVERY = 20  # frames


def setup_logging(verbose: bool = False) -> None:
    """Configure logging"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )


class JsonFileTripSink:
    """Writes each finished trip record to a JSON file"""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def save_trip(self, record: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(record, f, indent=2)
        logger.info(f"Trip {record['id']} written to {self.path}")


def format_status(state: ControllerState) -> str:
    """One-line dashboard"""
    soc = f"{state.soc:5.1f}%" if state.soc is not None else "  n/a "
    gear = state.gear_mode.value if state.gear_mode else "-"
    faults = ", ".join(str(f) for f in state.controller_faults) or "none"
    return (
        f"{state.voltage:5.1f}V {state.line_current:+6.1f}A "
        f"{state.display_speed_kmh:5.1f}km/h SoC {soc} "
        f"gear {gear} faults: {faults}"
    )


def format_trip(trip: CurrentTrip) -> str:
    summary = trip.summary()
    return (
        f"Trip {summary.trip_id}: {summary.distance_km:.2f} km, "
        f"{summary.energy_wh:.1f} Wh ({summary.wh_per_km:.1f} Wh/km), "
        f"max {summary.max_speed_kmh:.1f} km/h, avg {summary.avg_speed_kmh:.1f} km/h, "
        f"max sag {summary.max_voltage_sag:.1f} V"
    )


def attach_status_printer(state: ControllerState, every: int = STATUS_EVERY) -> None:
    def on_frame(count, _old):
        if count % every == 0:
            print(format_status(state))

    state.subscribe("frame_reception_count", on_frame)


async def run_session(session: ControllerSession, address: str,
                      transport, duration: Optional[float]) -> Optional[CurrentTrip]:
    """Connect, stream until done, then stop and return the ended trip"""
    if not await session.start(address):
        print(f"ERROR: could not connect to {address}", file=sys.stderr)
        return None

    try:
        if isinstance(transport, MockTransport):
            await transport.play()
        else:
            elapsed = 0.0
            while session.is_streaming and (duration is None or elapsed < duration):
                await asyncio.sleep(0.5)
                elapsed += 0.5
    finally:
        trip = await session.stop()

    return trip or session.last_trip


async def scan_devices(duration: float) -> None:
    from fardriver.transport.bluetooth import scan

    devices = await scan(duration)
    if not devices:
        print("No controllers found.")
    for address, name in devices:
        print(f"  {address:40s} {name}")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Fardriver controller telemetry monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Live monitoring for 10 minutes, address from .env:
    python fd_monitor.py --duration 600

  Replay a capture (one hex frame per line, # comments allowed):
    python fd_monitor.py --replay ride.txt --json

  Pipe frames in:
    cat ride.txt | python fd_monitor.py --replay -

  Canned demo ride, trip saved to disk:
    python fd_monitor.py --demo --trip-out trips/demo.json
        """
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--address", help="Controller BLE address (default: FD_ADDRESS)")
    source.add_argument("--replay", metavar="FILE", help="Replay hex frames from FILE ('-' for stdin)")
    source.add_argument("--demo", action="store_true", help="Play a canned ride (no hardware needed)")
    source.add_argument("--scan", action="store_true", help="Scan for controllers and exit")

    parser.add_argument("--duration", type=float, help="Live monitoring duration in seconds")
    parser.add_argument("--json", action="store_true", help="Print the final trip record as JSON")
    parser.add_argument("--trip-out", metavar="PATH", help="Write the final trip record to PATH")
    parser.add_argument("--status-every", type=int, default=STATUS_EVERY,
                        help="Print a status line every N frames (0 disables)")
    parser.add_argument("--env-file", help="Path to .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()
    setup_logging(args.verbose)

    config = FdConfig(args.env_file)

    if args.scan:
        asyncio.run(scan_devices(float(config.timeout)))
        return

    state = ControllerState()
    config.apply_to(state)

    if args.demo:
        transport = MockTransport(
            RideScripts.handshake() + RideScripts.ride() + RideScripts.faults(),
            interval=0.05,
        )
        address = "DEMO"
    elif args.replay:
        try:
            frames = read_frames(args.replay)
        except (OSError, ValueError) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            sys.exit(1)
        transport = MockTransport(frames)
        address = args.replay
    else:
        address = args.address or config.address
        if not address:
            print("ERROR: no controller address (use --address or set FD_ADDRESS)", file=sys.stderr)
            sys.exit(1)
        from fardriver.transport.bluetooth import BluetoothTransport
        transport = BluetoothTransport(timeout=float(config.timeout))

    session = ControllerSession(transport, state=state, config=config.session_config())
    if args.trip_out:
        session.add_trip_sink(JsonFileTripSink(args.trip_out))
    if args.status_every > 0:
        attach_status_printer(state, args.status_every)

    try:
        trip = asyncio.run(run_session(session, address, transport, args.duration))
    except KeyboardInterrupt:
        print("\nInterrupted")
        trip = state.end_trip() or session.last_trip

    print(format_status(state))
    if trip is None:
        print("No trip recorded.")
        return

    print(format_trip(trip))
    if args.json:
        print(json.dumps(trip.to_record(), indent=2))


if __name__ == "__main__":
    main()
