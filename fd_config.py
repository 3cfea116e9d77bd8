#!/usr/bin/env python3
"""
Fardriver Environment Configuration Helper

Provides easy access to .env configuration for the fd_ tools.
Everything here is rider-supplied: the controller cannot tell us
which tire is mounted or which battery is in the frame.
"""

import os
import re
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from fardriver.types import SessionConfig, TireConfig


class FdConfig:
    """Configuration manager for fd_ tools"""

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration

        Args:
            env_file: Path to .env file (default: .env in current directory)
        """
        self._loaded = False

        env_path = Path(".env") if env_file is None else Path(env_file)
        if env_path.exists():
            load_dotenv(env_path)
            self._loaded = True

    @staticmethod
    def _float(name: str) -> Optional[float]:
        value = os.getenv(name)
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    @property
    def address(self) -> Optional[str]:
        """Controller BLE address"""
        return os.getenv("FD_ADDRESS")

    @property
    def tire_width(self) -> Optional[float]:
        """Tire width in mm"""
        return self._float("FD_TIRE_WIDTH")

    @property
    def tire_aspect_ratio(self) -> Optional[float]:
        """Sidewall height as % of width"""
        return self._float("FD_TIRE_ASPECT_RATIO")

    @property
    def rim_diameter(self) -> Optional[float]:
        """Rim diameter in inches"""
        return self._float("FD_RIM_DIAMETER")

    @property
    def gear_ratio(self) -> Optional[float]:
        """Motor turns per wheel turn"""
        return self._float("FD_GEAR_RATIO")

    @property
    def rated_voltage(self) -> Optional[float]:
        """Nominal pack voltage"""
        return self._float("FD_RATED_VOLTAGE")

    @property
    def rated_capacity(self) -> Optional[float]:
        """Pack capacity in Ah"""
        return self._float("FD_RATED_CAPACITY")

    @property
    def prefer_gps_speed(self) -> bool:
        """Show GPS speed instead of wheel speed when available"""
        return os.getenv("FD_PREFER_GPS_SPEED", "").lower() in ("1", "true", "yes", "on")

    @property
    def timeout(self) -> int:
        """Connection timeout in seconds (default: 10)"""
        return int(os.getenv("FD_TIMEOUT", "10"))

    @property
    def is_configured(self) -> bool:
        """Check if an address is present"""
        return bool(self.address)

    def tire_config(self) -> Optional[TireConfig]:
        """Tire geometry, or None unless all three dimensions are set"""
        if not (self.tire_width and self.tire_aspect_ratio and self.rim_diameter):
            return None
        return TireConfig.from_rim_diameter(self.tire_width, self.tire_aspect_ratio, self.rim_diameter)

    def session_config(self) -> SessionConfig:
        return SessionConfig(connect_timeout=float(self.timeout))

    def apply_to(self, state) -> None:
        """Inject rider configuration into a ControllerState"""
        state.apply_config(
            tire=self.tire_config(),
            gear_ratio=self.gear_ratio,
            rated_voltage=self.rated_voltage,
            rated_capacity_ah=self.rated_capacity,
            prefer_gps_speed=self.prefer_gps_speed,
        )

    def validate(self, require_address: bool = True) -> tuple[bool, list[str]]:
        """
        Validate configuration

        Args:
            require_address: If True, FD_ADDRESS must be set

        Returns:
            (is_valid, list_of_errors)
        """
        errors = []

        if require_address and not self.address:
            errors.append("FD_ADDRESS not set")
        if self.address and not self._is_valid_address(self.address):
            errors.append("FD_ADDRESS has invalid format (expected AA:BB:CC:DD:EE:FF or a UUID)")

        for name in ("FD_TIRE_WIDTH", "FD_TIRE_ASPECT_RATIO", "FD_RIM_DIAMETER",
                     "FD_GEAR_RATIO", "FD_RATED_VOLTAGE", "FD_RATED_CAPACITY"):
            raw = os.getenv(name)
            if raw and (self._float(name) is None or self._float(name) <= 0):
                errors.append(f"{name} must be a positive number, got '{raw}'")

        tire_values = [os.getenv(n) for n in ("FD_TIRE_WIDTH", "FD_TIRE_ASPECT_RATIO", "FD_RIM_DIAMETER")]
        if any(tire_values) and not all(tire_values):
            errors.append("Tire needs FD_TIRE_WIDTH, FD_TIRE_ASPECT_RATIO and FD_RIM_DIAMETER together")

        try:
            if self.timeout <= 0:
                errors.append("FD_TIMEOUT must be positive")
        except ValueError:
            errors.append("FD_TIMEOUT must be an integer")

        return len(errors) == 0, errors

    @staticmethod
    def _is_valid_address(address: str) -> bool:
        """MAC address, or the CoreBluetooth UUID macOS uses instead"""
        mac = re.fullmatch(r"([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}", address)
        uuid = re.fullmatch(r"[0-9A-Fa-f]{8}(-[0-9A-Fa-f]{4}){3}-[0-9A-Fa-f]{12}", address)
        return bool(mac or uuid)

    def print_status(self):
        """Print configuration status"""
        def show(value, unit=""):
            return f"{value:g}{unit}" if value else "(not set)"

        print("Fardriver Configuration Status:")
        print(f"  .env loaded:   {'Yes' if self._loaded else 'No'}")
        print(f"  Address:       {self.address or '(not set)'}")
        print(f"  Tire width:    {show(self.tire_width, ' mm')}")
        print(f"  Aspect ratio:  {show(self.tire_aspect_ratio, ' %')}")
        print(f"  Rim diameter:  {show(self.rim_diameter, ' in')}")
        print(f"  Gear ratio:    {show(self.gear_ratio)}")
        print(f"  Rated voltage: {show(self.rated_voltage, ' V')}")
        print(f"  Capacity:      {show(self.rated_capacity, ' Ah')}")
        print(f"  GPS speed:     {'preferred' if self.prefer_gps_speed else 'wheel speed'}")
        print(f"  Timeout:       {os.getenv('FD_TIMEOUT', '10')}s")

        is_valid, errors = self.validate()
        if is_valid:
            print("\n  Status: Configuration is valid")
        else:
            print("\n  Status: Configuration has errors:")
            for error in errors:
                print(f"    - {error}")


# Global config instance
_config = None

def get_config(reload: bool = False) -> FdConfig:
    """
    Get the global configuration instance

    Args:
        reload: Force reload of .env file

    Returns:
        FdConfig instance
    """
    global _config
    if _config is None or reload:
        _config = FdConfig()
    return _config


def main():
    """Command-line utility to check configuration"""
    import argparse
    import sys

    parser = argparse.ArgumentParser(
        description="Fardriver Configuration Utility",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Check current configuration:
    python fd_config.py

  Validate configuration:
    python fd_config.py --validate

  Use custom .env file:
    python fd_config.py --env-file /path/to/.env
        """
    )

    parser.add_argument("--env-file", help="Path to .env file")
    parser.add_argument("--validate", action="store_true",
                       help="Validate configuration and exit with error if invalid")

    args = parser.parse_args()

    config = FdConfig(args.env_file)
    config.print_status()

    if args.validate:
        is_valid, errors = config.validate()
        if not is_valid:
            print("\nValidation failed!")
            sys.exit(1)
        else:
            print("\nValidation passed!")


if __name__ == "__main__":
    main()
