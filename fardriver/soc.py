"""
State of charge from pack voltage, and the range estimate built on it.

Li-ion discharge curves per nominal pack voltage, full to empty. Between
table points we interpolate linearly; outside the table we saturate.
"""

import logging
import math
from typing import Dict, Tuple


logger = logging.getLogger(__name__)

DEFAULT_VOLTAGE_CLASS = 72
RANGE_EFFICIENCY = 0.95

# (voltage, soc %) pairs, strictly decreasing in both columns
SOC_TABLES: Dict[int, Tuple[Tuple[float, float], ...]] = {
    36: (   # 10S
        (42.0, 100), (41.2, 95), (40.5, 90), (40.0, 80), (39.6, 70), (39.0, 60),
        (38.4, 50), (37.8, 40), (37.2, 30), (36.6, 20), (36.0, 10), (33.0, 0),
    ),
    48: (   # 13S
        (54.6, 100), (53.7, 95), (52.5, 90), (51.8, 80), (51.0, 70), (50.2, 60),
        (49.5, 50), (48.7, 40), (48.0, 30), (47.2, 20), (46.5, 10), (42.9, 0),
    ),
    52: (   # 14S
        (58.8, 100), (57.8, 95), (56.7, 90), (55.9, 80), (55.2, 70), (54.4, 60),
        (53.6, 50), (52.8, 40), (52.0, 30), (51.2, 20), (50.4, 10), (46.2, 0),
    ),
    60: (   # 16S
        (67.2, 100), (66.0, 95), (64.8, 90), (63.6, 80), (62.4, 70), (61.2, 60),
        (60.0, 50), (58.8, 40), (57.6, 30), (56.4, 20), (55.2, 10), (50.4, 0),
    ),
    72: (   # 20S
        (84.0, 100), (82.5, 95), (81.0, 90), (79.0, 80), (77.0, 70), (75.5, 60),
        (74.0, 50), (72.0, 40), (70.5, 30), (69.0, 20), (67.5, 10), (63.0, 0),
    ),
    76: (
        (92.4, 100), (90.2, 95), (88.0, 90), (86.2, 80), (84.5, 70), (82.8, 60),
        (81.0, 50), (79.3, 40), (77.5, 30), (75.8, 20), (74.0, 10), (66.0, 0),
    ),
    84: (   # 24S
        (100.8, 100), (96.0, 90), (93.6, 70), (90.0, 50), (86.4, 30), (82.8, 10),
        (75.6, 0),
    ),
    96: (   # 27S
        (108.0, 100), (105.3, 90), (102.0, 70), (98.7, 50), (95.4, 30), (92.1, 10),
        (84.6, 0),
    ),
    144: (  # 40S
        (168.0, 100), (160.8, 90), (156.0, 70), (150.0, 50), (144.0, 30), (137.4, 10),
        (126.0, 0),
    ),
}


class SoCEstimator:
    """Voltage to state-of-charge lookup for one nominal voltage class"""

    def __init__(self, rated_voltage: float) -> None:
        """
        Select the curve for a pack.

        Args:
            rated_voltage: Nominal pack voltage. Unknown classes use the 72V curve.
        """
        self.rated_voltage = rated_voltage
        key = int(rated_voltage) if float(rated_voltage).is_integer() else None
        if key not in SOC_TABLES:
            logger.debug(f"No SoC curve for {rated_voltage}V, using {DEFAULT_VOLTAGE_CLASS}V")
            key = DEFAULT_VOLTAGE_CLASS
        self.table = SOC_TABLES[key]

    def calculate_soc(self, voltage: float) -> float:
        """
        Estimate state of charge.

        Args:
            voltage: Measured pack voltage

        Returns:
            SoC percentage 0..100, rounded to 2 decimals
        """
        max_voltage = self.table[0][0]
        min_voltage = self.table[-1][0]

        if voltage >= max_voltage:
            return 100
        if voltage <= min_voltage:
            return 0

        for (high_v, high_soc), (low_v, low_soc) in zip(self.table, self.table[1:]):
            if low_v <= voltage <= high_v:
                soc = high_soc + (voltage - high_v) / (low_v - high_v) * (low_soc - high_soc)
                return round(soc, 2)

        return 0

    def get_percent_used(self, start_voltage: float, end_voltage: float) -> float:
        """SoC points consumed between two voltages"""
        return self.calculate_soc(start_voltage) - self.calculate_soc(end_voltage)


def estimate_range_m(rated_voltage: float, voltage: float, capacity_ah: float,
                     wh_per_meter: float, low_voltage_protection: float = 0.0) -> float:
    """
    Remaining range from charge left and measured consumption.

    Args:
        rated_voltage: Nominal pack voltage, picks the curve and sizes the pack
        voltage: Current (smoothed) pack voltage
        capacity_ah: Rated pack capacity
        wh_per_meter: Consumption so far
        low_voltage_protection: Controller cut-off; below it range is zero

    Returns:
        Meters, never negative; 0 when consumption is unknown
    """
    if voltage < low_voltage_protection or wh_per_meter <= 0:
        return 0.0

    soc = SoCEstimator(rated_voltage).calculate_soc(voltage)
    remaining_wh = soc * 0.01 * rated_voltage * capacity_ah * RANGE_EFFICIENCY
    range_m = remaining_wh / wh_per_meter

    if not math.isfinite(range_m):
        return 0.0
    return max(range_m, 0.0)
