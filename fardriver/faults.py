"""
Controller fault catalog and decoding.

Two error bytes plus a few status bits map onto eighteen named faults.
A couple of bits are ambiguous on their own and are disambiguated by
the global status words.
"""

from typing import Dict, List

from .types import Fault


# Consecutive clean status frames before the visible fault list is cleared
CLEAR_AFTER_CLEAN_FRAMES = 6

FAULT_CATALOG: Dict[int, Fault] = {fault.code: fault for fault in (
    Fault(1, "Motor Hall Error", "The motor hall sensor is faulty or disconnected."),
    Fault(2, "Throttle Error", "The throttle input is out of range or faulty."),
    Fault(3, "Current Protect Restart", "The controller has restarted due to overcurrent protection."),
    Fault(4, "Phase Current Surge Protect", "Sudden surge detected in phase current."),
    Fault(5, "Over Voltage Alarm", "Input voltage exceeds the maximum limit."),
    Fault(6, "Alarm Protect", "Security alarm has been triggered."),
    Fault(7, "Motor Temp Protect", "Motor temperature exceeds safe operating limits."),
    Fault(8, "Controller Temp Protect", "Controller temperature exceeds safe operating limits."),
    Fault(9, "Phase Current Overflow Protect", "Phase current has exceeded the maximum allowable value."),
    Fault(10, "Phase Zero Error", "Phase zero-crossing error detected."),
    Fault(11, "Phase Short Alarm", "Short circuit detected in motor phase wiring."),
    Fault(12, "Line Current Zero Error", "Line current zero-crossing error detected."),
    Fault(13, "MOSFET High Side Error", "High side MOSFET failure detected."),
    Fault(14, "MOSFET Low Side Error", "Low side MOSFET failure detected."),
    Fault(15, "MOE Current Protect", "Motor overcurrent event detected."),
    Fault(16, "Brake Alarm", "Brake system error detected."),
    Fault(17, "Phase Lost Alarm", "One or more motor phases are not detected."),
    Fault(18, "Under Voltage Alarm", "Input voltage is below the minimum threshold."),
)}

# Bits that map straight to one fault
_ERROR1_BITS = ((0x01, 1), (0x02, 2), (0x04, 3), (0x08, 4), (0x20, 6), (0x40, 7), (0x80, 8))
_ERROR2_BITS = ((0x01, 9), (0x02, 10), (0x08, 12), (0x10, 13), (0x20, 14), (0x40, 15))

ALARM_BIT = 0x20
OVER_VOLTAGE_FLAG = 0x8000   # global_state2
PHASE_LOST_FLAG = 0x0800     # global_state1
BRAKE_ALARM_FLAG = 0x8000    # motor_stop_state


def is_clean(error1: int, error2: int) -> bool:
    """No fault bits set. Bit 7 of the second byte is not a fault."""
    return error1 == 0 and (error2 & 0x7F) == 0


def decode_faults(error1: int, error2: int, global_state1: int = 0,
                  global_state2: int = 0, motor_stop_state: int = 0) -> List[Fault]:
    """
    Decode the active faults, ordered by bit position.

    Args:
        error1: First error byte
        error2: Second error byte
        global_state1: Disambiguates phase short vs phase lost
        global_state2: Disambiguates over vs under voltage
        motor_stop_state: Carries the brake alarm

    Returns:
        Active faults from FAULT_CATALOG
    """
    codes: List[int] = []

    for bit, code in _ERROR1_BITS[:4]:
        if error1 & bit:
            codes.append(code)
    if error1 & 0x10:
        codes.append(5 if global_state2 & OVER_VOLTAGE_FLAG else 18)
    for bit, code in _ERROR1_BITS[4:]:
        if error1 & bit:
            codes.append(code)

    for bit, code in _ERROR2_BITS[:2]:
        if error2 & bit:
            codes.append(code)
    if error2 & 0x04:
        codes.append(17 if global_state1 & PHASE_LOST_FLAG else 11)
    for bit, code in _ERROR2_BITS[2:]:
        if error2 & bit:
            codes.append(code)

    if motor_stop_state & BRAKE_ALARM_FLAG:
        codes.append(16)

    return [FAULT_CATALOG[code] for code in codes]
