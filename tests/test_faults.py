"""Tests for fault decoding"""

from fardriver.faults import FAULT_CATALOG, decode_faults, is_clean


def codes(faults):
    return [f.code for f in faults]


def test_catalog_complete():
    assert sorted(FAULT_CATALOG) == list(range(1, 19))
    assert str(FAULT_CATALOG[1]) == "1. Motor Hall Error"


def test_clean_ignores_top_bit_of_second_byte():
    assert is_clean(0, 0)
    assert is_clean(0, 0x80)
    assert not is_clean(0x01, 0)
    assert not is_clean(0, 0x40)


def test_direct_bits():
    assert codes(decode_faults(0x01 | 0x02 | 0x80, 0)) == [1, 2, 8]
    assert codes(decode_faults(0, 0x01 | 0x08 | 0x40)) == [9, 12, 15]


def test_voltage_alarm_disambiguated():
    """Test over vs under voltage"""
    assert codes(decode_faults(0x10, 0, global_state2=0x8000)) == [5]
    assert codes(decode_faults(0x10, 0, global_state2=0)) == [18]


def test_phase_alarm_disambiguated():
    assert codes(decode_faults(0, 0x04, global_state1=0x0800)) == [17]
    assert codes(decode_faults(0, 0x04, global_state1=0)) == [11]


def test_brake_alarm_from_stop_state():
    assert codes(decode_faults(0x02, 0, motor_stop_state=0x8000)) == [2, 16]


def test_order_follows_bit_position():
    assert codes(decode_faults(0xFF, 0x7F)) == [1, 2, 3, 4, 18, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15]
