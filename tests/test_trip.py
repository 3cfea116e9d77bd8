"""Tests for CurrentTrip"""

import json
import math

import pytest

from fardriver.trip import CurrentTrip
from fardriver.types import RoutePoint, TripPhase, TripSummary


def make_trip(clock, **kwargs):
    defaults = dict(start_voltage=80.0, rated_voltage=72.0, rated_capacity_ah=40,
                    motor_pole_pairs=4, low_voltage_protection=60.0)
    defaults.update(kwargs)
    return CurrentTrip(clock=clock, **defaults)


def point(ts, lat=52.0, lon=13.0):
    return RoutePoint(timestamp=ts, latitude=lat, longitude=lon)


def test_new_trip_is_active(clock):
    trip = make_trip(clock)
    assert trip.is_active
    assert trip.start_time == clock.now
    assert len(trip.id) == 32


def test_consumption_integrates_energy(clock):
    """Test 1 kW for 1 s"""
    trip = make_trip(clock)
    trip.record_consumption(80.0, 12.5, 80.0)
    clock.advance(1000)
    trip.record_consumption(80.0, 12.5, 80.0)

    assert trip.cumulative_energy_wh == pytest.approx(1000 / 3600)
    assert trip.max_input_power == pytest.approx(1000)
    assert trip.max_input_power_voltage == 80.0
    assert trip.max_input_power_current == 12.5
    assert trip.max_line_current == 12.5


def test_voltage_range_tracked(clock):
    trip = make_trip(clock)
    assert trip.min_voltage is None
    for v in (80.0, 76.5, 79.0):
        trip.record_consumption(v, 10, v)
    assert trip.max_voltage == 80.0
    assert trip.min_voltage == 76.5
    assert trip.end_voltage == 79.0


def test_range_zero_without_distance(clock):
    trip = make_trip(clock)
    trip.record_consumption(80.0, 10, 80.0)
    clock.advance(1000)
    trip.record_consumption(80.0, 10, 80.0)
    assert trip.estimated_range_m == 0.0


def test_range_estimated_from_consumption(clock):
    trip = make_trip(clock)
    trip.record_speed_and_distance(1000, 10.0, 100.0)
    trip.record_consumption(84.0, 10, 84.0)
    clock.advance(1000)
    trip.record_consumption(84.0, 10, 84.0)

    wh_per_meter = trip.cumulative_energy_wh / 100.0
    assert trip.estimated_range_m == pytest.approx(72 * 40 * 0.95 / wh_per_meter)


def test_speed_and_distance(clock):
    trip = make_trip(clock)
    trip.record_speed_and_distance(1000, 10.0, 5.0)
    trip.record_speed_and_distance(1500, 15.0, 7.5)
    trip.record_speed_and_distance(1200, 12.0, math.nan)

    assert trip.max_speed_mps == 15.0
    assert trip.max_rpm == 1500
    assert trip.reading_count == 3
    assert trip.distance_m == pytest.approx(12.5)


def test_gps_speed(clock):
    trip = make_trip(clock)
    trip.record_gps_speed(10.0)
    trip.record_gps_speed(20.0)
    trip.record_gps_speed(-1.0)
    trip.record_gps_speed(math.inf)

    assert trip.gps_sample_count == 2
    assert trip.gps_avg_speed_mps == 15.0
    assert trip.gps_max_speed_mps == 20.0


def test_voltage_sag_keeps_worst(clock):
    trip = make_trip(clock)
    trip.record_voltage_sag(3.0, 40.0, 1)
    trip.record_voltage_sag(5.0, 60.0, 2)
    trip.record_voltage_sag(2.0, 30.0, 3)
    assert trip.last_voltage_sag == 2.0
    assert trip.max_voltage_sag == 5.0
    assert trip.max_voltage_sag_current == 60.0
    assert trip.max_voltage_sag_timestamp == 2


def test_route_spacing(clock):
    """Test points closer than 800 ms are rejected"""
    trip = make_trip(clock)
    assert trip.record_route_point(point(1000))
    assert not trip.record_route_point(point(1500))
    assert trip.record_route_point(point(1800))
    assert len(trip.route) == 2


def test_route_rejects_backwards_and_invalid(clock):
    trip = make_trip(clock)
    assert trip.record_route_point(point(5000))
    assert not trip.record_route_point(point(4000))
    assert not trip.record_route_point(point(9000, lat=math.nan))
    assert not trip.record_route_point(point(9000, lon=math.inf))
    assert len(trip.route) == 1


def test_observer_throttled(clock):
    """Test observer fires at most every 2 s"""
    trip = make_trip(clock)
    received = []
    trip.register_observer(received.append)

    clock.advance(1000)
    trip.record_consumption(80.0, 10, 80.0)
    assert received == []

    clock.advance(1500)
    trip.record_consumption(80.0, 10, 80.0)
    assert len(received) == 1
    assert isinstance(received[0], TripSummary)
    assert received[0].trip_id == trip.id

    clock.advance(500)
    trip.record_gps_speed(5.0)
    assert len(received) == 1

    clock.advance(2100)
    trip.record_speed_and_distance(100, 1.0, 1.0)
    assert len(received) == 2


def test_observer_errors_are_isolated(clock):
    trip = make_trip(clock)

    def broken(_summary):
        raise RuntimeError("boom")

    trip.register_observer(broken)
    clock.advance(3000)
    trip.record_consumption(80.0, 10, 80.0)
    assert trip.voltage == 80.0


def test_averages(clock):
    trip = make_trip(clock)
    trip.distance_m = 1000.0
    trip.cumulative_energy_wh = 50.0
    trip.calculate_averages(trip.start_time + 100_000)
    assert trip.avg_speed_mps == pytest.approx(10.0)
    assert trip.avg_power_w == pytest.approx(50.0 / (100 / 3600))


def test_end_freezes_trip(clock):
    trip = make_trip(clock)
    trip.record_speed_and_distance(100, 10.0, 500.0)
    clock.advance(50_000)
    trip.end()

    assert trip.phase == TripPhase.ENDED
    assert trip.end_time == clock.now
    assert trip.avg_speed_mps == pytest.approx(10.0)

    trip.record_speed_and_distance(100, 30.0, 500.0)
    trip.record_consumption(90.0, 50, 90.0)
    assert not trip.record_route_point(point(clock.now + 5000))
    assert trip.distance_m == 500.0
    assert trip.max_speed_mps == 10.0


def test_end_keeps_preset_end_time(clock):
    trip = make_trip(clock)
    trip.end_time = trip.start_time + 10_000
    clock.advance(60_000)
    trip.end()
    assert trip.end_time == trip.start_time + 10_000


def test_summary_units(clock):
    trip = make_trip(clock)
    trip.record_speed_and_distance(100, 10.0, 2000.0)
    trip.cumulative_energy_wh = 40.0
    summary = trip.summary()
    assert summary.distance_km == pytest.approx(2.0)
    assert summary.max_speed_kmh == pytest.approx(36.0)
    assert summary.wh_per_km == pytest.approx(20.0)


def test_record_is_json_serializable(clock):
    trip = make_trip(clock)
    trip.record_consumption(80.0, 10, 80.0)
    trip.record_route_point(point(clock.now))
    trip.end()

    record = json.loads(json.dumps(trip.to_record()))
    assert record["id"] == trip.id
    assert record["phase"] == "ended"
    assert record["route"][0]["latitude"] == 52.0


def test_phase_currents_keep_largest_magnitude(clock):
    trip = make_trip(clock)
    trip.record_phase_currents(30.0, -70.0, 40.0)
    trip.record_phase_currents(10.0, -20.0, -55.0)

    assert trip.max_phase_a_current == 30.0
    assert trip.max_phase_b_current == 70.0
    assert trip.max_phase_c_current == 55.0
    assert trip.summary().max_phase_current == 70.0

    record = trip.to_record()
    assert record["max_phase_b_current"] == 70.0
    assert record["max_phase_c_current"] == 55.0


def test_phase_currents_ignored_after_end(clock):
    trip = make_trip(clock)
    trip.end()
    trip.record_phase_currents(30.0, -70.0, 40.0)
    assert trip.max_phase_current == 0.0
