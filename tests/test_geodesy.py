import math
import random

from src.predict import geodesy


def _angle_diff(a, b):
    return abs((a - b + 180.0) % 360.0 - 180.0)


def test_destination_round_trip_recovers_distance_and_bearing():
    rng = random.Random(1234)
    for _ in range(500):
        lat = rng.uniform(-80.0, 80.0)
        lon = rng.uniform(-180.0, 180.0)
        dist = rng.uniform(10.0, 999_000.0)
        brg = rng.uniform(0.0, 360.0)

        out = geodesy.destination(lat, lon, dist, brg)
        assert out is not None
        lat2, lon2 = out
        assert -180.0 <= lon2 <= 180.0

        d = geodesy.distance(lat, lon, lat2, lon2)
        assert abs(d - dist) / dist < 1e-3
        assert _angle_diff(geodesy.bearing(lat, lon, lat2, lon2), brg) < 1.0


def test_identical_and_antipodal_points():
    assert geodesy.distance(10.0, 20.0, 10.0, 20.0) == 0.0
    half_circumference = math.pi * geodesy.EARTH_RADIUS_M
    assert math.isclose(geodesy.distance(0.0, 0.0, 0.0, 180.0), half_circumference, rel_tol=1e-9)


def test_bearing_cardinal_directions():
    assert _angle_diff(geodesy.bearing(0.0, 0.0, 1.0, 0.0), 0.0) < 1e-9
    assert _angle_diff(geodesy.bearing(0.0, 0.0, 0.0, 1.0), 90.0) < 1e-9
    assert _angle_diff(geodesy.bearing(0.0, 0.0, -1.0, 0.0), 180.0) < 1e-9
    assert 0.0 <= geodesy.bearing(0.0, 0.0, 0.0, -1.0) < 360.0


def test_destination_rejects_unusable_input():
    assert geodesy.destination(float("nan"), 0.0, 10.0, 0.0) is None
    assert geodesy.destination(0.0, float("inf"), 10.0, 0.0) is None
    assert geodesy.destination(0.0, 0.0, -1.0, 0.0) is None
    assert geodesy.destination(0.0, 0.0, 10.0, float("nan")) is None
    assert geodesy.destination(0.0, 0.0, 0.0, 45.0) == (0.0, 0.0)


def test_destination_wraps_dateline():
    lat, lon = geodesy.destination(0.0, 179.9995, 1000.0, 90.0)
    assert -180.0 <= lon < -179.99
    assert abs(lat) < 1e-6


def test_offset_point_sides():
    right = geodesy.offset_point(52.0, 13.0, 0.0, 100.0)
    left = geodesy.offset_point(52.0, 13.0, 0.0, -100.0)
    assert right[1] > 13.0 and left[1] < 13.0
    assert math.isclose(geodesy.distance(52.0, 13.0, *right), 100.0, rel_tol=1e-6)
    assert geodesy.offset_point(52.0, 13.0, 0.0, float("nan")) is None


def test_circular_mean_wraps_through_north():
    assert _angle_diff(geodesy.circular_mean([359.0, 1.0]), 0.0) < 1e-9
    assert _angle_diff(geodesy.circular_mean([350.0, 10.0, 0.0]), 0.0) < 1e-9
    assert _angle_diff(geodesy.circular_mean([80.0, 100.0]), 90.0) < 1e-9
    assert geodesy.circular_mean([]) == 0.0


def test_heading_variance_uses_wrapped_deviation():
    assert geodesy.heading_variance([359.0, 1.0]) < 1.01
    assert geodesy.heading_variance([90.0, 90.0, 90.0]) < 1e-12


def test_weighted_percentile():
    vals = [1.0, 2.0, 3.0, 4.0]
    assert geodesy.weighted_percentile(vals, [1, 1, 1, 1], 0.5) == 2.0
    assert geodesy.weighted_percentile(vals, [0, 0, 0, 1], 0.1) == 4.0
    assert geodesy.weighted_percentile(vals, [1, 1, 1, 1], 1.0) == 4.0
    assert math.isnan(geodesy.weighted_percentile(vals, [1, 1], 0.5))
    assert math.isnan(geodesy.weighted_percentile(vals, [0, 0, 0, 0], 0.5))
    assert math.isnan(geodesy.weighted_percentile([], [], 0.5))


def test_meter_degree_conversions_are_inverse():
    assert math.isclose(geodesy.lat_deg_to_meters(geodesy.meters_to_lat_deg(123.0)), 123.0)
    assert math.isclose(geodesy.lon_deg_to_meters(geodesy.meters_to_lon_deg(123.0, 60.0), 60.0), 123.0)
    # a degree of longitude at 60° is half a degree of latitude
    assert math.isclose(geodesy.meters_to_lon_deg(1000.0, 60.0), 2 * geodesy.meters_to_lat_deg(1000.0))
