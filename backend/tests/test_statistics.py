"""
Tests for flight statistics.
"""

import pytest
from numpy.testing import assert_allclose

from flightlog.models.telemetry import BatteryReading, FlightLogDataPoint, GeoPoint
from flightlog.services.statistics import (
    FlightStatsAccumulator,
    compute_flight_stats,
    resolve_duration,
    resolve_max_altitude,
)
from flightlog.utils.coordinates import haversine_distance


def _point(offset, lat=None, lng=None, altitude=None, speed=None, battery=None):
    return FlightLogDataPoint(
        timestamp_offset_ms=offset,
        lat=lat,
        lng=lng,
        altitude_m=altitude,
        speed_mps=speed,
        battery=BatteryReading(percent=battery),
    )


class TestResolveDuration:
    """Tests for duration resolution."""

    def test_fly_time_wins(self):
        """A positive decoder fly time overrides the offset span."""
        assert resolve_duration([0, 1000, 2000], max_fly_time_s=42.5) == 42.5

    def test_offset_span(self):
        """Without fly time, duration is last minus first offset."""
        assert resolve_duration([500, 1500, 10500]) == 10.0

    def test_zero_fly_time_ignored(self):
        """A zero fly time falls back to the offset span."""
        assert resolve_duration([0, 3000], max_fly_time_s=0.0) == 3.0

    def test_single_point(self):
        """One point (or none) means zero duration."""
        assert resolve_duration([1234]) == 0.0
        assert resolve_duration([]) == 0.0

    def test_suspicious_duration_still_returned(self, caplog):
        """Many points over less than a second is logged but kept."""
        offsets = list(range(0, 500, 20))
        with caplog.at_level("WARNING"):
            assert resolve_duration(offsets) == pytest.approx(0.48)
        assert "Suspicious duration" in caplog.text


class TestResolveMaxAltitude:
    """Tests for relative maximum altitude."""

    def test_relative_to_ground(self):
        """Altitude is measured from the mean of the first samples."""
        alts = [100.0] * 10 + [150.0, 180.0, 120.0]
        assert resolve_max_altitude(alts) == pytest.approx(80.0)

    def test_absolute_without_home(self):
        """Without a known home the absolute maximum is used."""
        alts = [100.0, 150.0, 180.0]
        assert resolve_max_altitude(alts, home_known=False) == pytest.approx(180.0)

    def test_implausible_values_ignored(self):
        """Values outside the plausible window do not count."""
        alts = [10.0] * 10 + [5000.0, 60.0]
        assert resolve_max_altitude(alts) == pytest.approx(50.0)

    def test_no_values(self):
        """No altitude readings means no maximum."""
        assert resolve_max_altitude([]) is None
        assert resolve_max_altitude([None, None]) is None


class TestFlightStatsAccumulator:
    """Tests for the single-pass statistics fold."""

    def test_three_point_track(self):
        """Home, distances and end location for a short track."""
        points = [
            _point(0, 37.0, -122.0),
            _point(5000, 37.001, -122.0),
            _point(10000, 37.002, -122.001),
        ]

        stats = compute_flight_stats(points)

        leg1 = haversine_distance(37.0, -122.0, 37.001, -122.0)
        leg2 = haversine_distance(37.001, -122.0, 37.002, -122.001)
        assert stats.home_location == GeoPoint(37.0, -122.0)
        assert stats.start_location == stats.home_location
        assert stats.end_location == GeoPoint(37.002, -122.001)
        assert_allclose(stats.total_distance_m, leg1 + leg2, rtol=1e-12)
        assert_allclose(stats.max_distance_m, haversine_distance(37.0, -122.0, 37.002, -122.001), rtol=1e-12)

    def test_total_at_least_max_distance(self):
        """Total path length is never shorter than the furthest excursion."""
        points = [_point(i * 100, 37.0 + 0.0001 * (i % 7), -122.0 + 0.0001 * (i % 3)) for i in range(50)]
        stats = compute_flight_stats(points)
        assert stats.total_distance_m >= stats.max_distance_m

    def test_points_without_position_skipped(self):
        """Points lacking a position do not affect home or distances."""
        points = [_point(0, battery=95.0), _point(100, 37.0, -122.0), _point(200), _point(300, 37.001, -122.0)]

        stats = compute_flight_stats(points)

        assert stats.home_location == GeoPoint(37.0, -122.0)
        assert_allclose(stats.total_distance_m, haversine_distance(37.0, -122.0, 37.001, -122.0))

    def test_no_position_means_no_distances(self):
        """Without any position, home and distances are unknown."""
        stats = compute_flight_stats([_point(0, battery=90.0), _point(100, battery=89.0)])
        assert stats.home_location is None
        assert stats.max_distance_m is None
        assert stats.total_distance_m is None

    def test_speed_plausibility(self):
        """Speeds above 100 m/s and non-positive speeds are ignored."""
        points = [
            _point(0, 37.0, -122.0, speed=12.0),
            _point(100, 37.0001, -122.0, speed=150.0),
            _point(200, 37.0002, -122.0, speed=-3.0),
        ]
        assert compute_flight_stats(points).max_speed_mps == 12.0

    def test_battery_first_and_last(self):
        """Battery start/end are the first and last known percentages."""
        points = [_point(0), _point(100, battery=88.0), _point(200, battery=80.0), _point(300)]
        stats = compute_flight_stats(points)
        assert stats.battery_start_percent == 88.0
        assert stats.battery_end_percent == 80.0

    def test_incremental_equals_batch(self):
        """Adding points one by one matches add_all."""
        points = [_point(i * 100, 37.0 + i * 1e-4, -122.0, altitude=10.0 + i) for i in range(20)]

        acc = FlightStatsAccumulator()
        for p in points:
            acc.add(p)

        assert acc.result() == compute_flight_stats(points)
