"""
Flight statistics.

Derived values are computed in a single fold over the ordered data points
(FlightStatsAccumulator) plus two resolvers for the values that need the
whole series: duration and relative maximum altitude.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from flightlog.models.telemetry import FlightLogDataPoint, GeoPoint
from flightlog.utils.coordinates import haversine_distance


logger = logging.getLogger(__name__)


MAX_PLAUSIBLE_SPEED_MPS = 100.0

# Altitude windows (m)
GROUND_REFERENCE_SAMPLES = 10
GROUND_REFERENCE_RANGE = (-100.0, 1000.0)
RELATIVE_ALTITUDE_RANGE = (-500.0, 2000.0)
ABSOLUTE_ALTITUDE_RANGE = (-100.0, 2000.0)

SUSPICIOUS_DURATION_S = 1.0
SUSPICIOUS_DURATION_MIN_POINTS = 10


def resolve_duration(offsets_ms: Sequence[int], max_fly_time_s: Optional[float] = None) -> float:
    """
    Flight duration in seconds.

    The decoder's own fly-time counter wins when it is positive. Otherwise the
    span between the first and last offset is used; a single point (or none)
    yields 0.
    """
    if max_fly_time_s is not None and max_fly_time_s > 0:
        return float(max_fly_time_s)

    if len(offsets_ms) < 2:
        return 0.0

    duration = (offsets_ms[-1] - offsets_ms[0]) / 1000.0
    if duration < SUSPICIOUS_DURATION_S and len(offsets_ms) > SUSPICIOUS_DURATION_MIN_POINTS:
        logger.warning(
            f"Suspicious duration {duration:.3f}s for {len(offsets_ms)} points "
            f"(offsets {offsets_ms[0]}..{offsets_ms[-1]} ms)"
        )
    return max(duration, 0.0)


def resolve_max_altitude(altitudes: Sequence[Optional[float]], home_known: bool = True) -> Optional[float]:
    """
    Maximum altitude, relative to the take-off ground level when possible.

    The ground reference is the mean of the first few plausible altitudes.
    Without a reference (or without a known home) the absolute maximum of the
    plausible altitudes is returned.
    """
    values = np.array([a for a in altitudes if a is not None], dtype=np.float64)
    values = values[np.isfinite(values)]
    if len(values) == 0:
        return None

    lo, hi = GROUND_REFERENCE_RANGE
    reference = values[(values >= lo) & (values <= hi)][:GROUND_REFERENCE_SAMPLES]

    if home_known and len(reference) > 0:
        ground = float(np.mean(reference))
        lo, hi = RELATIVE_ALTITUDE_RANGE
        window = values[(values >= lo) & (values <= hi)]
        if len(window) > 0:
            return float(np.max(window - ground))

    lo, hi = ABSOLUTE_ALTITUDE_RANGE
    window = values[(values >= lo) & (values <= hi)]
    if len(window) == 0:
        return None
    return float(np.max(window))


@dataclass
class FlightStats:
    """Result of folding the data points of one flight."""

    home_location: Optional[GeoPoint] = None
    start_location: Optional[GeoPoint] = None
    end_location: Optional[GeoPoint] = None
    max_distance_m: Optional[float] = None
    total_distance_m: Optional[float] = None
    max_altitude_m: Optional[float] = None
    max_speed_mps: Optional[float] = None
    battery_start_percent: Optional[float] = None
    battery_end_percent: Optional[float] = None


class FlightStatsAccumulator:
    """Single-pass fold over ordered data points."""

    def __init__(self):
        self._home: Optional[GeoPoint] = None
        self._last: Optional[GeoPoint] = None
        self._max_distance = 0.0
        self._total_distance = 0.0
        self._max_speed: Optional[float] = None
        self._battery_start: Optional[float] = None
        self._battery_end: Optional[float] = None
        self._altitudes: list[float] = []

    def add(self, point: FlightLogDataPoint) -> None:
        if point.has_position:
            here = GeoPoint(point.lat, point.lng)
            if self._home is None:
                self._home = here
            else:
                self._max_distance = max(
                    self._max_distance,
                    haversine_distance(self._home.lat, self._home.lng, here.lat, here.lng),
                )
            if self._last is not None:
                self._total_distance += haversine_distance(self._last.lat, self._last.lng, here.lat, here.lng)
            self._last = here

        if point.altitude_m is not None:
            self._altitudes.append(point.altitude_m)

        speed = point.speed_mps
        if speed is not None and 0 < speed <= MAX_PLAUSIBLE_SPEED_MPS:
            if self._max_speed is None or speed > self._max_speed:
                self._max_speed = speed

        percent = point.battery.percent
        if percent is not None:
            if self._battery_start is None:
                self._battery_start = percent
            self._battery_end = percent

    def add_all(self, points: Sequence[FlightLogDataPoint]) -> "FlightStatsAccumulator":
        for point in points:
            self.add(point)
        return self

    def result(self) -> FlightStats:
        home_known = self._home is not None
        return FlightStats(
            home_location=self._home,
            start_location=self._home,
            end_location=self._last,
            max_distance_m=self._max_distance if home_known else None,
            total_distance_m=self._total_distance if home_known else None,
            max_altitude_m=resolve_max_altitude(self._altitudes, home_known),
            max_speed_mps=self._max_speed,
            battery_start_percent=self._battery_start,
            battery_end_percent=self._battery_end,
        )


def compute_flight_stats(points: Sequence[FlightLogDataPoint]) -> FlightStats:
    return FlightStatsAccumulator().add_all(points).result()
