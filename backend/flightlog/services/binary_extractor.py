"""
Heuristic binary extractor.

Used only when the trusted decoder is unavailable. The record area of a
flight record is scrambled, so instead of decoding records this module scans
the buffer for byte patterns that decode to plausible WGS84 coordinate
pairs, then filters the candidates down to a physically plausible track.

The result is approximate: positions and altitude only, synthetic 10 Hz
timestamps. It never raises for malformed input; an empty list means no
usable telemetry was found.
"""

import logging
import math
import struct
from enum import Enum
from typing import Optional

from flightlog.config import PipelineSettings
from flightlog.models.telemetry import (
    CANONICAL_VERSION,
    FlightLog,
    FlightLogDataPoint,
    RawCandidatePoint,
)
from flightlog.services.statistics import compute_flight_stats, resolve_duration
from flightlog.utils.coordinates import haversine_distance
from flightlog.utils.logfiles import base_filename, compute_log_id, date_from_filename


logger = logging.getLogger(__name__)


PARSER_NAME = "basic-heuristic"

HEADER_SIZE = 100
SYNTHETIC_INTERVAL_MS = 100  # 10 Hz
SECONDARY_OFFSETS = (8, 16, 24)
ALTITUDE_OFFSETS = (16, 24, 32, 40)
MIN_COORDINATE_MAGNITUDE = 0.01

# Swap detection
SWAP_MIN_CANDIDATES = 20
SWAP_MIN_FRACTION = 0.7
SWAP_GAIN = 1.5

# Sequential filter
MAX_SPEED_MPS = 50.0
GPS_TOLERANCE_M = 20.0
MAX_STEP_M = 10000.0
MAX_STEP_INTERVAL_S = 60.0

# Relaxation
RELAX_MIN_CANDIDATES = 50
RELAX_MIN_KEEP = 10
RELAX_MIN_KEEP_FRACTION = 0.1
RELAXED_MAX_STEP_M = 5000.0
RELAX_GAIN = 1.5

# Neighbor outliers
OUTLIER_MIN_POINTS = 50
OUTLIER_LEG_M = 50000.0
OUTLIER_MIN_KEEP_FRACTION = 0.7

HEURISTIC_NOTE = (
    "Positions were recovered by a heuristic byte scan and may be inaccurate. "
    "Install the dji-log-parser decoder for exact telemetry."
)


class CoordinateLayout(Enum):
    """Byte layouts a coordinate pair may be stored in, in preference order."""

    FLOAT64_PAIR = ("<dd", 1.0)
    INT32_E7_PAIR = ("<ii", 1e-7)
    FLOAT32_PAIR = ("<ff", 1.0)

    def __init__(self, fmt: str, scale: float):
        self.fmt = fmt
        self.scale = scale

    def decode(self, buffer: bytes, offset: int) -> Optional[tuple[float, float]]:
        if offset < 0 or offset + struct.calcsize(self.fmt) > len(buffer):
            return None
        lat, lng = struct.unpack_from(self.fmt, buffer, offset)
        lat *= self.scale
        lng *= self.scale
        if is_plausible_pair(lat, lng):
            return float(lat), float(lng)
        return None


def is_plausible_pair(lat: float, lng: float) -> bool:
    return (
        -90 <= lat <= 90
        and -180 <= lng <= 180
        and abs(lat) > MIN_COORDINATE_MAGNITUDE
        and abs(lng) > MIN_COORDINATE_MAGNITUDE
    )


def _in_range(lat: float, lng: float) -> bool:
    return bool(lat) and bool(lng) and abs(lat) <= 90 and abs(lng) <= 180


def parse_header(buffer: bytes) -> dict:
    """Probe the header for a format version (first little-endian uint32)."""
    header: dict = {}
    if len(buffer) >= 4:
        (magic,) = struct.unpack_from("<I", buffer, 0)
        if 0 < magic < 0xFFFF:
            header["version"] = magic
    return header


def try_extract_pair(buffer: bytes, offset: int) -> Optional[tuple[float, float]]:
    if offset + 16 > len(buffer):
        return None
    for layout in CoordinateLayout:
        pair = layout.decode(buffer, offset)
        if pair is not None:
            return pair
    return None


def probe_altitude(buffer: bytes, coord_offset: int) -> Optional[float]:
    """Look for an altitude value near a coordinate pair."""
    for delta in ALTITUDE_OFFSETS:
        at = coord_offset + delta
        if at + 4 > len(buffer):
            continue
        (as_float,) = struct.unpack_from("<f", buffer, at)
        if math.isfinite(as_float) and -100 <= as_float <= 1000:
            return float(as_float)
        (as_int,) = struct.unpack_from("<i", buffer, at)
        if -10000 <= as_int <= 1000000:
            return as_int / 100.0
    return None


def scan_candidates(
    buffer: bytes,
    stride: int = 64,
    max_candidates: int = 5000,
    start: int = HEADER_SIZE,
) -> list[RawCandidatePoint]:
    """Walk the record area and collect every coordinate-shaped value."""
    candidates: list[RawCandidatePoint] = []
    size = len(buffer)
    if size <= start:
        return candidates

    offset = start
    timestamp_ms = 0
    while offset + 32 < size and len(candidates) < max_candidates:
        coord_offset = offset
        pair = try_extract_pair(buffer, offset)
        if pair is None and offset + 48 < size:
            for delta in SECONDARY_OFFSETS:
                pair = try_extract_pair(buffer, offset + delta)
                if pair is not None:
                    coord_offset = offset + delta
                    break

        if pair is not None:
            lat, lng = pair
            candidates.append(
                RawCandidatePoint(
                    time_offset_ms=timestamp_ms,
                    lat=lat,
                    lng=lng,
                    altitude_m=probe_altitude(buffer, coord_offset),
                )
            )
            timestamp_ms += SYNTHETIC_INTERVAL_MS

        offset += stride

    return candidates


def fix_swapped_coordinates(candidates: list[RawCandidatePoint]) -> list[RawCandidatePoint]:
    """
    Swap lat/lng for the whole set only on overwhelming evidence.

    Needs enough candidates, a clear majority that look swapped, and the
    swapped set must have substantially more in-range pairs.
    """
    if len(candidates) < SWAP_MIN_CANDIDATES:
        return candidates

    normal = 0
    swapped = 0
    checked = 0
    for c in candidates:
        if not c.lat or not c.lng:
            continue
        checked += 1
        if abs(c.lat) <= 90 and abs(c.lng) <= 180:
            normal += 1
        elif 90 < abs(c.lat) <= 180 and abs(c.lng) <= 90:
            swapped += 1

    if checked == 0 or swapped <= normal * 2 or swapped / checked <= SWAP_MIN_FRACTION:
        return candidates

    flipped = [
        RawCandidatePoint(c.time_offset_ms, c.lng, c.lat, c.altitude_m) for c in candidates
    ]
    swapped_valid = sum(1 for c in flipped if _in_range(c.lat, c.lng))
    if swapped_valid > normal * SWAP_GAIN:
        logger.info(f"Swapping lat/lng for {len(flipped)} candidates ({swapped}/{checked} looked swapped)")
        return flipped
    return candidates


def _dedup_key(point: RawCandidatePoint) -> tuple[int, int]:
    return (round(point.lat * 1_000_000), round(point.lng * 1_000_000))


def _sequential_filter(points: list[RawCandidatePoint], relaxed: bool) -> list[RawCandidatePoint]:
    kept: list[RawCandidatePoint] = []
    seen: set[tuple[int, int]] = set()

    for point in points:
        if not _in_range(point.lat, point.lng):
            continue
        key = _dedup_key(point)
        if key in seen:
            continue
        seen.add(key)

        if not kept:
            kept.append(point)
            continue

        last = kept[-1]
        distance = haversine_distance(last.lat, last.lng, point.lat, point.lng)
        if relaxed:
            if distance < RELAXED_MAX_STEP_M:
                kept.append(point)
            continue

        dt = (point.time_offset_ms - last.time_offset_ms) / 1000.0
        max_distance = MAX_SPEED_MPS * dt + GPS_TOLERANCE_M
        if distance <= max_distance and distance < MAX_STEP_M and 0 < dt < MAX_STEP_INTERVAL_S:
            kept.append(point)

    return kept


def filter_candidates(candidates: list[RawCandidatePoint]) -> list[RawCandidatePoint]:
    """Swap detection, dedup + sequential plausibility filter, relaxation."""
    if not candidates:
        return []

    maybe_fixed = fix_swapped_coordinates(candidates)
    original_valid = sum(1 for c in candidates if _in_range(c.lat, c.lng))
    fixed_valid = sum(1 for c in maybe_fixed if _in_range(c.lat, c.lng))
    use_fixed = fixed_valid > original_valid * SWAP_GAIN and fixed_valid > original_valid + SWAP_MIN_CANDIDATES
    points = maybe_fixed if use_fixed else candidates

    ordered = sorted(points, key=lambda c: c.time_offset_ms)
    valid = _sequential_filter(ordered, relaxed=False)

    needed = max(RELAX_MIN_KEEP, len(ordered) * RELAX_MIN_KEEP_FRACTION)
    if len(valid) < needed and len(ordered) > RELAX_MIN_CANDIDATES:
        relaxed = _sequential_filter(ordered, relaxed=True)
        if len(relaxed) > len(valid) * RELAX_GAIN:
            logger.info(f"Strict filter kept {len(valid)}/{len(ordered)} candidates; using relaxed ({len(relaxed)})")
            return relaxed

    return valid


def remove_neighbor_outliers(points: list[RawCandidatePoint]) -> list[RawCandidatePoint]:
    """Drop interior points with an extreme leg to either neighbor."""
    if len(points) <= OUTLIER_MIN_POINTS:
        return points

    filtered = [points[0]]
    for prev, point, nxt in zip(points, points[1:], points[2:]):
        to_prev = haversine_distance(prev.lat, prev.lng, point.lat, point.lng)
        to_next = haversine_distance(point.lat, point.lng, nxt.lat, nxt.lng)
        if to_prev > OUTLIER_LEG_M or to_next > OUTLIER_LEG_M:
            continue
        filtered.append(point)
    filtered.append(points[-1])

    if len(filtered) > len(points) * OUTLIER_MIN_KEEP_FRACTION:
        return filtered
    return points


def extract_points(buffer: bytes, settings: Optional[PipelineSettings] = None) -> list[FlightLogDataPoint]:
    """Scan a raw flight record and return the plausible track."""
    settings = settings or PipelineSettings.from_env()

    candidates = scan_candidates(buffer, settings.scan_stride, settings.max_candidates)
    track = remove_neighbor_outliers(filter_candidates(candidates))
    logger.info(f"Heuristic scan: {len(candidates)} candidates, {len(track)} plausible points")

    return [
        FlightLogDataPoint(
            timestamp_offset_ms=c.time_offset_ms,
            lat=c.lat,
            lng=c.lng,
            altitude_m=c.altitude_m,
        )
        for c in track
    ]


def build_heuristic_flight_log(
    buffer: bytes,
    filename: str,
    points: list[FlightLogDataPoint],
    settings: Optional[PipelineSettings] = None,
) -> FlightLog:
    """Wrap heuristic points in a FlightLog with derived statistics."""
    settings = settings or PipelineSettings.from_env()
    name = base_filename(filename)
    stats = compute_flight_stats(points)
    duration = resolve_duration([p.timestamp_offset_ms for p in points])

    metadata = {
        "parser": PARSER_NAME,
        "canonical_version": CANONICAL_VERSION,
        "file_size": len(buffer),
        "data_point_count": len(points),
        "note": HEURISTIC_NOTE,
    }
    header = parse_header(buffer)
    if "version" in header:
        metadata["header_version"] = header["version"]

    return FlightLog(
        id=compute_log_id(buffer, name),
        filename=name,
        data_points=points,
        flight_date=date_from_filename(name),
        drone_model=settings.default_drone_model,
        duration_seconds=duration if duration > 0 else None,
        max_altitude_m=stats.max_altitude_m,
        max_speed_mps=stats.max_speed_mps,
        max_distance_m=stats.max_distance_m,
        total_distance_m=stats.total_distance_m,
        home_location=stats.home_location,
        start_location=stats.start_location,
        end_location=stats.end_location,
        battery_start_percent=stats.battery_start_percent,
        battery_end_percent=stats.battery_end_percent,
        metadata=metadata,
    )
