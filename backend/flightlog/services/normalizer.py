"""
Normalizer for decoded frames.

Turns the DecodedFrame list produced by the output adapters into a
canonical FlightLog (v1):
- timestamps resolved to ms offsets from the first valid timestamp
- anomalies evaluated per frame in input order
- points ordered by offset, one point per offset
- statistics folded once over the ordered points
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from flightlog.config import PipelineSettings
from flightlog.models.frame import DecodedFrame
from flightlog.models.telemetry import (
    CANONICAL_VERSION,
    FlightLog,
    FlightLogDataPoint,
    ParseError,
    ParseErrorKind,
    clamp_offset_ms,
)
from flightlog.services.anomalies import AnomalyDetector
from flightlog.services.decoder_output import decode_payload
from flightlog.services.photos import PhotoEventTracker
from flightlog.services.statistics import compute_flight_stats, resolve_duration
from flightlog.utils.coordinates import haversine_distance
from flightlog.utils.logfiles import base_filename, compute_log_id, date_from_filename


logger = logging.getLogger(__name__)


PARSER_NAME = "dji-log-parser-cli"

FALLBACK_INTERVAL_MS = 100
SECONDS_LIMIT = 1e10
MILLISECONDS_LIMIT = 1e12
PLAUSIBLE_YEARS = (2010, 2035)
MOMENT_MATCH_RADIUS_M = 100.0


def timestamp_to_ms(value: float) -> float:
    """Resolve the unit of a raw timestamp by magnitude."""
    if value < SECONDS_LIMIT:
        return value * 1000.0
    if value < MILLISECONDS_LIMIT:
        return value
    return value / 1000.0


def _plausible_date(ms: float) -> Optional[datetime]:
    try:
        moment = datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    lo, hi = PLAUSIBLE_YEARS
    if lo <= moment.year <= hi:
        return moment
    return None


def _correlate_moment_photos(
    frames: list[DecodedFrame],
    points: list[FlightLogDataPoint],
    tracker: PhotoEventTracker,
    mark: bool,
) -> int:
    """
    Match out-of-band photo locations to the nearest data point.

    Returns the number of markers matched within MOMENT_MATCH_RADIUS_M.
    """
    if not frames or not points:
        return 0
    first = frames[0]
    pairs = [
        (lat, lng)
        for lat, lng in zip(first.moment_pic_lat, first.moment_pic_lng)
        if isinstance(lat, (int, float)) and isinstance(lng, (int, float)) and lat and lng
        and lat == lat and lng == lng
    ]
    if not pairs:
        return 0

    matched = 0
    for lat, lng in pairs:
        best = None
        best_distance = None
        for point in points:
            if not point.has_position:
                continue
            distance = haversine_distance(lat, lng, point.lat, point.lng)
            if best_distance is None or distance < best_distance:
                best, best_distance = point, distance
        if best is None or best_distance > MOMENT_MATCH_RADIUS_M:
            continue
        matched += 1
        if mark and not best.is_photo:
            tracker.sequence += 1
            best.is_photo = True
            best.photo_filename = f"DJI_PHOTO_{tracker.sequence:04d}_D.DNG"

    logger.info(f"Matched {matched}/{len(pairs)} moment photo locations")
    return matched


def normalize_frames(
    frames: list[DecodedFrame],
    filename: str,
    content: bytes = b"",
    settings: Optional[PipelineSettings] = None,
    decoder_source: Optional[str] = None,
) -> FlightLog:
    """
    Convert decoded frames into a canonical FlightLog.

    Raises:
        ParseError: NO_GPS_DATA if no frame carries a position
    """
    settings = settings or PipelineSettings.from_env()
    name = base_filename(filename)

    if not any(f.has_gps for f in frames):
        raise ParseError(
            ParseErrorKind.NO_GPS_DATA,
            "No GPS coordinates found in decoded telemetry. The flight may not have had GPS lock.",
            {"frames": len(frames)},
        )

    detector = AnomalyDetector(settings.anomaly_window_ms)
    tracker = PhotoEventTracker()

    first_ms: Optional[float] = None
    last_offset: Optional[int] = None
    flight_date: Optional[datetime] = None
    max_fly_time: Optional[float] = None
    battery_serial = drone_serial = drone_model = None

    points: list[FlightLogDataPoint] = []
    for position, frame in enumerate(frames):
        ts_ms = timestamp_to_ms(frame.timestamp) if frame.timestamp is not None else None

        if ts_ms is not None and first_ms is None:
            first_ms = ts_ms
            flight_date = _plausible_date(ts_ms)
            if flight_date is None:
                logger.warning(f"Ignoring unrealistic timestamp-based flight date from timestamp {frame.timestamp}")

        if ts_ms is not None:
            offset = clamp_offset_ms(ts_ms - first_ms)
        elif last_offset is not None:
            offset = clamp_offset_ms(last_offset + FALLBACK_INTERVAL_MS)
        else:
            offset = clamp_offset_ms(position * FALLBACK_INTERVAL_MS)
        last_offset = offset

        if frame.fly_time_s is not None and frame.fly_time_s > 0:
            max_fly_time = max(max_fly_time or 0.0, frame.fly_time_s)

        battery_serial = battery_serial or frame.battery_serial_number
        drone_serial = drone_serial or frame.drone_serial_number
        drone_model = drone_model or frame.drone_model

        detector.check(frame, offset)

        is_photo = tracker.observe(frame)
        photo_filename = None
        if is_photo and settings.emit_log_photos:
            absolute_ms = ts_ms if ts_ms is not None and _plausible_date(ts_ms) else None
            photo_filename = tracker.filename_for(frame, absolute_ms)
        else:
            is_photo = False

        points.append(
            FlightLogDataPoint(
                timestamp_offset_ms=offset,
                lat=frame.lat if frame.has_gps else None,
                lng=frame.lng if frame.has_gps else None,
                altitude_m=frame.altitude_m if frame.altitude_m and frame.altitude_m > 0 else None,
                speed_mps=frame.speed_mps if frame.speed_mps and frame.speed_mps > 0 else None,
                heading_deg=frame.heading_deg,
                gimbal_pitch_deg=frame.gimbal_pitch_deg,
                battery=frame.battery,
                satellite_count=frame.satellite_count,
                is_photo=is_photo,
                photo_filename=photo_filename,
                is_video_recording=frame.is_video,
                raw_data=frame.raw,
            )
        )

    points = order_points(points)

    moment_matches = _correlate_moment_photos(frames, points, tracker, settings.emit_log_photos)

    filename_date = date_from_filename(name)
    if flight_date is None:
        flight_date = filename_date
    elif filename_date is not None and flight_date.date() != filename_date.date():
        logger.warning(f"Flight date {flight_date.isoformat()} differs from filename date {filename_date.isoformat()}")

    stats = compute_flight_stats(points)
    duration = resolve_duration([p.timestamp_offset_ms for p in points], max_fly_time)

    metadata: dict[str, Any] = {
        "parser": PARSER_NAME,
        "canonical_version": CANONICAL_VERSION,
        "data_point_count": len(points),
        "frame_count": len(frames),
        "moment_photo_matches": moment_matches,
    }
    if decoder_source:
        metadata["decoder_source"] = decoder_source
    if battery_serial:
        metadata["battery_serial_number"] = battery_serial
    if drone_serial:
        metadata["drone_serial_number"] = drone_serial
    if drone_model:
        metadata["drone_model"] = drone_model

    logger.info(
        f"Normalized {len(frames)} frames -> {len(points)} points, "
        f"{len(detector.warnings)} warnings, {len(detector.errors)} errors"
    )

    return FlightLog(
        id=compute_log_id(content, name),
        filename=name,
        data_points=points,
        flight_date=flight_date,
        drone_model=drone_model or settings.default_drone_model,
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
        warnings=detector.warnings,
        errors=detector.errors,
        metadata=metadata,
    )


def order_points(points: list[FlightLogDataPoint]) -> list[FlightLogDataPoint]:
    """Stable sort by offset; the first point (input order) wins each offset."""
    ordered = sorted(points, key=lambda p: p.timestamp_offset_ms)
    unique: list[FlightLogDataPoint] = []
    for point in ordered:
        if unique and unique[-1].timestamp_offset_ms == point.timestamp_offset_ms:
            continue
        unique.append(point)
    dropped = len(points) - len(unique)
    if dropped:
        logger.info(f"Dropped {dropped} points with duplicate offsets")
    return unique


def normalize_payload(
    payload: Any,
    filename: str,
    content: bytes = b"",
    settings: Optional[PipelineSettings] = None,
    decoder_source: Optional[str] = None,
) -> FlightLog:
    """Adapters + normalization for one decoder JSON payload."""
    frames = decode_payload(payload)
    return normalize_frames(frames, filename, content, settings, decoder_source)
