"""
API routes for flight logs and battery statistics.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from flightlog.api.schemas import (
    AnomalyResponse,
    BatteryReadingResponse,
    BatteryStatsResponse,
    DataPointResponse,
    FlightLogResponse,
    FlightLogSummaryResponse,
    GeoPointResponse,
    ParseErrorDetail,
)
from flightlog.models.telemetry import AnomalyRecord, FlightLog, GeoPoint, ParseError, ParseErrorKind
from flightlog.services.battery_stats import compute_battery_stats
from flightlog.services.orchestrator import parse_flight_log
from flightlog.services.repository import DuplicateFlightLogError, get_repository
from flightlog.utils.logfiles import base_filename, validate_log_file


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flight-logs", tags=["flight-logs"])


ERROR_STATUS = {
    ParseErrorKind.NO_GPS_DATA: 422,
    ParseErrorKind.INSUFFICIENT_HEURISTIC_DATA: 422,
    ParseErrorKind.IMPLAUSIBLE_COORDINATES: 422,
    ParseErrorKind.CREDENTIAL_REQUIRED: 422,
    ParseErrorKind.CREDENTIAL_INVALID: 422,
    ParseErrorKind.OUTPUT_TOO_LARGE: 413,
    ParseErrorKind.SUBPROCESS_TIMEOUT: 504,
    ParseErrorKind.MALFORMED_OUTPUT: 502,
    ParseErrorKind.DECODER_FAILED: 502,
    ParseErrorKind.TOOL_NOT_FOUND: 502,
    ParseErrorKind.IO_FAILURE: 502,
}


def _geo(point: Optional[GeoPoint]) -> Optional[GeoPointResponse]:
    if point is None:
        return None
    return GeoPointResponse(lat=point.lat, lng=point.lng)


def _anomaly(record: AnomalyRecord) -> AnomalyResponse:
    return AnomalyResponse(
        severity=record.severity.value,
        category=record.category,
        message=record.message,
        timestamp_offset_ms=record.timestamp_offset_ms,
        details=record.details,
    )


def _build_flight_log_response(flight_log: FlightLog) -> FlightLogResponse:
    return FlightLogResponse(
        id=flight_log.id,
        filename=flight_log.filename,
        flight_date=flight_log.flight_date,
        drone_model=flight_log.drone_model,
        duration_seconds=flight_log.duration_seconds,
        max_altitude_m=flight_log.max_altitude_m,
        max_speed_mps=flight_log.max_speed_mps,
        max_distance_m=flight_log.max_distance_m,
        total_distance_m=flight_log.total_distance_m,
        home_location=_geo(flight_log.home_location),
        start_location=_geo(flight_log.start_location),
        end_location=_geo(flight_log.end_location),
        battery_start_percent=flight_log.battery_start_percent,
        battery_end_percent=flight_log.battery_end_percent,
        data_point_count=len(flight_log.data_points),
        photo_count=flight_log.photo_count,
        time_range=flight_log.get_time_range(),
        warnings=[_anomaly(r) for r in flight_log.warnings],
        errors=[_anomaly(r) for r in flight_log.errors],
        metadata=flight_log.metadata,
    )


def _parse_error_exception(error: ParseError) -> HTTPException:
    detail = ParseErrorDetail(kind=error.kind.value, message=error.message, context=error.context)
    return HTTPException(status_code=ERROR_STATUS.get(error.kind, 502), detail=detail.model_dump())


@router.post("/parse", response_model=FlightLogResponse, status_code=201)
async def upload_flight_log(
    request: Request,
    filename: str = Query(..., description="Original flight record filename"),
):
    """
    Parse an uploaded flight record (raw bytes in the request body).

    The decoder subprocess runs in a worker thread.
    """
    data = await request.body()
    name = base_filename(filename)

    valid, message = validate_log_file(name, len(data))
    if not valid:
        raise HTTPException(status_code=400, detail=message)

    repo = get_repository()
    existing = repo.find_by_filename(name)
    if existing is not None:
        raise HTTPException(status_code=409, detail=f"Flight log already uploaded: {name} (id {existing.id})")

    result = await run_in_threadpool(parse_flight_log, data, name)
    if not result.success:
        raise _parse_error_exception(result.error)

    try:
        repo.add(result.flight_log)
    except DuplicateFlightLogError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _build_flight_log_response(result.flight_log)


@router.get("", response_model=list[FlightLogSummaryResponse])
async def list_flight_logs():
    """
    List stored flight logs.

    Returns summaries sorted by flight date (newest first).
    """
    repo = get_repository()
    return [FlightLogSummaryResponse(**asdict(s)) for s in repo.list_summaries()]


@router.get("/{log_id}", response_model=FlightLogResponse)
async def get_flight_log(log_id: str):
    repo = get_repository()
    flight_log = repo.get(log_id)

    if flight_log is None:
        raise HTTPException(status_code=404, detail=f"Flight log not found: {log_id}")

    return _build_flight_log_response(flight_log)


@router.get("/{log_id}/data-points", response_model=list[DataPointResponse])
async def get_data_points(
    log_id: str,
    start_ms: int = Query(0, ge=0, description="First offset to include (ms)"),
    end_ms: Optional[int] = Query(None, ge=0, description="Last offset to include (ms)"),
):
    """
    Get the telemetry samples of a flight log, optionally limited to an
    offset range.
    """
    repo = get_repository()
    flight_log = repo.get(log_id)

    if flight_log is None:
        raise HTTPException(status_code=404, detail=f"Flight log not found: {log_id}")
    if end_ms is not None and end_ms < start_ms:
        raise HTTPException(status_code=400, detail="Invalid offset range")

    points = [
        p for p in flight_log.data_points
        if p.timestamp_offset_ms >= start_ms and (end_ms is None or p.timestamp_offset_ms <= end_ms)
    ]
    return [
        DataPointResponse(
            timestamp_offset_ms=p.timestamp_offset_ms,
            lat=p.lat,
            lng=p.lng,
            altitude_m=p.altitude_m,
            speed_mps=p.speed_mps,
            heading_deg=p.heading_deg,
            gimbal_pitch_deg=p.gimbal_pitch_deg,
            battery=BatteryReadingResponse(**asdict(p.battery)),
            satellite_count=p.satellite_count,
            is_photo=p.is_photo,
            photo_filename=p.photo_filename,
            is_video_recording=p.is_video_recording,
        )
        for p in points
    ]


# ============================================================================
# Battery Routes
# ============================================================================

battery_router = APIRouter(prefix="/batteries", tags=["batteries"])


@battery_router.get("", response_model=list[BatteryStatsResponse])
async def list_battery_stats():
    """Usage and health aggregated per battery serial number."""
    repo = get_repository()
    return [BatteryStatsResponse(**asdict(s)) for s in compute_battery_stats(repo.all())]
