"""
Parse orchestration.

The trusted decoder is always preferred. Only when the decoder tool is
absent does parsing fall back to the heuristic byte scan, whose output is
then gated for quality. Every other decoder failure is terminal.
"""

import logging
from typing import Optional

from flightlog.config import PipelineSettings
from flightlog.models.telemetry import (
    FlightLog,
    FlightLogDataPoint,
    ParseError,
    ParseErrorKind,
    ParseResult,
)
from flightlog.services.binary_extractor import build_heuristic_flight_log, extract_points
from flightlog.services.decoder_cli import run_decoder
from flightlog.services.normalizer import normalize_payload


logger = logging.getLogger(__name__)


DECODER_REMEDY = (
    "Install the dji-log-parser decoder and set DJI_LOG_PARSER_PATH for accurate parsing."
)


def check_heuristic_quality(points: list[FlightLogDataPoint], min_points: int = 10) -> None:
    """
    Reject heuristic output that is too thin or clearly misplaced.

    Raises:
        ParseError: INSUFFICIENT_HEURISTIC_DATA or IMPLAUSIBLE_COORDINATES
    """
    if len(points) < min_points:
        raise ParseError(
            ParseErrorKind.INSUFFICIENT_HEURISTIC_DATA,
            f"Heuristic parser found only {len(points)} valid GPS points (need at least {min_points}). "
            + DECODER_REMEDY,
            {"points": len(points), "min_points": min_points},
        )

    first = points[0]
    if abs(first.lat) > 50 or 60 < abs(first.lng) < 120:
        raise ParseError(
            ParseErrorKind.IMPLAUSIBLE_COORDINATES,
            f"Heuristic parser produced implausible coordinates ({first.lat:.5f}, {first.lng:.5f}). "
            + DECODER_REMEDY,
            {"first_point": [first.lat, first.lng], "points": len(points)},
        )


def parse_with_decoder(data: bytes, filename: str, settings: PipelineSettings) -> FlightLog:
    output = run_decoder(data, filename, settings)

    last_error: Optional[ParseError] = None
    for source, payload in output.payloads:
        try:
            return normalize_payload(payload, filename, data, settings, decoder_source=source)
        except ParseError as e:
            logger.warning(f"Decoder {source} output rejected: {e.kind.value}: {e.message}")
            last_error = e
    raise last_error


def parse_heuristic(data: bytes, filename: str, settings: PipelineSettings) -> FlightLog:
    points = extract_points(data, settings)
    check_heuristic_quality(points, settings.min_heuristic_points)
    return build_heuristic_flight_log(data, filename, points, settings)


def parse_flight_log(data: bytes, filename: str, settings: Optional[PipelineSettings] = None) -> ParseResult:
    """
    Parse one flight record.

    Never raises ParseError; failures are returned in the ParseResult.
    """
    settings = settings or PipelineSettings.from_env()

    try:
        flight_log = parse_with_decoder(data, filename, settings)
        logger.info(f"Parsed {filename} with decoder: {len(flight_log.data_points)} points")
        return ParseResult.ok(flight_log)
    except ParseError as e:
        if e.kind != ParseErrorKind.TOOL_NOT_FOUND:
            logger.error(f"Parsing {filename} failed: {e.kind.value}: {e.message}")
            return ParseResult.fail(e)
        logger.warning(f"Decoder unavailable, falling back to heuristic scan for {filename}")

    try:
        flight_log = parse_heuristic(data, filename, settings)
    except ParseError as e:
        logger.error(f"Heuristic parse of {filename} failed: {e.kind.value}: {e.message}")
        return ParseResult.fail(e)

    logger.info(f"Parsed {filename} heuristically: {len(flight_log.data_points)} points")
    return ParseResult.ok(flight_log)
