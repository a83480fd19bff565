"""
Canonical flight-log data model (v1).

Every parsing strategy (trusted decoder or heuristic scan) produces this
structure:
- one FlightLog per parsed session, with derived statistics
- an ordered list of FlightLogDataPoint samples
- deduplicated warning/error AnomalyRecords
- ParseResult wrapping either a FlightLog or a ParseError
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


CANONICAL_VERSION = "v1"

MAX_OFFSET_MS = 2**31 - 1  # INTEGER column range of the persistence layer


class Severity(Enum):
    """Severity of an anomaly record."""

    WARNING = "warning"
    ERROR = "error"


class ParseErrorKind(Enum):
    """Failure taxonomy for one parse attempt."""

    TOOL_NOT_FOUND = "tool_not_found"
    CREDENTIAL_REQUIRED = "credential_required"
    CREDENTIAL_INVALID = "credential_invalid"
    SUBPROCESS_TIMEOUT = "subprocess_timeout"
    OUTPUT_TOO_LARGE = "output_too_large"
    MALFORMED_OUTPUT = "malformed_output"
    NO_GPS_DATA = "no_gps_data"
    INSUFFICIENT_HEURISTIC_DATA = "insufficient_heuristic_data"
    IMPLAUSIBLE_COORDINATES = "implausible_coordinates"
    IO_FAILURE = "io_failure"
    DECODER_FAILED = "decoder_failed"


class ParseError(Exception):
    """
    Terminal failure of a parse attempt.

    Carries a human-readable message plus structured context (checked
    decoder paths, captured stderr/stdout excerpts, frame counts, ...).
    """

    def __init__(self, kind: ParseErrorKind, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = context or {}

    def __repr__(self) -> str:
        return f"ParseError({self.kind.value!r}, {self.message!r})"


@dataclass(frozen=True)
class GeoPoint:
    """WGS84 position in degrees."""

    lat: float
    lng: float


@dataclass
class RawCandidatePoint:
    """GPS-shaped value found by the binary scanner, before validation."""

    time_offset_ms: int
    lat: float
    lng: float
    altitude_m: Optional[float] = None


@dataclass
class BatteryReading:
    """Battery block of one telemetry sample."""

    percent: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None
    cell_voltages: list[float] = field(default_factory=list)
    cell_voltage_deviation: Optional[float] = None
    current_capacity: Optional[float] = None
    full_capacity: Optional[float] = None


@dataclass
class FlightLogDataPoint:
    """One normalized telemetry sample."""

    timestamp_offset_ms: int  # ms since flight start, [0, 2**31-1]

    # Position (WGS84 degrees)
    lat: Optional[float] = None
    lng: Optional[float] = None
    altitude_m: Optional[float] = None

    # Motion / attitude
    speed_mps: Optional[float] = None
    heading_deg: Optional[float] = None
    gimbal_pitch_deg: Optional[float] = None

    battery: BatteryReading = field(default_factory=BatteryReading)
    satellite_count: Optional[int] = None

    # Camera events
    is_photo: bool = False
    photo_filename: Optional[str] = None
    is_video_recording: bool = False

    # Original source fields, kept for debugging
    raw_data: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_position(self) -> bool:
        return bool(self.lat) and bool(self.lng)

    @property
    def battery_percent(self) -> Optional[float]:
        return self.battery.percent


@dataclass
class AnomalyRecord:
    """A deduplicated warning or error derived from telemetry."""

    severity: Severity
    category: str
    message: str
    timestamp_offset_ms: int
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class FlightLog:
    """
    Canonical representation of one parsed flight session.

    Statistics are computed once at parse time; recalculating them means
    parsing again.
    """

    id: str
    filename: str
    data_points: list[FlightLogDataPoint]

    flight_date: Optional[datetime] = None
    drone_model: Optional[str] = None
    duration_seconds: Optional[float] = None

    max_altitude_m: Optional[float] = None
    max_speed_mps: Optional[float] = None
    max_distance_m: Optional[float] = None
    total_distance_m: Optional[float] = None

    home_location: Optional[GeoPoint] = None
    start_location: Optional[GeoPoint] = None
    end_location: Optional[GeoPoint] = None

    battery_start_percent: Optional[float] = None
    battery_end_percent: Optional[float] = None

    warnings: list[AnomalyRecord] = field(default_factory=list)
    errors: list[AnomalyRecord] = field(default_factory=list)

    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def parser(self) -> Optional[str]:
        return self.metadata.get("parser")

    @property
    def battery_serial_number(self) -> Optional[str]:
        return self.metadata.get("battery_serial_number")

    @property
    def photo_count(self) -> int:
        return sum(1 for p in self.data_points if p.is_photo)

    def get_time_range(self) -> tuple[int, int]:
        if not self.data_points:
            return (0, 0)
        return (self.data_points[0].timestamp_offset_ms, self.data_points[-1].timestamp_offset_ms)


@dataclass
class FlightLogSummary:
    """Summary of a flight log for list views (no data points)."""

    id: str
    filename: str
    flight_date: Optional[datetime]
    drone_model: Optional[str]
    parser: Optional[str]
    duration_seconds: Optional[float]
    total_distance_m: Optional[float]
    max_altitude_m: Optional[float]
    data_point_count: int
    warning_count: int
    error_count: int

    @classmethod
    def from_flight_log(cls, flight_log: FlightLog) -> "FlightLogSummary":
        return cls(
            id=flight_log.id,
            filename=flight_log.filename,
            flight_date=flight_log.flight_date,
            drone_model=flight_log.drone_model,
            parser=flight_log.parser,
            duration_seconds=flight_log.duration_seconds,
            total_distance_m=flight_log.total_distance_m,
            max_altitude_m=flight_log.max_altitude_m,
            data_point_count=len(flight_log.data_points),
            warning_count=len(flight_log.warnings),
            error_count=len(flight_log.errors),
        )


@dataclass
class ParseResult:
    """Outcome of one parse attempt: exactly one of flight_log / error is set."""

    flight_log: Optional[FlightLog] = None
    error: Optional[ParseError] = None

    def __post_init__(self):
        if (self.flight_log is None) == (self.error is None):
            raise ValueError("ParseResult needs exactly one of flight_log or error")

    @property
    def success(self) -> bool:
        return self.flight_log is not None

    @classmethod
    def ok(cls, flight_log: FlightLog) -> "ParseResult":
        return cls(flight_log=flight_log)

    @classmethod
    def fail(cls, error: ParseError) -> "ParseResult":
        return cls(error=error)


def clamp_offset_ms(value: float) -> int:
    """Round and clamp a millisecond offset into [0, 2**31-1]."""
    offset = int(round(value))
    if offset < 0:
        return 0
    if offset > MAX_OFFSET_MS:
        return MAX_OFFSET_MS
    return offset
