"""
API schemas (Pydantic models) for request/response validation.
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


# ============================================================================
# Flight Log Schemas
# ============================================================================

class GeoPointResponse(BaseModel):
    """WGS84 position."""
    lat: float
    lng: float


class AnomalyResponse(BaseModel):
    """Warning or error derived from telemetry."""
    severity: str
    category: str
    message: str
    timestamp_offset_ms: int
    details: dict[str, Any] = Field(default_factory=dict)


class FlightLogSummaryResponse(BaseModel):
    """Summary of a flight log for listing."""
    id: str
    filename: str
    flight_date: Optional[datetime] = None
    drone_model: Optional[str] = None
    parser: Optional[str] = None
    duration_seconds: Optional[float] = None
    total_distance_m: Optional[float] = None
    max_altitude_m: Optional[float] = None
    data_point_count: int
    warning_count: int
    error_count: int


class FlightLogResponse(BaseModel):
    """Flight log with derived statistics (data points served separately)."""
    id: str
    filename: str
    flight_date: Optional[datetime] = None
    drone_model: Optional[str] = None
    duration_seconds: Optional[float] = None
    max_altitude_m: Optional[float] = None
    max_speed_mps: Optional[float] = None
    max_distance_m: Optional[float] = None
    total_distance_m: Optional[float] = None
    home_location: Optional[GeoPointResponse] = None
    start_location: Optional[GeoPointResponse] = None
    end_location: Optional[GeoPointResponse] = None
    battery_start_percent: Optional[float] = None
    battery_end_percent: Optional[float] = None
    data_point_count: int
    photo_count: int
    time_range: tuple[int, int]  # (first, last) offset in ms
    warnings: list[AnomalyResponse]
    errors: list[AnomalyResponse]
    metadata: dict[str, Any]


class BatteryReadingResponse(BaseModel):
    """Battery block of one data point."""
    percent: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None
    cell_voltages: list[float] = Field(default_factory=list)
    cell_voltage_deviation: Optional[float] = None
    current_capacity: Optional[float] = None
    full_capacity: Optional[float] = None


class DataPointResponse(BaseModel):
    """Single telemetry sample."""
    timestamp_offset_ms: int
    lat: Optional[float] = None
    lng: Optional[float] = None
    altitude_m: Optional[float] = None
    speed_mps: Optional[float] = None
    heading_deg: Optional[float] = None
    gimbal_pitch_deg: Optional[float] = None
    battery: BatteryReadingResponse
    satellite_count: Optional[int] = None
    is_photo: bool = False
    photo_filename: Optional[str] = None
    is_video_recording: bool = False


# ============================================================================
# Battery Schemas
# ============================================================================

class BatteryStatsResponse(BaseModel):
    """Aggregated usage and health of one battery."""
    serial_number: str
    flight_count: int
    total_flight_time_seconds: float
    average_flight_time_seconds: float
    total_distance_m: float
    total_battery_usage_percent: float
    average_battery_usage_percent: Optional[float] = None
    average_battery_start_percent: Optional[float] = None
    average_battery_end_percent: Optional[float] = None
    first_flight_date: Optional[datetime] = None
    last_flight_date: Optional[datetime] = None
    average_voltage: Optional[float] = None
    min_voltage: Optional[float] = None
    max_voltage: Optional[float] = None
    average_temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None
    average_cell_deviation: Optional[float] = None
    max_cell_deviation: Optional[float] = None
    full_capacity: Optional[float] = None


# ============================================================================
# Error Schemas
# ============================================================================

class ParseErrorDetail(BaseModel):
    """Detail payload of a failed parse."""
    kind: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
