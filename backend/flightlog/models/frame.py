"""
Decoded frame model (decoder-format, unnormalized).

Shape adapters flatten each decoder record (GeoJSON point, line vertex or
frame with nested osd/camera/gimbal/battery/rc/recover blocks) into this
structure before normalization.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from flightlog.models.telemetry import BatteryReading


@dataclass
class DecodedFrame:
    """One decoder record with every optional reading made explicit."""

    index: int
    lat: float
    lng: float

    timestamp: Optional[float] = None  # s, ms or finer; unit resolved later
    fly_time_s: Optional[float] = None

    altitude_m: Optional[float] = None
    speed_mps: Optional[float] = None
    heading_deg: Optional[float] = None
    gimbal_pitch_deg: Optional[float] = None
    satellite_count: Optional[int] = None
    gps_level: Optional[int] = None

    battery: BatteryReading = field(default_factory=BatteryReading)

    # Camera
    is_photo_flag: bool = False
    photo_num: Optional[int] = None
    photo_filename_hint: Optional[str] = None
    is_video: bool = False

    # Fault flags
    voltage_warning: Optional[int] = None
    gimbal_stuck: bool = False
    uplink_lost: bool = False
    downlink_lost: bool = False
    uplink_signal: Optional[float] = None
    downlink_signal: Optional[float] = None
    compass_error: bool = False
    imu_init_fail_reason: Optional[str] = None
    motor_blocked: bool = False
    motor_start_failed_cause: Optional[str] = None
    barometer_dead_in_air: bool = False

    # Identity (from the recover block)
    battery_serial_number: Optional[str] = None
    drone_serial_number: Optional[str] = None
    drone_model: Optional[str] = None

    # Out-of-band photo locations ("moment" markers)
    moment_pic_lat: list[float] = field(default_factory=list)
    moment_pic_lng: list[float] = field(default_factory=list)

    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_gps(self) -> bool:
        return bool(self.lat) and bool(self.lng)
