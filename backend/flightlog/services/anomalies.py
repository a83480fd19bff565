"""
Anomaly detection for decoded telemetry.

Each frame is checked against a fixed set of rules. A rule produces a key
(e.g. "battery-low-15") and the detector records a key at most once per
time window, so a condition that persists for minutes shows up once every
window instead of once per frame.
"""

import logging
import math
from typing import Optional

from flightlog.models.frame import DecodedFrame
from flightlog.models.telemetry import AnomalyRecord, Severity


logger = logging.getLogger(__name__)


DEFAULT_WINDOW_MS = 10000

BATTERY_WARNING_PERCENT = 20
BATTERY_CRITICAL_PERCENT = 10
LOW_SATELLITE_COUNT = 6

IGNORED_IMU_REASONS = {"None", "MonitorError"}
IGNORED_MOTOR_START_CAUSES = {"None"}


class AnomalyDetector:
    """
    Windowed deduplication of anomaly records.

    The first occurrence of a key is always recorded; afterwards the key is
    suppressed until window_ms has passed since it was last recorded.
    """

    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS):
        self.window_ms = window_ms
        self.warnings: list[AnomalyRecord] = []
        self.errors: list[AnomalyRecord] = []
        self._last_seen: dict[str, int] = {}

    def check(self, frame: DecodedFrame, offset_ms: int) -> None:
        """Evaluate every rule against one frame."""
        battery = frame.battery.percent
        if battery is not None:
            if BATTERY_CRITICAL_PERCENT <= battery < BATTERY_WARNING_PERCENT:
                bucket = int(math.floor(battery / 5) * 5)
                self._record(
                    f"battery-low-{bucket}", Severity.WARNING, "battery",
                    f"Low battery: {battery:.0f}%", offset_ms, {"battery_percent": battery},
                )
            elif battery < BATTERY_CRITICAL_PERCENT:
                bucket = int(math.floor(battery / 2) * 2)
                self._record(
                    f"battery-critical-{bucket}", Severity.ERROR, "battery",
                    f"Critical battery: {battery:.0f}%", offset_ms, {"battery_percent": battery},
                )

        if frame.voltage_warning is not None and frame.voltage_warning > 0:
            self._record(
                "voltage-warning", Severity.WARNING, "battery",
                f"Battery voltage warning (level {frame.voltage_warning})", offset_ms,
                {"voltage_warning": frame.voltage_warning},
            )

        if frame.gimbal_stuck:
            self._record("gimbal-stuck", Severity.ERROR, "gimbal", "Gimbal stuck", offset_ms)

        if frame.downlink_lost:
            self._record(
                "signal-downlink-lost", Severity.WARNING, "signal", "Downlink signal lost", offset_ms,
            )
        if frame.uplink_lost:
            self._record(
                "signal-uplink-lost", Severity.WARNING, "signal", "Uplink signal lost", offset_ms,
            )

        if frame.compass_error:
            self._record("compass-error", Severity.ERROR, "compass", "Compass error", offset_ms)

        reason = frame.imu_init_fail_reason
        if reason and reason not in IGNORED_IMU_REASONS:
            self._record(
                f"imu-error-{reason}", Severity.ERROR, "imu",
                f"IMU initialization failed: {reason}", offset_ms, {"reason": reason},
            )

        if frame.motor_blocked:
            self._record("motor-blocked", Severity.ERROR, "motor", "Motor blocked", offset_ms)

        cause = frame.motor_start_failed_cause
        if cause and cause not in IGNORED_MOTOR_START_CAUSES:
            self._record(
                f"motor-start-failed-{cause}", Severity.ERROR, "motor",
                f"Motor start failed: {cause}", offset_ms, {"cause": cause},
            )

        satellites = frame.satellite_count
        if satellites is not None and 0 < satellites < LOW_SATELLITE_COUNT:
            bucket = int(math.floor(satellites / 2) * 2)
            self._record(
                f"gps-low-{bucket}", Severity.WARNING, "gps",
                f"Low GPS satellite count: {satellites}", offset_ms,
                {"satellites": satellites, "gps_level": frame.gps_level},
            )

        if frame.barometer_dead_in_air:
            self._record(
                "barometer-dead", Severity.ERROR, "barometer", "Barometer failure in flight", offset_ms,
            )

    def _record(
        self,
        key: str,
        severity: Severity,
        category: str,
        message: str,
        offset_ms: int,
        details: Optional[dict] = None,
    ) -> None:
        last = self._last_seen.get(key)
        if last is not None and offset_ms - last < self.window_ms:
            return
        self._last_seen[key] = offset_ms

        record = AnomalyRecord(
            severity=severity,
            category=category,
            message=message,
            timestamp_offset_ms=offset_ms,
            details=dict(details or {}, key=key),
        )
        if severity == Severity.ERROR:
            self.errors.append(record)
        else:
            self.warnings.append(record)
