"""
Decoder output adapters.

The trusted decoder emits one of several JSON shapes depending on version
and flags: a LineString geometry, a GeoJSON FeatureCollection of points, or
a raw frames array with nested osd/camera/gimbal/battery/rc/recover blocks.
Each adapter recognizes one shape and flattens it into DecodedFrame
records. Normalization happens in flightlog.services.normalizer.
"""

import logging
import math
from typing import Any, Optional, Protocol

import pandas as pd

from flightlog.models.frame import DecodedFrame
from flightlog.models.telemetry import BatteryReading, ParseError, ParseErrorKind


logger = logging.getLogger(__name__)


LINE_VERTEX_INTERVAL_S = 0.1

PHOTO_FILENAME_KEYS = ["photoFileName", "photo_filename", "fileName", "file_name", "file_name_base", "fileIndex"]
CUSTOM_FILENAME_KEYS = ["photoFileName", "fileName", "file_name"]

BATTERY_SERIAL_KEYS = ["batterySn", "batterySerialNumber", "batterySerial"]
DRONE_SERIAL_KEYS = ["aircraftSn", "aircraftSN", "aircraftSerialNumber"]
DRONE_MODEL_KEYS = ["aircraftName", "aircraftModel"]


class DecoderOutputAdapter(Protocol):
    """Adapter interface for one decoder output shape."""

    name: str

    def can_parse(self, payload: Any) -> bool:
        ...

    def parse(self, payload: Any) -> list[DecodedFrame]:
        ...


# ============================================================================
# Value helpers
# ============================================================================

def _num(value: Any) -> Optional[float]:
    """Finite number or None (booleans are not numbers here)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _first_num(*values: Any) -> Optional[float]:
    """First non-zero finite number among the candidates."""
    for value in values:
        number = _num(value)
        if number:
            return number
    return None


def _first_str(block: dict, keys: list[str]) -> Optional[str]:
    for key in keys:
        value = block.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _block(props: dict, key: str) -> dict:
    value = props.get(key)
    return value if isinstance(value, dict) else {}


def _signal_lost(rc: dict, key: str) -> bool:
    return key in rc and (rc[key] is None or rc[key] == 0)


def _epoch_seconds(value: Any) -> Optional[float]:
    """Absolute timestamp (ISO string or number) in epoch seconds."""
    number = _num(value)
    if number is not None:
        return number
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        return None
    if ts is pd.NaT:
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.timestamp()


def _battery_reading(props: dict) -> BatteryReading:
    battery = props.get("battery")
    percent = None
    block: dict = {}

    if isinstance(battery, dict):
        block = battery
        percent = _num(battery.get("chargeLevel"))
    else:
        percent = _num(battery)
    if percent is None:
        percent = _num(props.get("battery_percentage"))

    cells = block.get("cellVoltages")
    return BatteryReading(
        percent=percent,
        voltage=_num(block.get("voltage")),
        current=_num(block.get("current")),
        temperature=_num(block.get("temperature")),
        min_temperature=_num(block.get("minTemperature")),
        max_temperature=_num(block.get("maxTemperature")),
        cell_voltages=[float(v) for v in cells if _num(v) is not None] if isinstance(cells, list) else [],
        cell_voltage_deviation=_num(block.get("cellVoltageDeviation")),
        current_capacity=_num(block.get("currentCapacity")),
        full_capacity=_num(block.get("fullCapacity")),
    )


def frame_from_properties(index: int, lat: float, lng: float, props: dict) -> DecodedFrame:
    """
    Map one property bag (GeoJSON properties or a spread decoder frame)
    onto a DecodedFrame.
    """
    camera = _block(props, "camera")
    custom = _block(props, "custom")
    osd = _block(props, "osd")
    gimbal = _block(props, "gimbal")
    recover = _block(props, "recover")
    rc = _block(props, "rc")

    timestamp = _num(props.get("timestamp"))
    if timestamp is None:
        timestamp = _num(props.get("time"))

    fly_time = _num(props.get("flyTime"))
    if fly_time is None:
        fly_time = _num(osd.get("flyTime"))

    photo_num = None
    for candidate in (camera.get("photoNum"), osd.get("photoNum"), props.get("photoNum"), recover.get("photoNum")):
        if _num(candidate) is not None:
            photo_num = int(candidate)
            break

    is_photo = (
        camera.get("isPhoto") is True
        or camera.get("is_photo") is True
        or props.get("isPhoto") is True
        or props.get("is_photo") is True
    )

    satellites = _first_num(props.get("satellites"), props.get("gpsNum"), osd.get("gpsNum"))
    gps_level = _num(osd.get("gpsLevel"))
    voltage_warning = _num(osd.get("voltageWarning"))

    imu_reason = osd.get("imuInitFailReason")
    motor_cause = osd.get("motorStartFailedCause")

    moment_lat = props.get("momentPicLatitude")
    moment_lng = props.get("momentPicLongitude")

    return DecodedFrame(
        index=index,
        lat=lat,
        lng=lng,
        timestamp=timestamp,
        fly_time_s=fly_time,
        altitude_m=_first_num(props.get("altitude"), props.get("altitude_agl")),
        speed_mps=_first_num(props.get("speed"), props.get("velocity")),
        heading_deg=_first_num(props.get("heading"), props.get("yaw")),
        gimbal_pitch_deg=_first_num(props.get("gimbal_pitch"), gimbal.get("pitch")),
        satellite_count=int(satellites) if satellites is not None else None,
        gps_level=int(gps_level) if gps_level is not None else None,
        battery=_battery_reading(props),
        is_photo_flag=is_photo,
        photo_num=photo_num,
        photo_filename_hint=_first_str(camera, PHOTO_FILENAME_KEYS)
        or _first_str(props, PHOTO_FILENAME_KEYS)
        or _first_str(custom, CUSTOM_FILENAME_KEYS),
        is_video=camera.get("isVideo") is True or props.get("isVideo") is True,
        voltage_warning=int(voltage_warning) if voltage_warning is not None else None,
        gimbal_stuck=gimbal.get("isStuck") is True,
        uplink_lost=_signal_lost(rc, "uplinkSignal"),
        downlink_lost=_signal_lost(rc, "downlinkSignal"),
        uplink_signal=_num(rc.get("uplinkSignal")),
        downlink_signal=_num(rc.get("downlinkSignal")),
        compass_error=osd.get("isCompassError") is True,
        imu_init_fail_reason=str(imu_reason) if imu_reason else None,
        motor_blocked=osd.get("isMotorBlocked") is True,
        motor_start_failed_cause=str(motor_cause) if motor_cause else None,
        barometer_dead_in_air=osd.get("isBarometerDeadInAir") is True,
        battery_serial_number=_first_str(recover, BATTERY_SERIAL_KEYS),
        drone_serial_number=_first_str(recover, DRONE_SERIAL_KEYS),
        drone_model=_first_str(recover, DRONE_MODEL_KEYS),
        moment_pic_lat=list(moment_lat) if isinstance(moment_lat, list) else [],
        moment_pic_lng=list(moment_lng) if isinstance(moment_lng, list) else [],
        raw=props,
    )


# ============================================================================
# Adapters
# ============================================================================

def _line_feature(payload: Any) -> Optional[dict]:
    """The LineString geometry + properties of a payload, if it is one."""
    if not isinstance(payload, dict):
        return None

    if payload.get("type") == "LineString":
        return {"geometry": payload, "properties": {}}

    features = None
    if payload.get("type") == "Feature":
        features = [payload]
    elif isinstance(payload.get("features"), list):
        features = payload["features"]

    if features and len(features) == 1 and isinstance(features[0], dict):
        geometry = features[0].get("geometry")
        properties = features[0].get("properties") or {}
        if isinstance(geometry, dict) and geometry.get("type") == "LineString" and isinstance(properties, dict):
            return {"geometry": geometry, "properties": properties}
    return None


class LineStringAdapter:
    """A single LineString track, exploded to one frame per vertex."""

    name = "line-string"

    def can_parse(self, payload: Any) -> bool:
        return _line_feature(payload) is not None

    def parse(self, payload: Any) -> list[DecodedFrame]:
        line = _line_feature(payload)
        coordinates = line["geometry"].get("coordinates")
        if not isinstance(coordinates, list):
            return []
        properties = line["properties"]

        frames = []
        for index, vertex in enumerate(coordinates):
            if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
                continue
            lng, lat = _num(vertex[0]), _num(vertex[1])
            if lat is None or lng is None:
                continue
            altitude = _num(vertex[2]) if len(vertex) > 2 else None
            props = dict(
                properties,
                altitude=altitude or 0,
                altitude_agl=altitude or 0,
                index=index,
                timestamp=index * LINE_VERTEX_INTERVAL_S,
                time=index * LINE_VERTEX_INTERVAL_S,
            )
            frames.append(frame_from_properties(index, lat, lng, props))

        logger.info(f"LineString with {len(coordinates)} vertices -> {len(frames)} frames")
        return frames


class FeatureCollectionAdapter:
    """Point features (FeatureCollection, bare features list or single Point Feature)."""

    name = "feature-collection"

    def _features(self, payload: Any) -> Optional[list]:
        if not isinstance(payload, dict):
            return None
        if payload.get("type") == "FeatureCollection" and isinstance(payload.get("features"), list):
            return payload["features"]
        if isinstance(payload.get("features"), list):
            return payload["features"]
        geometry = payload.get("geometry")
        if payload.get("type") == "Feature" and isinstance(geometry, dict) and geometry.get("type") == "Point":
            return [payload]
        return None

    def can_parse(self, payload: Any) -> bool:
        features = self._features(payload)
        return bool(features)

    def parse(self, payload: Any) -> list[DecodedFrame]:
        frames = []
        skipped = 0
        for feature in self._features(payload) or []:
            geometry = feature.get("geometry") if isinstance(feature, dict) else None
            if not isinstance(geometry, dict) or geometry.get("type") != "Point":
                skipped += 1
                continue
            coordinates = geometry.get("coordinates")
            if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
                skipped += 1
                continue
            lng, lat = _num(coordinates[0]), _num(coordinates[1])
            props = feature.get("properties") or {}
            if lat is None or lng is None or not isinstance(props, dict):
                skipped += 1
                continue
            frames.append(frame_from_properties(len(frames), lat, lng, props))

        if skipped:
            logger.info(f"Skipped {skipped} malformed or non-point features")
        return frames


class FrameArrayAdapter:
    """Raw decoder frames: {"frames": [...]} or a bare list."""

    name = "frame-array"

    def _frames(self, payload: Any) -> Optional[list]:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict) and isinstance(payload.get("frames"), list):
            return payload["frames"]
        return None

    def can_parse(self, payload: Any) -> bool:
        return bool(self._frames(payload))

    def parse(self, payload: Any) -> list[DecodedFrame]:
        raw_frames = self._frames(payload) or []
        frames = []
        for raw in raw_frames:
            if not isinstance(raw, dict):
                continue
            osd = _block(raw, "osd")
            lat, lng = _num(osd.get("latitude")), _num(osd.get("longitude"))
            if not lat or not lng:
                continue

            custom = _block(raw, "custom")
            fly_time = _num(osd.get("flyTime"))
            timestamp = _epoch_seconds(custom.get("dateTime"))
            if timestamp is None and fly_time is not None and fly_time >= 0:
                timestamp = fly_time

            x_speed = _num(osd.get("xSpeed")) or 0.0
            y_speed = _num(osd.get("ySpeed")) or 0.0
            speed = math.sqrt(x_speed**2 + y_speed**2)

            props = {
                "timestamp": timestamp,
                "flyTime": fly_time,
                "altitude": _first_num(osd.get("altitude"), osd.get("height")) or 0,
                "altitude_agl": _num(osd.get("height")) or 0,
                "speed": speed,
                "velocity": speed,
                "heading": osd.get("yaw"),
                "gimbal_pitch": _block(raw, "gimbal").get("pitch"),
                **{k: v for k, v in raw.items() if k not in ("timestamp", "flyTime")},
            }
            frames.append(frame_from_properties(len(frames), lat, lng, props))

        logger.info(f"Frames with GPS: {len(frames)}/{len(raw_frames)}")
        return frames


ADAPTERS: list[DecoderOutputAdapter] = [
    LineStringAdapter(),
    FeatureCollectionAdapter(),
    FrameArrayAdapter(),
]


def describe_payload(payload: Any) -> dict:
    """Structure summary used in error messages."""
    if isinstance(payload, list):
        return {"type": "list", "length": len(payload)}
    if not isinstance(payload, dict):
        return {"type": type(payload).__name__}

    summary: dict = {"type": payload.get("type"), "keys": sorted(payload.keys())[:20]}
    if isinstance(payload.get("features"), list):
        summary["features"] = len(payload["features"])
    if isinstance(payload.get("frames"), list):
        summary["frames"] = len(payload["frames"])
    return summary


def _count_gps_frames(payload: Any) -> Optional[tuple[int, int]]:
    raw_frames = FrameArrayAdapter()._frames(payload)
    if raw_frames is None:
        return None
    with_gps = 0
    for raw in raw_frames:
        osd = _block(raw, "osd") if isinstance(raw, dict) else {}
        if osd.get("latitude") and osd.get("longitude"):
            with_gps += 1
    return with_gps, len(raw_frames)


def decode_payload(payload: Any) -> list[DecodedFrame]:
    """
    Run the adapters in order and return the first non-empty frame list.

    Raises:
        ParseError: NO_GPS_DATA when frames exist but none has a GPS fix,
            MALFORMED_OUTPUT when no adapter understands the payload
    """
    for adapter in ADAPTERS:
        if not adapter.can_parse(payload):
            continue
        try:
            frames = adapter.parse(payload)
        except (TypeError, AttributeError, ValueError) as e:
            raise ParseError(
                ParseErrorKind.MALFORMED_OUTPUT,
                f"Decoder output has an unexpected {adapter.name} structure: {e}",
                {"structure": describe_payload(payload), "adapter": adapter.name},
            ) from e
        if frames:
            logger.info(f"Decoded {len(frames)} frames with {adapter.name} adapter")
            return frames

    structure = describe_payload(payload)
    counts = _count_gps_frames(payload)
    if counts is not None and counts[1] > 0:
        with_gps, total = counts
        if with_gps == 0:
            raise ParseError(
                ParseErrorKind.NO_GPS_DATA,
                f"No GPS coordinates found in log file frames ({total} frames). "
                "The flight may not have had GPS lock.",
                {"structure": structure, "frames": total, "frames_with_gps": 0},
            )

    details = []
    if "frames" in structure:
        details.append(f"Frames: {structure['frames']}.")
    if "features" in structure:
        details.append(f"Features: {structure['features']}.")
    raise ParseError(
        ParseErrorKind.MALFORMED_OUTPUT,
        f"Decoder output contained no usable telemetry (structure: {structure.get('type') or 'unknown'}). "
        + " ".join(details),
        {"structure": structure},
    )
