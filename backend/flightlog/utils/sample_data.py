"""
Sample data generator for testing.

Generates synthetic flight records in two forms:
- raw binary records shaped like a DJI flight record (100-byte header,
  fixed-size records with little-endian coordinate pairs)
- decoder JSON output (frames array, FeatureCollection, LineString)
"""

import struct
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import numpy as np


HEADER_SIZE = 100
RECORD_SIZE = 64


def generate_track(
    n_points: int,
    start_lat: float = 37.0,
    start_lng: float = -122.0,
    radius_m: float = 40.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Circular orbit starting at the given point.

    Consecutive points are 2 * pi * radius_m / n_points metres apart.
    """
    meters_per_deg_lat = 111000
    meters_per_deg_lng = 111000 * np.cos(np.radians(start_lat))

    theta = np.linspace(0, 2 * np.pi, n_points, endpoint=False)
    north = radius_m * np.sin(theta)
    east = radius_m * (1 - np.cos(theta))

    lat = start_lat + north / meters_per_deg_lat
    lng = start_lng + east / meters_per_deg_lng
    return lat, lng


def generate_binary_record(
    n_points: int,
    start_lat: float = 37.0,
    start_lng: float = -122.0,
    altitude_m: float = 50.0,
    header_version: int = 12,
    track: Optional[tuple[np.ndarray, np.ndarray]] = None,
) -> bytes:
    """
    Build a binary flight record.

    Each 64-byte record holds [float64 lat][float64 lng][float32 altitude]
    followed by zero padding.
    """
    lat, lng = track if track is not None else generate_track(n_points, start_lat, start_lng)

    header = bytearray(HEADER_SIZE)
    struct.pack_into("<I", header, 0, header_version)

    body = bytearray()
    for i in range(len(lat)):
        record = struct.pack("<ddf", float(lat[i]), float(lng[i]), float(altitude_m))
        body += record + bytes(RECORD_SIZE - len(record))

    return bytes(header) + bytes(body)


def write_binary_record(output_path: Path, n_points: int = 200, **kwargs) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(generate_binary_record(n_points, **kwargs))
    return output_path


def generate_frames_payload(
    n_frames: int,
    start_lat: float = 37.0,
    start_lng: float = -122.0,
    interval_s: float = 0.1,
    start_time: Optional[datetime] = None,
    battery_start: float = 90.0,
    battery_drain_per_frame: float = 0.05,
    battery_serial: Optional[str] = "BAT-0001",
    altitude_m: float = 30.0,
) -> dict:
    """
    Decoder "frames" output for a smooth orbit.

    Every frame carries osd, custom, battery, gimbal, camera and rc blocks;
    the first frame also carries the recover block.
    """
    start_time = start_time or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    lat, lng = generate_track(n_frames, start_lat, start_lng)

    frames = []
    for i in range(n_frames):
        moment = start_time + timedelta(seconds=i * interval_s)
        frame = {
            "custom": {"dateTime": moment.isoformat().replace("+00:00", "Z")},
            "osd": {
                "latitude": float(lat[i]),
                "longitude": float(lng[i]),
                "altitude": altitude_m,
                "height": altitude_m,
                "xSpeed": 3.0,
                "ySpeed": 4.0,
                "yaw": float(i % 360),
                "flyTime": round(i * interval_s, 3),
                "gpsNum": 18,
                "gpsLevel": 5,
            },
            "battery": {
                "chargeLevel": round(battery_start - i * battery_drain_per_frame, 2),
                "voltage": 15.4 - i * 0.001,
                "current": -12.0,
                "temperature": 31.0,
                "cellVoltages": [3.85, 3.86, 3.85, 3.84],
                "cellVoltageDeviation": 0.02,
                "currentCapacity": 3000,
                "fullCapacity": 4241,
            },
            "gimbal": {"pitch": -90.0},
            "camera": {"isPhoto": False, "isVideo": False},
            "rc": {"downlinkSignal": 100, "uplinkSignal": 100},
        }
        if i == 0 and battery_serial:
            frame["recover"] = {
                "batterySn": battery_serial,
                "aircraftSn": "1581F5FHD",
                "aircraftName": "DJI Air 3",
            }
        frames.append(frame)

    return {"version": 13, "frames": frames}


def generate_feature_collection(
    n_points: int,
    start_lat: float = 37.0,
    start_lng: float = -122.0,
    interval_s: float = 0.1,
    start_s: float = 1714564800.0,
) -> dict:
    """GeoJSON FeatureCollection of Point features with epoch-second timestamps."""
    lat, lng = generate_track(n_points, start_lat, start_lng)
    features = []
    for i in range(n_points):
        features.append({
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [float(lng[i]), float(lat[i])]},
            "properties": {
                "timestamp": start_s + i * interval_s,
                "altitude": 25.0,
                "speed": 5.0,
                "battery": 80 - i * 0.1,
            },
        })
    return {"type": "FeatureCollection", "features": features}


def generate_line_string(
    n_points: int,
    start_lat: float = 37.0,
    start_lng: float = -122.0,
    altitude_m: float = 20.0,
    moment_photos: Optional[list[tuple[float, float]]] = None,
) -> dict:
    """Single LineString Feature, vertices [lng, lat, alt]."""
    lat, lng = generate_track(n_points, start_lat, start_lng)
    properties: dict = {}
    if moment_photos:
        properties["momentPicLatitude"] = [p[0] for p in moment_photos]
        properties["momentPicLongitude"] = [p[1] for p in moment_photos]
    return {
        "type": "Feature",
        "geometry": {
            "type": "LineString",
            "coordinates": [[float(lng[i]), float(lat[i]), altitude_m] for i in range(n_points)],
        },
        "properties": properties,
    }


if __name__ == "__main__":
    import argparse
    import json

    parser = argparse.ArgumentParser(description="Generate sample flight records")
    parser.add_argument("output_dir", type=Path, help="Output directory")
    parser.add_argument("--points", type=int, default=600)
    args = parser.parse_args()

    binary = write_binary_record(args.output_dir / "DJIFlightRecord_2024-05-01_[12-00-00].txt", args.points)
    print(f"Generated: {binary}")

    frames_path = args.output_dir / "frames.json"
    frames_path.write_text(json.dumps(generate_frames_payload(args.points)))
    print(f"Generated: {frames_path}")
