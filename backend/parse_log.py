#!/usr/bin/env python3
"""
Parse a single DJI flight record from the command line.

Usage:
    python parse_log.py FILE [--json]

Prints a summary of the reconstructed flight, or the failure kind and
message. Exit status is 0 on success, 1 on a parse failure, 2 when the
file cannot be read.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add flightlog to path
sys.path.insert(0, str(Path(__file__).parent))

from flightlog.models.telemetry import FlightLog  # noqa: E402
from flightlog.services.orchestrator import parse_flight_log  # noqa: E402


def _summary(flight_log: FlightLog) -> dict:
    home = flight_log.home_location
    return {
        "id": flight_log.id,
        "filename": flight_log.filename,
        "parser": flight_log.parser,
        "flight_date": flight_log.flight_date.isoformat() if flight_log.flight_date else None,
        "drone_model": flight_log.drone_model,
        "duration_seconds": flight_log.duration_seconds,
        "data_points": len(flight_log.data_points),
        "max_altitude_m": flight_log.max_altitude_m,
        "max_speed_mps": flight_log.max_speed_mps,
        "max_distance_m": flight_log.max_distance_m,
        "total_distance_m": flight_log.total_distance_m,
        "home_location": [home.lat, home.lng] if home else None,
        "battery_start_percent": flight_log.battery_start_percent,
        "battery_end_percent": flight_log.battery_end_percent,
        "warnings": [w.message for w in flight_log.warnings],
        "errors": [e.message for e in flight_log.errors],
    }


def _fmt(value, unit: str = "") -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.1f}{unit}"
    return f"{value}{unit}"


def main() -> int:
    parser = argparse.ArgumentParser(description="Parse a DJI flight record")
    parser.add_argument("file", help="Path to a DJIFlightRecord_*.txt file")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log pipeline progress")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    path = Path(args.file)
    try:
        data = path.read_bytes()
    except OSError as e:
        print(f"Cannot read {path}: {e}", file=sys.stderr)
        return 2

    result = parse_flight_log(data, path.name)

    if not result.success:
        error = result.error
        if args.json:
            print(json.dumps({"kind": error.kind.value, "message": error.message, "context": error.context}, indent=2))
        else:
            print(f"Parse failed [{error.kind.value}]: {error.message}", file=sys.stderr)
        return 1

    summary = _summary(result.flight_log)
    if args.json:
        print(json.dumps(summary, indent=2))
        return 0

    print(f"{summary['filename']} ({summary['parser']})")
    print("=" * 40)
    print(f"Date:           {_fmt(summary['flight_date'])}")
    print(f"Drone:          {_fmt(summary['drone_model'])}")
    print(f"Duration:       {_fmt(summary['duration_seconds'], ' s')}")
    print(f"Data points:    {summary['data_points']}")
    print(f"Max altitude:   {_fmt(summary['max_altitude_m'], ' m')}")
    print(f"Max speed:      {_fmt(summary['max_speed_mps'], ' m/s')}")
    print(f"Max distance:   {_fmt(summary['max_distance_m'], ' m')}")
    print(f"Total distance: {_fmt(summary['total_distance_m'], ' m')}")
    print(f"Battery:        {_fmt(summary['battery_start_percent'], '%')} -> {_fmt(summary['battery_end_percent'], '%')}")
    for message in summary["warnings"]:
        print(f"  warning: {message}")
    for message in summary["errors"]:
        print(f"  error: {message}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
