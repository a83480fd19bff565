"""
Battery health aggregation across stored flight logs.

Flights are grouped by the battery serial number recovered from the decoder
output; logs without a serial number are ignored. Health aggregates
(voltage, temperature, cell deviation) come from a sample of the data
points of each flight.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

import pandas as pd

from flightlog.models.telemetry import FlightLog


logger = logging.getLogger(__name__)


HEALTH_SAMPLES_PER_FLIGHT = 30

FLIGHT_COLUMNS = ["serial", "flight_date", "duration_s", "distance_m", "start_percent", "end_percent"]
SAMPLE_COLUMNS = ["serial", "voltage", "temperature", "cell_deviation", "full_capacity"]


@dataclass
class BatteryStats:
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


def _opt(value: Any) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _opt_date(value: Any) -> Optional[datetime]:
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime()


def _positive(value: Optional[float]) -> float:
    return value if value is not None and value > 0 else 0.0


def _flight_frame(flight_logs: list[FlightLog]) -> pd.DataFrame:
    rows = []
    for log in flight_logs:
        rows.append({
            "serial": log.battery_serial_number,
            # naive and aware dates cannot share a column
            "flight_date": log.flight_date.replace(tzinfo=None) if log.flight_date else None,
            "duration_s": _positive(log.duration_seconds),
            "distance_m": _positive(log.total_distance_m),
            "start_percent": log.battery_start_percent,
            "end_percent": log.battery_end_percent,
        })
    df = pd.DataFrame(rows, columns=FLIGHT_COLUMNS)
    df["flight_date"] = pd.to_datetime(df["flight_date"])
    for column in ("start_percent", "end_percent"):
        df[column] = pd.to_numeric(df[column], errors="coerce")
    df["usage_percent"] = df["start_percent"] - df["end_percent"]
    return df


def _sample_frame(flight_logs: list[FlightLog]) -> pd.DataFrame:
    rows = []
    for log in flight_logs:
        sampled = [p for p in log.data_points if p.battery.voltage is not None][:HEALTH_SAMPLES_PER_FLIGHT]
        for point in sampled:
            rows.append({
                "serial": log.battery_serial_number,
                "voltage": point.battery.voltage,
                "temperature": point.battery.temperature,
                "cell_deviation": point.battery.cell_voltage_deviation,
                "full_capacity": point.battery.full_capacity,
            })
    df = pd.DataFrame(rows, columns=SAMPLE_COLUMNS)
    for column in SAMPLE_COLUMNS[1:]:
        df[column] = pd.to_numeric(df[column], errors="coerce")
    return df


def compute_battery_stats(flight_logs: Iterable[FlightLog]) -> list[BatteryStats]:
    """Aggregate stored flight logs per battery serial number."""
    with_serial = [log for log in flight_logs if log.battery_serial_number]
    if not with_serial:
        return []

    flights = _flight_frame(with_serial)
    samples = _sample_frame(with_serial)

    usage = flights.groupby("serial", sort=True).agg(
        flight_count=("serial", "size"),
        total_time=("duration_s", "sum"),
        total_distance=("distance_m", "sum"),
        total_usage=("usage_percent", "sum"),
        avg_usage=("usage_percent", "mean"),
        avg_start=("start_percent", "mean"),
        avg_end=("end_percent", "mean"),
        first_date=("flight_date", "min"),
        last_date=("flight_date", "max"),
    )

    health = samples.groupby("serial").agg(
        avg_voltage=("voltage", "mean"),
        min_voltage=("voltage", "min"),
        max_voltage=("voltage", "max"),
        avg_temperature=("temperature", "mean"),
        min_temperature=("temperature", "min"),
        max_temperature=("temperature", "max"),
        avg_cell_deviation=("cell_deviation", "mean"),
        max_cell_deviation=("cell_deviation", "max"),
        full_capacity=("full_capacity", "first"),
    )

    stats = []
    for serial, row in usage.iterrows():
        h = health.loc[serial] if serial in health.index else None
        count = int(row["flight_count"])
        stats.append(
            BatteryStats(
                serial_number=str(serial),
                flight_count=count,
                total_flight_time_seconds=float(row["total_time"]),
                average_flight_time_seconds=float(row["total_time"]) / count if count else 0.0,
                total_distance_m=float(row["total_distance"]),
                total_battery_usage_percent=float(row["total_usage"]),
                average_battery_usage_percent=_opt(row["avg_usage"]),
                average_battery_start_percent=_opt(row["avg_start"]),
                average_battery_end_percent=_opt(row["avg_end"]),
                first_flight_date=_opt_date(row["first_date"]),
                last_flight_date=_opt_date(row["last_date"]),
                average_voltage=_opt(h["avg_voltage"]) if h is not None else None,
                min_voltage=_opt(h["min_voltage"]) if h is not None else None,
                max_voltage=_opt(h["max_voltage"]) if h is not None else None,
                average_temperature=_opt(h["avg_temperature"]) if h is not None else None,
                min_temperature=_opt(h["min_temperature"]) if h is not None else None,
                max_temperature=_opt(h["max_temperature"]) if h is not None else None,
                average_cell_deviation=_opt(h["avg_cell_deviation"]) if h is not None else None,
                max_cell_deviation=_opt(h["max_cell_deviation"]) if h is not None else None,
                full_capacity=_opt(h["full_capacity"]) if h is not None else None,
            )
        )

    logger.info(f"Aggregated {len(with_serial)} flights into {len(stats)} batteries")
    return stats
