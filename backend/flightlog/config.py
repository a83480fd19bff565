"""
Pipeline configuration.

All options come from the environment so the server, the CLI and tests can
override them without code changes. Call PipelineSettings.from_env() at the
point of use; nothing is cached at import time.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DECODER_PATH_ENV = "DJI_LOG_PARSER_PATH"
DECODER_CREDENTIAL_ENV = "DJI_API_KEY"
DATA_FOLDER_ENV = "FLIGHTLOG_DATA_FOLDER"

DEFAULT_DATA_FOLDER = Path("./data/logs")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value not in ("0", "false", "False", "no")


@dataclass
class PipelineSettings:
    """Options recognized by the reconstruction pipeline."""

    # Trusted decoder
    decoder_path: Optional[str] = None
    decoder_credential: Optional[str] = None
    decoder_timeout_s: float = 60.0
    decoder_max_output_bytes: int = 50 * 1024 * 1024
    decoder_credential_flag: str = "--api-key"
    decoder_output_flag: str = "--geojson"

    # Heuristic extractor
    scan_stride: int = 64
    max_candidates: int = 5000
    min_heuristic_points: int = 10

    # Normalizer
    anomaly_window_ms: int = 10000
    emit_log_photos: bool = False
    default_drone_model: str = "DJI Air 3"

    def __post_init__(self):
        if self.scan_stride <= 0:
            raise ValueError("scan_stride must be positive")
        if self.max_candidates <= 0:
            raise ValueError("max_candidates must be positive")
        if self.anomaly_window_ms < 0:
            raise ValueError("anomaly_window_ms must not be negative")

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            decoder_path=os.getenv(DECODER_PATH_ENV) or None,
            decoder_credential=os.getenv(DECODER_CREDENTIAL_ENV) or None,
            decoder_timeout_s=_env_float("FLIGHTLOG_DECODER_TIMEOUT_S", 60.0),
            decoder_max_output_bytes=_env_int("FLIGHTLOG_DECODER_MAX_OUTPUT_BYTES", 50 * 1024 * 1024),
            decoder_credential_flag=os.getenv("FLIGHTLOG_DECODER_CREDENTIAL_FLAG", "--api-key"),
            decoder_output_flag=os.getenv("FLIGHTLOG_DECODER_OUTPUT_FLAG", "--geojson"),
            scan_stride=_env_int("FLIGHTLOG_SCAN_STRIDE", 64),
            max_candidates=_env_int("FLIGHTLOG_MAX_CANDIDATES", 5000),
            min_heuristic_points=_env_int("FLIGHTLOG_MIN_HEURISTIC_POINTS", 10),
            anomaly_window_ms=_env_int("FLIGHTLOG_ANOMALY_WINDOW_MS", 10000),
            emit_log_photos=_env_flag("FLIGHTLOG_EMIT_LOG_PHOTOS", False),
            default_drone_model=os.getenv("FLIGHTLOG_DEFAULT_DRONE_MODEL", "DJI Air 3"),
        )
