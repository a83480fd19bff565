"""
Helpers for flight-record files: name validation, filename dates and
content-derived identifiers.
"""

import hashlib
import re
from datetime import datetime
from pathlib import Path
from typing import Optional


FLIGHT_RECORD_PATTERN = re.compile(r"(DJI)?FlightRecord_\d{4}-\d{2}-\d{2}_\[\d{2}-\d{2}-\d{2}\]\.txt$")
FILENAME_DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})(?:_\[(\d{2})-(\d{2})-(\d{2})\])?")

MIN_LOG_SIZE_BYTES = 100  # header size


def validate_log_file(filename: str, size: int) -> tuple[bool, Optional[str]]:
    """
    Check that an upload looks like a flight record.

    Returns:
        (valid, error message)
    """
    if not FLIGHT_RECORD_PATTERN.search(filename):
        return False, (
            "File does not match DJI flight log naming pattern "
            "(FlightRecord_YYYY-MM-DD_[HH-MM-SS].txt or DJIFlightRecord_YYYY-MM-DD_[HH-MM-SS].txt)"
        )
    if size < MIN_LOG_SIZE_BYTES:
        return False, "File is too small to be a valid DJI flight log"
    return True, None


def base_filename(filename: str) -> str:
    return Path(filename.replace("\\", "/")).name or filename


def date_from_filename(filename: str) -> Optional[datetime]:
    """Recording date encoded in the filename (naive local time), if any."""
    match = FILENAME_DATE_PATTERN.search(filename)
    if not match:
        return None

    year, month, day = (int(match.group(i)) for i in (1, 2, 3))
    hour, minute, second = (int(match.group(i) or 0) for i in (4, 5, 6))
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def compute_log_id(content: bytes, filename: str) -> str:
    """Deterministic 16-hex-digit id of a log (content + name)."""
    digest = hashlib.sha256()
    digest.update(base_filename(filename).encode("utf-8"))
    digest.update(b"\0")
    digest.update(content)
    return digest.hexdigest()[:16]
