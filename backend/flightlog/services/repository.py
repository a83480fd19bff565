"""
Flight Log Repository - in-memory store of parsed flight logs.

Stands in for durable persistence: the API and the battery aggregation only
talk to this class, so a database-backed store can replace it later without
touching either.
"""

import logging
from pathlib import Path
from typing import Optional

from flightlog.models.telemetry import FlightLog, FlightLogSummary
from flightlog.services.orchestrator import parse_flight_log
from flightlog.utils.logfiles import FLIGHT_RECORD_PATTERN


logger = logging.getLogger(__name__)


class DuplicateFlightLogError(ValueError):
    """A flight log with the same filename is already stored."""

    def __init__(self, filename: str, existing_id: str):
        super().__init__(f"Flight log {filename} already uploaded (id {existing_id})")
        self.filename = filename
        self.existing_id = existing_id


class FlightLogRepository:
    """
    Repository for parsed flight logs.

    Logs are keyed by id; filenames are unique.
    """

    def __init__(self, data_folder: Optional[Path] = None):
        self._data_folder: Optional[Path] = data_folder
        self._logs: dict[str, FlightLog] = {}
        self._by_filename: dict[str, str] = {}  # filename -> id

        if data_folder is not None:
            self.scan_folder(data_folder)

    @property
    def data_folder(self) -> Optional[Path]:
        return self._data_folder

    def __len__(self) -> int:
        return len(self._logs)

    def scan_folder(self, folder: Path) -> int:
        """
        Parse every flight record in a folder and store the successes.

        Returns:
            Number of flight logs added
        """
        if not folder.exists():
            logger.warning(f"Data folder does not exist: {folder}")
            return 0

        added = 0
        for log_file in sorted(folder.glob("*.txt")):
            if not log_file.is_file() or not FLIGHT_RECORD_PATTERN.search(log_file.name):
                continue
            if log_file.name in self._by_filename:
                logger.debug(f"Already loaded: {log_file.name}")
                continue

            result = parse_flight_log(log_file.read_bytes(), log_file.name)
            if not result.success:
                logger.error(f"Failed to parse {log_file.name}: {result.error.kind.value}: {result.error.message}")
                continue
            self.add(result.flight_log)
            added += 1

        logger.info(f"Loaded {added} flight logs from {folder}")
        return added

    def add(self, flight_log: FlightLog) -> FlightLog:
        """
        Store a flight log.

        Raises:
            DuplicateFlightLogError: if the filename is already stored
        """
        existing_id = self._by_filename.get(flight_log.filename)
        if existing_id is not None:
            raise DuplicateFlightLogError(flight_log.filename, existing_id)

        self._logs[flight_log.id] = flight_log
        self._by_filename[flight_log.filename] = flight_log.id
        logger.debug(f"Stored flight log {flight_log.id} ({flight_log.filename})")
        return flight_log

    def get(self, log_id: str) -> Optional[FlightLog]:
        return self._logs.get(log_id)

    def find_by_filename(self, filename: str) -> Optional[FlightLog]:
        log_id = self._by_filename.get(filename)
        return self._logs.get(log_id) if log_id else None

    def all(self) -> list[FlightLog]:
        return list(self._logs.values())

    def list_summaries(self) -> list[FlightLogSummary]:
        """Summaries sorted newest flight first, then by filename."""
        summaries = [FlightLogSummary.from_flight_log(log) for log in self._logs.values()]
        summaries.sort(
            key=lambda s: (s.flight_date.isoformat() if s.flight_date else "", s.filename),
            reverse=True,
        )
        return summaries

    def clear(self) -> None:
        self._logs.clear()
        self._by_filename.clear()
        logger.info("Flight log repository cleared")


# Global repository instance (set up by app initialization)
_repository: Optional[FlightLogRepository] = None


def get_repository() -> FlightLogRepository:
    """Get the global repository instance."""
    global _repository
    if _repository is None:
        _repository = FlightLogRepository()
    return _repository


def init_repository(data_folder: Optional[Path] = None) -> FlightLogRepository:
    """Initialize the global repository, preloading a data folder if given."""
    global _repository
    _repository = FlightLogRepository(data_folder)
    return _repository
