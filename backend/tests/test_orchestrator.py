"""
Tests for parse orchestration (decoder first, heuristic fallback).
"""

import json
import subprocess

import pytest

import parse_log
from flightlog.models.telemetry import FlightLogDataPoint, ParseError, ParseErrorKind
from flightlog.services import binary_extractor
from flightlog.services.orchestrator import check_heuristic_quality, parse_flight_log
from flightlog.utils.sample_data import (
    generate_binary_record,
    generate_feature_collection,
    generate_frames_payload,
)


def _json(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


class TestHeuristicFallback:
    """Tests for parsing without a decoder."""

    def test_small_track_accepted(self, no_decoder, record_name):
        """15 plausible points pass the quality gate."""
        result = parse_flight_log(generate_binary_record(15), record_name, no_decoder)

        assert result.success
        log = result.flight_log
        assert len(log.data_points) == 15
        assert log.parser == "basic-heuristic"
        assert "note" in log.metadata

    def test_too_few_points(self, no_decoder, record_name):
        """5 widely spaced points are INSUFFICIENT_HEURISTIC_DATA."""
        result = parse_flight_log(generate_binary_record(5), record_name, no_decoder)

        assert not result.success
        assert result.error.kind == ParseErrorKind.INSUFFICIENT_HEURISTIC_DATA
        assert "dji-log-parser" in result.error.message

    def test_implausible_location(self, no_decoder, record_name):
        """A track far outside the expected region is rejected."""
        result = parse_flight_log(generate_binary_record(200, start_lat=55.0), record_name, no_decoder)

        assert not result.success
        assert result.error.kind == ParseErrorKind.IMPLAUSIBLE_COORDINATES

    def test_empty_buffer(self, no_decoder, record_name):
        """An empty record fails without raising."""
        result = parse_flight_log(b"", record_name, no_decoder)
        assert result.error.kind == ParseErrorKind.INSUFFICIENT_HEURISTIC_DATA


class TestQualityGate:
    """Tests for the heuristic quality check."""

    def _points(self, n, lat=37.0, lng=-122.0):
        return [FlightLogDataPoint(timestamp_offset_ms=i * 100, lat=lat, lng=lng) for i in range(n)]

    def test_passes(self):
        check_heuristic_quality(self._points(10))

    @pytest.mark.parametrize("lat, lng", [(51.0, 10.0), (37.0, 100.0), (-35.0, -75.0)])
    def test_region_rejected(self, lat, lng):
        """Latitudes beyond 50 and longitudes between 60 and 120 are implausible."""
        with pytest.raises(ParseError) as exc_info:
            check_heuristic_quality(self._points(10, lat, lng))
        assert exc_info.value.kind == ParseErrorKind.IMPLAUSIBLE_COORDINATES


class TestDecoderPath:
    """Tests for parsing with the decoder available."""

    def test_decoder_success(self, fake_decoder, record_name):
        """Decoder frames are normalized into a FlightLog."""
        settings = fake_decoder(stdout=_json(generate_frames_payload(30)))

        result = parse_flight_log(b"\x0d\x00\x00\x00" + bytes(500), record_name, settings)

        assert result.success
        assert result.flight_log.parser == "dji-log-parser-cli"
        assert result.flight_log.metadata["decoder_source"] == "stdout"
        assert len(result.flight_log.data_points) == 30

    def test_credential_required_no_fallback(self, fake_decoder, record_name, monkeypatch):
        """A credential failure is terminal; the heuristic scan never runs."""
        settings = fake_decoder(returncode=1, stderr=b"API Key is required")

        def fail(*args, **kwargs):
            raise AssertionError("heuristic scan must not run")

        monkeypatch.setattr(binary_extractor, "scan_candidates", fail)

        result = parse_flight_log(generate_binary_record(200), record_name, settings)

        assert not result.success
        assert result.error.kind == ParseErrorKind.CREDENTIAL_REQUIRED

    def test_next_payload_tried(self, fake_decoder, record_name):
        """When the preferred payload has no GPS, the next one is used."""
        no_fix = {"frames": [{"osd": {"latitude": 0, "longitude": 0}, "note": "x" * 200}] * 600}
        settings = fake_decoder(stdout=_json(no_fix), file=_json(generate_feature_collection(12)))

        result = parse_flight_log(bytes(500), record_name, settings)

        assert result.success
        assert result.flight_log.metadata["decoder_source"] == "file"
        assert len(result.flight_log.data_points) == 12

    def test_last_error_reported(self, fake_decoder, record_name):
        """When every payload fails, the last failure is returned."""
        settings = fake_decoder(stdout=_json({"frames": [{"osd": {"latitude": 0, "longitude": 0}}]}))

        result = parse_flight_log(bytes(500), record_name, settings)

        assert result.error.kind == ParseErrorKind.NO_GPS_DATA

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "FeatureCollection", "features": [
                {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-122.0, 37.0]}, "properties": "x"},
            ]},
            {"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": "x"}]},
            {"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": {"type": "Point", "coordinates": 7}}]},
        ],
    )
    def test_garbled_output_is_malformed(self, fake_decoder, record_name, payload):
        """Decoder JSON with wrongly typed fields fails as MALFORMED_OUTPUT without raising."""
        settings = fake_decoder(stdout=_json(payload))

        result = parse_flight_log(bytes(500), record_name, settings)

        assert not result.success
        assert result.error.kind == ParseErrorKind.MALFORMED_OUTPUT

    def test_repeat_parse_identical(self, fake_decoder, record_name):
        """Parsing the same record twice yields the same log, statistics and anomalies."""
        payload = generate_frames_payload(100, interval_s=0.02, battery_start=15.0, battery_drain_per_frame=0.0)
        settings = fake_decoder(stdout=_json(payload))
        data = b"\x0d\x00\x00\x00" + bytes(500)

        first = parse_flight_log(data, record_name, settings).flight_log
        second = parse_flight_log(data, record_name, settings).flight_log

        assert first.id == second.id
        assert first.data_points == second.data_points
        assert (first.warnings, first.errors) == (second.warnings, second.errors)
        assert first.warnings
        assert first.duration_seconds == second.duration_seconds
        assert first.total_distance_m == second.total_distance_m
        assert first.max_altitude_m == second.max_altitude_m

    def test_timeout_is_terminal(self, fake_decoder, record_name):
        """A decoder timeout does not fall back to the heuristic scan."""
        settings = fake_decoder(raises=subprocess.TimeoutExpired(cmd="dji-log", timeout=1))

        result = parse_flight_log(generate_binary_record(200), record_name, settings)

        assert result.error.kind == ParseErrorKind.SUBPROCESS_TIMEOUT


class TestCommandLine:
    """Tests for the parse_log command-line entry point."""

    def test_json_summary(self, no_decoder, tmp_path, record_name, monkeypatch, capsys):
        """A parseable record prints a JSON summary and exits 0."""
        path = tmp_path / record_name
        path.write_bytes(generate_binary_record(200))
        monkeypatch.setattr("sys.argv", ["parse_log.py", str(path), "--json"])

        assert parse_log.main() == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["parser"] == "basic-heuristic"
        assert summary["data_points"] == 200

    def test_parse_failure_exit_code(self, no_decoder, tmp_path, record_name, monkeypatch):
        """A record that cannot be parsed exits 1."""
        path = tmp_path / record_name
        path.write_bytes(generate_binary_record(5))
        monkeypatch.setattr("sys.argv", ["parse_log.py", str(path)])

        assert parse_log.main() == 1

    def test_unreadable_file(self, tmp_path, monkeypatch):
        """A missing file exits 2."""
        monkeypatch.setattr("sys.argv", ["parse_log.py", str(tmp_path / "missing.txt")])

        assert parse_log.main() == 2
