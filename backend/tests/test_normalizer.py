"""
Tests for decoder output adapters and normalization.
"""

from datetime import datetime, timezone

import pytest
from numpy.testing import assert_allclose

from flightlog.config import PipelineSettings
from flightlog.models.telemetry import FlightLogDataPoint, GeoPoint, ParseError, ParseErrorKind
from flightlog.services.decoder_output import (
    FeatureCollectionAdapter,
    FrameArrayAdapter,
    LineStringAdapter,
    decode_payload,
)
from flightlog.services.normalizer import (
    PARSER_NAME,
    normalize_payload,
    order_points,
    timestamp_to_ms,
)
from flightlog.utils.coordinates import haversine_distance
from flightlog.utils.sample_data import (
    generate_feature_collection,
    generate_frames_payload,
    generate_line_string,
    generate_track,
)


@pytest.fixture
def settings():
    return PipelineSettings()


@pytest.fixture
def photo_settings():
    return PipelineSettings(emit_log_photos=True)


@pytest.fixture
def three_frames():
    """Three frames with fly-time only timestamps."""
    return {
        "frames": [
            {"osd": {"latitude": 37.0, "longitude": -122.0, "flyTime": 0}},
            {"osd": {"latitude": 37.001, "longitude": -122.0, "flyTime": 5}},
            {"osd": {"latitude": 37.002, "longitude": -122.001, "flyTime": 10}},
        ]
    }


class TestAdapters:
    """Tests for shape detection."""

    def test_shape_detection(self):
        """Each payload shape is claimed by its adapter."""
        assert LineStringAdapter().can_parse(generate_line_string(5))
        assert FeatureCollectionAdapter().can_parse(generate_feature_collection(5))
        assert FrameArrayAdapter().can_parse(generate_frames_payload(5))
        assert not FrameArrayAdapter().can_parse({"frames": []})
        assert not LineStringAdapter().can_parse(generate_feature_collection(5))

    def test_line_string_vertices(self):
        """Vertices become frames 0.1 s apart with their altitude."""
        frames = decode_payload(generate_line_string(10, altitude_m=20.0))

        assert len(frames) == 10
        assert_allclose([f.timestamp for f in frames[:3]], [0.0, 0.1, 0.2])
        assert frames[0].altitude_m == 20.0

    def test_bare_line_string_geometry(self):
        """A bare LineString geometry is accepted."""
        payload = generate_line_string(4)["geometry"]
        assert len(decode_payload(payload)) == 4

    def test_feature_collection_points(self):
        """Point features keep their properties."""
        frames = decode_payload(generate_feature_collection(5))

        assert len(frames) == 5
        assert frames[0].lat == pytest.approx(37.0)
        assert frames[0].speed_mps == 5.0
        assert frames[0].battery.percent == 80.0

    def test_non_point_features_skipped(self):
        """Features without Point geometry are ignored."""
        payload = generate_feature_collection(5)
        payload["features"].append({"type": "Feature", "geometry": {"type": "Polygon", "coordinates": []}})
        assert len(decode_payload(payload)) == 5

    def test_frame_blocks(self):
        """Nested frame blocks are flattened."""
        frames = decode_payload(generate_frames_payload(3))
        first = frames[0]

        assert first.speed_mps == pytest.approx(5.0)
        assert first.satellite_count == 18
        assert first.gimbal_pitch_deg == -90.0
        assert first.battery.percent == 90.0
        assert first.battery.full_capacity == 4241
        assert first.battery.cell_voltages == [3.85, 3.86, 3.85, 3.84]
        assert first.battery_serial_number == "BAT-0001"
        assert first.drone_model == "DJI Air 3"
        assert first.timestamp == pytest.approx(1714564800.0)
        assert not first.downlink_lost

    def test_signal_loss(self):
        """A present but empty downlink reading means the link was lost."""
        payload = generate_frames_payload(2)
        payload["frames"][1]["rc"] = {"downlinkSignal": None, "uplinkSignal": 0}

        frames = decode_payload(payload)

        assert frames[1].downlink_lost
        assert frames[1].uplink_lost

    def test_frames_without_gps(self):
        """Frames exist but none has a fix."""
        payload = {"frames": [{"osd": {"latitude": 0, "longitude": 0}}] * 3}

        with pytest.raises(ParseError) as exc_info:
            decode_payload(payload)

        assert exc_info.value.kind == ParseErrorKind.NO_GPS_DATA
        assert exc_info.value.context["frames"] == 3

    def test_unknown_shape(self):
        """Unrecognized JSON is malformed output."""
        with pytest.raises(ParseError) as exc_info:
            decode_payload({"foo": 1})
        assert exc_info.value.kind == ParseErrorKind.MALFORMED_OUTPUT

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "FeatureCollection", "features": [
                {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-122.0, 37.0]}, "properties": "x"},
            ]},
            {"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": "x", "properties": {}}]},
            {"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": {"type": "Point", "coordinates": 5}}]},
            {"type": "Feature", "geometry": "x"},
            {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[-122.0, 37.0]]}, "properties": "x"},
            {"type": "LineString", "coordinates": 5},
        ],
    )
    def test_wrong_field_types(self, payload):
        """Fields of the wrong JSON type are malformed output, not a crash."""
        with pytest.raises(ParseError) as exc_info:
            decode_payload(payload)
        assert exc_info.value.kind == ParseErrorKind.MALFORMED_OUTPUT

    def test_bad_features_skipped(self):
        """Features with wrongly typed fields are dropped; the rest survive."""
        payload = generate_feature_collection(3)
        payload["features"].append(
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-122.0, 37.0]}, "properties": [1, 2]}
        )
        payload["features"].append({"type": "Feature", "geometry": {"type": "Point", "coordinates": "37,-122"}})

        frames = decode_payload(payload)

        assert len(frames) == 3

    def test_adapter_crash_is_malformed(self, monkeypatch):
        """An adapter tripping over an unexpected structure reports MALFORMED_OUTPUT."""
        def explode(self, payload):
            raise AttributeError("'str' object has no attribute 'get'")

        monkeypatch.setattr(FeatureCollectionAdapter, "parse", explode)

        with pytest.raises(ParseError) as exc_info:
            decode_payload(generate_feature_collection(3))

        assert exc_info.value.kind == ParseErrorKind.MALFORMED_OUTPUT
        assert exc_info.value.context["adapter"] == "feature-collection"


class TestTimestampUnits:
    """Tests for magnitude-based unit resolution."""

    def test_seconds(self):
        assert timestamp_to_ms(1714564800.0) == 1714564800000.0

    def test_milliseconds(self):
        assert timestamp_to_ms(5e11) == 5e11

    def test_micro_scale(self):
        assert timestamp_to_ms(2e12) == 2e9


class TestNormalizeFrames:
    """Tests for canonical FlightLog construction."""

    def test_three_frame_flight(self, three_frames, settings, record_name):
        """Fly-time offsets, duration, home and total distance."""
        log = normalize_payload(three_frames, record_name, b"abc", settings)

        assert [p.timestamp_offset_ms for p in log.data_points] == [0, 5000, 10000]
        assert log.duration_seconds == 10.0
        assert log.home_location == GeoPoint(37.0, -122.0)
        expected = (
            haversine_distance(37.0, -122.0, 37.001, -122.0)
            + haversine_distance(37.001, -122.0, 37.002, -122.001)
        )
        assert_allclose(log.total_distance_m, expected, rtol=1e-12)
        # 1970 fly-time timestamps are not a date; the filename is
        assert log.flight_date == datetime(2024, 5, 1, 12, 0, 0)
        assert log.parser == PARSER_NAME

    def test_frames_payload(self, settings, record_name):
        """A full frames payload yields date, stats and identity metadata."""
        log = normalize_payload(generate_frames_payload(50), record_name, b"abc", settings, decoder_source="stdout")

        assert len(log.data_points) == 50
        assert [p.timestamp_offset_ms for p in log.data_points[:3]] == [0, 100, 200]
        assert log.flight_date == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert log.duration_seconds == pytest.approx(4.9)
        assert log.max_speed_mps == pytest.approx(5.0)
        assert log.max_altitude_m == pytest.approx(0.0)
        assert log.battery_start_percent == 90.0
        assert log.battery_end_percent == pytest.approx(87.55)
        assert log.drone_model == "DJI Air 3"
        assert log.metadata["battery_serial_number"] == "BAT-0001"
        assert log.metadata["drone_serial_number"] == "1581F5FHD"
        assert log.metadata["decoder_source"] == "stdout"
        assert log.metadata["frame_count"] == 50
        assert log.warnings == [] and log.errors == []

    def test_offsets_in_range_and_sorted(self, settings, record_name):
        """Offsets are non-decreasing integers within [0, 2**31-1]."""
        log = normalize_payload(generate_feature_collection(30), record_name, b"", settings)

        offsets = [p.timestamp_offset_ms for p in log.data_points]
        assert offsets == sorted(offsets)
        assert all(isinstance(o, int) and 0 <= o <= 2**31 - 1 for o in offsets)

    def test_home_is_first_position(self, settings, record_name):
        """Home equals the first point that has a position."""
        log = normalize_payload(generate_frames_payload(20), record_name, b"", settings)
        first = log.data_points[0]
        assert log.home_location == GeoPoint(first.lat, first.lng)

    def test_no_gps(self, settings, record_name):
        """No frame with a position is NO_GPS_DATA."""
        with pytest.raises(ParseError) as exc_info:
            normalize_payload({"frames": [{"osd": {"flyTime": 1}}]}, record_name, b"", settings)
        assert exc_info.value.kind == ParseErrorKind.NO_GPS_DATA

    def test_missing_timestamps_use_index(self, settings, record_name):
        """Frames without any timestamp are placed 100 ms apart by position."""
        lat, lng = generate_track(4)
        payload = {
            "type": "FeatureCollection",
            "features": [
                {"type": "Feature", "geometry": {"type": "Point", "coordinates": [lng[i], lat[i]]}, "properties": {}}
                for i in range(4)
            ],
        }
        log = normalize_payload(payload, record_name, b"", settings)
        assert [p.timestamp_offset_ms for p in log.data_points] == [0, 100, 200, 300]

    def test_missing_timestamp_follows_previous_frame(self, settings, record_name):
        """A frame without a timestamp is placed 100 ms after the frame before it."""
        lat, lng = generate_track(3)
        properties = [{"timestamp": 1714564800.0}, {"timestamp": 1714564805.0}, {}]
        payload = {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": {"type": "Point", "coordinates": [lng[i], lat[i]]},
                    "properties": properties[i],
                }
                for i in range(3)
            ],
        }

        log = normalize_payload(payload, record_name, b"", settings)

        assert [p.timestamp_offset_ms for p in log.data_points] == [0, 5000, 5100]

    def test_repeatable(self, settings, record_name):
        """Normalizing the same payload twice gives the same flight log."""
        payload = generate_frames_payload(100, interval_s=0.02, battery_start=15.0, battery_drain_per_frame=0.0)

        first = normalize_payload(payload, record_name, b"record", settings)
        second = normalize_payload(payload, record_name, b"record", settings)

        assert first.id == second.id
        assert first.data_points == second.data_points
        assert first.warnings == second.warnings
        assert first.errors == second.errors
        assert len(first.warnings) == 1
        for attr in (
            "duration_seconds",
            "max_altitude_m",
            "max_speed_mps",
            "max_distance_m",
            "total_distance_m",
            "battery_start_percent",
            "battery_end_percent",
            "home_location",
            "flight_date",
        ):
            assert getattr(first, attr) == getattr(second, attr), attr

    def test_low_battery_warning(self, settings, record_name):
        """A sustained low battery yields one warning per window."""
        payload = generate_frames_payload(100, interval_s=0.02, battery_start=15.0, battery_drain_per_frame=0.0)

        log = normalize_payload(payload, record_name, b"", settings)

        assert len(log.warnings) == 1
        assert log.warnings[0].details["key"] == "battery-low-15"


class TestPhotos:
    """Tests for photo emission and moment correlation."""

    def test_photos_off_by_default(self, settings, record_name):
        """Log-derived photo markers are not emitted unless enabled."""
        payload = generate_frames_payload(20)
        payload["frames"][10]["camera"]["isPhoto"] = True

        log = normalize_payload(payload, record_name, b"", settings)

        assert log.photo_count == 0

    def test_photo_flag_emitted(self, photo_settings, record_name):
        """With emission on, a flagged frame becomes a named photo point."""
        payload = generate_frames_payload(20)
        payload["frames"][10]["camera"]["isPhoto"] = True

        log = normalize_payload(payload, record_name, b"", photo_settings)

        photos = [p for p in log.data_points if p.is_photo]
        assert len(photos) == 1
        assert photos[0].timestamp_offset_ms == 1000
        assert photos[0].photo_filename == "DJI_20240501120001_0001_D.DNG"

    def test_moment_photo_correlation(self, photo_settings, record_name):
        """Moment markers are matched to the nearest data point."""
        lat, lng = generate_track(20)
        payload = generate_line_string(20, moment_photos=[(float(lat[5]), float(lng[5]))])

        log = normalize_payload(payload, record_name, b"", photo_settings)

        assert log.metadata["moment_photo_matches"] == 1
        assert log.data_points[5].is_photo
        assert log.data_points[5].photo_filename == "DJI_PHOTO_0001_D.DNG"

    def test_far_moment_marker_ignored(self, photo_settings, record_name):
        """Markers further than 100 m from the track are not matched."""
        payload = generate_line_string(20, moment_photos=[(37.01, -122.0)])

        log = normalize_payload(payload, record_name, b"", photo_settings)

        assert log.metadata["moment_photo_matches"] == 0
        assert log.photo_count == 0


class TestOrderPoints:
    """Tests for offset ordering."""

    def test_first_wins_on_duplicate_offset(self):
        """Stable sort keeps the earliest input point at a shared offset."""
        a = FlightLogDataPoint(timestamp_offset_ms=100, lat=1.0, lng=1.0)
        b = FlightLogDataPoint(timestamp_offset_ms=0, lat=2.0, lng=2.0)
        c = FlightLogDataPoint(timestamp_offset_ms=100, lat=3.0, lng=3.0)

        ordered = order_points([a, b, c])

        assert ordered == [b, a]
