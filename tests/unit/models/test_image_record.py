"""
Unit tests for the image record model.
"""

from datetime import UTC, date, datetime

import pytest

from progresstracker.models.image_record import (
    EXPORT_VERSION,
    BodyMeasurements,
    CropSettings,
    ExportEnvelope,
    ImageMetadata,
    ImageRecord,
    normalize_measurements,
    parse_record_date,
    record_field_names,
)


class TestParseRecordDate:
    """Test cases for calendar date parsing."""

    def test_iso_string(self):
        assert parse_record_date("2024-03-05") == date(2024, 3, 5)

    def test_timestamp_keeps_date_part(self):
        # No time zone conversion: the calendar day is kept as written
        assert parse_record_date("2024-03-05T23:30:00-08:00") == date(2024, 3, 5)

    def test_datetime(self):
        assert parse_record_date(datetime(2024, 3, 5, 12)) == date(2024, 3, 5)

    @pytest.mark.parametrize("value", ["", "2024-13-01", "yesterday", None, 20240305])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_record_date(value)


class TestBodyMeasurements:
    """Test cases for BodyMeasurements."""

    def test_empty(self):
        assert BodyMeasurements().is_empty() is True
        assert BodyMeasurements(waist=80).is_empty() is False

    def test_to_dict_is_sparse_and_camel_case(self):
        measurements = BodyMeasurements(waist=80.0, upper_arm=30.5)

        assert measurements.to_dict() == {"waist": 80.0, "upperArm": 30.5}

    def test_from_dict(self):
        measurements = BodyMeasurements.from_dict({"upperArm": "31.5", "hips": 95, "chest": None, "unknown": 1})

        assert measurements == BodyMeasurements(upper_arm=31.5, hips=95.0)

    def test_from_dict_keeps_whole_numbers(self):
        measurements = BodyMeasurements.from_dict({"waist": 80, "hips": "95"})

        assert measurements.to_dict() == {"waist": 80, "hips": 95.0}
        assert isinstance(measurements.waist, int)
        assert isinstance(measurements.hips, float)

    def test_from_dict_rejects_non_numeric(self):
        with pytest.raises(ValueError):
            BodyMeasurements.from_dict({"waist": "wide"})

    def test_from_dict_rejects_bool(self):
        with pytest.raises(ValueError):
            BodyMeasurements.from_dict({"waist": True})

    def test_normalize_drops_empty_sets(self):
        assert normalize_measurements(None) is None
        assert normalize_measurements({}) is None
        assert normalize_measurements({"waist": ""}) is None
        assert normalize_measurements(BodyMeasurements()) is None
        assert normalize_measurements({"waist": 70}) == BodyMeasurements(waist=70.0)


class TestCropSettings:
    """Test cases for CropSettings."""

    def test_round_trip(self):
        settings = CropSettings(x=1, y=2, width=30, height=40, zoom=2.0, aspect_ratio=0.75)

        assert CropSettings.from_dict(settings.to_dict()) == settings
        assert settings.to_dict()["aspectRatio"] == 0.75

    def test_from_dict_defaults(self):
        settings = CropSettings.from_dict({"x": 0, "y": 0, "width": 10, "height": 10})

        assert settings.zoom == 1.0
        assert settings.aspect_ratio is None


class TestImageRecord:
    """Test cases for ImageRecord."""

    def test_create_new(self):
        record = ImageRecord.create_new(
            image_data="data:image/jpeg;base64,YWJj",
            record_date="2024-01-05",
            file_name="front.jpg",
            file_size=3,
            measurements={"waist": 80},
            upload_timestamp=1700000000000,
        )

        assert record.id.startswith("img_1700000000000_")
        assert record.date == date(2024, 1, 5)
        assert record.upload_timestamp == 1700000000000
        assert record.mime_type == "image/jpeg"
        assert record.measurements == BodyMeasurements(waist=80.0)
        assert record.validate() is True

    def test_create_new_drops_empty_measurements(self):
        record = ImageRecord.create_new("data:image/jpeg;base64,YWJj", "2024-01-05", "a.jpg", 3, measurements={})

        assert record.measurements is None

    def test_to_dict_omits_absent_fields(self, record_factory):
        data = record_factory().to_dict()

        assert set(data) == {"id", "imageData", "date", "uploadTimestamp", "mimeType", "fileName", "fileSize"}
        assert data["date"] == "2024-01-01"

    def test_dict_round_trip(self, full_record):
        assert ImageRecord.from_dict(full_record.to_dict()) == full_record

    def test_from_dict_minimal(self):
        record = ImageRecord.from_dict({"id": "x", "imageData": "data:image/jpeg;base64,YWJj", "date": "2024-01-01"})

        assert record.upload_timestamp == 0
        assert record.file_size == 3
        assert record.file_name == ""

    @pytest.mark.parametrize(
        "data",
        [
            {"id": "x"},
            {"id": "x", "imageData": "data:image/jpeg;base64,YWJj"},
            {"id": "", "imageData": "data:image/jpeg;base64,YWJj", "date": "2024-01-01"},
            {"id": "x", "imageData": "", "date": "2024-01-01"},
        ],
    )
    def test_from_dict_requires_id_image_and_date(self, data):
        with pytest.raises((KeyError, ValueError)):
            ImageRecord.from_dict(data)

    def test_crop_settings_require_original(self, record_factory):
        record = record_factory(crop_settings=CropSettings(0, 0, 10, 10))

        assert record.validate() is False

    def test_empty_measurements_are_invalid(self, record_factory):
        record = record_factory(measurements=BodyMeasurements())

        assert record.validate() is False

    def test_with_measurements(self, record_factory):
        record = record_factory().with_measurements({"waist": 70})

        assert record.measurements == BodyMeasurements(waist=70.0)
        assert record.with_measurements({}).measurements is None

    def test_display_name(self, record_factory):
        assert record_factory(file_name="side.jpg").get_display_name() == "2024-01-01 - side.jpg"
        assert record_factory(file_name="").get_display_name() == "2024-01-01"

    def test_payload_bytes(self, full_record):
        assert full_record.payload_bytes() == len(full_record.image_data) + len(full_record.original_image_data)


def test_metadata_from_record(full_record):
    metadata = ImageMetadata.from_record(full_record)

    assert metadata.id == full_record.id
    assert metadata.to_dict()["date"] == "2024-02-10"
    assert "imageData" not in metadata.to_dict()


def test_export_envelope_to_dict(full_record):
    envelope = ExportEnvelope(images=[full_record], export_date=datetime(2024, 5, 1, 12, 0, tzinfo=UTC))

    data = envelope.to_dict()

    assert data["version"] == EXPORT_VERSION
    assert data["exportDate"] == "2024-05-01T12:00:00Z"
    assert data["images"] == [full_record.to_dict()]


def test_record_field_names():
    assert record_field_names()[:3] == ["id", "image_data", "date"]
