"""
Image record model for progresstracker.

This module contains the ImageRecord dataclass stored in the image store
together with its nested value types and the export envelope. JSON keys use
the camelCase names of the backup file format.
"""

import time
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, date, datetime
from typing import Any

from ..utils.encoding import data_url_payload_size, generate_image_id

EXPORT_VERSION = "1.0"

# Python attribute name -> JSON key, in display order
MEASUREMENT_KEYS = {
    "chest": "chest",
    "waist": "waist",
    "belly": "belly",
    "hips": "hips",
    "thigh": "thigh",
    "calf": "calf",
    "upper_arm": "upperArm",
    "shoulders": "shoulders",
}

MEASUREMENT_LABELS = {
    "chest": "Chest/Bust",
    "shoulders": "Shoulders",
    "upper_arm": "Upper Arm",
    "waist": "Waist",
    "belly": "Belly",
    "hips": "Hips",
    "thigh": "Thigh",
    "calf": "Calf",
}


def parse_record_date(value: Any) -> date:
    """
    Parse a calendar date without applying any timezone shift.

    Accepts ``date`` objects, ``YYYY-MM-DD`` strings and ISO timestamps, of
    which only the date part is kept.

    Raises:
        ValueError: If the value is not a valid calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid date: {value!r}")
    return date.fromisoformat(value.strip()[:10])


@dataclass
class BodyMeasurements:
    """Body measurements in centimeters; every field is optional."""

    chest: float | None = None
    waist: float | None = None
    belly: float | None = None
    hips: float | None = None
    thigh: float | None = None
    calf: float | None = None
    upper_arm: float | None = None
    shoulders: float | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in MEASUREMENT_KEYS)

    def items(self) -> list[tuple[str, float]]:
        """Present measurements as (attribute name, value) pairs."""
        return [(name, getattr(self, name)) for name in MEASUREMENT_KEYS if getattr(self, name) is not None]

    def to_dict(self) -> dict[str, float]:
        """Sparse JSON representation; absent measurements are omitted."""
        return {MEASUREMENT_KEYS[name]: value for name, value in self.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BodyMeasurements":
        """
        Build measurements from a JSON mapping.

        Unknown keys and null values are ignored.

        Raises:
            ValueError: If a value is not numeric
        """
        values: dict[str, float] = {}
        for name, key in MEASUREMENT_KEYS.items():
            raw = data.get(key, data.get(name))
            if raw is None or raw == "":
                continue
            if isinstance(raw, bool):
                raise ValueError(f"Invalid measurement for {key}: {raw!r}")
            # ints pass through unchanged
            values[name] = raw if isinstance(raw, int) else float(raw)
        return cls(**values)


def normalize_measurements(measurements: "BodyMeasurements | dict[str, Any] | None") -> BodyMeasurements | None:
    """Return measurements, or None when nothing is filled in."""
    if measurements is None:
        return None
    if isinstance(measurements, dict):
        measurements = BodyMeasurements.from_dict(measurements)
    return None if measurements.is_empty() else measurements


@dataclass
class CropSettings:
    """Last crop applied to a record, in source-pixel coordinates."""

    x: float
    y: float
    width: float
    height: float
    zoom: float = 1.0
    aspect_ratio: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "zoom": self.zoom,
            "aspectRatio": self.aspect_ratio,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CropSettings":
        aspect_ratio = data.get("aspectRatio", data.get("aspect_ratio"))
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
            zoom=float(data.get("zoom", 1.0)),
            aspect_ratio=float(aspect_ratio) if aspect_ratio is not None else None,
        )


@dataclass
class ImageRecord:
    """
    A stored progress photo.

    ``date`` is the day the photo was taken or logged and is the key used for
    sorting and comparison; ``upload_timestamp`` (epoch milliseconds) is fixed
    at creation and only breaks ties.
    """

    id: str
    image_data: str
    date: date
    upload_timestamp: int
    mime_type: str = "image/jpeg"
    file_name: str = ""
    file_size: int = 0
    measurements: BodyMeasurements | None = None
    original_image_data: str | None = None
    crop_settings: CropSettings | None = None

    @classmethod
    def create_new(
        cls,
        image_data: str,
        record_date: date | str,
        file_name: str,
        file_size: int,
        mime_type: str = "image/jpeg",
        measurements: BodyMeasurements | dict[str, Any] | None = None,
        original_image_data: str | None = None,
        crop_settings: CropSettings | None = None,
        upload_timestamp: int | None = None,
    ) -> "ImageRecord":
        """
        Create a new ImageRecord with a generated id and upload timestamp.

        Args:
            image_data: Data URI of the stored image
            record_date: Day the photo represents
            file_name: Name of the uploaded file
            file_size: Size of the stored image in bytes
            mime_type: MIME type of the stored image
            measurements: Optional body measurements; empty sets are dropped
            original_image_data: Uncropped image, required when cropped
            crop_settings: Crop applied to produce image_data
            upload_timestamp: Creation instant in epoch ms (defaults to now)

        Returns:
            New ImageRecord instance
        """
        if upload_timestamp is None:
            upload_timestamp = int(time.time() * 1000)
        return cls(
            id=generate_image_id(upload_timestamp),
            image_data=image_data,
            date=parse_record_date(record_date),
            upload_timestamp=upload_timestamp,
            mime_type=mime_type,
            file_name=file_name,
            file_size=file_size,
            measurements=normalize_measurements(measurements),
            original_image_data=original_image_data,
            crop_settings=crop_settings,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the record to its JSON (export) representation.

        Optional fields are omitted when absent.
        """
        data: dict[str, Any] = {
            "id": self.id,
            "imageData": self.image_data,
            "date": self.date.isoformat(),
            "uploadTimestamp": self.upload_timestamp,
            "mimeType": self.mime_type,
            "fileName": self.file_name,
            "fileSize": self.file_size,
        }
        if self.measurements is not None and not self.measurements.is_empty():
            data["measurements"] = self.measurements.to_dict()
        if self.original_image_data is not None:
            data["originalImageData"] = self.original_image_data
        if self.crop_settings is not None:
            data["cropSettings"] = self.crop_settings.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageRecord":
        """
        Create an ImageRecord from its JSON representation.

        Only ``id``, ``imageData`` and ``date`` are required; other fields
        fall back to defaults derived from the payload.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        record_id = data["id"]
        image_data = data["imageData"]
        if not isinstance(record_id, str) or not record_id:
            raise ValueError("Record id must be a non-empty string")
        if not isinstance(image_data, str) or not image_data:
            raise ValueError("Record imageData must be a non-empty string")

        measurements = data.get("measurements")
        crop_settings = data.get("cropSettings")
        file_size = data.get("fileSize")

        return cls(
            id=record_id,
            image_data=image_data,
            date=parse_record_date(data["date"]),
            upload_timestamp=int(data.get("uploadTimestamp") or 0),
            mime_type=data.get("mimeType") or "image/jpeg",
            file_name=data.get("fileName") or "",
            file_size=int(file_size) if file_size is not None else data_url_payload_size(image_data),
            measurements=normalize_measurements(measurements) if isinstance(measurements, dict) else None,
            original_image_data=data.get("originalImageData") or None,
            crop_settings=CropSettings.from_dict(crop_settings) if isinstance(crop_settings, dict) else None,
        )

    def validate(self) -> bool:
        """
        Validate the record invariants.

        Returns:
            True if valid, False otherwise
        """
        if not self.id or not self.image_data:
            return False

        if not isinstance(self.date, date):
            return False

        if self.crop_settings is not None and not self.original_image_data:
            return False

        if self.measurements is not None and self.measurements.is_empty():
            return False

        if self.file_size < 0:
            return False

        return True

    def with_measurements(self, measurements: BodyMeasurements | dict[str, Any] | None) -> "ImageRecord":
        """Copy of the record with measurements replaced (empty sets become absent)."""
        return replace(self, measurements=normalize_measurements(measurements))

    def get_display_name(self) -> str:
        """User-facing label: the date, followed by the file name when known."""
        if self.file_name:
            return f"{self.date.isoformat()} - {self.file_name}"
        return self.date.isoformat()

    def payload_bytes(self) -> int:
        """Characters of image payload this record keeps in storage."""
        return len(self.image_data) + len(self.original_image_data or "")


@dataclass
class ImageMetadata:
    """Record summary without image payloads, for listings."""

    id: str
    date: date
    upload_timestamp: int
    file_name: str
    file_size: int

    @classmethod
    def from_record(cls, record: ImageRecord) -> "ImageMetadata":
        return cls(
            id=record.id,
            date=record.date,
            upload_timestamp=record.upload_timestamp,
            file_name=record.file_name,
            file_size=record.file_size,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "uploadTimestamp": self.upload_timestamp,
            "fileName": self.file_name,
            "fileSize": self.file_size,
        }


@dataclass
class ExportEnvelope:
    """Versioned wrapper used for backup export and import."""

    images: list[ImageRecord] = field(default_factory=list)
    version: str = EXPORT_VERSION
    export_date: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "exportDate": self.export_date.isoformat().replace("+00:00", "Z"),
            "images": [image.to_dict() for image in self.images],
        }


def record_field_names() -> list[str]:
    """Attribute names of ImageRecord, in declaration order."""
    return [f.name for f in fields(ImageRecord)]
