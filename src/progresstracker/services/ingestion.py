"""
Upload orchestration: the only path by which new photos enter the store.

A batch of selected files goes through validation, camera-format
conversion, an optional crop (single-file batches only), compression and
sequential persistence. Per-file problems are collected and the batch
continues; a storage failure stops the batch, keeping what was already saved.
"""

import asyncio
import inspect
import mimetypes
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from ..errors import (
    ConversionError,
    DecodeError,
    ImageProcessingError,
    ProgressTrackerError,
    StorageError,
    ValidationError,
)
from ..logging_config import get_logger, log_performance, log_record_action
from ..models.image_record import BodyMeasurements, CropSettings, ImageRecord, normalize_measurements, parse_record_date
from ..utils.encoding import bytes_to_data_url, data_url_to_bytes
from .crop import CropResult
from .image_processor import CompressedImage, ImageProcessor, get_image_processor
from .store import ImageStore

logger = get_logger(__name__)


class IngestionState(Enum):
    SELECTING = "selecting"
    VALIDATING = "validating"
    CONVERTING = "converting"
    PREVIEW_READY = "preview_ready"
    CROPPING = "cropping"
    COMPRESSING = "compressing"
    PERSISTING = "persisting"
    DONE = "done"
    ERROR = "error"


class FileLike(Protocol):
    """What a file picker hands over: a name, a declared MIME type and its bytes."""

    name: str
    type: str

    def read(self) -> bytes | Awaitable[bytes]: ...


@dataclass
class SelectedFile:
    """A file picked for upload, held in memory."""

    name: str
    type: str
    data: bytes = field(repr=False)

    def read(self) -> bytes:
        return self.data

    @classmethod
    def from_path(cls, path: str | Path) -> "SelectedFile":
        """Load a file from disk, guessing its MIME type from the extension."""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, type=mime_type or "", data=path.read_bytes())


@dataclass
class CropRequest:
    """What a crop handler needs to present the crop UI."""

    file_name: str
    preview_data_url: str = field(repr=False)
    source_size: tuple[int, int]


@dataclass
class FileError:
    """A file that dropped out of a batch, with the reason."""

    file_name: str
    error: ProgressTrackerError

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "code": self.error.code,
            "message": self.error.user_message,
        }


@dataclass
class BatchResult:
    """Outcome of one process_files call."""

    records: list[ImageRecord] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)
    fatal_error: StorageError | None = None

    @property
    def success(self) -> bool:
        return self.fatal_error is None and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "saved": [record.id for record in self.records],
            "errors": [error.to_dict() for error in self.errors],
            "fatal_error": self.fatal_error.get_error_info().to_dict() if self.fatal_error else None,
        }


CropHandler = Callable[[CropRequest], "CropResult | None | Awaitable[CropResult | None]"]


@dataclass
class _PendingFile:
    name: str
    data: bytes
    mime_type: str
    source_size: tuple[int, int] | None = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _current_millis() -> int:
    return int(time.time() * 1000)


class IngestionOrchestrator:
    """
    Runs upload batches against a store.

    Callbacks may be plain functions or coroutines:

    - ``crop_handler(CropRequest)`` returns a CropResult, or None to upload uncropped
    - ``on_state_change(state, file_name)`` sees every state transition
    - ``on_upload_success(records)`` fires once per batch that saved anything
    - ``on_delete(record_id)`` fires after a delete
    """

    def __init__(
        self,
        store: ImageStore,
        processor: ImageProcessor | None = None,
        clock: Callable[[], int] | None = None,
        crop_handler: CropHandler | None = None,
        on_state_change: Callable[[IngestionState, str | None], Any] | None = None,
        on_upload_success: Callable[[list[ImageRecord]], Any] | None = None,
        on_delete: Callable[[str], Any] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Where records are persisted
            processor: Image processor (defaults to the shared one)
            clock: Epoch-millisecond clock used for upload timestamps
            crop_handler: Asked for a crop when a batch has exactly one file
            on_state_change: State transition hook
            on_upload_success: Hook receiving the records saved by a batch
            on_delete: Hook receiving the id of a deleted record
        """
        self.store = store
        self.processor = processor or get_image_processor()
        self.clock = clock or _current_millis
        self.crop_handler = crop_handler
        self.on_state_change = on_state_change
        self.on_upload_success = on_upload_success
        self.on_delete = on_delete
        self.state = IngestionState.SELECTING
        self._last_timestamp = 0

    async def _set_state(self, state: IngestionState, file_name: str | None = None) -> None:
        self.state = state
        logger.debug("ingestion_state_changed", state=state.value, file_name=file_name)
        if self.on_state_change is not None:
            await _maybe_await(self.on_state_change(state, file_name))

    def _next_timestamp(self) -> int:
        timestamp = max(self.clock(), self._last_timestamp + 1)
        self._last_timestamp = timestamp
        return timestamp

    async def process_files(
        self,
        files: Sequence[FileLike],
        record_date: date | str,
        measurements: BodyMeasurements | dict[str, Any] | None = None,
    ) -> BatchResult:
        """
        Ingest a batch of selected files.

        Args:
            files: Selected files, in submission order
            record_date: Day the photos represent
            measurements: Optional measurements, attached to the first saved record only

        Returns:
            BatchResult: Saved records, per-file errors and any fatal storage error

        Raises:
            ValidationError: If the date or measurements are invalid (nothing is processed)
        """
        start_time = datetime.now()
        await self._set_state(IngestionState.SELECTING)
        record_date, measurements = self._check_batch_inputs(record_date, measurements)

        result = BatchResult()
        logger.info("batch_ingest_started", total_files=len(files), record_date=record_date.isoformat())

        pending = await self._validate(files, result)
        pending = await self._convert(pending, result)

        if not pending:
            await self._set_state(IngestionState.ERROR if result.errors else IngestionState.DONE)
            return result

        await self._set_state(IngestionState.PREVIEW_READY)
        crop = await self._request_crop(pending[0], result) if len(pending) == 1 else None

        for item in pending:
            compressed = await self._compress(item, crop, result)
            if compressed is None:
                continue

            image, original = compressed
            await self._set_state(IngestionState.PERSISTING, item.name)
            record = ImageRecord.create_new(
                image_data=image.data_url,
                record_date=record_date,
                file_name=item.name,
                file_size=image.size_bytes,
                mime_type=image.mime_type,
                measurements=measurements if not result.records else None,
                original_image_data=original.data_url if original else None,
                crop_settings=_settings_for(crop, original, item.source_size) if crop and original else None,
                upload_timestamp=self._next_timestamp(),
            )

            try:
                await self.store.put(record)
            except StorageError as e:
                result.fatal_error = e
                logger.error("batch_ingest_aborted", file_name=item.name, saved=len(result.records), error=str(e))
                await self._set_state(IngestionState.ERROR, item.name)
                break

            result.records.append(record)

        if result.fatal_error is None:
            failed = not result.records and bool(result.errors)
            await self._set_state(IngestionState.ERROR if failed else IngestionState.DONE)

        if result.records and self.on_upload_success is not None:
            await _maybe_await(self.on_upload_success(list(result.records)))

        log_performance(
            "batch_ingest_completed",
            (datetime.now() - start_time).total_seconds(),
            total_files=len(files),
            saved=len(result.records),
            failed=len(result.errors),
            aborted=result.fatal_error is not None,
        )
        return result

    def _check_batch_inputs(
        self, record_date: date | str, measurements: BodyMeasurements | dict[str, Any] | None
    ) -> tuple[date, BodyMeasurements | None]:
        try:
            parsed_date = parse_record_date(record_date)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid record date: {record_date!r}",
                code="invalid_date",
                user_message="Please enter a valid date.",
                details={"record_date": str(record_date)},
                original_exception=e,
            ) from e

        try:
            parsed_measurements = normalize_measurements(measurements)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid measurements: {e}",
                code="invalid_measurements",
                user_message="Measurements must be numbers.",
                original_exception=e,
            ) from e

        return parsed_date, parsed_measurements

    async def _validate(self, files: Sequence[FileLike], result: BatchResult) -> list[_PendingFile]:
        pending = []
        for selected in files:
            await self._set_state(IngestionState.VALIDATING, selected.name)
            data = await _maybe_await(selected.read())
            try:
                self.processor.validate_file(selected.name, selected.type, data)
            except ValidationError as e:
                result.errors.append(FileError(selected.name, e))
                await self._set_state(IngestionState.ERROR, selected.name)
                continue
            pending.append(_PendingFile(selected.name, data, selected.type or ""))
        return pending

    async def _convert(self, pending: list[_PendingFile], result: BatchResult) -> list[_PendingFile]:
        converted = []
        for item in pending:
            if not self.processor.is_heic(item.name, item.mime_type):
                converted.append(item)
                continue

            await self._set_state(IngestionState.CONVERTING, item.name)
            try:
                jpeg_data = await asyncio.to_thread(self.processor.convert_heic_to_jpeg, item.data, item.name)
            except ConversionError as e:
                result.errors.append(FileError(item.name, e))
                await self._set_state(IngestionState.ERROR, item.name)
                continue
            converted.append(_PendingFile(str(Path(item.name).with_suffix(".jpg")), jpeg_data, "image/jpeg"))
        return converted

    async def _request_crop(self, item: _PendingFile, result: BatchResult) -> CropResult | None:
        if self.crop_handler is None:
            return None

        try:
            source_size = await asyncio.to_thread(self.processor.get_dimensions, item.data)
        except ImageProcessingError:
            # Compression reports the same failure for this file
            return None

        item.source_size = source_size
        await self._set_state(IngestionState.CROPPING, item.name)
        request = CropRequest(item.name, bytes_to_data_url(item.data, item.mime_type or "image/jpeg"), source_size)
        crop = await _maybe_await(self.crop_handler(request))
        logger.info("crop_selected" if crop else "crop_skipped", file_name=item.name)
        return crop

    async def _compress(
        self, item: _PendingFile, crop: CropResult | None, result: BatchResult
    ) -> tuple[CompressedImage, CompressedImage | None] | None:
        await self._set_state(IngestionState.COMPRESSING, item.name)
        try:
            if crop is None:
                return await asyncio.to_thread(self.processor.compress, item.data), None
            image = await asyncio.to_thread(self.processor.compress, item.data, None, None, crop.area)
            original = await asyncio.to_thread(self.processor.compress, item.data)
            return image, original
        except ImageProcessingError as e:
            result.errors.append(FileError(item.name, e))
            await self._set_state(IngestionState.ERROR, item.name)
            return None

    async def recrop(self, record_id: str, crop: CropResult) -> ImageRecord:
        """
        Re-crop a stored record from its uncropped original.

        The crop area is in pixels of the record's ``original_image_data``.

        Raises:
            ValidationError: If the record is unknown or has no original to crop from
            ImageProcessingError: If the original cannot be re-encoded
            StorageError: If saving fails
        """
        record = await self._require_record(record_id)
        if not record.original_image_data:
            raise ValidationError(
                f"Record {record_id} has no original image to re-crop",
                code="recrop_unavailable",
                user_message="This photo was not cropped, so there is no original to re-crop from.",
                details={"record_id": record_id},
            )

        try:
            original_data, _ = data_url_to_bytes(record.original_image_data)
        except ValueError as e:
            raise DecodeError(
                f"Stored original of {record_id} is not a valid data URL: {e}",
                details={"record_id": record_id},
                original_exception=e,
            ) from e
        image = await asyncio.to_thread(self.processor.compress, original_data, None, None, crop.area)
        updated = replace(
            record,
            image_data=image.data_url,
            file_size=image.size_bytes,
            mime_type=image.mime_type,
            crop_settings=crop.settings,
        )
        await self.store.put(updated)
        log_record_action("record_recropped", record_id, crop=crop.settings.to_dict())
        return updated

    async def update_measurements(
        self, record_id: str, measurements: BodyMeasurements | dict[str, Any] | None
    ) -> ImageRecord:
        """Replace a record's measurements; an empty set removes them."""
        record = await self._require_record(record_id)
        try:
            updated = record.with_measurements(measurements)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid measurements: {e}",
                code="invalid_measurements",
                user_message="Measurements must be numbers.",
                original_exception=e,
            ) from e
        await self.store.put(updated)
        log_record_action("measurements_updated", record_id, cleared=updated.measurements is None)
        return updated

    async def delete(self, record_id: str) -> bool:
        """Delete a record and notify ``on_delete``. Returns whether it existed."""
        existed = await self.store.delete(record_id)
        if self.on_delete is not None:
            await _maybe_await(self.on_delete(record_id))
        return existed

    async def _require_record(self, record_id: str) -> ImageRecord:
        record = await self.store.get(record_id)
        if record is None:
            raise ValidationError(
                f"Record not found: {record_id}",
                code="record_not_found",
                user_message="The photo no longer exists.",
                details={"record_id": record_id},
            )
        return record


def _settings_for(crop: CropResult, original: CompressedImage, source_size: tuple[int, int] | None) -> CropSettings:
    """Crop settings expressed in pixels of the stored (possibly downscaled) original."""
    if not source_size or source_size == (original.width, original.height):
        return crop.settings

    scale_x = original.width / source_size[0]
    scale_y = original.height / source_size[1]
    settings = crop.settings
    return replace(
        settings,
        x=settings.x * scale_x,
        y=settings.y * scale_y,
        width=settings.width * scale_x,
        height=settings.height * scale_y,
    )
