"""
Persistent image store.

``ImageStore`` is the async interface the rest of the package depends on.
``DuckDBImageStore`` keeps records in a DuckDB file (or ``:memory:``) and runs
every blocking call on a dedicated single-thread executor, which also
serializes writes. ``InMemoryImageStore`` keeps records in a dict and is
used where persistence is not wanted.
"""

import asyncio
import copy
import functools
import json
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, TypeVar

import duckdb

from ..config import get_db_path, get_store_quota_bytes
from ..errors import FormatError, StorageError, StorageQuotaError, ValidationError
from ..logging_config import get_logger, log_record_action
from ..models.database import DatabaseManager, get_database_manager
from ..models.image_record import (
    BodyMeasurements,
    CropSettings,
    ExportEnvelope,
    ImageMetadata,
    ImageRecord,
    parse_record_date,
)
from ..models.schema import COLUMN_NAMES

logger = get_logger(__name__)

T = TypeVar("T")

_SELECT_COLUMNS = ", ".join(COLUMN_NAMES)
_INSERT_SQL = f"INSERT INTO images ({_SELECT_COLUMNS}) VALUES ({', '.join('?' for _ in COLUMN_NAMES)})"
_PAYLOAD_EXPR = "LENGTH(image_data) + COALESCE(LENGTH(original_image_data), 0)"


class ImageStore(ABC):
    """Async keyed storage of ImageRecords."""

    def __init__(self, quota_bytes: int | None = None):
        """
        Args:
            quota_bytes: Largest total image payload the store accepts (0 = unlimited,
                defaults to STORE_QUOTA_BYTES)
        """
        self.quota_bytes = quota_bytes if quota_bytes is not None else get_store_quota_bytes()

    async def open(self) -> None:
        """Prepare the store for use."""

    async def close(self) -> None:
        """Release resources held by the store."""

    async def __aenter__(self) -> "ImageStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @abstractmethod
    async def put(self, record: ImageRecord) -> None:
        """
        Insert or replace a record by id.

        Raises:
            ValidationError: If the record breaks its invariants
            StorageQuotaError: If the store has no room for the record
            StorageError: If the write fails for any other reason
        """

    @abstractmethod
    async def get(self, record_id: str) -> ImageRecord | None:
        """Record with the given id, or None."""

    @abstractmethod
    async def get_all(self) -> list[ImageRecord]:
        """Every stored record; callers sort as they need."""

    @abstractmethod
    async def get_by_date_range(self, start: date | str, end: date | str) -> list[ImageRecord]:
        """Records whose date lies in [start, end]."""

    @abstractmethod
    async def get_by_upload_order(self) -> list[ImageRecord]:
        """Records ordered by upload timestamp, oldest first."""

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Remove a record; deleting an unknown id is not an error. Returns whether it existed."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every record."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored records."""

    @abstractmethod
    async def total_bytes(self) -> int:
        """Characters of image payload held by the store."""

    @abstractmethod
    async def _put_many(self, records: list[ImageRecord]) -> None:
        """Write records atomically: all of them or none."""

    async def get_metadata(self) -> list[ImageMetadata]:
        """Payload-free summaries in upload order."""
        return [ImageMetadata.from_record(record) for record in await self.get_by_upload_order()]

    async def export_all(self) -> ExportEnvelope:
        """Snapshot of every record, in upload order."""
        records = await self.get_by_upload_order()
        logger.info("store_exported", record_count=len(records))
        return ExportEnvelope(images=records)

    async def import_all(self, envelope: ExportEnvelope | dict[str, Any]) -> int:
        """
        Import records from an export envelope.

        Entries missing a non-empty ``id``, ``imageData`` or ``date``, or that
        cannot be parsed, are skipped. Accepted records are written in one
        transaction, replacing existing records with the same id.

        Args:
            envelope: ExportEnvelope or its parsed JSON form

        Returns:
            int: Number of records imported

        Raises:
            FormatError: If ``version`` or the ``images`` list is missing
            StorageError: If the write fails; nothing is imported in that case
        """
        if isinstance(envelope, ExportEnvelope):
            records = [record for record in envelope.images if record.validate()]
            skipped = len(envelope.images) - len(records)
        else:
            records, skipped = _parse_envelope(envelope)

        if records:
            await self._put_many(records)

        logger.info("store_imported", imported=len(records), skipped=skipped)
        return len(records)

    def _check_quota(self, current_total: int, replaced_bytes: int, incoming: Iterable[ImageRecord]) -> None:
        if not self.quota_bytes:
            return

        incoming_bytes = sum(record.payload_bytes() for record in incoming)
        projected = current_total - replaced_bytes + incoming_bytes
        if projected > self.quota_bytes:
            raise StorageQuotaError(
                f"Store quota exceeded: {projected} > {self.quota_bytes} bytes",
                details={"projected_bytes": projected, "quota_bytes": self.quota_bytes},
            )


def _parse_envelope(envelope: Any) -> tuple[list[ImageRecord], int]:
    if not isinstance(envelope, dict) or not envelope.get("version") or not isinstance(envelope.get("images"), list):
        keys = [str(key) for key in envelope] if isinstance(envelope, dict) else type(envelope).__name__
        raise FormatError("Export envelope requires a version and an images list", details={"keys": keys})

    records: dict[str, ImageRecord] = {}
    skipped = 0
    for index, item in enumerate(envelope["images"]):
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            record = ImageRecord.from_dict(item)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("import_record_skipped", index=index, record_id=item.get("id"), reason=str(e))
            skipped += 1
            continue
        if not record.validate():
            logger.warning("import_record_skipped", index=index, record_id=record.id, reason="invalid record")
            skipped += 1
            continue
        # Later entries replace earlier ones with the same id
        records.pop(record.id, None)
        records[record.id] = record

    return list(records.values()), skipped


def _check_record(record: ImageRecord) -> None:
    if not record.validate():
        raise ValidationError(
            f"Invalid image record: {record.id}",
            code="invalid_record",
            user_message="The photo could not be saved because its data is incomplete.",
            details={"record_id": record.id},
        )


class InMemoryImageStore(ImageStore):
    """Dict-backed store; contents live only as long as the instance."""

    def __init__(self, quota_bytes: int | None = None):
        super().__init__(quota_bytes)
        self._records: dict[str, ImageRecord] = {}

    async def put(self, record: ImageRecord) -> None:
        await self._put_many([record])
        log_record_action("record_saved", record.id, store="memory")

    async def _put_many(self, records: list[ImageRecord]) -> None:
        for record in records:
            _check_record(record)
        replaced = sum(self._records[r.id].payload_bytes() for r in records if r.id in self._records)
        self._check_quota(self._payload_total(), replaced, records)

        updated = dict(self._records)
        for record in records:
            updated[record.id] = copy.deepcopy(record)
        self._records = updated

    async def get(self, record_id: str) -> ImageRecord | None:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def get_all(self) -> list[ImageRecord]:
        return [copy.deepcopy(record) for record in self._records.values()]

    async def get_by_date_range(self, start: date | str, end: date | str) -> list[ImageRecord]:
        start_date, end_date = parse_record_date(start), parse_record_date(end)
        matches = [record for record in self._records.values() if start_date <= record.date <= end_date]
        matches.sort(key=lambda record: (record.date, record.upload_timestamp))
        return [copy.deepcopy(record) for record in matches]

    async def get_by_upload_order(self) -> list[ImageRecord]:
        ordered = sorted(self._records.values(), key=lambda record: (record.upload_timestamp, record.id))
        return [copy.deepcopy(record) for record in ordered]

    async def delete(self, record_id: str) -> bool:
        existed = self._records.pop(record_id, None) is not None
        if existed:
            log_record_action("record_deleted", record_id, store="memory")
        return existed

    async def clear(self) -> None:
        self._records = {}
        logger.info("store_cleared", store="memory")

    async def count(self) -> int:
        return len(self._records)

    async def total_bytes(self) -> int:
        return self._payload_total()

    def _payload_total(self) -> int:
        return sum(record.payload_bytes() for record in self._records.values())


class DuckDBImageStore(ImageStore):
    """
    Store backed by a DuckDB database.

    The database is opened lazily on first use; ``open()`` may be awaited to
    surface connection problems early.
    """

    def __init__(self, db_path: str | None = None, quota_bytes: int | None = None):
        """
        Initialize the store.

        Args:
            db_path: Database file or ``:memory:`` (defaults to PROGRESS_DB_PATH)
            quota_bytes: Payload quota, see ImageStore
        """
        super().__init__(quota_bytes)
        self.db_path = db_path or get_db_path()
        self._db: DatabaseManager | None = None
        self._executor: ThreadPoolExecutor | None = None

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress-store")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    async def open(self) -> None:
        await self._run(self._require_db)

    async def close(self) -> None:
        if self._executor is None:
            return
        await self._run(self._close_sync)
        self._executor.shutdown(wait=True)
        self._executor = None

    def _require_db(self) -> DatabaseManager:
        if self._db is None:
            try:
                self._db = get_database_manager(self.db_path, create_if_missing=True)
            except (RuntimeError, duckdb.Error) as e:
                raise StorageError(
                    f"Failed to open image store at {self.db_path}: {e}",
                    code="store_open_failed",
                    user_message="The photo library could not be opened.",
                    details={"db_path": self.db_path},
                    original_exception=e,
                ) from e
            logger.info("store_opened", db_path=self.db_path)
        return self._db

    def _close_sync(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None
            logger.info("store_closed", db_path=self.db_path)

    async def put(self, record: ImageRecord) -> None:
        await self._run(self._put_many_sync, [record])
        log_record_action("record_saved", record.id, store="duckdb", file_size=record.file_size)

    async def _put_many(self, records: list[ImageRecord]) -> None:
        await self._run(self._put_many_sync, records)

    def _put_many_sync(self, records: list[ImageRecord]) -> None:
        for record in records:
            _check_record(record)
        db = self._require_db()

        try:
            current_total = self._total_bytes_sync()
            replaced = 0
            for record in records:
                rows = db.execute_query(f"SELECT {_PAYLOAD_EXPR} FROM images WHERE id = ?", (record.id,))
                replaced += sum(row[0] for row in rows)
            self._check_quota(current_total, replaced, records)

            with db.transaction() as conn:
                for record in records:
                    conn.execute("DELETE FROM images WHERE id = ?", (record.id,))
                    conn.execute(_INSERT_SQL, _record_params(record))
        except duckdb.Error as e:
            raise _storage_error(e, "put", record_count=len(records)) from e

    async def get(self, record_id: str) -> ImageRecord | None:
        rows = await self._run(self._select, "WHERE id = ? LIMIT 1", (record_id,))
        return rows[0] if rows else None

    async def get_all(self) -> list[ImageRecord]:
        return await self._run(self._select, "ORDER BY upload_timestamp, id", None)

    async def get_by_date_range(self, start: date | str, end: date | str) -> list[ImageRecord]:
        params = (parse_record_date(start), parse_record_date(end))
        return await self._run(
            self._select, "WHERE record_date BETWEEN ? AND ? ORDER BY record_date, upload_timestamp", params
        )

    async def get_by_upload_order(self) -> list[ImageRecord]:
        return await self._run(self._select, "ORDER BY upload_timestamp, id", None)

    def _select(self, clause: str, params: tuple | None) -> list[ImageRecord]:
        db = self._require_db()
        try:
            rows = db.execute_query(f"SELECT {_SELECT_COLUMNS} FROM images {clause}", params)
        except duckdb.Error as e:
            raise _storage_error(e, "select") from e
        return [_row_to_record(row) for row in rows]

    async def get_metadata(self) -> list[ImageMetadata]:
        rows = await self._run(
            self._query,
            "SELECT id, record_date, upload_timestamp, file_name, file_size FROM images ORDER BY upload_timestamp, id",
            None,
        )
        return [ImageMetadata(*row) for row in rows]

    async def delete(self, record_id: str) -> bool:
        existed = await self._run(self._delete_sync, record_id)
        if existed:
            log_record_action("record_deleted", record_id, store="duckdb")
        return existed

    def _delete_sync(self, record_id: str) -> bool:
        db = self._require_db()
        try:
            existing = db.execute_query("SELECT COUNT(*) FROM images WHERE id = ?", (record_id,))
            db.execute("DELETE FROM images WHERE id = ?", (record_id,))
        except duckdb.Error as e:
            raise _storage_error(e, "delete", record_id=record_id) from e
        return existing[0][0] > 0

    async def clear(self) -> None:
        await self._run(self._clear_sync)
        logger.info("store_cleared", store="duckdb", db_path=self.db_path)

    async def count(self) -> int:
        rows = await self._run(self._query, "SELECT COUNT(*) FROM images", None)
        return rows[0][0]

    async def total_bytes(self) -> int:
        return await self._run(self._total_bytes_sync)

    def _total_bytes_sync(self) -> int:
        rows = self._query(f"SELECT COALESCE(SUM({_PAYLOAD_EXPR}), 0) FROM images", None)
        return int(rows[0][0])

    def _clear_sync(self) -> None:
        db = self._require_db()
        try:
            db.execute("DELETE FROM images")
        except duckdb.Error as e:
            raise _storage_error(e, "clear") from e

    def _query(self, sql: str, params: tuple | None) -> list[tuple]:
        db = self._require_db()
        try:
            return db.execute_query(sql, params)
        except duckdb.Error as e:
            raise _storage_error(e, "query") from e


def _record_params(record: ImageRecord) -> tuple:
    return (
        record.id,
        record.image_data,
        record.date,
        record.upload_timestamp,
        record.mime_type,
        record.file_name,
        record.file_size,
        json.dumps(record.measurements.to_dict()) if record.measurements is not None else None,
        record.original_image_data,
        json.dumps(record.crop_settings.to_dict()) if record.crop_settings is not None else None,
    )


def _row_to_record(row: tuple) -> ImageRecord:
    values = dict(zip(COLUMN_NAMES, row, strict=True))
    measurements = values["measurements"]
    crop_settings = values["crop_settings"]
    return ImageRecord(
        id=values["id"],
        image_data=values["image_data"],
        date=parse_record_date(values["record_date"]),
        upload_timestamp=values["upload_timestamp"],
        mime_type=values["mime_type"],
        file_name=values["file_name"],
        file_size=values["file_size"],
        measurements=BodyMeasurements.from_dict(json.loads(measurements)) if measurements else None,
        original_image_data=values["original_image_data"],
        crop_settings=CropSettings.from_dict(json.loads(crop_settings)) if crop_settings else None,
    )


def _storage_error(error: duckdb.Error, operation: str, **context: Any) -> StorageError:
    details = {"operation": operation, **context}
    if isinstance(error, duckdb.OutOfMemoryException) or "No space left" in str(error):
        return StorageQuotaError(
            f"Store ran out of space during {operation}: {error}", details=details, original_exception=error
        )
    return StorageError(f"Store {operation} failed: {error}", details=details, original_exception=error)
