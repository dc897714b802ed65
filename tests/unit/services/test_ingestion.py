"""
Unit tests for the ingestion orchestrator.
"""

import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from progresstracker.errors import (
    ConversionError,
    DecodeError,
    StorageError,
    StorageQuotaError,
    ValidationError,
)
from progresstracker.models.image_record import BodyMeasurements, CropSettings
from progresstracker.services.crop import CropController, CropResult
from progresstracker.services.image_processor import ImageProcessor
from progresstracker.services.ingestion import (
    BatchResult,
    CropRequest,
    IngestionOrchestrator,
    IngestionState,
    SelectedFile,
)
from progresstracker.services.store import InMemoryImageStore
from progresstracker.utils.encoding import data_url_to_bytes
from progresstracker.utils.geometry import CropArea


class FailingStore(InMemoryImageStore):
    """Store that fails after a number of successful puts."""

    def __init__(self, succeed: int, error: StorageError):
        super().__init__(quota_bytes=0)
        self.succeed = succeed
        self.error = error

    async def put(self, record):
        if self.succeed <= 0:
            raise self.error
        self.succeed -= 1
        await super().put(record)


def decoded_size(data_url: str) -> tuple[int, int]:
    data, _ = data_url_to_bytes(data_url)
    with Image.open(io.BytesIO(data)) as image:
        return image.size


@pytest.fixture
def jpeg_file(image_factory):
    def make(name="photo.jpg", size=(200, 150)):
        return SelectedFile(name=name, type="image/jpeg", data=image_factory("JPEG", size))

    return make


@pytest.fixture
def orchestrator(memory_store):
    return IngestionOrchestrator(memory_store, processor=ImageProcessor(), clock=lambda: 1000)


class TestProcessFiles:
    """Test cases for batch ingestion."""

    async def test_batch_timestamps_strictly_increase(self, orchestrator, memory_store, jpeg_file):
        files = [jpeg_file("1.jpg"), jpeg_file("2.jpg"), jpeg_file("3.jpg")]

        result = await orchestrator.process_files(files, "2024-01-15")

        assert result.success is True
        assert [record.upload_timestamp for record in result.records] == [1000, 1001, 1002]
        assert [record.file_name for record in result.records] == ["1.jpg", "2.jpg", "3.jpg"]
        assert await memory_store.count() == 3
        assert orchestrator.state == IngestionState.DONE

    async def test_timestamps_increase_across_batches(self, orchestrator, jpeg_file):
        first = await orchestrator.process_files([jpeg_file()], "2024-01-15")
        second = await orchestrator.process_files([jpeg_file()], "2024-01-16")

        assert second.records[0].upload_timestamp > first.records[0].upload_timestamp

    async def test_measurements_only_on_first_record(self, orchestrator, jpeg_file):
        files = [jpeg_file("1.jpg"), jpeg_file("2.jpg")]

        result = await orchestrator.process_files(files, "2024-01-15", {"waist": 80})

        assert result.records[0].measurements == BodyMeasurements(waist=80.0)
        assert result.records[1].measurements is None

    async def test_empty_measurements_are_dropped(self, orchestrator, jpeg_file):
        result = await orchestrator.process_files([jpeg_file()], "2024-01-15", {"waist": ""})

        assert result.records[0].measurements is None

    async def test_records_are_compressed_jpeg(self, orchestrator, image_factory):
        png = SelectedFile(name="big.png", type="image/png", data=image_factory("PNG", (3000, 1500)))

        result = await orchestrator.process_files([png], "2024-01-15")

        record = result.records[0]
        assert record.mime_type == "image/jpeg"
        assert decoded_size(record.image_data) == (1920, 960)
        assert record.file_size == len(data_url_to_bytes(record.image_data)[0])

    async def test_invalid_type_is_reported_and_batch_continues(self, orchestrator, jpeg_file, image_factory):
        gif = SelectedFile(name="anim.gif", type="image/gif", data=image_factory("GIF", (50, 50)))

        result = await orchestrator.process_files([gif, jpeg_file("ok.jpg")], "2024-01-15")

        assert [record.file_name for record in result.records] == ["ok.jpg"]
        assert len(result.errors) == 1
        assert result.errors[0].file_name == "anim.gif"
        assert isinstance(result.errors[0].error, ValidationError)
        assert result.success is False
        assert result.fatal_error is None

    async def test_all_files_invalid(self, orchestrator):
        result = await orchestrator.process_files([SelectedFile("notes.txt", "text/plain", b"x" * 500)], "2024-01-15")

        assert result.records == []
        assert orchestrator.state == IngestionState.ERROR

    async def test_empty_selection(self, orchestrator):
        result = await orchestrator.process_files([], "2024-01-15")

        assert result.records == []
        assert orchestrator.state == IngestionState.DONE

    async def test_heic_is_converted(self, orchestrator, memory_store, heic_factory):
        heic = SelectedFile(name="IMG_0001.HEIC", type="", data=heic_factory((64, 48)))

        result = await orchestrator.process_files([heic], "2024-01-15")

        assert result.errors == []
        record = await memory_store.get(result.records[0].id)
        assert record.file_name == "IMG_0001.jpg"
        assert record.mime_type == "image/jpeg"
        assert decoded_size(record.image_data) == (64, 48)

    async def test_conversion_failure_is_per_file(self, orchestrator, jpeg_file):
        broken = SelectedFile(name="broken.heic", type="image/heic", data=b"\x00" * 500)

        result = await orchestrator.process_files([broken, jpeg_file()], "2024-01-15")

        assert len(result.records) == 1
        assert isinstance(result.errors[0].error, ConversionError)

    async def test_decode_failure_is_per_file(self, orchestrator, jpeg_file):
        broken = SelectedFile(name="broken.jpg", type="image/jpeg", data=b"\xff\xd8" + b"\x00" * 500)

        result = await orchestrator.process_files([broken, jpeg_file()], "2024-01-15")

        assert len(result.records) == 1
        assert result.errors[0].file_name == "broken.jpg"
        assert isinstance(result.errors[0].error, DecodeError)

    async def test_all_files_failing_compression_end_in_error(self, orchestrator, memory_store):
        broken = SelectedFile(name="broken.jpg", type="image/jpeg", data=b"\xff\xd8" + b"\x00" * 500)

        result = await orchestrator.process_files([broken], "2024-01-15")

        assert result.records == []
        assert isinstance(result.errors[0].error, DecodeError)
        assert orchestrator.state == IngestionState.ERROR
        assert await memory_store.count() == 0

    async def test_storage_failure_aborts_remaining_batch(self, jpeg_file):
        store = FailingStore(succeed=1, error=StorageQuotaError("full"))
        orchestrator = IngestionOrchestrator(store, processor=ImageProcessor())

        files = [jpeg_file("1.jpg"), jpeg_file("2.jpg"), jpeg_file("3.jpg")]

        result = await orchestrator.process_files(files, "2024-01-15")

        assert [record.file_name for record in result.records] == ["1.jpg"]
        assert isinstance(result.fatal_error, StorageQuotaError)
        assert orchestrator.state == IngestionState.ERROR
        # Earlier saves are kept
        assert await store.count() == 1

    async def test_invalid_date_raises(self, orchestrator, jpeg_file):
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.process_files([jpeg_file()], "not-a-date")

        assert exc_info.value.code == "invalid_date"

    async def test_invalid_measurements_raise(self, orchestrator, jpeg_file):
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.process_files([jpeg_file()], "2024-01-15", {"waist": "wide"})

        assert exc_info.value.code == "invalid_measurements"

    async def test_async_file_read(self, orchestrator, image_factory):
        selected = MagicMock()
        selected.name = "async.jpg"
        selected.type = "image/jpeg"
        selected.read = AsyncMock(return_value=image_factory("JPEG", (200, 150)))

        result = await orchestrator.process_files([selected], "2024-01-15")

        assert len(result.records) == 1

    async def test_callbacks(self, memory_store, jpeg_file):
        states = []
        on_upload_success = MagicMock()
        orchestrator = IngestionOrchestrator(
            memory_store,
            processor=ImageProcessor(),
            on_state_change=lambda state, file_name: states.append(state),
            on_upload_success=on_upload_success,
        )

        result = await orchestrator.process_files([jpeg_file()], "2024-01-15")

        on_upload_success.assert_called_once_with(result.records)
        assert states == [
            IngestionState.SELECTING,
            IngestionState.VALIDATING,
            IngestionState.PREVIEW_READY,
            IngestionState.COMPRESSING,
            IngestionState.PERSISTING,
            IngestionState.DONE,
        ]

    async def test_batch_result_to_dict(self, orchestrator, jpeg_file):
        bad = SelectedFile("notes.txt", "text/plain", b"x" * 500)

        result = await orchestrator.process_files([bad, jpeg_file()], "2024-01-15")

        data = result.to_dict()
        assert data["success"] is False
        assert data["saved"] == [result.records[0].id]
        assert data["errors"][0]["file_name"] == "notes.txt"
        assert data["errors"][0]["code"] == "unsupported_format"
        assert data["fatal_error"] is None

    def test_empty_batch_result(self):
        assert BatchResult().success is True


class TestCropping:
    """Test cases for the crop step."""

    async def test_single_file_is_cropped(self, memory_store, jpeg_file):
        requests = []

        def crop_handler(request: CropRequest):
            requests.append(request)
            controller = CropController(request.source_size, (400, 300), aspect="1:1")
            return controller.confirm()

        orchestrator = IngestionOrchestrator(memory_store, processor=ImageProcessor(), crop_handler=crop_handler)

        result = await orchestrator.process_files([jpeg_file(size=(400, 300))], "2024-01-15")

        record = result.records[0]
        assert requests[0].source_size == (400, 300)
        assert requests[0].preview_data_url.startswith("data:image/jpeg;base64,")
        assert decoded_size(record.image_data) == (300, 300)
        assert decoded_size(record.original_image_data) == (400, 300)
        assert record.crop_settings.aspect_ratio == 1.0
        assert record.validate() is True

    async def test_async_crop_handler(self, memory_store, jpeg_file):
        async def crop_handler(request):
            return CropResult(CropArea(0, 0, 100, 100), CropSettings(0, 0, 100, 100))

        orchestrator = IngestionOrchestrator(memory_store, processor=ImageProcessor(), crop_handler=crop_handler)

        result = await orchestrator.process_files([jpeg_file()], "2024-01-15")

        assert decoded_size(result.records[0].image_data) == (100, 100)

    async def test_cancelled_crop_uploads_uncropped(self, memory_store, jpeg_file):
        orchestrator = IngestionOrchestrator(memory_store, processor=ImageProcessor(), crop_handler=lambda r: None)

        result = await orchestrator.process_files([jpeg_file()], "2024-01-15")

        record = result.records[0]
        assert record.crop_settings is None
        assert record.original_image_data is None
        assert decoded_size(record.image_data) == (200, 150)

    async def test_multi_file_batches_skip_crop(self, memory_store, jpeg_file):
        crop_handler = MagicMock()
        orchestrator = IngestionOrchestrator(memory_store, processor=ImageProcessor(), crop_handler=crop_handler)

        result = await orchestrator.process_files([jpeg_file("1.jpg"), jpeg_file("2.jpg")], "2024-01-15")

        crop_handler.assert_not_called()
        assert all(record.crop_settings is None for record in result.records)

    async def test_crop_settings_follow_downscaled_original(self, memory_store, image_factory):
        big = SelectedFile(name="big.png", type="image/png", data=image_factory("PNG", (4000, 2000)))
        crop = CropResult(CropArea(1000, 0, 2000, 2000), CropSettings(1000, 0, 2000, 2000, aspect_ratio=1.0))
        orchestrator = IngestionOrchestrator(memory_store, processor=ImageProcessor(), crop_handler=lambda r: crop)

        result = await orchestrator.process_files([big], "2024-01-15")

        record = result.records[0]
        assert decoded_size(record.original_image_data) == (1920, 960)
        assert record.crop_settings.x == pytest.approx(480)
        assert record.crop_settings.width == pytest.approx(960)
        assert record.crop_settings.height == pytest.approx(960)


class TestRecordOperations:
    """Test cases for edits after upload."""

    @pytest.fixture
    async def cropped_record(self, memory_store, jpeg_file):
        crop = CropResult(CropArea(0, 0, 100, 100), CropSettings(0, 0, 100, 100))
        orchestrator = IngestionOrchestrator(memory_store, processor=ImageProcessor(), crop_handler=lambda r: crop)
        result = await orchestrator.process_files([jpeg_file(size=(400, 300))], "2024-01-15")
        return result.records[0]

    async def test_recrop(self, orchestrator, memory_store, cropped_record):
        new_crop = CropResult(CropArea(100, 50, 200, 150), CropSettings(100, 50, 200, 150))

        updated = await orchestrator.recrop(cropped_record.id, new_crop)

        assert decoded_size(updated.image_data) == (200, 150)
        assert updated.crop_settings == new_crop.settings
        assert updated.original_image_data == cropped_record.original_image_data
        assert updated.upload_timestamp == cropped_record.upload_timestamp
        assert await memory_store.get(cropped_record.id) == updated

    async def test_recrop_requires_original(self, orchestrator, jpeg_file):
        result = await orchestrator.process_files([jpeg_file()], "2024-01-15")
        crop = CropResult(CropArea(0, 0, 50, 50), CropSettings(0, 0, 50, 50))

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.recrop(result.records[0].id, crop)

        assert exc_info.value.code == "recrop_unavailable"

    async def test_recrop_unknown_record(self, orchestrator):
        crop = CropResult(CropArea(0, 0, 50, 50), CropSettings(0, 0, 50, 50))

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.recrop("missing", crop)

        assert exc_info.value.code == "record_not_found"

    async def test_update_measurements(self, orchestrator, memory_store, cropped_record):
        updated = await orchestrator.update_measurements(cropped_record.id, {"hips": 99})

        assert updated.measurements == BodyMeasurements(hips=99.0)
        cleared = await orchestrator.update_measurements(cropped_record.id, {})
        assert cleared.measurements is None
        assert (await memory_store.get(cropped_record.id)).measurements is None

    async def test_delete_notifies(self, memory_store, cropped_record):
        on_delete = AsyncMock()
        orchestrator = IngestionOrchestrator(memory_store, processor=ImageProcessor(), on_delete=on_delete)

        assert await orchestrator.delete(cropped_record.id) is True
        assert await orchestrator.delete(cropped_record.id) is False

        on_delete.assert_awaited_with(cropped_record.id)
        assert await memory_store.count() == 0


def test_selected_file_from_path(temp_dir, image_factory):
    path = temp_dir / "front.png"
    path.write_bytes(image_factory("PNG", (20, 20)))

    selected = SelectedFile.from_path(path)

    assert selected.name == "front.png"
    assert selected.type == "image/png"
    assert selected.read() == path.read_bytes()
