"""
Pytest configuration and fixtures for progresstracker tests.
"""

import io
import tempfile
from collections.abc import Generator
from datetime import date
from pathlib import Path

import pytest
from PIL import Image
from pillow_heif import register_heif_opener

from progresstracker.config import get_config
from progresstracker.models.image_record import BodyMeasurements, CropSettings, ImageRecord
from progresstracker.services import image_processor
from progresstracker.services.store import InMemoryImageStore
from progresstracker.utils.encoding import bytes_to_data_url


@pytest.fixture(autouse=True)
def fresh_config() -> Generator[None, None, None]:
    """Drop cached configuration and shared services between tests."""
    get_config().clear_cache()
    image_processor._image_processor = None
    yield
    get_config().clear_cache()
    image_processor._image_processor = None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


def create_test_image(
    format_type: str = "JPEG", size: tuple[int, int] = (100, 100), mode: str = "RGB", color="red"
) -> bytes:
    """Create a test image in memory."""
    image = Image.new(mode, size, color=color)
    buffer = io.BytesIO()
    image.save(buffer, format=format_type)
    return buffer.getvalue()


def create_noisy_image(size: tuple[int, int] = (800, 600), seed: int = 1) -> bytes:
    """PNG full of noise, which JPEG cannot compress well."""
    image = Image.effect_noise(size, 120).convert("RGB")
    # Vary channels so the image is not grey
    r, g, b = image.split()
    image = Image.merge("RGB", (r, g.rotate(90 * seed), b.transpose(Image.Transpose.FLIP_LEFT_RIGHT)))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def create_heic_image(size: tuple[int, int] = (64, 48)) -> bytes:
    """Real HEIC bytes, encoded by pillow-heif."""
    register_heif_opener()
    image = Image.effect_noise(size, 60).convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="HEIF")
    return buffer.getvalue()


@pytest.fixture
def sample_jpeg() -> bytes:
    return create_test_image("JPEG", (400, 300))


@pytest.fixture
def sample_png() -> bytes:
    return create_test_image("PNG", (300, 400), color="blue")


def make_record(
    record_id: str = "img_1_abc",
    record_date: date | str = "2024-01-01",
    upload_timestamp: int = 1,
    **overrides,
) -> ImageRecord:
    """Build a small valid record."""
    image_data = overrides.pop("image_data", bytes_to_data_url(create_test_image(size=(10, 10))))
    return ImageRecord(
        id=record_id,
        image_data=image_data,
        date=record_date if isinstance(record_date, date) else date.fromisoformat(record_date),
        upload_timestamp=upload_timestamp,
        file_name=overrides.pop("file_name", f"{record_id}.jpg"),
        file_size=overrides.pop("file_size", 100),
        **overrides,
    )


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def full_record() -> ImageRecord:
    """Record with every optional field present."""
    return make_record(
        "img_5_full",
        "2024-02-10",
        5,
        measurements=BodyMeasurements(waist=80.5, upper_arm=31.0),
        original_image_data=bytes_to_data_url(create_test_image(size=(20, 20))),
        crop_settings=CropSettings(x=1, y=2, width=10, height=10, zoom=1.5, aspect_ratio=1.0),
    )


@pytest.fixture
def memory_store() -> InMemoryImageStore:
    return InMemoryImageStore(quota_bytes=0)


@pytest.fixture
def image_factory():
    return create_test_image


@pytest.fixture
def noisy_image_factory():
    return create_noisy_image


@pytest.fixture
def heic_factory():
    return create_heic_image
