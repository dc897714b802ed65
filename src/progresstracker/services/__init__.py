"""
Services module for progresstracker.

This module contains the service classes that handle business logic:
- ImageProcessor: Validation, HEIC conversion and bounded compression
- CropController: Interactive crop rectangle editing
- ImageStore: Async record storage (DuckDB or in-memory)
- IngestionOrchestrator: Upload batches from selection to persistence
- dates: Date helpers and nearest-date comparison queries
"""

from .crop import ASPECT_RATIO_OPTIONS, CropController, CropHandle, CropResult
from .dates import (
    QUICK_COMPARE_OPTIONS,
    DateDifference,
    closest_record_to_date,
    date_difference,
    find_by_date_offset,
    sort_by_date,
)
from .image_processor import CompressedImage, ImageProcessor, get_image_processor
from .ingestion import (
    BatchResult,
    CropRequest,
    FileError,
    IngestionOrchestrator,
    IngestionState,
    SelectedFile,
)
from .store import DuckDBImageStore, ImageStore, InMemoryImageStore

__all__ = [
    "ASPECT_RATIO_OPTIONS",
    "BatchResult",
    "CompressedImage",
    "CropController",
    "CropHandle",
    "CropRequest",
    "CropResult",
    "DateDifference",
    "DuckDBImageStore",
    "FileError",
    "ImageProcessor",
    "ImageStore",
    "InMemoryImageStore",
    "IngestionOrchestrator",
    "IngestionState",
    "QUICK_COMPARE_OPTIONS",
    "SelectedFile",
    "closest_record_to_date",
    "date_difference",
    "find_by_date_offset",
    "get_image_processor",
    "sort_by_date",
]
