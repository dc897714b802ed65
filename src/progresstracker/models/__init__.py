"""
Models module for progresstracker.

This module contains data models and schemas:
- ImageRecord: A stored progress photo with its metadata
- BodyMeasurements, CropSettings: Optional record details
- ExportEnvelope: Versioned backup wrapper
- CompareSelection: Session-scoped comparison selection
- DatabaseManager: Database connection and schema management
"""

from .database import DatabaseManager, create_database, get_database_manager
from .image_record import (
    EXPORT_VERSION,
    BodyMeasurements,
    CropSettings,
    ExportEnvelope,
    ImageMetadata,
    ImageRecord,
    normalize_measurements,
    parse_record_date,
)
from .schema import get_schema_statements, validate_schema_compatibility
from .session import MAX_COMPARE_SLOTS, CompareSelection

__all__ = [
    "EXPORT_VERSION",
    "BodyMeasurements",
    "CompareSelection",
    "CropSettings",
    "DatabaseManager",
    "ExportEnvelope",
    "ImageMetadata",
    "ImageRecord",
    "MAX_COMPARE_SLOTS",
    "create_database",
    "get_database_manager",
    "get_schema_statements",
    "normalize_measurements",
    "parse_record_date",
    "validate_schema_compatibility",
]
