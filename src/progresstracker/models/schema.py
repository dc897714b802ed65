"""
Database schema definitions for progresstracker.

The ``images`` table holds one row per ImageRecord. Uniqueness of ``id`` is
enforced by the store, which always deletes before inserting; a PRIMARY KEY
would trip DuckDB's eager constraint check on delete-then-insert inside one
transaction.
"""

from .image_record import record_field_names

IMAGES_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS images (
    id TEXT NOT NULL,
    image_data TEXT NOT NULL,
    record_date DATE NOT NULL,
    upload_timestamp BIGINT NOT NULL,
    mime_type TEXT NOT NULL,
    file_name TEXT NOT NULL,
    file_size BIGINT NOT NULL,
    measurements TEXT,
    original_image_data TEXT,
    crop_settings TEXT
);
"""

# by-id, by-date and by-upload lookups
IMAGES_TABLE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_images_id ON images(id);",
    "CREATE INDEX IF NOT EXISTS idx_images_date ON images(record_date);",
    "CREATE INDEX IF NOT EXISTS idx_images_upload_timestamp ON images(upload_timestamp);",
]

ALL_SCHEMA_STATEMENTS = [IMAGES_TABLE_SCHEMA] + IMAGES_TABLE_INDEXES

# ImageRecord attribute -> column
RECORD_COLUMNS = {
    "id": "id",
    "image_data": "image_data",
    "date": "record_date",
    "upload_timestamp": "upload_timestamp",
    "mime_type": "mime_type",
    "file_name": "file_name",
    "file_size": "file_size",
    "measurements": "measurements",
    "original_image_data": "original_image_data",
    "crop_settings": "crop_settings",
}

COLUMN_NAMES = list(RECORD_COLUMNS.values())
INDEX_NAMES = ["idx_images_id", "idx_images_date", "idx_images_upload_timestamp"]


def get_schema_statements() -> list[str]:
    """
    Get all database schema creation statements.

    Returns:
        List of SQL statements to create tables and indexes
    """
    return ALL_SCHEMA_STATEMENTS


def validate_schema_compatibility() -> bool:
    """
    Validate that the schema covers every ImageRecord field.

    Returns:
        True if schema is compatible, False otherwise
    """
    schema_lower = IMAGES_TABLE_SCHEMA.lower()

    for name in record_field_names():
        column = RECORD_COLUMNS.get(name)
        if column is None or column not in schema_lower:
            return False

    return True
