"""
progresstracker - Personal photo-progress tracker with local storage

Ingests photos, compresses and optionally crops them, stores them with a
date and optional body measurements in a local DuckDB database, and answers
the date queries used to compare photos across time:
- HEIC/HEIF conversion and bounded JPEG compression with Pillow
- Interactive crop-rectangle editing resolved to source pixels
- Indexed local store with versioned JSON export/import
- Date sorting, human-readable differences and nearest-date lookups
"""

__version__ = "0.1.0"
__author__ = "progresstracker"
__description__ = "Personal photo-progress tracker with local storage"
