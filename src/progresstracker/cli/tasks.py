import asyncio
import json
import os

import structlog
from dotenv import load_dotenv
from invoke import Context, task

from ..config import get_config, get_db_path
from ..errors import FormatError, ProgressTrackerError
from ..models.image_record import MEASUREMENT_LABELS
from ..services.dates import format_date, today
from ..services.image_processor import ImageProcessor
from ..services.ingestion import IngestionOrchestrator, SelectedFile
from ..services.store import DuckDBImageStore
from ..utils.encoding import format_file_size

logger = structlog.get_logger()

SUPPORTED_EXTENSIONS = [".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif"]


def _load_env(env_file: str) -> None:
    if os.path.exists(env_file):
        logger.info(f"Loading environment variables from {env_file}")
        load_dotenv(dotenv_path=env_file)
        get_config().clear_cache()
    else:
        logger.debug(f"Environment file not found at {env_file}. Using existing environment.")


def find_image_files(directory: str, recursive: bool = False) -> list[str]:
    """Image files in a directory, sorted by path."""
    image_files = []
    if recursive:
        for root, _, files in os.walk(directory):
            for name in files:
                if os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS:
                    image_files.append(os.path.join(root, name))
    else:
        for name in os.listdir(directory):
            path = os.path.join(directory, name)
            if os.path.isfile(path) and os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS:
                image_files.append(path)
    return sorted(image_files)


@task
def ingest(
    c: Context,
    directory: str,
    date: str = "",
    measurements: str = "",
    db_path: str = "",
    env_file: str = ".env",
    recursive: bool = False,
    dry_run: bool = False,
):
    """
    Add every image in a local directory as one batch.

    Args:
        c (Context): Invoke context.
        directory (str): Directory containing images.
        date (str): Date of the photos (YYYY-MM-DD). Default is today.
        measurements (str): JSON object of measurements for the first photo, e.g. '{"waist": 80}'.
        db_path (str): Store file. Default is PROGRESS_DB_PATH.
        env_file (str): Path to the environment file. Default is '.env'.
        recursive (bool): Search for images in subdirectories. Default is False.
        dry_run (bool): List the files that would be added without adding them.
    """
    _load_env(env_file)

    if not os.path.isdir(directory):
        logger.error(f"Directory not found: {directory}")
        return

    image_files = find_image_files(directory, recursive)
    if not image_files:
        logger.warning("No image files found to process.")
        return

    logger.info(f"Found {len(image_files)} image(s) to process.", directory=directory, recursive=recursive)

    if dry_run:
        print("\n--- Dry Run Mode: Files to be processed ---")
        for file_path in image_files:
            print(f"- {file_path}")
        print("--- End of Dry Run ---")
        return

    try:
        parsed_measurements = json.loads(measurements) if measurements else None
    except json.JSONDecodeError as e:
        logger.error(f"Measurements must be a JSON object: {e}")
        return

    record_date = date or today().isoformat()
    files = [SelectedFile.from_path(path) for path in image_files]

    async def run():
        async with DuckDBImageStore(db_path or get_db_path()) as store:
            orchestrator = IngestionOrchestrator(store, processor=ImageProcessor())
            return await orchestrator.process_files(files, record_date, parsed_measurements)

    try:
        result = asyncio.run(run())
    except ProgressTrackerError as e:
        logger.error("Batch could not be started", error=e.user_message)
        return

    print("\n--- Batch Summary ---")
    print(f"Saved:  {len(result.records)}")
    print(f"Failed: {len(result.errors)}")
    for error in result.errors:
        print(f"- {error.file_name}: {error.error.user_message}")
    if result.fatal_error:
        print(f"Aborted: {result.fatal_error.user_message}")
    print("---------------------")


@task
def export(c: Context, path: str, db_path: str = "", env_file: str = ".env"):
    """
    Write every record to a JSON backup file.

    Args:
        c (Context): Invoke context.
        path (str): Output file.
        db_path (str): Store file. Default is PROGRESS_DB_PATH.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    _load_env(env_file)

    async def run():
        async with DuckDBImageStore(db_path or get_db_path()) as store:
            return await store.export_all()

    envelope = asyncio.run(run())
    with open(path, "w", encoding="utf-8") as f:
        json.dump(envelope.to_dict(), f, indent=2)

    print(f"Exported {len(envelope.images)} photo(s) to {path}")


@task(name="import")
def import_backup(c: Context, path: str, db_path: str = "", env_file: str = ".env"):
    """
    Load records from a JSON backup file, replacing records with the same id.

    Args:
        c (Context): Invoke context.
        path (str): Backup file written by 'export'.
        db_path (str): Store file. Default is PROGRESS_DB_PATH.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    _load_env(env_file)

    try:
        with open(path, encoding="utf-8") as f:
            envelope = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read backup file {path}: {e}")
        return

    async def run():
        async with DuckDBImageStore(db_path or get_db_path()) as store:
            return await store.import_all(envelope)

    try:
        imported = asyncio.run(run())
    except FormatError as e:
        logger.error(e.user_message, path=path)
        return

    print(f"Imported {imported} photo(s) from {path}")


@task
def stats(c: Context, db_path: str = "", env_file: str = ".env"):
    """
    Print a summary of the store.

    Args:
        c (Context): Invoke context.
        db_path (str): Store file. Default is PROGRESS_DB_PATH.
        env_file (str): Path to the environment file. Default is '.env'.
    """
    _load_env(env_file)

    async def run():
        async with DuckDBImageStore(db_path or get_db_path()) as store:
            return await store.get_all(), await store.total_bytes()

    records, total_bytes = asyncio.run(run())

    print(f"Photos:  {len(records)}")
    print(f"Storage: {format_file_size(total_bytes)}")
    if not records:
        return

    dates = sorted(record.date for record in records)
    print(f"First:   {format_date(dates[0])}")
    print(f"Latest:  {format_date(dates[-1])}")

    measured = [record for record in records if record.measurements is not None]
    print(f"With measurements: {len(measured)}")
    cropped = sum(1 for record in records if record.crop_settings is not None)
    print(f"Cropped: {cropped}")

    if measured:
        latest = max(measured, key=lambda record: (record.date, record.upload_timestamp))
        print(f"\nLatest measurements ({format_date(latest.date)}):")
        for name, value in latest.measurements.items():
            print(f"  {MEASUREMENT_LABELS[name]}: {value:g} cm")
