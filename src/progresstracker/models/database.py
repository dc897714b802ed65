"""
Database initialization and management for progresstracker.

This module provides functions to initialize the DuckDB database that backs
the image store and to manage its connection.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import duckdb

from ..logging_config import get_logger
from .schema import COLUMN_NAMES, get_schema_statements, validate_schema_compatibility

logger = get_logger(__name__)

IN_MEMORY = ":memory:"


class DatabaseManager:
    """
    Manages the DuckDB connection and schema.
    """

    def __init__(self, db_path: str):
        """
        Initialize DatabaseManager.

        Args:
            db_path: Path to the DuckDB database file, or ``:memory:``
        """
        self.db_path = db_path
        self._connection: duckdb.DuckDBPyConnection | None = None

    def connect(self) -> duckdb.DuckDBPyConnection:
        """
        Get or create a database connection.

        Returns:
            DuckDB connection object
        """
        if self._connection is None:
            self._connection = duckdb.connect(self.db_path)
            logger.info("database_connected", db_path=self.db_path)

        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=self.db_path)

    def initialize_schema(self) -> None:
        """
        Create the images table and its indexes if they don't exist.

        Raises:
            RuntimeError: If the schema does not cover the record model
            duckdb.Error: If database operations fail
        """
        if not validate_schema_compatibility():
            raise RuntimeError("Schema is not compatible with ImageRecord model")

        conn = self.connect()

        try:
            for statement in get_schema_statements():
                logger.debug("executing_schema_statement", statement=statement.strip())
                conn.execute(statement)

            logger.info("database_schema_initialized", db_path=self.db_path)

        except duckdb.Error as e:
            logger.error("database_schema_initialization_failed", error=str(e))
            raise

    def verify_schema(self) -> bool:
        """
        Verify that the images table exists with every expected column.

        Returns:
            True if schema is valid, False otherwise
        """
        conn = self.connect()

        try:
            columns = conn.execute(
                "SELECT column_name FROM information_schema.columns WHERE table_name = 'images'"
            ).fetchall()
            column_names = {col[0] for col in columns}

            if not column_names:
                logger.warning("images_table_missing")
                return False

            missing_columns = set(COLUMN_NAMES) - column_names
            if missing_columns:
                logger.warning("images_table_columns_missing", missing=sorted(missing_columns))
                return False

            return True

        except duckdb.Error as e:
            logger.error("schema_verification_failed", error=str(e))
            return False

    def list_indexes(self) -> list[str]:
        """Names of the indexes defined on the images table."""
        conn = self.connect()
        rows = conn.execute("SELECT index_name FROM duckdb_indexes() WHERE table_name = 'images'").fetchall()
        return sorted(row[0] for row in rows)

    def execute_query(self, query: str, parameters: tuple | list | None = None) -> list[tuple]:
        """
        Execute a SQL query and return results.

        Args:
            query: SQL query string
            parameters: Optional query parameters

        Returns:
            List of result tuples

        Raises:
            duckdb.Error: If query execution fails
        """
        conn = self.connect()

        try:
            if parameters:
                result = conn.execute(query, parameters)
            else:
                result = conn.execute(query)

            return result.fetchall()

        except duckdb.Error as e:
            logger.error("query_execution_failed", query=query.strip(), error=str(e))
            raise

    def execute(self, statement: str, parameters: tuple | list | None = None) -> None:
        """Execute a statement that returns no rows."""
        conn = self.connect()
        if parameters:
            conn.execute(statement, parameters)
        else:
            conn.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Run a block inside one transaction.

        Commits on success and rolls back everything on any exception.
        """
        conn = self.connect()
        conn.begin()
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def __enter__(self) -> "DatabaseManager":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()


def create_database(db_path: str) -> DatabaseManager:
    """
    Create and initialize a DuckDB database.

    Args:
        db_path: Path where the database file should be created, or ``:memory:``

    Returns:
        Initialized DatabaseManager instance

    Raises:
        RuntimeError: If database creation fails
    """
    try:
        if db_path != IN_MEMORY:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        db_manager = DatabaseManager(db_path)
        db_manager.initialize_schema()

        if not db_manager.verify_schema():
            raise RuntimeError("Schema verification failed after creation")

        logger.info("database_created", db_path=db_path)
        return db_manager

    except Exception as e:
        logger.error("database_creation_failed", db_path=db_path, error=str(e))
        raise RuntimeError(f"Database creation failed: {e}") from e


def get_database_manager(db_path: str, create_if_missing: bool = True) -> DatabaseManager:
    """
    Get a DatabaseManager, optionally creating the database if it doesn't exist.

    Args:
        db_path: Path to the database file
        create_if_missing: Whether to create the database if it doesn't exist

    Returns:
        DatabaseManager instance

    Raises:
        FileNotFoundError: If database doesn't exist and create_if_missing is False
    """
    if db_path == IN_MEMORY or not Path(db_path).exists():
        if create_if_missing:
            return create_database(db_path)
        raise FileNotFoundError(f"Database file not found: {db_path}")

    db_manager = DatabaseManager(db_path)

    if not db_manager.verify_schema():
        logger.warning("schema_verification_failed_reinitializing", db_path=db_path)
        db_manager.initialize_schema()

    return db_manager
