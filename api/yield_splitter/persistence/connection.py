"""
DuckDB Connection Manager

Manages the database connection, schema initialization and validation for
ledger run data.
"""

import logging
from pathlib import Path

import duckdb

from .schema_generator import all_models, generate_full_schema_ddl, validate_table_schema

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages DuckDB connection and schema.

    Responsibilities:
    - Create and manage DuckDB connection
    - Initialize database schema from Pydantic models
    - Validate schema matches models
    - Provide context manager for clean resource management

    Usage:
        with DatabaseManager("ledger.db") as manager:
            manager.setup()
            # Use manager.conn for queries
    """

    def __init__(self, db_path: str | Path = "ledger.db"):
        """Initialize database manager.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self.conn = duckdb.connect(str(db_path))

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self.conn

    def initialize_schema(self, force_recreate: bool = False):
        """Initialize database schema from Pydantic models.

        Uses CREATE TABLE IF NOT EXISTS, so safe to run multiple times.

        Args:
            force_recreate: If True, drop existing tables before recreating them.
        """
        logger.info("Initializing database schema at %s", self.db_path)

        if force_recreate:
            logger.info("Dropping existing tables")
            self._drop_all_tables()

        ddl = generate_full_schema_ddl()

        # DuckDB has no executescript
        statements = [s.strip() for s in ddl.split(";") if s.strip()]
        for statement in statements:
            self.conn.execute(statement)

    def is_initialized(self) -> bool:
        """True if the core ledger_runs table exists."""
        result = self.conn.execute(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = 'ledger_runs'"
        ).fetchone()
        return bool(result and result[0])

    def validate_schema(self) -> bool:
        """Validate that database schema matches Pydantic models.

        Returns:
            True if all tables valid, False if any mismatches found
        """
        all_valid = True
        for model in all_models():
            table_name = model.model_config.get("table_name", "unknown")
            is_valid, errors = validate_table_schema(self.conn, model)
            if not is_valid:
                all_valid = False
                for error in errors:
                    logger.error("Schema mismatch in %s: %s", table_name, error)
            else:
                logger.debug("Table %s valid", table_name)
        return all_valid

    def setup(self):
        """Initialize then validate.

        Raises:
            RuntimeError: If schema validation fails
        """
        self.initialize_schema()

        if not self.validate_schema():
            raise RuntimeError(
                "Database schema validation failed. "
                "The database schema is out of sync with the persistence models; "
                "delete the database or run 'yield-split db init --force'."
            )

        logger.info("Database setup complete")

    def _drop_all_tables(self):
        """Drop the tables managed by this system, children before ledger_runs."""
        for model in reversed(all_models()):
            self.conn.execute(f"DROP TABLE IF EXISTS {model.model_config['table_name']}")

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
