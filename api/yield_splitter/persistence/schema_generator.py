"""
DDL Generation from Pydantic Models

Generates CREATE TABLE and CREATE INDEX statements from the persistence
models, so the database schema cannot drift from the model definitions.
"""

import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Type, get_args

from pydantic import BaseModel

PYTHON_TO_SQL_TYPE_MAP = {
    str: "VARCHAR",
    int: "BIGINT",
    float: "DOUBLE",
    bool: "BOOLEAN",
    datetime: "TIMESTAMP",
}


def python_type_to_sql_type(py_type: Any) -> str:
    """Convert Python type annotation to SQL type.

    Examples:
        >>> python_type_to_sql_type(int)
        'BIGINT'
        >>> python_type_to_sql_type(int | None)
        'BIGINT'
    """
    args = get_args(py_type)
    if args:
        # Optional[X] / X | None: first non-None member
        for arg in args:
            if arg is not type(None):
                py_type = arg
                break

    if inspect.isclass(py_type) and issubclass(py_type, Enum):
        return "VARCHAR"

    return PYTHON_TO_SQL_TYPE_MAP.get(py_type, "VARCHAR")


def generate_create_table_ddl(model: Type[BaseModel]) -> str:
    """Generate CREATE TABLE DDL from a model with model_config["table_name"].

    Raises:
        ValueError: If model is missing table_name
    """
    config = model.model_config
    if "table_name" not in config:
        raise ValueError(f"Model {model.__name__} missing model_config['table_name']")

    table_name = config["table_name"]
    primary_key = config.get("primary_key", [])

    columns = []
    for field_name, field_info in model.model_fields.items():
        py_type = field_info.annotation
        sql_type = python_type_to_sql_type(py_type)
        null_constraint = "" if _is_field_optional(py_type, field_info) else " NOT NULL"
        columns.append(f"    {field_name} {sql_type}{null_constraint}")

    if primary_key:
        columns.append(f"    PRIMARY KEY ({', '.join(primary_key)})")

    return f"CREATE TABLE IF NOT EXISTS {table_name} (\n" + ",\n".join(columns) + "\n);"


def generate_create_indexes_ddl(model: Type[BaseModel]) -> list[str]:
    """Generate CREATE INDEX statements from model_config["indexes"]."""
    config = model.model_config
    table_name = config.get("table_name", "unknown")
    return [
        f"CREATE INDEX IF NOT EXISTS {index_name} ON {table_name} ({', '.join(columns)});"
        for index_name, columns in config.get("indexes", [])
    ]


def all_models() -> list[Type[BaseModel]]:
    from .models import (
        DepositSnapshotRecord,
        LedgerCheckpointRecord,
        LedgerEventRecord,
        LedgerRunRecord,
        UpkeepCycleRecord,
    )

    return [
        LedgerRunRecord,
        DepositSnapshotRecord,
        LedgerEventRecord,
        UpkeepCycleRecord,
        LedgerCheckpointRecord,
    ]


def generate_full_schema_ddl() -> str:
    """Generate complete schema DDL for all models.

    Examples:
        >>> "ledger_events" in generate_full_schema_ddl()
        True
    """
    ddl_parts = []
    for model in all_models():
        ddl_parts.append(generate_create_table_ddl(model))
        ddl_parts.extend(generate_create_indexes_ddl(model))
    return "\n\n".join(ddl_parts)


def _is_field_optional(py_type: Any, field_info: Any) -> bool:
    """True if the column may hold NULL."""
    if type(None) in get_args(py_type):
        return True
    if field_info.default is None:
        return True
    return False


def validate_table_schema(conn: Any, model: Type[BaseModel]) -> tuple[bool, list[str]]:
    """Validate that a table's columns match the model's fields.

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    config = model.model_config
    if "table_name" not in config:
        return False, [f"Model {model.__name__} missing model_config['table_name']"]

    table_name = config["table_name"]
    try:
        result = conn.execute(f"DESCRIBE {table_name}").fetchall()
    except Exception as e:
        return False, [f"Table {table_name} does not exist: {e}"]

    db_fields = {row[0] for row in result}
    model_fields = set(model.model_fields.keys())

    errors = [
        f"Column '{col}' missing from table {table_name}"
        for col in sorted(model_fields - db_fields)
    ]
    extra_columns = db_fields - model_fields
    if extra_columns:
        errors.append(f"Unexpected columns in {table_name}: {sorted(extra_columns)}")

    return not errors, errors
