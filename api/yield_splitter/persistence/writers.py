"""
DuckDB Write Functions

Batch writes of ledger run data using Polars DataFrames, validated through
the persistence models first so every row matches the generated schema.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Iterable, Sequence

import duckdb
import polars as pl
from pydantic import BaseModel

from yield_splitter.core.records import DepositRecord
from yield_splitter.core.scheduler import UpkeepReport
from yield_splitter.events import LedgerEvent

from .models import (
    DepositSnapshotRecord,
    LedgerEventRecord,
    LedgerRunRecord,
    RunStatus,
    UpkeepCycleRecord,
)


def records_to_frame(records: Sequence[BaseModel]) -> pl.DataFrame:
    """Dump validated models into a DataFrame with model field order."""
    rows = []
    for record in records:
        row = record.model_dump()
        rows.append({k: v.value if isinstance(v, Enum) else v for k, v in row.items()})
    return pl.DataFrame(rows, infer_schema_length=None)


def _insert(conn: duckdb.DuckDBPyConnection, records: Sequence[BaseModel]) -> int:
    if not records:
        return 0
    table_name = records[0].model_config["table_name"]
    df = records_to_frame(records)  # noqa: F841  (referenced by name in SQL)
    conn.execute(f"INSERT INTO {table_name} SELECT * FROM df")
    return len(records)


def write_run(conn: duckdb.DuckDBPyConnection, run: LedgerRunRecord) -> None:
    _insert(conn, [run])


def finish_run(
    conn: duckdb.DuckDBPyConnection,
    run_id: str,
    status: RunStatus,
    num_steps: int,
    num_cycles: int,
    error: str | None = None,
) -> None:
    """Mark a run finished and record its counters."""
    conn.execute(
        """
        UPDATE ledger_runs
        SET status = ?, completed_at = ?, num_steps = ?, num_cycles = ?, error = ?
        WHERE run_id = ?
        """,
        [status.value, datetime.now(), num_steps, num_cycles, error, run_id],
    )


def write_events(
    conn: duckdb.DuckDBPyConnection, run_id: str, events: Iterable[LedgerEvent]
) -> int:
    """Write ledger events.

    Returns:
        Number of events written
    """
    records = [
        LedgerEventRecord(
            run_id=run_id,
            sequence=event.sequence,
            event_type=event.event_type,
            timestamp=event.timestamp,
            deposit_id=event.deposit_id,
            event_data_json=json.dumps(event.event_data, sort_keys=True, default=str),
            recorded_at=event.recorded_at,
        )
        for event in events
    ]
    return _insert(conn, records)


def write_upkeep_reports(
    conn: duckdb.DuckDBPyConnection, run_id: str, reports: Iterable[UpkeepReport]
) -> int:
    records = [
        UpkeepCycleRecord(
            run_id=run_id,
            cycle=report.cycle,
            timestamp=report.timestamp,
            eligible_count=len(report.eligible_ids),
            total_yield=str(report.total_yield),
            fee=str(report.fee),
            amount_in=str(report.amount_in),
            min_out=str(report.min_out),
            proceeds=str(report.proceeds),
            dust_carried=str(report.dust_carried),
            fee_owed=str(report.fee_owed),
            pushed_count=len(report.pushed),
            failed_count=len(report.failed_payouts),
            report_json=json.dumps(report.to_dict(), sort_keys=True),
        )
        for report in reports
    ]
    return _insert(conn, records)


def write_deposit_snapshot(
    conn: duckdb.DuckDBPyConnection,
    run_id: str,
    label: str,
    deposits: Iterable[DepositRecord],
) -> int:
    """Write the state of every deposit under one label.

    Examples:
        >>> write_deposit_snapshot(conn, run_id, "final", ledger.snapshot())
        2
    """
    records = [
        DepositSnapshotRecord(
            run_id=run_id,
            label=label,
            deposit_id=d.id,
            depositor=d.depositor,
            recipient=d.recipient,
            principal=str(d.principal),
            agnostic_balance=str(d.agnostic_balance),
            last_settled=d.last_settled,
            settlement_interval=d.settlement_interval,
            claimable_settlement=str(d.claimable_settlement),
            minimum_payout_threshold=str(d.minimum_payout_threshold),
            opened_at=d.opened_at,
        )
        for d in deposits
    ]
    return _insert(conn, records)
