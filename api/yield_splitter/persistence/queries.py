"""
Query Interface

Read-side helpers over persisted ledger runs. Tabular results are Polars
DataFrames; amounts come back as decimal strings and are converted to int
where a caller needs ledger objects.
"""

import duckdb
import polars as pl

from yield_splitter.core.records import DepositRecord


def list_runs(conn: duckdb.DuckDBPyConnection) -> pl.DataFrame:
    """All runs, newest first."""
    query = """
        SELECT run_id, name, status, started_at, completed_at, num_steps, num_cycles, error
        FROM ledger_runs
        ORDER BY started_at DESC
    """
    return conn.execute(query).pl()


def get_upkeep_cycles(conn: duckdb.DuckDBPyConnection, run_id: str) -> pl.DataFrame:
    """Cycle summaries for a run.

    Returns:
        Polars DataFrame with columns cycle, timestamp, eligible_count,
        total_yield, fee, amount_in, min_out, proceeds, dust_carried,
        pushed_count, failed_count
    """
    query = """
        SELECT cycle, timestamp, eligible_count, total_yield, fee, amount_in,
               min_out, proceeds, dust_carried, pushed_count, failed_count
        FROM upkeep_cycles
        WHERE run_id = ?
        ORDER BY cycle
    """
    return conn.execute(query, [run_id]).pl()


def get_events(
    conn: duckdb.DuckDBPyConnection,
    run_id: str,
    event_type: str | None = None,
    deposit_id: int | None = None,
) -> pl.DataFrame:
    """Events for a run in emission order, optionally filtered."""
    query = """
        SELECT sequence, event_type, timestamp, deposit_id, event_data_json
        FROM ledger_events
        WHERE run_id = ?
    """
    params: list = [run_id]
    if event_type is not None:
        query += " AND event_type = ?"
        params.append(event_type)
    if deposit_id is not None:
        query += " AND deposit_id = ?"
        params.append(deposit_id)
    query += " ORDER BY sequence"
    return conn.execute(query, params).pl()


def get_deposit_snapshot(
    conn: duckdb.DuckDBPyConnection, run_id: str, label: str
) -> list[DepositRecord]:
    rows = conn.execute(
        """
        SELECT deposit_id, depositor, recipient, principal, agnostic_balance,
               last_settled, settlement_interval, claimable_settlement,
               minimum_payout_threshold, opened_at
        FROM deposit_snapshots
        WHERE run_id = ? AND label = ?
        ORDER BY deposit_id
        """,
        [run_id, label],
    ).fetchall()
    return [
        DepositRecord(
            id=row[0],
            depositor=row[1],
            recipient=row[2],
            principal=int(row[3]),
            agnostic_balance=int(row[4]),
            last_settled=row[5],
            settlement_interval=row[6],
            claimable_settlement=int(row[7]),
            minimum_payout_threshold=int(row[8]),
            opened_at=row[9],
        )
        for row in rows
    ]
