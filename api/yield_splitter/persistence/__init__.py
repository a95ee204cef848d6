"""
Persistence layer for the yield splitter.

Provides DuckDB-based storage for scenario runs, ledger events, upkeep
cycles, deposit snapshots and checkpoints.
"""

from .checkpoint import CheckpointManager
from .connection import DatabaseManager
from .models import (
    CheckpointType,
    DepositSnapshotRecord,
    LedgerCheckpointRecord,
    LedgerEventRecord,
    LedgerRunRecord,
    RunStatus,
    UpkeepCycleRecord,
)

__all__ = [
    "CheckpointManager",
    "CheckpointType",
    "DatabaseManager",
    "DepositSnapshotRecord",
    "LedgerCheckpointRecord",
    "LedgerEventRecord",
    "LedgerRunRecord",
    "RunStatus",
    "UpkeepCycleRecord",
]
