"""
Pydantic Models for Persistence Layer

These models are the single source of truth for database schema.
All DDL generation is derived from these models.

Amounts are stored as decimal strings: fixed-point balances with 18
decimals overflow a 64-bit BIGINT long before they stop being realistic.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# Enums
# ============================================================================


class RunStatus(str, Enum):
    """Scenario run status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CheckpointType(str, Enum):
    """Checkpoint creation type."""

    MANUAL = "manual"
    CYCLE = "cycle"  # After an upkeep cycle
    FINAL = "final"  # End of a scenario run


# ============================================================================
# Run Record
# ============================================================================


class LedgerRunRecord(BaseModel):
    """One scenario run against a ledger."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="ledger_runs",
        primary_key=["run_id"],
        indexes=[("idx_runs_status", ["status"])],
    )

    run_id: str = Field(..., description="Unique run identifier")
    name: str = Field(..., description="Scenario name")
    started_at: datetime = Field(..., description="Wall-clock start")
    completed_at: datetime | None = Field(None, description="Wall-clock end")
    status: RunStatus = Field(..., description="Run status")
    config_json: str = Field(..., description="Scenario configuration as JSON")
    num_steps: int = Field(0, description="Steps executed", ge=0)
    num_cycles: int = Field(0, description="Upkeep cycles completed", ge=0)
    error: str | None = Field(None, description="Failure message, if any")


# ============================================================================
# Deposit Snapshot Record
# ============================================================================


class DepositSnapshotRecord(BaseModel):
    """State of one deposit at a labelled point in a run."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="deposit_snapshots",
        primary_key=["run_id", "label", "deposit_id"],
        indexes=[
            ("idx_snap_depositor", ["run_id", "depositor"]),
            ("idx_snap_recipient", ["run_id", "recipient"]),
        ],
    )

    run_id: str = Field(..., description="Foreign key to ledger_runs")
    label: str = Field(..., description="Snapshot label (e.g. 'final', 'cycle-3')")
    deposit_id: int = Field(..., description="Deposit id", ge=1)
    depositor: str = Field(..., description="Depositor identity")
    recipient: str = Field(..., description="Recipient identity")
    principal: str = Field(..., description="Principal (decimal string)")
    agnostic_balance: str = Field(..., description="Agnostic balance (decimal string)")
    last_settled: int = Field(..., description="Last settlement timestamp")
    settlement_interval: int = Field(..., description="Settlement interval (seconds)")
    claimable_settlement: str = Field(..., description="Claimable settlement asset (decimal string)")
    minimum_payout_threshold: str = Field(..., description="Auto-push threshold (decimal string)")
    opened_at: int = Field(..., description="Open timestamp")


# ============================================================================
# Event Record
# ============================================================================


class LedgerEventRecord(BaseModel):
    """One ledger event."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="ledger_events",
        primary_key=["run_id", "sequence"],
        indexes=[
            ("idx_events_type", ["run_id", "event_type"]),
            ("idx_events_deposit", ["run_id", "deposit_id"]),
        ],
    )

    run_id: str = Field(..., description="Foreign key to ledger_runs")
    sequence: int = Field(..., description="Position in the event history", ge=0)
    event_type: str = Field(..., description="Event type")
    timestamp: int = Field(..., description="Ledger clock value")
    deposit_id: int | None = Field(None, description="Deposit involved, if any")
    event_data_json: str = Field(..., description="Event payload as JSON")
    recorded_at: str = Field(..., description="Wall-clock ISO timestamp")


# ============================================================================
# Upkeep Cycle Record
# ============================================================================


class UpkeepCycleRecord(BaseModel):
    """Summary of one completed upkeep cycle."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="upkeep_cycles",
        primary_key=["run_id", "cycle"],
    )

    run_id: str = Field(..., description="Foreign key to ledger_runs")
    cycle: int = Field(..., description="Cycle number", ge=1)
    timestamp: int = Field(..., description="Cycle time")
    eligible_count: int = Field(..., description="Deposits settled", ge=0)
    total_yield: str = Field(..., description="Aggregated yield (decimal string)")
    fee: str = Field(..., description="Protocol fee (decimal string)")
    amount_in: str = Field(..., description="Amount swapped (decimal string)")
    min_out: str = Field(..., description="Minimum accepted output (decimal string)")
    proceeds: str = Field(..., description="Settlement asset received (decimal string)")
    dust_carried: str = Field(..., description="Rounding remainder carried forward")
    fee_owed: str = Field("0", description="Treasury fee still unpaid after the cycle")
    pushed_count: int = Field(0, description="Auto-push payouts made", ge=0)
    failed_count: int = Field(0, description="Auto-push payouts refused", ge=0)
    report_json: str = Field(..., description="Full cycle report as JSON")


# ============================================================================
# Checkpoint Record
# ============================================================================


class LedgerCheckpointRecord(BaseModel):
    """Serialized ledger state."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="ledger_checkpoints",
        primary_key=["checkpoint_id"],
        indexes=[("idx_checkpoints_run", ["run_id"])],
    )

    checkpoint_id: str = Field(..., description="Unique checkpoint id (UUID)")
    run_id: str = Field(..., description="Run the checkpoint belongs to")
    checkpoint_type: CheckpointType = Field(..., description="Why it was taken")
    created_at: datetime = Field(..., description="Wall-clock creation time")
    ledger_time: int = Field(..., description="Ledger clock at checkpoint")
    state_json: str = Field(..., description="Ledger state as JSON")
    state_hash: str = Field(..., description="SHA-256 of state_json")
    settings_json: str = Field(..., description="Ledger settings as JSON")
    num_deposits: int = Field(..., description="Active deposits", ge=0)
    next_id: int = Field(..., description="Next deposit id", ge=1)
    description: str | None = Field(None, description="Human-readable description")
