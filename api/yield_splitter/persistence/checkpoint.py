"""Checkpoint Manager for saving and restoring ledger state.

A checkpoint is the ledger's to_state() serialized as JSON, stored with a
SHA-256 hash of that JSON and the settings in force. When a scheduler is
given its carried balances (dust, owed fee, cycle count) go under the
"scheduler" key of the same state. Loading verifies the hash before
rebuilding anything.
"""

import hashlib
import json
import uuid
from datetime import datetime
from typing import Any, Callable

from yield_splitter.config.schemas import LedgerSettings
from yield_splitter.core.accountant import YieldAccountant
from yield_splitter.core.ledger import DepositLedger
from yield_splitter.core.scheduler import UpkeepScheduler
from yield_splitter.events import EventBus
from yield_splitter.interfaces import RebaseIndexOracle

from .connection import DatabaseManager
from .models import CheckpointType, LedgerCheckpointRecord
from .writers import records_to_frame


def state_hash(state_json: str) -> str:
    return hashlib.sha256(state_json.encode("utf-8")).hexdigest()


class CheckpointManager:
    """Manages ledger checkpoints in database.

    Responsibilities:
    - Save ledger state snapshots to database
    - Rebuild a ledger from a stored snapshot
    - List checkpoints for a run
    - Validate checkpoint integrity (hashes)
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db = db_manager

    # =========================================================================
    # Save Checkpoint
    # =========================================================================

    def save_checkpoint(
        self,
        ledger: DepositLedger,
        run_id: str,
        checkpoint_type: CheckpointType | str = CheckpointType.MANUAL,
        description: str | None = None,
        scheduler: UpkeepScheduler | None = None,
    ) -> str:
        """Save ledger state to database as checkpoint.

        Returns:
            Checkpoint ID (UUID)

        Raises:
            ValueError: If run_id is empty or checkpoint_type is invalid
        """
        if not run_id:
            raise ValueError("run_id cannot be empty")

        try:
            checkpoint_type = CheckpointType(checkpoint_type)
        except ValueError as e:
            raise ValueError(
                f"checkpoint_type must be one of {[ct.value for ct in CheckpointType]}, "
                f"got: {checkpoint_type}"
            ) from e

        state = ledger.to_state()
        if scheduler is not None:
            state["scheduler"] = scheduler.to_state()
        state_json = json.dumps(state, sort_keys=True)
        checkpoint_id = str(uuid.uuid4())

        record = LedgerCheckpointRecord(
            checkpoint_id=checkpoint_id,
            run_id=run_id,
            checkpoint_type=checkpoint_type,
            created_at=datetime.now(),
            ledger_time=ledger.clock(),
            state_json=state_json,
            state_hash=state_hash(state_json),
            settings_json=ledger.settings.model_dump_json(),
            num_deposits=len(state["records"]),
            next_id=state["next_id"],
            description=description,
        )

        checkpoint_df = records_to_frame([record])  # noqa: F841
        self.db.conn.execute("INSERT INTO ledger_checkpoints SELECT * FROM checkpoint_df")

        return checkpoint_id

    # =========================================================================
    # Load Checkpoint
    # =========================================================================

    def load_checkpoint(
        self,
        checkpoint_id: str,
        oracle: RebaseIndexOracle,
        events: EventBus | None = None,
        clock: Callable[[], int] | None = None,
    ) -> DepositLedger:
        """Rebuild a ledger from a checkpoint.

        The restored ledger gets a fresh accountant over ``oracle`` whose
        high-water mark is the checkpointed one, and the checkpointed settings.

        Raises:
            ValueError: If checkpoint not found or integrity check fails
        """
        checkpoint, state = self._verified_state(checkpoint_id)
        settings = LedgerSettings.model_validate_json(checkpoint["settings_json"])
        return DepositLedger.from_state(
            state,
            YieldAccountant(oracle),
            settings=settings,
            events=events,
            clock=clock,
        )

    def load_scheduler_state(self, checkpoint_id: str) -> dict[str, int]:
        """Scheduler balances saved with the checkpoint.

        Checkpoints saved without a scheduler give zeroed balances.

        Raises:
            ValueError: If checkpoint not found or integrity check fails
        """
        _, state = self._verified_state(checkpoint_id)
        saved = state.get("scheduler", {})
        return {
            "cycles_run": saved.get("cycles_run", 0),
            "dust": saved.get("dust", 0),
            "fee_owed": saved.get("fee_owed", 0),
        }

    def _verified_state(self, checkpoint_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        checkpoint = self.get_checkpoint(checkpoint_id)
        if checkpoint is None:
            raise ValueError(f"Checkpoint {checkpoint_id} not found")

        state_json = checkpoint["state_json"]
        computed_hash = state_hash(state_json)
        if computed_hash != checkpoint["state_hash"]:
            raise ValueError(
                f"Checkpoint integrity check failed: state hash mismatch "
                f"(expected: {checkpoint['state_hash']}, computed: {computed_hash})"
            )
        return checkpoint, json.loads(state_json)

    # =========================================================================
    # Query Checkpoints
    # =========================================================================

    def get_checkpoint(self, checkpoint_id: str) -> dict[str, Any] | None:
        result = self.db.conn.execute(
            "SELECT * FROM ledger_checkpoints WHERE checkpoint_id = ?", [checkpoint_id]
        ).fetchall()
        if not result:
            return None
        columns = [desc[0] for desc in self.db.conn.description]
        return dict(zip(columns, result[0]))

    def list_checkpoints(self, run_id: str | None = None) -> list[dict[str, Any]]:
        """Checkpoint metadata (without state), oldest first."""
        query = """
            SELECT checkpoint_id, run_id, checkpoint_type, created_at, ledger_time,
                   num_deposits, next_id, description
            FROM ledger_checkpoints
        """
        params: list = []
        if run_id:
            query += " WHERE run_id = ?"
            params.append(run_id)
        query += " ORDER BY created_at ASC"

        result = self.db.conn.execute(query, params).fetchall()
        columns = [desc[0] for desc in self.db.conn.description]
        return [dict(zip(columns, row)) for row in result]

    def delete_checkpoint(self, checkpoint_id: str) -> None:
        self.db.conn.execute(
            "DELETE FROM ledger_checkpoints WHERE checkpoint_id = ?", [checkpoint_id]
        )
