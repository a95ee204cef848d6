"""
Persistence management for scenario runs.

Writes the run record up front, a deposit snapshot and checkpoint after
every upkeep cycle, and the events, cycles and final state at the end.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from yield_splitter.config.schemas import ScenarioConfig
from yield_splitter.core.scheduler import UpkeepReport
from yield_splitter.persistence.checkpoint import CheckpointManager
from yield_splitter.persistence.connection import DatabaseManager
from yield_splitter.persistence.models import CheckpointType, LedgerRunRecord, RunStatus
from yield_splitter.persistence.writers import (
    finish_run,
    write_deposit_snapshot,
    write_events,
    write_run,
    write_upkeep_reports,
)
from yield_splitter.service import YieldSplitter

if TYPE_CHECKING:
    from .runner import RunSummary


class RunPersistence:
    """Persists one scenario run.

    Usage:
        with DatabaseManager(db_path) as db:
            db.setup()
            persistence = RunPersistence(db)
            summary = ScenarioRunner(scenario, persistence=persistence).run()
    """

    def __init__(self, db_manager: DatabaseManager, run_id: str | None = None):
        self.db = db_manager
        self.run_id = run_id or f"run-{uuid.uuid4().hex[:12]}"
        self.checkpoints = CheckpointManager(db_manager)
        self.continue_on_error = False

    def start(self, scenario: ScenarioConfig) -> str:
        self.continue_on_error = scenario.continue_on_error
        write_run(
            self.db.conn,
            LedgerRunRecord(
                run_id=self.run_id,
                name=scenario.name,
                started_at=datetime.now(),
                status=RunStatus.RUNNING,
                config_json=scenario.model_dump_json(),
            ),
        )
        return self.run_id

    def record_cycle(self, splitter: YieldSplitter, report: UpkeepReport) -> None:
        write_deposit_snapshot(
            self.db.conn, self.run_id, f"cycle-{report.cycle}", splitter.ledger.snapshot()
        )
        self.checkpoints.save_checkpoint(
            splitter.ledger,
            self.run_id,
            CheckpointType.CYCLE,
            description=f"After upkeep cycle {report.cycle}",
            scheduler=splitter.scheduler,
        )

    def finish(
        self, splitter: YieldSplitter, summary: RunSummary, error: str | None = None
    ) -> None:
        """Write everything the run produced and close the run record.

        The run is FAILED when it raised, or when a failed step stopped it.
        """
        conn = self.db.conn
        write_events(conn, self.run_id, splitter.events.history)
        write_upkeep_reports(conn, self.run_id, summary.reports)
        write_deposit_snapshot(conn, self.run_id, "final", splitter.ledger.snapshot())
        self.checkpoints.save_checkpoint(
            splitter.ledger,
            self.run_id,
            CheckpointType.FINAL,
            description="End of run",
            scheduler=splitter.scheduler,
        )

        failed = summary.failed
        if error is None and failed and not self.continue_on_error:
            error = failed[-1].error
        finish_run(
            conn,
            self.run_id,
            RunStatus.FAILED if error else RunStatus.COMPLETED,
            num_steps=len(summary.steps),
            num_cycles=len(summary.reports),
            error=error,
        )
