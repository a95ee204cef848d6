"""CLI tests for the `yield-split db` subcommands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from yield_splitter.cli.execution.persistence import RunPersistence
from yield_splitter.cli.execution.runner import ScenarioRunner
from yield_splitter.cli.main import app
from yield_splitter.config.loader import load_scenario
from yield_splitter.persistence.connection import DatabaseManager

BASIC = Path(__file__).parents[2] / "scenarios" / "basic_split.yaml"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def populated_db(tmp_path) -> Path:
    db_path = tmp_path / "ledger.db"
    with DatabaseManager(db_path) as manager:
        manager.setup()
        ScenarioRunner(
            load_scenario(BASIC), persistence=RunPersistence(manager, run_id="basic")
        ).run()
    return db_path


class TestInitAndValidate:
    def test_init_creates_schema(self, runner, tmp_path):
        db_path = tmp_path / "fresh.db"
        result = runner.invoke(app, ["db", "init", "--db-path", str(db_path)])

        assert result.exit_code == 0
        with DatabaseManager(db_path) as manager:
            assert manager.is_initialized()

    def test_validate_after_init(self, runner, tmp_path):
        db_path = str(tmp_path / "fresh.db")
        runner.invoke(app, ["db", "init", "-d", db_path])
        result = runner.invoke(app, ["db", "validate", "-d", db_path])
        assert result.exit_code == 0
        assert "passed" in result.output

    def test_uninitialized_database(self, runner, tmp_path):
        result = runner.invoke(app, ["db", "runs", "-d", str(tmp_path / "empty.db")])
        assert result.exit_code == 1
        assert "not initialized" in result.output

    def test_force_recreate(self, runner, populated_db):
        result = runner.invoke(app, ["db", "init", "-d", str(populated_db), "--force"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["db", "runs", "-d", str(populated_db), "--json"])
        assert json.loads(result.stdout) == []


class TestQueries:
    def test_runs(self, runner, populated_db):
        result = runner.invoke(app, ["db", "runs", "-d", str(populated_db), "--json"])

        assert result.exit_code == 0
        (run,) = json.loads(result.stdout)
        assert run["run_id"] == "basic"
        assert run["status"] == "completed"

    def test_runs_table(self, runner, populated_db):
        result = runner.invoke(app, ["db", "runs", "-d", str(populated_db)])
        assert result.exit_code == 0
        assert "basic" in result.output

    def test_cycles(self, runner, populated_db):
        result = runner.invoke(app, ["db", "cycles", "basic", "-d", str(populated_db), "--json"])

        assert result.exit_code == 0
        (cycle,) = json.loads(result.stdout)
        assert cycle["proceeds"] == str(324 * 10**18)
        assert cycle["pushed_count"] == 1

    def test_events_filtered(self, runner, populated_db):
        result = runner.invoke(
            app,
            ["db", "events", "basic", "-d", str(populated_db), "--type", "deposit_opened", "--json"],
        )

        assert result.exit_code == 0
        events = json.loads(result.stdout)
        assert [e["deposit_id"] for e in events] == [1, 2]
        assert events[0]["event_data"]["depositor"] == "alice"
        assert "event_data_json" not in events[0]

    def test_events_by_deposit(self, runner, populated_db):
        result = runner.invoke(
            app, ["db", "events", "basic", "-d", str(populated_db), "--deposit", "1", "--json"]
        )
        types = [e["event_type"] for e in json.loads(result.stdout)]
        assert types == ["deposit_opened", "settlement_claimed", "deposit_closed"]

    def test_checkpoints(self, runner, populated_db):
        result = runner.invoke(
            app, ["db", "checkpoints", "basic", "-d", str(populated_db), "--json"]
        )

        assert result.exit_code == 0
        checkpoints = json.loads(result.stdout)
        assert sorted(c["checkpoint_type"] for c in checkpoints) == ["cycle", "final"]
