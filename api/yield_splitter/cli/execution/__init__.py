"""Scenario execution: runner, output strategies, persistence."""
