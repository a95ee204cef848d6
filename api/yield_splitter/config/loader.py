"""YAML configuration loader."""
from pathlib import Path

import yaml

from .schemas import LedgerSettings, ScenarioConfig


def _read_yaml(config_path: Path) -> dict:
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        raise ValueError(f"Empty configuration file: {config_path}")

    return config_dict


def load_config(config_path: str | Path) -> LedgerSettings:
    """
    Load and validate ledger settings from a YAML file.

    Args:
        config_path: Path to YAML settings file

    Returns:
        Validated LedgerSettings instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    config_dict = _read_yaml(Path(config_path))

    try:
        return LedgerSettings.model_validate(config_dict)
    except Exception as e:
        raise ValueError(f"Invalid configuration: {e}") from e


def load_scenario(scenario_path: str | Path) -> ScenarioConfig:
    """
    Load and validate a scenario file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the scenario is invalid
    """
    config_dict = _read_yaml(Path(scenario_path))

    try:
        return ScenarioConfig.from_dict(config_dict)
    except Exception as e:
        raise ValueError(f"Invalid scenario: {e}") from e
