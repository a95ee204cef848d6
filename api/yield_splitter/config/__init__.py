"""Configuration module for the yield-splitting ledger."""
from pydantic import ValidationError

from .loader import load_config, load_scenario
from .schemas import (
    BPS_DENOM,
    AdminStep,
    AdvanceTimeStep,
    AssetBalances,
    ClaimStep,
    CloseStep,
    ExchangeSettings,
    ExtractStep,
    LedgerSettings,
    OpenStep,
    ScenarioConfig,
    ScenarioStep,
    SetIndexStep,
    TopUpStep,
    UpkeepStep,
    WithdrawStep,
)

__all__ = [
    "BPS_DENOM",
    "AdminStep",
    "AdvanceTimeStep",
    "AssetBalances",
    "ClaimStep",
    "CloseStep",
    "ExchangeSettings",
    "ExtractStep",
    "LedgerSettings",
    "OpenStep",
    "ScenarioConfig",
    "ScenarioStep",
    "SetIndexStep",
    "TopUpStep",
    "UpkeepStep",
    "ValidationError",
    "WithdrawStep",
    "load_config",
    "load_scenario",
]
