"""Pydantic schemas for ledger settings and scenario files."""
from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

BPS_DENOM = 10_000

# ============================================================================
# Ledger Settings
# ============================================================================


class LedgerSettings(BaseModel):
    """Mutable ledger configuration.

    One instance is owned by a ledger and shared with its scheduler and
    service layer. Changes go through LedgerAdmin, which checks the caller
    against the access controller first. validate_assignment keeps every
    change inside the same bounds enforced at load time.
    """

    model_config = ConfigDict(validate_assignment=True)

    ledger_account: str = Field("ledger", description="Identity holding pooled assets", min_length=1)
    treasury: str = Field("treasury", description="Identity receiving the protocol fee", min_length=1)
    fee_share_bps: int = Field(1_000, description="Protocol fee share of aggregated yield", ge=0, le=BPS_DENOM)
    max_slippage_bps: int = Field(100, description="Max slippage vs quoted output", ge=0, le=BPS_DENOM)
    minimum_payout_threshold: int = Field(
        0, description="Global floor for per-deposit auto-push thresholds", ge=0
    )
    default_settlement_interval: int = Field(
        86_400, description="Settlement interval for new deposits (seconds)", ge=0
    )
    min_settlement_interval: int = Field(0, description="Lowest allowed settlement interval", ge=0)
    max_settlement_interval: int = Field(
        365 * 86_400, description="Highest allowed settlement interval", ge=0
    )
    swap_path: list[str] = Field(
        default_factory=lambda: ["principal", "settlement"],
        description="Exchange route from yield asset to settlement asset",
        min_length=2,
    )
    swap_deadline_seconds: int = Field(300, description="Swap deadline offset from cycle time", gt=0)
    exchange_spender: str = Field(
        "exchange", description="Identity the ledger approves before each swap", min_length=1
    )
    conversion_form: Literal["rebasing", "unwrap", "unstake"] = Field(
        "rebasing", description="Staking adapter call made before swapping"
    )
    deposits_disabled: bool = False
    withdrawals_disabled: bool = False
    upkeep_disabled: bool = False

    @model_validator(mode="after")
    def validate_interval_bounds(self) -> LedgerSettings:
        """Validate min <= default <= max interval."""
        if self.min_settlement_interval > self.max_settlement_interval:
            raise ValueError(
                f"min_settlement_interval ({self.min_settlement_interval}) exceeds "
                f"max_settlement_interval ({self.max_settlement_interval})"
            )
        if not (
            self.min_settlement_interval
            <= self.default_settlement_interval
            <= self.max_settlement_interval
        ):
            raise ValueError(
                "default_settlement_interval must lie within "
                "[min_settlement_interval, max_settlement_interval]"
            )
        return self


# ============================================================================
# Scenario Collaborators
# ============================================================================


class ExchangeSettings(BaseModel):
    """In-memory exchange used by scenario runs."""

    price: int = Field(10**18, description="Settlement units per yield unit (fixed-point 1e18)", gt=0)
    fee_bps: int = Field(0, description="Exchange fee taken from output", ge=0, lt=BPS_DENOM)
    impact_bps: int = Field(0, description="Execution shortfall vs quote", ge=0, lt=BPS_DENOM)
    fail: bool = Field(False, description="Revert every swap")


class AssetBalances(BaseModel):
    """Initial balances of both assets, keyed by identity."""

    principal: dict[str, int] = Field(default_factory=dict)
    settlement: dict[str, int] = Field(default_factory=dict)


# ============================================================================
# Scenario Steps
# ============================================================================


class OpenStep(BaseModel):
    action: Literal["open"] = "open"
    depositor: str
    recipient: str
    amount: int = Field(..., gt=0)
    settlement_interval: int | None = Field(None, ge=0)
    minimum_payout_threshold: int | None = Field(None, ge=0)


class TopUpStep(BaseModel):
    action: Literal["top_up"] = "top_up"
    deposit_id: int
    caller: str
    amount: int


class WithdrawStep(BaseModel):
    action: Literal["withdraw"] = "withdraw"
    deposit_id: int
    caller: str
    amount: int


class ExtractStep(BaseModel):
    action: Literal["extract"] = "extract"
    deposit_id: int
    caller: str


class CloseStep(BaseModel):
    action: Literal["close"] = "close"
    deposit_id: int
    caller: str


class ClaimStep(BaseModel):
    action: Literal["claim"] = "claim"
    deposit_id: int
    caller: str


class SetIndexStep(BaseModel):
    action: Literal["set_index"] = "set_index"
    index: int = Field(..., gt=0, description="Fixed-point index (1e18 = 1.0)")


class AdvanceTimeStep(BaseModel):
    action: Literal["advance_time"] = "advance_time"
    seconds: int = Field(..., ge=0)


class UpkeepStep(BaseModel):
    action: Literal["upkeep"] = "upkeep"


class AdminStep(BaseModel):
    action: Literal["admin"] = "admin"
    caller: str
    setting: Literal[
        "fee_share_bps",
        "max_slippage_bps",
        "minimum_payout_threshold",
        "deposits_disabled",
        "withdrawals_disabled",
        "upkeep_disabled",
        "treasury",
    ]
    value: int | bool | str


ScenarioStep = Annotated[
    OpenStep
    | TopUpStep
    | WithdrawStep
    | ExtractStep
    | CloseStep
    | ClaimStep
    | SetIndexStep
    | AdvanceTimeStep
    | UpkeepStep
    | AdminStep,
    Field(discriminator="action"),
]


# ============================================================================
# Scenario
# ============================================================================


class ScenarioConfig(BaseModel):
    """Complete scenario: settings, collaborators and an ordered step list."""

    name: str = "scenario"
    start_time: int = Field(0, ge=0, description="Initial clock value (seconds)")
    index: int = Field(10**18, gt=0, description="Initial fixed-point index")
    admins: list[str] = Field(default_factory=lambda: ["admin"])
    continue_on_error: bool = Field(
        False, description="Record failed steps and keep going instead of stopping"
    )
    settings: LedgerSettings = Field(default_factory=LedgerSettings)  # type: ignore[arg-type]
    assets: AssetBalances = Field(default_factory=AssetBalances)
    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings)  # type: ignore[arg-type]
    steps: list[ScenarioStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_balances(self) -> ScenarioConfig:
        """Validate initial balances are non-negative."""
        for asset_name, balances in (
            ("principal", self.assets.principal),
            ("settlement", self.assets.settlement),
        ):
            for account, amount in balances.items():
                if amount < 0:
                    raise ValueError(
                        f"Negative initial {asset_name} balance for {account}: {amount}"
                    )
        return self

    @classmethod
    def from_dict(cls, config_dict: dict) -> ScenarioConfig:
        return cls.model_validate(config_dict)
