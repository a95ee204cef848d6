"""Administrative surface for ledger settings.

LedgerSettings is the ledger's one mutable configuration object. LedgerAdmin
is the only component that writes to it after construction: every setter
first asks the access controller whether the caller may perform the
action, then assigns through pydantic validation, then emits a
config_changed event carrying the old and new values.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Iterable

from yield_splitter.config.schemas import LedgerSettings
from yield_splitter.errors import InvalidParameter, Unauthorized
from yield_splitter.events import EVENT_CONFIG_CHANGED, EventBus
from yield_splitter.interfaces import AccessController

logger = logging.getLogger(__name__)

ADMIN_SETTINGS: tuple[str, ...] = (
    "fee_share_bps",
    "max_slippage_bps",
    "minimum_payout_threshold",
    "deposits_disabled",
    "withdrawals_disabled",
    "upkeep_disabled",
    "treasury",
)


class StaticAccessController:
    """Fixed set of admin identities, optionally restricted per action."""

    def __init__(
        self,
        admins: Iterable[str],
        action_grants: dict[str, Iterable[str]] | None = None,
    ) -> None:
        self.admins = set(admins)
        self.action_grants = {k: set(v) for k, v in (action_grants or {}).items()}

    def is_authorized(self, caller: str, action: str) -> bool:
        if action in self.action_grants:
            return caller in self.action_grants[action]
        return caller in self.admins


class LedgerAdmin:
    """Authorized setters over LedgerSettings.

    guard, when given, wraps every write; YieldSplitter passes the ledger's
    settings_guard so a change waits for a running upkeep cycle.
    """

    def __init__(
        self,
        settings: LedgerSettings,
        access: AccessController,
        events: EventBus,
        clock: Callable[[], int],
        guard: Callable[[str], ContextManager[None]] | None = None,
    ) -> None:
        self.settings = settings
        self.access = access
        self.events = events
        self.clock = clock
        self.guard = guard if guard is not None else (lambda action: nullcontext())

    def _set(self, caller: str, name: str, value: Any) -> None:
        action = f"set_{name}"
        if not self.access.is_authorized(caller, action):
            raise Unauthorized(f"{caller!r} may not {action}", operation=action)
        with self.guard(action):
            old = getattr(self.settings, name)
            try:
                setattr(self.settings, name, value)
            except ValueError as e:
                raise InvalidParameter(f"Invalid value for {name}: {e}", operation=action) from e
        logger.info("%s changed %s: %r -> %r", caller, name, old, value)
        self.events.emit(
            EVENT_CONFIG_CHANGED, self.clock(), setting=name, old=old, new=value, caller=caller
        )

    def set_fee_share(self, caller: str, fee_share_bps: int) -> None:
        self._set(caller, "fee_share_bps", fee_share_bps)

    def set_max_slippage(self, caller: str, max_slippage_bps: int) -> None:
        self._set(caller, "max_slippage_bps", max_slippage_bps)

    def set_minimum_payout_threshold(self, caller: str, threshold: int) -> None:
        self._set(caller, "minimum_payout_threshold", threshold)

    def set_deposits_disabled(self, caller: str, disabled: bool) -> None:
        self._set(caller, "deposits_disabled", disabled)

    def set_withdrawals_disabled(self, caller: str, disabled: bool) -> None:
        self._set(caller, "withdrawals_disabled", disabled)

    def set_upkeep_disabled(self, caller: str, disabled: bool) -> None:
        self._set(caller, "upkeep_disabled", disabled)

    def set_treasury(self, caller: str, treasury: str) -> None:
        self._set(caller, "treasury", treasury)

    def apply(self, caller: str, setting: str, value: Any) -> None:
        """Apply a setting by name (scenario files use this)."""
        if setting not in ADMIN_SETTINGS:
            raise InvalidParameter(f"Unknown setting {setting!r}", operation="admin")
        self._set(caller, setting, value)
