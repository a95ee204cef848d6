"""Ledger event types, the event record and a small in-process bus.

Every lifecycle operation, upkeep cycle and configuration change emits one
LedgerEvent. Subscribers (the CLI, the persistence writer, tests) receive
events synchronously in emission order. The bus also keeps the full history
so a run can be persisted or inspected after the fact.

All amounts in event_data are integers in the smallest denomination.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

logger = logging.getLogger(__name__)

# =============================================================================
# Event Type Constants
# =============================================================================

EVENT_DEPOSIT_OPENED = "deposit_opened"
EVENT_DEPOSIT_TOPPED_UP = "deposit_topped_up"
EVENT_DEPOSIT_WITHDRAWN = "deposit_withdrawn"
EVENT_YIELD_EXTRACTED = "yield_extracted"
EVENT_DEPOSIT_CLOSED = "deposit_closed"
EVENT_SETTLEMENT_CLAIMED = "settlement_claimed"
EVENT_RECIPIENT_CHANGED = "recipient_changed"
EVENT_PREFERENCES_UPDATED = "preferences_updated"
EVENT_PAYOUT_PUSHED = "payout_pushed"
EVENT_UPKEEP_COMPLETED = "upkeep_completed"
EVENT_UPKEEP_ABORTED = "upkeep_aborted"
EVENT_CONFIG_CHANGED = "config_changed"

ALL_EVENT_TYPES: list[str] = [
    EVENT_DEPOSIT_OPENED,
    EVENT_DEPOSIT_TOPPED_UP,
    EVENT_DEPOSIT_WITHDRAWN,
    EVENT_YIELD_EXTRACTED,
    EVENT_DEPOSIT_CLOSED,
    EVENT_SETTLEMENT_CLAIMED,
    EVENT_RECIPIENT_CHANGED,
    EVENT_PREFERENCES_UPDATED,
    EVENT_PAYOUT_PUSHED,
    EVENT_UPKEEP_COMPLETED,
    EVENT_UPKEEP_ABORTED,
    EVENT_CONFIG_CHANGED,
]


def _now_iso() -> str:
    """Return current time as ISO format string."""
    return datetime.now().isoformat()


@dataclass(frozen=True)
class LedgerEvent:
    """Immutable event record.

    Attributes:
        sequence: Position in the bus history (0-based)
        event_type: One of ALL_EVENT_TYPES
        timestamp: Ledger clock value when the event happened
        deposit_id: Deposit involved, None for cycle/config events
        event_data: Event-specific payload
        recorded_at: Wall-clock ISO timestamp
    """

    sequence: int
    event_type: str
    timestamp: int
    deposit_id: int | None = None
    event_data: dict[str, Any] = field(default_factory=dict)
    recorded_at: str = field(default_factory=_now_iso)


EventHandler = Callable[[LedgerEvent], None]


class EventBus:
    """Synchronous publish/subscribe with history."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._history: list[LedgerEvent] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        self._handlers.remove(handler)

    def emit(
        self,
        event_type: str,
        timestamp: int,
        deposit_id: int | None = None,
        **event_data: Any,
    ) -> LedgerEvent:
        if event_type not in ALL_EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        with self._lock:
            event = LedgerEvent(
                sequence=len(self._history),
                event_type=event_type,
                timestamp=timestamp,
                deposit_id=deposit_id,
                event_data=event_data,
            )
            self._history.append(event)
        logger.debug("event %s deposit=%s %s", event_type, deposit_id, event_data)
        for handler in list(self._handlers):
            handler(event)
        return event

    @property
    def history(self) -> list[LedgerEvent]:
        return list(self._history)

    def of_type(self, event_type: str) -> list[LedgerEvent]:
        return [e for e in self._history if e.event_type == event_type]
