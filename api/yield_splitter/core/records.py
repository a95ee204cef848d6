"""Deposit records and the id-keyed membership lists that index them.

Records live in an arena keyed by id. The active set and the per-depositor
and per-recipient lists only ever store ids, never positions in another
structure, so removing one entry with swap-with-last-and-truncate cannot
leave a dangling reference elsewhere.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Iterator


@dataclass
class DepositRecord:
    """One deposit: principal held for a depositor, yield owed to a recipient.

    Fields:
        id: Unique id, never reused after close
        depositor: Identity allowed to change or withdraw principal
        recipient: Identity entitled to the yield
        principal: Flat amount contributed, net of withdrawals
        agnostic_balance: Index-normalised principal plus unredeemed yield
        last_settled: Timestamp of the last yield extraction or settlement
        settlement_interval: Seconds that must pass before upkeep picks it up
        claimable_settlement: Unclaimed settlement-asset proceeds
        minimum_payout_threshold: Claimable amount that triggers an auto-push
        opened_at: Timestamp the record was created
    """

    id: int
    depositor: str
    recipient: str
    principal: int
    agnostic_balance: int
    last_settled: int
    settlement_interval: int
    claimable_settlement: int = 0
    minimum_payout_threshold: int = 0
    opened_at: int = 0

    def is_eligible(self, now: int) -> bool:
        """Eligible for batch settlement once the interval has elapsed."""
        return now - self.last_settled >= self.settlement_interval

    def copy(self) -> DepositRecord:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DepositRecord:
        return cls(**data)


class IdIndex:
    """Ordered id list with O(1) add, contains and remove.

    Removal swaps the last id into the freed slot and truncates. The
    position map is patched for the moved id, so iteration order changes
    but membership never goes stale.
    """

    def __init__(self, ids: list[int] | None = None) -> None:
        self._ids: list[int] = []
        self._pos: dict[int, int] = {}
        for deposit_id in ids or []:
            self.add(deposit_id)

    def add(self, deposit_id: int) -> None:
        if deposit_id in self._pos:
            raise ValueError(f"id {deposit_id} already indexed")
        self._pos[deposit_id] = len(self._ids)
        self._ids.append(deposit_id)

    def remove(self, deposit_id: int) -> None:
        pos = self._pos.pop(deposit_id)
        last = self._ids.pop()
        if last != deposit_id:
            self._ids[pos] = last
            self._pos[last] = pos

    def __contains__(self, deposit_id: object) -> bool:
        return deposit_id in self._pos

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._ids))

    def to_list(self) -> list[int]:
        return list(self._ids)


class KeyedIdIndex:
    """IdIndex per identity (depositor or recipient)."""

    def __init__(self) -> None:
        self._by_key: dict[str, IdIndex] = {}

    def add(self, key: str, deposit_id: int) -> None:
        self._by_key.setdefault(key, IdIndex()).add(deposit_id)

    def remove(self, key: str, deposit_id: int) -> None:
        index = self._by_key[key]
        index.remove(deposit_id)
        if not index:
            del self._by_key[key]

    def get(self, key: str) -> list[int]:
        index = self._by_key.get(key)
        return index.to_list() if index is not None else []

    def contains(self, key: str, deposit_id: int) -> bool:
        index = self._by_key.get(key)
        return index is not None and deposit_id in index

    def keys(self) -> list[str]:
        return list(self._by_key)

    def to_dict(self) -> dict[str, list[int]]:
        return {key: index.to_list() for key, index in self._by_key.items()}
