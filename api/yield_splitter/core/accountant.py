"""Flat/agnostic unit conversion and yield derivation.

A flat amount is what the rebasing asset reports as a balance. An agnostic
amount is the same position divided by the rebase index, so it stays
constant while the index (and therefore the flat value) grows:

    agnostic = flat * UNIT // index
    flat     = agnostic * index // UNIT

Both directions floor. Converting back at a later, higher index is exactly
how yield shows up: the agnostic amount is unchanged but each unit is worth
more flat units than when it was recorded.

Example:
    >>> from yield_splitter.adapters import ManualIndexOracle
    >>> oracle = ManualIndexOracle(UNIT)
    >>> acct = YieldAccountant(oracle)
    >>> agnostic = acct.to_agnostic(1000)
    >>> oracle.set_index(UNIT * 11 // 10)
    >>> acct.outstanding_yield(1000, agnostic)
    100
"""

from __future__ import annotations

import logging
import threading

from yield_splitter.errors import InvariantViolation
from yield_splitter.interfaces import RebaseIndexOracle

logger = logging.getLogger(__name__)

UNIT = 10**18


class YieldAccountant:
    """Pure valuation layer over a RebaseIndexOracle.

    The accountant remembers the highest index it has ever read. A lower
    reading means the host asset's index went backwards, which the whole
    accounting model rules out, so it raises InvariantViolation instead of
    letting a negative yield leak into the ledger.
    """

    def __init__(self, oracle: RebaseIndexOracle) -> None:
        self._oracle = oracle
        self._high_water = 0
        self._lock = threading.Lock()

    @property
    def high_water_index(self) -> int:
        """Highest index observed so far (0 before the first read)."""
        return self._high_water

    def observe(self, index: int) -> None:
        """Raise the high-water mark to index (restoring persisted state)."""
        with self._lock:
            self._high_water = max(self._high_water, index)

    def index(self) -> int:
        """Read the current index and check it against the high-water mark."""
        value = self._oracle.current_index()
        if value <= 0:
            raise InvariantViolation(f"Oracle returned non-positive index {value}")
        with self._lock:
            if value < self._high_water:
                logger.error(
                    "Index decreased from %d to %d", self._high_water, value
                )
                raise InvariantViolation(
                    f"Index decreased from {self._high_water} to {value}"
                )
            self._high_water = value
        return value

    def to_agnostic(self, flat_amount: int, index: int | None = None) -> int:
        """Convert a flat amount to agnostic units (floor)."""
        if index is None:
            index = self.index()
        return flat_amount * UNIT // index

    def to_agnostic_up(self, flat_amount: int, index: int | None = None) -> int:
        """Convert a flat amount to agnostic units, rounding up.

        Used when agnostic units leave a record, so a withdrawal never
        leaves behind more agnostic value than the remaining principal
        and yield are entitled to.
        """
        if index is None:
            index = self.index()
        return -(-flat_amount * UNIT // index)

    def from_agnostic(self, agnostic_amount: int, index: int | None = None) -> int:
        """Convert agnostic units back to flat at the given or current index (floor)."""
        if index is None:
            index = self.index()
        return agnostic_amount * index // UNIT

    def outstanding_yield(
        self, principal: int, agnostic_amount: int, index: int | None = None
    ) -> int:
        """Yield accrued on top of principal, in flat units.

        A value below principal can only come from floor rounding here,
        since a decreasing index is rejected by index(). That rounding
        dust is reported as zero yield; the principal stays fully backed
        because the ledger holds the exact agnostic amount deposited.
        """
        value = self.from_agnostic(agnostic_amount, index)
        if value < principal:
            return 0
        return value - principal
