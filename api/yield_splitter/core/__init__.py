"""Accounting engine: valuation, deposit registry and batch settlement."""

from .accountant import UNIT, YieldAccountant
from .ledger import ClosedDeposit, DepositLedger
from .records import DepositRecord, IdIndex, KeyedIdIndex
from .scheduler import CyclePhase, UpkeepReport, UpkeepScheduler, pro_rate

__all__ = [
    "UNIT",
    "ClosedDeposit",
    "CyclePhase",
    "DepositLedger",
    "DepositRecord",
    "IdIndex",
    "KeyedIdIndex",
    "UpkeepReport",
    "UpkeepScheduler",
    "YieldAccountant",
    "pro_rate",
]
