"""Yield-splitting ledger.

Deposits of a rebasing asset whose yield is batch-converted into a
settlement asset and distributed to each deposit's recipient.
"""

from yield_splitter.core.accountant import UNIT, YieldAccountant
from yield_splitter.core.ledger import ClosedDeposit, DepositLedger
from yield_splitter.core.records import DepositRecord
from yield_splitter.core.scheduler import CyclePhase, UpkeepReport, UpkeepScheduler
from yield_splitter.service import YieldSplitter

__version__ = "0.1.0"

__all__ = [
    "UNIT",
    "ClosedDeposit",
    "CyclePhase",
    "DepositLedger",
    "DepositRecord",
    "UpkeepReport",
    "UpkeepScheduler",
    "YieldAccountant",
    "YieldSplitter",
]
