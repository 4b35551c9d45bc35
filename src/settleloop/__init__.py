"""SettleLoop - Shared-expense ledgers with settlement planning and AutoSplit rules."""

__version__ = "0.1.0"

from .balances import compute_balances, validate_balances
from .config import Settings, load_settings
from .db import Database
from .models import (
    AutoSplitRule,
    BankTransaction,
    BillPack,
    Expense,
    Member,
    Mission,
    Share,
    SettlementSummary,
    Transfer,
)
from .optimizer import optimize_settlements
from .service import LedgerService
from .splits import generate_splits, validate_expense

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "AutoSplitRule",
    "BankTransaction",
    "BillPack",
    "Expense",
    "Member",
    "Mission",
    "Share",
    "SettlementSummary",
    "Transfer",
    "compute_balances",
    "validate_balances",
    "optimize_settlements",
    "generate_splits",
    "validate_expense",
    "LedgerService",
]
