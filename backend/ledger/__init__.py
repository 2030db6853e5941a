"""
Double-entry accounting ledger for the MOVICAR rental backend.

This package provides:
- SQLAlchemy models for accounts, transactions and transaction lines
- Async database session management
- Repository pattern for CRUD operations
- Balance recomputation and the approval/cancellation workflow
"""

from ledger.balance import LedgerBalanceCalculator, normal_balance
from ledger.config import get_settings, Settings
from ledger.exceptions import (
    AccountNotFoundError,
    InvalidTransactionStateError,
    LedgerError,
    LedgerValidationError,
    NotFoundError,
    PersistenceError,
    TransactionNotFoundError,
    UnbalancedTransactionError,
)
from ledger.models import (
    Account,
    AccountType,
    PaymentMethod,
    Transaction,
    TransactionLine,
    TransactionStatus,
    TransactionType,
)
from ledger.repository import AccountRepository, TransactionRepository
from ledger.session import get_session, init_db, session_context, AsyncSessionLocal
from ledger.workflow import TransactionWorkflow

__all__ = [
    # Config
    "get_settings",
    "Settings",
    # Session
    "get_session",
    "init_db",
    "session_context",
    "AsyncSessionLocal",
    # Models
    "Account",
    "AccountType",
    "PaymentMethod",
    "Transaction",
    "TransactionLine",
    "TransactionStatus",
    "TransactionType",
    # Repositories
    "AccountRepository",
    "TransactionRepository",
    # Balances
    "LedgerBalanceCalculator",
    "normal_balance",
    "TransactionWorkflow",
    # Errors
    "LedgerError",
    "NotFoundError",
    "AccountNotFoundError",
    "TransactionNotFoundError",
    "InvalidTransactionStateError",
    "LedgerValidationError",
    "UnbalancedTransactionError",
    "PersistenceError",
]
