"""
SQLAlchemy models for the double-entry accounting ledger.

This module defines the database schema for:
- Accounts (chart of accounts with an optional parent hierarchy)
- Transactions (journal entry headers with an approval status)
- Transaction lines (individual debit/credit entries)
"""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class AccountType(enum.Enum):
    """Chart of accounts categories."""
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def is_debit_normal(self) -> bool:
        """Assets and expenses grow with debits, everything else with credits."""
        return self in (AccountType.ASSET, AccountType.EXPENSE)


class TransactionStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionType(enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    JOURNAL = "journal"


class PaymentMethod(enum.Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    CHECK = "check"
    OTHER = "other"


class Account(Base):
    """
    Account in the chart of accounts.

    ``balance`` is a denormalized aggregate of the account's completed
    transaction lines. Only LedgerBalanceCalculator writes it.
    """
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(Enum(AccountType), nullable=False)
    parent_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id"), nullable=True
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), default=Decimal("0"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_accounts_account_type", "account_type"),
        Index("ix_accounts_is_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Account(code={self.account_code}, type={self.account_type.value})>"


class Transaction(Base):
    """
    Journal entry header.

    Its lines count towards account balances only while the status is
    ``completed``. Cancelling keeps the lines for the audit trail.
    """
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # TRX-20240315-00012345
    transaction_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType), default=TransactionType.JOURNAL, nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False
    )
    # Related entity, e.g. ("rental", "R-2024-0042")
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        Enum(PaymentMethod), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    lines: Mapped[list["TransactionLine"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionLine.id",
    )

    __table_args__ = (
        Index("ix_transactions_status", "status"),
        Index("ix_transactions_date", "transaction_date"),
        Index("ix_transactions_reference", "reference_type", "reference_id"),
    )

    def __repr__(self) -> str:
        return f"<Transaction(code={self.transaction_code}, status={self.status.value})>"

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal(0))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal(0))

    @property
    def is_balanced(self) -> bool:
        """Check if the lines' debits equal their credits."""
        return self.total_debit == self.total_credit


class TransactionLine(Base):
    """
    Individual debit or credit entry within a transaction.

    Lines are written together with their header and never updated.
    """
    __tablename__ = "transaction_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    debit: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), default=Decimal("0"), nullable=False
    )
    credit: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), default=Decimal("0"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    transaction: Mapped["Transaction"] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint("debit >= 0", name="ck_transaction_lines_debit_non_negative"),
        CheckConstraint("credit >= 0", name="ck_transaction_lines_credit_non_negative"),
        Index("ix_transaction_lines_account_id", "account_id"),
        Index("ix_transaction_lines_transaction_id", "transaction_id"),
    )

    def __repr__(self) -> str:
        return f"<TransactionLine(account={self.account_id}, debit={self.debit}, credit={self.credit})>"

    @property
    def side(self) -> tuple[str, Decimal]:
        """The line as a tagged value: ("debit", amount) or ("credit", amount)."""
        if self.debit:
            return "debit", self.debit
        return "credit", self.credit
