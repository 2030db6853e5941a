"""
Repository pattern for ledger database operations.

Provides clean abstractions for CRUD operations on accounts and
transactions. Repositories flush but never commit: the caller owns the
surrounding database transaction.
"""

import secrets
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ledger.exceptions import (
    AccountNotFoundError,
    LedgerValidationError,
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


def generate_transaction_code(now: datetime | None = None) -> str:
    """Build a transaction code such as ``TRX-20240315-04718263``."""
    if now is None:
        now = datetime.now()
    return f"TRX-{now:%Y%m%d}-{secrets.randbelow(10**8):08d}"


# Matches the Numeric(12, 2) amount columns
AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")


def _to_amount(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise LedgerValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise LedgerValidationError(f"Invalid amount: {value!r}")
    if abs(amount) > MAX_AMOUNT:
        raise LedgerValidationError(f"Amount out of range: {value!r}")
    if amount != amount.quantize(AMOUNT_QUANTUM):
        raise LedgerValidationError(f"Amount has more than 2 decimal places: {value!r}")
    return amount


class AccountRepository:
    """Repository for Account operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        account_code: str,
        account_name: str,
        account_type: AccountType | str,
        parent_account_id: int | None = None,
        description: str | None = None,
    ) -> Account:
        """
        Create a new account with a zero balance.

        Args:
            account_code: Unique chart of accounts code (e.g., "1100")
            account_name: Human readable name
            account_type: AccountType or its value ("asset", "income", ...)
            parent_account_id: Optional parent for sub-accounts
            description: Optional description

        Returns:
            The created Account instance
        """
        try:
            account_type = AccountType(account_type)
        except ValueError:
            raise LedgerValidationError(
                f"Invalid account type '{account_type}'. "
                f"Must be one of: {[t.value for t in AccountType]}"
            )

        if parent_account_id is not None and await self.get_by_id(parent_account_id) is None:
            raise AccountNotFoundError(parent_account_id)

        account = Account(
            account_code=account_code,
            account_name=account_name,
            account_type=account_type,
            parent_account_id=parent_account_id,
            description=description,
            balance=Decimal(0),
        )
        self.session.add(account)
        await self.session.flush()
        return account

    async def get_by_id(self, account_id: int) -> Account | None:
        """Get an account by ID."""
        result = await self.session.execute(
            select(Account).where(Account.id == account_id)
        )
        return result.scalar_one_or_none()

    async def get_by_code(self, account_code: str) -> Account | None:
        """Get an account by its chart of accounts code."""
        result = await self.session.execute(
            select(Account).where(Account.account_code == account_code)
        )
        return result.scalar_one_or_none()

    async def list_all(
        self,
        account_type: AccountType | None = None,
        is_active: bool | None = None,
    ) -> list[Account]:
        """
        List all accounts with optional filters.

        Args:
            account_type: Filter by account type
            is_active: Filter by active status

        Returns:
            List of Account instances ordered by code
        """
        query = select(Account).order_by(Account.account_code)

        if account_type is not None:
            query = query.where(Account.account_type == account_type)
        if is_active is not None:
            query = query.where(Account.is_active == is_active)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_children(self, account_id: int) -> list[Account]:
        """List the direct sub-accounts of an account."""
        result = await self.session.execute(
            select(Account)
            .where(Account.parent_account_id == account_id)
            .order_by(Account.account_code)
        )
        return list(result.scalars().all())

    async def update(
        self,
        account_id: int,
        account_name: str | None = None,
        parent_account_id: int | None = None,
        description: str | None = None,
        is_active: bool | None = None,
        account_type: AccountType | str | None = None,
    ) -> Account | None:
        """
        Update the editable fields of an account.

        The account type is fixed at creation: historical balances were
        computed with its sign convention. Passing a different type raises.
        ``balance`` is not editable here at all.

        Returns:
            Updated Account or None if not found
        """
        account = await self.get_by_id(account_id)
        if account is None:
            return None

        if account_type is not None and AccountType(account_type) != account.account_type:
            raise LedgerValidationError(
                f"Account type of {account.account_code} cannot be changed"
            )
        if parent_account_id is not None:
            if parent_account_id == account.id:
                raise LedgerValidationError("An account cannot be its own parent")
            if await self.get_by_id(parent_account_id) is None:
                raise AccountNotFoundError(parent_account_id)
            account.parent_account_id = parent_account_id

        if account_name is not None:
            account.account_name = account_name
        if description is not None:
            account.description = description
        if is_active is not None:
            account.is_active = is_active

        await self.session.flush()
        return account

    async def deactivate(self, account_id: int) -> Account | None:
        return await self.update(account_id, is_active=False)

    async def has_lines(self, account_id: int) -> bool:
        result = await self.session.execute(
            select(func.count(TransactionLine.id)).where(
                TransactionLine.account_id == account_id
            )
        )
        return bool(result.scalar())

    async def delete(self, account_id: int) -> bool:
        """
        Delete an account that has never been posted to.

        Returns:
            True if deleted, False if not found

        Raises:
            LedgerValidationError: If ledger lines reference the account
        """
        account = await self.get_by_id(account_id)
        if account is None:
            return False
        if await self.has_lines(account_id):
            raise LedgerValidationError(
                f"Account {account.account_code} has ledger lines; deactivate it instead"
            )
        await self.session.delete(account)
        await self.session.flush()
        return True


class TransactionRepository:
    """Repository for Transaction operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        description: str,
        lines: list[dict[str, Any]],
        transaction_date: date | None = None,
        transaction_type: TransactionType | str = TransactionType.JOURNAL,
        reference_type: str | None = None,
        reference_id: str | None = None,
        payment_method: PaymentMethod | str | None = None,
        notes: str | None = None,
        created_by: int | None = None,
    ) -> Transaction:
        """
        Create a pending transaction together with its lines.

        Args:
            description: Transaction description
            lines: List of line dicts with keys:
                - account_id: Account ID
                - debit: Non-negative amount (default 0)
                - credit: Non-negative amount (default 0)
                - description: Optional line description
            transaction_date: Accounting date (default: today)
            transaction_type: income, expense, transfer or journal
            reference_type: Related entity kind (e.g. "rental")
            reference_id: Related entity ID
            payment_method: cash, card, transfer, check or other
            notes: Free-form notes
            created_by: ID of the user posting the transaction

        Returns:
            The created Transaction with its lines loaded

        Raises:
            LedgerValidationError: If a line is malformed or the lines don't balance
            AccountNotFoundError: If a line references an unknown account
        """
        if len(lines) < 2:
            raise LedgerValidationError("A transaction needs at least two lines")

        parsed = []
        total_debit = Decimal(0)
        total_credit = Decimal(0)
        for i, line_data in enumerate(lines):
            debit = _to_amount(line_data.get("debit"))
            credit = _to_amount(line_data.get("credit"))
            if debit < 0 or credit < 0:
                raise LedgerValidationError(f"Line {i}: amounts must not be negative")
            if debit and credit:
                raise LedgerValidationError(f"Line {i}: carries both a debit and a credit")
            if not debit and not credit:
                raise LedgerValidationError(f"Line {i}: has no amount")
            total_debit += debit
            total_credit += credit
            parsed.append((line_data["account_id"], debit, credit, line_data.get("description")))

        if total_debit != total_credit:
            raise UnbalancedTransactionError(
                f"Transaction lines do not balance: debit {total_debit} != credit {total_credit}"
            )

        await self._check_accounts({account_id for account_id, *_ in parsed})

        transaction = Transaction(
            transaction_code=generate_transaction_code(),
            transaction_type=TransactionType(transaction_type),
            description=description,
            transaction_date=transaction_date or date.today(),
            status=TransactionStatus.PENDING,
            reference_type=reference_type,
            reference_id=reference_id,
            payment_method=PaymentMethod(payment_method) if payment_method else None,
            notes=notes,
            created_by=created_by,
        )
        for account_id, debit, credit, line_description in parsed:
            transaction.lines.append(
                TransactionLine(
                    account_id=account_id,
                    debit=debit,
                    credit=credit,
                    description=line_description,
                )
            )
        self.session.add(transaction)
        await self.session.flush()

        # Re-fetch with eager loading to avoid lazy loading issues
        return await self.get_by_id(transaction.id)

    async def _check_accounts(self, account_ids: set[int]) -> None:
        result = await self.session.execute(
            select(Account.id, Account.is_active).where(Account.id.in_(sorted(account_ids)))
        )
        found = {row.id: row.is_active for row in result}
        for account_id in sorted(account_ids):
            if account_id not in found:
                raise AccountNotFoundError(account_id)
            if not found[account_id]:
                raise LedgerValidationError(f"Account {account_id} is inactive")

    async def get_by_id(
        self, transaction_id: int, include_lines: bool = True, lock: bool = False
    ) -> Transaction | None:
        """
        Get a transaction by ID.

        Args:
            transaction_id: Transaction ID
            include_lines: Whether to eagerly load lines
            lock: Lock the row (SELECT ... FOR UPDATE) until the surrounding
                database transaction ends, and reload its columns from the
                database even when the session already holds the object

        Returns:
            Transaction or None if not found
        """
        query = select(Transaction).where(Transaction.id == transaction_id)

        if include_lines:
            query = query.options(selectinload(Transaction.lines))
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_code(self, transaction_code: str) -> Transaction | None:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.transaction_code == transaction_code)
            .options(selectinload(Transaction.lines))
        )
        return result.scalar_one_or_none()

    async def list_all(
        self,
        transaction_type: TransactionType | None = None,
        status: TransactionStatus | None = None,
        account_id: int | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Transaction], int]:
        """
        List transactions, newest first, one page at a time.

        Args:
            transaction_type: Filter by type
            status: Filter by status
            account_id: Only transactions with a line on this account
            start_date: Start date (inclusive)
            end_date: End date (inclusive)
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (transactions on the page, total matching count)
        """
        conditions = []
        if transaction_type is not None:
            conditions.append(Transaction.transaction_type == transaction_type)
        if status is not None:
            conditions.append(Transaction.status == status)
        if start_date is not None:
            conditions.append(Transaction.transaction_date >= start_date)
        if end_date is not None:
            conditions.append(Transaction.transaction_date <= end_date)
        if account_id is not None:
            conditions.append(
                Transaction.id.in_(
                    select(TransactionLine.transaction_id).where(
                        TransactionLine.account_id == account_id
                    )
                )
            )

        where = and_(True, *conditions)

        total = await self.session.execute(
            select(func.count(Transaction.id)).where(where)
        )

        result = await self.session.execute(
            select(Transaction)
            .where(where)
            .options(selectinload(Transaction.lines))
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(result.scalars().all()), total.scalar() or 0

    async def affected_account_ids(self, transaction_id: int) -> list[int]:
        """IDs of the accounts the transaction's lines post to."""
        result = await self.session.execute(
            select(TransactionLine.account_id)
            .where(TransactionLine.transaction_id == transaction_id)
            .distinct()
            .order_by(TransactionLine.account_id)
        )
        return list(result.scalars().all())
