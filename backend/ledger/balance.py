"""
Account balance recomputation from posted transaction lines.

An account's stored balance is the sum of the lines of its completed
transactions, signed by the account's normal balance:

    asset, expense                 balance = SUM(debit) - SUM(credit)
    liability, equity, income      balance = SUM(credit) - SUM(debit)

Lines of pending or cancelled transactions never count.
"""

import logging
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from sqlalchemy import select, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.config import get_settings
from ledger.exceptions import AccountNotFoundError, PersistenceError
from ledger.models import Account, AccountType, Transaction, TransactionLine, TransactionStatus

logger = logging.getLogger(__name__)


def normal_balance(
    account_type: AccountType, total_debit: Decimal, total_credit: Decimal
) -> Decimal:
    """Apply the account type's sign convention to its debit/credit totals."""
    if account_type.is_debit_normal:
        return total_debit - total_credit
    return total_credit - total_debit


@contextmanager
def _persistence(action: str):
    try:
        yield
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to {action}: {e}") from e


async def completed_totals_by_account(
    session: AsyncSession,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[int, tuple[Decimal, Decimal]]:
    """
    Debit and credit totals per account over completed transactions.

    Args:
        session: Database session
        start_date: Only transactions dated on or after this date
        end_date: Only transactions dated on or before this date

    Returns:
        Mapping of account ID to (total_debit, total_credit). Accounts
        without matching lines are absent.
    """
    conditions = [Transaction.status == TransactionStatus.COMPLETED]
    if start_date is not None:
        conditions.append(Transaction.transaction_date >= start_date)
    if end_date is not None:
        conditions.append(Transaction.transaction_date <= end_date)

    with _persistence("aggregate ledger lines"):
        result = await session.execute(
            select(
                TransactionLine.account_id,
                func.coalesce(func.sum(TransactionLine.debit), 0).label("total_debit"),
                func.coalesce(func.sum(TransactionLine.credit), 0).label("total_credit"),
            )
            .join(Transaction, TransactionLine.transaction_id == Transaction.id)
            .where(and_(*conditions))
            .group_by(TransactionLine.account_id)
        )
        return {
            row.account_id: (Decimal(str(row.total_debit)), Decimal(str(row.total_credit)))
            for row in result
        }


class LedgerBalanceCalculator:
    """
    Recomputes the stored ``balance`` of accounts from their ledger lines.

    The calculator never commits. Run it in the same session as the status
    change that triggered it so both land in one database transaction.

    Args:
        session: Database session
        strict: Raise AccountNotFoundError for unknown accounts instead of
            returning a zero balance. Defaults to ``strict_account_lookup``
            from the settings.
    """

    def __init__(self, session: AsyncSession, strict: bool | None = None):
        self.session = session
        if strict is None:
            strict = get_settings().strict_account_lookup
        self.strict = strict

    async def totals_for(self, account_id: int) -> tuple[Decimal, Decimal]:
        """
        Sum debits and credits of the account's completed transaction lines.

        Returns:
            Tuple of (total_debit, total_credit), zero when there are no lines
        """
        with _persistence(f"sum ledger lines of account {account_id}"):
            result = await self.session.execute(
                select(
                    func.coalesce(func.sum(TransactionLine.debit), 0).label("total_debit"),
                    func.coalesce(func.sum(TransactionLine.credit), 0).label("total_credit"),
                )
                .select_from(TransactionLine)
                .join(Transaction, TransactionLine.transaction_id == Transaction.id)
                .where(
                    and_(
                        TransactionLine.account_id == account_id,
                        Transaction.status == TransactionStatus.COMPLETED,
                    )
                )
            )
            row = result.one()
        return Decimal(str(row.total_debit or 0)), Decimal(str(row.total_credit or 0))

    def _missing(self, account_id: int) -> Decimal:
        if self.strict:
            raise AccountNotFoundError(account_id)
        logger.warning("Account %s not found, balance not recalculated", account_id)
        return Decimal(0)

    async def compute_balance(self, account_id: int) -> Decimal:
        """Compute the balance the account should have, without storing it."""
        with _persistence(f"load account {account_id}"):
            result = await self.session.execute(
                select(Account.account_type).where(Account.id == account_id)
            )
            account_type = result.scalar_one_or_none()
        if account_type is None:
            return self._missing(account_id)

        total_debit, total_credit = await self.totals_for(account_id)
        return normal_balance(account_type, total_debit, total_credit)

    async def recompute_balance(self, account_id: int) -> Decimal:
        """
        Recompute an account's balance and store it on the account row.

        The row is locked (SELECT ... FOR UPDATE) until the surrounding
        database transaction ends, so concurrent approvals touching the
        same account are serialized.

        Args:
            account_id: Account ID

        Returns:
            The new balance. Zero, with nothing written, when the account
            does not exist and the calculator is not strict.

        Raises:
            AccountNotFoundError: Unknown account in strict mode
            PersistenceError: The datastore failed during the read or write
        """
        with _persistence(f"lock account {account_id}"):
            result = await self.session.execute(
                select(Account)
                .where(Account.id == account_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            account = result.scalar_one_or_none()
        if account is None:
            return self._missing(account_id)

        total_debit, total_credit = await self.totals_for(account_id)
        new_balance = normal_balance(account.account_type, total_debit, total_credit)

        with _persistence(f"store balance of account {account_id}"):
            account.balance = new_balance
            await self.session.flush()

        logger.debug(
            "Balance recalculated for account %s: %s",
            account.account_code,
            new_balance,
            extra={"account_code": account.account_code, "balance": new_balance},
        )
        return new_balance

    async def recompute_multiple(self, account_ids: Iterable[int]) -> dict[int, Decimal]:
        """
        Recompute each distinct account once.

        Accounts are independent of each other, so the order is irrelevant
        to the final state. Accounts not listed are left untouched.

        Returns:
            New balance per account ID
        """
        balances = {}
        for account_id in dict.fromkeys(account_ids):
            balances[account_id] = await self.recompute_balance(account_id)
        return balances

    async def recompute_all(self) -> dict[int, Decimal]:
        """Recompute every account in the chart of accounts."""
        with _persistence("list accounts"):
            result = await self.session.execute(select(Account.id).order_by(Account.id))
            account_ids = list(result.scalars().all())
        return await self.recompute_multiple(account_ids)

    async def find_drift(self) -> list[dict]:
        """
        Find accounts whose stored balance disagrees with their ledger lines.

        Nothing is written.

        Returns:
            List of dicts with account_id, account_code, stored and computed
        """
        totals = await completed_totals_by_account(self.session)
        with _persistence("list accounts"):
            result = await self.session.execute(select(Account).order_by(Account.account_code))
            accounts = list(result.scalars().all())

        drift = []
        for account in accounts:
            total_debit, total_credit = totals.get(account.id, (Decimal(0), Decimal(0)))
            computed = normal_balance(account.account_type, total_debit, total_credit)
            if account.balance != computed:
                drift.append({
                    "account_id": account.id,
                    "account_code": account.account_code,
                    "stored": account.balance,
                    "computed": computed,
                })
        return drift
