"""
Transaction approval and cancellation.

Both operations change a transaction's status and recompute the balances
of the accounts its lines touch, in the caller's session. Nothing is
committed here: wrap the call in ``session_context()`` (or commit/rollback
around it) so the status and the balances become visible together.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from ledger.balance import LedgerBalanceCalculator
from ledger.exceptions import InvalidTransactionStateError, TransactionNotFoundError
from ledger.models import Transaction, TransactionStatus
from ledger.repository import TransactionRepository

logger = logging.getLogger(__name__)


class TransactionWorkflow:

    def __init__(
        self,
        session: AsyncSession,
        calculator: LedgerBalanceCalculator | None = None,
    ):
        self.session = session
        self.transactions = TransactionRepository(session)
        self.calculator = calculator or LedgerBalanceCalculator(session)

    async def _load(self, transaction_id: int) -> Transaction:
        # Status check and write happen under one row lock
        transaction = await self.transactions.get_by_id(transaction_id, lock=True)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    async def _recompute(self, transaction: Transaction) -> dict[int, Decimal]:
        account_ids = await self.transactions.affected_account_ids(transaction.id)
        return await self.calculator.recompute_multiple(account_ids)

    async def approve(
        self, transaction_id: int, approved_by: int | None = None
    ) -> tuple[Transaction, dict[int, Decimal]]:
        """
        Mark a pending transaction completed and recompute its accounts.

        Args:
            transaction_id: Transaction ID
            approved_by: ID of the approving user

        Returns:
            Tuple of (transaction, new balance per affected account ID)

        Raises:
            TransactionNotFoundError: Unknown transaction
            InvalidTransactionStateError: The transaction is not pending
        """
        transaction = await self._load(transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidTransactionStateError(
                f"Transaction {transaction.transaction_code} already processed "
                f"({transaction.status.value})"
            )

        transaction.status = TransactionStatus.COMPLETED
        transaction.approved_by = approved_by
        transaction.approved_at = datetime.now(timezone.utc)
        await self.session.flush()

        balances = await self._recompute(transaction)
        logger.info(
            "Transaction %s approved, %d account(s) recalculated",
            transaction.transaction_code,
            len(balances),
            extra={"transaction_code": transaction.transaction_code, "status": "completed"},
        )
        return transaction, balances

    async def cancel(
        self, transaction_id: int, reason: str | None = None
    ) -> tuple[Transaction, dict[int, Decimal]]:
        """
        Void a pending or completed transaction.

        The lines stay in the ledger. A completed transaction's accounts are
        recomputed so its lines stop counting; a pending one never counted.

        Args:
            transaction_id: Transaction ID
            reason: Stored in the transaction notes

        Returns:
            Tuple of (transaction, new balance per recomputed account ID)

        Raises:
            TransactionNotFoundError: Unknown transaction
            InvalidTransactionStateError: The transaction is already cancelled
        """
        transaction = await self._load(transaction_id)
        if transaction.status == TransactionStatus.CANCELLED:
            raise InvalidTransactionStateError(
                f"Transaction {transaction.transaction_code} is already cancelled"
            )

        was_completed = transaction.status == TransactionStatus.COMPLETED
        transaction.status = TransactionStatus.CANCELLED
        transaction.cancelled_at = datetime.now(timezone.utc)
        if reason:
            transaction.notes = reason
        await self.session.flush()

        balances = await self._recompute(transaction) if was_completed else {}
        logger.info(
            "Transaction %s cancelled%s",
            transaction.transaction_code,
            " and reversed" if was_completed else "",
            extra={"transaction_code": transaction.transaction_code, "status": "cancelled"},
        )
        return transaction, balances
