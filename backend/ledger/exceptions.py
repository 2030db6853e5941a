"""Exception hierarchy for the ledger."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class NotFoundError(LedgerError):
    """Raised when a referenced entity does not exist."""


class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class InvalidTransactionStateError(LedgerError):
    """Raised when a transaction cannot move to the requested status."""


class LedgerValidationError(LedgerError, ValueError):
    """Raised when posting input is malformed."""


class UnbalancedTransactionError(LedgerValidationError):
    """Raised when total debits differ from total credits."""


class PersistenceError(LedgerError):
    """Raised when the datastore fails while reading or writing balances."""
