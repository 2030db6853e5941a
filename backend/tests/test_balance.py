from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.balance import LedgerBalanceCalculator, normal_balance
from ledger.exceptions import AccountNotFoundError, PersistenceError
from ledger.models import AccountType, TransactionLine, TransactionStatus
from ledger.repository import AccountRepository


@pytest.fixture
def calculator(session: AsyncSession) -> LedgerBalanceCalculator:
    return LedgerBalanceCalculator(session, strict=False)


def debit(account, amount):
    return {"account_id": account.id, "debit": Decimal(amount)}


def credit(account, amount):
    return {"account_id": account.id, "credit": Decimal(amount)}


@pytest.mark.parametrize("account_type,expected", [
    (AccountType.ASSET, Decimal("70")),
    (AccountType.EXPENSE, Decimal("70")),
    (AccountType.LIABILITY, Decimal("-70")),
    (AccountType.EQUITY, Decimal("-70")),
    (AccountType.INCOME, Decimal("-70")),
])
def test_normal_balance_sign(account_type: AccountType, expected: Decimal):
    assert normal_balance(account_type, Decimal("100"), Decimal("30")) == expected


@pytest.mark.asyncio
class TestRecomputeBalance:

    @pytest.mark.parametrize("key,expected", [
        ("bank", Decimal("70")),
        ("maintenance", Decimal("70")),
        ("payables", Decimal("-70")),
        ("capital", Decimal("-70")),
        ("rental_income", Decimal("-70")),
    ])
    async def test_sign_convention(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
        key: str,
        expected: Decimal,
    ):
        account = sample_accounts[key]
        other = sample_accounts["cash"]
        await post_transaction([debit(account, "100"), credit(other, "100")])
        await post_transaction([debit(other, "30"), credit(account, "30")])

        assert await calculator.totals_for(account.id) == (Decimal("100"), Decimal("30"))
        assert await calculator.recompute_balance(account.id) == expected
        assert account.balance == expected

    async def test_rental_scenario(
        self,
        calculator: LedgerBalanceCalculator,
        account_repo: AccountRepository,
        sample_accounts: dict,
        post_transaction,
    ):
        cash = sample_accounts["cash"]
        await post_transaction([debit(cash, "1200"), credit(sample_accounts["rental_income"], "1200")])
        await post_transaction([debit(sample_accounts["maintenance"], "200"), credit(cash, "200")])

        assert await calculator.recompute_balance(cash.id) == Decimal("1000")

        await post_transaction(
            [debit(cash, "5000"), credit(sample_accounts["capital"], "5000")],
            status=TransactionStatus.CANCELLED,
        )

        assert await calculator.recompute_balance(cash.id) == Decimal("1000")
        stored = await account_repo.get_by_id(cash.id)
        assert stored.balance == Decimal("1000")

    async def test_pending_lines_excluded(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        bank = sample_accounts["bank"]
        capital = sample_accounts["capital"]
        await post_transaction([debit(bank, "50"), credit(capital, "50")])
        await post_transaction(
            [debit(bank, "1000"), credit(capital, "1000")],
            status=TransactionStatus.PENDING,
        )

        assert await calculator.recompute_balance(bank.id) == Decimal("50")
        assert await calculator.recompute_balance(capital.id) == Decimal("50")

    async def test_empty_ledger_is_zero(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
    ):
        payables = sample_accounts["payables"]

        assert await calculator.totals_for(payables.id) == (Decimal(0), Decimal(0))
        balance = await calculator.recompute_balance(payables.id)

        assert balance is not None
        assert balance == Decimal(0)
        assert payables.balance == Decimal(0)

    async def test_idempotent(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        cash = sample_accounts["cash"]
        await post_transaction([debit(cash, "350.25"), credit(sample_accounts["rental_income"], "350.25")])

        first = await calculator.recompute_balance(cash.id)
        second = await calculator.recompute_balance(cash.id)

        assert first == second == Decimal("350.25")

    async def test_compute_balance_does_not_write(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        cash = sample_accounts["cash"]
        await post_transaction([debit(cash, "80"), credit(sample_accounts["capital"], "80")])

        assert await calculator.compute_balance(cash.id) == Decimal("80")
        assert cash.balance == Decimal(0)

    async def test_lines_are_not_validated(
        self,
        session: AsyncSession,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        cash = sample_accounts["cash"]
        transaction = await post_transaction([debit(cash, "10"), credit(sample_accounts["capital"], "10")])
        # Both sides on one line, written around the repository
        session.add(TransactionLine(
            transaction_id=transaction.id,
            account_id=cash.id,
            debit=Decimal("5"),
            credit=Decimal("2"),
        ))
        await session.flush()

        assert await calculator.recompute_balance(cash.id) == Decimal("13")

    async def test_missing_account_returns_zero(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
    ):
        assert await calculator.recompute_balance(999_999) == Decimal(0)
        assert await calculator.compute_balance(999_999) == Decimal(0)

    async def test_missing_account_strict(self, session: AsyncSession, sample_accounts: dict):
        calculator = LedgerBalanceCalculator(session, strict=True)

        with pytest.raises(AccountNotFoundError) as exc_info:
            await calculator.recompute_balance(999_999)

        assert exc_info.value.account_id == 999_999

    async def test_persistence_failure(
        self,
        session: AsyncSession,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        monkeypatch,
    ):
        async def broken_execute(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(session, "execute", broken_execute)

        with pytest.raises(PersistenceError) as exc_info:
            await calculator.recompute_balance(sample_accounts["cash"].id)

        assert isinstance(exc_info.value.__cause__, OperationalError)


@pytest.mark.asyncio
class TestRecomputeMultiple:

    async def _seed(self, sample_accounts: dict, post_transaction):
        await post_transaction([
            debit(sample_accounts["cash"], "300"),
            debit(sample_accounts["bank"], "700"),
            credit(sample_accounts["capital"], "1000"),
        ])

    async def test_deduplicates(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
        monkeypatch,
    ):
        await self._seed(sample_accounts, post_transaction)
        calls = []
        original = calculator.recompute_balance

        async def counting(account_id):
            calls.append(account_id)
            return await original(account_id)

        monkeypatch.setattr(calculator, "recompute_balance", counting)
        cash_id = sample_accounts["cash"].id
        bank_id = sample_accounts["bank"].id

        balances = await calculator.recompute_multiple([cash_id, cash_id, bank_id])

        assert calls == [cash_id, bank_id]
        assert balances == {cash_id: Decimal("300"), bank_id: Decimal("700")}

    async def test_order_independent(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        await self._seed(sample_accounts, post_transaction)
        cash = sample_accounts["cash"]
        bank = sample_accounts["bank"]

        await calculator.recompute_multiple([cash.id, bank.id])
        forward = (cash.balance, bank.balance)
        await calculator.recompute_multiple([bank.id, cash.id])

        assert (cash.balance, bank.balance) == forward == (Decimal("300"), Decimal("700"))

    async def test_unlisted_accounts_untouched(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        await self._seed(sample_accounts, post_transaction)

        await calculator.recompute_multiple([sample_accounts["cash"].id])

        assert sample_accounts["cash"].balance == Decimal("300")
        assert sample_accounts["bank"].balance == Decimal(0)
        assert sample_accounts["capital"].balance == Decimal(0)

    async def test_recompute_all(
        self,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        await self._seed(sample_accounts, post_transaction)

        balances = await calculator.recompute_all()

        assert len(balances) == len(sample_accounts)
        assert balances[sample_accounts["capital"].id] == Decimal("1000")
        assert balances[sample_accounts["payables"].id] == Decimal(0)

    async def test_find_drift(
        self,
        session: AsyncSession,
        calculator: LedgerBalanceCalculator,
        sample_accounts: dict,
        post_transaction,
    ):
        await self._seed(sample_accounts, post_transaction)
        await calculator.recompute_all()
        assert await calculator.find_drift() == []

        sample_accounts["bank"].balance = Decimal("5")
        await session.flush()

        drift = await calculator.find_drift()

        assert len(drift) == 1
        assert drift[0]["account_code"] == "1200"
        assert drift[0]["stored"] == Decimal("5")
        assert drift[0]["computed"] == Decimal("700")
