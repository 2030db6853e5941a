"""
Financial statements built from the ledger.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from ledger.balance import completed_totals_by_account, normal_balance
from ledger.models import Account, AccountType
from ledger.repository import AccountRepository


def _account_entry(account: Account, balance: Decimal) -> dict:
    return {
        "id": account.id,
        "account_code": account.account_code,
        "account_name": account.account_name,
        "balance": balance,
    }


async def balance_sheet(session: AsyncSession) -> dict:
    """
    Balance sheet from the stored account balances.

    Income and expense accounts are not closed into equity, so their net
    is reported as ``current_earnings`` and included in the balance check.
    """
    account_repo = AccountRepository(session)

    sections = {}
    for account_type in (AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY):
        accounts = await account_repo.list_all(account_type=account_type, is_active=True)
        sections[account_type] = {
            "accounts": [_account_entry(a, a.balance) for a in accounts],
            "total": sum((a.balance for a in accounts), Decimal(0)),
        }

    income = await account_repo.list_all(account_type=AccountType.INCOME)
    expenses = await account_repo.list_all(account_type=AccountType.EXPENSE)
    current_earnings = (
        sum((a.balance for a in income), Decimal(0))
        - sum((a.balance for a in expenses), Decimal(0))
    )

    assets = sections[AccountType.ASSET]
    liabilities = sections[AccountType.LIABILITY]
    equity = sections[AccountType.EQUITY]
    return {
        "assets": assets,
        "liabilities": liabilities,
        "equity": equity,
        "current_earnings": current_earnings,
        "is_balanced": assets["total"]
        == liabilities["total"] + equity["total"] + current_earnings,
    }


async def income_statement(
    session: AsyncSession,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    """
    Income statement over completed transactions dated within the range.

    Args:
        session: Database session
        start_date: Period start (inclusive), open-ended when None
        end_date: Period end (inclusive), open-ended when None
    """
    account_repo = AccountRepository(session)
    totals = await completed_totals_by_account(session, start_date, end_date)

    def rows(accounts: list[Account]) -> list[dict]:
        entries = []
        for account in accounts:
            if account.id not in totals:
                continue
            total_debit, total_credit = totals[account.id]
            entries.append(
                _account_entry(
                    account, normal_balance(account.account_type, total_debit, total_credit)
                )
            )
        return entries

    income = rows(await account_repo.list_all(account_type=AccountType.INCOME))
    expenses = rows(await account_repo.list_all(account_type=AccountType.EXPENSE))
    total_income = sum((e["balance"] for e in income), Decimal(0))
    total_expenses = sum((e["balance"] for e in expenses), Decimal(0))

    return {
        "start_date": start_date,
        "end_date": end_date,
        "income": {"accounts": income, "total": total_income},
        "expenses": {"accounts": expenses, "total": total_expenses},
        "net_income": total_income - total_expenses,
    }


async def trial_balance(session: AsyncSession, as_of_date: date | None = None) -> dict:
    """Debit and credit totals per account; both columns must agree."""
    account_repo = AccountRepository(session)
    totals = await completed_totals_by_account(session, end_date=as_of_date)

    entries = []
    total_debit = Decimal(0)
    total_credit = Decimal(0)
    for account in await account_repo.list_all():
        if account.id not in totals:
            continue
        debit, credit = totals[account.id]
        total_debit += debit
        total_credit += credit
        entries.append({
            "id": account.id,
            "account_code": account.account_code,
            "account_name": account.account_name,
            "account_type": account.account_type.value,
            "debit": debit,
            "credit": credit,
        })

    return {
        "as_of_date": as_of_date,
        "accounts": entries,
        "total_debit": total_debit,
        "total_credit": total_credit,
        "is_balanced": total_debit == total_credit,
    }
