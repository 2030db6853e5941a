"""
Pytest fixtures for ledger testing.

Set TEST_DATABASE_URL (with TESTING=true) to run against PostgreSQL;
otherwise every test gets its own SQLite file through aiosqlite.
"""

from datetime import date
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

from ledger.config import get_settings
from ledger.models import Base, Account, Transaction, TransactionStatus
from ledger.repository import AccountRepository, TransactionRepository

settings = get_settings()


@pytest.fixture
def database_url(tmp_path) -> str:
    if settings.testing and settings.test_database_url:
        return settings.test_database_url
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger_test.db'}"


@pytest_asyncio.fixture(scope="function")
async def engine(database_url: str):
    """Create a test database engine."""
    engine = create_async_engine(database_url, echo=False)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def account_repo(session: AsyncSession) -> AccountRepository:
    return AccountRepository(session)


@pytest_asyncio.fixture
async def transaction_repo(session: AsyncSession) -> TransactionRepository:
    return TransactionRepository(session)


@pytest_asyncio.fixture
async def sample_accounts(account_repo: AccountRepository) -> dict[str, Account]:
    accounts = {}

    account_data = [
        ("cash", "1100", "Caja general", "asset"),
        ("bank", "1200", "Bancos", "asset"),
        ("payables", "2100", "Proveedores", "liability"),
        ("capital", "3100", "Capital social", "equity"),
        ("rental_income", "4100", "Ingresos por renta", "income"),
        ("maintenance", "5100", "Mantenimiento de vehiculos", "expense"),
    ]

    for key, code, name, account_type in account_data:
        accounts[key] = await account_repo.create(
            account_code=code,
            account_name=name,
            account_type=account_type,
        )

    return accounts


@pytest_asyncio.fixture
async def post_transaction(session: AsyncSession, transaction_repo: TransactionRepository):
    """
    Post a transaction and force its status, bypassing the workflow.

    Balances are not recomputed.
    """

    async def _post(
        lines: list[dict],
        status: TransactionStatus = TransactionStatus.COMPLETED,
        transaction_date: date = date(2024, 3, 15),
        description: str = "Test entry",
    ) -> Transaction:
        transaction = await transaction_repo.create(
            description=description,
            lines=lines,
            transaction_date=transaction_date,
        )
        transaction.status = status
        await session.flush()
        return transaction

    return _post
