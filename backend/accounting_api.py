from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Optional

from ledger.balance import LedgerBalanceCalculator
from ledger.exceptions import (
    InvalidTransactionStateError,
    LedgerError,
    LedgerValidationError,
    NotFoundError,
    PersistenceError,
)
from ledger.models import (
    Account,
    AccountType,
    PaymentMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ledger.repository import AccountRepository, TransactionRepository
from ledger.session import get_session
from ledger.workflow import TransactionWorkflow

router = APIRouter(prefix="/accounting", tags=["accounting"])


class AccountCreate(BaseModel):
    account_code: str = Field(..., description="Chart of accounts code (e.g., '1100')")
    account_name: str
    account_type: AccountType
    parent_account_id: Optional[int] = None
    description: Optional[str] = None


class AccountUpdate(BaseModel):
    account_name: Optional[str] = None
    account_type: Optional[AccountType] = None
    parent_account_id: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class AccountResponse(BaseModel):
    id: int
    account_code: str
    account_name: str
    account_type: str
    parent_account_id: Optional[int]
    balance: Decimal
    description: Optional[str]
    is_active: bool


class RecalculateRequest(BaseModel):
    account_ids: list[int]


class LineCreate(BaseModel):
    account_id: int
    debit: Decimal = Decimal(0)
    credit: Decimal = Decimal(0)
    description: Optional[str] = None


class TransactionCreate(BaseModel):
    description: str
    lines: list[LineCreate] = Field(..., min_length=2)
    transaction_type: TransactionType = TransactionType.JOURNAL
    transaction_date: date_type = Field(default_factory=date_type.today)
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None


class ApproveRequest(BaseModel):
    approved_by: Optional[int] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class LineResponse(BaseModel):
    id: int
    account_id: int
    debit: Decimal
    credit: Decimal
    description: Optional[str]


class TransactionResponse(BaseModel):
    id: int
    transaction_code: str
    transaction_type: str
    description: str
    transaction_date: date_type
    status: str
    reference_type: Optional[str]
    reference_id: Optional[str]
    payment_method: Optional[str]
    notes: Optional[str]
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    lines: list[LineResponse]


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class TransactionListResponse(BaseModel):
    data: list[TransactionResponse]
    pagination: Pagination


class WorkflowResponse(BaseModel):
    transaction: TransactionResponse
    balances: dict[int, Decimal]


def _account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        account_code=account.account_code,
        account_name=account.account_name,
        account_type=account.account_type.value,
        parent_account_id=account.parent_account_id,
        balance=account.balance,
        description=account.description,
        is_active=account.is_active,
    )


def _transaction_response(transaction: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        transaction_code=transaction.transaction_code,
        transaction_type=transaction.transaction_type.value,
        description=transaction.description,
        transaction_date=transaction.transaction_date,
        status=transaction.status.value,
        reference_type=transaction.reference_type,
        reference_id=transaction.reference_id,
        payment_method=transaction.payment_method.value if transaction.payment_method else None,
        notes=transaction.notes,
        approved_by=transaction.approved_by,
        approved_at=transaction.approved_at,
        cancelled_at=transaction.cancelled_at,
        lines=[
            LineResponse(
                id=line.id,
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
            )
            for line in transaction.lines
        ],
    )


async def _fail(session: AsyncSession, error: LedgerError) -> HTTPException:
    await session.rollback()
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (LedgerValidationError, InvalidTransactionStateError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, PersistenceError):
        return HTTPException(status_code=503, detail="Ledger storage unavailable")
    return HTTPException(status_code=500, detail=str(error))


@router.get("/accounts", response_model=list[AccountResponse])
async def list_accounts(
    account_type: Optional[AccountType] = None,
    is_active: Optional[bool] = None,
    session: AsyncSession = Depends(get_session),
):
    account_repo = AccountRepository(session)
    accounts = await account_repo.list_all(account_type=account_type, is_active=is_active)
    return [_account_response(account) for account in accounts]


@router.post("/accounts", response_model=AccountResponse, status_code=201)
async def create_account(
    account_data: AccountCreate,
    session: AsyncSession = Depends(get_session),
):
    account_repo = AccountRepository(session)

    if await account_repo.get_by_code(account_data.account_code):
        raise HTTPException(
            status_code=400,
            detail=f"Account code {account_data.account_code} already exists",
        )

    try:
        account = await account_repo.create(
            account_code=account_data.account_code,
            account_name=account_data.account_name,
            account_type=account_data.account_type,
            parent_account_id=account_data.parent_account_id,
            description=account_data.description,
        )
        await session.commit()
    except LedgerError as e:
        raise await _fail(session, e)
    except IntegrityError:
        # Unique account_code, another request won the race
        await session.rollback()
        raise HTTPException(
            status_code=400,
            detail=f"Account code {account_data.account_code} already exists",
        )

    return _account_response(account)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: int,
    session: AsyncSession = Depends(get_session),
):
    account = await AccountRepository(session).get_by_id(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return _account_response(account)


@router.get("/accounts/{account_id}/children", response_model=list[AccountResponse])
async def list_account_children(
    account_id: int,
    session: AsyncSession = Depends(get_session),
):
    account_repo = AccountRepository(session)
    if not await account_repo.get_by_id(account_id):
        raise HTTPException(status_code=404, detail="Account not found")
    children = await account_repo.list_children(account_id)
    return [_account_response(child) for child in children]


@router.patch("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    account_id: int,
    account_data: AccountUpdate,
    session: AsyncSession = Depends(get_session),
):
    account_repo = AccountRepository(session)
    try:
        account = await account_repo.update(
            account_id,
            account_name=account_data.account_name,
            parent_account_id=account_data.parent_account_id,
            description=account_data.description,
            is_active=account_data.is_active,
            account_type=account_data.account_type,
        )
        if not account:
            raise HTTPException(status_code=404, detail="Account not found")
        await session.commit()
    except LedgerError as e:
        raise await _fail(session, e)

    return _account_response(account)


@router.post("/accounts/recalculate")
async def recalculate_accounts(
    request: RecalculateRequest,
    session: AsyncSession = Depends(get_session),
):
    calculator = LedgerBalanceCalculator(session, strict=True)
    try:
        balances = await calculator.recompute_multiple(request.account_ids)
        await session.commit()
    except LedgerError as e:
        raise await _fail(session, e)

    return {"balances": balances}


@router.post("/accounts/{account_id}/recalculate")
async def recalculate_account(
    account_id: int,
    session: AsyncSession = Depends(get_session),
):
    calculator = LedgerBalanceCalculator(session, strict=True)
    try:
        balance = await calculator.recompute_balance(account_id)
        await session.commit()
    except LedgerError as e:
        raise await _fail(session, e)

    return {"account_id": account_id, "balance": balance}


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    transaction_type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    account_id: Optional[int] = None,
    start_date: Optional[date_type] = None,
    end_date: Optional[date_type] = None,
    page: int = 1,
    limit: int = 50,
    session: AsyncSession = Depends(get_session),
):
    if page < 1 or limit < 1:
        raise HTTPException(status_code=400, detail="page and limit must be positive")

    transaction_repo = TransactionRepository(session)
    transactions, total = await transaction_repo.list_all(
        transaction_type=transaction_type,
        status=status,
        account_id=account_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )

    return TransactionListResponse(
        data=[_transaction_response(t) for t in transactions],
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            total_pages=(total + limit - 1) // limit,
        ),
    )


@router.post("/transactions", response_model=TransactionResponse, status_code=201)
async def create_transaction(
    transaction_data: TransactionCreate,
    session: AsyncSession = Depends(get_session),
):
    transaction_repo = TransactionRepository(session)
    try:
        transaction = await transaction_repo.create(
            description=transaction_data.description,
            lines=[line.model_dump() for line in transaction_data.lines],
            transaction_date=transaction_data.transaction_date,
            transaction_type=transaction_data.transaction_type,
            reference_type=transaction_data.reference_type,
            reference_id=transaction_data.reference_id,
            payment_method=transaction_data.payment_method,
            notes=transaction_data.notes,
            created_by=transaction_data.created_by,
        )
        await session.commit()
    except LedgerError as e:
        raise await _fail(session, e)

    return _transaction_response(transaction)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: int,
    session: AsyncSession = Depends(get_session),
):
    transaction = await TransactionRepository(session).get_by_id(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return _transaction_response(transaction)


@router.post("/transactions/{transaction_id}/approve", response_model=WorkflowResponse)
async def approve_transaction(
    transaction_id: int,
    request: ApproveRequest | None = None,
    session: AsyncSession = Depends(get_session),
):
    approved_by = request.approved_by if request else None
    try:
        transaction, balances = await TransactionWorkflow(session).approve(
            transaction_id, approved_by=approved_by
        )
        await session.commit()
    except LedgerError as e:
        raise await _fail(session, e)

    return WorkflowResponse(transaction=_transaction_response(transaction), balances=balances)


@router.post("/transactions/{transaction_id}/cancel", response_model=WorkflowResponse)
async def cancel_transaction(
    transaction_id: int,
    request: CancelRequest | None = None,
    session: AsyncSession = Depends(get_session),
):
    reason = request.reason if request else None
    try:
        transaction, balances = await TransactionWorkflow(session).cancel(
            transaction_id, reason=reason
        )
        await session.commit()
    except LedgerError as e:
        raise await _fail(session, e)

    return WorkflowResponse(transaction=_transaction_response(transaction), balances=balances)
