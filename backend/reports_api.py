from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date as date_type
from typing import Optional

from ledger import reports
from ledger.balance import LedgerBalanceCalculator
from ledger.exceptions import PersistenceError
from ledger.session import get_session

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/balance-sheet")
async def get_balance_sheet(session: AsyncSession = Depends(get_session)):
    try:
        return await reports.balance_sheet(session)
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")


@router.get("/income-statement")
async def get_income_statement(
    start_date: Optional[date_type] = None,
    end_date: Optional[date_type] = None,
    session: AsyncSession = Depends(get_session),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    try:
        return await reports.income_statement(session, start_date, end_date)
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")


@router.get("/trial-balance")
async def get_trial_balance(
    as_of_date: Optional[date_type] = None,
    session: AsyncSession = Depends(get_session),
):
    try:
        return await reports.trial_balance(session, as_of_date)
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")


@router.get("/balance-drift")
async def get_balance_drift(session: AsyncSession = Depends(get_session)):
    try:
        drift = await LedgerBalanceCalculator(session).find_drift()
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Ledger storage unavailable")
    return {"accounts": drift, "count": len(drift)}
