"""
Account router — balance, transfers and the mini statement.

Endpoints:
  GET  /api/v1/account/balance    — Current balance of the caller's account
  POST /api/v1/account/transfer   — Send money to another account
  GET  /api/v1/account/statement  — Balance plus the most recent entries

The sender of a transfer is always the authenticated caller's own account;
the request body only names the recipient. The transfer itself runs in the
transfer engine, which owns its own unit of work and does not share the
request's session.
"""

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.config import settings
from wallet.database import Database, get_database, get_db
from wallet.dependencies import get_current_user
from wallet.exceptions import InvalidRequestError
from wallet.models.user import User
from wallet.schemas.account import BalanceResponse
from wallet.schemas.transaction import (
    MiniStatementResponse,
    RecipientInfo,
    TransferRequest,
    TransferResponse,
)
from wallet.services import statement_service, transfer_service

router = APIRouter()


@router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Check your balance",
)
async def get_balance(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    balance_cents = await statement_service.get_balance(db, user.account_id)
    return BalanceResponse(account_id=user.account_id, balance_cents=balance_cents)


@router.post(
    "/transfer",
    response_model=TransferResponse,
    summary="Transfer money to another account",
)
async def create_transfer(
    request: TransferRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    """
    Transfer money from your account to another account.

    This is an atomic operation — the debit, the credit and the transaction
    record are committed together or not at all.

    - **to**: Recipient account id (cannot be your own)
    - **amount_cents**: Positive integer in cents (e.g., $50.00 = 5000)
    - **description**: Optional memo
    - **Idempotency-Key** header: Optional; resending a request with the same
      key returns the original result instead of transferring twice
    """
    if settings.REQUIRE_IDEMPOTENCY_KEY and not idempotency_key:
        raise InvalidRequestError("Idempotency-Key header is required")

    result = await transfer_service.transfer(
        database,
        from_account_id=user.account_id,
        to_account_id=request.to,
        amount_cents=request.amount_cents,
        description=request.description,
        idempotency_key=idempotency_key,
    )

    txn = result.transaction
    return TransferResponse(
        transaction_id=txn.id,
        amount_cents=txn.amount_cents,
        status=txn.status,
        created_at=txn.created_at,
        recipient=RecipientInfo(account_id=txn.to_account_id, name=result.recipient_name),
        replayed=result.replayed,
    )


@router.get(
    "/statement",
    response_model=MiniStatementResponse,
    summary="Get a mini statement",
)
async def get_statement(
    limit: int = Query(5, description="Number of recent entries"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Current balance plus the `limit` most recent transfers (debit/credit)."""
    return await statement_service.mini_statement(db, user.account_id, limit=limit)
