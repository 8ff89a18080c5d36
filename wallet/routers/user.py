"""
User router — sign-up, sign-in, profile and transaction history.

Endpoints:
  POST /api/v1/user/signup        — Register, open a seeded wallet account, get a token
  POST /api/v1/user/signin        — Authenticate and get a token
  GET  /api/v1/user/profile       — Own profile plus current balance
  GET  /api/v1/user/transactions  — Own transfer history, newest first, paginated

Security notes:
  - Plaintext passwords exist only in memory during request processing;
    they are hashed before any database operation and never logged.
  - JWT tokens appear only in response bodies, which are not logged.
"""

import math

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.config import settings
from wallet.database import get_db
from wallet.dependencies import get_current_user
from wallet.models.user import User
from wallet.schemas.auth import (
    UserSignupRequest,
    UserSigninRequest,
    TokenResponse,
    SignupResponse,
)
from wallet.schemas.transaction import Pagination, TransactionHistoryResponse
from wallet.schemas.user import ProfileResponse, UserResponse
from wallet.services import auth_service, statement_service

router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def signup(
    request: UserSignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new wallet user.

    Creates the User and opens their wallet account in a single atomic
    transaction. The account starts with the configured opening balance.
    Returns a JWT token so the user is immediately signed in.
    """
    user, account, token = await auth_service.signup(
        db=db,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
    )

    return SignupResponse(
        user_id=user.id,
        account_id=account.account_id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        balance_cents=account.balance_cents,
        token=token,
    )


@router.post(
    "/signin",
    response_model=TokenResponse,
    summary="Authenticate and get a token",
)
async def signin(
    request: UserSigninRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with email and password.

    The returned bearer token must be sent on every other request:

        Authorization: Bearer <token>
    """
    user, token = await auth_service.signin(
        db=db,
        email=request.email,
        password=request.password,
    )
    return TokenResponse(token=token, user_id=user.id, account_id=user.account_id)


@router.get(
    "/profile",
    response_model=ProfileResponse,
    summary="Get your profile and balance",
)
async def get_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    balance_cents = await statement_service.get_balance(db, user.account_id)
    return ProfileResponse(
        user=UserResponse.model_validate(user),
        account_id=user.account_id,
        balance_cents=balance_cents,
    )


@router.get(
    "/transactions",
    response_model=TransactionHistoryResponse,
    summary="List your transfer history",
)
async def list_transactions(
    page: int = Query(1, description="1-based page number"),
    limit: int | None = Query(None, description="Entries per page"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Transfers sent and received by the authenticated user, newest first.

    The pagination block carries the total count and number of pages.
    Out-of-range page or limit values are rejected with 400.
    """
    page_size = limit if limit is not None else settings.DEFAULT_PAGE_SIZE
    entries, total = await statement_service.list_statement(
        db, user.account_id, page=page, page_size=page_size
    )

    return TransactionHistoryResponse(
        transactions=entries,
        pagination=Pagination(
            page=page,
            limit=page_size,
            total=total,
            pages=math.ceil(total / page_size),
        ),
    )
