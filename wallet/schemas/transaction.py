"""
Pydantic schemas for transfer, history and statement endpoints.

All monetary amounts are in integer cents (e.g., $10.50 = 1050). Business
rules (positive amount, ceiling, self-transfer, description length) are
enforced by the transfer engine so that direct callers get the same
checks; the schemas only enforce shape and types.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, StrictInt


class TransferRequest(BaseModel):
    """Request body for POST /api/v1/account/transfer."""
    to: str = Field(min_length=1, description="Recipient account id")
    amount_cents: StrictInt = Field(description="Amount in cents")
    description: str | None = None


class RecipientInfo(BaseModel):
    account_id: str
    name: str | None


class TransferResponse(BaseModel):
    """Confirmation of a committed (or replayed) transfer."""
    message: str = "Transfer successful"
    transaction_id: uuid.UUID
    amount_cents: int
    status: str
    created_at: datetime
    recipient: RecipientInfo
    replayed: bool = False


class StatementEntry(BaseModel):
    """One history entry, seen from the viewing account's side."""
    id: uuid.UUID
    amount_cents: int
    direction: str
    counterparty_account_id: str
    counterparty_name: str | None
    description: str | None
    status: str
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TransactionHistoryResponse(BaseModel):
    """GET /api/v1/user/transactions — newest first, paginated."""
    transactions: list[StatementEntry]
    pagination: Pagination


class MiniStatementResponse(BaseModel):
    """GET /api/v1/account/statement — balance plus most recent entries."""
    account_id: str
    current_balance_cents: int
    recent_transactions: list[StatementEntry]
