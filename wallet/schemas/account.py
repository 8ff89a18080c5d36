"""
Pydantic schemas for balance endpoints.

All monetary amounts are expressed in integer cents.
"""

from pydantic import BaseModel


class BalanceResponse(BaseModel):
    """GET /api/v1/account/balance."""
    account_id: str
    balance_cents: int
