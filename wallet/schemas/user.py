"""
Pydantic schemas for user profile responses.

hashed_password is NEVER included in any response schema.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel


class UserResponse(BaseModel):
    """Public representation of a User."""
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ProfileResponse(BaseModel):
    """GET /api/v1/user/profile — the user plus their current balance."""
    user: UserResponse
    account_id: str
    balance_cents: int
