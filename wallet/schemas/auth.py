"""
Pydantic schemas for sign-up and sign-in.

Pydantic validates incoming data automatically — if a required field is
missing or the wrong type, FastAPI returns a 422 error before our code
even runs.
"""

import uuid

from pydantic import BaseModel, EmailStr, Field


class UserSignupRequest(BaseModel):
    """Request body for POST /api/v1/user/signup."""
    email: EmailStr                                # Validates email format
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)


class UserSigninRequest(BaseModel):
    """Request body for POST /api/v1/user/signin."""
    email: EmailStr
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    """Response body for a successful sign-in — contains the JWT."""
    token: str
    token_type: str = "bearer"
    user_id: uuid.UUID
    account_id: str


class SignupResponse(BaseModel):
    """Response body for a successful sign-up — user info, opening balance and JWT."""
    user_id: uuid.UUID
    account_id: str
    email: str
    first_name: str
    last_name: str
    balance_cents: int
    token: str
    token_type: str = "bearer"
