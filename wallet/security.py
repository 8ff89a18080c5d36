"""
Password hashing and bearer tokens for the identity layer.

Passwords:
  Argon2id through passlib's CryptContext. Only the hash is stored; the
  context re-verifies old hashes if the scheme list ever changes.

Tokens:
  A signed JWT (SECRET_KEY, ALGORITHM) carrying the user id in `sub` and
  the wallet account id in `acct`, plus `iat`/`exp`. The transfer core only
  ever sees the account id resolved from a verified token, never a
  client-supplied sender.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from wallet.config import settings

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


@dataclass(frozen=True)
class TokenClaims:
    user_id: uuid.UUID
    account_id: str
    expires_at: datetime


def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Constant-time check of a password against its stored Argon2 hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    user_id: uuid.UUID,
    account_id: str,
    expires_in: timedelta | None = None,
) -> str:
    """
    Issue a bearer token for a signed-in user.

    Args:
        user_id: The User's id (`sub` claim).
        account_id: The user's wallet account (`acct` claim).
        expires_in: Lifetime; defaults to ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_in or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_id),
        "acct": account_id,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    """
    Verify a token's signature and expiry and return its claims.

    Raises:
        JWTError: Expired, tampered with, or missing the expected claims.
    """
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])

    subject = payload.get("sub")
    account_id = payload.get("acct")
    if not subject or not account_id:
        raise JWTError("Token is missing the sub or acct claim")
    try:
        user_id = uuid.UUID(subject)
    except ValueError as exc:
        raise JWTError("Token subject is not a user id") from exc

    return TokenClaims(
        user_id=user_id,
        account_id=account_id,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
