"""
Caller resolution for protected routes.

The transfer core never authenticates anyone. Every protected route depends
on get_current_user, which turns the bearer token into an active User whose
account id matches the one the token was issued for. Anything else (no
token, bad signature, expired, unknown or deactivated user) is a 401 before
the route handler runs.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_db
from wallet.models.user import User
from wallet.security import decode_access_token

# Reads "Authorization: Bearer <token>"; tokenUrl only feeds the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/user/signin")


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        claims = decode_access_token(token)
    except JWTError:
        raise _unauthorized()

    user = await db.get(User, claims.user_id)
    if user is None or not user.is_active or user.account_id != claims.account_id:
        raise _unauthorized()

    return user
