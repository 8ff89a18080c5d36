"""
Identity service: sign-up opens a wallet, sign-in issues a token.

Sign-up creates the User and its wallet Account in the caller's database
transaction (the request session), so a user never exists without an
account or the other way round. The account id is the string form of the
user id and the account's display name is the user's full name; the
opening balance is INITIAL_BALANCE_CENTS, the ledger's only source of
funds.

Sign-in answers "wrong password", "unknown email" and "deactivated user"
with the same InvalidCredentialsError, so responses cannot be used to probe
which emails are registered. Passwords and tokens are never logged.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.config import settings
from wallet.exceptions import DuplicateEmailError, InvalidCredentialsError
from wallet.models.account import Account
from wallet.models.user import User
from wallet.security import create_access_token, hash_password, verify_password
from wallet.services import account_store

logger = logging.getLogger(__name__)


async def _find_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


def _issue_token(user: User) -> str:
    return create_access_token(user.id, user.account_id)


async def signup(
    db: AsyncSession,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
) -> tuple[User, Account, str]:
    """
    Register a user and open their seeded wallet account.

    Returns:
        Tuple of (User, Account, bearer token).

    Raises:
        DuplicateEmailError: If the email (case-insensitive) is taken.
    """
    email = email.lower()
    if await _find_by_email(db, email) is not None:
        raise DuplicateEmailError(email)

    user = User(
        email=email,
        hashed_password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
    )
    db.add(user)
    try:
        # Assigns user.id, which becomes the account id
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateEmailError(email) from exc

    account = await account_store.create_account(
        db,
        account_id=user.account_id,
        initial_balance_cents=settings.INITIAL_BALANCE_CENTS,
        display_name=user.full_name,
    )
    logger.info(
        "Opened account %s for new user (seeded with %d cents)",
        account.account_id, account.initial_balance_cents,
    )
    return user, account, _issue_token(user)


async def signin(db: AsyncSession, email: str, password: str) -> tuple[User, str]:
    """
    Check credentials and issue a token.

    Raises:
        InvalidCredentialsError: For any unknown email, wrong password or
            deactivated user.
    """
    user = await _find_by_email(db, email.lower())

    if user is None or not user.is_active or not verify_password(password, user.hashed_password):
        logger.info("Sign-in rejected")
        raise InvalidCredentialsError()

    return user, _issue_token(user)
