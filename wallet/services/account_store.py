"""
Account store — durable balances with an atomic conditional update.

This module is the only code allowed to change `Account.balance_cents`.

Conditional update:
  apply_delta() issues a single statement

      UPDATE accounts
         SET balance_cents = balance_cents + :delta, version = version + 1
       WHERE account_id = :id AND balance_cents + :delta >= 0
   RETURNING balance_cents

  The check and the write happen atomically inside the database, so two
  concurrent debits of the same account serialize at the row: the second
  one re-evaluates the WHERE clause against the committed result of the
  first. There is no read-then-write window in which an update can be lost
  or a balance pushed below zero. Zero rows updated means the account is
  missing or the balance is too low; the stored balance is untouched.

Row locking:
  lock_accounts() takes `SELECT ... FOR UPDATE` locks on every account a
  transfer touches, always in ascending account_id order. Two transfers
  between the same pair of accounts in opposite directions therefore lock
  in the same order and cannot deadlock.

SQLite note:
  SQLite doesn't support SELECT ... FOR UPDATE. The with_for_update() call
  is a no-op there; SQLite's single writer lock serializes writers instead.

Transaction ownership:
  None of these functions commit. The caller (the transfer engine, or the
  sign-up flow for create_account) owns the database transaction.
"""

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidRequestError,
)
from wallet.models.account import Account


async def create_account(
    db: AsyncSession,
    account_id: str,
    initial_balance_cents: int,
    display_name: str | None = None,
) -> Account:
    """
    Open a new account with a seeded balance.

    Args:
        db: Database session (the caller commits).
        account_id: Identity-layer id for the new account.
        initial_balance_cents: Opening balance; must be >= 0.
        display_name: Name shown to senders on transfer confirmations.

    Returns:
        The newly created Account instance.

    Raises:
        InvalidRequestError: If the id is empty or the balance is negative.
        AccountAlreadyExistsError: If the account id is taken.
    """
    if not account_id:
        raise InvalidRequestError("Account id is required")
    if isinstance(initial_balance_cents, bool) or not isinstance(initial_balance_cents, int):
        raise InvalidRequestError("Initial balance must be an integer number of cents")
    if initial_balance_cents < 0:
        raise InvalidRequestError("Initial balance cannot be negative")

    if await db.get(Account, account_id) is not None:
        raise AccountAlreadyExistsError(account_id)

    account = Account(
        account_id=account_id,
        display_name=display_name,
        balance_cents=initial_balance_cents,
        initial_balance_cents=initial_balance_cents,
    )
    db.add(account)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Lost a race against a concurrent opening of the same id
        raise AccountAlreadyExistsError(account_id) from exc
    return account


async def get_account(db: AsyncSession, account_id: str) -> Account:
    """
    Fetch a single account.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
    """
    result = await db.execute(select(Account).where(Account.account_id == account_id))
    account = result.scalar_one_or_none()

    if account is None:
        raise AccountNotFoundError(account_id)

    return account


async def get_balance(db: AsyncSession, account_id: str) -> int:
    """
    Read the committed balance of an account, in cents.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
    """
    result = await db.execute(
        select(Account.balance_cents).where(Account.account_id == account_id)
    )
    balance = result.scalar_one_or_none()

    if balance is None:
        raise AccountNotFoundError(account_id)

    return balance


async def get_accounts(db: AsyncSession, account_ids: Iterable[str]) -> dict[str, Account]:
    """Fetch several accounts at once, keyed by id. Missing ids are simply absent."""
    ids = list(set(account_ids))
    if not ids:
        return {}
    result = await db.execute(select(Account).where(Account.account_id.in_(ids)))
    return {account.account_id: account for account in result.scalars().all()}


async def lock_accounts(db: AsyncSession, account_ids: Iterable[str]) -> list[str]:
    """
    Lock account rows for the rest of the current database transaction.

    Locks are acquired in ascending account_id order regardless of the order
    given, so every transfer uses the same global lock order.

    Returns:
        The ids that exist, in lock order.
    """
    ordered = sorted(set(account_ids))
    locked = []
    for account_id in ordered:
        result = await db.execute(
            select(Account.account_id)
            .where(Account.account_id == account_id)
            .with_for_update()  # No-op on SQLite, locks the row on PostgreSQL
        )
        if result.scalar_one_or_none() is not None:
            locked.append(account_id)
    return locked


async def apply_delta(
    db: AsyncSession,
    account_id: str,
    delta_cents: int,
    role: str | None = None,
) -> int:
    """
    Atomically add `delta_cents` (positive or negative) to a balance.

    The update is applied only if the resulting balance is >= 0; otherwise
    nothing is written.

    Args:
        db: Database session inside the caller's unit of work.
        account_id: The account to mutate.
        delta_cents: Signed amount in cents.
        role: "sender" or "recipient", used to word AccountNotFoundError.

    Returns:
        The new balance in cents.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        InsufficientFundsError: If the balance would go negative.
    """
    result = await db.execute(
        update(Account)
        .where(Account.account_id == account_id)
        .where(Account.balance_cents + delta_cents >= 0)
        .values(
            balance_cents=Account.balance_cents + delta_cents,
            version=Account.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(Account.balance_cents)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is not None:
        return new_balance

    # Nothing was updated: find out why
    result = await db.execute(
        select(Account.balance_cents).where(Account.account_id == account_id)
    )
    current = result.scalar_one_or_none()
    if current is None:
        raise AccountNotFoundError(account_id, role=role)

    raise InsufficientFundsError(
        account_id=account_id,
        requested_cents=-delta_cents,
        available_cents=current,
    )
