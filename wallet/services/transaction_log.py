"""
Transaction log — append-only audit record of completed transfers.

append() is only ever called inside the transfer engine's unit of work, so
a record is committed together with the balance updates it describes, or
not at all. Nothing in the codebase updates or deletes a Transaction.

History queries return records where the account is either party,
newest first, one 1-based page at a time, alongside the total count so the
caller can compute the number of pages.
"""

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.models.transaction import Transaction, TransactionStatus


def _involving(account_id: str):
    return or_(
        Transaction.from_account_id == account_id,
        Transaction.to_account_id == account_id,
    )


async def append(
    db: AsyncSession,
    from_account_id: str,
    to_account_id: str,
    amount_cents: int,
    description: str | None = None,
    idempotency_key: str | None = None,
    status: TransactionStatus = TransactionStatus.COMPLETED,
) -> Transaction:
    """
    Insert a transaction record inside the current unit of work.

    The record is flushed (so constraint violations such as a reused
    idempotency key surface here) but not committed.
    """
    txn = Transaction(
        from_account_id=from_account_id,
        to_account_id=to_account_id,
        amount_cents=amount_cents,
        description=description,
        status=status.value,
        idempotency_key=idempotency_key,
    )
    db.add(txn)
    await db.flush()
    return txn


async def find_by_idempotency_key(db: AsyncSession, idempotency_key: str) -> Transaction | None:
    result = await db.execute(
        select(Transaction).where(Transaction.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def count_for_account(db: AsyncSession, account_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Transaction).where(_involving(account_id))
    )
    return result.scalar_one()


async def list_for_account(
    db: AsyncSession,
    account_id: str,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Transaction], int]:
    """
    List one page of an account's transactions, newest first.

    Args:
        db: Database session.
        account_id: The account to query transactions for.
        page: 1-based page number.
        page_size: Records per page.

    Returns:
        Tuple of (records on this page, total records for the account).
    """
    total = await count_for_account(db, account_id)

    result = await db.execute(
        select(Transaction)
        .where(_involving(account_id))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    return list(result.scalars().all()), total
