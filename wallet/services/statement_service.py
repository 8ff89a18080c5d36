"""
Statement service — read-only projections over accounts and the log.

  - get_balance(): the committed balance of one account
  - list_statement(): paginated transaction history for one account, each
    record projected from that account's point of view (sent/received and
    who the other party is)
  - mini_statement(): current balance plus the most recent few entries
  - verify_ledger(): integrity report over the whole ledger

Nothing here writes. Balances come straight from the account store; the
history comes from the transaction log.
"""

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.config import settings
from wallet.exceptions import InvalidRequestError
from wallet.models.account import Account
from wallet.models.transaction import Transaction, TransactionStatus
from wallet.services import account_store, transaction_log


def _validate_page(page: int, page_size: int) -> None:
    if page < 1:
        raise InvalidRequestError("Page must be 1 or greater")
    if not 1 <= page_size <= settings.MAX_PAGE_SIZE:
        raise InvalidRequestError(
            f"Page size must be between 1 and {settings.MAX_PAGE_SIZE}"
        )


async def _project(
    db: AsyncSession,
    account_id: str,
    transactions: list[Transaction],
    sent_label: str,
    received_label: str,
) -> list[dict]:
    """Turn raw records into entries seen from `account_id`'s side."""
    counterparty_ids = {
        t.to_account_id if t.from_account_id == account_id else t.from_account_id
        for t in transactions
    }
    counterparties = await account_store.get_accounts(db, counterparty_ids)

    entries = []
    for t in transactions:
        outgoing = t.from_account_id == account_id
        other_id = t.to_account_id if outgoing else t.from_account_id
        other = counterparties.get(other_id)
        entries.append({
            "id": t.id,
            "amount_cents": t.amount_cents,
            "direction": sent_label if outgoing else received_label,
            "counterparty_account_id": other_id,
            "counterparty_name": other.display_name if other else None,
            "description": t.description,
            "status": t.status,
            "created_at": t.created_at,
        })
    return entries


async def get_balance(db: AsyncSession, account_id: str) -> int:
    """Current balance of an account, in cents."""
    return await account_store.get_balance(db, account_id)


async def list_statement(
    db: AsyncSession,
    account_id: str,
    page: int = 1,
    page_size: int | None = None,
) -> tuple[list[dict], int]:
    """
    One page of an account's history, newest first.

    Args:
        db: Database session.
        account_id: The viewing account.
        page: 1-based page number.
        page_size: Entries per page (defaults to DEFAULT_PAGE_SIZE).

    Returns:
        Tuple of (entries, total number of records for the account).

    Raises:
        InvalidRequestError: If page or page_size is out of range.
        AccountNotFoundError: If the account doesn't exist.
    """
    if page_size is None:
        page_size = settings.DEFAULT_PAGE_SIZE
    _validate_page(page, page_size)

    await account_store.get_account(db, account_id)

    transactions, total = await transaction_log.list_for_account(
        db, account_id, page=page, page_size=page_size
    )
    entries = await _project(db, account_id, transactions, "sent", "received")
    return entries, total


async def mini_statement(
    db: AsyncSession,
    account_id: str,
    limit: int = 5,
) -> dict:
    """
    Current balance and the `limit` most recent entries (debit/credit).

    Raises:
        InvalidRequestError: If limit is out of range.
        AccountNotFoundError: If the account doesn't exist.
    """
    _validate_page(1, limit)

    balance_cents = await account_store.get_balance(db, account_id)
    transactions, _ = await transaction_log.list_for_account(
        db, account_id, page=1, page_size=limit
    )
    entries = await _project(db, account_id, transactions, "debit", "credit")

    return {
        "account_id": account_id,
        "current_balance_cents": balance_cents,
        "recent_transactions": entries,
    }


async def verify_ledger(db: AsyncSession) -> dict:
    """
    Recompute every balance from the log and compare with the stored one.

    For each account: initial balance + completed credits - completed debits
    must equal balance_cents. Across the ledger, the sum of balances must
    equal the sum of initial balances (money is only ever moved, never
    created or destroyed).

    Returns:
        Dict with totals, the ids of mismatching accounts, and `consistent`.
    """
    completed = Transaction.status == TransactionStatus.COMPLETED.value

    credits_result = await db.execute(
        select(Transaction.to_account_id, func.sum(Transaction.amount_cents))
        .where(completed)
        .group_by(Transaction.to_account_id)
    )
    credits = dict(credits_result.all())

    debits_result = await db.execute(
        select(Transaction.from_account_id, func.sum(Transaction.amount_cents))
        .where(completed)
        .group_by(Transaction.from_account_id)
    )
    debits = dict(debits_result.all())

    accounts_result = await db.execute(
        select(Account.account_id, Account.balance_cents, Account.initial_balance_cents)
    )

    total_balance = 0
    total_initial = 0
    mismatched = []
    for account_id, balance, initial in accounts_result.all():
        total_balance += balance
        total_initial += initial
        expected = initial + credits.get(account_id, 0) - debits.get(account_id, 0)
        if expected != balance:
            mismatched.append(account_id)

    return {
        "total_balance_cents": total_balance,
        "total_initial_balance_cents": total_initial,
        "mismatched_accounts": mismatched,
        "consistent": total_balance == total_initial and not mismatched,
    }
