"""
Transfer engine — moves money between two accounts as one unit of work.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. A transfer runs in phases:

  1. Validation (pure, no I/O): amount > 0 and within MAX_TRANSFER_CENTS,
     sender != recipient, bounded description and idempotency key.
  2. Idempotent replay: a key that already produced a record returns that
     record instead of moving money again.
  3. Existence checks: both accounts must exist.
  4. Unit of work, in one database transaction owned by this module:
     lock both rows in ascending id order, debit the sender with the
     conditional update, credit the recipient, append the `completed`
     record, commit.

Atomicity:
  Every balance change and its transaction record are written inside the
  SAME database transaction. Any failure before the commit completes rolls
  all of it back, so a concurrent reader sees either the pre-transfer or the
  fully post-transfer state. The debit always runs before the credit, so an
  insufficient balance can never leave an orphan credit behind.

Retries:
  Business-rule failures (InvalidRequestError, AccountNotFoundError,
  InsufficientFundsError) are terminal and never retried. Infrastructure
  failures (OperationalError and other DBAPIError, e.g. "database is
  locked" or a serialization failure) are retried a bounded number of times
  when it is safe:
    - raised before COMMIT was issued: nothing was applied, always safe;
    - raised during COMMIT: the outcome is unknown, so the attempt is only
      retried when the caller supplied an idempotency key (the replay check
      then finds a commit that did land).
  When attempts run out the caller gets TransferFailedError, meaning the
  transfer did not happen. Without a key a call executes at most once.

Cancellation:
  Phase 4 runs under asyncio.shield(): cancelling the caller does not
  interrupt a unit of work that has started, which always runs to commit
  or rollback. The outcome of such a detached attempt is logged when it
  finishes.
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.exc import DBAPIError, IntegrityError

from wallet.config import settings
from wallet.database import Database
from wallet.exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidRequestError,
    SelfTransferError,
    TransferFailedError,
)
from wallet.models.transaction import Transaction
from wallet.services import account_store, transaction_log

logger = logging.getLogger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 64


@dataclass(frozen=True)
class TransferResult:
    """Outcome returned to the caller for confirmation."""
    transaction: Transaction
    recipient_name: str | None
    replayed: bool = False


class _AttemptFailed(Exception):
    """An infrastructure failure inside one unit-of-work attempt."""

    def __init__(self, cause: DBAPIError, during_commit: bool):
        self.cause = cause
        self.during_commit = during_commit
        super().__init__(str(cause))


class _DuplicateIdempotencyKey(Exception):
    """A concurrent request with the same idempotency key committed first."""


def validate_transfer_request(
    from_account_id: str,
    to_account_id: str,
    amount_cents: int,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> None:
    """
    Check a transfer request without touching the database.

    Raises:
        InvalidRequestError: Missing party, non-integer, non-positive or
            oversized amount, overlong description or idempotency key.
        SelfTransferError: Sender and recipient are the same account.
    """
    if not from_account_id or not to_account_id:
        raise InvalidRequestError("Sender and recipient are required")

    # bool is an int subclass; True must not be read as 1 cent
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidRequestError("Amount must be an integer number of cents")
    if amount_cents <= 0:
        raise InvalidRequestError("Amount must be positive")
    if amount_cents > settings.MAX_TRANSFER_CENTS:
        raise InvalidRequestError(
            f"Amount too large: the maximum transfer is {settings.MAX_TRANSFER_CENTS} cents"
        )

    if from_account_id == to_account_id:
        raise SelfTransferError(from_account_id)

    if description is not None and len(description) > settings.MAX_DESCRIPTION_LENGTH:
        raise InvalidRequestError(
            f"Description must be at most {settings.MAX_DESCRIPTION_LENGTH} characters"
        )

    if idempotency_key is not None and not 0 < len(idempotency_key) <= MAX_IDEMPOTENCY_KEY_LENGTH:
        raise InvalidRequestError(
            f"Idempotency key must be 1-{MAX_IDEMPOTENCY_KEY_LENGTH} characters"
        )


async def transfer(
    database: Database,
    from_account_id: str,
    to_account_id: str,
    amount_cents: int,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> TransferResult:
    """
    Execute an atomic transfer between two accounts.

    Args:
        database: Store handle; the engine opens its own sessions on it.
        from_account_id: Account to debit (already resolved to the caller).
        to_account_id: Account to credit.
        amount_cents: Positive integer amount in cents.
        description: Optional memo.
        idempotency_key: Optional caller-supplied key for safe retries.

    Returns:
        TransferResult with the committed record and the recipient's name.

    Raises:
        InvalidRequestError / SelfTransferError: Request rejected before any I/O,
            or the idempotency key was used for a different transfer.
        AccountNotFoundError: Sender or recipient doesn't exist.
        InsufficientFundsError: The sender's balance is too low.
        TransferFailedError: Infrastructure failure; nothing was applied.
    """
    validate_transfer_request(
        from_account_id, to_account_id, amount_cents, description, idempotency_key
    )
    description = description or None

    try:
        if idempotency_key is not None:
            replay = await _find_replay(
                database, idempotency_key, from_account_id, to_account_id, amount_cents
            )
            if replay is not None:
                return replay

        recipient_name = await _check_accounts_exist(database, from_account_id, to_account_id)
    except DBAPIError as exc:
        logger.error(
            "Transfer %s -> %s aborted before the unit of work: %s",
            from_account_id, to_account_id, exc,
        )
        raise TransferFailedError() from exc

    attempts = max(1, settings.TRANSFER_MAX_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            txn = await _shielded(
                _run_unit_of_work(
                    database,
                    from_account_id,
                    to_account_id,
                    amount_cents,
                    description,
                    idempotency_key,
                )
            )
        except _DuplicateIdempotencyKey:
            replay = await _replay_or_fail(
                database, idempotency_key, from_account_id, to_account_id, amount_cents
            )
            if replay is not None:
                return replay
            raise TransferFailedError()
        except InsufficientFundsError:
            # A same-key request may have committed and drained the sender first
            replay = await _replay_or_fail(
                database, idempotency_key, from_account_id, to_account_id, amount_cents
            )
            if replay is not None:
                return replay
            logger.info(
                "Transfer rejected: %s has insufficient funds for %d cents",
                from_account_id, amount_cents,
            )
            raise
        except _AttemptFailed as failure:
            retryable = not failure.during_commit or idempotency_key is not None
            if not retryable or attempt == attempts:
                logger.error(
                    "Transfer %s -> %s of %d cents failed after %d attempt(s)",
                    from_account_id, to_account_id, amount_cents, attempt,
                    exc_info=failure.cause,
                )
                raise TransferFailedError() from failure.cause

            logger.warning(
                "Transfer %s -> %s attempt %d/%d rolled back (%s); retrying",
                from_account_id, to_account_id, attempt, attempts, failure.cause.orig,
            )
            await asyncio.sleep(settings.TRANSFER_RETRY_BACKOFF_SECONDS * attempt)

            if failure.during_commit:
                # The commit may have landed before the error reached us
                replay = await _replay_or_fail(
                    database, idempotency_key, from_account_id, to_account_id, amount_cents
                )
                if replay is not None:
                    return replay
            continue

        logger.info(
            "Transfer %s committed: %s -> %s, %d cents",
            txn.id, from_account_id, to_account_id, amount_cents,
        )
        return TransferResult(transaction=txn, recipient_name=recipient_name)

    # The loop either returns or raises
    raise TransferFailedError()


async def _shielded(coro):
    """
    Await a unit of work that keeps running if the caller is cancelled.

    A detached attempt's outcome is logged when it finishes, since nobody
    is left to receive it.
    """
    task = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        task.add_done_callback(_log_detached_outcome)
        raise


def _log_detached_outcome(task: asyncio.Future) -> None:
    if task.cancelled():
        logger.warning("Detached transfer attempt was cancelled before finishing")
        return
    exc = task.exception()
    if exc is None:
        txn = task.result()
        logger.info(
            "Transfer %s committed after the caller was cancelled: %s -> %s, %d cents",
            txn.id, txn.from_account_id, txn.to_account_id, txn.amount_cents,
        )
    else:
        logger.warning(
            "Detached transfer attempt ended without committing: %r", exc,
        )


async def _run_unit_of_work(
    database: Database,
    from_account_id: str,
    to_account_id: str,
    amount_cents: int,
    description: str | None,
    idempotency_key: str | None,
) -> Transaction:
    """
    One attempt at the atomic debit + credit + append.

    Leaving the `async with` block without a commit rolls the session back,
    so every exit path other than a successful commit leaves the store
    exactly as it was.
    """
    async with database.session() as db:
        during_commit = False
        try:
            await account_store.lock_accounts(db, [from_account_id, to_account_id])

            # Debit first: a failed debit must never leave an orphan credit
            await account_store.apply_delta(db, from_account_id, -amount_cents, role="sender")
            await account_store.apply_delta(db, to_account_id, amount_cents, role="recipient")

            txn = await transaction_log.append(
                db,
                from_account_id=from_account_id,
                to_account_id=to_account_id,
                amount_cents=amount_cents,
                description=description,
                idempotency_key=idempotency_key,
            )

            during_commit = True
            await db.commit()
        except IntegrityError as exc:
            if idempotency_key is not None and not during_commit:
                raise _DuplicateIdempotencyKey() from exc
            raise _AttemptFailed(exc, during_commit) from exc
        except DBAPIError as exc:
            raise _AttemptFailed(exc, during_commit) from exc
        except Exception:
            await db.rollback()
            raise

    return txn


async def _check_accounts_exist(
    database: Database,
    from_account_id: str,
    to_account_id: str,
) -> str | None:
    """
    Verify both parties exist before starting the unit of work.

    Returns:
        The recipient's display name.
    """
    async with database.session() as db:
        accounts = await account_store.get_accounts(db, [from_account_id, to_account_id])

    if from_account_id not in accounts:
        logger.info("Transfer rejected: sender %s not found", from_account_id)
        raise AccountNotFoundError(from_account_id, role="sender")
    if to_account_id not in accounts:
        logger.info("Transfer rejected: recipient %s not found", to_account_id)
        raise AccountNotFoundError(to_account_id, role="recipient")

    return accounts[to_account_id].display_name


async def _find_replay(
    database: Database,
    idempotency_key: str,
    from_account_id: str,
    to_account_id: str,
    amount_cents: int,
) -> TransferResult | None:
    """
    Return the earlier outcome for this idempotency key, if there is one.

    Raises:
        InvalidRequestError: The key belongs to a transfer with different
            parties or amount.
    """
    async with database.session() as db:
        txn = await transaction_log.find_by_idempotency_key(db, idempotency_key)
        if txn is None:
            return None

        if (
            txn.from_account_id != from_account_id
            or txn.to_account_id != to_account_id
            or txn.amount_cents != amount_cents
        ):
            raise InvalidRequestError(
                "Idempotency key was already used for a different transfer"
            )

        recipient = await account_store.get_accounts(db, [to_account_id])

    logger.info("Transfer %s replayed for idempotency key %s", txn.id, idempotency_key)
    recipient_account = recipient.get(to_account_id)
    return TransferResult(
        transaction=txn,
        recipient_name=recipient_account.display_name if recipient_account else None,
        replayed=True,
    )


async def _replay_or_fail(
    database: Database,
    idempotency_key: str | None,
    from_account_id: str,
    to_account_id: str,
    amount_cents: int,
) -> TransferResult | None:
    """Like _find_replay, but an unreachable store surfaces as TransferFailedError."""
    if idempotency_key is None:
        return None
    try:
        return await _find_replay(
            database, idempotency_key, from_account_id, to_account_id, amount_cents
        )
    except DBAPIError as exc:
        raise TransferFailedError() from exc
