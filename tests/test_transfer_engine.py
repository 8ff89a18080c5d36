"""
Tests for the transfer engine (the atomic debit + credit + log append).

These tests verify:
  - Successful transfers move money, conserve the total and write exactly
    one `completed` record
  - Invalid requests, self-transfers, unknown accounts and insufficient
    funds fail before or without changing anything
  - Concurrent transfers never overdraw an account or lose an update
  - Idempotency keys make retries safe (replay instead of double-apply)
  - Transient infrastructure failures are retried when safe, and surface
    as TransferFailedError with the ledger untouched when not
"""

import asyncio
import logging

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.config import settings
from wallet.exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidRequestError,
    SelfTransferError,
    TransferFailedError,
)
from wallet.models.account import Account
from wallet.models.transaction import Transaction
from wallet.services import account_store, statement_service, transaction_log
from wallet.services.transfer_service import transfer, validate_transfer_request


async def _record_count(database) -> int:
    async with database.session() as session:
        result = await session.execute(select(func.count()).select_from(Transaction))
        return result.scalar_one()


def _locked_error() -> OperationalError:
    return OperationalError("UPDATE accounts", None, Exception("database is locked"))


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(settings, "TRANSFER_RETRY_BACKOFF_SECONDS", 0)


class TestTransferSuccess:
    """Scenario: A has 1000, B has 500, A sends 300 to B."""

    async def test_moves_money_and_records_once(self, database, make_account, read_balance):
        await make_account("A", 1000)
        await make_account("B", 500, display_name="Bob Martinez")

        result = await transfer(database, "A", "B", 300, "Dinner")

        assert await read_balance("A") == 700
        assert await read_balance("B") == 800

        txn = result.transaction
        assert txn.status == "completed"
        assert txn.amount_cents == 300
        assert txn.from_account_id == "A"
        assert txn.to_account_id == "B"
        assert txn.description == "Dinner"
        assert txn.created_at is not None
        assert result.recipient_name == "Bob Martinez"
        assert result.replayed is False
        assert await _record_count(database) == 1

    async def test_conserves_total(self, database, make_account, read_balance):
        """balance(A) + balance(B) is the same before and after."""
        await make_account("A", 1234)
        await make_account("B", 766)

        await transfer(database, "A", "B", 999)

        assert await read_balance("A") + await read_balance("B") == 2000

    async def test_exact_balance_leaves_zero(self, database, make_account, read_balance):
        await make_account("A", 750)
        await make_account("B", 0)

        await transfer(database, "A", "B", 750)

        assert await read_balance("A") == 0
        assert await read_balance("B") == 750

    async def test_empty_description_stored_as_null(self, database, make_account):
        await make_account("A", 100)
        await make_account("B", 0)

        result = await transfer(database, "A", "B", 10, "")
        assert result.transaction.description is None


class TestTransferRejections:
    """Business-rule failures leave balances and the log untouched."""

    async def test_insufficient_funds(self, database, make_account, read_balance):
        """Scenario: A has 100 and tries to send 150."""
        await make_account("A", 100)
        await make_account("B", 500)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await transfer(database, "A", "B", 150)

        assert exc_info.value.requested_cents == 150
        assert exc_info.value.available_cents == 100
        assert await read_balance("A") == 100
        assert await read_balance("B") == 500
        assert await _record_count(database) == 0

    async def test_self_transfer(self, database, make_account, read_balance):
        """Scenario: A sends to A."""
        await make_account("A", 100)

        with pytest.raises(SelfTransferError):
            await transfer(database, "A", "A", 10)

        assert await read_balance("A") == 100
        assert await _record_count(database) == 0

    async def test_self_transfer_is_an_invalid_request(self, database):
        """SelfTransfer is a kind of InvalidRequest and needs no store access."""
        with pytest.raises(InvalidRequestError):
            await transfer(database, "A", "A", 10)

    async def test_unknown_recipient(self, database, make_account, read_balance):
        """Scenario: sending to the non-existent account "ghost"."""
        await make_account("A", 100)

        with pytest.raises(AccountNotFoundError) as exc_info:
            await transfer(database, "A", "ghost", 10)

        assert exc_info.value.account_id == "ghost"
        assert exc_info.value.role == "recipient"
        assert await read_balance("A") == 100
        assert await _record_count(database) == 0

    async def test_unknown_sender(self, database, make_account, read_balance):
        await make_account("B", 100)

        with pytest.raises(AccountNotFoundError) as exc_info:
            await transfer(database, "ghost", "B", 10)

        assert exc_info.value.role == "sender"
        assert await read_balance("B") == 100

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount(self, database, make_account, read_balance, amount):
        await make_account("A", 100)
        await make_account("B", 100)

        with pytest.raises(InvalidRequestError):
            await transfer(database, "A", "B", amount)

        assert await read_balance("A") == 100
        assert await _record_count(database) == 0

    async def test_amount_over_ceiling(self, database, make_account, monkeypatch):
        monkeypatch.setattr(settings, "MAX_TRANSFER_CENTS", 1000)
        await make_account("A", 5000)
        await make_account("B", 0)

        with pytest.raises(InvalidRequestError, match="too large"):
            await transfer(database, "A", "B", 1001)

        # The ceiling itself is allowed
        result = await transfer(database, "A", "B", 1000)
        assert result.transaction.amount_cents == 1000

    async def test_description_too_long(self, database, make_account):
        await make_account("A", 100)
        await make_account("B", 0)

        with pytest.raises(InvalidRequestError, match="Description"):
            await transfer(database, "A", "B", 10, "x" * (settings.MAX_DESCRIPTION_LENGTH + 1))

    async def test_failed_transfers_never_reach_the_log(self, database, make_account):
        """Rejected attempts are not recorded, not even as `failed`."""
        await make_account("A", 10)
        await make_account("B", 0)

        for args in [("A", "B", 11), ("A", "A", 1), ("A", "ghost", 1), ("A", "B", 0)]:
            with pytest.raises((InvalidRequestError, AccountNotFoundError, InsufficientFundsError)):
                await transfer(database, *args)

        assert await _record_count(database) == 0


class TestValidateTransferRequest:
    """The pure validation step needs no database at all."""

    def test_valid_request_passes(self):
        validate_transfer_request("A", "B", 1, "lunch", "key-1")

    @pytest.mark.parametrize("amount", [1.5, "100", True, None])
    def test_amount_must_be_integer(self, amount):
        with pytest.raises(InvalidRequestError):
            validate_transfer_request("A", "B", amount)

    def test_missing_party(self):
        with pytest.raises(InvalidRequestError):
            validate_transfer_request("", "B", 10)

    def test_idempotency_key_length(self):
        with pytest.raises(InvalidRequestError):
            validate_transfer_request("A", "B", 10, idempotency_key="k" * 65)
        with pytest.raises(InvalidRequestError):
            validate_transfer_request("A", "B", 10, idempotency_key="")


class TestConcurrentTransfers:
    """Per-account serialization under concurrent requests."""

    async def test_two_competing_transfers(self, database, make_account, read_balance):
        """Scenario: A has 1000 and sends 600 to B and 600 to C at the same time."""
        await make_account("A", 1000)
        await make_account("B", 0)
        await make_account("C", 0)

        results = await asyncio.gather(
            transfer(database, "A", "B", 600),
            transfer(database, "A", "C", 600),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientFundsError)

        assert await read_balance("A") == 400
        assert await read_balance("B") + await read_balance("C") == 600
        assert await _record_count(database) == 1

    async def test_hundred_transfers_from_balance_of_fifty(
        self, database, make_account, read_balance
    ):
        """100 concurrent 1-cent transfers from a balance of 50: exactly 50 succeed."""
        await make_account("A", 50)
        for i in range(100):
            await make_account(f"R{i:03d}", 0)

        results = await asyncio.gather(
            *(transfer(database, "A", f"R{i:03d}", 1) for i in range(100)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 50
        assert len(failures) == 50
        assert all(isinstance(f, InsufficientFundsError) for f in failures)

        assert await read_balance("A") == 0
        assert await _record_count(database) == 50

        async with database.session() as session:
            report = await statement_service.verify_ledger(session)
        assert report["consistent"] is True
        assert report["total_balance_cents"] == 50

    async def test_opposite_directions_between_same_pair(
        self, database, make_account, read_balance
    ):
        """Transfers A->B and B->A running together all complete (no deadlock)."""
        await make_account("A", 1000)
        await make_account("B", 1000)

        calls = []
        for _ in range(10):
            calls.append(transfer(database, "A", "B", 7))
            calls.append(transfer(database, "B", "A", 3))
        await asyncio.gather(*calls)

        assert await read_balance("A") == 1000 - 70 + 30
        assert await read_balance("B") == 1000 + 70 - 30
        assert await _record_count(database) == 20

    async def test_concurrent_reader_never_sees_partial_transfer(
        self, database, make_account
    ):
        """A reader sampling during a stream of transfers only sees whole transfers."""
        await make_account("A", 1000)
        await make_account("B", 0)

        balance_a = select(Account.balance_cents).where(Account.account_id == "A")
        balance_b = select(Account.balance_cents).where(Account.account_id == "B")
        records = select(func.count()).select_from(Transaction)
        # One statement per sample, so all three values come from one snapshot
        sample = select(
            balance_a.scalar_subquery(),
            balance_b.scalar_subquery(),
            records.scalar_subquery(),
        )

        samples = []
        done = asyncio.Event()

        async def reader():
            while not done.is_set():
                async with database.session() as session:
                    samples.append(tuple((await session.execute(sample)).one()))
                await asyncio.sleep(0)

        reader_task = asyncio.create_task(reader())
        try:
            await asyncio.gather(*(transfer(database, "A", "B", 10) for _ in range(30)))
        finally:
            done.set()
            await reader_task

        assert samples
        for a, b, count in samples:
            assert a + b == 1000
            assert a == 1000 - 10 * count
        async with database.session() as session:
            assert tuple((await session.execute(sample)).one()) == (700, 300, 30)


class TestIdempotency:
    """Caller-supplied idempotency keys."""

    async def test_replay_returns_original_and_moves_money_once(
        self, database, make_account, read_balance
    ):
        await make_account("A", 1000)
        await make_account("B", 0, display_name="Bob")

        first = await transfer(database, "A", "B", 100, idempotency_key="req-1")
        second = await transfer(database, "A", "B", 100, idempotency_key="req-1")

        assert second.replayed is True
        assert second.transaction.id == first.transaction.id
        assert second.recipient_name == "Bob"
        assert await read_balance("A") == 900
        assert await read_balance("B") == 100
        assert await _record_count(database) == 1

    async def test_key_reused_for_different_transfer(self, database, make_account, read_balance):
        await make_account("A", 1000)
        await make_account("B", 0)

        await transfer(database, "A", "B", 100, idempotency_key="req-1")

        with pytest.raises(InvalidRequestError, match="Idempotency key"):
            await transfer(database, "A", "B", 200, idempotency_key="req-1")

        assert await read_balance("A") == 900

    async def test_concurrent_duplicates_apply_once(self, database, make_account, read_balance):
        """Several identical requests racing with one key settle on one record."""
        await make_account("A", 1000)
        await make_account("B", 0)

        results = await asyncio.gather(
            *(transfer(database, "A", "B", 100, idempotency_key="dup") for _ in range(5))
        )

        assert len({r.transaction.id for r in results}) == 1
        assert sum(1 for r in results if not r.replayed) == 1
        assert await read_balance("A") == 900
        assert await read_balance("B") == 100

    async def test_duplicate_racing_on_exact_balance_replays(
        self, database, make_account, read_balance
    ):
        """
        Two same-key requests for the sender's whole balance: the one that
        loses the race finds the sender drained and must answer with the
        winner's record, not InsufficientFunds.
        """
        await make_account("A", 100)
        await make_account("B", 0)

        results = await asyncio.gather(
            *(transfer(database, "A", "B", 100, idempotency_key="exact") for _ in range(2))
        )

        assert len({r.transaction.id for r in results}) == 1
        assert sum(1 for r in results if not r.replayed) == 1
        assert await read_balance("A") == 0
        assert await read_balance("B") == 100
        assert await _record_count(database) == 1

    async def test_insufficient_funds_with_unused_key_still_rejected(
        self, database, make_account, read_balance
    ):
        await make_account("A", 50)
        await make_account("B", 0)

        with pytest.raises(InsufficientFundsError):
            await transfer(database, "A", "B", 100, idempotency_key="fresh")

        assert await read_balance("A") == 50
        assert await _record_count(database) == 0


class TestCallerCancellation:
    """A started unit of work outlives a cancelled caller."""

    async def test_cancelled_caller_does_not_interrupt_commit(
        self, database, make_account, read_balance, monkeypatch, caplog
    ):
        caplog.set_level(logging.INFO, logger="wallet.services.transfer_service")
        await make_account("A", 1000)
        await make_account("B", 0)

        original_append = transaction_log.append
        entered = asyncio.Event()
        release = asyncio.Event()

        async def gated_append(*args, **kwargs):
            entered.set()
            await release.wait()
            return await original_append(*args, **kwargs)

        monkeypatch.setattr(transaction_log, "append", gated_append)

        caller = asyncio.create_task(transfer(database, "A", "B", 300))
        await asyncio.wait_for(entered.wait(), timeout=5)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        for _ in range(500):
            if "committed after the caller was cancelled" in caplog.text:
                break
            await asyncio.sleep(0.01)

        assert "committed after the caller was cancelled" in caplog.text
        assert await read_balance("A") == 700
        assert await read_balance("B") == 300
        assert await _record_count(database) == 1

    async def test_detached_failure_is_logged(
        self, database, make_account, read_balance, monkeypatch, caplog
    ):
        """A detached attempt that fails rolls back and leaves a warning behind."""
        caplog.set_level(logging.INFO, logger="wallet.services.transfer_service")
        await make_account("A", 1000)
        await make_account("B", 0)

        entered = asyncio.Event()
        release = asyncio.Event()

        async def failing_append(*args, **kwargs):
            entered.set()
            await release.wait()
            raise _locked_error()

        monkeypatch.setattr(transaction_log, "append", failing_append)

        caller = asyncio.create_task(transfer(database, "A", "B", 300))
        await asyncio.wait_for(entered.wait(), timeout=5)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        for _ in range(500):
            if "ended without committing" in caplog.text:
                break
            await asyncio.sleep(0.01)

        assert "ended without committing" in caplog.text
        assert await read_balance("A") == 1000
        assert await read_balance("B") == 0
        assert await _record_count(database) == 0


class TestInfrastructureFailures:
    """Rollback and bounded retry on storage errors."""

    async def test_conflict_before_commit_is_retried(
        self, database, make_account, read_balance, monkeypatch, no_backoff
    ):
        """A lock conflict mid-unit-of-work rolls back and the retry succeeds."""
        await make_account("A", 1000)
        await make_account("B", 0)

        original_append = transaction_log.append
        calls = 0

        async def flaky_append(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise _locked_error()
            return await original_append(*args, **kwargs)

        monkeypatch.setattr(transaction_log, "append", flaky_append)

        result = await transfer(database, "A", "B", 300)

        assert calls == 2
        assert result.transaction.status == "completed"
        # The first attempt's debit and credit were rolled back, not doubled
        assert await read_balance("A") == 700
        assert await read_balance("B") == 300
        assert await _record_count(database) == 1

    async def test_retries_are_bounded(
        self, database, make_account, read_balance, monkeypatch, no_backoff
    ):
        """When every attempt fails the caller gets TransferFailed and nothing changed."""
        monkeypatch.setattr(settings, "TRANSFER_MAX_ATTEMPTS", 3)
        await make_account("A", 1000)
        await make_account("B", 0)

        calls = 0

        async def broken_append(*args, **kwargs):
            nonlocal calls
            calls += 1
            raise _locked_error()

        monkeypatch.setattr(transaction_log, "append", broken_append)

        with pytest.raises(TransferFailedError):
            await transfer(database, "A", "B", 300)

        assert calls == 3
        assert await read_balance("A") == 1000
        assert await read_balance("B") == 0
        assert await _record_count(database) == 0

    async def test_commit_failure_without_key_is_not_retried(
        self, database, make_account, read_balance, monkeypatch, no_backoff
    ):
        """Without an idempotency key a failed commit is reported, never retried."""
        await make_account("A", 1000)
        await make_account("B", 0)

        calls = 0

        async def failing_commit(self):
            nonlocal calls
            calls += 1
            raise _locked_error()

        monkeypatch.setattr(AsyncSession, "commit", failing_commit)

        with pytest.raises(TransferFailedError):
            await transfer(database, "A", "B", 300)

        monkeypatch.undo()
        assert calls == 1
        assert await read_balance("A") == 1000
        assert await read_balance("B") == 0
        assert await _record_count(database) == 0

    async def test_commit_failure_with_key_is_retried(
        self, database, make_account, read_balance, monkeypatch, no_backoff
    ):
        """With an idempotency key the engine retries a failed commit safely."""
        await make_account("A", 1000)
        await make_account("B", 0)

        original_commit = AsyncSession.commit
        calls = 0

        async def flaky_commit(self):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise _locked_error()
            return await original_commit(self)

        monkeypatch.setattr(AsyncSession, "commit", flaky_commit)

        result = await transfer(database, "A", "B", 300, idempotency_key="retry-me")

        monkeypatch.undo()
        assert calls == 2
        assert result.replayed is False
        assert await read_balance("A") == 700
        assert await read_balance("B") == 300
        assert await _record_count(database) == 1

    async def test_store_unavailable_before_unit_of_work(
        self, database, make_account, read_balance, monkeypatch
    ):
        """A storage error during the existence checks surfaces as TransferFailed."""
        await make_account("A", 1000)
        await make_account("B", 0)

        async def unavailable(*args, **kwargs):
            raise _locked_error()

        monkeypatch.setattr(account_store, "get_accounts", unavailable)

        with pytest.raises(TransferFailedError):
            await transfer(database, "A", "B", 300)

        monkeypatch.undo()
        assert await read_balance("A") == 1000
