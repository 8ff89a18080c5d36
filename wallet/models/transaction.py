"""
Transaction model — the append-only audit record of every transfer.

Every committed transfer creates exactly one Transaction row in the same
database transaction as the two balance updates, so a record exists if and
only if the money actually moved. Rows are never updated or deleted.

Key fields:
  - from_account_id / to_account_id: the two parties (always distinct)
  - amount_cents: Always positive; direction is given by the parties
  - status: "completed" or "failed" — the terminal outcome only, never "pending"
  - idempotency_key: Optional caller-supplied key; unique, so a retried
    request can never be applied twice
  - created_at: Indexed for newest-first history queries

Why no update timestamp?
  Records are immutable once written; created_at is the only time that
  matters.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, BigInteger, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from wallet.database import Base


class TransactionStatus(str, enum.Enum):
    """
    Terminal outcome of a transfer that reached the commit phase.

    Inherits from str so the value serializes naturally to JSON and is
    stored as a plain string.
    """
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transactions_positive_amount"),
        CheckConstraint(
            "from_account_id <> to_account_id",
            name="ck_transactions_distinct_parties",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    from_account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.account_id"),
        nullable=False,
        index=True,
    )

    to_account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.account_id"),
        nullable=False,
        index=True,
    )

    # Amount in cents — always positive
    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=TransactionStatus.COMPLETED.value,
    )

    idempotency_key: Mapped[str | None] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
