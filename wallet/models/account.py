"""
Account model — one wallet balance per user identity.

Each account has:
  - An account_id supplied by the identity layer (1:1 with a user)
  - A display name shown to senders on transfer confirmations
  - A balance in integer cents
  - A version stamp bumped by every balance mutation
  - The balance it was opened with (the only way money enters the ledger)

Balance management:
  `balance_cents` is only ever changed by the account store's conditional
  update (`UPDATE ... WHERE balance_cents + delta >= 0`), issued inside the
  transfer engine's unit of work together with the transaction record.

  A CHECK constraint at the database level also enforces that the balance
  can never go negative. The conditional update is what prevents it under
  concurrency; the constraint is the final safety net.

Why integer cents?
  Binary floating point cannot represent most decimal fractions exactly
  (0.1 + 0.2 != 0.3). With integer cents all arithmetic is exact, $10.99 is
  stored as 1099, and the frontend divides by 100 for display.
"""

from datetime import datetime, timezone

from sqlalchemy import String, Integer, BigInteger, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from wallet.database import Base


class Account(Base):
    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint(
            "balance_cents >= 0",
            name="ck_accounts_non_negative_balance",
        ),
        CheckConstraint(
            "initial_balance_cents >= 0",
            name="ck_accounts_non_negative_initial_balance",
        ),
    )

    # Identity-layer id (a user UUID in string form for API-created accounts)
    account_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    display_name: Mapped[str | None] = mapped_column(
        String(101),
        nullable=True,
    )

    balance_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    # Seeded balance at opening time — used by the ledger integrity check
    initial_balance_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    # Incremented by every conditional update
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
