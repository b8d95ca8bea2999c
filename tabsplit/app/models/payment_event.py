"""
models/payment_event.py: PaymentEvent table definition.

One row per applied PaymentRecorded event from the payment provider.

Key design points:
  - UNIQUE(event_id) makes the provider's event id an idempotency key: the
    tracker looks it up before applying, and a concurrent duplicate insert
    fails at the database instead of double-counting.
  - Rows are append-only. They are the audit trail behind amount_paid_cents.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tabsplit.app.extensions import db


class PaymentEvent(db.Model):
    __tablename__ = "payment_events"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payment_events_amount_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    event_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    split_id: Mapped[int] = mapped_column(
        ForeignKey("splits.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    participant_row_id: Mapped[int] = mapped_column(
        ForeignKey("participants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # Provider-side timestamp, when supplied.
    occurred_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    split: Mapped["Split"] = relationship(  # noqa: F821
        "Split",
        back_populates="payment_events",
    )

    participant: Mapped["Participant"] = relationship("Participant")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PaymentEvent id={self.id} "
            f"event_id={self.event_id!r} "
            f"amount_cents={self.amount_cents}>"
        )
