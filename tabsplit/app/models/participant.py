"""
models/participant.py: Participant table definition.

No business logic. No imports from services or routes.

Key design points:
  - `participant_id` is the caller's id for the participant (a user id or an
    invitee handle). It is unique within one split, not globally.
  - `amount_paid_cents` only grows. It keeps the true total received, so it
    may exceed `amount_owed_cents` after an overpayment.
  - `version` is SQLAlchemy's version_id_col: every UPDATE is issued as
    "... WHERE id = :id AND version = :seen_version". A concurrent writer that
    got there first makes the row count 0 and SQLAlchemy raises
    StaleDataError, which settlement_tracker translates to ConcurrencyError.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tabsplit.app.extensions import db
from tabsplit.app.models.split import _enum_values


class ParticipantStatus(str, enum.Enum):
    PENDING = "pending"
    PAID    = "paid"


class Participant(db.Model):
    __tablename__ = "participants"

    __table_args__ = (
        UniqueConstraint("split_id", "participant_id", name="uq_participants_split_participant"),
        CheckConstraint("amount_owed_cents >= 0", name="ck_participants_owed_nonnegative"),
        CheckConstraint("amount_paid_cents >= 0", name="ck_participants_paid_nonnegative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    split_id: Mapped[int] = mapped_column(
        ForeignKey("splits.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    participant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Zero-based input order.
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Registered user, if any. Unregistered invitees carry contact details instead.
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    amount_owed_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    amount_paid_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[ParticipantStatus] = mapped_column(
        Enum(
            ParticipantStatus,
            name="participant_status_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ParticipantStatus.PENDING,
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ──────────────────────────────────────────────────────

    split: Mapped["Split"] = relationship(  # noqa: F821
        "Split",
        back_populates="participants",
    )

    @property
    def is_paid(self) -> bool:
        return self.status == ParticipantStatus.PAID

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Participant id={self.id} "
            f"split_id={self.split_id} "
            f"participant_id={self.participant_id!r} "
            f"owed={self.amount_owed_cents} "
            f"paid={self.amount_paid_cents}>"
        )
