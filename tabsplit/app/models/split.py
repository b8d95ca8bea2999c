"""
models/split.py: Split table definition.

No business logic. No imports from services or routes.

Key design points:
  - Every money column is an Integer number of cents - never Float or Numeric.
  - `status` only ever moves draft → active → settled. The transition guard
    lives in services/settlement_tracker.py; the column just stores it.
  - Rows are only written once ConsistencyValidator has approved the shares,
    so a persisted Split always satisfies sum(amount_owed_cents) == total_cents.
  - SplitMethod / SplitStatus / TaxTipMethod are Python enums so they can be
    imported by schemas and services without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tabsplit.app.extensions import db


# ── Enum Definitions ───────────────────────────────────────────────────────

class SplitMethod(str, enum.Enum):
    EQUAL      = "equal"
    CUSTOM     = "custom"
    PERCENTAGE = "percentage"
    RECEIPT    = "receipt"


class SplitStatus(str, enum.Enum):
    DRAFT   = "draft"
    ACTIVE  = "active"
    SETTLED = "settled"


class TaxTipMethod(str, enum.Enum):
    """How receipt tax and tip are spread over participants."""
    PROPORTIONAL = "proportional"
    EQUAL        = "equal"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'equal'), not names ('EQUAL')."""
    return [member.value for member in enum_cls]


# ── Model ──────────────────────────────────────────────────────────────────

class Split(db.Model):
    __tablename__ = "splits"

    __table_args__ = (
        CheckConstraint("total_cents > 0", name="ck_splits_total_positive"),
        CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_splits_title_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    method: Mapped[SplitMethod] = mapped_column(
        Enum(
            SplitMethod,
            name="split_method_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # Opaque id of the user who created the split (auth lives elsewhere).
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[SplitStatus] = mapped_column(
        Enum(
            SplitStatus,
            name="split_status_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitStatus.DRAFT,
    )

    # ── Receipt method only ────────────────────────────────────────────────
    subtotal_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tax_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tip_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tax_tip_method: Mapped[TaxTipMethod | None] = mapped_column(
        Enum(
            TaxTipMethod,
            name="tax_tip_method_enum",
            values_callable=_enum_values,
        ),
        nullable=True,
    )

    merchant: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # OCR confidence (0-1). Metadata only; never feeds the allocation math.
    receipt_confidence: Mapped[Decimal | None] = mapped_column(
        Numeric(4, 3),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Set once, the first time every participant is observed as paid.
    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    # Ordered by input position - that order is the remainder tie-break order.
    participants: Mapped[list["Participant"]] = relationship(  # noqa: F821
        "Participant",
        back_populates="split",
        order_by="Participant.position",
        cascade="all, delete-orphan",
    )

    receipt_items: Mapped[list["ReceiptItem"]] = relationship(  # noqa: F821
        "ReceiptItem",
        back_populates="split",
        order_by="ReceiptItem.position",
        cascade="all, delete-orphan",
    )

    payment_events: Mapped[list["PaymentEvent"]] = relationship(  # noqa: F821
        "PaymentEvent",
        back_populates="split",
        order_by="PaymentEvent.id",
    )

    @property
    def is_settled(self) -> bool:
        return self.status == SplitStatus.SETTLED

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"method={self.method} "
            f"total_cents={self.total_cents} "
            f"status={self.status}>"
        )
