"""
models/receipt_item.py: ReceiptItem table definition.

Stored for receipt-method splits only, so the itemised breakdown behind each
participant's share can be shown later. The shares themselves live on
participants; these rows are never re-read by the allocation math.
"""

from __future__ import annotations

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tabsplit.app.extensions import db


class ReceiptItem(db.Model):
    __tablename__ = "receipt_items"

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_receipt_items_price_nonnegative"),
        CheckConstraint("quantity >= 1", name="ck_receipt_items_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    split_id: Mapped[int] = mapped_column(
        ForeignKey("splits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Caller / OCR item id.
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Ordered participant ids; the order is the tie-break order for the item's remainder.
    claimed_by: Mapped[list[str]] = mapped_column(JSON, nullable=False)

    split: Mapped["Split"] = relationship(  # noqa: F821
        "Split",
        back_populates="receipt_items",
    )

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ReceiptItem id={self.id} "
            f"item_id={self.item_id!r} "
            f"line_total={self.line_total_cents}>"
        )
