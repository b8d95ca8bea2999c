"""Initial schema - splits, participants, receipt items, payment events.

Revision: 001_initial_schema
Created:  2026-10-18

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. PostgreSQL enum types (must exist before tables that reference them)
  2. Tables in FK dependency order (splits → participants, receipt_items
     → payment_events)
  3. Indexes

ON DELETE policies:
  participants.split_id               → RESTRICT  (payments reference participants)
  receipt_items.split_id              → CASCADE   (items owned by the split)
  payment_events.split_id             → RESTRICT  (audit trail)
  payment_events.participant_row_id   → RESTRICT  (audit trail)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration - no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    """
    Apply the full initial schema.

    Enum types are created via op.execute() so the exact SQL is explicit and
    reviewable; the columns below reference them with create_type=False.
    """

    # ── Step 1: PostgreSQL enum types ─────────────────────────────────────

    op.execute("""
        CREATE TYPE split_method_enum AS ENUM ('equal', 'custom', 'percentage', 'receipt')
    """)
    op.execute("""
        CREATE TYPE split_status_enum AS ENUM ('draft', 'active', 'settled')
    """)
    op.execute("""
        CREATE TYPE tax_tip_method_enum AS ENUM ('proportional', 'equal')
    """)
    op.execute("""
        CREATE TYPE participant_status_enum AS ENUM ('pending', 'paid')
    """)

    # ── Step 2: splits ─────────────────────────────────────────────────────
    # total_cents is integer cents, strictly positive.

    op.create_table(
        "splits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column(
            "method",
            postgresql.ENUM(
                "equal", "custom", "percentage", "receipt",
                name="split_method_enum",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(
                "draft", "active", "settled",
                name="split_status_enum",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("subtotal_cents", sa.Integer(), nullable=True),
        sa.Column("tax_cents", sa.Integer(), nullable=True),
        sa.Column("tip_cents", sa.Integer(), nullable=True),
        sa.Column(
            "tax_tip_method",
            postgresql.ENUM(
                "proportional", "equal",
                name="tax_tip_method_enum",
                create_type=False,
            ),
            nullable=True,
        ),
        sa.Column("merchant", sa.String(255), nullable=True),
        sa.Column("receipt_confidence", sa.Numeric(4, 3), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_splits"),
        sa.CheckConstraint("total_cents > 0", name="ck_splits_total_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_splits_title_nonempty",
        ),
    )

    # ── Step 3: participants ───────────────────────────────────────────────
    # UNIQUE(split_id, participant_id). `version` backs optimistic locking.

    op.create_table(
        "participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "split_id",
            sa.Integer(),
            sa.ForeignKey("splits.id", ondelete="RESTRICT", name="fk_participants_split"),
            nullable=False,
        ),
        sa.Column("participant_id", sa.String(64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("external_email", sa.String(255), nullable=True),
        sa.Column("external_phone", sa.String(32), nullable=True),
        sa.Column("amount_owed_cents", sa.Integer(), nullable=False),
        sa.Column(
            "amount_paid_cents",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "status",
            postgresql.ENUM(
                "pending", "paid",
                name="participant_status_enum",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_participants"),
        sa.UniqueConstraint(
            "split_id", "participant_id",
            name="uq_participants_split_participant",
        ),
        sa.CheckConstraint("amount_owed_cents >= 0", name="ck_participants_owed_nonnegative"),
        sa.CheckConstraint("amount_paid_cents >= 0", name="ck_participants_paid_nonnegative"),
    )

    # ── Step 4: receipt_items ──────────────────────────────────────────────

    op.create_table(
        "receipt_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "split_id",
            sa.Integer(),
            sa.ForeignKey("splits.id", ondelete="CASCADE", name="fk_receipt_items_split"),
            nullable=False,
        ),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("claimed_by", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_receipt_items"),
        sa.CheckConstraint("price_cents >= 0", name="ck_receipt_items_price_nonnegative"),
        sa.CheckConstraint("quantity >= 1", name="ck_receipt_items_quantity_positive"),
    )

    # ── Step 5: payment_events ─────────────────────────────────────────────
    # UNIQUE(event_id) is the idempotency guard for PaymentRecorded events.

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column(
            "split_id",
            sa.Integer(),
            sa.ForeignKey("splits.id", ondelete="RESTRICT", name="fk_payment_events_split"),
            nullable=False,
        ),
        sa.Column(
            "participant_row_id",
            sa.Integer(),
            sa.ForeignKey(
                "participants.id",
                ondelete="RESTRICT",
                name="fk_payment_events_participant",
            ),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "recorded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payment_events"),
        sa.UniqueConstraint("event_id", name="uq_payment_events_event_id"),
        sa.CheckConstraint("amount_cents > 0", name="ck_payment_events_amount_positive"),
    )

    # ── Step 6: indexes ────────────────────────────────────────────────────

    op.create_index("idx_splits_creator", "splits", ["creator_id"])
    op.create_index("idx_participants_split", "participants", ["split_id"])
    op.create_index("idx_receipt_items_split", "receipt_items", ["split_id"])
    op.create_index("idx_payment_events_split", "payment_events", ["split_id"])
    op.create_index(
        "idx_payment_events_participant",
        "payment_events",
        ["participant_row_id"],
    )


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.
    Local development reset only; prefer a corrective migration in production.
    """
    op.drop_index("idx_payment_events_participant", table_name="payment_events")
    op.drop_index("idx_payment_events_split",       table_name="payment_events")
    op.drop_index("idx_receipt_items_split",        table_name="receipt_items")
    op.drop_index("idx_participants_split",         table_name="participants")
    op.drop_index("idx_splits_creator",             table_name="splits")

    op.drop_table("payment_events")
    op.drop_table("receipt_items")
    op.drop_table("participants")
    op.drop_table("splits")

    op.execute("DROP TYPE IF EXISTS participant_status_enum")
    op.execute("DROP TYPE IF EXISTS tax_tip_method_enum")
    op.execute("DROP TYPE IF EXISTS split_status_enum")
    op.execute("DROP TYPE IF EXISTS split_method_enum")
