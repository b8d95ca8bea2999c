"""Add share sum integrity trigger.

Revision: 002_add_share_sum_trigger
Created:  2026-10-18

Database-level backstop for the split invariant:

    SUM(participants.amount_owed_cents) == splits.total_cents

for every split that is not a draft. The service layer already refuses to
persist a split that fails the ConsistencyValidator; this trigger catches
writes that bypass it.

A CHECK constraint cannot aggregate sibling rows, so this is a constraint
trigger on participants, DEFERRABLE INITIALLY DEFERRED: split_service inserts
the split row and then its participants within one flush, and the sum only
holds once the last participant row is written. The check runs at COMMIT.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
"""

from __future__ import annotations

from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "002_add_share_sum_trigger"
down_revision: str | None = "001_initial_schema"
branch_labels: tuple | None = None
depends_on: tuple | None = None


_CREATE_FUNCTION = """
CREATE OR REPLACE FUNCTION fn_check_share_sum()
RETURNS TRIGGER
LANGUAGE plpgsql
AS $$
DECLARE
    v_split_id   INTEGER;
    v_share_sum  BIGINT;
    v_total      INTEGER;
    v_status     split_status_enum;
BEGIN
    IF TG_OP = 'DELETE' THEN
        v_split_id := OLD.split_id;
    ELSE
        v_split_id := NEW.split_id;
    END IF;

    SELECT total_cents, status
    INTO v_total, v_status
    FROM splits
    WHERE id = v_split_id;

    -- Drafts have not been validated yet.
    IF v_status IS NULL OR v_status = 'draft' THEN
        RETURN NULL;
    END IF;

    SELECT COALESCE(SUM(amount_owed_cents), 0)
    INTO v_share_sum
    FROM participants
    WHERE split_id = v_split_id;

    IF v_share_sum <> v_total THEN
        RAISE EXCEPTION
            'share sum (%) does not equal split total (%) for split id=%',
            v_share_sum, v_total, v_split_id
            USING ERRCODE = '23514';  -- check_violation
    END IF;

    RETURN NULL;
END;
$$;
"""

_CREATE_TRIGGER = """
CREATE CONSTRAINT TRIGGER trg_participants_share_sum_check
    AFTER INSERT OR UPDATE OR DELETE
    ON participants
    DEFERRABLE INITIALLY DEFERRED
    FOR EACH ROW
    EXECUTE FUNCTION fn_check_share_sum();
"""

_DROP_TRIGGER = "DROP TRIGGER IF EXISTS trg_participants_share_sum_check ON participants;"
_DROP_FUNCTION = "DROP FUNCTION IF EXISTS fn_check_share_sum();"


def upgrade() -> None:
    """Creates fn_check_share_sum(), then the constraint trigger that calls it."""
    op.execute(_CREATE_FUNCTION)
    op.execute(_CREATE_TRIGGER)


def downgrade() -> None:
    """Trigger first (it references the function), then the function."""
    op.execute(_DROP_TRIGGER)
    op.execute(_DROP_FUNCTION)
