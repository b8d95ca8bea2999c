"""
services/split_service.py: Split composition, activation and lookup.

Flow for a new split (create_split):
  1. compute_shares()   resolver (equal/percentage/custom) or receipt allocator
  2. validate_shares()  ConsistencyValidator against the participant list
  3. build a draft Split + Participant rows from the approved shares
  4. activate_split()   validate_split() on the aggregate, then draft → active
  5. session.add + flush

Nothing is persisted in draft. A row in `splits` has always passed the
ConsistencyValidator, so sum(amount_owed_cents) == total_cents for every
persisted split.

Layer rules:
  - No Flask imports. Receives validated dicts from the schemas and a Session.
  - Commits are the route's responsibility - only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from tabsplit.app.errors import ErrorCode, NotFoundError, SplitValidationError
from tabsplit.app.models.participant import Participant, ParticipantStatus
from tabsplit.app.models.receipt_item import ReceiptItem
from tabsplit.app.models.split import Split, SplitMethod, SplitStatus, TaxTipMethod
from tabsplit.app.services.consistency import validate_shares, validate_split
from tabsplit.app.services.receipt_allocator import allocate_receipt_breakdown
from tabsplit.app.services.settlement_tracker import mark_zero_shares_paid, transition_split
from tabsplit.app.services.split_methods import resolve_shares

logger = logging.getLogger(__name__)


# ── Share computation ──────────────────────────────────────────────────────

def _participant_ids(data: dict) -> list[str]:
    return [p["id"] for p in data.get("participants") or []]


def _receipt_total(receipt: dict) -> int:
    return receipt["subtotal_cents"] + receipt["tax_cents"] + receipt["tip_cents"]


def _require_receipt_total(receipt: dict) -> None:
    stated = receipt.get("total_cents")
    if stated is None:
        return
    parts = _receipt_total(receipt)
    if stated != parts:
        raise SplitValidationError(
            ErrorCode.RECEIPT_TOTAL_MISMATCH,
            f"Receipt total is {stated} cents but subtotal + tax + tip is {parts} cents.",
            field="receipt.total_cents",
            detail={"total_cents": stated, "subtotal_tax_tip_cents": parts},
        )


def compute_shares(data: dict) -> tuple[int, dict[str, int], dict | None]:
    """
    Resolves the shares for a composed split without touching the database.

    Args:
        data: Validated dict from CreateSplitSchema / PreviewSplitSchema.

    Returns:
        (total_cents, shares, breakdown). `breakdown` is the per-participant
        receipt breakdown for receipt splits and None otherwise.

    Raises:
        SplitValidationError for any resolver, allocator or consistency failure.
    """
    method: SplitMethod = data["method"]
    participant_ids = _participant_ids(data)

    if method == SplitMethod.RECEIPT:
        receipt = data["receipt"]
        _require_receipt_total(receipt)
        breakdown = allocate_receipt_breakdown(
            receipt["items"],
            receipt["tax_cents"],
            receipt["tip_cents"],
            receipt["subtotal_cents"],
            participant_ids,
            claims=data.get("claims"),
            tax_tip_method=receipt.get("tax_tip_method", TaxTipMethod.PROPORTIONAL),
        )
        shares = {pid: row["total"] for pid, row in breakdown.items()}
        total_cents = data.get("total_cents")
        if total_cents is None:
            total_cents = _receipt_total(receipt)
    else:
        breakdown = None
        total_cents = data["total_cents"]
        shares = resolve_shares(
            method,
            total_cents,
            participant_ids,
            percentages=data.get("percentages"),
            amounts=data.get("amounts"),
        )

    validate_shares(total_cents, shares, participant_ids)
    return total_cents, shares, breakdown


def preview_split(data: dict) -> dict:
    """
    Shares for a split that is still being composed. Nothing is persisted.
    """
    total_cents, shares, breakdown = compute_shares(data)
    preview = {
        "method": data["method"].value,
        "total_cents": total_cents,
        "shares": [
            {"participant_id": pid, "amount_cents": cents}
            for pid, cents in shares.items()
        ],
    }
    if breakdown is not None:
        preview["breakdown"] = [
            {"participant_id": pid, **row} for pid, row in breakdown.items()
        ]
    return preview


# ── Lifecycle ──────────────────────────────────────────────────────────────

def activate_split(split: Split) -> None:
    """
    The draft → active gate. The aggregate must pass the ConsistencyValidator
    first; a split that fails stays a draft. Participants with a zero share
    start out paid.
    """
    validate_split(split)
    transition_split(split, SplitStatus.ACTIVE)
    mark_zero_shares_paid(split)


def _build_draft(data: dict, total_cents: int, shares: dict[str, int]) -> Split:
    method: SplitMethod = data["method"]

    split = Split(
        title=data["title"].strip(),
        description=data.get("description"),
        total_cents=total_cents,
        method=method,
        creator_id=data["creator_id"],
        status=SplitStatus.DRAFT,
    )

    for position, p in enumerate(data["participants"]):
        split.participants.append(Participant(
            participant_id=p["id"],
            position=position,
            display_name=p["display_name"].strip(),
            user_id=p.get("user_id"),
            external_email=p.get("external_email"),
            external_phone=p.get("external_phone"),
            amount_owed_cents=shares[p["id"]],
            amount_paid_cents=0,
            status=ParticipantStatus.PENDING,
        ))

    if method == SplitMethod.RECEIPT:
        receipt = data["receipt"]
        claims = data.get("claims") or {}
        split.subtotal_cents = receipt["subtotal_cents"]
        split.tax_cents = receipt["tax_cents"]
        split.tip_cents = receipt["tip_cents"]
        split.tax_tip_method = receipt.get("tax_tip_method", TaxTipMethod.PROPORTIONAL)
        split.merchant = receipt.get("merchant")
        confidence = receipt.get("confidence")
        split.receipt_confidence = Decimal(str(confidence)) if confidence is not None else None

        for position, item in enumerate(receipt["items"]):
            claimed_by = claims.get(item["id"], item.get("claimed_by") or [])
            split.receipt_items.append(ReceiptItem(
                item_id=item["id"],
                position=position,
                name=item["name"],
                price_cents=item["price_cents"],
                quantity=item.get("quantity", 1),
                claimed_by=list(dict.fromkeys(claimed_by)),
            ))

    return split


def create_split(data: dict, session: Session) -> Split:
    """
    Composes, validates and persists a new split as `active`.

    Args:
        data: Validated dict from CreateSplitSchema.

    Returns:
        The persisted Split with participants loaded.

    Raises:
        SplitValidationError if the shares fail any engine invariant.
    """
    total_cents, shares, _ = compute_shares(data)

    split = _build_draft(data, total_cents, shares)
    activate_split(split)

    split.updated_at = datetime.now(timezone.utc)
    session.add(split)
    session.flush()

    logger.info(
        "Activated %s split %s: %s cents over %s participants",
        split.method.value, split.id, split.total_cents, len(split.participants),
    )
    return split


def get_split(split_id: int, session: Session) -> Split:
    """Returns the Split or raises SPLIT_NOT_FOUND (404)."""
    split = session.get(Split, split_id)
    if split is None:
        raise NotFoundError(
            ErrorCode.SPLIT_NOT_FOUND,
            f"Split {split_id} does not exist.",
            detail={"split_id": split_id},
        )
    return split
