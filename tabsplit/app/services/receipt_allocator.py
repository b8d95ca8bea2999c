"""
services/receipt_allocator.py: Shares from an itemised receipt.

Algorithm:
  1. Each item's line total (price_cents * quantity) is split evenly over the
     participants who claimed it, using its own distribute_remainder pass keyed
     by claim order, and added to each claimant's running item subtotal.
  2. An item nobody claimed is rejected with UNASSIGNED_ITEM. It is never
     spread over everyone behind the caller's back.
  3. Tax and tip are each spread in proportion to the item subtotals
     (tax * subtotal_p / subtotal), each through its own distribute_remainder
     pass in participant order, so the tax and tip columns are exact on their
     own. Items + tax + tip are then summed per participant.

With TaxTipMethod.EQUAL, tax and tip are split evenly over all participants
instead. The proportional method falls back to the even split when the claimed
subtotal is zero, since there is nothing to be proportional to.

Inputs are plain dicts, the same shape ReceiptItemInputSchema produces:
  {"id": str, "name": str, "price_cents": int, "quantity": int, "claimed_by": [str, ...]}

Layer rules:
  - Pure functions. No Flask imports, no session, no shared state.
"""

from __future__ import annotations

from fractions import Fraction
from typing import Mapping, Sequence

from tabsplit.app.errors import ErrorCode, SplitValidationError
from tabsplit.app.models.split import TaxTipMethod
from tabsplit.app.services.remainder import distribute_remainder
from tabsplit.app.services.split_methods import _is_cents, _require_participants


def _require_non_negative_cents(value, field: str) -> None:
    if not _is_cents(value) or value < 0:
        raise SplitValidationError(
            ErrorCode.INVALID_AMOUNT,
            f"{field} must be a non-negative whole number of cents, got {value!r}.",
            field=field,
        )


def _claimants(item: dict, claims: Mapping[str, Sequence[str]] | None) -> list[str]:
    """Claimants in claim order with repeats dropped. `claims` wins over the item's own list."""
    raw = item.get("claimed_by") or []
    if claims is not None and item["id"] in claims:
        raw = claims[item["id"]]
    return list(dict.fromkeys(raw))


def _spread(total: int, weights: Mapping[str, int], participant_ids: Sequence[str]) -> dict[str, int]:
    """
    Spreads `total` over participants in proportion to `weights`, or evenly
    when the weights add up to zero.
    """
    weight_sum = sum(weights.values())
    if weight_sum == 0:
        raw = {pid: Fraction(total, len(participant_ids)) for pid in participant_ids}
    else:
        raw = {pid: Fraction(total * weights[pid], weight_sum) for pid in participant_ids}
    return distribute_remainder(total, raw)


def allocate_receipt_breakdown(
        items: Sequence[dict],
        tax_cents: int,
        tip_cents: int,
        subtotal_cents: int,
        participant_ids: Sequence[str],
        claims: Mapping[str, Sequence[str]] | None = None,
        tax_tip_method: TaxTipMethod = TaxTipMethod.PROPORTIONAL,
) -> dict[str, dict[str, int]]:
    """
    Computes each participant's receipt breakdown.

    Args:
        items:           Receipt items (see module docstring for the shape).
        tax_cents:       Receipt tax.
        tip_cents:       Receipt tip.
        subtotal_cents:  Receipt subtotal; must equal the sum of line totals.
        participant_ids: Every participant of the split, in order. People who
                         claimed nothing still get a (possibly zero) row.
        claims:          Optional {item_id: [participant_id, ...]} that
                         replaces the `claimed_by` of the items it names.
        tax_tip_method:  PROPORTIONAL (default) or EQUAL.

    Returns:
        {participant_id: {"items": c, "tax": c, "tip": c, "total": c}}
        in participant order.

    Raises:
        SplitValidationError - NO_PARTICIPANTS, DUPLICATE_PARTICIPANT,
        INVALID_AMOUNT, UNASSIGNED_ITEM, UNKNOWN_ITEM, UNKNOWN_PARTICIPANT,
        SUBTOTAL_MISMATCH, INVALID_TOTAL.
    """
    _require_participants(participant_ids)
    _require_non_negative_cents(tax_cents, "tax_cents")
    _require_non_negative_cents(tip_cents, "tip_cents")
    _require_non_negative_cents(subtotal_cents, "subtotal_cents")

    item_ids = {item["id"] for item in items}
    for item_id in claims or {}:
        if item_id not in item_ids:
            raise SplitValidationError(
                ErrorCode.UNKNOWN_ITEM,
                f"Claims name item {item_id!r}, which is not on the receipt.",
                field="claims",
                detail={"item_id": item_id},
            )

    known = set(participant_ids)
    item_totals = {pid: 0 for pid in participant_ids}
    line_sum = 0

    for item in items:
        _require_non_negative_cents(item["price_cents"], "price_cents")
        quantity = item.get("quantity", 1)
        if not _is_cents(quantity) or quantity < 1:
            raise SplitValidationError(
                ErrorCode.INVALID_AMOUNT,
                f"Item {item['id']!r} has an invalid quantity {quantity!r}.",
                field="quantity",
                detail={"item_id": item["id"]},
            )

        claimants = _claimants(item, claims)
        if not claimants:
            raise SplitValidationError(
                ErrorCode.UNASSIGNED_ITEM,
                f"Item {item['id']!r} ({item.get('name', '')}) has not been claimed by anyone.",
                field="items",
                detail={"item_id": item["id"]},
            )

        for pid in claimants:
            if pid not in known:
                raise SplitValidationError(
                    ErrorCode.UNKNOWN_PARTICIPANT,
                    f"Item {item['id']!r} is claimed by {pid!r}, who is not a participant.",
                    field="items",
                    detail={"item_id": item["id"], "participant_id": pid},
                )

        line_total = item["price_cents"] * quantity
        line_sum += line_total

        per_claimant = Fraction(line_total, len(claimants))
        shares = distribute_remainder(line_total, {pid: per_claimant for pid in claimants})
        for pid, cents in shares.items():
            item_totals[pid] += cents

    if line_sum != subtotal_cents:
        raise SplitValidationError(
            ErrorCode.SUBTOTAL_MISMATCH,
            f"Items add up to {line_sum} cents but the receipt subtotal is {subtotal_cents} cents.",
            field="subtotal_cents",
            detail={"items_sum": line_sum, "subtotal_cents": subtotal_cents},
        )

    if subtotal_cents + tax_cents + tip_cents <= 0:
        raise SplitValidationError(
            ErrorCode.INVALID_TOTAL,
            "Receipt total must be greater than zero.",
            field="subtotal_cents",
        )

    if tax_tip_method == TaxTipMethod.EQUAL:
        weights = {pid: 0 for pid in participant_ids}
    else:
        weights = item_totals

    tax = _spread(tax_cents, weights, participant_ids)
    tip = _spread(tip_cents, weights, participant_ids)

    return {
        pid: {
            "items": item_totals[pid],
            "tax":   tax[pid],
            "tip":   tip[pid],
            "total": item_totals[pid] + tax[pid] + tip[pid],
        }
        for pid in participant_ids
    }


def allocate_receipt_split(
        items: Sequence[dict],
        tax_cents: int,
        tip_cents: int,
        subtotal_cents: int,
        participant_ids: Sequence[str],
        claims: Mapping[str, Sequence[str]] | None = None,
        tax_tip_method: TaxTipMethod = TaxTipMethod.PROPORTIONAL,
) -> dict[str, int]:
    """
    Per-participant totals for a receipt split.

    sum(result.values()) == subtotal_cents + tax_cents + tip_cents, exactly.
    """
    breakdown = allocate_receipt_breakdown(
        items,
        tax_cents,
        tip_cents,
        subtotal_cents,
        participant_ids,
        claims=claims,
        tax_tip_method=tax_tip_method,
    )
    return {pid: row["total"] for pid, row in breakdown.items()}
