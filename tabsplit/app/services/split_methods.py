"""
services/split_methods.py: Share resolution for the equal, percentage and
custom split methods.

This file is the SINGLE SOURCE OF TRUTH for turning a total and a method into
per-participant shares. Do not divide a split total anywhere else.

  equal       total / n per participant, exact fractions handed to
              remainder.distribute_remainder. The first participants in input
              order pick up the leftover cents.
  percentage  percentages must add up to 100 within PERCENTAGE_TOLERANCE.
              Shares are total * pct / sum(pcts) as exact fractions, then
              apportioned by distribute_remainder, so the result sums to the
              total exactly even when the percentages are off by the tolerance.
  custom      caller-supplied cents. No rounding, no correction. The map goes
              straight to consistency.validate_shares, which rejects any
              mismatch - including a single cent.

Layer rules:
  - Pure functions. No Flask imports, no session, no shared state.
  - Participant order is significant (remainder tie-break order); every
    function preserves it in the returned dict.
"""

from __future__ import annotations

from decimal import Decimal
from fractions import Fraction
from typing import Mapping, Sequence

from tabsplit.app.errors import ErrorCode, SplitValidationError
from tabsplit.app.models.split import SplitMethod
from tabsplit.app.services.consistency import validate_shares
from tabsplit.app.services.remainder import distribute_remainder

PERCENTAGE_TOLERANCE = Decimal("0.01")


# ── Input guards ───────────────────────────────────────────────────────────

def _is_cents(value) -> bool:
    """True for a real int. bool is an int subclass and is rejected."""
    return isinstance(value, int) and not isinstance(value, bool)


def _require_valid_total(total_cents) -> None:
    if not _is_cents(total_cents) or total_cents <= 0:
        raise SplitValidationError(
            ErrorCode.INVALID_TOTAL,
            f"Split total must be a positive whole number of cents, got {total_cents!r}.",
            field="total_cents",
        )


def _require_participants(participant_ids: Sequence[str]) -> None:
    if not participant_ids:
        raise SplitValidationError(
            ErrorCode.NO_PARTICIPANTS,
            "A split needs at least one participant.",
            field="participants",
        )

    seen: set[str] = set()
    for pid in participant_ids:
        if pid in seen:
            raise SplitValidationError(
                ErrorCode.DUPLICATE_PARTICIPANT,
                f"Participant {pid!r} appears more than once.",
                field="participants",
                detail={"participant_id": pid},
            )
        seen.add(pid)


# ── Public resolvers ───────────────────────────────────────────────────────

def resolve_equal_split(total_cents: int, participant_ids: Sequence[str]) -> dict[str, int]:
    """
    Splits `total_cents` evenly over `participant_ids`.

    Example:
        resolve_equal_split(10000, ["a", "b", "c"])
        → {"a": 3334, "b": 3333, "c": 3333}
    """
    _require_valid_total(total_cents)
    _require_participants(participant_ids)

    raw = Fraction(total_cents, len(participant_ids))
    return distribute_remainder(total_cents, {pid: raw for pid in participant_ids})


def resolve_percentage_split(
        total_cents: int,
        pct_map: Mapping[str, Decimal | int | str],
) -> dict[str, int]:
    """
    Splits `total_cents` by percentage.

    Args:
        pct_map: {participant_id: percentage} in participant order. Values are
                 Decimal (or anything Decimal() accepts exactly - never float).

    Raises:
        SplitValidationError(PERCENTAGE_SUM_MISMATCH) if the percentages do not
        sum to 100 ± 0.01.
    """
    _require_valid_total(total_cents)
    _require_participants(list(pct_map))

    percentages: dict[str, Decimal] = {}
    for pid, pct in pct_map.items():
        if isinstance(pct, float):
            # Binary floats are not exact percentages; callers must map them at the boundary.
            pct = Decimal(str(pct))
        pct = Decimal(pct)
        if pct < 0:
            raise SplitValidationError(
                ErrorCode.NEGATIVE_SHARE,
                f"Participant {pid!r} has a negative percentage ({pct}).",
                field="percentages",
                detail={"participant_id": pid, "percentage": str(pct)},
            )
        percentages[pid] = pct

    pct_sum = sum(percentages.values(), Decimal("0"))
    if abs(pct_sum - Decimal("100")) > PERCENTAGE_TOLERANCE:
        raise SplitValidationError(
            ErrorCode.PERCENTAGE_SUM_MISMATCH,
            f"Percentages add up to {pct_sum}, expected 100.",
            field="percentages",
            detail={"percentage_sum": str(pct_sum)},
        )

    # Normalising by pct_sum keeps the exact shares summing to total_cents
    # anywhere inside the tolerance band.
    scale = Fraction(total_cents) / Fraction(pct_sum)
    raw = {pid: Fraction(pct) * scale for pid, pct in percentages.items()}
    return distribute_remainder(total_cents, raw)


def resolve_custom_split(total_cents: int, amount_map: Mapping[str, int]) -> dict[str, int]:
    """
    Accepts caller-entered cents as-is after validating them.

    Succeeds iff every value is a whole number of cents and the values sum to
    `total_cents` exactly. Nothing is rounded or rebalanced.
    """
    _require_valid_total(total_cents)
    _require_participants(list(amount_map))

    for pid, cents in amount_map.items():
        if not _is_cents(cents):
            raise SplitValidationError(
                ErrorCode.INVALID_AMOUNT,
                f"Amount for {pid!r} must be a whole number of cents, got {cents!r}.",
                field="amounts",
                detail={"participant_id": pid},
            )

    validate_shares(total_cents, amount_map)
    return dict(amount_map)


def resolve_shares(
        method: SplitMethod,
        total_cents: int,
        participant_ids: Sequence[str],
        percentages: Mapping[str, Decimal] | None = None,
        amounts: Mapping[str, int] | None = None,
) -> dict[str, int]:
    """
    Dispatches to the resolver for `method` (equal / percentage / custom).

    Percentage and custom maps are re-keyed into participant order so the
    remainder tie-break always follows the participant list, whatever order
    the caller's map came in. Ids that are not participants are kept (after
    the participant ids) so the validator can report them.
    """
    if method == SplitMethod.EQUAL:
        return resolve_equal_split(total_cents, participant_ids)

    if method == SplitMethod.PERCENTAGE:
        return resolve_percentage_split(total_cents, _in_participant_order(percentages or {}, participant_ids))

    if method == SplitMethod.CUSTOM:
        return resolve_custom_split(total_cents, _in_participant_order(amounts or {}, participant_ids))

    raise SplitValidationError(
        ErrorCode.INVALID_SPLIT_METHOD,
        f"Split method {method!r} is not resolved here; receipt splits use the receipt allocator.",
        field="method",
    )


def _in_participant_order(values: Mapping, participant_ids: Sequence[str]) -> dict:
    ordered = {pid: values[pid] for pid in participant_ids if pid in values}
    for pid, value in values.items():
        ordered.setdefault(pid, value)
    return ordered
