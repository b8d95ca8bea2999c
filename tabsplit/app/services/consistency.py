"""
services/consistency.py: Share mapping consistency checks.

Runs on every candidate (total_cents, shares, participants) before a Split may
move from draft to active. Checks run in a fixed order and the first violation
wins:

  1. SPLIT_SUM_MISMATCH      sum(shares) == total_cents, zero tolerance
  2. NEGATIVE_SHARE          every share >= 0
  3. DUPLICATE_PARTICIPANT   participant ids are unique
     UNKNOWN_PARTICIPANT     every share belongs to a listed participant
     MISSING_SHARE           every listed participant has a share
  4. NO_PARTICIPANTS         at least one participant

For equal / percentage / receipt splits check 1 can only fail on a bug,
because remainder.py already made the sum exact. For custom splits it is the
primary check: the caller's numbers are rejected, never adjusted.

Layer rules:
  - Pure functions. Inputs are read, never mutated.
  - Raises SplitValidationError; returns None when the mapping is consistent.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from tabsplit.app.errors import ErrorCode, SplitValidationError


def _check_pairs(
        total_cents: int,
        pairs: Sequence[tuple[str, int]],
        participant_ids: Sequence[str],
) -> None:
    """Shared implementation. `pairs` may repeat a key; a dict could not."""
    share_sum = sum(cents for _, cents in pairs)
    if share_sum != total_cents:
        raise SplitValidationError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Shares add up to {share_sum} cents but the split total is {total_cents} cents.",
            field="shares",
            detail={"share_sum": share_sum, "total_cents": total_cents,
                    "difference": share_sum - total_cents},
        )

    for pid, cents in pairs:
        if cents < 0:
            raise SplitValidationError(
                ErrorCode.NEGATIVE_SHARE,
                f"Participant {pid!r} has a negative share ({cents} cents).",
                field="shares",
                detail={"participant_id": pid, "amount_cents": cents},
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

    share_ids: set[str] = set()
    for pid, _ in pairs:
        if pid in share_ids:
            raise SplitValidationError(
                ErrorCode.DUPLICATE_PARTICIPANT,
                f"Participant {pid!r} has more than one share.",
                field="shares",
                detail={"participant_id": pid},
            )
        share_ids.add(pid)
        if pid not in seen:
            raise SplitValidationError(
                ErrorCode.UNKNOWN_PARTICIPANT,
                f"Share given for {pid!r}, who is not a participant of this split.",
                field="shares",
                detail={"participant_id": pid},
            )

    for pid in participant_ids:
        if pid not in share_ids:
            raise SplitValidationError(
                ErrorCode.MISSING_SHARE,
                f"Participant {pid!r} has no share.",
                field="shares",
                detail={"participant_id": pid},
            )

    if not participant_ids:
        raise SplitValidationError(
            ErrorCode.NO_PARTICIPANTS,
            "A split needs at least one participant.",
            field="participants",
        )


def validate_shares(
        total_cents: int,
        shares: Mapping[str, int],
        participant_ids: Iterable[str] | None = None,
) -> None:
    """
    Validates a candidate share mapping against the split total.

    Args:
        total_cents:     The split total.
        shares:          {participant_id: cents}.
        participant_ids: The split's participant list. Defaults to the share
                         keys, which is what resolve_custom_split passes.
    """
    ids = list(shares) if participant_ids is None else list(participant_ids)
    _check_pairs(total_cents, list(shares.items()), ids)


def validate_split(split) -> None:
    """
    Validates a Split aggregate (ORM object or anything with `total_cents`
    and `participants[*].participant_id / amount_owed_cents`).
    """
    participants = list(split.participants)
    _check_pairs(
        split.total_cents,
        [(p.participant_id, p.amount_owed_cents) for p in participants],
        [p.participant_id for p in participants],
    )
