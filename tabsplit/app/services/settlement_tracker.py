"""
services/settlement_tracker.py: Payment application and settlement status.

The only engine component that mutates persisted state. It applies
PaymentRecorded events from the payment provider to Participant rows and
derives the Split's settlement status from them.

State machines:
  Participant  pending → paid           (terminal, one-way)
  Split        draft → active → settled (terminal, one-way)

Rules:
  - amount_paid_cents only grows. It records everything received, so it can
    exceed amount_owed_cents. Overpayment returns an OVERPAYMENT warning; the
    engine never decides on a refund.
  - event_id is an idempotency key. A second event with the same id changes
    nothing and returns a DUPLICATE_EVENT warning with the current snapshot.
    An id that comes back with a different split, participant or amount is
    EVENT_ID_CONFLICT.
  - Split settlement is RECOMPUTED from the full participant set after every
    participant write (refresh_split_status). It is never a counter, so
    re-delivered or out-of-order events cannot double-settle or un-settle.
  - compute_progress() clamps each participant's contribution at
    amount_owed_cents.

Concurrency:
  Participant.version is the mapper's version_id_col. Two writers racing on
  the same participant both read version N; the second UPDATE matches no row
  and SQLAlchemy raises StaleDataError → ConcurrencyError (409). Two writers
  racing on the same event_id collide on UNIQUE(event_id) → ConcurrencyError.
  In both cases the caller retries, and the retry sees the winner's write.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy Session.
  - Commits are the route's responsibility - only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tabsplit.app.errors import (
    ConcurrencyError,
    ErrorCode,
    NotFoundError,
    SplitValidationError,
    WarningCode,
)
from tabsplit.app.models.participant import Participant, ParticipantStatus
from tabsplit.app.models.payment_event import PaymentEvent
from tabsplit.app.models.split import Split, SplitStatus

logger = logging.getLogger(__name__)

_SPLIT_ORDER = {
    SplitStatus.DRAFT:   0,
    SplitStatus.ACTIVE:  1,
    SplitStatus.SETTLED: 2,
}


# ── State transitions ──────────────────────────────────────────────────────

def is_paid_in_full(participant) -> bool:
    """Covered once amount_paid reaches amount_owed. A zero share is covered from the start."""
    return participant.amount_paid_cents >= participant.amount_owed_cents


def mark_zero_shares_paid(split, now: datetime | None = None) -> None:
    """Flips participants who owe nothing to paid. Runs when a split is activated."""
    now = now or datetime.now(timezone.utc)
    for participant in split.participants:
        if participant.status == ParticipantStatus.PENDING and is_paid_in_full(participant):
            participant.status = ParticipantStatus.PAID
            participant.paid_at = now


def transition_split(split, new_status: SplitStatus) -> bool:
    """
    Moves `split` forward to `new_status`.

    Returns True if the status changed, False if it was already there.
    Raises INVALID_STATUS_TRANSITION for any backward move.
    """
    if split.status == new_status:
        return False

    if _SPLIT_ORDER[new_status] < _SPLIT_ORDER[split.status]:
        raise SplitValidationError(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"Split {split.id} cannot move from {split.status.value} back to {new_status.value}.",
            field="status",
            detail={"from": split.status.value, "to": new_status.value},
        )

    split.status = new_status
    if new_status == SplitStatus.SETTLED and split.settled_at is None:
        split.settled_at = datetime.now(timezone.utc)
    return True


def refresh_split_status(split) -> bool:
    """
    Recomputes settlement from the full participant set.

    Only ever moves an active split to settled. A draft split is left alone
    (it has not been approved yet) and a settled split stays settled.
    Returns True if the split became settled on this call.
    """
    if split.status != SplitStatus.ACTIVE:
        return False

    participants = list(split.participants)
    if participants and all(is_paid_in_full(p) for p in participants):
        return transition_split(split, SplitStatus.SETTLED)
    return False


# ── Progress ───────────────────────────────────────────────────────────────

def compute_progress(split) -> dict:
    """
    Derived, read-only view of a split's payment progress.

    Returns:
        {
          "paid_count":            participants with amount_paid >= amount_owed,
          "total_count":           number of participants,
          "total_collected_cents": sum(min(amount_paid, amount_owed)),
          "remaining_cents":       total_cents - total_collected_cents,
          "is_settled":            every participant paid in full,
        }
    """
    participants = list(split.participants)

    paid_count = sum(
        1 for p in participants if is_paid_in_full(p)
    )
    collected = sum(
        min(p.amount_paid_cents, p.amount_owed_cents) for p in participants
    )

    return {
        "paid_count": paid_count,
        "total_count": len(participants),
        "total_collected_cents": collected,
        "remaining_cents": split.total_cents - collected,
        "is_settled": bool(participants) and paid_count == len(participants),
    }


# ── Payment application ────────────────────────────────────────────────────

def _get_split_or_404(split_id: int, session: Session) -> Split:
    split = session.get(Split, split_id)
    if split is None:
        raise NotFoundError(
            ErrorCode.SPLIT_NOT_FOUND,
            f"Split {split_id} does not exist.",
            detail={"split_id": split_id},
        )
    return split


def _get_participant_or_404(split: Split, participant_id: str) -> Participant:
    for participant in split.participants:
        if participant.participant_id == participant_id:
            return participant
    raise NotFoundError(
        ErrorCode.PARTICIPANT_NOT_FOUND,
        f"Participant {participant_id!r} is not part of split {split.id}.",
        detail={"split_id": split.id, "participant_id": participant_id},
    )


def _find_event(event_id: str, session: Session) -> PaymentEvent | None:
    return session.execute(
        select(PaymentEvent).where(PaymentEvent.event_id == event_id)
    ).scalar_one_or_none()


def _require_same_event(
        existing: PaymentEvent,
        split: Split,
        participant_id: str,
        amount_cents: int,
) -> None:
    """
    A re-delivered event must describe the payment already recorded under its
    id. Anything else is a different payment reusing the id.
    """
    recorded_for = None
    if existing.split_id == split.id:
        recorded_for = next(
            (p.participant_id for p in split.participants if p.id == existing.participant_row_id),
            None,
        )

    if recorded_for != participant_id or existing.amount_cents != amount_cents:
        raise SplitValidationError(
            ErrorCode.EVENT_ID_CONFLICT,
            f"Payment event {existing.event_id} was already recorded for a different payment.",
            field="event_id",
            detail={
                "event_id": existing.event_id,
                "recorded_split_id": existing.split_id,
                "recorded_amount_cents": existing.amount_cents,
            },
        )


def apply_payment(participant, amount_cents: int, now: datetime | None = None) -> bool:
    """
    Adds `amount_cents` to a participant and flips it to paid once covered.

    Returns True if the participant became paid on this call.
    """
    participant.amount_paid_cents += amount_cents

    if (
            participant.status == ParticipantStatus.PENDING
            and is_paid_in_full(participant)
    ):
        participant.status = ParticipantStatus.PAID
        participant.paid_at = now or datetime.now(timezone.utc)
        return True
    return False


def record_payment(
        split_id: int,
        participant_id: str,
        amount_cents: int,
        event_id: str,
        session: Session,
        occurred_at: datetime | None = None,
) -> tuple[Split, list[dict]]:
    """
    Applies one PaymentRecorded event.

    Args:
        split_id:       The split the payment belongs to.
        participant_id: The caller-facing participant id within that split.
        amount_cents:   Amount received. Positive whole cents.
        event_id:       Provider event id; the idempotency key.
        occurred_at:    Provider timestamp, stored for audit.

    Returns:
        (Split, warnings) - the updated split and a list of warning dicts.
        An empty list means no warnings.

    Raises:
        NotFoundError       SPLIT_NOT_FOUND / PARTICIPANT_NOT_FOUND
        SplitValidationError INVALID_AMOUNT / SPLIT_NOT_ACTIVE / EVENT_ID_CONFLICT
        ConcurrencyError    STALE_PARTICIPANT_WRITE
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise SplitValidationError(
            ErrorCode.INVALID_AMOUNT,
            f"Payment amount must be a positive whole number of cents, got {amount_cents!r}.",
            field="amount_cents",
        )

    split = _get_split_or_404(split_id, session)

    existing = _find_event(event_id, session)
    if existing is not None:
        _require_same_event(existing, split, participant_id, amount_cents)
        logger.info(
            "Ignoring duplicate payment event %s for split %s", event_id, split.id
        )
        return split, [{
            "code": WarningCode.DUPLICATE_EVENT,
            "message": f"Payment event {event_id} was already recorded. Nothing changed.",
        }]

    if split.status == SplitStatus.DRAFT:
        raise SplitValidationError(
            ErrorCode.SPLIT_NOT_ACTIVE,
            f"Split {split.id} is still a draft and cannot take payments.",
            detail={"split_id": split.id},
        )

    participant = _get_participant_or_404(split, participant_id)

    warnings: list[dict] = []
    now = datetime.now(timezone.utc)

    became_paid = apply_payment(participant, amount_cents, now)

    if participant.amount_paid_cents > participant.amount_owed_cents:
        excess = participant.amount_paid_cents - participant.amount_owed_cents
        logger.warning(
            "Overpayment on split %s participant %s: %s cents over",
            split.id, participant_id, excess,
        )
        warnings.append({
            "code": WarningCode.OVERPAYMENT,
            "message": (
                f"Participant {participant_id} has paid {participant.amount_paid_cents} cents "
                f"against {participant.amount_owed_cents} owed ({excess} over). "
                f"Recorded in full; no refund has been initiated."
            ),
        })

    session.add(PaymentEvent(
        event_id=event_id,
        split_id=split.id,
        participant_row_id=participant.id,
        amount_cents=amount_cents,
        occurred_at=occurred_at,
    ))
    split.updated_at = now

    settled = refresh_split_status(split)

    try:
        session.flush()
    except StaleDataError as exc:
        raise ConcurrencyError(
            ErrorCode.STALE_PARTICIPANT_WRITE,
            f"Participant {participant_id!r} on split {split_id} was updated concurrently. Retry.",
            detail={"split_id": split_id, "participant_id": participant_id},
        ) from exc
    except IntegrityError as exc:
        raise ConcurrencyError(
            ErrorCode.STALE_PARTICIPANT_WRITE,
            f"Payment event {event_id} is being recorded concurrently. Retry.",
            detail={"split_id": split_id, "event_id": event_id},
        ) from exc

    logger.info(
        "Recorded payment %s: %s cents for participant %s on split %s",
        event_id, amount_cents, participant_id, split.id,
    )
    if became_paid:
        logger.info("Participant %s on split %s is paid", participant_id, split.id)
    if settled:
        logger.info("Split %s is settled", split.id)

    return split, warnings


def list_payment_events(split_id: int, session: Session) -> list[PaymentEvent]:
    """Returns the applied payment events for a split, oldest first."""
    _get_split_or_404(split_id, session)
    stmt = (
        select(PaymentEvent)
        .where(PaymentEvent.split_id == split_id)
        .order_by(PaymentEvent.id)
    )
    return list(session.execute(stmt).scalars().all())
