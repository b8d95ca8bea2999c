"""
routes/splits.py: Split route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - _serialize_*() helpers are pure data-shaping, not business logic.

Every response uses the envelope {"data": ..., "warnings": [...]}. Money is
integer cents in every payload.

Endpoints (url_prefix=/api/v1/splits):
  POST   /splits                    → 201  compose, validate and activate a split
  POST   /splits/preview            → 200  shares for a split being composed
  GET    /splits/:id                → 200  split + participants
  GET    /splits/:id/progress       → 200  payment progress
  POST   /splits/:id/payments       → 200  apply a PaymentRecorded event
  GET    /splits/:id/payments       → 200  applied payment events
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from tabsplit.app.extensions import db
from tabsplit.app.models.participant import Participant
from tabsplit.app.models.payment_event import PaymentEvent
from tabsplit.app.models.split import Split
from tabsplit.app.schemas.payment_schema import PaymentRecordedSchema
from tabsplit.app.schemas.split_schema import CreateSplitSchema, PreviewSplitSchema
from tabsplit.app.services import settlement_tracker, split_service

splits_bp = Blueprint("splits", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def _iso(value):
    return value.isoformat() if value else None


def _serialize_participant(p: Participant) -> dict:
    return {
        "participant_id": p.participant_id,
        "display_name": p.display_name,
        "user_id": p.user_id,
        "external_email": p.external_email,
        "external_phone": p.external_phone,
        "amount_owed_cents": p.amount_owed_cents,
        "amount_paid_cents": p.amount_paid_cents,
        "status": p.status.value,
        "paid_at": _iso(p.paid_at),
    }


def _serialize_split(split: Split) -> dict:
    """Converts a Split ORM object to a plain dict for JSON output."""
    payload = {
        "id": split.id,
        "title": split.title,
        "description": split.description,
        "creator_id": split.creator_id,
        "method": split.method.value,
        "status": split.status.value,
        "total_cents": split.total_cents,
        "created_at": _iso(split.created_at),
        "updated_at": _iso(split.updated_at),
        "settled_at": _iso(split.settled_at),
        "participants": [_serialize_participant(p) for p in split.participants],
    }
    if split.receipt_items:
        payload["receipt"] = {
            "merchant": split.merchant,
            "subtotal_cents": split.subtotal_cents,
            "tax_cents": split.tax_cents,
            "tip_cents": split.tip_cents,
            "tax_tip_method": split.tax_tip_method.value if split.tax_tip_method else None,
            "confidence": split.receipt_confidence,  # Decimal → string (JSON provider)
            "items": [
                {
                    "id": item.item_id,
                    "name": item.name,
                    "price_cents": item.price_cents,
                    "quantity": item.quantity,
                    "claimed_by": list(item.claimed_by),
                }
                for item in split.receipt_items
            ],
        }
    return payload


def _serialize_payment_event(event: PaymentEvent) -> dict:
    return {
        "event_id": event.event_id,
        "participant_id": event.participant.participant_id,
        "amount_cents": event.amount_cents,
        "occurred_at": _iso(event.occurred_at),
        "recorded_at": _iso(event.recorded_at),
    }


def _max_participants() -> int:
    return current_app.config.get("MAX_PARTICIPANTS", 50)


# ── Route handlers ─────────────────────────────────────────────────────────

@splits_bp.route("/", methods=["POST"])
def create_split():
    """
    POST /splits - Compose a split and activate it.

    Shares are resolved and validated before anything is written; a split
    that fails validation is never persisted.
    """
    data = CreateSplitSchema(max_participants=_max_participants()).load(
        request.get_json(force=True) or {}
    )
    split = split_service.create_split(data=data, session=db.session)
    db.session.commit()
    return jsonify({"data": _serialize_split(split), "warnings": []}), 201


@splits_bp.route("/preview", methods=["POST"])
def preview_split():
    """POST /splits/preview - Resolve shares without persisting anything."""
    data = PreviewSplitSchema(max_participants=_max_participants()).load(
        request.get_json(force=True) or {}
    )
    preview = split_service.preview_split(data)
    return jsonify({"data": preview, "warnings": []}), 200


@splits_bp.route("/<int:split_id>", methods=["GET"])
def get_split(split_id: int):
    split = split_service.get_split(split_id=split_id, session=db.session)
    return jsonify({"data": _serialize_split(split), "warnings": []}), 200


@splits_bp.route("/<int:split_id>/progress", methods=["GET"])
def get_progress(split_id: int):
    split = split_service.get_split(split_id=split_id, session=db.session)
    progress = settlement_tracker.compute_progress(split)
    return jsonify({
        "data": {"split_id": split.id, "status": split.status.value, **progress},
        "warnings": [],
    }), 200


@splits_bp.route("/<int:split_id>/payments", methods=["POST"])
def record_payment(split_id: int):
    """
    POST /splits/:id/payments - Apply a PaymentRecorded event.

    Duplicate events and overpayments are not errors: the response is 200
    with the current split and a DUPLICATE_EVENT / OVERPAYMENT warning.
    """
    data = PaymentRecordedSchema().load(request.get_json(force=True) or {})
    split, warnings = settlement_tracker.record_payment(
        split_id=split_id,
        participant_id=data["participant_id"],
        amount_cents=data["amount_cents"],
        event_id=data["event_id"],
        session=db.session,
        occurred_at=data.get("timestamp"),
    )
    db.session.commit()
    return jsonify({
        "data": {
            "split": _serialize_split(split),
            "progress": settlement_tracker.compute_progress(split),
        },
        "warnings": warnings,
    }), 200


@splits_bp.route("/<int:split_id>/payments", methods=["GET"])
def list_payments(split_id: int):
    events = settlement_tracker.list_payment_events(split_id=split_id, session=db.session)
    return jsonify({
        "data": [_serialize_payment_event(e) for e in events],
        "warnings": [],
    }), 200
