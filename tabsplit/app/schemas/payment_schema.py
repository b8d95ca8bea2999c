"""
schemas/payment_schema.py: Marshmallow schema for PaymentRecorded events.

Validation responsibility:
  - This file: field types, positive whole-cent amount, event id present.
  - services/settlement_tracker.py:
      - SPLIT_NOT_FOUND / PARTICIPANT_NOT_FOUND (404) - requires DB lookup
      - SPLIT_NOT_ACTIVE (422)                        - requires split status
      - duplicate event_id (DUPLICATE_EVENT warning)  - requires DB lookup
      - OVERPAYMENT warning                           - requires amount owed

IMPORTANT: Inherits from marshmallow.Schema directly - never ma.Schema.
"""

from __future__ import annotations

from datetime import timezone

from marshmallow import Schema, fields, validate


class PaymentRecordedSchema(Schema):
    """
    POST /splits/:id/payments

    Sent by the payment collaborator once money has actually moved.
    `event_id` is the provider's event id and is used as the idempotency key.
    """

    participant_id = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=64),
    )

    amount_cents = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="amount_cents must be a positive number of cents."),
    )

    event_id = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=128),
    )

    # Provider timestamp; a naive value is read as UTC.
    timestamp = fields.AwareDateTime(load_default=None, default_timezone=timezone.utc)
