"""
schemas/split_schema.py: Marshmallow schemas for split composition.

Validation responsibility:
  - This file (request shape → 400):
      - Field types, lengths, enum values, whole-cent integers
      - DUPLICATE_PARTICIPANT   - same id twice in the participants array
      - METHOD_INPUT_MISMATCH   - method input missing, or sent for the wrong method
      - participant count within MAX_PARTICIPANTS
  - services/ (engine invariants → 422):
      - PERCENTAGE_SUM_MISMATCH, SPLIT_SUM_MISMATCH, NEGATIVE_SHARE,
        UNKNOWN_PARTICIPANT, MISSING_SHARE  - split_methods.py / consistency.py
      - UNASSIGNED_ITEM, SUBTOTAL_MISMATCH  - receipt_allocator.py

Money is always integer cents here (strict=True rejects 12.5 and "1250").
Dollar amounts only enter through ParsedReceiptSchema (receipt_schema.py).

IMPORTANT: Inherits from marshmallow.Schema directly - never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from tabsplit.app.errors import ErrorCode
from tabsplit.app.models.split import SplitMethod, TaxTipMethod

DEFAULT_MAX_PARTICIPANTS = 50


def _validate_non_empty_after_trim(value: str) -> None:
    """validate.Length(min=1) alone accepts "   "; this strips first."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _id_field(**kwargs) -> fields.Str:
    return fields.Str(
        validate=[validate.Length(min=1, max=64), _validate_non_empty_after_trim],
        **kwargs,
    )


# ── Participants ───────────────────────────────────────────────────────────

class ParticipantInputSchema(Schema):
    """
    One participant. `id` is a registered user's id or an invitee handle;
    it must be unique within the split.
    """

    id = _id_field(required=True)

    display_name = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=100), _validate_non_empty_after_trim],
    )

    user_id = fields.Str(load_default=None, validate=validate.Length(max=64))
    external_email = fields.Email(load_default=None)
    external_phone = fields.Str(
        load_default=None,
        validate=validate.Regexp(r"^\+?[0-9]{7,15}$", error="Not a valid phone number."),
    )


# ── Receipt input ──────────────────────────────────────────────────────────

class ReceiptItemInputSchema(Schema):
    """One receipt line. `claimed_by` keeps claim order."""

    id = _id_field(required=True)
    name = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    price_cents = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=0, error="price_cents must not be negative."),
    )
    quantity = fields.Int(
        load_default=1,
        strict=True,
        validate=validate.Range(min=1, error="quantity must be at least 1."),
    )
    claimed_by = fields.List(_id_field(), load_default=list)


class ReceiptInputSchema(Schema):
    """Receipt in integer cents, as produced by POST /receipts/normalize."""

    items = fields.List(
        fields.Nested(ReceiptItemInputSchema),
        required=True,
        validate=validate.Length(min=1, error="A receipt needs at least one item."),
    )
    subtotal_cents = fields.Int(required=True, strict=True, validate=validate.Range(min=0))
    tax_cents = fields.Int(load_default=0, strict=True, validate=validate.Range(min=0))
    tip_cents = fields.Int(load_default=0, strict=True, validate=validate.Range(min=0))

    tax_tip_method = fields.Enum(
        TaxTipMethod,
        load_default=TaxTipMethod.PROPORTIONAL,
        by_value=True,
    )

    # Carried over from /receipts/normalize output. When present it must equal
    # subtotal + tax + tip.
    total_cents = fields.Int(load_default=None, allow_none=True, strict=True)
    date = fields.Str(load_default=None, allow_none=True)

    merchant = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=255))
    confidence = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=validate.Range(min=0, max=1),
    )

    @validates_schema
    def validate_unique_item_ids(self, data: dict, **kwargs) -> None:
        ids = [item["id"] for item in data.get("items") or []]
        if len(ids) != len(set(ids)):
            raise ValidationError({"items": ["Receipt item ids must be unique."]})


# ── Split composition ──────────────────────────────────────────────────────

class CreateSplitSchema(Schema):
    """
    POST /splits

    Method input:
      - equal      → nothing extra. percentages / amounts / receipt must be absent.
      - percentage → `percentages` {participant_id: decimal} required.
      - custom     → `amounts` {participant_id: cents} required.
      - receipt    → `receipt` required; optional `claims` {item_id: [participant_id]}
                     overrides the items' own claimed_by. `total_cents` may be
                     omitted (it defaults to subtotal + tax + tip).

    Checks NOT in this schema (belong in services):
      - percentages summing to 100     → split_methods.py
      - shares summing to total_cents  → consistency.py
      - unclaimed items                → receipt_allocator.py
    """

    def __init__(self, *args, max_participants: int = DEFAULT_MAX_PARTICIPANTS, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_participants = max_participants

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=255, error="Title must be between 1 and 255 characters."),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=2000))

    creator_id = _id_field(required=True)

    method = fields.Enum(
        SplitMethod,
        required=True,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_METHOD},
    )

    total_cents = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, error="total_cents must be a positive number of cents."),
    )

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        required=True,
        validate=validate.Length(min=1, error=ErrorCode.NO_PARTICIPANTS),
    )

    percentages = fields.Dict(keys=fields.Str(), values=fields.Decimal(), load_default=None)

    amounts = fields.Dict(keys=fields.Str(), values=fields.Int(strict=True), load_default=None)

    receipt = fields.Nested(ReceiptInputSchema, load_default=None)

    claims = fields.Dict(keys=fields.Str(), values=fields.List(fields.Str()), load_default=None)

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        participants = data.get("participants") or []

        if len(participants) > self.max_participants:
            raise ValidationError({
                "participants": [
                    f"A split can have at most {self.max_participants} participants."
                ],
            })

        ids = [p["id"] for p in participants]
        if len(ids) != len(set(ids)):
            raise ValidationError({"participants": [ErrorCode.DUPLICATE_PARTICIPANT]})

    @validates_schema
    def validate_method_input(self, data: dict, **kwargs) -> None:
        """
        Exactly the input the method needs, nothing else. Amounts sent with
        method='equal' are rejected, not ignored.
        """
        method = data.get("method")
        if method is None:
            return

        required_input = {
            SplitMethod.EQUAL: None,
            SplitMethod.PERCENTAGE: "percentages",
            SplitMethod.CUSTOM: "amounts",
            SplitMethod.RECEIPT: "receipt",
        }[method]

        for name in ("percentages", "amounts", "receipt", "claims"):
            allowed = name == required_input or (name == "claims" and method == SplitMethod.RECEIPT)
            if data.get(name) is not None and not allowed:
                raise ValidationError({name: [ErrorCode.METHOD_INPUT_MISMATCH]})

        if required_input is not None and data.get(required_input) is None:
            raise ValidationError({required_input: [ErrorCode.METHOD_INPUT_MISMATCH]})

        if method != SplitMethod.RECEIPT and data.get("total_cents") is None:
            raise ValidationError({
                "total_cents": ["total_cents is required for this split method."],
            })


class PreviewSplitSchema(CreateSplitSchema):
    """
    POST /splits/preview - same shape as CreateSplitSchema, but the split is
    not being saved, so title and creator are optional.
    """

    title = fields.Str(load_default=None, validate=validate.Length(max=255))
    creator_id = fields.Str(load_default=None, validate=validate.Length(max=64))
