"""
schemas/receipt_schema.py: Marshmallow schema for the OCR collaborator's
ParsedReceipt payload (POST /receipts/normalize).

This is the only place dollar amounts enter the system. They are loaded as
Decimal (never float) and rejected with INVALID_AMOUNT_PRECISION if they
carry more than 2 decimal places. services/receipt_intake.py converts them
to integer cents.

Unknown keys are dropped: the OCR provider adds fields between versions and
none of them affect the split.

IMPORTANT: Inherits from marshmallow.Schema directly - never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from tabsplit.app.errors import ErrorCode


def _validate_dollar_amount(value: Decimal) -> None:
    """Non-negative, at most 2 decimal places. Never rounded."""
    if value < Decimal("0"):
        raise ValidationError("Amount must not be negative.")

    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → reject
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _dollars(**kwargs) -> fields.Decimal:
    return fields.Decimal(validate=_validate_dollar_amount, **kwargs)


class ParsedReceiptItemSchema(Schema):

    class Meta:
        unknown = EXCLUDE

    id = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=64))
    name = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    price = _dollars(required=True)
    quantity = fields.Int(
        load_default=1,
        strict=True,
        validate=validate.Range(min=1, error="quantity must be at least 1."),
    )


class ParsedReceiptErrorSchema(Schema):

    class Meta:
        unknown = EXCLUDE

    type = fields.Str(required=True)
    message = fields.Str(load_default=None, allow_none=True)
    details = fields.Raw(load_default=None, allow_none=True)


class ParsedReceiptSchema(Schema):
    """
    {"items": [{"name", "price", "quantity"}], "subtotal", "tax", "tip",
     "total", "merchant", "date", "confidence"}

    or, when OCR failed: {"error": {"type", "message", "details"}}
    """

    class Meta:
        unknown = EXCLUDE

    items = fields.List(fields.Nested(ParsedReceiptItemSchema), load_default=list)
    subtotal = _dollars(load_default=None, allow_none=True)
    tax = _dollars(load_default=Decimal("0"))
    tip = _dollars(load_default=Decimal("0"))
    total = _dollars(load_default=None, allow_none=True)

    merchant = fields.Str(load_default=None, allow_none=True)
    date = fields.Str(load_default=None, allow_none=True)
    confidence = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=validate.Range(min=0, max=1, error="confidence must be between 0 and 1."),
    )

    error = fields.Nested(ParsedReceiptErrorSchema, load_default=None, allow_none=True)

    @validates_schema
    def validate_receipt_present(self, data: dict, **kwargs) -> None:
        """A successful parse needs items and a subtotal; a failed one needs neither."""
        if data.get("error"):
            return
        if not data.get("items"):
            raise ValidationError({"items": ["A parsed receipt needs at least one item."]})
        if data.get("subtotal") is None:
            raise ValidationError({"subtotal": ["Missing data for required field."]})
