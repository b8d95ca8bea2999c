"""
services/receipt_intake.py: OCR ParsedReceipt → integer-cent receipt input.

The OCR collaborator reports money in dollars, as JSON numbers or strings.
ParsedReceiptSchema has already turned those into Decimals with at most two
decimal places; this module converts them to whole cents so that no
fractional currency value gets past the boundary.

`confidence` is carried through as metadata. It never changes the numbers.
A payload that reports an OCR failure is passed through as
ExternalServiceError; retrying is the collaborator's job, not ours.
"""

from __future__ import annotations

from decimal import Decimal

from tabsplit.app.errors import ErrorCode, ExternalServiceError, WarningCode

_CENTS = Decimal("100")


def to_cents(amount: Decimal) -> int:
    """Exact dollars → cents. The schema guarantees at most 2 decimal places."""
    return int(amount * _CENTS)


def normalize_parsed_receipt(data: dict, low_confidence: float | None = None) -> tuple[dict, list[dict]]:
    """
    Maps a validated ParsedReceipt payload to receipt input for a split.

    Args:
        data:           Validated dict from ParsedReceiptSchema.
        low_confidence: Confidence below which a LOW_CONFIDENCE warning is added.

    Returns:
        (receipt, warnings). `receipt` has the shape ReceiptInputSchema accepts:
        {"items": [...], "subtotal_cents", "tax_cents", "tip_cents",
         "total_cents", "merchant", "date", "confidence"}.
        Items get an id of "item-<n>" when the OCR payload has none, and an
        empty claimed_by list (claims are made by people, not by OCR).

    Raises:
        ExternalServiceError if the payload carries an OCR error.
    """
    error = data.get("error")
    if error:
        raise ExternalServiceError(
            ErrorCode.EXTERNAL_SERVICE_FAILURE,
            error.get("message") or "Receipt parsing failed.",
            detail={"type": error.get("type"), "details": error.get("details")},
        )

    items = [
        {
            "id": item.get("id") or f"item-{position + 1}",
            "name": item["name"],
            "price_cents": to_cents(item["price"]),
            "quantity": item.get("quantity", 1),
            "claimed_by": [],
        }
        for position, item in enumerate(data.get("items") or [])
    ]

    subtotal_cents = to_cents(data["subtotal"])
    tax_cents = to_cents(data.get("tax") or Decimal("0"))
    tip_cents = to_cents(data.get("tip") or Decimal("0"))
    total = data.get("total")
    total_cents = to_cents(total) if total is not None else subtotal_cents + tax_cents + tip_cents

    receipt = {
        "items": items,
        "subtotal_cents": subtotal_cents,
        "tax_cents": tax_cents,
        "tip_cents": tip_cents,
        "total_cents": total_cents,
        "merchant": data.get("merchant"),
        "date": data.get("date"),
        "confidence": data.get("confidence"),
    }

    warnings: list[dict] = []

    items_sum = sum(i["price_cents"] * i["quantity"] for i in items)
    if items_sum != subtotal_cents:
        warnings.append({
            "code": WarningCode.RECEIPT_SUBTOTAL_MISMATCH,
            "message": (
                f"Items add up to {items_sum} cents but the receipt subtotal reads "
                f"{subtotal_cents} cents. Correct the items before splitting."
            ),
        })

    if total_cents != subtotal_cents + tax_cents + tip_cents:
        warnings.append({
            "code": WarningCode.RECEIPT_TOTAL_MISMATCH,
            "message": (
                f"Receipt total reads {total_cents} cents but subtotal + tax + tip is "
                f"{subtotal_cents + tax_cents + tip_cents} cents."
            ),
        })

    confidence = data.get("confidence")
    if low_confidence is not None and confidence is not None and confidence < low_confidence:
        warnings.append({
            "code": WarningCode.LOW_CONFIDENCE,
            "message": f"OCR confidence is {confidence}; review the items before splitting.",
        })

    return receipt, warnings
