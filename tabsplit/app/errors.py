"""
errors.py: AppError hierarchy and error code registry.

Every error raised by the engine or returned by the TabSplit API must use a
code defined here. Do not raise strings or generic exceptions from service or
route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - `detail` carries machine-readable context (item id, computed sum, ...).
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
            detail: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field   # which request field caused the error
        self.detail      = detail  # structured context for the caller

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        if self.detail:
            payload["detail"] = self.detail
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class SplitValidationError(AppError):
    """
    A share mapping, receipt or payment violates an engine invariant.

    Always surfaced to the caller. For the custom method the engine never
    adjusts the caller's numbers to make this go away.
    """

    def __init__(
            self,
            code: str,
            message: str,
            field: str | None = None,
            detail: dict | None = None,
    ) -> None:
        super().__init__(code, message, 422, field=field, detail=detail)


class NotFoundError(AppError):

    def __init__(self, code: str, message: str, detail: dict | None = None) -> None:
        super().__init__(code, message, 404, detail=detail)


class ConcurrencyError(AppError):
    """A participant row changed underneath a read-modify-write. Retry."""

    def __init__(self, code: str, message: str, detail: dict | None = None) -> None:
        super().__init__(code, message, 409, detail=detail)


class ExternalServiceError(AppError):
    """Pass-through failure reported by the OCR or payment collaborator."""

    def __init__(self, code: str, message: str, detail: dict | None = None) -> None:
        super().__init__(code, message, 502, detail=detail)


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_METHOD       = "INVALID_SPLIT_METHOD"
    METHOD_INPUT_MISMATCH      = "METHOD_INPUT_MISMATCH"

    # ── Share Validation (422) ─────────────────────────────────────────────
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    NEGATIVE_SHARE             = "NEGATIVE_SHARE"
    NO_PARTICIPANTS            = "NO_PARTICIPANTS"
    DUPLICATE_PARTICIPANT      = "DUPLICATE_PARTICIPANT"   # also 400 at schema layer
    UNKNOWN_PARTICIPANT        = "UNKNOWN_PARTICIPANT"
    MISSING_SHARE              = "MISSING_SHARE"
    PERCENTAGE_SUM_MISMATCH    = "PERCENTAGE_SUM_MISMATCH"
    INVALID_TOTAL              = "INVALID_TOTAL"
    INVALID_AMOUNT             = "INVALID_AMOUNT"

    # ── Receipt Validation (422) ───────────────────────────────────────────
    UNASSIGNED_ITEM            = "UNASSIGNED_ITEM"
    SUBTOTAL_MISMATCH          = "SUBTOTAL_MISMATCH"
    UNKNOWN_ITEM               = "UNKNOWN_ITEM"
    RECEIPT_TOTAL_MISMATCH     = "RECEIPT_TOTAL_MISMATCH"

    # ── Lifecycle (422) ────────────────────────────────────────────────────
    INVALID_STATUS_TRANSITION  = "INVALID_STATUS_TRANSITION"
    SPLIT_NOT_ACTIVE           = "SPLIT_NOT_ACTIVE"
    EVENT_ID_CONFLICT          = "EVENT_ID_CONFLICT"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    SPLIT_NOT_FOUND            = "SPLIT_NOT_FOUND"
    PARTICIPANT_NOT_FOUND      = "PARTICIPANT_NOT_FOUND"

    # ── Concurrency (409) ──────────────────────────────────────────────────
    STALE_PARTICIPANT_WRITE    = "STALE_PARTICIPANT_WRITE"

    # ── Collaborator Errors (502) ──────────────────────────────────────────
    EXTERNAL_SERVICE_FAILURE   = "EXTERNAL_SERVICE_FAILURE"

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Payment pushed amount_paid past amount_owed. Recorded in full; progress
    # clamps at amount_owed. No refund is initiated.
    OVERPAYMENT     = "OVERPAYMENT"

    # event_id was already applied. Nothing changed.
    DUPLICATE_EVENT = "DUPLICATE_EVENT"

    # OCR confidence below RECEIPT_LOW_CONFIDENCE.
    LOW_CONFIDENCE  = "LOW_CONFIDENCE"

    # OCR numbers that do not add up. The receipt is still returned.
    RECEIPT_SUBTOTAL_MISMATCH = "RECEIPT_SUBTOTAL_MISMATCH"
    RECEIPT_TOTAL_MISMATCH    = "RECEIPT_TOTAL_MISMATCH"
