"""
routes/receipts.py: Receipt intake.

Endpoints (url_prefix=/api/v1/receipts):
  POST   /receipts/normalize   → 200  OCR ParsedReceipt → integer-cent receipt

The response `data` can be sent back as the `receipt` of a receipt split once
the participants have claimed their items.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from tabsplit.app.schemas.receipt_schema import ParsedReceiptSchema
from tabsplit.app.services import receipt_intake

receipts_bp = Blueprint("receipts", __name__)


@receipts_bp.route("/normalize", methods=["POST"])
def normalize_receipt():
    data = ParsedReceiptSchema().load(request.get_json(force=True) or {})
    receipt, warnings = receipt_intake.normalize_parsed_receipt(
        data,
        low_confidence=current_app.config.get("RECEIPT_LOW_CONFIDENCE"),
    )
    return jsonify({"data": receipt, "warnings": warnings}), 200
