"""
Importing any model module pulls in all of them, so relationship targets
referenced by name ("Participant", "ReceiptItem", ...) are always registered
before SQLAlchemy configures the mappers.
"""

from tabsplit.app.models import participant, payment_event, receipt_item, split  # noqa: F401
