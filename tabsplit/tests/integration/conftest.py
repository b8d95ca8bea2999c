"""
tests/integration/conftest.py: Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig points at in-memory SQLite unless TEST_DATABASE_URL is set
    (e.g. to a PostgreSQL test database).
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Helper functions (not fixtures) are provided for common operations:
  - split_payload(...)   → request body for POST /splits
  - make_split(...)      → created split dict
  - pay(...)             → HTTP response for POST /splits/:id/payments

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from tabsplit.app import create_app
from tabsplit.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the app in 'testing' mode once and builds the schema."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test, children before parents:
    payment_events → receipt_items → participants → splits.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM payment_events"))
            conn.execute(text("DELETE FROM receipt_items"))
            conn.execute(text("DELETE FROM participants"))
            conn.execute(text("DELETE FROM splits"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

SPLITS_URL = "/api/v1/splits/"


def participants(*ids: str) -> list[dict]:
    """["alice", "bob"] → participant input dicts with display names."""
    return [{"id": pid, "display_name": pid.capitalize()} for pid in ids]


def split_payload(
    method: str = "equal",
    total_cents: int | None = 10000,
    ids: tuple[str, ...] = ("alice", "bob", "carol"),
    title: str = "Dinner",
    creator_id: str = "alice",
    **extra,
) -> dict:
    """Request body for POST /splits. `extra` carries method input."""
    body = {
        "title": title,
        "creator_id": creator_id,
        "method": method,
        "participants": participants(*ids),
        **extra,
    }
    if total_cents is not None:
        body["total_cents"] = total_cents
    return body


def make_split(client, **kwargs) -> dict:
    """Creates a split and returns the split data dict."""
    resp = client.post(SPLITS_URL, json=split_payload(**kwargs))
    assert resp.status_code == 201, f"make_split failed: {resp.get_json()}"
    return resp.get_json()["data"]


def pay(client, split_id: int, participant_id: str, amount_cents: int, event_id: str, **extra):
    """Posts a PaymentRecorded event. Returns the HTTP response."""
    return client.post(
        f"{SPLITS_URL}{split_id}/payments",
        json={
            "participant_id": participant_id,
            "amount_cents": amount_cents,
            "event_id": event_id,
            **extra,
        },
    )


def owed(split: dict) -> dict[str, int]:
    """{participant_id: amount_owed_cents} from a serialized split."""
    return {p["participant_id"]: p["amount_owed_cents"] for p in split["participants"]}
