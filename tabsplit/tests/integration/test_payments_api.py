"""
tests/integration/test_payments_api.py: Integration tests for payment application.

Endpoints covered:
  POST /splits/:id/payments → 200 (apply PaymentRecorded event)
  GET  /splits/:id/payments → 200 (applied events)

Behaviour verified:
  - Partial payments accumulate; a participant flips to paid once covered
  - The split settles when - and only when - every participant is paid
  - A repeated event_id changes nothing and returns DUPLICATE_EVENT
  - An event_id reused for a different split, participant or amount is
    EVENT_ID_CONFLICT and records nothing
  - Participants with a zero share start paid, so the split can still settle
  - Overpayment is recorded in full with an OVERPAYMENT warning; progress clamps
  - A stale participant write surfaces as ConcurrencyError (409)
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from tabsplit.app.errors import ConcurrencyError, ErrorCode
from tabsplit.app.extensions import db
from tabsplit.app.models.split import Split
from tabsplit.app.services import settlement_tracker

from .conftest import SPLITS_URL, make_split, pay


def _two_way(client) -> dict:
    """$100 split equally between alice and bob → 5000 each."""
    return make_split(client, ids=("alice", "bob"))


def _participant(split: dict, pid: str) -> dict:
    return next(p for p in split["participants"] if p["participant_id"] == pid)


class TestRecordPayment:

    def test_partial_payment(self, client):
        split = _two_way(client)

        resp = pay(client, split["id"], "bob", 2000, "evt_1")
        assert resp.status_code == 200

        body = resp.get_json()
        assert body["warnings"] == []
        bob = _participant(body["data"]["split"], "bob")
        assert bob["amount_paid_cents"] == 2000
        assert bob["status"] == "pending"
        assert body["data"]["progress"]["total_collected_cents"] == 2000
        assert body["data"]["split"]["status"] == "active"

    def test_covering_payment_marks_participant_paid(self, client):
        split = _two_way(client)
        pay(client, split["id"], "bob", 2000, "evt_1")

        resp = pay(client, split["id"], "bob", 3000, "evt_2")
        bob = _participant(resp.get_json()["data"]["split"], "bob")
        assert bob["status"] == "paid"
        assert bob["paid_at"] is not None

    def test_split_settles_when_everyone_has_paid(self, client):
        split = _two_way(client)

        first = pay(client, split["id"], "alice", 5000, "evt_a")
        assert first.get_json()["data"]["split"]["status"] == "active"

        second = pay(client, split["id"], "bob", 5000, "evt_b")
        data = second.get_json()["data"]
        assert data["split"]["status"] == "settled"
        assert data["split"]["settled_at"] is not None
        assert data["progress"]["is_settled"] is True
        assert data["progress"]["remaining_cents"] == 0

    def test_duplicate_event_is_applied_once(self, client):
        split = _two_way(client)
        pay(client, split["id"], "bob", 2000, "evt_dup")

        resp = pay(client, split["id"], "bob", 2000, "evt_dup")
        assert resp.status_code == 200

        body = resp.get_json()
        assert [w["code"] for w in body["warnings"]] == ["DUPLICATE_EVENT"]
        assert _participant(body["data"]["split"], "bob")["amount_paid_cents"] == 2000

        events = client.get(f"{SPLITS_URL}{split['id']}/payments").get_json()["data"]
        assert len(events) == 1

    def test_redelivered_final_event_does_not_resettle(self, client):
        split = _two_way(client)
        pay(client, split["id"], "alice", 5000, "evt_a")
        settled = pay(client, split["id"], "bob", 5000, "evt_b").get_json()["data"]["split"]

        again = pay(client, split["id"], "bob", 5000, "evt_b").get_json()
        assert again["data"]["split"]["status"] == "settled"
        assert again["data"]["split"]["settled_at"] == settled["settled_at"]

    def test_overpayment_warns_and_progress_clamps(self, client):
        split = _two_way(client)

        resp = pay(client, split["id"], "bob", 7000, "evt_over")
        assert resp.status_code == 200

        body = resp.get_json()
        assert [w["code"] for w in body["warnings"]] == ["OVERPAYMENT"]
        assert _participant(body["data"]["split"], "bob")["amount_paid_cents"] == 7000
        assert body["data"]["progress"]["total_collected_cents"] == 5000
        assert body["data"]["progress"]["paid_count"] == 1

    def test_timestamp_is_stored(self, client):
        split = _two_way(client)
        pay(client, split["id"], "bob", 100, "evt_ts", timestamp="2026-10-18T12:00:00+00:00")

        events = client.get(f"{SPLITS_URL}{split['id']}/payments").get_json()["data"]
        assert events[0]["event_id"] == "evt_ts"
        assert events[0]["participant_id"] == "bob"
        assert events[0]["occurred_at"].startswith("2026-10-18T12:00:00")


class TestZeroShares:

    def test_zero_share_participant_starts_paid(self, client):
        split = make_split(
            client, method="custom", total_cents=1000, ids=("alice", "bob"),
            amounts={"alice": 1000, "bob": 0},
        )
        bob = _participant(split, "bob")
        assert bob["status"] == "paid"
        assert bob["paid_at"] is not None

    def test_custom_split_with_zero_share_settles(self, client):
        split = make_split(
            client, method="custom", total_cents=1000, ids=("alice", "bob"),
            amounts={"alice": 1000, "bob": 0},
        )

        data = pay(client, split["id"], "alice", 1000, "evt_a").get_json()["data"]
        assert data["split"]["status"] == "settled"
        assert data["progress"]["is_settled"] is True
        assert [p["status"] for p in data["split"]["participants"]] == ["paid", "paid"]

    def test_receipt_split_with_idle_participant_settles(self, client):
        receipt = {
            "items": [{"id": "i1", "name": "Burger", "price_cents": 1000, "claimed_by": ["alice"]}],
            "subtotal_cents": 1000,
        }
        split = make_split(
            client, method="receipt", total_cents=None, ids=("alice", "bob"), receipt=receipt,
        )
        assert _participant(split, "bob")["amount_owed_cents"] == 0

        data = pay(client, split["id"], "alice", 1000, "evt_a").get_json()["data"]
        assert data["split"]["status"] == "settled"
        assert data["progress"]["is_settled"] is True


class TestEventIdReuse:

    def test_same_event_id_on_another_split_is_a_conflict(self, client):
        first = _two_way(client)
        second = make_split(client, ids=("carol", "dave"))
        pay(client, first["id"], "bob", 2000, "evt_shared")

        resp = pay(client, second["id"], "dave", 2000, "evt_shared")
        assert resp.status_code == 422

        error = resp.get_json()["error"]
        assert error["code"] == "EVENT_ID_CONFLICT"
        assert error["field"] == "event_id"

        snapshot = client.get(f"{SPLITS_URL}{second['id']}").get_json()["data"]
        assert [p["amount_paid_cents"] for p in snapshot["participants"]] == [0, 0]

    def test_same_event_id_for_another_participant_is_a_conflict(self, client):
        split = _two_way(client)
        pay(client, split["id"], "bob", 2000, "evt_1")

        resp = pay(client, split["id"], "alice", 2000, "evt_1")
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "EVENT_ID_CONFLICT"

    def test_same_event_id_with_another_amount_is_a_conflict(self, client):
        split = _two_way(client)
        pay(client, split["id"], "bob", 2000, "evt_1")

        resp = pay(client, split["id"], "bob", 2500, "evt_1")
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "EVENT_ID_CONFLICT"

        bob = _participant(client.get(f"{SPLITS_URL}{split['id']}").get_json()["data"], "bob")
        assert bob["amount_paid_cents"] == 2000


class TestRecordPaymentErrors:

    def test_unknown_split_is_404(self, client):
        resp = pay(client, 99999, "bob", 100, "evt_x")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SPLIT_NOT_FOUND"

    def test_unknown_participant_is_404(self, client):
        split = _two_way(client)
        resp = pay(client, split["id"], "mallory", 100, "evt_x")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_FOUND"

    @pytest.mark.parametrize("amount", [0, -100, 12.5])
    def test_invalid_amount_is_400(self, client, amount):
        split = _two_way(client)
        resp = pay(client, split["id"], "bob", amount, "evt_x")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "amount_cents"

    def test_list_payments_for_unknown_split_is_404(self, client):
        resp = client.get(f"{SPLITS_URL}99999/payments")
        assert resp.status_code == 404


def test_stale_participant_write_raises_concurrency_error(app, client):
    """
    Another writer bumps the participant's version between our read and our
    write; the versioned UPDATE matches no row.
    """
    split_id = _two_way(client)["id"]

    with app.app_context():
        split = db.session.get(Split, split_id)
        assert [p.version for p in split.participants] == [1, 1]

        db.session.execute(
            text("UPDATE participants SET version = version + 1 WHERE split_id = :sid"),
            {"sid": split_id},
        )

        with pytest.raises(ConcurrencyError) as exc_info:
            settlement_tracker.record_payment(split_id, "bob", 100, "evt_race", db.session)

        assert exc_info.value.code == ErrorCode.STALE_PARTICIPANT_WRITE
        db.session.rollback()

    resp = client.get(f"{SPLITS_URL}{split_id}")
    bob = _participant(resp.get_json()["data"], "bob")
    assert bob["amount_paid_cents"] == 0
