"""
tests/integration/test_splits_api.py: Integration tests for split composition.

Endpoints covered:
  POST /splits             → 201 (create + activate)
  POST /splits/preview     → 200 (no persistence)
  GET  /splits/:id         → 200 / 404
  GET  /splits/:id/progress→ 200

Invariants verified:
  - Every persisted split has sum(amount_owed_cents) == total_cents
  - Shares that fail validation are never persisted (no draft rows)
  - Schema errors are 400 with a registered code; engine errors are 422
"""

from __future__ import annotations

from decimal import Decimal

from tabsplit.app.extensions import db
from tabsplit.app.models.split import Split

from .conftest import SPLITS_URL, make_split, owed, participants, split_payload


def _split_count(app) -> int:
    with app.app_context():
        return db.session.query(Split).count()


# ═══════════════════════════════════════════════════════════════════════════
# POST /splits - happy paths
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateSplit:

    def test_equal_split_returns_201_and_is_active(self, client):
        resp = client.post(SPLITS_URL, json=split_payload())
        assert resp.status_code == 201

        body = resp.get_json()
        data = body["data"]
        assert body["warnings"] == []
        assert data["status"] == "active"
        assert data["method"] == "equal"
        assert data["total_cents"] == 10000
        assert owed(data) == {"alice": 3334, "bob": 3333, "carol": 3333}
        assert all(p["status"] == "pending" for p in data["participants"])
        assert all(p["amount_paid_cents"] == 0 for p in data["participants"])

    def test_amounts_are_integers_in_json(self, client):
        data = make_split(client)
        for p in data["participants"]:
            assert isinstance(p["amount_owed_cents"], int)

    def test_percentage_split(self, client):
        data = make_split(
            client,
            method="percentage",
            total_cents=5000,
            percentages={"alice": "33.33", "bob": "33.33", "carol": "33.34"},
        )
        assert owed(data) == {"alice": 1667, "bob": 1666, "carol": 1667}

    def test_custom_split_is_stored_verbatim(self, client):
        data = make_split(
            client,
            method="custom",
            total_cents=9000,
            amounts={"alice": 1000, "bob": 5000, "carol": 3000},
        )
        assert owed(data) == {"alice": 1000, "bob": 5000, "carol": 3000}

    def test_receipt_split(self, client):
        receipt = {
            "items": [
                {"id": "i1", "name": "Burger", "price_cents": 1000, "claimed_by": ["alice"]},
                {"id": "i2", "name": "Pizza", "price_cents": 2000, "claimed_by": ["alice", "bob"]},
            ],
            "subtotal_cents": 3000,
            "tax_cents": 300,
            "merchant": "Luigi's",
            "confidence": "0.92",
        }
        data = make_split(
            client, method="receipt", total_cents=None, ids=("alice", "bob"), receipt=receipt,
        )

        assert data["total_cents"] == 3300
        assert owed(data) == {"alice": 2200, "bob": 1100}
        assert data["receipt"]["merchant"] == "Luigi's"
        assert Decimal(data["receipt"]["confidence"]) == Decimal("0.92")
        assert [i["id"] for i in data["receipt"]["items"]] == ["i1", "i2"]

    def test_participant_contact_details_are_kept(self, client):
        people = participants("alice", "bob")
        people[1]["external_email"] = "bob@example.com"
        resp = client.post(SPLITS_URL, json=split_payload(participants=people))
        assert resp.status_code == 201
        bob = resp.get_json()["data"]["participants"][1]
        assert bob["external_email"] == "bob@example.com"


# ═══════════════════════════════════════════════════════════════════════════
# POST /splits - failure paths
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateSplitErrors:

    def test_custom_off_by_one_cent_is_422_and_not_persisted(self, app, client):
        resp = client.post(SPLITS_URL, json=split_payload(
            method="custom",
            total_cents=10000,
            amounts={"alice": 3333, "bob": 3333, "carol": 3333},
        ))
        assert resp.status_code == 422

        error = resp.get_json()["error"]
        assert error["code"] == "SPLIT_SUM_MISMATCH"
        assert error["detail"]["difference"] == -1
        assert _split_count(app) == 0

    def test_percentage_sum_mismatch_is_422(self, client):
        resp = client.post(SPLITS_URL, json=split_payload(
            method="percentage",
            percentages={"alice": "50", "bob": "30", "carol": "10"},
        ))
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PERCENTAGE_SUM_MISMATCH"

    def test_unassigned_receipt_item_is_422(self, app, client):
        receipt = {
            "items": [
                {"id": "i1", "name": "Burger", "price_cents": 1000, "claimed_by": ["alice"]},
                {"id": "i2", "name": "Dessert", "price_cents": 500, "claimed_by": []},
            ],
            "subtotal_cents": 1500,
        }
        resp = client.post(SPLITS_URL, json=split_payload(
            method="receipt", total_cents=None, ids=("alice", "bob"), receipt=receipt,
        ))
        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "UNASSIGNED_ITEM"
        assert error["detail"]["item_id"] == "i2"
        assert _split_count(app) == 0

    def test_claim_for_missing_item_is_422(self, app, client):
        receipt = {
            "items": [{"id": "i1", "name": "Burger", "price_cents": 1000, "claimed_by": ["alice"]}],
            "subtotal_cents": 1000,
        }
        resp = client.post(SPLITS_URL, json=split_payload(
            method="receipt", total_cents=None, ids=("alice", "bob"),
            receipt=receipt, claims={"i9": ["bob"]},
        ))
        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "UNKNOWN_ITEM"
        assert error["field"] == "claims"
        assert _split_count(app) == 0

    def test_receipt_total_that_disagrees_with_its_parts_is_422(self, client):
        receipt = {
            "items": [{"id": "i1", "name": "Burger", "price_cents": 1000, "claimed_by": ["alice"]}],
            "subtotal_cents": 1000,
            "tax_cents": 80,
            "total_cents": 1200,
        }
        resp = client.post(SPLITS_URL, json=split_payload(
            method="receipt", total_cents=None, ids=("alice", "bob"), receipt=receipt,
        ))
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "RECEIPT_TOTAL_MISMATCH"

    def test_duplicate_participant_is_400(self, client):
        resp = client.post(SPLITS_URL, json=split_payload(
            participants=participants("alice", "bob", "alice"),
        ))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "DUPLICATE_PARTICIPANT"

    def test_unknown_method_is_400(self, client):
        resp = client.post(SPLITS_URL, json=split_payload(method="roulette"))
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_SPLIT_METHOD"
        assert error["field"] == "method"

    def test_amounts_with_equal_method_is_400(self, client):
        resp = client.post(SPLITS_URL, json=split_payload(amounts={"alice": 10000}))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "METHOD_INPUT_MISMATCH"

    def test_missing_title_is_400(self, client):
        body = split_payload()
        del body["title"]
        resp = client.post(SPLITS_URL, json=body)
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "MISSING_FIELD"
        assert error["field"] == "title"

    def test_nested_error_reports_field_path(self, client):
        people = participants("alice", "bob")
        del people[1]["display_name"]
        resp = client.post(SPLITS_URL, json=split_payload(participants=people))
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "MISSING_FIELD"
        assert error["field"] == "participants.1.display_name"

    def test_too_many_participants_is_400(self, app, client):
        ids = tuple(f"p{i}" for i in range(app.config["MAX_PARTICIPANTS"] + 1))
        resp = client.post(SPLITS_URL, json=split_payload(ids=ids))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "participants"

    def test_malformed_json_is_400(self, client):
        resp = client.post(SPLITS_URL, data="{not json", content_type="application/json")
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
# POST /splits/preview
# ═══════════════════════════════════════════════════════════════════════════

class TestPreviewSplit:

    def test_preview_returns_shares_without_persisting(self, app, client):
        body = split_payload(total_cents=100)
        del body["title"]

        resp = client.post(f"{SPLITS_URL}preview", json=body)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["shares"] == [
            {"participant_id": "alice", "amount_cents": 34},
            {"participant_id": "bob", "amount_cents": 33},
            {"participant_id": "carol", "amount_cents": 33},
        ]
        assert _split_count(app) == 0

    def test_preview_reports_the_same_errors(self, client):
        resp = client.post(f"{SPLITS_URL}preview", json=split_payload(
            method="custom", total_cents=100, amounts={"alice": 50, "bob": 50, "carol": 1},
        ))
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_SUM_MISMATCH"


# ═══════════════════════════════════════════════════════════════════════════
# GET /splits/:id and /progress
# ═══════════════════════════════════════════════════════════════════════════

class TestGetSplit:

    def test_get_split(self, client):
        created = make_split(client)
        resp = client.get(f"{SPLITS_URL}{created['id']}")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["id"] == created["id"]
        assert owed(data) == owed(created)
        assert [p["participant_id"] for p in data["participants"]] == ["alice", "bob", "carol"]

    def test_get_unknown_split_is_404(self, client):
        resp = client.get(f"{SPLITS_URL}99999")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SPLIT_NOT_FOUND"

    def test_fresh_split_progress(self, client):
        created = make_split(client)
        resp = client.get(f"{SPLITS_URL}{created['id']}/progress")
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {
            "split_id": created["id"],
            "status": "active",
            "paid_count": 0,
            "total_count": 3,
            "total_collected_cents": 0,
            "remaining_cents": 10000,
            "is_settled": False,
        }

    def test_unknown_route_is_404_json(self, client):
        resp = client.get("/api/v1/nothing-here")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NOT_FOUND"
