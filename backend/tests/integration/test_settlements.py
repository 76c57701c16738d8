"""
tests/integration/test_settlements.py — Integration tests for settlement endpoints.

Endpoints covered:
  GET    /groups/:id/settlements        → 200
  POST   /groups/:id/settlements        → 201 (pending)
  PATCH  /groups/:id/settlements/:sid   → 200 (settled ↔ pending)
  DELETE /groups/:id/settlements/:sid   → 200

Behaviour verified:
  - A new settlement is pending and does not move balances
  - Marking it settled moves payer and payee by the amount; reverting undoes it
  - Marking settled twice re-stamps settled_at
  - Deleting a settled settlement restores the previous balances
  - Self-payment and non-member parties are INVALID_PARTIES (422)
  - Amounts must be > 0 with at most two decimal places (INVALID_AMOUNT, 400)
  - Non-members get FORBIDDEN (403); missing/expired tokens get 401
"""

from __future__ import annotations

from datetime import timedelta

from .conftest import (
    auth_headers,
    get_balances,
    make_expense,
    make_group,
    make_settlement,
    make_user,
    set_status,
)


# ═══════════════════════════════════════════════════════════════════════════
# Setup helpers
# ═══════════════════════════════════════════════════════════════════════════

def _setup(app, client):
    """Alice, Bob, Carol in one group; Alice paid 30.00 split three ways."""
    alice = make_user(app, "Alice")
    bob = make_user(app, "Bob")
    carol = make_user(app, "Carol")
    group_id = make_group(app, [alice, bob, carol])

    resp = make_expense(
        client, app, alice, group_id,
        paid_by_user_id=alice,
        amount="30.00",
        split_user_ids=[alice, bob, carol],
    )
    assert resp.status_code == 201, resp.get_json()
    return alice, bob, carol, group_id


# ═══════════════════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateSettlement:

    def test_created_pending(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = make_settlement(client, app, bob, group_id, bob, alice, "10.00")

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["warnings"] == []
        data = body["data"]
        assert data["status"] == "pending"
        assert data["settled_at"] is None
        assert data["amount"] == "10.00"
        assert data["from_user_id"] == bob
        assert data["from_user_name"] == "Bob"
        assert data["to_user_id"] == alice
        assert data["to_user_name"] == "Alice"
        assert data["group_id"] == group_id

    def test_pending_does_not_move_balances(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        before = get_balances(client, app, alice, group_id)

        make_settlement(client, app, bob, group_id, bob, alice, "10.00")

        assert get_balances(client, app, alice, group_id) == before

    def test_any_member_may_record(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = make_settlement(client, app, carol, group_id, bob, alice, "5.00")

        assert resp.status_code == 201

    def test_self_payment_is_invalid_parties(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = make_settlement(client, app, alice, group_id, alice, alice, "5.00")

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "INVALID_PARTIES"

    def test_non_member_party_is_invalid_parties(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        dave = make_user(app, "Dave")

        resp = make_settlement(client, app, alice, group_id, dave, alice, "5.00")

        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_PARTIES"
        assert error["field"] == "from_user_id"

    def test_zero_amount_is_invalid_amount(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = make_settlement(client, app, bob, group_id, bob, alice, "0")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_AMOUNT"
        assert resp.get_json()["error"]["field"] == "amount"

    def test_three_decimal_amount_is_invalid_amount(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = make_settlement(client, app, bob, group_id, bob, alice, "10.001")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_AMOUNT"

    def test_missing_field_is_reported(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = client.post(
            f"/api/v1/groups/{group_id}/settlements",
            json={"from_user_id": bob, "amount": "5.00"},
            headers=auth_headers(app, bob),
        )

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "MISSING_FIELD"
        assert error["field"] == "to_user_id"

    def test_non_member_caller_is_forbidden(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        dave = make_user(app, "Dave")

        resp = make_settlement(client, app, dave, group_id, bob, alice, "5.00")

        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_group_is_not_found(self, app, client):
        alice = make_user(app, "Alice")
        bob = make_user(app, "Bob")

        resp = make_settlement(client, app, alice, 424242, bob, alice, "5.00")

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Status transitions
# ═══════════════════════════════════════════════════════════════════════════

class TestSettlementStatus:

    def test_mark_settled_moves_both_parties(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        settlement_id = make_settlement(
            client, app, bob, group_id, bob, alice, "10.00",
        ).get_json()["data"]["id"]

        resp = set_status(client, app, bob, group_id, settlement_id, "settled")

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["status"] == "settled"
        assert data["settled_at"] is not None

        balances = get_balances(client, app, alice, group_id)
        assert balances == {alice: "10.00", bob: "0.00", carol: "-10.00"}

    def test_revert_to_pending_restores_balances(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        before = get_balances(client, app, alice, group_id)
        settlement_id = make_settlement(
            client, app, bob, group_id, bob, alice, "10.00",
        ).get_json()["data"]["id"]
        set_status(client, app, bob, group_id, settlement_id, "settled")

        resp = set_status(client, app, alice, group_id, settlement_id, "pending")

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["status"] == "pending"
        assert data["settled_at"] is None
        assert get_balances(client, app, alice, group_id) == before

    def test_mark_settled_twice_restamps(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        settlement_id = make_settlement(
            client, app, bob, group_id, bob, alice, "10.00",
        ).get_json()["data"]["id"]

        first = set_status(client, app, bob, group_id, settlement_id, "settled")
        second = set_status(client, app, bob, group_id, settlement_id, "settled")

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.get_json()["data"]["settled_at"] >= first.get_json()["data"]["settled_at"]
        assert get_balances(client, app, alice, group_id)[bob] == "0.00"

    def test_unknown_status_is_invalid_status(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        settlement_id = make_settlement(
            client, app, bob, group_id, bob, alice, "10.00",
        ).get_json()["data"]["id"]

        resp = set_status(client, app, bob, group_id, settlement_id, "cancelled")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_STATUS"

    def test_unknown_settlement_is_not_found(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = set_status(client, app, bob, group_id, 999999, "settled")

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SETTLEMENT_NOT_FOUND"

    def test_settlement_from_other_group_is_not_found(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        other_group = make_group(app, [alice, bob], name="Other")
        settlement_id = make_settlement(
            client, app, bob, other_group, bob, alice, "1.00",
        ).get_json()["data"]["id"]

        resp = set_status(client, app, bob, group_id, settlement_id, "settled")

        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# List and delete
# ═══════════════════════════════════════════════════════════════════════════

class TestListAndDelete:

    def test_list_is_newest_first(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        first = make_settlement(client, app, bob, group_id, bob, alice, "1.00")
        second = make_settlement(client, app, carol, group_id, carol, alice, "2.00")

        resp = client.get(
            f"/api/v1/groups/{group_id}/settlements",
            headers=auth_headers(app, carol),
        )

        assert resp.status_code == 200
        ids = [s["id"] for s in resp.get_json()["data"]]
        assert ids == [second.get_json()["data"]["id"], first.get_json()["data"]["id"]]

    def test_delete_settled_restores_balances(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)
        before = get_balances(client, app, alice, group_id)
        settlement_id = make_settlement(
            client, app, bob, group_id, bob, alice, "10.00",
        ).get_json()["data"]["id"]
        set_status(client, app, bob, group_id, settlement_id, "settled")

        resp = client.delete(
            f"/api/v1/groups/{group_id}/settlements/{settlement_id}",
            headers=auth_headers(app, alice),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"deleted": True, "settlement_id": settlement_id}
        assert get_balances(client, app, alice, group_id) == before

        listed = client.get(
            f"/api/v1/groups/{group_id}/settlements",
            headers=auth_headers(app, alice),
        ).get_json()["data"]
        assert listed == []

    def test_delete_unknown_is_not_found(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = client.delete(
            f"/api/v1/groups/{group_id}/settlements/999999",
            headers=auth_headers(app, alice),
        )

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SETTLEMENT_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════════════════

class TestAuthentication:

    def test_missing_token(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = client.get(f"/api/v1/groups/{group_id}/settlements")

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_expired_token(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = client.get(
            f"/api/v1/groups/{group_id}/settlements",
            headers=auth_headers(app, alice, expires_in=timedelta(minutes=-5)),
        )

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_malformed_header(self, app, client):
        alice, bob, carol, group_id = _setup(app, client)

        resp = client.get(
            f"/api/v1/groups/{group_id}/settlements",
            headers={"Authorization": "Token abc"},
        )

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"
