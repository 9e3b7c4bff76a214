"""
tests/integration/test_expenses.py — Expense endpoints.

  POST   /groups/:id/expenses   → 201 | 400 | 403 | 422
  GET    /groups/:id/expenses   → 200 (newest first, ?paid_by filter)
  GET    /expenses/:id          → 200 | 403 | 404
  PATCH  /expenses/:id          → 200 | 400 | 403
  DELETE /expenses/:id          → 200 | 403 (linked payments survive, unlinked)
"""

from __future__ import annotations

from datetime import date, timedelta

from .conftest import (
    add_member,
    auth_headers,
    make_expense,
    make_group,
    make_payment,
    register,
)


def _setup(client):
    alice = register(client, "alice")
    bob = register(client, "bob")
    group = make_group(client, alice["access_token"])
    add_member(client, alice["access_token"], group["id"], bob["user"]["id"])
    return alice, bob, group


class TestCreateExpense:

    def test_payer_defaults_to_caller(self, client):
        alice, bob, group = _setup(client)

        resp = make_expense(client, bob["access_token"], group["id"], "25.00", description="Taxi")

        assert resp.status_code == 201
        body = resp.get_json()["data"]
        assert body["paid_by_user_id"] == bob["user"]["id"]
        assert body["paid_by_name"] == "bob"
        assert body["amount"] == "25.00"
        assert body["date"] == date.today().isoformat()

    def test_explicit_payer(self, client):
        alice, bob, group = _setup(client)

        resp = make_expense(
            client, alice["access_token"], group["id"], "25.00",
            paid_by_user_id=bob["user"]["id"],
        )

        assert resp.get_json()["data"]["paid_by_user_id"] == bob["user"]["id"]

    def test_payer_must_be_member(self, client):
        alice, bob, group = _setup(client)
        outsider = register(client, "dave")

        resp = make_expense(
            client, alice["access_token"], group["id"], "25.00",
            paid_by_user_id=outsider["user"]["id"],
        )

        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "PAYER_NOT_MEMBER"
        assert error["field"] == "paid_by_user_id"

    def test_non_member_caller_is_forbidden(self, client):
        alice, bob, group = _setup(client)
        outsider = register(client, "dave")

        resp = make_expense(client, outsider["access_token"], group["id"], "25.00")

        assert resp.status_code == 403

    def test_three_decimal_places_rejected(self, client):
        alice, bob, group = _setup(client)

        resp = make_expense(client, alice["access_token"], group["id"], "10.555")

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_AMOUNT_PRECISION"
        assert error["field"] == "amount"

    def test_missing_description(self, client):
        alice, bob, group = _setup(client)

        resp = client.post(
            f"/api/v1/groups/{group['id']}/expenses",
            json={"amount": "10.00"},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_date_out_of_range(self, client):
        alice, bob, group = _setup(client)

        resp = client.post(
            f"/api/v1/groups/{group['id']}/expenses",
            json={
                "description": "Old dinner",
                "amount": "10.00",
                "date": (date.today() - timedelta(days=400)).isoformat(),
            },
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "DATE_OUT_OF_RANGE"

    def test_unauthenticated(self, client):
        alice, bob, group = _setup(client)

        resp = client.post(
            f"/api/v1/groups/{group['id']}/expenses",
            json={"description": "Dinner", "amount": "10.00"},
        )

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"


class TestListAndGet:

    def test_newest_first_and_paid_by_filter(self, client):
        alice, bob, group = _setup(client)
        headers = auth_headers(alice["access_token"])
        client.post(
            f"/api/v1/groups/{group['id']}/expenses",
            json={
                "description": "Older",
                "amount": "10.00",
                "date": (date.today() - timedelta(days=3)).isoformat(),
            },
            headers=headers,
        )
        make_expense(client, bob["access_token"], group["id"], "20.00", description="Newer")

        listing = client.get(f"/api/v1/groups/{group['id']}/expenses", headers=headers)
        assert [e["description"] for e in listing.get_json()["data"]] == ["Newer", "Older"]

        filtered = client.get(
            f"/api/v1/groups/{group['id']}/expenses?paid_by={alice['user']['id']}",
            headers=headers,
        )
        assert [e["description"] for e in filtered.get_json()["data"]] == ["Older"]

    def test_get_unknown_expense(self, client):
        alice, bob, group = _setup(client)

        resp = client.get("/api/v1/expenses/9999", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"


class TestEditAndDelete:

    def test_only_payer_or_admin_may_edit(self, client):
        alice, bob, group = _setup(client)
        expense = make_expense(client, alice["access_token"], group["id"], "10.00").get_json()["data"]

        resp = client.patch(
            f"/api/v1/expenses/{expense['id']}",
            json={"description": "Changed"},
            headers=auth_headers(bob["access_token"]),
        )

        assert resp.status_code == 403

    def test_admin_may_edit_someone_elses_expense(self, client):
        alice, bob, group = _setup(client)
        expense = make_expense(client, bob["access_token"], group["id"], "10.00").get_json()["data"]

        resp = client.patch(
            f"/api/v1/expenses/{expense['id']}",
            json={"description": "Renamed by admin"},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"]["description"] == "Renamed by admin"

    def test_empty_patch_is_rejected(self, client):
        alice, bob, group = _setup(client)
        expense = make_expense(client, alice["access_token"], group["id"], "10.00").get_json()["data"]

        resp = client.patch(
            f"/api/v1/expenses/{expense['id']}",
            json={},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 400

    def test_delete_keeps_linked_payment_unlinked(self, client):
        alice, bob, group = _setup(client)
        expense = make_expense(client, alice["access_token"], group["id"], "100.00").get_json()["data"]
        payment = make_payment(
            client, bob["access_token"], group["id"], alice["user"]["id"], "50.00",
            expense_id=expense["id"],
        ).get_json()["data"]
        assert payment["expense_id"] == expense["id"]

        resp = client.delete(
            f"/api/v1/expenses/{expense['id']}",
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 200

        fetched = client.get(
            f"/api/v1/payments/{payment['id']}",
            headers=auth_headers(alice["access_token"]),
        )
        assert fetched.status_code == 200
        assert fetched.get_json()["data"]["expense_id"] is None
