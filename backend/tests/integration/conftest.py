"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig uses in-memory SQLite unless TEST_DATABASE_URL points at a
    real PostgreSQL test database.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)    → dict with user + access_token
  - login(client, ...)       → dict with user + access_token
  - auth_headers(token)      → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)  → group dict
  - add_member(...)          → HTTP response
  - make_expense(...)        → HTTP response
  - make_payment(...)        → HTTP response
  - get_balances(...)        → "data" of GET /groups/:id/balances

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from backend.app import create_app
from backend.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the whole run."""
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
    Deletes all rows after every test.

    Delete order respects the RESTRICT foreign keys: balances, payments and
    expenses go before memberships, groups and users.
    """
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM balances"))
            conn.execute(text("DELETE FROM payments"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM users"))
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

def register(
    client,
    name: str = "alice",
    email: str | None = None,
    password: str = "Password1",
) -> dict:
    """
    Registers a new user and returns the response data dict.
    Returns: {"user": {...}, "access_token": "..."}
    """
    if email is None:
        email = f"{name.lower()}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"name": name, "email": email, "password": password},
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str, password: str = "Password1") -> dict:
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_group(client, token: str, name: str = "Test Group") -> dict:
    """
    Creates a group and returns the group data dict.
    The caller (token owner) becomes the group's first member, as admin.
    """
    resp = client.post(
        "/api/v1/groups/",
        json={"name": name},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, group_id: int, user_id: int, role: str | None = None):
    """Adds a user to a group (admin token required). Returns the HTTP response."""
    payload: dict = {"user_id": user_id}
    if role is not None:
        payload["role"] = role
    return client.post(
        f"/api/v1/groups/{group_id}/members",
        json=payload,
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    group_id: int,
    amount: str,
    paid_by_user_id: int | None = None,
    description: str = "Test Expense",
):
    """Creates an expense and returns the HTTP response."""
    payload: dict = {"description": description, "amount": amount}
    if paid_by_user_id is not None:
        payload["paid_by_user_id"] = paid_by_user_id
    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def make_payment(
    client,
    token: str,
    group_id: int,
    paid_to_user_id: int,
    amount: str,
    expense_id: int | None = None,
):
    """Records a payment from the token owner and returns the HTTP response."""
    payload: dict = {"paid_to_user_id": paid_to_user_id, "amount": amount}
    if expense_id is not None:
        payload["expense_id"] = expense_id
    return client.post(
        f"/api/v1/groups/{group_id}/payments",
        json=payload,
        headers=auth_headers(token),
    )


def get_balances(client, token: str, group_id: int) -> dict:
    resp = client.get(
        f"/api/v1/groups/{group_id}/balances",
        headers=auth_headers(token),
    )
    assert resp.status_code == 200, f"get_balances failed: {resp.get_json()}"
    return resp.get_json()["data"]


def balance_map(data: dict) -> dict[int, str]:
    """{user_id: balance string} from a balances payload."""
    return {b["user_id"]: b["balance"] for b in data["balances"]}
