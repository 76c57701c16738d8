"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at in-memory SQLite unless TEST_DATABASE_URL says otherwise.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Users, groups and memberships are owned by other services, so tests seed
    them straight through the ORM. Bearer tokens are minted with the same
    secret the app verifies with.

Helper functions (not fixtures) are provided for common operations:
  - make_user(app, name)               → user id
  - make_group(app, member_ids, name)  → group id
  - auth_headers(app, user_id)         → {"Authorization": "Bearer <token>"}
  - make_expense(client, ...)          → HTTP response
  - make_settlement(client, ...)       → HTTP response
  - get_balances(client, ...)          → {user_id: balance string}

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from backend.ledger import create_app
from backend.ledger.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
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
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM expense_splits"))
            conn.execute(text("DELETE FROM settlements"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM group_members"))
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

def make_user(app, name: str) -> int:
    from backend.ledger.models.user import User

    with app.app_context():
        user = User(name=name, email=f"{name.lower()}@test.com")
        _db.session.add(user)
        _db.session.commit()
        return user.id


def make_group(app, member_ids: list[int], name: str = "Test Group") -> int:
    """Creates a group whose members join in the order given."""
    from backend.ledger.models.group import Group
    from backend.ledger.models.membership import Membership

    with app.app_context():
        group = Group(name=name)
        _db.session.add(group)
        _db.session.flush()
        for user_id in member_ids:
            _db.session.add(Membership(group_id=group.id, user_id=user_id))
            _db.session.flush()
        _db.session.commit()
        return group.id


def auth_headers(app, user_id: int, expires_in: timedelta = timedelta(hours=1)) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    token = jwt.encode(
        {"sub": str(user_id), "exp": datetime.now(timezone.utc) + expires_in},
        app.config["JWT_SECRET_KEY"],
        algorithm=app.config["JWT_ALGORITHM"],
    )
    return {"Authorization": f"Bearer {token}"}


def make_expense(
    client,
    app,
    caller_id: int,
    group_id: int,
    paid_by_user_id: int,
    amount: str,
    split_user_ids: list[int] | None = None,
    splits: list[dict] | None = None,
    description: str = "Test Expense",
):
    """
    Creates an expense and returns the HTTP response.
    Pass split_user_ids for an equal split, or splits as {user_id, amount} dicts.
    """
    payload: dict = {
        "paid_by_user_id": paid_by_user_id,
        "description": description,
        "amount": amount,
    }
    if split_user_ids is not None:
        payload["split_user_ids"] = split_user_ids
    if splits is not None:
        payload["splits"] = splits

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(app, caller_id),
    )


def make_settlement(
    client,
    app,
    caller_id: int,
    group_id: int,
    from_user_id: int,
    to_user_id: int,
    amount: str,
):
    return client.post(
        f"/api/v1/groups/{group_id}/settlements",
        json={"from_user_id": from_user_id, "to_user_id": to_user_id, "amount": amount},
        headers=auth_headers(app, caller_id),
    )


def set_status(client, app, caller_id: int, group_id: int, settlement_id: int, status: str):
    return client.patch(
        f"/api/v1/groups/{group_id}/settlements/{settlement_id}",
        json={"status": status},
        headers=auth_headers(app, caller_id),
    )


def get_balances(client, app, caller_id: int, group_id: int) -> dict[int, str]:
    """Returns {user_id: balance} from GET /balances, asserting a 200."""
    resp = client.get(
        f"/api/v1/groups/{group_id}/balances",
        headers=auth_headers(app, caller_id),
    )
    assert resp.status_code == 200, f"get_balances failed: {resp.get_json()}"
    return {b["user_id"]: b["balance"] for b in resp.get_json()["data"]["balances"]}
