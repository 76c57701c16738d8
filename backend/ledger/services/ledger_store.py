"""
services/ledger_store.py — Ledger record store: the only sanctioned way to
read and write expenses, splits, settlements and memberships.

Every function takes an explicit SQLAlchemy Session and returns ORM rows.
No business rules live here — services decide WHAT to write, this module
only knows HOW.

Failure policy:
  Any SQLAlchemyError raised by the driver is re-raised as
  AppError(STORAGE_ERROR, 503). Nothing is retried here or anywhere above;
  the caller decides what to do with a failed request.

Layer rules:
  - No Flask imports.
  - Writes only flush(). Commits belong to the route, which wraps a whole
    operation (e.g. an expense plus its splits) in one unit.
"""

from __future__ import annotations

import contextlib
from datetime import datetime
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.ledger.errors import storage_error
from backend.ledger.models.expense import Expense
from backend.ledger.models.expense_split import ExpenseSplit
from backend.ledger.models.group import Group
from backend.ledger.models.membership import Membership
from backend.ledger.models.settlement import Settlement, SettlementStatus
from backend.ledger.models.user import User


@contextlib.contextmanager
def _storage_call(operation: str) -> Iterator[None]:
    """Translates driver failures into STORAGE_ERROR, keeping the cause chained."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise storage_error(operation) from exc


# ── Reads ──────────────────────────────────────────────────────────────────

def get_group(group_id: int, session: Session) -> Group | None:
    with _storage_call("load the group"):
        return session.get(Group, group_id)


def list_group_members(group_id: int, session: Session) -> list[User]:
    """Returns the group's members in membership order (joined_at, then id)."""
    stmt = (
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at, Membership.id)
    )
    with _storage_call("list group members"):
        return list(session.execute(stmt).scalars().all())


def list_member_ids(group_id: int, session: Session) -> list[int]:
    stmt = (
        select(Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at, Membership.id)
    )
    with _storage_call("list group members"):
        return list(session.execute(stmt).scalars().all())


def is_member(group_id: int, user_id: int, session: Session) -> bool:
    stmt = select(Membership.id).where(
        Membership.group_id == group_id,
        Membership.user_id == user_id,
    )
    with _storage_call("check group membership"):
        return session.execute(stmt).scalar_one_or_none() is not None


def list_expenses(group_id: int, session: Session) -> list[Expense]:
    """Returns every expense of a group, newest first."""
    stmt = (
        select(Expense)
        .where(Expense.group_id == group_id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    )
    with _storage_call("list expenses"):
        return list(session.execute(stmt).scalars().all())


def get_expense(group_id: int, expense_id: int, session: Session) -> Expense | None:
    """Returns the expense only if it belongs to group_id."""
    stmt = select(Expense).where(
        Expense.id == expense_id,
        Expense.group_id == group_id,
    )
    with _storage_call("load the expense"):
        return session.execute(stmt).scalar_one_or_none()


def list_expense_splits(expense_id: int, session: Session) -> list[ExpenseSplit]:
    stmt = (
        select(ExpenseSplit)
        .where(ExpenseSplit.expense_id == expense_id)
        .order_by(ExpenseSplit.id)
    )
    with _storage_call("list expense splits"):
        return list(session.execute(stmt).scalars().all())


def list_group_splits(group_id: int, session: Session) -> list[ExpenseSplit]:
    """
    Returns the splits of every expense in a group in one query.

    Equivalent to calling list_expense_splits() for each expense of the group,
    without the N+1 round trips.
    """
    stmt = (
        select(ExpenseSplit)
        .join(Expense, ExpenseSplit.expense_id == Expense.id)
        .where(Expense.group_id == group_id)
        .order_by(ExpenseSplit.id)
    )
    with _storage_call("list expense splits"):
        return list(session.execute(stmt).scalars().all())


def list_settlements(group_id: int, session: Session) -> list[Settlement]:
    """Returns every settlement of a group (any status), newest first."""
    stmt = (
        select(Settlement)
        .where(Settlement.group_id == group_id)
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    with _storage_call("list settlements"):
        return list(session.execute(stmt).scalars().all())


def get_settlement(group_id: int, settlement_id: int, session: Session) -> Settlement | None:
    """Returns the settlement only if it belongs to group_id."""
    stmt = select(Settlement).where(
        Settlement.id == settlement_id,
        Settlement.group_id == group_id,
    )
    with _storage_call("load the settlement"):
        return session.execute(stmt).scalar_one_or_none()


# ── Writes ─────────────────────────────────────────────────────────────────

def insert_settlement(settlement: Settlement, session: Session) -> Settlement:
    with _storage_call("record the settlement"):
        session.add(settlement)
        session.flush()
    return settlement


def update_settlement_status(
        settlement: Settlement,
        status: SettlementStatus,
        settled_at: datetime | None,
        session: Session,
) -> Settlement:
    with _storage_call("update the settlement"):
        settlement.status = status
        settlement.settled_at = settled_at
        session.flush()
    return settlement


def delete_settlement(settlement: Settlement, session: Session) -> None:
    with _storage_call("delete the settlement"):
        session.delete(settlement)
        session.flush()


def insert_expense(
        expense: Expense,
        splits: list[ExpenseSplit],
        session: Session,
) -> Expense:
    """Adds an expense and its splits in the same flush."""
    with _storage_call("record the expense"):
        expense.splits = splits
        session.add(expense)
        session.flush()
    return expense


def delete_expense(expense: Expense, session: Session) -> None:
    """Removes an expense; its splits go with it through the ORM cascade."""
    with _storage_call("delete the expense"):
        session.delete(expense)
        session.flush()
