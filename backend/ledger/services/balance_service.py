"""
services/balance_service.py — Balance computation and debt simplification.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
The canonical formula must not be reimplemented elsewhere in the codebase.

    balance = total_paid − total_owed − settlements_received + settlements_paid

Only SETTLED settlements count. A pending settlement is a statement of intent
and leaves every balance untouched until it is confirmed.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives group_id (int) and session (SQLAlchemy Session) as arguments.
  - Returns plain Python dicts and lists with Decimal amounts.
  - tally_balances() and suggest_payments() are pure and need no session.

Consistency:
  compute_balances() issues four reads (members, expenses, splits,
  settlements). They are only a consistent snapshot when the caller opens
  the transaction at a snapshot isolation level (get_balance_response does
  this when configured). Without it, a write landing between two reads can
  produce a transiently unbalanced view; that read skew is tolerated and the
  next request recomputes from scratch. Nothing is cached between requests.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Sequence

from sqlalchemy.orm import Session, scoped_session

from backend.ledger.errors import forbidden, group_not_found
from backend.ledger.models.settlement import SettlementStatus
from backend.ledger.services import ledger_store

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


# ── Core algorithms ────────────────────────────────────────────────────────

def tally_balances(
        members: Sequence,
        expenses: Iterable,
        splits: Iterable,
        settlements: Iterable,
) -> list[dict]:
    """
    Derives one balance entry per member from already-loaded ledger records.

    Args:
        members:     Objects with `id` and `name`, in group membership order.
        expenses:    Objects with `paid_by_user_id` and `amount`.
        splits:      Objects with `user_id` and `amount`, all belonging to
                     expenses of the same group.
        settlements: Objects with `from_user_id`, `to_user_id`, `amount`
                     and `status`.

    Returns:
        A list ordered like `members`; each entry is
        {"user_id", "name", "total_paid", "total_owed",
         "settlements_received", "settlements_paid", "balance"}.
        Members with no activity get all-zero values.

    Records that reference users outside `members` are ignored: the
    membership list is trusted as given.
    """
    entries = {
        m.id: {
            "user_id": m.id,
            "name": m.name,
            "total_paid": ZERO,
            "total_owed": ZERO,
            "settlements_received": ZERO,
            "settlements_paid": ZERO,
        }
        for m in members
    }

    for expense in expenses:
        entry = entries.get(expense.paid_by_user_id)
        if entry is not None:
            entry["total_paid"] += expense.amount

    for split in splits:
        entry = entries.get(split.user_id)
        if entry is not None:
            entry["total_owed"] += split.amount

    for settlement in settlements:
        if settlement.status != SettlementStatus.SETTLED:
            continue
        payer = entries.get(settlement.from_user_id)
        if payer is not None:
            payer["settlements_paid"] += settlement.amount
        recipient = entries.get(settlement.to_user_id)
        if recipient is not None:
            recipient["settlements_received"] += settlement.amount

    balances = []
    for m in members:
        entry = entries[m.id]
        entry["balance"] = (
            entry["total_paid"]
            - entry["total_owed"]
            - entry["settlements_received"]
            + entry["settlements_paid"]
        )
        balances.append(entry)
    return balances


def compute_balances(group_id: int, session: Session) -> list[dict]:
    """
    Canonical balance computation for a group.

    Reads members, expenses, splits and settlements through the ledger
    store and hands them to tally_balances(). A storage failure surfaces
    as STORAGE_ERROR (503); nothing is retried.

    Calling this twice without an intervening write returns equal results.
    """
    members = ledger_store.list_group_members(group_id, session)
    expenses = ledger_store.list_expenses(group_id, session)
    splits = ledger_store.list_group_splits(group_id, session)
    settlements = ledger_store.list_settlements(group_id, session)
    return tally_balances(members, expenses, splits, settlements)


def suggest_payments(balances: Sequence[Mapping]) -> list[dict]:
    """
    Greedy debt simplification.

    Matches the most indebted member with the largest creditor, pays the
    smaller of the two amounts, and moves on when either side is within a
    cent of zero. Deterministic for a given input order; not guaranteed to
    be the theoretical minimum number of payments.

    Args:
        balances: Mappings with at least `user_id` and `balance`. The sum of
                  balances is expected to be ~0; this is not verified.

    Returns:
        List of {"from_user_id", "to_user_id", "amount"} in emission order.
        An empty list means nobody needs to pay anyone.
    """
    debtors: list[list] = []
    creditors: list[list] = []
    for entry in balances:
        amount = _as_decimal(entry["balance"])
        if amount <= -CENT:
            debtors.append([entry["user_id"], amount])
        elif amount >= CENT:
            creditors.append([entry["user_id"], amount])

    # list.sort is stable: equal balances keep their input order.
    debtors.sort(key=lambda d: d[1])
    creditors.sort(key=lambda c: -c[1])

    payments: list[dict] = []
    i = j = 0

    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]

        amount = min(-debtor[1], creditor[1])
        if amount > CENT:
            payments.append({
                "from_user_id": debtor[0],
                "to_user_id": creditor[0],
                "amount": amount.quantize(CENT, rounding=ROUND_HALF_UP),
            })

        debtor[1] += amount
        creditor[1] -= amount

        if abs(debtor[1]) < CENT:
            i += 1
        if abs(creditor[1]) < CENT:
            j += 1

    return payments


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 0.1 do not drag binary noise into Decimal.
    return Decimal(str(value))


# ── Boundary operation ─────────────────────────────────────────────────────

def get_balance_response(
        group_id: int,
        caller_id: int,
        session: Session,
        snapshot_isolation: str | None = None,
) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Args:
        snapshot_isolation: Isolation level for the read transaction
            (e.g. "REPEATABLE READ" on PostgreSQL). When None, the reads run
            at the engine's default level and read skew is tolerated.

    Raises:
        AppError(GROUP_NOT_FOUND, 404) -- group does not exist.
        AppError(FORBIDDEN, 403)       -- caller is not a group member.
        AppError(STORAGE_ERROR, 503)   -- a read failed.
    """
    _begin_snapshot(session, snapshot_isolation)

    if ledger_store.get_group(group_id, session) is None:
        raise group_not_found(group_id)

    if not ledger_store.is_member(group_id, caller_id, session):
        raise forbidden(group_id)

    balances = compute_balances(group_id, session)
    names = {b["user_id"]: b["name"] for b in balances}

    balance_sum = sum((b["balance"] for b in balances), ZERO)
    tolerance = CENT * len(balances)
    if abs(balance_sum) > tolerance:
        # Source data breaks the split-sum rule or the reads were skewed.
        logger.warning(
            "Group %s balances sum to %s (tolerance %s); ledger data may be inconsistent.",
            group_id,
            balance_sum,
            tolerance,
        )

    suggested = [
        {
            "from_user_id": p["from_user_id"],
            "from_name": names.get(p["from_user_id"], f"user_{p['from_user_id']}"),
            "to_user_id": p["to_user_id"],
            "to_name": names.get(p["to_user_id"], f"user_{p['to_user_id']}"),
            "amount": p["amount"],
        }
        for p in suggest_payments(balances)
    ]

    return {
        "group_id": group_id,
        "balances": balances,
        "suggested_payments": suggested,
        "balance_sum": balance_sum,
    }


def _begin_snapshot(session: Session, isolation_level: str | None) -> None:
    """Opens the read transaction at `isolation_level` if one is configured."""
    if isolation_level is None:
        return
    # Flask-SQLAlchemy hands out a scoped_session proxy; the transaction
    # state lives on the request's underlying Session.
    if isinstance(session, scoped_session):
        session = session()
    if session.in_transaction():
        logger.debug(
            "Session already in a transaction; balances read at its current isolation level."
        )
        return
    session.connection(execution_options={"isolation_level": isolation_level})
