"""
services/expense_service.py — Expense recording.

Rules enforced here:
  FORBIDDEN (403)           — caller must be a group member
  INVALID_AMOUNT (400)      — amount > 0, at most 2 decimal places
  INVALID_PARTIES (422)     — payer and every split user must be members
  SPLIT_SUM_MISMATCH (422)  — caller-assigned splits must sum to the amount
                              exactly
  EXPENSE_NOT_FOUND (404)   — the id must belong to the group

Equal split computation:
  - The amount is divided among the participants using ROUND_DOWN to cents.
  - The leftover cents are added to the payer's split when the payer
    participates, otherwise to the first participant.
  - This guarantees sum(splits) == amount exactly.

Expenses are immutable: there is no edit operation. An expense and its splits
are written in one flush and removed together.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal

from sqlalchemy.orm import Session

from backend.ledger.errors import AppError, ErrorCode, forbidden, group_not_found
from backend.ledger.models.expense import Expense
from backend.ledger.models.expense_split import ExpenseSplit
from backend.ledger.services import ledger_store
from backend.ledger.services.settlement_service import validate_amount

logger = logging.getLogger(__name__)

# ── Private helpers ────────────────────────────────────────────────────────

def _require_group_member(group_id: int, caller_id: int, session: Session) -> None:
    if ledger_store.get_group(group_id, session) is None:
        raise group_not_found(group_id)
    if not ledger_store.is_member(group_id, caller_id, session):
        raise forbidden(group_id)


def _validate_parties_are_members(
        paid_by_user_id: int,
        split_user_ids: list[int],
        group_id: int,
        member_ids: list[int],
) -> None:
    """Raises INVALID_PARTIES (422) for the payer or first split user not in the group."""
    member_set = set(member_ids)
    if paid_by_user_id not in member_set:
        raise AppError(
            ErrorCode.INVALID_PARTIES,
            f"User {paid_by_user_id} is not a member of group {group_id}.",
            422,
            field="paid_by_user_id",
        )
    for user_id in split_user_ids:
        if user_id not in member_set:
            raise AppError(
                ErrorCode.INVALID_PARTIES,
                f"User {user_id} is not a member of group {group_id}.",
                422,
                field="splits",
            )


def _validate_split_sum(splits: list[dict], expected_amount: Decimal) -> None:
    """
    Raises SPLIT_SUM_MISMATCH (422) unless the splits add up to the amount
    to the cent. Any slack here would leave the group's balances off by
    that much for good.
    """
    total = sum((s["amount"] for s in splits), Decimal("0.00"))
    if total != expected_amount:
        raise AppError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Split amounts ({total}) do not add up to the expense amount ({expected_amount}).",
            422,
            field="splits",
        )


def compute_equal_splits(
        amount: Decimal,
        participant_ids: list[int],
        payer_id: int,
) -> list[dict]:
    """
    Divides amount evenly among participants.

    Each share is rounded DOWN to the cent; the remainder (at most
    len(participant_ids) - 1 cents) is added to the payer's share, or to the
    first participant if the payer does not take part.

    Returns:
        List of {"user_id": int, "amount": Decimal}, in participant order.
        The amounts always sum to exactly `amount`.
    """
    n = len(participant_ids)
    base = (amount / Decimal(n)).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    remainder = amount - (base * n)

    splits = [{"user_id": uid, "amount": base} for uid in participant_ids]

    if remainder > Decimal("0"):
        receiver = next(
            (s for s in splits if s["user_id"] == payer_id),
            splits[0],
        )
        receiver["amount"] += remainder

    computed_sum = sum(s["amount"] for s in splits)
    if computed_sum != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split computation produced sum {computed_sum} for amount {amount}.",
            500,
        )

    return splits


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense and its splits.

    Args:
        data: Validated dict from CreateExpenseSchema. Exactly one of
              "split_user_ids" (equal split computed here) or "splits"
              (caller-assigned {user_id, amount} list) is present.

    Returns:
        The newly created Expense with its splits attached.
    """
    _require_group_member(group_id, caller_id, session)

    amount = validate_amount(data["amount"])
    paid_by_user_id: int = data["paid_by_user_id"]

    if data.get("splits"):
        splits_data = [
            {"user_id": s["user_id"], "amount": s["amount"]}
            for s in data["splits"]
        ]
    else:
        splits_data = compute_equal_splits(amount, list(data["split_user_ids"]), paid_by_user_id)

    member_ids = ledger_store.list_member_ids(group_id, session)
    _validate_parties_are_members(
        paid_by_user_id,
        [s["user_id"] for s in splits_data],
        group_id,
        member_ids,
    )
    _validate_split_sum(splits_data, amount)

    expense = ledger_store.insert_expense(
        Expense(
            group_id=group_id,
            paid_by_user_id=paid_by_user_id,
            description=data["description"],
            amount=amount,
        ),
        [ExpenseSplit(user_id=s["user_id"], amount=s["amount"]) for s in splits_data],
        session,
    )
    logger.info(
        "Expense %s recorded in group %s: %s paid by %s, split %d ways",
        expense.id, group_id, amount, paid_by_user_id, len(splits_data),
    )
    return expense


def list_expenses(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Expense]:
    """Returns all expenses for a group, newest first."""
    _require_group_member(group_id, caller_id, session)
    return ledger_store.list_expenses(group_id, session)


def delete_expense(
        group_id: int,
        expense_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """
    Hard-deletes an expense together with its splits.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) — no such expense in this group.
    """
    _require_group_member(group_id, caller_id, session)

    expense = ledger_store.get_expense(group_id, expense_id, session)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist in group {group_id}.",
            404,
        )

    splits = ledger_store.list_expense_splits(expense.id, session)
    ledger_store.delete_expense(expense, session)
    logger.info(
        "Expense %s deleted from group %s with %d splits",
        expense_id, group_id, len(splits),
    )
