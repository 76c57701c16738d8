"""
services/settlement_service.py — Settlement lifecycle.

State machine per settlement:

    create ──► pending ──mark_settled──► settled
                  ▲                          │
                  └────────mark_pending──────┘
    delete: allowed from either state, hard delete.

Rules enforced here:
  FORBIDDEN (403)        — caller must be a group member
  INVALID_AMOUNT (400)   — amount must be > 0 with at most 2 decimal places
  INVALID_PARTIES (422)  — from_user_id != to_user_id, both must be members
  SETTLEMENT_NOT_FOUND (404) — the id must belong to the group

Notes:
  - mark_settled is idempotent: repeating it re-stamps settled_at. There is no
    guard against double-processing at this layer.
  - mark_pending clears settled_at so the column is non-null exactly when
    status is 'settled'.
  - Schemas validate the request shape; the amount and party checks are
    repeated here because services are also called directly.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from backend.ledger.errors import AppError, ErrorCode, forbidden, group_not_found
from backend.ledger.models.settlement import Settlement, SettlementStatus
from backend.ledger.services import ledger_store

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _require_group_member(group_id: int, caller_id: int, session: Session) -> None:
    """GROUP_NOT_FOUND (404) if the group is absent, FORBIDDEN (403) if caller is not in it."""
    if ledger_store.get_group(group_id, session) is None:
        raise group_not_found(group_id)
    if not ledger_store.is_member(group_id, caller_id, session):
        raise forbidden(group_id)


def _get_settlement_or_404(group_id: int, settlement_id: int, session: Session) -> Settlement:
    settlement = ledger_store.get_settlement(group_id, settlement_id, session)
    if settlement is None:
        raise AppError(
            ErrorCode.SETTLEMENT_NOT_FOUND,
            f"Settlement {settlement_id} does not exist in group {group_id}.",
            404,
        )
    return settlement


def validate_amount(amount) -> Decimal:
    """
    Returns `amount` as a Decimal, or raises INVALID_AMOUNT (400).

    Rejects non-numeric values, non-finite values, zero, negatives, and
    anything with more than two decimal places (never rounded).
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        value = None

    if value is None or not value.is_finite():
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"Amount {amount!r} is not a valid monetary value.",
            400,
            field="amount",
        )
    if value <= Decimal("0"):
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            "Amount must be greater than zero.",
            400,
            field="amount",
        )
    if value.as_tuple().exponent < -2:
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            "Amount must have at most 2 decimal places.",
            400,
            field="amount",
        )
    return value


def _validate_parties(
        group_id: int,
        from_user_id: int,
        to_user_id: int,
        session: Session,
) -> None:
    if from_user_id == to_user_id:
        raise AppError(
            ErrorCode.INVALID_PARTIES,
            "A settlement cannot be paid to the same member who pays it.",
            422,
            field="to_user_id",
        )

    member_ids = set(ledger_store.list_member_ids(group_id, session))
    for field, user_id in (("from_user_id", from_user_id), ("to_user_id", to_user_id)):
        if user_id not in member_ids:
            raise AppError(
                ErrorCode.INVALID_PARTIES,
                f"User {user_id} is not a member of group {group_id}.",
                422,
                field=field,
            )


# ── Public service functions ───────────────────────────────────────────────

def create_settlement(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Settlement:
    """
    Records a pending settlement from data["from_user_id"] to data["to_user_id"].

    Any member may record a settlement between any two members. The new row
    has status 'pending' and settled_at NULL, so balances do not move until
    mark_settled() runs.

    Args:
        data: Validated dict from CreateSettlementSchema.
              Keys: from_user_id (int), to_user_id (int), amount (Decimal).
    """
    _require_group_member(group_id, caller_id, session)

    amount = validate_amount(data["amount"])
    from_user_id: int = data["from_user_id"]
    to_user_id: int = data["to_user_id"]
    _validate_parties(group_id, from_user_id, to_user_id, session)

    settlement = ledger_store.insert_settlement(
        Settlement(
            group_id=group_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            status=SettlementStatus.PENDING,
            settled_at=None,
        ),
        session,
    )
    logger.info(
        "Settlement %s recorded in group %s: %s -> %s, %s (pending)",
        settlement.id, group_id, from_user_id, to_user_id, amount,
    )
    return settlement


def mark_settled(
        group_id: int,
        settlement_id: int,
        caller_id: int,
        session: Session,
) -> Settlement:
    """Sets status='settled' and stamps settled_at with the current UTC time."""
    _require_group_member(group_id, caller_id, session)
    settlement = _get_settlement_or_404(group_id, settlement_id, session)

    ledger_store.update_settlement_status(
        settlement,
        SettlementStatus.SETTLED,
        datetime.now(timezone.utc),
        session,
    )
    logger.info("Settlement %s in group %s marked settled", settlement_id, group_id)
    return settlement


def mark_pending(
        group_id: int,
        settlement_id: int,
        caller_id: int,
        session: Session,
) -> Settlement:
    """Reverts a settlement to 'pending' and clears settled_at."""
    _require_group_member(group_id, caller_id, session)
    settlement = _get_settlement_or_404(group_id, settlement_id, session)

    ledger_store.update_settlement_status(
        settlement,
        SettlementStatus.PENDING,
        None,
        session,
    )
    logger.info("Settlement %s in group %s reverted to pending", settlement_id, group_id)
    return settlement


def update_settlement_status(
        group_id: int,
        settlement_id: int,
        caller_id: int,
        status: SettlementStatus,
        session: Session,
) -> Settlement:
    """Dispatches to mark_settled / mark_pending. Used by PATCH."""
    if status == SettlementStatus.SETTLED:
        return mark_settled(group_id, settlement_id, caller_id, session)
    return mark_pending(group_id, settlement_id, caller_id, session)


def delete_settlement(
        group_id: int,
        settlement_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """Removes the settlement unconditionally, whatever its status."""
    _require_group_member(group_id, caller_id, session)
    settlement = _get_settlement_or_404(group_id, settlement_id, session)

    ledger_store.delete_settlement(settlement, session)
    logger.info("Settlement %s deleted from group %s", settlement_id, group_id)


def list_settlements(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Settlement]:
    """Returns all settlements for a group, newest first."""
    _require_group_member(group_id, caller_id, session)
    return ledger_store.list_settlements(group_id, session)
