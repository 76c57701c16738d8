"""
schemas/settlement_schema.py — Marshmallow schemas for settlement endpoints.

Validation responsibility:
  - This file: field types, decimal precision, positive amount, status value.
  - services/settlement_service.py:
      - INVALID_PARTIES (422)       — self-payment and membership checks,
                                      which need a DB lookup.
      - SETTLEMENT_NOT_FOUND (404)  — requires DB lookup.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from backend.ledger.errors import ErrorCode
from backend.ledger.models.settlement import SettlementStatus


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Same rule as expense_schema.py. Kept local so each schema file stays
# self-contained.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Rejects amounts <= 0 and amounts with more than 2 decimal places
    (never rounded). Both surface as INVALID_AMOUNT.
    """
    if not value.is_finite() or value <= Decimal("0"):
        raise ValidationError(ErrorCode.INVALID_AMOUNT)

    # e.g. Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT)


_MONEY_ERRORS = {
    "invalid": ErrorCode.INVALID_AMOUNT,
    "special": ErrorCode.INVALID_AMOUNT,
}


def _member_id_field() -> fields.Int:
    return fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="User ids must be positive integers."),
    )


# ── Schemas ────────────────────────────────────────────────────────────────

class CreateSettlementSchema(Schema):
    """
    POST /groups/:id/settlements

    Field rules:
      from_user_id : required, positive integer (the member paying)
      to_user_id   : required, positive integer (the member being paid)
      amount       : required, positive Decimal, max 2 decimal places

    Self-payment and membership are checked in settlement_service.py.
    """

    from_user_id = _member_id_field()
    to_user_id = _member_id_field()

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
        error_messages=_MONEY_ERRORS,
    )


class UpdateSettlementStatusSchema(Schema):
    """
    PATCH /groups/:id/settlements/:sid

    status : required, "settled" (stamps settled_at) or "pending"
             (clears settled_at).
    """

    status = fields.Enum(
        SettlementStatus,
        by_value=True,
        required=True,
        error_messages={"unknown": ErrorCode.INVALID_STATUS},
    )
