"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, decimal precision
      - Exactly one of split_user_ids / splits (SPLIT_INPUT_CONFLICT, 400)
      - DUPLICATE_SPLIT_USER (400) — request shape rule
      - Non-empty-after-trim enforcement for description
  - services/expense_service.py:
      - SPLIT_SUM_MISMATCH (422) — splits must add up to the amount exactly
      - INVALID_PARTIES (422)    — payer and split users must be members

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from backend.ledger.errors import ErrorCode


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """Expense amounts must be > 0 with at most 2 decimal places."""
    if not value.is_finite() or value <= Decimal("0"):
        raise ValidationError(ErrorCode.INVALID_AMOUNT)
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT)


def _validate_split_amount(value: Decimal) -> None:
    """Split amounts may be zero but never negative, max 2 decimal places."""
    if not value.is_finite() or value < Decimal("0"):
        raise ValidationError(ErrorCode.INVALID_AMOUNT)
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT)


def _validate_non_empty_after_trim(value: str) -> None:
    """
    validate.Length(min=1) alone allows whitespace-only strings like "   ".
    Mirrors the DB CHECK(LENGTH(TRIM(description)) > 0) constraint.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_MONEY_ERRORS = {
    "invalid": ErrorCode.INVALID_AMOUNT,
    "special": ErrorCode.INVALID_AMOUNT,
}


# ── Sub-schema: one entry in the `splits` array ───────────────────────────

class SplitInputSchema(Schema):
    """One caller-assigned share. Membership is checked in expense_service.py."""

    user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_split_amount,
        error_messages=_MONEY_ERRORS,
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    Two ways to describe who owes what:
      - split_user_ids: [1, 2, 3]  → server splits the amount equally and
                                     assigns the remainder cents.
      - splits: [{user_id, amount}] → the caller already assigned the shares
                                      (remainder included); they must sum to
                                      the amount exactly.
    Sending both, or neither, is SPLIT_INPUT_CONFLICT.
    """

    paid_by_user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(
        required=True,
        validate=[validate.Length(max=255), _validate_non_empty_after_trim],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
        error_messages=_MONEY_ERRORS,
    )

    split_user_ids = fields.List(
        fields.Int(strict=True, validate=validate.Range(min=1)),
        validate=validate.Length(min=1, error="split_user_ids must not be empty."),
    )

    splits = fields.List(
        fields.Nested(SplitInputSchema),
        validate=validate.Length(min=1, error="splits must not be empty."),
    )

    @validates_schema
    def validate_split_input(self, data: dict, **kwargs) -> None:
        has_ids = "split_user_ids" in data
        has_splits = "splits" in data

        if has_ids == has_splits:
            raise ValidationError(ErrorCode.SPLIT_INPUT_CONFLICT)

        user_ids = (
            data["split_user_ids"]
            if has_ids
            else [s["user_id"] for s in data["splits"]]
        )
        if len(user_ids) != len(set(user_ids)):
            raise ValidationError(
                ErrorCode.DUPLICATE_SPLIT_USER,
                field_name="split_user_ids" if has_ids else "splits",
            )
