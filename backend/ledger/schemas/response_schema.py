"""
schemas/response_schema.py — Output shapes for every endpoint.

Monetary amounts are dumped as strings with exactly two decimal places
("10.00", never 10 or 10.0) so clients never parse money as a float.

These are dump-only schemas and inherit from ma.Schema (see extensions.py).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP

from marshmallow import fields

from backend.ledger.extensions import ma


def _money() -> fields.Decimal:
    return fields.Decimal(places=2, rounding=ROUND_HALF_UP, as_string=True)


class SettlementResponseSchema(ma.Schema):
    id = fields.Int()
    group_id = fields.Int()
    from_user_id = fields.Int()
    from_user_name = fields.Function(lambda s: s.payer.name)
    to_user_id = fields.Int()
    to_user_name = fields.Function(lambda s: s.recipient.name)
    amount = _money()
    status = fields.Function(lambda s: s.status.value)
    created_at = fields.DateTime()
    settled_at = fields.DateTime(allow_none=True)


class ExpenseSplitResponseSchema(ma.Schema):
    id = fields.Int()
    user_id = fields.Int()
    amount = _money()


class ExpenseResponseSchema(ma.Schema):
    id = fields.Int()
    group_id = fields.Int()
    paid_by_user_id = fields.Int()
    paid_by_name = fields.Function(lambda e: e.payer.name)
    description = fields.Str()
    amount = _money()
    created_at = fields.DateTime()
    splits = fields.List(fields.Nested(ExpenseSplitResponseSchema))


class BalanceSchema(ma.Schema):
    user_id = fields.Int()
    name = fields.Str()
    total_paid = _money()
    total_owed = _money()
    settlements_received = _money()
    settlements_paid = _money()
    balance = _money()


class SuggestedPaymentSchema(ma.Schema):
    from_user_id = fields.Int()
    from_name = fields.Str()
    to_user_id = fields.Int()
    to_name = fields.Str()
    amount = _money()


class BalanceResponseSchema(ma.Schema):
    group_id = fields.Int()
    balances = fields.List(fields.Nested(BalanceSchema))
    suggested_payments = fields.List(fields.Nested(SuggestedPaymentSchema))
    balance_sum = _money()
