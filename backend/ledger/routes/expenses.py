"""
routes/expenses.py — Expense route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Endpoints (base url_prefix=/api/v1/groups):
  GET    /groups/:id/expenses        → 200  list expenses with splits
  POST   /groups/:id/expenses        → 201  record an expense and its splits
  DELETE /groups/:id/expenses/:eid   → 200  delete an expense and its splits
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.ledger.extensions import db
from backend.ledger.middleware.auth_middleware import current_caller_id, require_auth
from backend.ledger.schemas.expense_schema import CreateExpenseSchema
from backend.ledger.schemas.response_schema import ExpenseResponseSchema
from backend.ledger.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


@expenses_bp.route("/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    """GET /groups/:id/expenses — Newest first."""
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller_id=current_caller_id(),
        session=db.session,
    )
    return jsonify({
        "data": ExpenseResponseSchema(many=True).dump(expenses),
        "warnings": [],
    }), 200


@expenses_bp.route("/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """
    POST /groups/:id/expenses — Record a new expense.
    Expense and splits are committed together or not at all.
    """
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        group_id=group_id,
        caller_id=current_caller_id(),
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": ExpenseResponseSchema().dump(expense), "warnings": []}), 201


@expenses_bp.route("/<int:group_id>/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(group_id: int, expense_id: int):
    """DELETE /groups/:id/expenses/:eid — Hard delete; splits go with it."""
    expense_service.delete_expense(
        group_id=group_id,
        expense_id=expense_id,
        caller_id=current_caller_id(),
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200
