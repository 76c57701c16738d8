"""
routes/balances.py — Balance route handler.

Layer rules:
  - Call ONE service, dump the result, return the envelope.
  - No business logic. No DB queries.

Endpoint (base url_prefix=/api/v1/groups):
  GET /groups/:id/balances → 200  balances + suggested payments
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from backend.ledger.extensions import db
from backend.ledger.middleware.auth_middleware import current_caller_id, require_auth
from backend.ledger.schemas.response_schema import BalanceResponseSchema
from backend.ledger.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    Every member appears in membership order, including members with no
    activity. suggested_payments is the greedy plan that would zero every
    balance. Pending settlements are not reflected until marked settled.
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=current_caller_id(),
        session=db.session,
        snapshot_isolation=current_app.config.get("BALANCE_SNAPSHOT_ISOLATION"),
    )
    return jsonify({"data": BalanceResponseSchema().dump(result), "warnings": []}), 200
