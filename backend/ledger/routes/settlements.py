"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.
  - The commit here is the atomic unit for each write.

Endpoints (base url_prefix=/api/v1/groups):
  GET    /groups/:id/settlements        → 200  list (newest first)
  POST   /groups/:id/settlements        → 201  record a pending settlement
  PATCH  /groups/:id/settlements/:sid   → 200  mark settled / revert to pending
  DELETE /groups/:id/settlements/:sid   → 200  delete
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.ledger.extensions import db
from backend.ledger.middleware.auth_middleware import current_caller_id, require_auth
from backend.ledger.schemas.response_schema import SettlementResponseSchema
from backend.ledger.schemas.settlement_schema import (
    CreateSettlementSchema,
    UpdateSettlementStatusSchema,
)
from backend.ledger.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


@settlements_bp.route("/<int:group_id>/settlements", methods=["GET"])
@require_auth
def list_settlements(group_id: int):
    """GET /groups/:id/settlements — All settlements of the group, any status."""
    settlements = settlement_service.list_settlements(
        group_id=group_id,
        caller_id=current_caller_id(),
        session=db.session,
    )
    return jsonify({
        "data": SettlementResponseSchema(many=True).dump(settlements),
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:group_id>/settlements", methods=["POST"])
@require_auth
def create_settlement(group_id: int):
    """
    POST /groups/:id/settlements — Record a settlement between two members.

    The settlement starts 'pending' and does not affect balances until it is
    marked settled.
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    settlement = settlement_service.create_settlement(
        group_id=group_id,
        caller_id=current_caller_id(),
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": SettlementResponseSchema().dump(settlement), "warnings": []}), 201


@settlements_bp.route("/<int:group_id>/settlements/<int:settlement_id>", methods=["PATCH"])
@require_auth
def update_settlement_status(group_id: int, settlement_id: int):
    """
    PATCH /groups/:id/settlements/:sid — {"status": "settled" | "pending"}.

    Marking an already-settled settlement again re-stamps settled_at.
    """
    data = UpdateSettlementStatusSchema().load(request.get_json(force=True) or {})
    settlement = settlement_service.update_settlement_status(
        group_id=group_id,
        settlement_id=settlement_id,
        caller_id=current_caller_id(),
        status=data["status"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": SettlementResponseSchema().dump(settlement), "warnings": []}), 200


@settlements_bp.route("/<int:group_id>/settlements/<int:settlement_id>", methods=["DELETE"])
@require_auth
def delete_settlement(group_id: int, settlement_id: int):
    """DELETE /groups/:id/settlements/:sid — Remove the record, whatever its status."""
    settlement_service.delete_settlement(
        group_id=group_id,
        settlement_id=settlement_id,
        caller_id=current_caller_id(),
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "settlement_id": settlement_id,
        },
        "warnings": [],
    }), 200
