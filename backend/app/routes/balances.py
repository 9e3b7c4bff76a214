"""
routes/balances.py — Balance and settlement-plan route handlers.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

All reads serve the cached balance table; the balance service checks the
zero-sum invariant before building a settlement plan and raises
BALANCE_INTEGRITY (500) if the cache is corrupt.

Endpoints (base url_prefix=/api/v1/groups):
  GET  /groups/:id/balances               → 200  balances + settlement plan
  GET  /groups/:id/balances/debtors       → 200
  GET  /groups/:id/balances/creditors     → 200
  GET  /groups/:id/balances/:uid          → 200  one member + interpretation
  POST /groups/:id/balances/recalculate   → 200  forced recompute
  GET  /groups/:id/settlements            → 200  settlement plan only
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    """GET /groups/:id/balances — Full summary: balances, plan and totals."""
    result = balance_service.get_balance_summary(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/debtors", methods=["GET"])
@require_auth
def get_debtors(group_id: int):
    result = balance_service.get_debtors(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/creditors", methods=["GET"])
@require_auth
def get_creditors(group_id: int):
    result = balance_service.get_creditors(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/<int:user_id>", methods=["GET"])
@require_auth
def get_member_balance(group_id: int, user_id: int):
    result = balance_service.get_member_balance(
        group_id=group_id,
        user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/recalculate", methods=["POST"])
@require_auth
def recalculate(group_id: int):
    """POST /groups/:id/balances/recalculate — Rebuild the cache from the ledger."""
    result = balance_service.recalculate_for_member(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/settlements", methods=["GET"])
@require_auth
def get_settlements(group_id: int):
    """GET /groups/:id/settlements — Who should pay whom to settle up."""
    result = balance_service.get_settlement_plan(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
