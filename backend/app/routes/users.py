"""
routes/users.py — User profile route handlers.

Endpoints (base url_prefix=/api/v1/users):
  GET    /users/:id                → 200  public profile
  GET    /users/by-email/:email    → 200  lookup (used when adding members)
  PATCH  /users/me                 → 200  update name / email / password
  DELETE /users/me                 → 200  delete account (no memberships left)
  GET    /users/me/balances        → 200  balances across all groups
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.user_schema import UpdateUserSchema
from backend.app.services import user_service

users_bp = Blueprint("users", __name__)


@users_bp.route("/<int:user_id>", methods=["GET"])
@require_auth
def get_user(user_id: int):
    result = user_service.get_user(user_id=user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/by-email/<string:email>", methods=["GET"])
@require_auth
def get_user_by_email(email: str):
    result = user_service.get_user_by_email(email=email, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/me", methods=["PATCH"])
@require_auth
def update_me():
    data = UpdateUserSchema().load(request.get_json(force=True) or {})
    result = user_service.update_user(
        user_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/me", methods=["DELETE"])
@require_auth
def delete_me():
    """DELETE /users/me — Refused while the caller still belongs to a group."""
    user_service.delete_user(user_id=g.user_id, session=db.session)
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "user_id": g.user_id,
        },
        "warnings": [],
    }), 200


@users_bp.route("/me/balances", methods=["GET"])
@require_auth
def my_balances():
    result = user_service.get_my_balances(user_id=g.user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200
