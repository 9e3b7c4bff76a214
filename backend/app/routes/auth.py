"""
routes/auth.py — account creation and login (url_prefix=/api/v1/auth).

  POST   /register  → 201  {user, access_token}
  POST   /login     → 200  {user, access_token}
  GET    /me        → 200  profile of the bearer

Handlers validate, call auth_service, commit where something was written and
wrap the result in {"data": ..., "warnings": []}. AppError is left to the
app-level handler.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.auth_schema import LoginSchema, RegisterSchema
from backend.app.services import auth_service

auth_bp = Blueprint("auth", __name__)


def _envelope(result, status: int):
    return jsonify({"data": result, "warnings": []}), status


@auth_bp.route("/register", methods=["POST"])
def register():
    """Public. Creates the account and signs the caller in."""
    payload = RegisterSchema().load(request.get_json(force=True) or {})
    result = auth_service.register_user(
        name=payload["name"],
        email=payload["email"],
        password=payload["password"],
        session=db.session,
    )
    db.session.commit()
    return _envelope(result, 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = LoginSchema().load(request.get_json(force=True) or {})
    return _envelope(
        auth_service.login_user(payload["email"], payload["password"], db.session),
        200,
    )


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    return _envelope(auth_service.get_current_user(g.user_id, db.session), 200)
