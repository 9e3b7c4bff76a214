"""
middleware/auth_middleware.py — JWT authentication decorator.

@require_auth reads "Authorization: Bearer <token>", verifies the HS256
signature and expiry, and stores the caller's user id in flask.g.user_id.

Responsibility boundary:
  - Authentication only (401). Whether the caller may touch a group,
    expense or payment is decided in the service layer (403).
  - Services never read flask.g; routes pass g.user_id down as a plain int.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature, or bad payload
  TOKEN_EXPIRED  (401) — valid token whose exp claim is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Usage:
        @groups_bp.route("/")
        @require_auth
        def list_groups():
            user_id = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = decode_access_token(_bearer_token())
        return f(*args, **kwargs)

    return decorated


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )
    return parts[1]


def decode_access_token(raw_token: str) -> int:
    """
    Verifies an access token against the app's JWT settings and returns the
    user id from its `sub` claim. Needs an application context.
    """
    try:
        payload = jwt.decode(
            raw_token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Log in again to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError as exc:
        current_app.logger.debug("Rejected access token: %s", exc)
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token does not carry a valid user id.",
            401,
        )
