"""
services/auth_service.py — Authentication business logic.

Responsibilities:
  - User registration and credential validation
  - JWT access token creation (HS256)
  - Password hashing (bcrypt) and verification

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes
  - current_app.config is used ONLY to read JWT_SECRET_KEY, token expiry and
    BCRYPT_LOG_ROUNDS. That is the single Flask dependency in this service.

Token design:
  - Access token only: JWT, HS256, sub = user_id (str), TTL from
    JWT_ACCESS_TOKEN_EXPIRES. Clients log in again when it expires.

Password storage:
  - Hashed with bcrypt (cost factor from config BCRYPT_LOG_ROUNDS, default 12)
  - Raw password is never stored, never logged
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.user import User

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _create_access_token(user_id: int) -> str:
    """
    Creates a signed JWT access token.
    Payload: sub (user_id as str), iat, exp, jti.
    """
    now = datetime.now(timezone.utc)
    expiry = now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": expiry,
        # Guarantees each issued token is unique even if generated in the same second.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def find_user_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.email == email.strip().lower())
    ).scalar_one_or_none()


def build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. Never includes the password hash."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        name: str,
        email: str,
        password: str,
        session: Session,
) -> dict:
    """
    Creates a new user account and issues an access token.

    Raises:
      AppError(DUPLICATE_EMAIL, 409) — email already registered

    Returns: {"user": {...}, "access_token": "..."}
    """
    email = email.strip().lower()
    if find_user_by_email(email, session) is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            409,
            field="email",
        )

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
    )
    session.add(user)
    session.flush()  # populate user.id before signing the token

    logger.info("Registered user %s", user.id)
    return {
        "user": build_user_dict(user),
        "access_token": _create_access_token(user.id),
    }


def login_user(
        email: str,
        password: str,
        session: Session,
) -> dict:
    """
    Validates credentials and issues a new access token.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — email not found or password wrong.
      Uses the same error for both to avoid account enumeration.

    Returns: {"user": {...}, "access_token": "..."}
    """
    user = find_user_by_email(email, session)

    # bcrypt.checkpw compares in constant time.
    if user is None or not bcrypt.checkpw(
            password.encode("utf-8"),
            user.password_hash.encode("utf-8"),
    ):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "The email or password is incorrect.",
            401,
        )

    return {
        "user": build_user_dict(user),
        "access_token": _create_access_token(user.id),
    }


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — user_id from JWT no longer exists in DB.
    """
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return build_user_dict(user)
