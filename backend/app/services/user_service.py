"""
services/user_service.py — User profile business logic.

Layer rules:
  - No imports from routes or schemas.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.user import User
from backend.app.services.auth_service import (
    build_user_dict,
    find_user_by_email,
    hash_password,
)
from backend.app.services.balance_service import get_user_balances


def _get_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


# ── Public service functions ───────────────────────────────────────────────

def get_user(user_id: int, session: Session) -> dict:
    return build_user_dict(_get_user_or_404(user_id, session))


def get_user_by_email(email: str, session: Session) -> dict:
    """Lookup used by the UI when adding someone to a group."""
    user = find_user_by_email(email, session)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"No user is registered with '{email}'.",
            404,
        )
    return build_user_dict(user)


def update_user(user_id: int, data: dict, session: Session) -> dict:
    """
    Applies a partial profile update (name, email, password).

    Raises:
      AppError(DUPLICATE_EMAIL, 409) — the new email belongs to someone else.
    """
    user = _get_user_or_404(user_id, session)

    if "email" in data:
        email = data["email"].strip().lower()
        other = find_user_by_email(email, session)
        if other is not None and other.id != user.id:
            raise AppError(
                ErrorCode.DUPLICATE_EMAIL,
                f"The email address '{email}' is already registered.",
                409,
                field="email",
            )
        user.email = email

    if "name" in data:
        user.name = data["name"]
    if "password" in data:
        user.password_hash = hash_password(data["password"])

    session.flush()
    return build_user_dict(user)


def delete_user(user_id: int, session: Session) -> None:
    """
    Deletes the caller's account.

    Refused with USER_HAS_MEMBERSHIPS (409) while the user still belongs to
    any group: their expenses and payments are part of other members'
    balances. Groups the user created must be deleted first.
    """
    user = _get_user_or_404(user_id, session)

    membership_count = session.execute(
        select(func.count(Membership.id)).where(Membership.user_id == user_id)
    ).scalar_one()
    if membership_count:
        raise AppError(
            ErrorCode.USER_HAS_MEMBERSHIPS,
            f"Leave all {membership_count} group(s) before deleting your account.",
            409,
        )

    created_count = session.execute(
        select(func.count(Group.id)).where(Group.created_by == user_id)
    ).scalar_one()
    if created_count:
        raise AppError(
            ErrorCode.USER_HAS_MEMBERSHIPS,
            f"{created_count} group(s) you created still exist; delete them first.",
            409,
        )

    session.delete(user)
    session.flush()


def get_my_balances(user_id: int, session: Session) -> dict:
    _get_user_or_404(user_id, session)
    return get_user_balances(user_id, session)
