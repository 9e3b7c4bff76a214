"""
services/group_service.py — Group and membership business logic.

Authorization rules:
  - Reading a group:   any member
  - Editing/deleting:  admins only
  - Adding a member:   admins only
  - Removing a member: admins may remove anyone; members may remove themselves

Membership changes re-divide every expense of the group (equal split among
current members), so add_member() and remove_member() recompute balances
before returning.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.balance import Balance
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.membership import MemberRole, Membership
from backend.app.models.payment import Payment
from backend.app.models.user import User
from backend.app.services.balance_service import recompute_group_balances

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def _get_membership(group_id: int, user_id: int, session: Session) -> Membership | None:
    return session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()


def _require_member(group_id: int, user_id: int, session: Session) -> Membership:
    """
    Raises FORBIDDEN (403) if user_id is not a member of group_id.
    Non-members receive 403, not 404.
    """
    membership = _get_membership(group_id, user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )
    return membership


def _require_admin(group_id: int, user_id: int, session: Session) -> Membership:
    membership = _require_member(group_id, user_id, session)
    if not membership.is_admin:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only admins of group {group_id} may do this.",
            403,
        )
    return membership


def _count_members(group_id: int, session: Session) -> int:
    return session.execute(
        select(func.count(Membership.id)).where(Membership.group_id == group_id)
    ).scalar_one()


def _count_admins(group_id: int, session: Session) -> int:
    return session.execute(
        select(func.count(Membership.id)).where(
            Membership.group_id == group_id,
            Membership.role == MemberRole.ADMIN,
        )
    ).scalar_one()


def _has_ledger_entries(group_id: int, user_id: int, session: Session) -> bool:
    """True if the user paid an expense or sent/received a payment in the group."""
    expense_id = session.execute(
        select(Expense.id).where(
            Expense.group_id == group_id,
            Expense.paid_by_user_id == user_id,
        ).limit(1)
    ).scalar_one_or_none()
    if expense_id is not None:
        return True

    payment_id = session.execute(
        select(Payment.id).where(
            Payment.group_id == group_id,
            or_(
                Payment.paid_by_user_id == user_id,
                Payment.paid_to_user_id == user_id,
            ),
        ).limit(1)
    ).scalar_one_or_none()
    return payment_id is not None


def _member_dict(membership: Membership, user: User) -> dict:
    return {
        "user_id": user.id,
        "name": user.name,
        "email": user.email,
        "role": membership.role.value,
        "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
    }


def _build_group_dict(group: Group, members: list[tuple[Membership, User]] | None = None) -> dict:
    """Serialises a Group (optionally with its member list) to a plain dict."""
    payload = {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "created_by": group.created_by,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "updated_at": group.updated_at.isoformat() if group.updated_at else None,
    }
    if members is not None:
        payload["members"] = [_member_dict(m, u) for m, u in members]
    return payload


def _list_members(group_id: int, session: Session) -> list[tuple[Membership, User]]:
    stmt = (
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return [(m, u) for m, u in session.execute(stmt).all()]


# ── Public service functions ───────────────────────────────────────────────

def create_group(data: dict, creator_id: int, session: Session) -> dict:
    """
    Creates a new group. The creator becomes its first member, as admin.

    Args:
        data:       Validated dict from CreateGroupSchema (name, description).
        creator_id: The authenticated user (flask.g.user_id).
    """
    group = Group(
        name=data["name"],
        description=data.get("description"),
        created_by=creator_id,
    )
    session.add(group)
    session.flush()  # populate group.id before creating membership

    session.add(Membership(user_id=creator_id, group_id=group.id, role=MemberRole.ADMIN))
    session.flush()

    recompute_group_balances(group.id, session)

    logger.info("Group %s created by user %s", group.id, creator_id)
    return _build_group_dict(group, _list_members(group.id, session))


def list_groups(user_id: int, session: Session) -> list[dict]:
    """
    Returns all groups the user is a member of, newest first, with the
    caller's role and the group's member count.
    """
    member_count = (
        select(func.count(Membership.id))
        .where(Membership.group_id == Group.id)
        .correlate(Group)
        .scalar_subquery()
    )
    stmt = (
        select(Group, Membership.role, member_count)
        .join(Membership, Group.id == Membership.group_id)
        .where(Membership.user_id == user_id)
        .order_by(Group.created_at.desc(), Group.id.desc())
    )

    groups = []
    for group, role, count in session.execute(stmt).all():
        payload = _build_group_dict(group)
        payload["role"] = role.value
        payload["member_count"] = count
        groups.append(payload)
    return groups


def get_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Returns full group details including the current member list."""
    group = _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)
    return _build_group_dict(group, _list_members(group_id, session))


def update_group(group_id: int, caller_id: int, data: dict, session: Session) -> dict:
    """Updates name and/or description. Admins only."""
    group = _get_group_or_404(group_id, session)
    _require_admin(group_id, caller_id, session)

    if "name" in data:
        group.name = data["name"]
    if "description" in data:
        group.description = data["description"]
    session.flush()

    return _build_group_dict(group, _list_members(group_id, session))


def delete_group(group_id: int, caller_id: int, session: Session) -> None:
    """
    Deletes a group and everything recorded in it. Admins only.

    Child rows are removed in FK order (balances, payments, expenses,
    memberships) because every FK into groups is ON DELETE RESTRICT.
    """
    group = _get_group_or_404(group_id, session)
    _require_admin(group_id, caller_id, session)

    session.execute(delete(Balance).where(Balance.group_id == group_id))
    session.execute(delete(Payment).where(Payment.group_id == group_id))
    session.execute(delete(Expense).where(Expense.group_id == group_id))
    session.execute(delete(Membership).where(Membership.group_id == group_id))
    session.delete(group)
    session.flush()

    logger.info("Group %s deleted by user %s", group_id, caller_id)


def add_member(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
        role: MemberRole = MemberRole.MEMBER,
) -> dict:
    """
    Adds a user to a group. Only admins may call this.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)  — group does not exist
      AppError(FORBIDDEN, 403)        — caller is not an admin of the group
      AppError(USER_NOT_FOUND, 404)   — target user does not exist
      AppError(ALREADY_MEMBER, 409)   — user is already in the group

    Returns: dict with the new membership details.
    """
    _get_group_or_404(group_id, session)
    _require_admin(group_id, caller_id, session)

    target_user = session.get(User, target_user_id)
    if target_user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {target_user_id} does not exist.",
            404,
            field="user_id",
        )

    if _get_membership(group_id, target_user_id, session) is not None:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {target_user_id} is already a member of group {group_id}.",
            409,
            field="user_id",
        )

    membership = Membership(user_id=target_user_id, group_id=group_id, role=role)
    session.add(membership)
    session.flush()

    recompute_group_balances(group_id, session)

    payload = _member_dict(membership, target_user)
    payload["group_id"] = group_id
    return payload


def remove_member(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
) -> None:
    """
    Removes a user from a group.

    Authorization:
      - An admin may remove any member (including themselves).
      - Any member may remove themselves.
      - A non-admin may not remove another member (FORBIDDEN, 403).

    Raises:
      AppError(GROUP_NOT_FOUND, 404)            — group does not exist
      AppError(FORBIDDEN, 403)                  — caller not authorised
      AppError(USER_NOT_FOUND, 404)             — target is not a member
      AppError(MEMBER_HAS_LEDGER_ENTRIES, 409)  — target paid or was paid in the group
      AppError(LAST_ADMIN, 409)                 — target is the last admin of a
                                                  group that still has members
    """
    _get_group_or_404(group_id, session)
    caller = _require_member(group_id, caller_id, session)

    if not (caller.is_admin or caller_id == target_user_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only remove yourself from a group unless you are an admin.",
            403,
        )

    membership = _get_membership(group_id, target_user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
            404,
        )

    # Dropping someone who paid or was paid would leave their share of the
    # ledger unaccounted for and break the zero-sum balance invariant.
    if _has_ledger_entries(group_id, target_user_id, session):
        raise AppError(
            ErrorCode.MEMBER_HAS_LEDGER_ENTRIES,
            f"User {target_user_id} has expenses or payments in group {group_id} "
            f"and cannot be removed.",
            409,
        )

    if (
        membership.is_admin
        and _count_admins(group_id, session) == 1
        and _count_members(group_id, session) > 1
    ):
        raise AppError(
            ErrorCode.LAST_ADMIN,
            "The last admin cannot leave while other members remain.",
            409,
        )

    session.delete(membership)
    session.flush()

    recompute_group_balances(group_id, session)
