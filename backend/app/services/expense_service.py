"""
services/expense_service.py — Expense business logic.

Rules enforced here:
  PAYER_NOT_MEMBER (422) — paid_by_user_id must be a current group member
  FORBIDDEN (403)        — caller must be a group member; edits and deletes
                           are limited to the payer or a group admin

Expenses have no split rows. Each one is divided equally among the group's
current members by balance_service when balances are recomputed, which
happens at the end of every write in this module.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
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


def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _require_member(group_id: int, user_id: int, session: Session) -> Membership:
    """
    Raises FORBIDDEN (403) if user_id is not a member of group_id.
    Non-members receive 403, not 404.
    """
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )
    return membership


def _get_member_ids(group_id: int, session: Session) -> list[int]:
    stmt = select(Membership.user_id).where(Membership.group_id == group_id)
    return list(session.execute(stmt).scalars().all())


def _validate_payer_is_member(
        paid_by_user_id: int,
        group_id: int,
        member_ids: list[int],
) -> None:
    """Raises PAYER_NOT_MEMBER (422); the schema cannot perform DB lookups."""
    if paid_by_user_id not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {paid_by_user_id} is not a member of group {group_id}.",
            422,
            field="paid_by_user_id",
        )


def _require_payer_or_admin(expense: Expense, caller_id: int, session: Session, action: str) -> None:
    membership = _require_member(expense.group_id, caller_id, session)
    if caller_id != expense.paid_by_user_id and not membership.is_admin:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the payer or a group admin may {action} this expense.",
            403,
        )


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense for a group and recomputes the group's balances.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The authenticated user creating the expense (from flask.g).
        data:      Validated dict from CreateExpenseSchema.
                   paid_by_user_id defaults to the caller.
    """
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    paid_by_user_id: int = data.get("paid_by_user_id") or caller_id
    _validate_payer_is_member(paid_by_user_id, group_id, _get_member_ids(group_id, session))

    expense = Expense(
        group_id=group_id,
        paid_by_user_id=paid_by_user_id,
        description=data["description"],
        amount=data["amount"],
        date=data["date"],
    )
    session.add(expense)
    session.flush()

    recompute_group_balances(group_id, session)

    logger.info("Expense %s created in group %s", expense.id, group_id)
    return expense


def list_expenses(
        group_id: int,
        caller_id: int,
        session: Session,
        paid_by: int | None = None,
) -> list[Expense]:
    """Returns a group's expenses, newest date first, optionally by payer."""
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    stmt = select(Expense).where(Expense.group_id == group_id)
    if paid_by is not None:
        stmt = stmt.where(Expense.paid_by_user_id == paid_by)
    stmt = stmt.order_by(Expense.date.desc(), Expense.id.desc())

    return list(session.execute(stmt).scalars().all())


def get_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> Expense:
    expense = _get_expense_or_404(expense_id, session)
    _require_member(expense.group_id, caller_id, session)
    return expense


def edit_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Partially updates an expense and recomputes the group's balances.

    Only the payer or a group admin may edit. A new paid_by_user_id must be
    a current member.
    """
    expense = _get_expense_or_404(expense_id, session)
    _require_payer_or_admin(expense, caller_id, session, "edit")

    if "paid_by_user_id" in data:
        member_ids = _get_member_ids(expense.group_id, session)
        _validate_payer_is_member(data["paid_by_user_id"], expense.group_id, member_ids)
        expense.paid_by_user_id = data["paid_by_user_id"]

    for field in ("description", "amount", "date"):
        if field in data:
            setattr(expense, field, data[field])

    session.flush()
    recompute_group_balances(expense.group_id, session)
    return expense


def delete_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """
    Deletes an expense and recomputes the group's balances.

    Payments that referenced the expense are kept and unlinked
    (expense_id set to NULL); they are still real transfers of money.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) — expense does not exist.
        AppError(FORBIDDEN, 403)         — caller is not payer or admin.
    """
    expense = _get_expense_or_404(expense_id, session)
    _require_payer_or_admin(expense, caller_id, session, "delete")
    group_id = expense.group_id

    session.execute(
        update(Payment)
        .where(Payment.expense_id == expense_id)
        .values(expense_id=None)
    )
    session.delete(expense)
    session.flush()

    recompute_group_balances(group_id, session)
    logger.info("Expense %s deleted from group %s", expense_id, group_id)
