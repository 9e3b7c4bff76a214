"""
services/payment_service.py — Payment business logic.

A payment is money that actually changed hands between two members of a
group, optionally tied to the expense it was meant to cover.

Rules enforced here:
  FORBIDDEN (403)               — caller must be a group member
  SELF_PAYMENT (422)            — paid_by_user_id must not equal paid_to_user_id
  PAYEE_NOT_MEMBER (422)        — paid_to_user_id must be a group member
  EXPENSE_GROUP_MISMATCH (422)  — a linked expense must belong to the same group

Notes on SELF_PAYMENT:
  The schema cannot check this because paid_by_user_id comes from flask.g
  (auth context), not the request body. The DB also has a CHECK constraint
  as the final defence layer.

Every write recomputes the group's balances before returning.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.services.balance_service import recompute_group_balances, round_cents

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def _get_payment_or_404(payment_id: int, session: Session) -> Payment:
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise AppError(
            ErrorCode.PAYMENT_NOT_FOUND,
            f"Payment {payment_id} does not exist.",
            404,
        )
    return payment


def _get_membership(group_id: int, user_id: int, session: Session) -> Membership | None:
    return session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()


def _require_member(group_id: int, user_id: int, session: Session) -> Membership:
    """Raises FORBIDDEN (403) if user_id is not a member of group_id."""
    membership = _get_membership(group_id, user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )
    return membership


def _require_payer_or_admin(payment: Payment, caller_id: int, session: Session, action: str) -> None:
    membership = _require_member(payment.group_id, caller_id, session)
    if caller_id != payment.paid_by_user_id and not membership.is_admin:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the payer or a group admin may {action} this payment.",
            403,
        )


def _validate_linked_expense(expense_id: int, group_id: int, session: Session) -> None:
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
            field="expense_id",
        )
    if expense.group_id != group_id:
        raise AppError(
            ErrorCode.EXPENSE_GROUP_MISMATCH,
            f"Expense {expense_id} does not belong to group {group_id}.",
            422,
            field="expense_id",
        )


def _sum_amounts(payments: list[Payment]) -> Decimal:
    return round_cents(sum((p.amount for p in payments), ZERO))


# ── Public service functions ───────────────────────────────────────────────

def create_payment(
        group_id: int,
        paid_by_id: int,
        data: dict,
        session: Session,
) -> Payment:
    """
    Records a payment from paid_by_id to paid_to_user_id.

    Args:
        group_id:   The group this payment belongs to.
        paid_by_id: The authenticated user making the payment (from flask.g).
        data:       Validated dict from CreatePaymentSchema.
                    Keys: paid_to_user_id, amount, date, description?, expense_id?

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)               — payer is not a group member
      AppError(SELF_PAYMENT, 422)
      AppError(PAYEE_NOT_MEMBER, 422)
      AppError(EXPENSE_NOT_FOUND, 404)       — linked expense does not exist
      AppError(EXPENSE_GROUP_MISMATCH, 422)  — linked expense is in another group
    """
    _get_group_or_404(group_id, session)
    _require_member(group_id, paid_by_id, session)

    paid_to_user_id: int = data["paid_to_user_id"]

    if paid_by_id == paid_to_user_id:
        raise AppError(
            ErrorCode.SELF_PAYMENT,
            "A payment cannot be made to yourself.",
            422,
            field="paid_to_user_id",
        )

    if _get_membership(group_id, paid_to_user_id, session) is None:
        raise AppError(
            ErrorCode.PAYEE_NOT_MEMBER,
            f"User {paid_to_user_id} is not a member of group {group_id}.",
            422,
            field="paid_to_user_id",
        )

    expense_id = data.get("expense_id")
    if expense_id is not None:
        _validate_linked_expense(expense_id, group_id, session)

    payment = Payment(
        group_id=group_id,
        paid_by_user_id=paid_by_id,
        paid_to_user_id=paid_to_user_id,
        amount=data["amount"],
        date=data["date"],
        description=data.get("description"),
        expense_id=expense_id,
    )
    session.add(payment)
    session.flush()

    recompute_group_balances(group_id, session)

    logger.info("Payment %s recorded in group %s", payment.id, group_id)
    return payment


def list_payments(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Payment]:
    """Returns all payments of a group, newest date first."""
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    stmt = (
        select(Payment)
        .where(Payment.group_id == group_id)
        .order_by(Payment.date.desc(), Payment.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_payment(payment_id: int, caller_id: int, session: Session) -> Payment:
    payment = _get_payment_or_404(payment_id, session)
    _require_member(payment.group_id, caller_id, session)
    return payment


def edit_payment(
        payment_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Payment:
    """Updates amount, description and/or date. Payer or admin only."""
    payment = _get_payment_or_404(payment_id, session)
    _require_payer_or_admin(payment, caller_id, session, "edit")

    for field in ("amount", "description", "date"):
        if field in data:
            setattr(payment, field, data[field])

    session.flush()
    recompute_group_balances(payment.group_id, session)
    return payment


def delete_payment(payment_id: int, caller_id: int, session: Session) -> None:
    payment = _get_payment_or_404(payment_id, session)
    _require_payer_or_admin(payment, caller_id, session, "delete")
    group_id = payment.group_id

    session.delete(payment)
    session.flush()

    recompute_group_balances(group_id, session)
    logger.info("Payment %s deleted from group %s", payment_id, group_id)


def get_payments_between(
        group_id: int,
        user_a: int,
        user_b: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Payments in either direction between two users, newest first, with the
    totals per direction. `net` is positive when user_a has paid user_b more
    than the reverse.
    """
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    stmt = (
        select(Payment)
        .where(
            Payment.group_id == group_id,
            or_(
                and_(Payment.paid_by_user_id == user_a, Payment.paid_to_user_id == user_b),
                and_(Payment.paid_by_user_id == user_b, Payment.paid_to_user_id == user_a),
            ),
        )
        .order_by(Payment.date.desc(), Payment.id.desc())
    )
    payments = list(session.execute(stmt).scalars().all())

    a_to_b = _sum_amounts([p for p in payments if p.paid_by_user_id == user_a])
    b_to_a = _sum_amounts([p for p in payments if p.paid_by_user_id == user_b])

    return {
        "payments": payments,
        "summary": {
            "user1_id": user_a,
            "user2_id": user_b,
            "user1_paid_to_user2": a_to_b,
            "user2_paid_to_user1": b_to_a,
            "net": a_to_b - b_to_a,
        },
    }


def get_payment_summary(
        group_id: int,
        user_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """Totals a user has paid and received within a group."""
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    payments = list(session.execute(
        select(Payment).where(
            Payment.group_id == group_id,
            or_(
                Payment.paid_by_user_id == user_id,
                Payment.paid_to_user_id == user_id,
            ),
        )
    ).scalars().all())

    total_paid = _sum_amounts([p for p in payments if p.paid_by_user_id == user_id])
    total_received = _sum_amounts([p for p in payments if p.paid_to_user_id == user_id])

    return {
        "group_id": group_id,
        "user_id": user_id,
        "total_paid": total_paid,
        "total_received": total_received,
        "net_payment": total_received - total_paid,
        "payment_count": len(payments),
    }
