"""
services/balance_service.py — Balance computation and the cached balance table.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
The canonical formula must not be reimplemented elsewhere in the codebase.

    paid_out          = sum of expenses the member paid for
    fair_share        = sum of all group expenses / current member count
    received_payments = sum of payments made to the member
    sent_payments     = sum of payments made by the member
    balance           = paid_out - fair_share + received_payments - sent_payments

Positive = the member is owed money, negative = the member owes money.
Every expense is split equally among the group's CURRENT members, so adding
or removing a member re-divides all historical expenses. That is the
product's policy, not an accident.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives group_id (int) and session (SQLAlchemy Session) as arguments.
  - Commits are the route's responsibility — only flush here.
  - The compute_* functions are pure and take plain sequences; all queries
    live in the data access helpers.

Recompute contract:
  Every write that touches expenses, payments or memberships calls
  recompute_group_balances() in the same transaction, after its own flush.
  If the recompute raises, the global error handler rolls back the whole
  transaction, ledger write included.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.balance import Balance
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.user import User
from backend.app.services.settlement_service import (
    BalanceEntry,
    compute_settlements,
    integrity_tolerance,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def round_cents(value: Decimal) -> Decimal:
    """Rounds to cents, half away from zero (2.345 -> 2.35, -2.345 -> -2.35)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ── Data access helpers ────────────────────────────────────────────────────

def get_member_ids(group_id: int, session: Session) -> list[int]:
    """Returns the user_ids of all current members of a group, lowest first."""
    stmt = (
        select(Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.user_id)
    )
    return list(session.execute(stmt).scalars().all())


def get_expenses(group_id: int, session: Session) -> list[Expense]:
    stmt = select(Expense).where(Expense.group_id == group_id)
    return list(session.execute(stmt).scalars().all())


def get_payments(group_id: int, session: Session) -> list[Payment]:
    stmt = select(Payment).where(Payment.group_id == group_id)
    return list(session.execute(stmt).scalars().all())


def get_group_balances(group_id: int, session: Session) -> list[Balance]:
    """
    Cached balance rows for a group, largest balance first.

    Ties are ordered by user_id so the settlement plan built from this list
    is stable across calls.
    """
    stmt = (
        select(Balance)
        .where(Balance.group_id == group_id)
        .order_by(Balance.balance.desc(), Balance.user_id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _lock_group(group_id: int, session: Session) -> int | None:
    """
    Takes a row lock on the group for the rest of the transaction.

    Two transactions recomputing the same group serialize here; other groups
    are unaffected. The lock is FOR NO KEY UPDATE so that it does not conflict
    with the KEY SHARE lock that a concurrent ledger insert's foreign key check
    holds on the same row. On SQLite no lock clause is emitted and this is a plain
    existence check.
    """
    stmt = select(Group.id).where(Group.id == group_id).with_for_update(key_share=True)
    return session.execute(stmt).scalar_one_or_none()


def _user_names(user_ids: Iterable[int], session: Session) -> dict[int, str]:
    ids = list(user_ids)
    if not ids:
        return {}
    rows = session.execute(select(User.id, User.name).where(User.id.in_(ids))).all()
    return {uid: name for uid, name in rows}


# ── Core algorithms ────────────────────────────────────────────────────────

def compute_member_balance(
        user_id: int,
        member_count: int,
        expenses: Sequence,
        payments: Sequence,
) -> Decimal:
    """
    Net balance of one member, rounded once at the end.

    `expenses` need `amount` and `paid_by_user_id`; `payments` need `amount`,
    `paid_by_user_id` and `paid_to_user_id`. Model rows and SimpleNamespace
    objects both work.
    """
    group_total = sum((Decimal(e.amount) for e in expenses), Decimal("0"))
    paid_out = sum(
        (Decimal(e.amount) for e in expenses if e.paid_by_user_id == user_id),
        Decimal("0"),
    )
    received = sum(
        (Decimal(p.amount) for p in payments if p.paid_to_user_id == user_id),
        Decimal("0"),
    )
    sent = sum(
        (Decimal(p.amount) for p in payments if p.paid_by_user_id == user_id),
        Decimal("0"),
    )

    fair_share = group_total / member_count if member_count > 0 else Decimal("0")

    return round_cents(paid_out - fair_share + received - sent)


def compute_balances(
        member_ids: Sequence[int],
        expenses: Sequence,
        payments: Sequence,
) -> dict[int, Decimal]:
    """
    Returns {user_id: balance} for every member in `member_ids`.

    Members with no activity get 0.00. With no members the result is empty.
    """
    member_count = len(member_ids)
    return {
        user_id: compute_member_balance(user_id, member_count, expenses, payments)
        for user_id in member_ids
    }


def recompute_group_balances(group_id: int, session: Session) -> dict[int, Decimal]:
    """
    Recomputes and stores the balance of every current member of a group.

    Steps:
      1. Lock the group row (per-group serialization).
      2. Load members, expenses and payments.
      3. compute_balances().
      4. Upsert one Balance row per member; delete rows for former members.

    Idempotent: running it twice without a ledger change writes the same
    values. A group that does not exist is a no-op and returns {}.
    Storage errors propagate to the caller; nothing is retried here.
    """
    if _lock_group(group_id, session) is None:
        logger.debug("Recompute skipped: group %s does not exist", group_id)
        return {}

    member_ids = get_member_ids(group_id, session)
    balances = compute_balances(
        member_ids,
        get_expenses(group_id, session),
        get_payments(group_id, session),
    )

    existing = {row.user_id: row for row in get_group_balances(group_id, session)}

    for user_id, value in balances.items():
        row = existing.pop(user_id, None)
        if row is None:
            session.add(Balance(user_id=user_id, group_id=group_id, balance=value))
        elif row.balance != value:
            row.balance = value

    # Anything left belongs to users who are no longer members.
    for row in existing.values():
        session.delete(row)

    session.flush()

    logger.debug(
        "Recomputed balances for group %s across %d members",
        group_id,
        len(balances),
    )
    return balances


# ── Read models ────────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def _require_member(group_id: int, user_id: int, session: Session) -> None:
    """Raises FORBIDDEN (403) if user_id is not a member of group_id."""
    if user_id not in get_member_ids(group_id, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )


def get_balance_entries(group_id: int, session: Session) -> list[BalanceEntry]:
    """Cached balances as planner input, in the order get_group_balances() returns."""
    rows = get_group_balances(group_id, session)
    names = _user_names((row.user_id for row in rows), session)
    return [
        BalanceEntry(
            user_id=row.user_id,
            balance=round_cents(row.balance),
            name=names.get(row.user_id),
        )
        for row in rows
    ]


def _check_integrity(group_id: int, entries: Sequence[BalanceEntry]) -> Decimal:
    """
    Returns the balance sum, or raises BALANCE_INTEGRITY (500) when it is
    further from zero than cent rounding can explain.
    """
    balance_sum = sum((entry.balance for entry in entries), ZERO)
    if abs(balance_sum) > integrity_tolerance(len(entries)):
        logger.error(
            "Balance integrity check failed for group %s: sum=%s members=%d",
            group_id,
            balance_sum,
            len(entries),
        )
        raise AppError(
            ErrorCode.BALANCE_INTEGRITY,
            f"Balance integrity check failed: sum was {balance_sum} (expected 0.00). "
            f"Group {group_id} has inconsistent financial data.",
            500,
        )
    return balance_sum


def _entry_dict(entry: BalanceEntry) -> dict:
    return {
        "user_id": entry.user_id,
        "name": entry.name,
        "balance": entry.balance,
    }


def get_balance_summary(group_id: int, caller_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)    -- group does not exist.
        AppError(FORBIDDEN, 403)          -- caller not a group member.
        AppError(BALANCE_INTEGRITY, 500)  -- cached balances do not sum to zero.
    """
    group = _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    entries = get_balance_entries(group_id, session)
    balance_sum = _check_integrity(group_id, entries)
    settlements = compute_settlements(entries)

    expenses = get_expenses(group_id, session)
    payments = get_payments(group_id, session)

    return {
        "group_id": group.id,
        "group_name": group.name,
        "balances": [_entry_dict(entry) for entry in entries],
        "settlements": [s.to_dict() for s in settlements],
        "total_expenses": round_cents(sum((e.amount for e in expenses), ZERO)),
        "total_payments": round_cents(sum((p.amount for p in payments), ZERO)),
        "balance_sum": round_cents(balance_sum),
    }


def get_settlement_plan(group_id: int, caller_id: int, session: Session) -> dict:
    """Builds the payload for GET /groups/:id/settlements."""
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    entries = get_balance_entries(group_id, session)
    _check_integrity(group_id, entries)
    settlements = compute_settlements(entries)

    total_amount = sum((s.amount for s in settlements), ZERO)
    if settlements:
        message = f"{len(settlements)} payment(s) needed to settle all debts."
    else:
        message = "All balances are settled."

    return {
        "group_id": group_id,
        "settlements": [s.to_dict() for s in settlements],
        "summary": {
            "total_settlements": len(settlements),
            "total_amount": round_cents(total_amount),
            "message": message,
        },
    }


def get_member_balance(
        group_id: int,
        user_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    One member's cached balance plus a plain-language interpretation.

    Raises BALANCE_NOT_FOUND (404) when the user has no balance row in the
    group (not a member, or the group has never been recomputed).
    """
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    row = session.get(Balance, (user_id, group_id))
    if row is None:
        raise AppError(
            ErrorCode.BALANCE_NOT_FOUND,
            f"No balance found for user {user_id} in group {group_id}.",
            404,
        )

    value = round_cents(row.balance)
    if value > 0:
        status, message = "credit", f"Is owed {value} by the group."
    elif value < 0:
        status, message = "debt", f"Owes {-value} to the group."
    else:
        status, message = "settled", "All settled up."

    names = _user_names([user_id], session)
    return {
        "group_id": group_id,
        "user_id": user_id,
        "name": names.get(user_id),
        "balance": value,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        "interpretation": {"status": status, "message": message},
    }


def get_debtors(group_id: int, caller_id: int, session: Session) -> dict:
    """Members with a negative balance, most negative first."""
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    debtors = [e for e in get_balance_entries(group_id, session) if e.balance < 0]
    debtors.sort(key=lambda e: e.balance)
    return {
        "group_id": group_id,
        "debtors": [_entry_dict(e) for e in debtors],
        "total_debt": abs(sum((e.balance for e in debtors), ZERO)),
    }


def get_creditors(group_id: int, caller_id: int, session: Session) -> dict:
    """Members with a positive balance, largest first."""
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    creditors = [e for e in get_balance_entries(group_id, session) if e.balance > 0]
    return {
        "group_id": group_id,
        "creditors": [_entry_dict(e) for e in creditors],
        "total_credit": sum((e.balance for e in creditors), ZERO),
    }


def recalculate_for_member(group_id: int, caller_id: int, session: Session) -> dict:
    """Forced recompute requested by a group member. Returns fresh balances."""
    _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)

    balances = recompute_group_balances(group_id, session)
    names = _user_names(balances.keys(), session)
    ordered = sorted(balances.items(), key=lambda item: (-item[1], item[0]))
    return {
        "group_id": group_id,
        "balances": [
            {"user_id": uid, "name": names.get(uid), "balance": value}
            for uid, value in ordered
        ],
    }


def get_user_balances(user_id: int, session: Session) -> dict:
    """
    All cached balances of one user across their groups, largest magnitude
    first, plus a cross-group summary.
    """
    rows = session.execute(
        select(Balance, Group.name)
        .join(Group, Group.id == Balance.group_id)
        .where(Balance.user_id == user_id)
    ).all()

    items = [
        {
            "group_id": row.group_id,
            "group_name": group_name,
            "balance": round_cents(row.balance),
        }
        for row, group_name in rows
    ]
    items.sort(key=lambda item: (-abs(item["balance"]), item["group_id"]))

    total_credit = sum((i["balance"] for i in items if i["balance"] > 0), ZERO)
    total_debt = abs(sum((i["balance"] for i in items if i["balance"] < 0), ZERO))
    net = total_credit - total_debt

    if net > 0:
        status = "net_creditor"
    elif net < 0:
        status = "net_debtor"
    else:
        status = "settled"

    return {
        "balances": items,
        "summary": {
            "total_groups": len(items),
            "total_credit": total_credit,
            "total_debt": total_debt,
            "net_balance": net,
            "status": status,
        },
    }
