"""
services/settlement_service.py — Settlement planning (debt simplification).

Turns a list of signed member balances into the smallest practical set of
directed payoff instructions {from, to, amount}. Plans are computed on demand
and never persisted; recorded money transfers live in payment_service.py.

Layer rules:
  - No Flask imports. No SQLAlchemy imports. No session.
  - Inputs are never mutated; every call works on its own snapshot.
  - Deterministic: the same input list always yields the same plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Anything at or below one cent is treated as already settled.
SETTLEMENT_THRESHOLD = CENT


@dataclass(frozen=True)
class BalanceEntry:
    user_id: int
    balance: Decimal
    name: str | None = None


@dataclass(frozen=True)
class Settlement:
    from_user_id: int
    to_user_id: int
    amount: Decimal
    from_name: str | None = None
    to_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "from_user_id": self.from_user_id,
            "from_name": self.from_name,
            "to_user_id": self.to_user_id,
            "to_name": self.to_name,
            "amount": self.amount,
        }


def _round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ── Public service functions ───────────────────────────────────────────────

def compute_settlements(balances: Sequence[BalanceEntry]) -> list[Settlement]:
    """
    Greedy debt simplification.

    Creditors (balance > 0) are matched largest first; debtors (balance < 0)
    are matched most negative first. Both sorts are stable, so parties with
    equal balances keep their input order. Each step transfers
    min(debt, credit) from the current debtor to the current creditor and
    advances past whichever side has less than a cent left (both, on a tie).

    For n members with non-zero balances the plan has at most n - 1 entries,
    and no entry ever has from_user_id == to_user_id.

    If one side runs out first (the input did not sum to zero), the leftover
    is logged and dropped. Whether that is an error is the caller's call;
    see validate_group_balances() and integrity_tolerance().

    Returns:
        List of Settlement. An empty list means everyone is already settled.
    """
    creditors = sorted(
        (entry for entry in balances if entry.balance > 0),
        key=lambda entry: entry.balance,
        reverse=True,
    )
    debtors = sorted(
        (entry for entry in balances if entry.balance < 0),
        key=lambda entry: entry.balance,
    )

    # Working amounts, indexed like the snapshots above.
    credit_left = [entry.balance for entry in creditors]
    debt_left = [-entry.balance for entry in debtors]

    plan: list[Settlement] = []
    i = j = 0

    while i < len(creditors) and j < len(debtors):
        creditor = creditors[i]
        debtor = debtors[j]

        amount = min(debt_left[j], credit_left[i])

        if amount > SETTLEMENT_THRESHOLD:
            plan.append(Settlement(
                from_user_id=debtor.user_id,
                to_user_id=creditor.user_id,
                amount=_round_cents(amount),
                from_name=debtor.name,
                to_name=creditor.name,
            ))

        debt_left[j] -= amount
        credit_left[i] -= amount

        if debt_left[j] < SETTLEMENT_THRESHOLD:
            j += 1
        if credit_left[i] < SETTLEMENT_THRESHOLD:
            i += 1

    _log_leftover("credit", creditors[i:], credit_left[i:])
    _log_leftover("debt", debtors[j:], debt_left[j:])

    return plan


def validate_group_balances(
        balances: Iterable[BalanceEntry],
        tolerance: Decimal = CENT,
) -> bool:
    """
    True when the balances sum to zero within `tolerance`.

    The bound is inclusive: splitting 100.00 three ways rounds to
    66.67 / -33.33 / -33.33, which sums to exactly one cent and is a valid
    ledger.
    """
    total = sum((entry.balance for entry in balances), Decimal("0"))
    return abs(total) <= tolerance


def integrity_tolerance(member_count: int) -> Decimal:
    """
    Largest non-zero balance sum that per-member cent rounding can explain.

    Every member balance is rounded once, so each can drift by at most half
    a cent. Anything beyond that is treated as corrupt ledger data.
    """
    return max(CENT, Decimal("0.005") * member_count)


# ── Private helpers ────────────────────────────────────────────────────────

def _log_leftover(
        side: str,
        entries: Sequence[BalanceEntry],
        remaining: Sequence[Decimal],
) -> None:
    leftover = sum(remaining, Decimal("0"))
    if leftover <= 0:
        return

    if leftover > SETTLEMENT_THRESHOLD:
        logger.warning(
            "Settlement plan left %s unmatched %s across users %s",
            _round_cents(leftover),
            side,
            [entry.user_id for entry in entries],
        )
    else:
        logger.debug("Settlement plan dropped rounding residue of %s", leftover)
