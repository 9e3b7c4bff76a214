"""
tests/unit/test_balance_calculator.py — Unit tests for the balance formula
and recompute_group_balances().

What this file proves:
  - paid_out - fair_share + received - sent, rounded once, half away from zero
  - Every member gets an entry (0.00 when inactive); no members → {}
  - Balances of a closed ledger sum to zero within cent rounding
  - recompute_group_balances() upserts one row per member, drops rows of
    former members, flushes, and is a no-op for a missing group
  - The group row is locked (FOR NO KEY UPDATE on PostgreSQL) before any
    member, expense or payment read

The compute_* functions take plain sequences, so SimpleNamespace rows stand
in for ORM objects. recompute_group_balances() runs against a MagicMock
session with the data access helpers patched.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from backend.app.models.balance import Balance
from backend.app.services import balance_service
from backend.app.services.balance_service import (
    compute_balances,
    compute_member_balance,
    round_cents,
)

SERVICE = "backend.app.services.balance_service"


def _expense(amount: str, paid_by: int) -> SimpleNamespace:
    return SimpleNamespace(amount=Decimal(amount), paid_by_user_id=paid_by)


def _payment(amount: str, paid_by: int, paid_to: int) -> SimpleNamespace:
    return SimpleNamespace(
        amount=Decimal(amount),
        paid_by_user_id=paid_by,
        paid_to_user_id=paid_to,
    )


# ═══════════════════════════════════════════════════════════════════════════
# round_cents
# ═══════════════════════════════════════════════════════════════════════════

class TestRoundCents:

    @pytest.mark.parametrize("raw,expected", [
        ("2.345", "2.35"),
        ("-2.345", "-2.35"),
        ("2.344", "2.34"),
        ("33.333333", "33.33"),
        ("-66.666666", "-66.67"),
        ("10", "10.00"),
    ])
    def test_half_away_from_zero(self, raw, expected):
        assert round_cents(Decimal(raw)) == Decimal(expected)


# ═══════════════════════════════════════════════════════════════════════════
# compute_member_balance / compute_balances
# ═══════════════════════════════════════════════════════════════════════════

class TestComputeBalances:

    def test_two_members_one_expense(self):
        result = compute_balances([1, 2], [_expense("100.00", 1)], [])

        assert result == {1: Decimal("50.00"), 2: Decimal("-50.00")}

    def test_three_members_two_payers(self):
        expenses = [_expense("90.00", 1), _expense("30.00", 2)]

        result = compute_balances([1, 2, 3], expenses, [])

        assert result == {
            1: Decimal("50.00"),
            2: Decimal("-10.00"),
            3: Decimal("-40.00"),
        }

    def test_payment_received_raises_balance_and_sent_lowers_it(self):
        # A paid 100 for A and B; B has already sent A 20.
        payments = [_payment("20.00", paid_by=2, paid_to=1)]

        result = compute_balances([1, 2], [_expense("100.00", 1)], payments)

        assert result == {1: Decimal("70.00"), 2: Decimal("-70.00")}

    def test_members_without_activity_are_zero(self):
        result = compute_balances([1, 2, 3], [], [])

        assert result == {1: Decimal("0.00"), 2: Decimal("0.00"), 3: Decimal("0.00")}

    def test_no_members_gives_empty_result(self):
        assert compute_balances([], [_expense("10.00", 1)], []) == {}

    def test_fair_share_is_rounded_once_per_member(self):
        result = compute_balances([1, 2, 3], [_expense("100.00", 1)], [])

        assert result == {
            1: Decimal("66.67"),
            2: Decimal("-33.33"),
            3: Decimal("-33.33"),
        }
        assert abs(sum(result.values())) <= Decimal("0.015")

    def test_former_member_payer_still_counts_in_fair_share(self):
        # User 9 paid but is no longer a member: the expense is still shared
        # among the current members, none of whom gets the paid_out credit.
        result = compute_balances([1, 2], [_expense("40.00", 9)], [])

        assert result == {1: Decimal("-20.00"), 2: Decimal("-20.00")}

    def test_member_balance_with_zero_members_ignores_fair_share(self):
        value = compute_member_balance(1, 0, [_expense("10.00", 1)], [])

        assert value == Decimal("10.00")

    def test_results_are_decimal(self):
        result = compute_balances([1, 2], [_expense("10.00", 1)], [])

        assert all(isinstance(v, Decimal) for v in result.values())

    def test_input_order_does_not_change_result(self):
        expenses = [_expense("12.34", 1), _expense("56.78", 2), _expense("9.10", 3)]
        payments = [_payment("5.00", 3, 1), _payment("7.50", 2, 3)]

        forward = compute_balances([1, 2, 3], expenses, payments)
        backward = compute_balances([3, 2, 1], expenses[::-1], payments[::-1])

        assert forward == backward


# ═══════════════════════════════════════════════════════════════════════════
# recompute_group_balances
# ═══════════════════════════════════════════════════════════════════════════

class TestRecomputeGroupBalances:

    def _patch_reads(self, member_ids, expenses, payments, existing):
        return (
            patch(f"{SERVICE}._lock_group", return_value=1),
            patch(f"{SERVICE}.get_member_ids", return_value=member_ids),
            patch(f"{SERVICE}.get_expenses", return_value=expenses),
            patch(f"{SERVICE}.get_payments", return_value=payments),
            patch(f"{SERVICE}.get_group_balances", return_value=existing),
        )

    def test_missing_group_is_a_noop(self):
        session = MagicMock()

        with patch(f"{SERVICE}._lock_group", return_value=None), \
                patch(f"{SERVICE}.get_member_ids") as get_member_ids:
            result = balance_service.recompute_group_balances(99, session)

        assert result == {}
        get_member_ids.assert_not_called()
        session.add.assert_not_called()
        session.flush.assert_not_called()

    def test_inserts_missing_rows_and_updates_existing(self):
        session = MagicMock()
        row_a = SimpleNamespace(user_id=1, balance=Decimal("0.00"))
        patches = self._patch_reads([1, 2], [_expense("100.00", 1)], [], [row_a])

        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            result = balance_service.recompute_group_balances(5, session)

        assert result == {1: Decimal("50.00"), 2: Decimal("-50.00")}
        assert row_a.balance == Decimal("50.00")

        added = session.add.call_args.args[0]
        assert isinstance(added, Balance)
        assert (added.user_id, added.group_id, added.balance) == (2, 5, Decimal("-50.00"))
        session.flush.assert_called_once()

    def test_rows_of_former_members_are_deleted(self):
        session = MagicMock()
        row_a = SimpleNamespace(user_id=1, balance=Decimal("0.00"))
        stale = SimpleNamespace(user_id=3, balance=Decimal("12.00"))
        patches = self._patch_reads([1], [], [], [row_a, stale])

        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            balance_service.recompute_group_balances(5, session)

        session.delete.assert_called_once_with(stale)
        session.add.assert_not_called()

    def test_second_run_changes_nothing(self):
        session = MagicMock()
        row_a = SimpleNamespace(user_id=1, balance=Decimal("50.00"))
        row_b = SimpleNamespace(user_id=2, balance=Decimal("-50.00"))
        patches = self._patch_reads([1, 2], [_expense("100.00", 1)], [], [row_a, row_b])

        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            balance_service.recompute_group_balances(5, session)

        assert row_a.balance == Decimal("50.00")
        assert row_b.balance == Decimal("-50.00")
        session.add.assert_not_called()
        session.delete.assert_not_called()

    def test_storage_errors_propagate(self):
        session = MagicMock()
        session.flush.side_effect = RuntimeError("disk full")
        patches = self._patch_reads([1], [], [], [])

        with patches[0], patches[1], patches[2], patches[3], patches[4]:
            with pytest.raises(RuntimeError, match="disk full"):
                balance_service.recompute_group_balances(5, session)


class TestGroupLock:
    """
    recompute_group_balances() runs against a MagicMock session with nothing
    patched; the statements it executes are compiled per dialect.
    """

    def _executed_sql(self, dialect) -> list[str]:
        session = MagicMock()
        result = session.execute.return_value
        result.scalar_one_or_none.return_value = 5
        result.scalars.return_value.all.return_value = []

        balance_service.recompute_group_balances(5, session)

        return [
            str(c.args[0].compile(dialect=dialect)).lower()
            for c in session.execute.call_args_list
        ]

    def test_group_row_is_locked_before_any_ledger_read(self):
        statements = self._executed_sql(postgresql.dialect())

        assert "from groups" in statements[0]
        assert statements[0].endswith("for no key update")
        for table in ("memberships", "expenses", "payments"):
            first_read = next(i for i, sql in enumerate(statements) if f"from {table}" in sql)
            assert first_read > 0

    def test_lock_is_emitted_once(self):
        statements = self._executed_sql(postgresql.dialect())

        assert sum("for no key update" in sql for sql in statements) == 1
        assert not any(sql.endswith("for update") for sql in statements)

    def test_sqlite_gets_a_plain_select(self):
        statements = self._executed_sql(sqlite.dialect())

        assert "from groups" in statements[0]
        assert "for " not in statements[0].split("where")[-1]
