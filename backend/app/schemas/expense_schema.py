"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, decimal precision and range
      - Description 3–500 chars, non-empty after trim
      - Expense date within one year either side of today (DATE_OUT_OF_RANGE)
  - services/expense_service.py:
      - PAYER_NOT_MEMBER (422) — requires DB membership lookup
      - Edit permission (FORBIDDEN, 403) — requires DB record lookup

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from backend.app.errors import ErrorCode
from backend.app.models.expense import MAX_AMOUNT


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Input with more than 2 decimal places is REJECTED with
# INVALID_AMOUNT_PRECISION — never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Validates a monetary Decimal value:
      - Must be strictly greater than zero.
      - Must not exceed MAX_AMOUNT.
      - Must have at most 2 decimal places.

    The error handler detects INVALID_AMOUNT_PRECISION by matching the
    raised ValidationError message to the known ErrorCode constant.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value > MAX_AMOUNT:
        raise ValidationError(f"Amount must not exceed {MAX_AMOUNT}.")

    # Decimal.as_tuple().exponent gives the scale as a negative integer:
    #   Decimal("10.123").as_tuple().exponent == -3  → 3 dp → REJECT
    #   Decimal("10.12").as_tuple().exponent  == -2  → 2 dp → accept
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_expense_date(value: date) -> None:
    today = date.today()
    if not (today - timedelta(days=365) <= value <= today + timedelta(days=365)):
        raise ValidationError(ErrorCode.DATE_OUT_OF_RANGE)


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_description_validators = [
    validate.Length(
        min=3,
        max=500,
        error="Description must be between 3 and 500 characters.",
    ),
    _validate_non_empty_after_trim,
]


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    The expense is split equally among all current members of the group;
    there is no split input.

    paid_by_user_id is optional and defaults to the caller (applied in
    expense_service.py, which also checks membership).
    """

    paid_by_user_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(required=True, validate=_description_validators)

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    # ISO-8601 date; defaults to today.
    date = fields.Date(
        load_default=date.today,
        validate=_validate_expense_date,
    )


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """PATCH /expenses/:id — every field optional, at least one required."""

    paid_by_user_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )
    description = fields.Str(validate=_description_validators)
    amount = fields.Decimal(validate=_validate_monetary_amount)
    date = fields.Date(validate=_validate_expense_date)

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError(
                "Provide at least one of: description, amount, date, paid_by_user_id."
            )
