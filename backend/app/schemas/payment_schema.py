"""
schemas/payment_schema.py — Marshmallow schemas for payment endpoints.

Validation responsibility:
  - This file: field types, decimal precision and range, description length,
    payment date between one year back and one month ahead.
  - services/payment_service.py:
      - SELF_PAYMENT (422)            — the payer comes from flask.g, which
                                        schemas never see
      - PAYEE_NOT_MEMBER (422)        — requires DB membership lookup
      - EXPENSE_GROUP_MISMATCH (422)  — requires DB record lookup

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
# Same rules as expense_schema.py. Defined here rather than imported so each
# schema file stays self-contained.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value > MAX_AMOUNT:
        raise ValidationError(f"Amount must not exceed {MAX_AMOUNT}.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_payment_date(value: date) -> None:
    """Payments may be back-dated up to a year, or scheduled up to a month ahead."""
    today = date.today()
    if not (today - timedelta(days=365) <= value <= today + timedelta(days=31)):
        raise ValidationError(ErrorCode.DATE_OUT_OF_RANGE)


class CreatePaymentSchema(Schema):
    """
    POST /groups/:id/payments

    The payer is the authenticated user (flask.g.user_id), never a body field.
    """

    paid_to_user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0 — integers only
        validate=validate.Range(
            min=1,
            error="paid_to_user_id must be a positive integer.",
        ),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500),
    )

    date = fields.Date(
        load_default=date.today,
        validate=_validate_payment_date,
    )

    # Optional link to the expense this payment covers (same group).
    expense_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error="expense_id must be a positive integer."),
    )


class PatchPaymentSchema(Schema):
    """PATCH /payments/:id — amount, description and/or date."""

    amount = fields.Decimal(validate=_validate_monetary_amount)
    description = fields.Str(allow_none=True, validate=validate.Length(max=500))
    date = fields.Date(validate=_validate_payment_date)

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError("Provide at least one of: amount, description, date.")
