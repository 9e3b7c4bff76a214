"""
models/payment.py — Payment table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - CHECK(paid_by_user_id <> paid_to_user_id) is enforced at the DB level here
    AND in payment_service.py (SELF_PAYMENT, 422). The DB constraint is the
    last line of defense.
  - expense_id is optional and ON DELETE SET NULL: a payment may reference the
    expense it settles, and survives that expense being deleted.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "paid_by_user_id <> paid_to_user_id",
            name="ck_payments_no_self_payment",
        ),
        Index("idx_payments_group_date", "group_id", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    paid_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    paid_to_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    expense_id: Mapped[int | None] = mapped_column(
        ForeignKey("expenses.id", ondelete="SET NULL"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    date: Mapped[dt.date] = mapped_column(
        Date,
        nullable=False,
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="payments",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="payments_sent",
        foreign_keys=[paid_by_user_id],
    )

    payee: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="payments_received",
        foreign_keys=[paid_to_user_id],
    )

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="payments",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Payment id={self.id} "
            f"group_id={self.group_id} "
            f"from={self.paid_by_user_id} "
            f"to={self.paid_to_user_id} "
            f"amount={self.amount}>"
        )
