"""
models/balance.py — cached per-member balance table.

One row per (user, group). Rows are written only by
balance_service.recompute_group_balances(); nothing else updates them.
Positive = the group owes this user, negative = this user owes the group.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db


class Balance(db.Model):
    __tablename__ = "balances"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        primary_key=True,
    )

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        primary_key=True,
        index=True,
    )

    # Signed, two decimal places.
    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default="0",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Balance user_id={self.user_id} "
            f"group_id={self.group_id} "
            f"balance={self.balance}>"
        )
