"""
errors.py — the single exception type of the Paym8 API and its code registry.

Services and routes raise AppError(code, message, http_status, field=None);
the handlers in app/__init__.py turn it into

    {"error": {"code": ..., "message": ..., "field": ...}}

with `field` present only when one request field is to blame.

Codes are part of the public contract: clients switch on them, so a code is
never renamed or reused. Messages are prose for humans and may change.
401 means the caller could not be identified; 403 means they were identified
and refused.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.field = field

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.field is not None:
            body["field"] = self.field
        return {"error": body}

    def __repr__(self) -> str:
        return f"AppError({self.code!r}, {self.http_status}, {self.message!r})"


# ── Code registry ──────────────────────────────────────────────────────────
# Grouped by the HTTP status each code is raised with.

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    DATE_OUT_OF_RANGE          = "DATE_OUT_OF_RANGE"
    INVALID_ROLE               = "INVALID_ROLE"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    MEMBER_HAS_LEDGER_ENTRIES  = "MEMBER_HAS_LEDGER_ENTRIES"
    USER_HAS_MEMBERSHIPS       = "USER_HAS_MEMBERSHIPS"
    LAST_ADMIN                 = "LAST_ADMIN"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    PAYMENT_NOT_FOUND          = "PAYMENT_NOT_FOUND"
    BALANCE_NOT_FOUND          = "BALANCE_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    PAYEE_NOT_MEMBER           = "PAYEE_NOT_MEMBER"
    SELF_PAYMENT               = "SELF_PAYMENT"
    EXPENSE_GROUP_MISMATCH     = "EXPENSE_GROUP_MISMATCH"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    # Cached balances of a group do not sum to zero: upstream data corruption.
    BALANCE_INTEGRITY          = "BALANCE_INTEGRITY"
    INTERNAL_ERROR             = "INTERNAL_ERROR"
