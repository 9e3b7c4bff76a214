"""
routes/payments.py — Payment route handlers.

Registered at url_prefix=/api/v1 because this blueprint owns both the
group-scoped paths (/groups/:id/payments...) and /payments/:id.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

The payer of a new payment is the authenticated caller (g.user_id), never a
body field.

Endpoints:
  POST   /groups/:id/payments                      → 201
  GET    /groups/:id/payments                      → 200
  GET    /groups/:id/payments/between/:u1/:u2      → 200
  GET    /groups/:id/payments/summary/:uid         → 200
  GET    /payments/:id                             → 200
  PATCH  /payments/:id                             → 200
  DELETE /payments/:id                             → 200
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.payment import Payment
from backend.app.schemas.payment_schema import CreatePaymentSchema, PatchPaymentSchema
from backend.app.services import payment_service

payments_bp = Blueprint("payments", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_payment(p: Payment) -> dict:
    """Converts a Payment ORM object to a plain dict for JSON output."""
    return {
        "id": p.id,
        "group_id": p.group_id,
        "paid_by_user_id": p.paid_by_user_id,
        "paid_by_name": p.payer.name if p.payer else None,
        "paid_to_user_id": p.paid_to_user_id,
        "paid_to_name": p.payee.name if p.payee else None,
        "expense_id": p.expense_id,
        "amount": str(p.amount),  # Decimal → string (never a JS number)
        "description": p.description,
        "date": p.date.isoformat(),
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


# ── Group-scoped payment routes ────────────────────────────────────────────

@payments_bp.route("/groups/<int:group_id>/payments", methods=["POST"])
@require_auth
def create_payment(group_id: int):
    """POST /groups/:id/payments — Record money sent by the caller to another member."""
    data = CreatePaymentSchema().load(request.get_json(force=True) or {})
    payment = payment_service.create_payment(
        group_id=group_id,
        paid_by_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_payment(payment), "warnings": []}), 201


@payments_bp.route("/groups/<int:group_id>/payments", methods=["GET"])
@require_auth
def list_payments(group_id: int):
    payments = payment_service.list_payments(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_payment(p) for p in payments],
        "warnings": [],
    }), 200


@payments_bp.route(
    "/groups/<int:group_id>/payments/between/<int:user1_id>/<int:user2_id>",
    methods=["GET"],
)
@require_auth
def payments_between(group_id: int, user1_id: int, user2_id: int):
    result = payment_service.get_payments_between(
        group_id=group_id,
        user_a=user1_id,
        user_b=user2_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "payments": [_serialize_payment(p) for p in result["payments"]],
            "summary": result["summary"],
        },
        "warnings": [],
    }), 200


@payments_bp.route("/groups/<int:group_id>/payments/summary/<int:user_id>", methods=["GET"])
@require_auth
def payment_summary(group_id: int, user_id: int):
    result = payment_service.get_payment_summary(
        group_id=group_id,
        user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


# ── Payment-ID routes ──────────────────────────────────────────────────────

@payments_bp.route("/payments/<int:payment_id>", methods=["GET"])
@require_auth
def get_payment(payment_id: int):
    payment = payment_service.get_payment(
        payment_id=payment_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_payment(payment), "warnings": []}), 200


@payments_bp.route("/payments/<int:payment_id>", methods=["PATCH"])
@require_auth
def edit_payment(payment_id: int):
    """PATCH /payments/:id — Payer or group admin only."""
    data = PatchPaymentSchema().load(request.get_json(force=True) or {})
    payment = payment_service.edit_payment(
        payment_id=payment_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_payment(payment), "warnings": []}), 200


@payments_bp.route("/payments/<int:payment_id>", methods=["DELETE"])
@require_auth
def delete_payment(payment_id: int):
    payment_service.delete_payment(
        payment_id=payment_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "payment_id": payment_id,
        },
        "warnings": [],
    }), 200
