"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/auth_service.py: DUPLICATE_EMAIL check
    (cross-entity: requires a DB lookup — not a schema concern).

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def validate_password_strength(value: str) -> None:
    """Min 8 chars, at least one letter and one digit."""
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if not any(c.isalpha() for c in value):
        raise ValidationError("Password must contain at least one letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")


class RegisterSchema(Schema):
    """
    POST /auth/register

    Field rules:
      name     : 1–100 chars, not blank
      email    : valid email format, max 255 chars
      password : min 8 chars, at least one letter and one digit

    Email uniqueness is enforced in auth_service.py, not here, because it
    requires a DB query.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # marshmallow's Email field applies RFC-5322-compatible validation.
    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = fields.Str(required=True, load_only=True)

    @validates("password")
    def validate_password(self, value: str, **kwargs) -> None:
        validate_password_strength(value)


class LoginSchema(Schema):
    """
    POST /auth/login

    Accepts email + password. Credential correctness is checked in
    auth_service.py (INVALID_CREDENTIALS, 401).
    """

    email = fields.Str(required=True)
    password = fields.Str(required=True, load_only=True)
