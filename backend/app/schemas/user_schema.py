"""
schemas/user_schema.py — Marshmallow schema for PATCH /users/me.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates,
    validates_schema,
)

from backend.app.schemas.auth_schema import validate_password_strength


class UpdateUserSchema(Schema):
    """All fields optional, but at least one must be present."""

    name = fields.Str(
        validate=validate.Length(
            min=1,
            max=100,
            error="Name must be between 1 and 100 characters.",
        ),
    )
    email = fields.Email(validate=validate.Length(max=255))
    password = fields.Str(load_only=True)

    @validates("name")
    def validate_name(self, value: str, **kwargs) -> None:
        if not value.strip():
            raise ValidationError("Name must not be blank.")

    @validates("password")
    def validate_password(self, value: str, **kwargs) -> None:
        validate_password_strength(value)

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError("Provide at least one of: name, email, password.")
