"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    role values.
  - services/group_service.py:
      - FORBIDDEN (membership / admin checks)
      - USER_NOT_FOUND, ALREADY_MEMBER, GROUP_NOT_FOUND (require DB lookups)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from backend.app.errors import ErrorCode
from backend.app.models.membership import MemberRole


# validate.Length(min=1) alone allows whitespace-only strings like "   ".
# This validator strips first, mirroring CHECK(LENGTH(TRIM(name)) > 0).
def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_name_field_validators = [
    validate.Length(
        min=1,
        max=100,
        error="Group name must be between 1 and 100 characters.",
    ),
    _validate_non_empty_after_trim,
]


class CreateGroupSchema(Schema):
    """POST /groups"""

    name = fields.Str(required=True, validate=_name_field_validators)

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=1000),
    )


class UpdateGroupSchema(Schema):
    """PATCH /groups/:id — name and/or description."""

    name = fields.Str(validate=_name_field_validators)
    description = fields.Str(allow_none=True, validate=validate.Length(max=1000))

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError("Provide at least one of: name, description.")


class AddMemberSchema(Schema):
    """
    POST /groups/:id/members

    Whether the user exists is a DB concern (USER_NOT_FOUND, 404) — checked
    in group_service.py.
    """

    user_id = fields.Int(
        required=True,
        strict=True,  # reject floats like 1.0 — integers only
        validate=validate.Range(
            min=1,
            error="user_id must be a positive integer.",
        ),
    )

    role = fields.Enum(
        MemberRole,
        by_value=True,
        load_default=MemberRole.MEMBER,
        error_messages={"unknown": ErrorCode.INVALID_ROLE},
    )
