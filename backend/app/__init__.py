"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and Alembic can load metadata without a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500);
     every handler rolls back the session so a failed balance recompute
     never leaves a half-applied ledger write behind
  6. Register a custom JSON provider to serialise Decimal as string
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError

from backend.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# All monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Import all models so that SQLAlchemy's MetaData is populated before
    # db.create_all() or Alembic inspects it.
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            balance,
            expense,
            group,
            membership,
            payment,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.debug("Application created with %s config", config_name)
    return app


def _configure_logging(app: Flask) -> None:
    """
    Sets the level of the app logger and of the backend.* service loggers.

    Flask attaches a stderr handler to app.logger on first use; service
    modules log through logging.getLogger(__name__), so they get a handler
    of their own here unless the host application configured one.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)

    backend_logger = logging.getLogger("backend")
    backend_logger.setLevel(level)
    if not backend_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"
        ))
        backend_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource.
    """
    from backend.app.routes.auth import auth_bp
    from backend.app.routes.balances import balances_bp
    from backend.app.routes.expenses import expenses_bp
    from backend.app.routes.groups import groups_bp
    from backend.app.routes.payments import payments_bp
    from backend.app.routes.users import users_bp

    app.register_blueprint(auth_bp,     url_prefix="/api/v1/auth")
    app.register_blueprint(groups_bp,   url_prefix="/api/v1/groups")
    # expenses_bp and payments_bp own both group-scoped paths
    # (/groups/<id>/expenses) and id paths (/expenses/<id>).
    app.register_blueprint(expenses_bp, url_prefix="/api/v1")
    app.register_blueprint(payments_bp, url_prefix="/api/v1")
    app.register_blueprint(balances_bp, url_prefix="/api/v1/groups")
    app.register_blueprint(users_bp,    url_prefix="/api/v1/users")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD / registered-code responses (400)
      HTTPException   → Flask's own 404/405 etc. in the same envelope
      Exception       → generic INTERNAL_ERROR (500); traceback logged, never returned

    Routes commit only after the service call returns, so rolling back here
    discards the ledger write and the balance recompute together.
    """
    from werkzeug.exceptions import HTTPException

    from backend.app.errors import AppError, ErrorCode
    from backend.app.extensions import db

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError — they let it propagate here."""
        db.session.rollback()
        if error.http_status >= 500:
            app.logger.error("%r", error)
        else:
            app.logger.debug("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST error is returned ("one error, not many"). If its
        message is itself a registered ErrorCode (e.g. INVALID_AMOUNT_PRECISION
        raised from a schema validator), that code is used.
        """
        db.session.rollback()

        messages = error.messages  # e.g. {"amount": ["INVALID_AMOUNT_PRECISION"]}
        known_codes = set(vars(ErrorCode).values())

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                raw_message = _first_message(field_errors)
                break
        elif isinstance(messages, list) and messages:
            raw_message = str(messages[0])

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        db.session.rollback()
        code = ErrorCode.INVALID_FIELD if error.code == 400 else error.name.upper().replace(" ", "_")
        return jsonify({
            "error": {
                "code": code,
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        Stack traces NEVER leave the server in the response body.
        """
        db.session.rollback()
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _first_message(field_errors) -> str:
    """Digs the first message out of marshmallow's (possibly nested) error structure."""
    if isinstance(field_errors, list):
        return str(field_errors[0]) if field_errors else "Invalid value."
    if isinstance(field_errors, dict):
        for nested in field_errors.values():
            return _first_message(nested)
        return "Invalid value."
    return str(field_errors)


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself.
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "DATE_OUT_OF_RANGE": "The date is outside the allowed range.",
        "INVALID_ROLE": "role must be 'admin' or 'member'.",
    }
    return _messages.get(code, "Invalid input.")
