"""
ledger/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Alembic tooling without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError / ValidationError /
     SQLAlchemyError → JSON envelope, anything else → 500)
  6. Register a custom JSON provider to serialise Decimal as string
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Response schemas already stringify money; this catches any Decimal that
# reaches jsonify() some other way.

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

    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # Import here (not at module top) to avoid circular imports.
    from backend.ledger.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # Import all models so that SQLAlchemy's MetaData is populated.
    # Imported for the side effect of registering the tables.
    with app.app_context():
        from backend.ledger.models import (  # noqa: F401
            expense,
            expense_split,
            group,
            membership,
            settlement,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)

    return app


def _configure_logging(app: Flask) -> None:
    """Applies LOG_LEVEL to the app logger and the ledger service loggers."""
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)

    ledger_logger = logging.getLogger("backend.ledger")
    ledger_logger.setLevel(level)
    if not ledger_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        ledger_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under /api/v1/groups.

    Every resource in this service is group-scoped, so each blueprint only
    declares the path relative to the group (e.g. "/<int:group_id>/balances").
    """
    from backend.ledger.routes.balances import balances_bp
    from backend.ledger.routes.expenses import expenses_bp
    from backend.ledger.routes.settlements import settlements_bp

    app.register_blueprint(balances_bp,    url_prefix="/api/v1/groups")
    app.register_blueprint(expenses_bp,    url_prefix="/api/v1/groups")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1/groups")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with its HTTP status
      ValidationError → first marshmallow field error as a 400 envelope
      SQLAlchemyError → STORAGE_ERROR (503) after rolling the session back
      Exception       → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from backend.ledger.errors import AppError, ErrorCode, storage_error
    from backend.ledger.extensions import db

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError — they let it propagate here."""
        if error.http_status >= 500:
            app.logger.error("%r", error, exc_info=error.__cause__ is not None)
            db.session.rollback()
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST error is returned. If its message is one of our
        registered codes, it becomes the response code; otherwise the code is
        MISSING_FIELD or INVALID_FIELD.
        """
        field, raw_message = _first_validation_message(error.messages)
        known_codes = vars(ErrorCode).values()

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field
        return jsonify(response_body), 400

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(error: SQLAlchemyError):
        """A failed commit (or any unwrapped driver error) is a storage failure."""
        app.logger.error(
            "Storage failure: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        db.session.rollback()
        app_error = storage_error("complete the request")
        return jsonify(app_error.to_dict()), app_error.http_status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """Logs the traceback; the client only sees INTERNAL_ERROR."""
        if isinstance(error, HTTPException):
            # 404 for unknown routes, 400 for unparseable JSON, etc.
            return error
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


def _first_validation_message(messages) -> tuple[str | None, str]:
    """
    Walks a marshmallow messages structure down to the first leaf.

    Returns (top-level field name or None, message). Nested errors such as
    {"splits": {0: {"amount": ["INVALID_AMOUNT"]}}} report field "splits".
    """
    field = None
    node = messages
    while True:
        if isinstance(node, dict) and node:
            key, node = next(iter(node.items()))
            if field is None and isinstance(key, str) and key != "_schema":
                field = key
        elif isinstance(node, list) and node:
            node = node[0]
        else:
            break
    if isinstance(node, (dict, list)) or node is None:
        return field, "Invalid input."
    return field, str(node)


def _code_to_message(code: str) -> str:
    """Human-readable default message for a code raised as a ValidationError message."""
    _messages = {
        "INVALID_AMOUNT": "Amount must be a positive number with at most 2 decimal places.",
        "INVALID_STATUS": "status must be 'pending' or 'settled'.",
        "SPLIT_INPUT_CONFLICT": "Send exactly one of split_user_ids or splits.",
        "DUPLICATE_SPLIT_USER": "The same user_id appears more than once in the split.",
    }
    return _messages.get(code, "Invalid input.")
