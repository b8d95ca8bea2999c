"""
app/__init__.py: Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time - this enables:
           - Multiple isolated test app instances
           - `alembic` to import the metadata without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a JSON provider that serialises Decimal as string
     (receipt confidence is the only Decimal in responses; money is cents)
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from tabsplit.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────

class DecimalJSONProvider(DefaultJSONProvider):
    """Decimal("0.87") → "0.87" (not 0.87000000001)."""

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

    Returns:
        A fully configured Flask app ready to serve requests.
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
    from tabsplit.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Side-effect import: populates db.metadata for create_all and Alembic.
    with app.app_context():
        import tabsplit.app.models  # noqa: F401

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.debug("TabSplit app created with %s config", config_name)
    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the app logger and to the `tabsplit` package loggers.

    Service modules log through logging.getLogger(__name__); they propagate
    to the root handler, so only the level is set here.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)
    logging.getLogger("tabsplit").setLevel(level)

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource (e.g. "/" and "/<int:split_id>").
    """
    from tabsplit.app.routes.receipts import receipts_bp
    from tabsplit.app.routes.splits import splits_bp

    app.register_blueprint(splits_bp,   url_prefix="/api/v1/splits")
    app.register_blueprint(receipts_bp, url_prefix="/api/v1/receipts")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the error's HTTP status
      ValidationError → marshmallow schema errors as MISSING_FIELD /
                        INVALID_FIELD / registered-code responses (400)
      Exception       → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from tabsplit.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        into the standard error envelope. Routes never catch AppError.
        """
        if error.http_status >= 500:
            app.logger.error("%r on %s %s", error, request.method, request.path)
        else:
            app.logger.info("%s on %s %s: %s", error.code, request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST error is returned. If its message is a registered
        ErrorCode constant it becomes the response code; otherwise
        MISSING_FIELD or INVALID_FIELD is used.
        """
        known_codes = set(vars(ErrorCode).values())
        field, raw_message = _first_validation_message(error.messages)

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
    def handle_http_error(error: HTTPException):
        """Unknown route, wrong method, malformed JSON body."""
        if error.code == 400:
            code = ErrorCode.INVALID_FIELD
        else:
            code = error.name.upper().replace(" ", "_")  # "Not Found" → NOT_FOUND
        return jsonify({"error": {"code": code, "message": error.description}}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        The full traceback goes to the application logger only.
        """
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


def _first_validation_message(messages, path: str | None = None) -> tuple[str | None, str]:
    """
    Walks marshmallow's nested messages dict to the first leaf message.

    {"participants": {1: {"id": ["Missing data ..."]}}} → ("participants.1.id", "Missing data ...")
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            if key == "_schema":
                child = path
            else:
                child = f"{path}.{key}" if path else str(key)
            return _first_validation_message(value, child)
        return path, "Invalid input."

    if isinstance(messages, list):
        if not messages:
            return path, "Invalid value."
        return _first_validation_message(messages[0], path)

    return path, str(messages)


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself.
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_METHOD": "method must be one of 'equal', 'custom', 'percentage', 'receipt'.",
        "METHOD_INPUT_MISMATCH": (
            "Send percentages only with method 'percentage', amounts only with "
            "method 'custom', and receipt/claims only with method 'receipt'."
        ),
        "DUPLICATE_PARTICIPANT": "The same participant id appears more than once.",
        "NO_PARTICIPANTS": "A split needs at least one participant.",
    }
    return _messages.get(code, "Invalid input.")
