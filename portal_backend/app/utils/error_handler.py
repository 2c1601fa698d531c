# utils/error_handler.py
# Error taxonomy for the portal API plus the Flask handlers that turn it into
# the standard {"ok": false, "error": ...} envelope.
#
# Unauthorized → 401, Forbidden → 403, NotFound → 404, ValidationError → 400,
# Conflict → 409, ProviderError → 500, ServiceUnavailable → 503.
# Nothing here retries; callers simply re-issue the request.

import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base error carrying an HTTP status and a client-facing message."""

    status = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, status: int | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status is not None:
            self.status = status


class Unauthorized(ApiError):
    status = 401
    default_message = "Unauthorized"


class Forbidden(ApiError):
    status = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status = 404
    default_message = "Not found"


class ValidationError(ApiError):
    status = 400
    default_message = "Invalid request"


class Conflict(ApiError):
    status = 409
    default_message = "Conflict"


class ProviderError(ApiError):
    """An upstream provider (Stripe, Gmail, Places, OpenAI) failed."""
    status = 500
    default_message = "Upstream provider error"


class ServiceUnavailable(ApiError):
    """A provider is not configured on this deployment."""
    status = 503
    default_message = "Service not configured"


def error_response(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def register_error_handlers(app):
    """Install JSON error handlers on the Flask app."""

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        if e.status >= 500:
            logger.error(f"❌ {type(e).__name__}: {e.message}")
        else:
            logger.info(f"[api] {e.status} {type(e).__name__}: {e.message}")
        return error_response(e.message, e.status)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return error_response(e.description or e.name, e.code or 500)

    @app.errorhandler(SQLAlchemyError)
    def _db_error(e: SQLAlchemyError):
        logger.error(f"❌ Database error: {e}")
        return error_response("Database error", 500)

    @app.errorhandler(Exception)
    def _unexpected(e: Exception):
        logger.exception("Unhandled error")
        return error_response("Internal server error", 500)
