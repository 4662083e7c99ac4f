"""API errors and the small validators the route handlers share.

Every error raised by a handler carries a machine-readable ``code`` and an
HTTP ``status``; ``app.py`` turns them into ``{"error", "code"}`` bodies.
"""

import re

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ApiError(Exception):
    """Base exception for all API errors."""

    status = 400
    code = "BAD_REQUEST"

    def __init__(self, message, code=None, status=None):
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        super().__init__(message)

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class BadRequest(ApiError):
    status = 400


class Unauthorized(ApiError):
    status = 401
    code = "UNAUTHORIZED"


class Forbidden(ApiError):
    status = 403
    code = "FORBIDDEN"


class NotFound(ApiError):
    status = 404
    code = "NOT_FOUND"


class Conflict(ApiError):
    status = 409
    code = "CONFLICT"


class ServerError(ApiError):
    status = 500
    code = "INTERNAL_ERROR"


class GatewayError(ApiError):
    """Raised when an upstream provider call fails on a blocking path."""

    status = 502
    code = "GATEWAY_ERROR"


def require_fields(body, *names):
    missing = [n for n in names if body.get(n) in (None, "")]
    if missing:
        raise BadRequest(
            f"Missing required fields: {', '.join(missing)}",
            "MISSING_REQUIRED_FIELDS",
        )


def require_int(value, code="INVALID_ID", message="Valid ID is required"):
    """Parse an integer id from a query arg or JSON value."""
    if value is None or isinstance(value, bool):
        raise BadRequest(message, code)
    try:
        return int(str(value).strip())
    except ValueError:
        raise BadRequest(message, code)


def parse_quantity(value):
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        quantity = 0
    if isinstance(value, bool) or quantity < 1:
        raise BadRequest("Quantity must be a positive integer (minimum 1)", "INVALID_QUANTITY")
    return quantity


def page_args(args, default_limit=10):
    """limit/offset from the query string, limit capped at 100."""
    try:
        limit = min(int(args.get("limit", default_limit)), 100)
        offset = max(int(args.get("offset", 0)), 0)
    except ValueError:
        raise BadRequest("limit and offset must be integers", "INVALID_PAGINATION")
    return max(limit, 1), offset


def valid_email(value):
    return bool(value) and bool(EMAIL_REGEX.match(value.strip()))


def clean_str(value):
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return value.strip()
