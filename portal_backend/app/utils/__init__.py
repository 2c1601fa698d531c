"""
utils – Dance Portal shared helpers
────────────────────────────────────────────────────────────
Row serialisation, id/timestamp helpers, request-body parsing
and small validators used by every blueprint.

Includes:
 • new_id(), now_iso(), to_iso(), parse_ts()
 • serialize_row() / serialize_rows() for JSON responses
 • json_body(), clean_text(), is_valid_email(), normalize_email()
 • safe_execute() wrapper for best-effort side effects
────────────────────────────────────────────────────────────
"""

import re
import json
import uuid
import logging
from datetime import datetime, date, timezone
from decimal import Decimal

from flask import request

from .error_handler import ValidationError

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Columns returned as 0/1 by SQLite; coerced back to bool on the way out
BOOLEAN_FIELDS = {
    "is_active", "is_cancelled", "is_public", "consent_given",
    "is_responded", "has_unread_reply",
}
# Columns stored as JSON text
JSON_FIELDS = {"tags", "preferred_dates"}
# Never leaves the server
PRIVATE_FIELDS = {"password_hash"}


# ─────────────────────────────────────────────────────────────
# Ids & timestamps
# ─────────────────────────────────────────────────────────────
def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_ts(value) -> datetime | None:
    """Parse an ISO string (or pass through a datetime). Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(value) -> str | None:
    """Normalise an incoming timestamp to the stored UTC ISO form."""
    dt = parse_ts(value)
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


# ─────────────────────────────────────────────────────────────
# Row serialisation
# ─────────────────────────────────────────────────────────────
def _jsonable(key: str, value):
    if value is None:
        return [] if key in JSON_FIELDS else None
    if key in BOOLEAN_FIELDS:
        return bool(value)
    if key in JSON_FIELDS and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return []
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def serialize_row(row) -> dict | None:
    if row is None:
        return None
    return {k: _jsonable(k, v) for k, v in dict(row).items() if k not in PRIVATE_FIELDS}


def serialize_rows(rows) -> list[dict]:
    return [serialize_row(r) for r in rows]


def dump_list(value) -> str | None:
    """Encode a list field for storage; None stays None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    return json.dumps(list(value))


# ─────────────────────────────────────────────────────────────
# Request helpers
# ─────────────────────────────────────────────────────────────
def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        if request.data:
            raise ValidationError("Invalid JSON")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def clean_text(t) -> str:
    """Strip and collapse whitespace runs."""
    return re.sub(r"\s{2,}", " ", str(t or "").strip())


def str_or_none(t) -> str | None:
    s = str(t).strip() if t is not None else ""
    return s or None


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


def is_valid_email(email) -> bool:
    return bool(EMAIL_RE.match(str(email or "").strip()))


def as_number(value, field: str, *, allow_none: bool = True) -> float | None:
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")


# ─────────────────────────────────────────────────────────────
# Safe execution wrapper
# ─────────────────────────────────────────────────────────────
def safe_execute(label, func, *args, **kwargs):
    """Run a best-effort side effect, logging errors instead of breaking the request."""
    try:
        return func(*args, **kwargs)
    except Exception as e:
        log.error(f"❌ {label} failed → {e}")
        return None
