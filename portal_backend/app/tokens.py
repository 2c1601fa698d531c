"""
tokens.py – Signed, Expiring Session Tokens
────────────────────────────────────────────
Issues and verifies the bearer tokens handed out at
sign-in / sign-up. A token only carries the profile id;
role and everything else is re-read from the database
on every request.
────────────────────────────────────────────
"""

import time
from flask import current_app
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

SALT = "dance-portal-session"


# ── Serializer setup ────────────────────────────────────────────────
def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=SALT)


# ── Generate session token ─────────────────────────────────────────
def generate_session_token(profile_id: str) -> str:
    """Return signed token encoding the profile id."""
    return _serializer().dumps({"uid": profile_id, "ts": int(time.time())})


# ── Verify session token ───────────────────────────────────────────
def verify_session_token(token: str, max_age: int | None = None) -> str | None:
    """
    Returns the profile id if the token is valid and not expired, else None.
    Default expiry = SESSION_MAX_AGE (7 days).
    """
    if not token:
        return None
    if max_age is None:
        max_age = current_app.config["SESSION_MAX_AGE"]
    try:
        data = _serializer().loads(token, max_age=max_age)
    except (SignatureExpired, BadSignature):
        return None
    if not isinstance(data, dict):
        return None
    return data.get("uid")
