"""
auth.py – Session gate & capability checks
────────────────────────────────────────────────────────────
Every request passes through `enforce_capability` (installed as
a before_request hook by create_app). Views declare what they
need with @requires("instructor") or @public. Several capabilities
mean any of them: @requires("dancer", "instructor"). Undeclared
views need any signed-in profile. Admin satisfies every capability.

Capabilities:
 • public         → no session
 • authenticated  → any profile
 • instructor     → instructor | admin
 • dancer         → dancer | guardian | admin
 • studio         → studio | admin
 • admin          → admin
────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import current_app, g, request
from sqlalchemy import text
from werkzeug.security import check_password_hash, generate_password_hash

from .db import get_session
from .settings import MIN_PASSWORD_LENGTH, ROLE_GROUPS, SIGNUP_ROLES
from .tokens import generate_session_token, verify_session_token
from .utils import is_valid_email, new_id, normalize_email, now_iso, serialize_row, str_or_none
from .utils.error_handler import Conflict, Forbidden, NotFound, Unauthorized, ValidationError

log = logging.getLogger(__name__)

PUBLIC = "public"
AUTHENTICATED = "authenticated"
CAPABILITY_ATTR = "_required_capability"

PROFILE_COLUMNS = """
    id, email, full_name, phone, role, avatar_url, date_of_birth,
    guardian_id, consent_given, bio, created_at, updated_at
"""


# ─────────────────────────────────────────────────────────────
# Privilege helpers
# ─────────────────────────────────────────────────────────────
def has_capability(profile: Optional[Dict[str, Any]], capability: str) -> bool:
    if capability == PUBLIC:
        return True
    if not profile:
        return False
    if capability == AUTHENTICATED:
        return True
    return profile.get("role") in ROLE_GROUPS.get(capability, set())


def has_instructor_privileges(profile) -> bool:
    return has_capability(profile, "instructor")


def has_dancer_privileges(profile) -> bool:
    return has_capability(profile, "dancer")


def has_studio_privileges(profile) -> bool:
    return has_capability(profile, "studio")


def is_admin(profile) -> bool:
    return bool(profile) and profile.get("role") == "admin"


# ─────────────────────────────────────────────────────────────
# View decorators
# ─────────────────────────────────────────────────────────────
def requires(*capabilities: str):
    """
    Tag a view with the capabilities the gate checks. Any one of them
    is enough: @requires("instructor", "studio").
    """
    if not capabilities:
        raise ValueError("requires() needs at least one capability")
    for capability in capabilities:
        if capability not in (PUBLIC, AUTHENTICATED) and capability not in ROLE_GROUPS:
            raise ValueError(f"Unknown capability: {capability}")

    def deco(view):
        setattr(view, CAPABILITY_ATTR, tuple(capabilities))
        return view

    return deco


def public(view):
    return requires(PUBLIC)(view)


def required_capabilities(view) -> Tuple[str, ...]:
    return getattr(view, CAPABILITY_ATTR, (AUTHENTICATED,))


def has_any_capability(profile, capabilities) -> bool:
    return any(has_capability(profile, c) for c in capabilities)


# ─────────────────────────────────────────────────────────────
# Profile lookup
# ─────────────────────────────────────────────────────────────
def get_profile(profile_id: str) -> Optional[Dict[str, Any]]:
    with get_session() as s:
        row = s.execute(
            text(f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE id = :id"),
            {"id": profile_id},
        ).mappings().first()
        return serialize_row(row)


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""


def load_current_profile() -> Optional[Dict[str, Any]]:
    token = _bearer_token()
    if not token:
        return None
    uid = verify_session_token(token)
    if not uid:
        return None
    return get_profile(uid)


def enforce_capability():
    """before_request hook: resolve the session and check the view's capability."""
    g.profile = None
    view = current_app.view_functions.get(request.endpoint) if request.endpoint else None
    if view is None:
        return None  # unknown route → Flask's 404
    capabilities = required_capabilities(view)
    if PUBLIC in capabilities:
        g.profile = load_current_profile() if _bearer_token() else None
        return None

    profile = load_current_profile()
    if not profile:
        raise Unauthorized("Unauthorized")
    g.profile = profile
    if not has_any_capability(profile, capabilities):
        needed = " or ".join(capabilities)
        log.info(f"[auth] {profile['role']} denied {request.endpoint} (needs {needed})")
        raise Forbidden(f"Forbidden: requires {needed} privileges")
    return None


def current_profile() -> Dict[str, Any]:
    profile = getattr(g, "profile", None)
    if not profile:
        raise Unauthorized()
    return profile


def current_student() -> Dict[str, Any]:
    """Student record linked to the signed-in dancer."""
    profile = current_profile()
    with get_session() as s:
        row = s.execute(
            text("""
                SELECT id, profile_id, full_name, email, instructor_id
                FROM students
                WHERE profile_id = :pid
                ORDER BY created_at
                LIMIT 1
            """),
            {"pid": profile["id"]},
        ).mappings().first()
    if not row:
        raise NotFound("Student record not found for this dancer")
    return serialize_row(row)


# ─────────────────────────────────────────────────────────────
# Sign-up / sign-in
# ─────────────────────────────────────────────────────────────
def register_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""
    full_name = str_or_none(data.get("full_name") or data.get("fullName"))
    role = (data.get("role") or "dancer").strip().lower()

    if not email or not is_valid_email(email):
        raise ValidationError("A valid email is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not full_name:
        raise ValidationError("Full name is required")
    if role not in SIGNUP_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(SIGNUP_ROLES)}")

    ts = now_iso()
    profile_id = new_id()
    with get_session() as s:
        exists = s.execute(
            text("SELECT id FROM profiles WHERE email = :em"), {"em": email}
        ).first()
        if exists:
            raise Conflict("An account with this email already exists")

        s.execute(
            text("""
                INSERT INTO profiles (id, email, password_hash, full_name, phone, role,
                                      date_of_birth, consent_given, created_at, updated_at)
                VALUES (:id, :em, :pw, :nm, :ph, :role, :dob, :consent, :ts, :ts)
            """),
            {
                "id": profile_id,
                "em": email,
                "pw": generate_password_hash(password),
                "nm": full_name,
                "ph": str_or_none(data.get("phone")),
                "role": role,
                "dob": str_or_none(data.get("date_of_birth")),
                "consent": bool(data.get("consent_given", False)),
                "ts": ts,
            },
        )
        if role == "dancer":
            s.execute(
                text("""
                    INSERT INTO students (id, profile_id, full_name, email, phone, is_active, created_at, updated_at)
                    VALUES (:id, :pid, :nm, :em, :ph, :active, :ts, :ts)
                """),
                {
                    "id": new_id(),
                    "pid": profile_id,
                    "nm": full_name,
                    "em": email,
                    "ph": str_or_none(data.get("phone")),
                    "active": True,
                    "ts": ts,
                },
            )

    log.info(f"✅ Registered {role} profile {profile_id}")
    profile = get_profile(profile_id)
    return {"profile": profile, "token": generate_session_token(profile_id)}


def authenticate(email: str, password: str) -> Dict[str, Any]:
    email = normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password are required")
    with get_session() as s:
        row = s.execute(
            text("SELECT id, password_hash FROM profiles WHERE email = :em"),
            {"em": email},
        ).mappings().first()
    if not row or not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        raise Unauthorized("Invalid email or password")
    return {"profile": get_profile(row["id"]), "token": generate_session_token(row["id"])}
