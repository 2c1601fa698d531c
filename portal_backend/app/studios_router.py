"""
studios_router.py
────────────────────────────────────────────
Studios that host classes.

Endpoints:
 • GET   /studios          (authenticated)
 • POST  /studios          (instructor)
 • GET   /studios/<id>     (authenticated)
 • PATCH /studios/<id>     (instructor)
 • GET   /studio/stats     (studio owner dashboard)
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify
from sqlalchemy import text

from .auth import current_profile, is_admin, requires
from .db import get_session
from .utils import is_valid_email, json_body, new_id, now_iso, serialize_row, serialize_rows, str_or_none
from .utils.error_handler import NotFound, ValidationError

bp = Blueprint("studios_bp", __name__)
dashboard_bp = Blueprint("studio_dashboard_bp", __name__)
log = logging.getLogger(__name__)

STUDIO_FIELDS = ("name", "address", "city", "state", "zip_code", "contact_email", "contact_phone", "notes", "owner_id")
STUDIO_COLUMNS = "id, owner_id, " + ", ".join(f for f in STUDIO_FIELDS if f != "owner_id") + ", is_active, created_at, updated_at"


def _fetch(s, studio_id):
    return s.execute(
        text(f"SELECT {STUDIO_COLUMNS} FROM studios WHERE id = :id"), {"id": studio_id}
    ).mappings().first()


def _check_email(value):
    if value and not is_valid_email(value):
        raise ValidationError("contact_email is not a valid email address")


@bp.route("", methods=["GET"])
def list_studios():
    with get_session() as s:
        rows = s.execute(
            text(f"SELECT {STUDIO_COLUMNS} FROM studios WHERE is_active = :active ORDER BY name"),
            {"active": True},
        ).mappings().all()
        return jsonify({"ok": True, "studios": serialize_rows(rows)})


@bp.route("", methods=["POST"])
@requires("instructor")
def create_studio():
    data = json_body()
    params = {f: str_or_none(data.get(f)) for f in STUDIO_FIELDS}
    if not params["name"]:
        raise ValidationError("Studio name is required")
    _check_email(params["contact_email"])

    studio_id = new_id()
    params.update({"id": studio_id, "active": True, "ts": now_iso()})
    with get_session() as s:
        s.execute(
            text("""
                INSERT INTO studios (id, owner_id, name, address, city, state, zip_code,
                                     contact_email, contact_phone, notes, is_active, created_at, updated_at)
                VALUES (:id, :owner_id, :name, :address, :city, :state, :zip_code,
                        :contact_email, :contact_phone, :notes, :active, :ts, :ts)
            """),
            params,
        )
        studio = serialize_row(_fetch(s, studio_id))
    log.info(f"✅ Studio {studio_id} created by {current_profile()['id']}")
    return jsonify({"ok": True, "studio": studio}), 201


@bp.route("/<studio_id>", methods=["GET"])
def get_studio(studio_id):
    with get_session() as s:
        row = _fetch(s, studio_id)
    if not row:
        raise NotFound("Studio not found")
    return jsonify({"ok": True, "studio": serialize_row(row)})


@bp.route("/<studio_id>", methods=["PATCH"])
@requires("instructor")
def update_studio(studio_id):
    data = json_body()
    updates = {f: str_or_none(data[f]) for f in STUDIO_FIELDS if f in data}
    if "is_active" in data:
        updates["is_active"] = bool(data["is_active"])
    if "name" in updates and not updates["name"]:
        raise ValidationError("Studio name cannot be empty")
    _check_email(updates.get("contact_email"))
    if not updates:
        raise ValidationError("No updatable fields provided")

    updates["updated_at"] = now_iso()
    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with get_session() as s:
        result = s.execute(text(f"UPDATE studios SET {assignments} WHERE id = :id"), {**updates, "id": studio_id})
        if result.rowcount == 0:
            raise NotFound("Studio not found")
        studio = serialize_row(_fetch(s, studio_id))
    return jsonify({"ok": True, "studio": studio})


# ── Studio owner dashboard ───────────────────────────────────────────────────
@dashboard_bp.route("/stats", methods=["GET"])
@requires("studio")
def studio_stats():
    """Counters for the studios the caller owns (every studio for admins)."""
    profile = current_profile()
    params = {"now": now_iso(), "cancelled": False}
    scope = payment_scope = ""
    if not is_admin(profile):
        owned = "IN (SELECT id FROM studios WHERE owner_id = :owner)"
        scope = f"AND c.studio_id {owned}"
        payment_scope = f"AND p.studio_id {owned}"
        params["owner"] = profile["id"]

    with get_session() as s:
        total_classes = s.execute(
            text(f"SELECT COUNT(*) FROM classes c WHERE c.studio_id IS NOT NULL {scope}"), params
        ).scalar()
        total_students = s.execute(
            text(f"""
                SELECT COUNT(DISTINCT e.student_id)
                FROM enrollments e
                JOIN classes c ON c.id = e.class_id
                WHERE c.studio_id IS NOT NULL {scope}
            """),
            params,
        ).scalar()
        pending_payments = s.execute(
            text(f"""
                SELECT COUNT(*) FROM payments p
                WHERE p.payment_status = 'pending' AND p.studio_id IS NOT NULL
                {payment_scope}
            """),
            params,
        ).scalar()
        upcoming = s.execute(
            text(f"""
                SELECT c.id, c.title, c.class_type, c.start_time, c.end_time, c.studio_id,
                       sd.name AS studio_name, p.full_name AS instructor_name
                FROM classes c
                JOIN studios sd ON sd.id = c.studio_id
                LEFT JOIN profiles p ON p.id = c.instructor_id
                WHERE c.start_time >= :now AND c.is_cancelled = :cancelled {scope}
                ORDER BY c.start_time ASC
            """),
            params,
        ).mappings().all()

    return jsonify({
        "ok": True,
        "stats": {
            "total_classes": int(total_classes or 0),
            "total_students": int(total_students or 0),
            "upcoming_classes": len(upcoming),
            "pending_payments": int(pending_payments or 0),
        },
        "upcoming_classes": serialize_rows(upcoming[:10]),
    })
