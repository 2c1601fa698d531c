"""
admin_router.py
────────────────────────────────────────────
Admin console and the public instructor access request.

Endpoints:
 • POST  /instructor-access-request            (public)
 • GET   /admin/instructor-requests  ?status=
 • PATCH /admin/instructor-requests/<id>
 • GET   /admin/users                ?role=
 • PATCH /admin/users/<id>
 • GET   /admin/stats
 • POST  /admin/seed-lesson-packs
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify, request
from sqlalchemy import text

from . import lesson_packs
from .auth import PROFILE_COLUMNS, current_profile, public, requires
from .db import get_session
from .settings import ROLES
from .utils import (
    clean_text, is_valid_email, json_body, new_id, normalize_email, now_iso,
    serialize_row, serialize_rows, str_or_none,
)
from .utils.error_handler import Conflict, NotFound, ValidationError

bp = Blueprint("admin_bp", __name__)
access_bp = Blueprint("access_request_bp", __name__)
log = logging.getLogger(__name__)

ACCESS_COLUMNS = "id, full_name, email, phone, message, status, reviewed_at, reviewed_by, admin_notes, created_at"
REVIEW_STATUSES = ("approved", "rejected")


# ── Instructor access requests ───────────────────────────────────────────────
@access_bp.route("", methods=["POST"])
@public
def request_instructor_access():
    data = json_body()
    full_name = str_or_none(data.get("full_name"))
    email = normalize_email(data.get("email"))
    if not full_name or not email:
        raise ValidationError("Name and email are required")
    if not is_valid_email(email):
        raise ValidationError("Please enter a valid email address")

    fields = {
        "full_name": clean_text(full_name),
        "phone": str_or_none(data.get("phone")),
        "message": str_or_none(data.get("message")),
    }
    with get_session() as s:
        existing = s.execute(
            text("SELECT id, status FROM instructor_access_requests WHERE email = :em"), {"em": email}
        ).mappings().first()

        if existing and existing["status"] == "pending":
            raise Conflict("A request with this email is already pending review")
        if existing and existing["status"] == "approved":
            raise Conflict("This email has already been approved. Please sign up or log in.")

        if existing:
            request_id = existing["id"]
            s.execute(
                text("""
                    UPDATE instructor_access_requests
                    SET full_name = :full_name, phone = :phone, message = :message, status = 'pending',
                        reviewed_at = NULL, reviewed_by = NULL, admin_notes = NULL, created_at = :ts
                    WHERE id = :id
                """),
                {**fields, "ts": now_iso(), "id": request_id},
            )
            log.info(f"[access] rejected request {request_id} resubmitted")
        else:
            request_id = new_id()
            s.execute(
                text("""
                    INSERT INTO instructor_access_requests (id, full_name, email, phone, message, status, created_at)
                    VALUES (:id, :full_name, :email, :phone, :message, 'pending', :ts)
                """),
                {**fields, "id": request_id, "email": email, "ts": now_iso()},
            )
            log.info(f"📥 Instructor access request {request_id}")

        row = s.execute(
            text(f"SELECT {ACCESS_COLUMNS} FROM instructor_access_requests WHERE id = :id"), {"id": request_id}
        ).mappings().first()
    return jsonify({"ok": True, "request": serialize_row(row)}), 201


@bp.route("/instructor-requests", methods=["GET"])
@requires("admin")
def list_access_requests():
    status = request.args.get("status")
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {ACCESS_COLUMNS} FROM instructor_access_requests
                {"WHERE status = :status" if status else ""}
                ORDER BY created_at DESC
            """),
            {"status": status} if status else {},
        ).mappings().all()
        return jsonify({"ok": True, "requests": serialize_rows(rows)})


@bp.route("/instructor-requests/<request_id>", methods=["PATCH"])
@requires("admin")
def review_access_request(request_id):
    data = json_body()
    status = data.get("status")
    if status not in REVIEW_STATUSES:
        raise ValidationError("status must be approved or rejected")

    with get_session() as s:
        result = s.execute(
            text("""
                UPDATE instructor_access_requests
                SET status = :status, admin_notes = :notes, reviewed_at = :ts, reviewed_by = :by
                WHERE id = :id
            """),
            {
                "status": status,
                "notes": str_or_none(data.get("admin_notes")),
                "ts": now_iso(),
                "by": current_profile()["id"],
                "id": request_id,
            },
        )
        if result.rowcount == 0:
            raise NotFound("Request not found")
        row = s.execute(
            text(f"SELECT {ACCESS_COLUMNS} FROM instructor_access_requests WHERE id = :id"), {"id": request_id}
        ).mappings().first()
    log.info(f"[access] {request_id} → {status}")
    return jsonify({"ok": True, "request": serialize_row(row)})


# ── Users ────────────────────────────────────────────────────────────────────
@bp.route("/users", methods=["GET"])
@requires("admin")
def list_users():
    role = request.args.get("role")
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {PROFILE_COLUMNS} FROM profiles
                {"WHERE role = :role" if role else ""}
                ORDER BY created_at DESC
            """),
            {"role": role} if role else {},
        ).mappings().all()
        return jsonify({"ok": True, "users": serialize_rows(rows)})


@bp.route("/users/<profile_id>", methods=["PATCH"])
@requires("admin")
def update_user_role(profile_id):
    role = json_body().get("role")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    with get_session() as s:
        result = s.execute(
            text("UPDATE profiles SET role = :role, updated_at = :ts WHERE id = :id"),
            {"role": role, "ts": now_iso(), "id": profile_id},
        )
        if result.rowcount == 0:
            raise NotFound("User not found")
        row = s.execute(
            text(f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE id = :id"), {"id": profile_id}
        ).mappings().first()
    log.info(f"[admin] {profile_id} role → {role}")
    return jsonify({"ok": True, "user": serialize_row(row)})


# ── Stats & maintenance ──────────────────────────────────────────────────────
@bp.route("/stats", methods=["GET"])
@requires("admin")
def stats():
    with get_session() as s:
        by_role = dict(s.execute(text("SELECT role, COUNT(*) FROM profiles GROUP BY role")).all())

        def count(sql, **params):
            return int(s.execute(text(sql), params).scalar() or 0)

        out = {
            "profiles_by_role": {role: int(by_role.get(role, 0)) for role in ROLES},
            "students": count("SELECT COUNT(*) FROM students WHERE is_active = :a", a=True),
            "upcoming_classes": count(
                "SELECT COUNT(*) FROM classes WHERE start_time >= :now AND is_cancelled = :c",
                now=now_iso(), c=False,
            ),
            "pending_payments": count("SELECT COUNT(*) FROM payments WHERE payment_status = 'pending'"),
            "open_inquiries": count("SELECT COUNT(*) FROM studio_inquiries WHERE status <> 'closed'"),
            "pending_access_requests": count(
                "SELECT COUNT(*) FROM instructor_access_requests WHERE status = 'pending'"
            ),
        }
    return jsonify({"ok": True, "stats": out})


@bp.route("/seed-lesson-packs", methods=["POST"])
@requires("admin")
def seed_lesson_packs():
    created = lesson_packs.seed_default_packs()
    return jsonify({
        "ok": True,
        "created_count": len(created),
        "packs": lesson_packs.list_packs(active_only=False),
    })
