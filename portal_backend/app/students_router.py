"""
students_router.py
────────────────────────────────────────────
Instructor-side student management.

Endpoints (instructor):
 • GET    /students            ?is_active=&search=
 • POST   /students
 • GET    /students/<id>       (+ classes, recent notes, pack balance)
 • PATCH  /students/<id>
 • DELETE /students/<id>       → deactivate
 • POST   /students/<id>/link  → attach to a dancer account by email
 • POST   /students/<id>/merge → fold into a dancer-linked record
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify, request
from sqlalchemy import text

from .auth import current_profile, is_admin, requires
from .db import get_session
from .lesson_packs import total_remaining
from .utils import (
    is_valid_email, json_body, new_id, normalize_email, now_iso,
    serialize_row, serialize_rows, str_or_none,
)
from .utils.error_handler import Forbidden, NotFound, ValidationError

bp = Blueprint("students_bp", __name__)
log = logging.getLogger(__name__)

STUDENT_COLUMNS = """
    s.id, s.profile_id, s.guardian_id, s.instructor_id, s.full_name, s.email, s.phone,
    s.age_group, s.skill_level, s.goals, s.medical_notes,
    s.emergency_contact_name, s.emergency_contact_phone, s.is_active,
    s.created_at, s.updated_at
"""

EDITABLE_FIELDS = (
    "full_name", "email", "phone", "age_group", "skill_level", "goals", "medical_notes",
    "emergency_contact_name", "emergency_contact_phone", "guardian_id",
)


def _fetch_student(s, student_id: str):
    return s.execute(
        text(f"SELECT {STUDENT_COLUMNS} FROM students s WHERE s.id = :id"),
        {"id": student_id},
    ).mappings().first()


@bp.route("", methods=["GET"])
@requires("instructor")
def list_students():
    clauses, params = [], {}
    is_active = request.args.get("is_active")
    if is_active is not None:
        clauses.append("s.is_active = :active")
        params["active"] = is_active.lower() == "true"
    search = (request.args.get("search") or "").strip()
    if search:
        clauses.append("(LOWER(s.full_name) LIKE :q OR LOWER(s.email) LIKE :q)")
        params["q"] = f"%{search.lower()}%"

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_session() as s:
        rows = s.execute(
            text(f"SELECT {STUDENT_COLUMNS} FROM students s {where} ORDER BY s.created_at DESC"),
            params,
        ).mappings().all()
        return jsonify({"ok": True, "students": serialize_rows(rows)})


@bp.route("", methods=["POST"])
@requires("instructor")
def create_student():
    data = json_body()
    full_name = str_or_none(data.get("full_name"))
    if not full_name:
        raise ValidationError("full_name is required")
    email = normalize_email(data.get("email")) or None
    if email and not is_valid_email(email):
        raise ValidationError("Please enter a valid email address")

    ts = now_iso()
    student_id = new_id()
    params = {f: str_or_none(data.get(f)) for f in EDITABLE_FIELDS}
    params.update({
        "id": student_id,
        "full_name": full_name,
        "email": email,
        "profile_id": str_or_none(data.get("profile_id")),
        "instructor_id": current_profile()["id"],
        "is_active": True,
        "ts": ts,
    })
    with get_session() as s:
        s.execute(
            text("""
                INSERT INTO students (id, profile_id, guardian_id, instructor_id, full_name, email, phone,
                                      age_group, skill_level, goals, medical_notes,
                                      emergency_contact_name, emergency_contact_phone,
                                      is_active, created_at, updated_at)
                VALUES (:id, :profile_id, :guardian_id, :instructor_id, :full_name, :email, :phone,
                        :age_group, :skill_level, :goals, :medical_notes,
                        :emergency_contact_name, :emergency_contact_phone,
                        :is_active, :ts, :ts)
            """),
            params,
        )
        student = serialize_row(_fetch_student(s, student_id))
    log.info(f"✅ Student {student_id} created by {current_profile()['id']}")
    return jsonify({"ok": True, "student": student}), 201


@bp.route("/<student_id>", methods=["GET"])
@requires("instructor")
def get_student(student_id):
    with get_session() as s:
        student = _fetch_student(s, student_id)
        if not student:
            raise NotFound("Student not found")
        classes = s.execute(
            text("""
                SELECT c.id, c.title, c.class_type, c.start_time, c.end_time,
                       e.attendance_status, e.enrolled_at
                FROM enrollments e
                JOIN classes c ON c.id = e.class_id
                WHERE e.student_id = :sid
                ORDER BY c.start_time DESC
            """),
            {"sid": student_id},
        ).mappings().all()
        notes = s.execute(
            text("""
                SELECT id, title, content, visibility, created_at
                FROM notes WHERE student_id = :sid
                ORDER BY created_at DESC
                LIMIT 10
            """),
            {"sid": student_id},
        ).mappings().all()

    return jsonify({
        "ok": True,
        "student": serialize_row(student),
        "classes": serialize_rows(classes),
        "recent_notes": serialize_rows(notes),
        "lesson_pack_balance": total_remaining(student_id),
    })


@bp.route("/<student_id>", methods=["PATCH"])
@requires("instructor")
def update_student(student_id):
    data = json_body()
    updates = {f: str_or_none(data[f]) for f in EDITABLE_FIELDS if f in data}
    if "email" in updates and updates["email"]:
        updates["email"] = normalize_email(updates["email"])
        if not is_valid_email(updates["email"]):
            raise ValidationError("Please enter a valid email address")
    if "is_active" in data:
        updates["is_active"] = bool(data["is_active"])
    if not updates:
        raise ValidationError("No updatable fields provided")

    updates["updated_at"] = now_iso()
    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with get_session() as s:
        result = s.execute(
            text(f"UPDATE students SET {assignments} WHERE id = :id"),
            {**updates, "id": student_id},
        )
        if result.rowcount == 0:
            raise NotFound("Student not found")
        student = serialize_row(_fetch_student(s, student_id))
    return jsonify({"ok": True, "student": student})


@bp.route("/<student_id>", methods=["DELETE"])
@requires("instructor")
def deactivate_student(student_id):
    with get_session() as s:
        result = s.execute(
            text("UPDATE students SET is_active = :active, updated_at = :ts WHERE id = :id"),
            {"active": False, "ts": now_iso(), "id": student_id},
        )
        if result.rowcount == 0:
            raise NotFound("Student not found")
    log.info(f"[students] {student_id} deactivated")
    return jsonify({"ok": True})


# ── Linking to dancer accounts ───────────────────────────────────────────────
MERGE_FILL_FIELDS = (
    "age_group", "skill_level", "goals", "medical_notes",
    "emergency_contact_name", "emergency_contact_phone",
)

# tables whose rows follow a student through a merge
MERGE_TABLES = ("notes", "payments", "private_lesson_requests", "lesson_pack_purchases", "waivers")


def _managed_student(s, student_id: str, label: str = "Student"):
    row = _fetch_student(s, student_id)
    if not row:
        raise NotFound(f"{label} not found")
    profile = current_profile()
    if not is_admin(profile) and row["instructor_id"] != profile["id"]:
        raise Forbidden("You can only manage your own students")
    return row


@bp.route("/<student_id>/link", methods=["POST"])
@requires("instructor")
def link_student(student_id):
    """Attach an instructor-created student record to a dancer's account, found by email."""
    email = normalize_email(json_body().get("email"))
    if not email:
        raise ValidationError("email is required")

    with get_session() as s:
        _managed_student(s, student_id)
        dancer = s.execute(
            text("SELECT id, full_name FROM profiles WHERE email = :em AND role = 'dancer'"),
            {"em": email},
        ).mappings().first()
        if not dancer:
            raise NotFound("No dancer account found with that email. The dancer needs to sign up first.")
        taken = s.execute(
            text("SELECT id FROM students WHERE profile_id = :pid AND id != :id"),
            {"pid": dancer["id"], "id": student_id},
        ).first()
        if taken:
            raise ValidationError("This dancer account is already linked to another student record")

        s.execute(
            text("UPDATE students SET profile_id = :pid, updated_at = :ts WHERE id = :id"),
            {"pid": dancer["id"], "ts": now_iso(), "id": student_id},
        )
        student = serialize_row(_fetch_student(s, student_id))
    log.info(f"🔗 Student {student_id} linked to dancer {dancer['id']}")
    return jsonify({"ok": True, "student": student, "message": f"Linked to {dancer['full_name']}"})


@bp.route("/<student_id>/merge", methods=["POST"])
@requires("instructor")
def merge_student(student_id):
    """
    Fold an unlinked student record into a dancer-linked one.
    Every row that references the source moves to the target, empty
    profile fields on the target are filled from the source, and the
    source record is deleted.
    """
    target_id = str_or_none(json_body().get("target_student_id"))
    if not target_id:
        raise ValidationError("target_student_id is required")
    if target_id == student_id:
        raise ValidationError("Cannot merge a student with itself")

    with get_session() as s:
        source = _managed_student(s, student_id, "Source student")
        if source["profile_id"]:
            raise ValidationError("Source student is linked to a dancer account; merge into it instead")
        target = _fetch_student(s, target_id)
        if not target:
            raise NotFound("Target student not found")
        if not target["profile_id"]:
            raise ValidationError("Target student must be linked to a dancer account")

        params = {"src": student_id, "dst": target_id}
        # enrollments the target already holds would break uq_enrollment_once
        s.execute(
            text("""
                DELETE FROM enrollments
                WHERE student_id = :src
                  AND class_id IN (SELECT class_id FROM enrollments WHERE student_id = :dst)
            """),
            params,
        )
        transferred = {
            "enrollments": s.execute(
                text("UPDATE enrollments SET student_id = :dst WHERE student_id = :src"), params
            ).rowcount,
        }
        for table in MERGE_TABLES:
            transferred[table] = s.execute(
                text(f"UPDATE {table} SET student_id = :dst WHERE student_id = :src"), params
            ).rowcount

        fills = {f: source[f] for f in MERGE_FILL_FIELDS if source[f] and not target[f]}
        if not target["instructor_id"] and source["instructor_id"]:
            fills["instructor_id"] = source["instructor_id"]
        if fills:
            assignments = ", ".join(f"{k} = :{k}" for k in fills)
            s.execute(
                text(f"UPDATE students SET {assignments}, updated_at = :ts WHERE id = :id"),
                {**fills, "ts": now_iso(), "id": target_id},
            )

        s.execute(text("DELETE FROM students WHERE id = :id"), {"id": student_id})
        merged = serialize_row(_fetch_student(s, target_id))

    log.info(f"🔀 Student {student_id} merged into {target_id}: {transferred}")
    return jsonify({"ok": True, "merged_student": merged, "records_transferred": transferred})
