"""
dancer_router.py
────────────────────────────────────────────
Dancer (and guardian) self-service.

Endpoints (dancer):
 • GET  /dancer/classes
 • GET  /dancer/public-classes
 • POST /dancer/enroll
 • GET  /dancer/lesson-packs
 • POST /dancer/lesson-packs/purchase
 • POST /dancer/lesson-packs/spend
 • GET  /dancer/lesson-packs/history
 • GET  /dancer/lesson-requests
 • POST /dancer/lesson-requests
 • GET  /dancer/payments
 • GET  /dancer/stats
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify
from sqlalchemy import text

from . import lesson_packs
from .auth import current_profile, current_student, requires
from .classes_router import CLASS_COLUMNS, ENROLLED_COUNT, enroll_student
from .db import get_session
from .utils import (
    dump_list, json_body, new_id, now_iso, parse_ts, serialize_row, serialize_rows, str_or_none,
)
from .utils.error_handler import Forbidden, NotFound, ValidationError

bp = Blueprint("dancer_bp", __name__)
log = logging.getLogger(__name__)


# ── Classes ──────────────────────────────────────────────────────────────────
@bp.route("/classes", methods=["GET"])
@requires("dancer")
def my_classes():
    student = current_student()
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {CLASS_COLUMNS}, e.enrolled_at, e.attendance_status
                FROM enrollments e
                JOIN classes c ON c.id = e.class_id
                WHERE e.student_id = :sid
                ORDER BY c.start_time ASC
            """),
            {"sid": student["id"]},
        ).mappings().all()
        return jsonify({"ok": True, "classes": serialize_rows(rows)})


@bp.route("/public-classes", methods=["GET"])
@requires("dancer")
def public_classes():
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {CLASS_COLUMNS}, {ENROLLED_COUNT}
                FROM classes c
                WHERE c.is_public = :public AND c.is_cancelled = :cancelled AND c.start_time >= :now
                ORDER BY c.start_time ASC
            """),
            {"public": True, "cancelled": False, "now": now_iso()},
        ).mappings().all()

    classes = []
    for cls in serialize_rows(rows):
        enrolled = int(cls.get("enrolled_count") or 0)
        cls["enrolled_count"] = enrolled
        cls["spots_left"] = max(0, cls["max_capacity"] - enrolled) if cls.get("max_capacity") else None
        classes.append(cls)
    return jsonify({"ok": True, "classes": classes})


@bp.route("/enroll", methods=["POST"])
@requires("dancer")
def enroll():
    class_id = str_or_none(json_body().get("class_id"))
    if not class_id:
        raise ValidationError("class_id is required")
    student = current_student()

    with get_session() as s:
        cls = s.execute(
            text(f"SELECT {CLASS_COLUMNS}, {ENROLLED_COUNT} FROM classes c WHERE c.id = :id"),
            {"id": class_id},
        ).mappings().first()
        if not cls:
            raise NotFound("Class not found")
        if not cls["is_public"]:
            raise Forbidden("This class is not open for self-enrollment")
        if cls["is_cancelled"]:
            raise ValidationError("This class has been cancelled")
        start = parse_ts(cls["start_time"])
        if start is None or start < parse_ts(now_iso()):
            raise ValidationError("This class has already started")
        joined = s.execute(
            text("SELECT id FROM enrollments WHERE class_id = :cid AND student_id = :sid"),
            {"cid": class_id, "sid": student["id"]},
        ).first()
        if joined:
            raise ValidationError("You are already enrolled in this class")
        enrollment = enroll_student(s, cls, student["id"])

    log.info(f"✅ Dancer {student['id']} self-enrolled in {class_id}")
    return jsonify({"ok": True, "enrollment": enrollment}), 201


# ── Lesson packs ─────────────────────────────────────────────────────────────
@bp.route("/lesson-packs", methods=["GET"])
@requires("dancer")
def lesson_pack_overview():
    student = current_student()
    return jsonify({
        "ok": True,
        "packs": lesson_packs.list_packs(active_only=True),
        "purchases": lesson_packs.list_purchases(student["id"]),
    })


@bp.route("/lesson-packs/purchase", methods=["POST"])
@requires("dancer")
def purchase():
    data = json_body()
    pack_id = str_or_none(data.get("lesson_pack_id"))
    if not pack_id:
        raise ValidationError("lesson_pack_id is required")
    student = current_student()
    purchase = lesson_packs.purchase_pack(
        student["id"], pack_id,
        instructor_id=str_or_none(data.get("instructor_id")) or student.get("instructor_id"),
    )
    return jsonify({"ok": True, "purchase": purchase}), 201


@bp.route("/lesson-packs/spend", methods=["POST"])
@requires("dancer")
def spend():
    data = json_body()
    purchase_id = str_or_none(data.get("lesson_pack_purchase_id"))
    if not purchase_id:
        raise ValidationError("lesson_pack_purchase_id is required")
    student = current_student()
    result = lesson_packs.spend_lesson(
        purchase_id, student["id"], str_or_none(data.get("private_lesson_request_id"))
    )
    return jsonify({"ok": True, **result})


@bp.route("/lesson-packs/history", methods=["GET"])
@requires("dancer")
def history():
    student = current_student()
    return jsonify({"ok": True, **lesson_packs.purchase_history(student["id"])})


# ── Private lesson requests ──────────────────────────────────────────────────
REQUEST_COLUMNS = """
    id, student_id, instructor_id, requested_focus, preferred_dates, additional_notes,
    status, instructor_response, scheduled_class_id, created_at, updated_at
"""


@bp.route("/lesson-requests", methods=["GET"])
@requires("dancer")
def my_lesson_requests():
    student = current_student()
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {REQUEST_COLUMNS} FROM private_lesson_requests
                WHERE student_id = :sid ORDER BY created_at DESC
            """),
            {"sid": student["id"]},
        ).mappings().all()
        return jsonify({"ok": True, "requests": serialize_rows(rows)})


@bp.route("/lesson-requests", methods=["POST"])
@requires("dancer")
def create_lesson_request():
    data = json_body()
    focus = str_or_none(data.get("requested_focus"))
    if not focus:
        raise ValidationError("requested_focus is required")
    dates = data.get("preferred_dates")
    if dates is not None and not isinstance(dates, (list, str)):
        raise ValidationError("preferred_dates must be a list")

    student = current_student()
    request_id = new_id()
    ts = now_iso()
    with get_session() as s:
        s.execute(
            text("""
                INSERT INTO private_lesson_requests
                    (id, student_id, instructor_id, requested_focus, preferred_dates,
                     additional_notes, status, created_at, updated_at)
                VALUES (:id, :sid, :iid, :focus, :dates, :notes, 'pending', :ts, :ts)
            """),
            {
                "id": request_id,
                "sid": student["id"],
                "iid": str_or_none(data.get("instructor_id")) or student.get("instructor_id"),
                "focus": focus,
                "dates": dump_list(dates),
                "notes": str_or_none(data.get("additional_notes")),
                "ts": ts,
            },
        )
        row = s.execute(
            text(f"SELECT {REQUEST_COLUMNS} FROM private_lesson_requests WHERE id = :id"),
            {"id": request_id},
        ).mappings().first()
    log.info(f"📤 Lesson request {request_id} from student {student['id']}")
    return jsonify({"ok": True, "request": serialize_row(row)}), 201


# ── Payments ─────────────────────────────────────────────────────────────────
@bp.route("/payments", methods=["GET"])
@requires("dancer")
def my_payments():
    student = current_student()
    with get_session() as s:
        rows = s.execute(
            text("""
                SELECT p.id, p.class_id, p.amount, p.payment_method, p.payment_status,
                       p.transaction_date, p.notes, p.receipt_url, c.title AS class_title
                FROM payments p
                LEFT JOIN classes c ON c.id = p.class_id
                WHERE p.student_id = :sid
                ORDER BY p.transaction_date DESC
            """),
            {"sid": student["id"]},
        ).mappings().all()

    payments = serialize_rows(rows)
    total_paid = sum(float(p["amount"] or 0) for p in payments if p["payment_status"] == "confirmed")
    total_pending = sum(float(p["amount"] or 0) for p in payments if p["payment_status"] == "pending")
    return jsonify({
        "ok": True,
        "payments": payments,
        "totals": {"paid": round(total_paid, 2), "pending": round(total_pending, 2)},
    })


# ── Dashboard ────────────────────────────────────────────────────────────────
@bp.route("/stats", methods=["GET"])
@requires("dancer")
def my_stats():
    """Dashboard counters plus the next few classes and the latest shared notes."""
    profile = current_profile()
    student = current_student()
    params = {"sid": student["id"], "now": now_iso(), "pid": profile["id"], "cancelled": False}
    with get_session() as s:
        upcoming = s.execute(
            text(f"""
                SELECT {CLASS_COLUMNS}
                FROM enrollments e
                JOIN classes c ON c.id = e.class_id
                WHERE e.student_id = :sid AND c.start_time >= :now AND c.is_cancelled = :cancelled
                ORDER BY c.start_time ASC
            """),
            params,
        ).mappings().all()
        attended = s.execute(
            text("""
                SELECT COUNT(*) FROM enrollments e
                JOIN classes c ON c.id = e.class_id
                WHERE e.student_id = :sid AND c.start_time < :now AND c.is_cancelled = :cancelled
            """),
            params,
        ).scalar()
        notes = s.execute(
            text("""
                SELECT n.id, n.title, n.content, n.visibility, n.created_at, p.full_name AS author_name
                FROM notes n
                LEFT JOIN profiles p ON p.id = n.author_id
                WHERE n.student_id = :sid AND n.visibility <> 'private' AND n.author_id <> :pid
                ORDER BY n.created_at DESC
            """),
            params,
        ).mappings().all()

    return jsonify({
        "ok": True,
        "stats": {
            "upcoming_classes": len(upcoming),
            "total_classes_attended": int(attended or 0),
            "recent_notes": len(notes),
        },
        "upcoming_classes": serialize_rows(upcoming[:5]),
        "recent_notes": serialize_rows(notes[:3]),
    })
