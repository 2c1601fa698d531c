"""
instructor_router.py
────────────────────────────────────────────
Instructor workspace: private lesson requests, schedule,
payment requests and reminders.

Endpoints (instructor):
 • GET  /instructor/requests
 • PUT  /instructor/requests
 • GET  /instructor/schedule               ?start_date=&end_date=
 • POST /instructor/payment-requests       → bill a student or studio
 • POST /instructor/send-payment-reminder  → email pending payers of a class
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify, request
from sqlalchemy import text

from .auth import current_profile, is_admin, requires
from .classes_router import CLASS_COLUMNS, ENROLLED_COUNT
from .db import get_session
from .payments_router import insert_payment, validate_amount_and_method
from .settings import LESSON_REQUEST_STATUSES, PAYMENT_RECIPIENT_TYPES
from .utils import (
    is_valid_email, json_body, new_id, normalize_email, now_iso,
    safe_execute, serialize_row, serialize_rows, str_or_none, to_iso,
)
from .utils import gmail_client
from .utils.error_handler import Forbidden, NotFound, ValidationError

bp = Blueprint("instructor_bp", __name__)
log = logging.getLogger(__name__)


@bp.route("/requests", methods=["GET"])
@requires("instructor")
def list_requests():
    with get_session() as s:
        rows = s.execute(
            text("""
                SELECT r.id, r.student_id, r.instructor_id, r.requested_focus, r.preferred_dates,
                       r.additional_notes, r.status, r.instructor_response, r.scheduled_class_id,
                       r.created_at, r.updated_at,
                       st.full_name AS student_name, st.email AS student_email,
                       st.skill_level AS student_skill_level
                FROM private_lesson_requests r
                JOIN students st ON st.id = r.student_id
                ORDER BY r.created_at DESC
            """)
        ).mappings().all()

    requests_out = []
    for r in serialize_rows(rows):
        r["student"] = {
            "id": r["student_id"],
            "full_name": r.pop("student_name"),
            "email": r.pop("student_email"),
            "skill_level": r.pop("student_skill_level"),
        }
        requests_out.append(r)
    return jsonify({"ok": True, "requests": requests_out})


@bp.route("/requests", methods=["PUT"])
@requires("instructor")
def update_request():
    data = json_body()
    request_id = str_or_none(data.get("id"))
    status = data.get("status")
    if not request_id or not status:
        raise ValidationError("id and status are required")
    if status not in LESSON_REQUEST_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(LESSON_REQUEST_STATUSES)}")

    updates = {"status": status, "updated_at": now_iso()}
    if "scheduled_class_id" in data:
        updates["scheduled_class_id"] = str_or_none(data["scheduled_class_id"])
    if "instructor_response" in data:
        updates["instructor_response"] = str_or_none(data["instructor_response"])

    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with get_session() as s:
        result = s.execute(
            text(f"UPDATE private_lesson_requests SET {assignments} WHERE id = :id"),
            {**updates, "id": request_id},
        )
        if result.rowcount == 0:
            raise NotFound("Lesson request not found")
        row = s.execute(
            text("""
                SELECT id, student_id, instructor_id, requested_focus, preferred_dates, additional_notes,
                       status, instructor_response, scheduled_class_id, created_at, updated_at
                FROM private_lesson_requests WHERE id = :id
            """),
            {"id": request_id},
        ).mappings().first()
    log.info(f"[requests] {request_id} → {status}")
    return jsonify({"ok": True, "request": serialize_row(row)})


# ── Schedule ─────────────────────────────────────────────────────────────────
@bp.route("/schedule", methods=["GET"])
@requires("instructor")
def schedule():
    profile = current_profile()
    clauses, params = [], {}
    if not is_admin(profile):
        clauses.append("c.instructor_id = :iid")
        params["iid"] = profile["id"]
    for arg, op in (("start_date", ">="), ("end_date", "<=")):
        if request.args.get(arg):
            bound = to_iso(request.args[arg])
            if bound is None:
                raise ValidationError(f"{arg} must be an ISO date")
            clauses.append(f"c.start_time {op} :{arg}")
            params[arg] = bound

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {CLASS_COLUMNS}, {ENROLLED_COUNT},
                       sd.name AS studio_name, sd.address AS studio_address
                FROM classes c
                LEFT JOIN studios sd ON sd.id = c.studio_id
                {where}
                ORDER BY c.start_time ASC
            """),
            params,
        ).mappings().all()

    classes = serialize_rows(rows)
    for cls in classes:
        cls["enrolled_count"] = int(cls.get("enrolled_count") or 0)
    return jsonify({"ok": True, "classes": classes})


# ── Payment requests & reminders ─────────────────────────────────────────────
def _owned_student_id(s, profile, student_id):
    row = s.execute(
        text("SELECT id, instructor_id FROM students WHERE id = :id"), {"id": student_id}
    ).mappings().first()
    if not row:
        raise NotFound("Student not found")
    if not is_admin(profile) and row["instructor_id"] != profile["id"]:
        raise Forbidden("You can only request payments from your own students")
    return row["id"]


def _new_recipient(s, table, params):
    """Contact-only student or studio for someone without an account yet."""
    ts = now_iso()
    if table == "students":
        sql = """
            INSERT INTO students (id, instructor_id, full_name, email, is_active, created_at, updated_at)
            VALUES (:id, :owner, :name, :email, :active, :ts, :ts)
        """
    else:
        sql = """
            INSERT INTO studios (id, name, contact_email, is_active, created_at, updated_at)
            VALUES (:id, :name, :email, :active, :ts, :ts)
        """
    recipient_id = new_id()
    s.execute(text(sql), {**params, "id": recipient_id, "active": True, "ts": ts})
    log.info(f"[payment-requests] created contact-only {table[:-1]} {recipient_id}")
    return recipient_id


@bp.route("/payment-requests", methods=["POST"])
@requires("instructor")
def create_payment_request():
    """
    Bill a student or a studio. Recipients without a record get a
    contact-only one (name + email) that can be linked or merged later.
    """
    profile = current_profile()
    data = json_body()
    recipient_type = data.get("recipient_type")
    recipient_id = str_or_none(data.get("recipient_id"))
    recipient_name = str_or_none(data.get("recipient_name"))
    recipient_email = normalize_email(data.get("recipient_email")) or None

    if not recipient_id and not recipient_name:
        raise ValidationError("Please select or enter a recipient")
    if recipient_type not in PAYMENT_RECIPIENT_TYPES:
        raise ValidationError(f"recipient_type must be one of: {', '.join(PAYMENT_RECIPIENT_TYPES)}")
    if not data.get("payment_method"):
        raise ValidationError("payment_method is required")
    if recipient_email and not is_valid_email(recipient_email):
        raise ValidationError("Please enter a valid email address")
    amount, method = validate_amount_and_method(data)
    class_id = str_or_none(data.get("class_id"))

    with get_session() as s:
        if class_id:
            owner = s.execute(
                text("SELECT instructor_id FROM classes WHERE id = :id"), {"id": class_id}
            ).scalar()
            if owner is None:
                raise NotFound("Class not found")
            if not is_admin(profile) and owner != profile["id"]:
                raise Forbidden("You can only request payments for your own classes")

        student_id = studio_id = None
        contact = {"name": recipient_name, "email": recipient_email, "owner": profile["id"]}
        if recipient_type == "student":
            student_id = (
                _owned_student_id(s, profile, recipient_id) if recipient_id
                else _new_recipient(s, "students", contact)
            )
        elif recipient_id:
            if not s.execute(text("SELECT id FROM studios WHERE id = :id"), {"id": recipient_id}).first():
                raise NotFound("Studio not found")
            studio_id = recipient_id
        else:
            studio_id = _new_recipient(s, "studios", {"name": recipient_name, "email": recipient_email})

        label = recipient_name or recipient_id
        notes = str_or_none(data.get("notes")) or ""
        if recipient_type == "student":
            to = f"{label} ({recipient_email})" if recipient_email else label
            notes = f"Payment request to {to}\n{notes}"
        payment = insert_payment(
            s,
            student_id=student_id,
            amount=amount,
            method=method,
            class_id=class_id,
            studio_id=studio_id,
            notes=notes.strip() or None,
            requested_by=profile["id"],
        )

    log.info(f"💸 Payment request {payment['id']} → {recipient_type} {label}: {amount:.2f}")
    return jsonify({
        "ok": True,
        "payment_id": payment["id"],
        "payment": payment,
        "message": f"Payment request created for {label}",
    }), 201


def _reminder_html(name, amount, cls) -> str:
    return (
        f"<p>Hi {name or 'there'},</p>"
        f"<p>This is a friendly reminder that a payment of <b>${amount:.2f}</b> "
        f"for <b>{cls['title']}</b> is still outstanding.</p>"
        "<p>Thank you!</p>"
    )


@bp.route("/send-payment-reminder", methods=["POST"])
@requires("instructor")
def send_payment_reminder():
    """Email every student with a pending payment on one of the caller's classes."""
    profile = current_profile()
    class_id = str_or_none(json_body().get("class_id"))
    if not class_id:
        raise ValidationError("class_id is required")

    with get_session() as s:
        cls = s.execute(
            text("SELECT id, title, start_time, instructor_id FROM classes WHERE id = :id"), {"id": class_id}
        ).mappings().first()
        if not cls or (cls["instructor_id"] != profile["id"] and not is_admin(profile)):
            raise NotFound("Class not found or unauthorized")
        unpaid = s.execute(
            text("""
                SELECT p.id, p.amount, st.full_name, COALESCE(pr.email, st.email) AS email
                FROM payments p
                JOIN students st ON st.id = p.student_id
                LEFT JOIN profiles pr ON pr.id = st.profile_id
                WHERE p.class_id = :cid AND p.payment_status = 'pending'
            """),
            {"cid": class_id},
        ).mappings().all()

    if not unpaid:
        return jsonify({
            "ok": True,
            "message": "No unpaid payments to remind about",
            "reminders_count": 0,
            "sent_count": 0,
        })

    sent = 0
    for row in unpaid:
        if not row["email"]:
            log.warning(f"⚠️ No email on file for payment {row['id']}, skipping reminder")
            continue
        result = safe_execute(
            f"payment reminder {row['id']}",
            gmail_client.send_email,
            row["email"],
            f"Payment reminder: {cls['title']}",
            _reminder_html(row["full_name"], float(row["amount"] or 0), cls),
        )
        if result is not None:
            sent += 1

    log.info(f"📧 Payment reminders for class {class_id}: {sent}/{len(unpaid)} sent")
    return jsonify({
        "ok": True,
        "message": f"Reminder sent for {cls['title']}",
        "reminders_count": len(unpaid),
        "sent_count": sent,
    })
