"""
inquiries_router.py
────────────────────────────────────────────
Studio inquiries and their Gmail conversation threads.

Endpoints:
 • POST  /studio-inquiries                             (public)
 • GET   /studio-inquiries   ?studio_id=&status=       (instructor)
 • PATCH /studio-inquiries/<id>                        (instructor)
 • POST  /admin/studio-inquiries/send-email            (admin)
 • POST  /admin/studio-inquiries/refresh-inbox         (admin)
 • GET   /admin/studio-inquiries/thread?inquiry_id=    (admin)
────────────────────────────────────────────
"""

import logging
from email.utils import parsedate_to_datetime

from flask import Blueprint, jsonify, request
from sqlalchemy import text

from .auth import requires, public
from .db import get_session
from .settings import INQUIRY_STATUSES
from .utils import (
    clean_text, is_valid_email, json_body, new_id, normalize_email, now_iso,
    safe_execute, serialize_row, serialize_rows, str_or_none, to_iso,
)
from .utils import gmail_client
from .utils.error_handler import NotFound, ValidationError

bp = Blueprint("inquiries_bp", __name__)
admin_bp = Blueprint("inquiries_admin_bp", __name__)
log = logging.getLogger(__name__)

INQUIRY_COLUMNS = """
    id, studio_id, studio_name, contact_name, contact_email, contact_phone, message,
    status, is_responded, responded_at, response_notes, contact_method,
    gmail_thread_id, last_email_message_id, email_count, last_email_date,
    has_unread_reply, created_at
"""


def _fetch(s, inquiry_id):
    return s.execute(
        text(f"SELECT {INQUIRY_COLUMNS} FROM studio_inquiries WHERE id = :id"), {"id": inquiry_id}
    ).mappings().first()


def _email_date(header: str) -> str:
    """RFC 2822 Date header → stored ISO form (now when unparseable)."""
    try:
        return to_iso(parsedate_to_datetime(header)) or now_iso()
    except (TypeError, ValueError):
        return now_iso()


# ── Inquiries ────────────────────────────────────────────────────────────────
@bp.route("", methods=["POST"])
@public
def submit_inquiry():
    data = json_body()
    fields = {f: str_or_none(data.get(f)) for f in ("studio_name", "contact_name", "contact_email", "message")}
    if not all(fields.values()):
        raise ValidationError("studio_name, contact_name, contact_email and message are required")
    email = normalize_email(fields["contact_email"])
    if not is_valid_email(email):
        raise ValidationError("Please enter a valid email address")

    inquiry_id = new_id()
    with get_session() as s:
        s.execute(
            text("""
                INSERT INTO studio_inquiries (id, studio_id, studio_name, contact_name, contact_email,
                                              contact_phone, message, status, is_responded,
                                              email_count, has_unread_reply, created_at)
                VALUES (:id, :studio, :sname, :cname, :email, :phone, :msg, 'new', :responded,
                        0, :unread, :ts)
            """),
            {
                "id": inquiry_id,
                "studio": str_or_none(data.get("studio_id")),
                "sname": clean_text(fields["studio_name"]),
                "cname": clean_text(fields["contact_name"]),
                "email": email,
                "phone": str_or_none(data.get("contact_phone")),
                "msg": fields["message"],
                "responded": False,
                "unread": False,
                "ts": now_iso(),
            },
        )
        inquiry = serialize_row(_fetch(s, inquiry_id))
    log.info(f"📥 Studio inquiry {inquiry_id} from {fields['studio_name']}")
    return jsonify({"ok": True, "inquiry": inquiry}), 201


@bp.route("", methods=["GET"])
@requires("instructor")
def list_inquiries():
    clauses, params = [], {}
    if request.args.get("studio_id"):
        clauses.append("studio_id = :studio")
        params["studio"] = request.args["studio_id"]
    if request.args.get("status"):
        clauses.append("status = :status")
        params["status"] = request.args["status"]
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_session() as s:
        rows = s.execute(
            text(f"SELECT {INQUIRY_COLUMNS} FROM studio_inquiries {where} ORDER BY created_at DESC"),
            params,
        ).mappings().all()
        return jsonify({"ok": True, "inquiries": serialize_rows(rows)})


@bp.route("/<inquiry_id>", methods=["PATCH"])
@requires("instructor")
def update_inquiry(inquiry_id):
    data = json_body()
    updates = {}
    if "status" in data:
        if data["status"] not in INQUIRY_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INQUIRY_STATUSES)}")
        updates["status"] = data["status"]
    for field in ("response_notes", "contact_method"):
        if field in data:
            updates[field] = str_or_none(data[field])
    if "is_responded" in data:
        updates["is_responded"] = bool(data["is_responded"])
        if updates["is_responded"]:
            updates["responded_at"] = now_iso()
    if not updates:
        raise ValidationError("No updatable fields provided")

    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with get_session() as s:
        result = s.execute(
            text(f"UPDATE studio_inquiries SET {assignments} WHERE id = :id"), {**updates, "id": inquiry_id}
        )
        if result.rowcount == 0:
            raise NotFound("Inquiry not found")
        inquiry = serialize_row(_fetch(s, inquiry_id))
    return jsonify({"ok": True, "inquiry": inquiry})


# ── Admin email threads ──────────────────────────────────────────────────────
@admin_bp.route("/send-email", methods=["POST"])
@requires("admin")
def send_email():
    data = json_body()
    inquiry_id = str_or_none(data.get("inquiry_id"))
    to, subject, body = str_or_none(data.get("to")), str_or_none(data.get("subject")), data.get("body")
    if not inquiry_id or not to or not subject or not str_or_none(body):
        raise ValidationError("inquiry_id, to, subject and body are required")
    if not is_valid_email(to):
        raise ValidationError("Recipient email is not valid")

    with get_session() as s:
        inquiry = _fetch(s, inquiry_id)
    if not inquiry:
        raise NotFound("Inquiry not found")

    sent = gmail_client.send_email(
        to, subject, body,
        thread_id=inquiry["gmail_thread_id"],
        in_reply_to=inquiry["last_email_message_id"],
    )

    ts = now_iso()
    with get_session() as s:
        s.execute(
            text("""
                UPDATE studio_inquiries
                SET gmail_thread_id = :thread, last_email_message_id = :msg,
                    email_count = COALESCE(email_count, 0) + 1, last_email_date = :ts,
                    is_responded = :responded, responded_at = :ts, status = 'responded',
                    has_unread_reply = :unread
                WHERE id = :id
            """),
            {
                "thread": sent["thread_id"] or inquiry["gmail_thread_id"],
                "msg": sent["message_id"],
                "ts": ts,
                "responded": True,
                "unread": False,
                "id": inquiry_id,
            },
        )
        updated = serialize_row(_fetch(s, inquiry_id))
    return jsonify({"ok": True, "thread_id": sent["thread_id"], "message_id": sent["message_id"], "inquiry": updated})


def _refresh_thread(inquiry) -> bool:
    messages = gmail_client.get_thread_messages(inquiry["gmail_thread_id"])
    if len(messages) <= int(inquiry["email_count"] or 0):
        return False
    last = messages[-1]
    with get_session() as s:
        s.execute(
            text("""
                UPDATE studio_inquiries
                SET email_count = :count, last_email_date = :date, has_unread_reply = :unread
                WHERE id = :id
            """),
            {
                "count": len(messages),
                "date": _email_date(last.get("date")),
                "unread": not last.get("is_from_me"),
                "id": inquiry["id"],
            },
        )
    return True


@admin_bp.route("/refresh-inbox", methods=["POST"])
@requires("admin")
def refresh_inbox():
    with get_session() as s:
        rows = s.execute(
            text(f"SELECT {INQUIRY_COLUMNS} FROM studio_inquiries WHERE gmail_thread_id IS NOT NULL")
        ).mappings().all()
        inquiries = [dict(r) for r in rows]

    updated = 0
    for inquiry in inquiries:
        if safe_execute(f"refresh thread {inquiry['gmail_thread_id']}", _refresh_thread, inquiry):
            updated += 1
    log.info(f"[inbox] refreshed {len(inquiries)} threads, {updated} updated")
    return jsonify({"ok": True, "updated_count": updated, "checked_count": len(inquiries)})


@admin_bp.route("/thread", methods=["GET"])
@requires("admin")
def get_thread():
    inquiry_id = request.args.get("inquiry_id")
    if not inquiry_id:
        raise ValidationError("inquiry_id is required")
    with get_session() as s:
        inquiry = _fetch(s, inquiry_id)
    if not inquiry:
        raise NotFound("Inquiry not found")
    if not inquiry["gmail_thread_id"]:
        return jsonify({"ok": True, "messages": []})
    return jsonify({"ok": True, "messages": gmail_client.get_thread_messages(inquiry["gmail_thread_id"])})
