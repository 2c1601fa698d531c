"""
waivers_router.py
────────────────────────────────────────────
Waiver templates, issued waivers and e-signatures.

Endpoints:
 • GET/POST     /waiver-templates          (instructor)
 • PATCH/DELETE /waiver-templates/<id>     (instructor; delete = deactivate)
 • GET          /waivers                   issued / received / signed by caller
 • POST         /waivers                   (instructor | studio)
 • GET          /waivers/<id>
 • POST         /waivers/<id>/sign         recipient only
 • GET          /waivers/signatures/<file>
────────────────────────────────────────────
"""

import base64
import binascii
import logging
import os
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from sqlalchemy import text
from werkzeug.utils import secure_filename

from .auth import current_profile, is_admin, requires
from .db import get_session
from .utils import json_body, new_id, now_iso, parse_ts, serialize_row, serialize_rows, str_or_none, to_iso
from .utils.error_handler import Forbidden, NotFound, ValidationError

bp = Blueprint("waivers_bp", __name__)
templates_bp = Blueprint("waiver_templates_bp", __name__)
log = logging.getLogger(__name__)

RECIPIENT_TYPES = ("dancer", "guardian", "studio")
PNG_PREFIX = "data:image/png;base64,"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

TEMPLATE_COLUMNS = "id, created_by_id, title, description, content, waiver_type, is_active, created_at, updated_at"
WAIVER_COLUMNS = """
    id, template_id, title, description, content, waiver_type, issued_by_id, issued_by_role,
    recipient_id, student_id, recipient_type, class_id, private_lesson_id, status,
    expires_at, signed_at, signed_by_id, signature_image_url, created_at, updated_at
"""


# ── Template variables ───────────────────────────────────────────────────────
def long_date(dt: datetime) -> str:
    return f"{dt:%B} {dt.day}, {dt.year}"


def long_datetime(dt: datetime) -> str:
    return f"{long_date(dt)}, {dt:%I:%M %p} UTC"


def fill_placeholders(content: str, values: dict) -> str:
    for key, value in values.items():
        content = content.replace("{{" + key + "}}", value)
    return content


# ── Templates ────────────────────────────────────────────────────────────────
@templates_bp.route("", methods=["GET"])
@requires("instructor")
def list_templates():
    include_inactive = (request.args.get("include_inactive") or "").lower() == "true"
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {TEMPLATE_COLUMNS} FROM waiver_templates
                {"" if include_inactive else "WHERE is_active = :active"}
                ORDER BY created_at DESC
            """),
            {} if include_inactive else {"active": True},
        ).mappings().all()
        return jsonify({"ok": True, "templates": serialize_rows(rows)})


@templates_bp.route("", methods=["POST"])
@requires("instructor")
def create_template():
    data = json_body()
    title, content = str_or_none(data.get("title")), str_or_none(data.get("content"))
    if not title or not content:
        raise ValidationError("title and content are required")

    template_id = new_id()
    ts = now_iso()
    with get_session() as s:
        s.execute(
            text("""
                INSERT INTO waiver_templates (id, created_by_id, title, description, content,
                                              waiver_type, is_active, created_at, updated_at)
                VALUES (:id, :by, :title, :descr, :content, :wtype, :active, :ts, :ts)
            """),
            {
                "id": template_id,
                "by": current_profile()["id"],
                "title": title,
                "descr": str_or_none(data.get("description")),
                "content": content,
                "wtype": str_or_none(data.get("waiver_type")) or "general",
                "active": True,
                "ts": ts,
            },
        )
        row = s.execute(
            text(f"SELECT {TEMPLATE_COLUMNS} FROM waiver_templates WHERE id = :id"), {"id": template_id}
        ).mappings().first()
    return jsonify({"ok": True, "template": serialize_row(row)}), 201


@templates_bp.route("/<template_id>", methods=["PATCH"])
@requires("instructor")
def update_template(template_id):
    data = json_body()
    updates = {f: str_or_none(data[f]) for f in ("title", "description", "content", "waiver_type") if f in data}
    for required in ("title", "content"):
        if required in updates and not updates[required]:
            raise ValidationError(f"{required} cannot be empty")
    if "is_active" in data:
        updates["is_active"] = bool(data["is_active"])
    if not updates:
        raise ValidationError("No updatable fields provided")

    updates["updated_at"] = now_iso()
    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with get_session() as s:
        result = s.execute(
            text(f"UPDATE waiver_templates SET {assignments} WHERE id = :id"), {**updates, "id": template_id}
        )
        if result.rowcount == 0:
            raise NotFound("Template not found")
        row = s.execute(
            text(f"SELECT {TEMPLATE_COLUMNS} FROM waiver_templates WHERE id = :id"), {"id": template_id}
        ).mappings().first()
    return jsonify({"ok": True, "template": serialize_row(row)})


@templates_bp.route("/<template_id>", methods=["DELETE"])
@requires("instructor")
def deactivate_template(template_id):
    with get_session() as s:
        result = s.execute(
            text("UPDATE waiver_templates SET is_active = :active, updated_at = :ts WHERE id = :id"),
            {"active": False, "ts": now_iso(), "id": template_id},
        )
        if result.rowcount == 0:
            raise NotFound("Template not found")
    return jsonify({"ok": True})


# ── Waivers ──────────────────────────────────────────────────────────────────
def _fetch(s, waiver_id):
    return s.execute(
        text(f"SELECT {WAIVER_COLUMNS} FROM waivers WHERE id = :id"), {"id": waiver_id}
    ).mappings().first()


def _can_view(waiver, profile) -> bool:
    return is_admin(profile) or profile["id"] in (
        waiver["issued_by_id"], waiver["recipient_id"], waiver["signed_by_id"]
    )


@bp.route("", methods=["GET"])
def list_waivers():
    profile = current_profile()
    clauses, params = ["(issued_by_id = :me OR recipient_id = :me OR signed_by_id = :me)"], {"me": profile["id"]}
    if request.args.get("status"):
        clauses.append("status = :status")
        params["status"] = request.args["status"]
    with get_session() as s:
        rows = s.execute(
            text(f"SELECT {WAIVER_COLUMNS} FROM waivers WHERE {' AND '.join(clauses)} ORDER BY created_at DESC"),
            params,
        ).mappings().all()
        return jsonify({"ok": True, "waivers": serialize_rows(rows)})


@bp.route("", methods=["POST"])
@requires("instructor", "studio")
def issue_waiver():
    profile = current_profile()
    data = json_body()
    title, content = str_or_none(data.get("title")), str_or_none(data.get("content"))
    recipient_type = data.get("recipient_type")
    recipient_id = str_or_none(data.get("recipient_id"))
    student_id = str_or_none(data.get("student_id"))
    if not title or not content or not recipient_type:
        raise ValidationError("title, content and recipient_type are required")
    if recipient_type not in RECIPIENT_TYPES:
        raise ValidationError(f"recipient_type must be one of: {', '.join(RECIPIENT_TYPES)}")
    if not recipient_id and not student_id:
        raise ValidationError("Either recipient_id or student_id is required")

    waiver_id = new_id()
    ts = now_iso()
    with get_session() as s:
        recipient_name = "Recipient"
        if student_id:
            student = s.execute(
                text("SELECT id, profile_id, full_name FROM students WHERE id = :id"), {"id": student_id}
            ).mappings().first()
            if not student:
                raise NotFound("Student not found")
            recipient_id = student["profile_id"] or recipient_id
            recipient_name = student["full_name"] or recipient_name
        if recipient_id:
            recipient = s.execute(
                text("SELECT id, full_name FROM profiles WHERE id = :id"), {"id": recipient_id}
            ).mappings().first()
            if not recipient:
                raise NotFound("Recipient not found")
            if not student_id:
                recipient_name = recipient["full_name"] or recipient_name

        filled = fill_placeholders(content, {
            "issue_date": long_date(datetime.now(timezone.utc)),
            "issuer_name": profile.get("full_name") or "Instructor",
            "recipient_name": recipient_name,
        })
        s.execute(
            text("""
                INSERT INTO waivers (id, template_id, title, description, content, waiver_type,
                                     issued_by_id, issued_by_role, recipient_id, student_id, recipient_type,
                                     class_id, private_lesson_id, status, expires_at, created_at, updated_at)
                VALUES (:id, :tpl, :title, :descr, :content, :wtype,
                        :by, :role, :rid, :sid, :rtype,
                        :cid, :plid, 'pending', :expires, :ts, :ts)
            """),
            {
                "id": waiver_id,
                "tpl": str_or_none(data.get("template_id")),
                "title": title,
                "descr": str_or_none(data.get("description")),
                "content": filled,
                "wtype": str_or_none(data.get("waiver_type")) or "general",
                "by": profile["id"],
                "role": profile["role"],
                "rid": recipient_id,
                "sid": student_id,
                "rtype": recipient_type,
                "cid": str_or_none(data.get("class_id")),
                "plid": str_or_none(data.get("private_lesson_id")),
                "expires": to_iso(data.get("expires_at")),
                "ts": ts,
            },
        )
        waiver = serialize_row(_fetch(s, waiver_id))
    log.info(f"📤 Waiver {waiver_id} issued by {profile['id']} → {recipient_id or student_id}")
    return jsonify({"ok": True, "waiver": waiver}), 201


@bp.route("/<waiver_id>", methods=["GET"])
def get_waiver(waiver_id):
    profile = current_profile()
    with get_session() as s:
        row = _fetch(s, waiver_id)
        if not row:
            raise NotFound("Waiver not found")
        if not _can_view(row, profile):
            raise Forbidden("You do not have access to this waiver")
        signatures = s.execute(
            text("""
                SELECT id, signed_by_id, signer_name, signer_email, signature_image_url, signed_at
                FROM waiver_signatures WHERE waiver_id = :id ORDER BY signed_at
            """),
            {"id": waiver_id},
        ).mappings().all()
    waiver = serialize_row(row)
    waiver["signatures"] = serialize_rows(signatures)
    return jsonify({"ok": True, "waiver": waiver})


def _decode_signature(data_url) -> bytes:
    if not isinstance(data_url, str) or not data_url.startswith(PNG_PREFIX):
        raise ValidationError("signature_image must be a PNG data URL")
    try:
        raw = base64.b64decode(data_url[len(PNG_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("signature_image is not valid base64")
    if not raw.startswith(PNG_MAGIC):
        raise ValidationError("signature_image must be a PNG data URL")
    return raw


@bp.route("/<waiver_id>/sign", methods=["POST"])
def sign_waiver(waiver_id):
    profile = current_profile()
    data = json_body()
    signer_name = str_or_none(data.get("signer_name"))
    signer_email = str_or_none(data.get("signer_email"))
    if not data.get("signature_image") or not signer_name or not signer_email:
        raise ValidationError("Missing signature data")
    image = _decode_signature(data["signature_image"])

    sig_dir = current_app.config["SIGNATURE_DIR"]
    filename = f"waiver-{waiver_id}-{int(time.time() * 1000)}.png"
    sig_path = os.path.join(sig_dir, filename)
    image_url = f"{current_app.config['PUBLIC_BASE_URL']}/waivers/signatures/{filename}"

    try:
        updated = _record_signature(waiver_id, profile, signer_name, signer_email, image, sig_path, image_url)
    except Exception:
        # no committed row points at the file
        if os.path.exists(sig_path):
            os.remove(sig_path)
        raise
    log.info(f"✅ Waiver {waiver_id} signed by {profile['id']}")
    return jsonify({"ok": True, "waiver": updated})


def _record_signature(waiver_id, profile, signer_name, signer_email, image, sig_path, image_url):
    with get_session() as s:
        waiver = _fetch(s, waiver_id)
        if not waiver:
            raise NotFound("Waiver not found")
        if waiver["recipient_id"] != profile["id"]:
            raise Forbidden("Unauthorized to sign this waiver")
        if waiver["status"] == "signed":
            raise ValidationError("Waiver has already been signed")
        now = datetime.now(timezone.utc)
        expires = parse_ts(waiver["expires_at"])
        if waiver["status"] == "expired" or (expires is not None and expires < now):
            raise ValidationError("Waiver has expired")

        os.makedirs(os.path.dirname(sig_path), exist_ok=True)
        with open(sig_path, "wb") as fh:
            fh.write(image)

        ts = now_iso()
        s.execute(
            text("""
                UPDATE waivers
                SET content = :content, signature_image_url = :url, signed_at = :ts,
                    signed_by_id = :by, status = 'signed', updated_at = :ts
                WHERE id = :id
            """),
            {
                "content": fill_placeholders(waiver["content"], {"signature_date": long_datetime(now)}),
                "url": image_url,
                "ts": ts,
                "by": profile["id"],
                "id": waiver_id,
            },
        )
        s.execute(
            text("""
                INSERT INTO waiver_signatures (id, waiver_id, signed_by_id, signer_name, signer_email,
                                               signature_image_url, ip_address, user_agent, signed_at)
                VALUES (:id, :wid, :by, :name, :email, :url, :ip, :ua, :ts)
            """),
            {
                "id": new_id(),
                "wid": waiver_id,
                "by": profile["id"],
                "name": signer_name,
                "email": signer_email,
                "url": image_url,
                "ip": request.headers.get("X-Forwarded-For") or request.remote_addr or "unknown",
                "ua": request.headers.get("User-Agent") or "unknown",
                "ts": ts,
            },
        )
        return serialize_row(_fetch(s, waiver_id))


@bp.route("/signatures/<filename>", methods=["GET"])
def signature_image(filename):
    safe = secure_filename(filename)
    if not safe or safe != filename:
        raise NotFound("Signature not found")
    sig_dir = os.path.abspath(current_app.config["SIGNATURE_DIR"])
    if not os.path.isfile(os.path.join(sig_dir, safe)):
        raise NotFound("Signature not found")
    return send_from_directory(sig_dir, safe, mimetype="image/png")
