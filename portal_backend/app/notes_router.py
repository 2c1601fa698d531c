"""
notes_router.py
────────────────────────────────────────────
Instructor notes on students, plus the AI helpers
(text formatting and voice-to-notes).

Endpoints:
 • GET    /notes            ?student_id=&visibility=&tag=
 • POST   /notes            (instructor)
 • PATCH  /notes/<id>       (instructor, author)
 • DELETE /notes/<id>       (instructor, author)
 • POST   /notes/format
 • POST   /notes/voice      (dancer or instructor, multipart "audio")
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify, request
from sqlalchemy import text

from .auth import current_profile, current_student, has_instructor_privileges, is_admin, requires
from .db import get_session
from .settings import MAX_AUDIO_BYTES, NOTE_FORMAT_PROMPT, NOTE_VISIBILITIES, VOICE_CLEANING_PROMPT
from .utils import dump_list, json_body, new_id, now_iso, serialize_row, serialize_rows, str_or_none
from .utils import llm_client
from .utils.error_handler import Forbidden, NotFound, ValidationError

bp = Blueprint("notes_bp", __name__)
log = logging.getLogger(__name__)

NOTE_COLUMNS = """
    n.id, n.author_id, n.student_id, n.class_id, n.title, n.content, n.tags,
    n.visibility, n.created_at, n.updated_at
"""


def _fetch(s, note_id):
    return s.execute(
        text(f"SELECT {NOTE_COLUMNS} FROM notes n WHERE n.id = :id"), {"id": note_id}
    ).mappings().first()


def _authored(s, note_id) -> dict:
    row = _fetch(s, note_id)
    if not row:
        raise NotFound("Note not found")
    profile = current_profile()
    if row["author_id"] != profile["id"] and not is_admin(profile):
        raise Forbidden("You can only modify your own notes")
    return dict(row)


def _visibility(value) -> str:
    visibility = value or "private"
    if visibility not in NOTE_VISIBILITIES:
        raise ValidationError(f"visibility must be one of: {', '.join(NOTE_VISIBILITIES)}")
    return visibility


def _tags(value):
    if value is None:
        return None
    if not isinstance(value, (list, str)):
        raise ValidationError("tags must be a list of strings")
    return dump_list([str(t).strip() for t in ([value] if isinstance(value, str) else value) if str(t).strip()])


# ── CRUD ─────────────────────────────────────────────────────────────────────
@bp.route("", methods=["GET"])
@requires("instructor", "dancer")
def list_notes():
    profile = current_profile()
    clauses, params = [], {}

    if has_instructor_privileges(profile):
        if request.args.get("student_id"):
            clauses.append("n.student_id = :sid")
            params["sid"] = request.args["student_id"]
    else:
        clauses.append("n.student_id = :sid AND n.visibility <> 'private'")
        params["sid"] = current_student()["id"]

    if request.args.get("visibility"):
        clauses.append("n.visibility = :vis")
        params["vis"] = request.args["visibility"]

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {NOTE_COLUMNS}, p.full_name AS author_name
                FROM notes n
                LEFT JOIN profiles p ON p.id = n.author_id
                {where}
                ORDER BY n.created_at DESC
            """),
            params,
        ).mappings().all()

    notes = serialize_rows(rows)
    tag = request.args.get("tag")
    if tag:
        notes = [n for n in notes if tag in (n.get("tags") or [])]
    return jsonify({"ok": True, "notes": notes})


@bp.route("", methods=["POST"])
@requires("instructor")
def create_note():
    data = json_body()
    student_id = str_or_none(data.get("student_id"))
    content = str_or_none(data.get("content"))
    if not student_id or not content:
        raise ValidationError("student_id and content are required")

    note_id = new_id()
    ts = now_iso()
    with get_session() as s:
        if not s.execute(text("SELECT id FROM students WHERE id = :id"), {"id": student_id}).first():
            raise NotFound("Student not found")
        s.execute(
            text("""
                INSERT INTO notes (id, author_id, student_id, class_id, title, content, tags,
                                   visibility, created_at, updated_at)
                VALUES (:id, :author, :sid, :cid, :title, :content, :tags, :vis, :ts, :ts)
            """),
            {
                "id": note_id,
                "author": current_profile()["id"],
                "sid": student_id,
                "cid": str_or_none(data.get("class_id")),
                "title": str_or_none(data.get("title")),
                "content": content,
                "tags": _tags(data.get("tags")),
                "vis": _visibility(data.get("visibility")),
                "ts": ts,
            },
        )
        note = serialize_row(_fetch(s, note_id))
    log.info(f"✅ Note {note_id} on student {student_id} ({note['visibility']})")
    return jsonify({"ok": True, "note": note}), 201


@bp.route("/<note_id>", methods=["PATCH"])
@requires("instructor")
def update_note(note_id):
    data = json_body()
    with get_session() as s:
        _authored(s, note_id)
        updates = {}
        if "title" in data:
            updates["title"] = str_or_none(data["title"])
        if "content" in data:
            updates["content"] = str_or_none(data["content"])
            if not updates["content"]:
                raise ValidationError("content cannot be empty")
        if "tags" in data:
            updates["tags"] = _tags(data["tags"])
        if "visibility" in data:
            updates["visibility"] = _visibility(data["visibility"])
        if "class_id" in data:
            updates["class_id"] = str_or_none(data["class_id"])
        if not updates:
            raise ValidationError("No updatable fields provided")

        updates["updated_at"] = now_iso()
        assignments = ", ".join(f"{k} = :{k}" for k in updates)
        s.execute(text(f"UPDATE notes SET {assignments} WHERE id = :id"), {**updates, "id": note_id})
        note = serialize_row(_fetch(s, note_id))
    return jsonify({"ok": True, "note": note})


@bp.route("/<note_id>", methods=["DELETE"])
@requires("instructor")
def delete_note(note_id):
    with get_session() as s:
        _authored(s, note_id)
        s.execute(text("DELETE FROM notes WHERE id = :id"), {"id": note_id})
    return jsonify({"ok": True})


# ── AI helpers ───────────────────────────────────────────────────────────────
@bp.route("/format", methods=["POST"])
def format_note():
    content = json_body().get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Content is required")

    formatted = llm_client.complete(NOTE_FORMAT_PROMPT, content)
    return jsonify({"ok": True, "formatted_content": formatted or content})


@bp.route("/voice", methods=["POST"])
@requires("dancer", "instructor")
def voice_to_notes():
    profile = current_profile()
    audio = request.files.get("audio")
    if audio is None:
        raise ValidationError("No audio file provided")
    payload = audio.read()
    if not payload:
        raise ValidationError("No audio file provided")
    if len(payload) > MAX_AUDIO_BYTES:
        raise ValidationError("Audio file too large (max 25MB)")

    transcript = llm_client.transcribe(payload, audio.filename or "audio.webm")
    if not transcript:
        raise ValidationError("No speech detected in audio")

    cleaned = llm_client.complete(VOICE_CLEANING_PROMPT, transcript, max_tokens=3000)
    log.info(f"[notes] voice note transcribed for {profile['id']} ({len(transcript)} chars)")
    return jsonify({
        "ok": True,
        "transcript": transcript,
        "formatted_content": cleaned or f"<p>{transcript}</p>",
    })
