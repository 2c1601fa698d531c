"""
classes_router.py
────────────────────────────────────────────
Class scheduling, pricing, enrollments and earnings.

Endpoints:
 • GET    /classes                         ?studio_id=&class_type=&upcoming=true
 • POST   /classes                         (instructor)
 • POST   /classes/bulk                    (instructor, up to 100)
 • GET    /classes/<id>
 • PATCH  /classes/<id>                    (instructor, own class)
 • DELETE /classes/<id>                    (instructor, own class)
 • GET    /classes/<id>/enrollments        (instructor)
 • POST   /classes/<id>/enrollments        (instructor)
 • DELETE /classes/<id>/enrollments/<sid>  (instructor)
 • GET    /classes/earnings                (instructor)
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify, request
from sqlalchemy import text

from .auth import current_profile, is_admin, requires
from .db import get_session
from .pricing import (
    PRICING_FIELDS, calculate_class_cost, describe_pricing_model,
    pricing_fields_for, validate_pricing_data,
)
from .settings import CLASS_TYPES, ROLE_GROUPS
from .utils import (
    json_body, new_id, now_iso, parse_ts, serialize_row, serialize_rows, str_or_none, to_iso,
)
from .utils.error_handler import Conflict, Forbidden, NotFound, ValidationError

bp = Blueprint("classes_bp", __name__)
log = logging.getLogger(__name__)

CLASS_COLUMNS = """
    c.id, c.instructor_id, c.studio_id, c.class_type, c.title, c.description, c.location,
    c.start_time, c.end_time, c.max_capacity, c.is_public,
    c.pricing_model, c.base_cost, c.cost_per_person, c.cost_per_hour,
    c.tiered_base_students, c.tiered_additional_cost,
    c.is_cancelled, c.cancellation_reason, c.created_at, c.updated_at
"""

ENROLLED_COUNT = "(SELECT COUNT(*) FROM enrollments e WHERE e.class_id = c.id) AS enrolled_count"

TEXT_FIELDS = ("title", "description", "location", "studio_id", "cancellation_reason")


# ── Helpers ──────────────────────────────────────────────────────────────────
def _with_cost(row) -> dict:
    cls = serialize_row(row)
    cls["enrolled_count"] = int(cls.get("enrolled_count") or 0)
    cls["calculated_cost"] = round(calculate_class_cost(cls, cls["enrolled_count"]), 2)
    return cls


def _fetch_class(s, class_id: str):
    return s.execute(
        text(f"SELECT {CLASS_COLUMNS}, {ENROLLED_COUNT} FROM classes c WHERE c.id = :id"),
        {"id": class_id},
    ).mappings().first()


def _owned_class(s, class_id: str) -> dict:
    row = _fetch_class(s, class_id)
    if not row:
        raise NotFound("Class not found")
    profile = current_profile()
    if row["instructor_id"] != profile["id"] and not is_admin(profile):
        raise Forbidden("You can only modify your own classes")
    return dict(row)


def _capacity(value):
    if value is None or value == "":
        return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError("max_capacity must be a whole number")
    if n < 1:
        raise ValidationError("max_capacity must be at least 1")
    return n


def _check_times(start, end):
    start_dt, end_dt = parse_ts(start), parse_ts(end)
    if start_dt is None or end_dt is None:
        raise ValidationError("start_time and end_time must be valid ISO timestamps")
    if end_dt <= start_dt:
        raise ValidationError("end_time must be after start_time")


# ── Listing ──────────────────────────────────────────────────────────────────
@bp.route("", methods=["GET"])
def list_classes():
    clauses, params = [], {}
    if request.args.get("studio_id"):
        clauses.append("c.studio_id = :studio_id")
        params["studio_id"] = request.args["studio_id"]
    if request.args.get("class_type"):
        clauses.append("c.class_type = :class_type")
        params["class_type"] = request.args["class_type"]
    if (request.args.get("upcoming") or "").lower() == "true":
        clauses.append("c.start_time >= :now")
        params["now"] = now_iso()

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_session() as s:
        rows = s.execute(
            text(f"SELECT {CLASS_COLUMNS}, {ENROLLED_COUNT} FROM classes c {where} ORDER BY c.start_time ASC"),
            params,
        ).mappings().all()
        classes = [_with_cost(r) for r in rows]
    return jsonify({"ok": True, "classes": classes})


MAX_BULK_CLASSES = 100


def _class_params(data: dict, instructor_id: str) -> dict:
    """Validate a class payload and build its INSERT parameters."""
    title = str_or_none(data.get("title"))
    class_type = data.get("class_type")
    if not title or not class_type or not data.get("start_time") or not data.get("end_time"):
        raise ValidationError("title, class_type, start_time and end_time are required")
    if class_type not in CLASS_TYPES:
        raise ValidationError(f"class_type must be one of: {', '.join(CLASS_TYPES)}")
    _check_times(data["start_time"], data["end_time"])

    model = data.get("pricing_model") or "per_person"
    valid, err = validate_pricing_data(model, data)
    if not valid:
        raise ValidationError(err)

    return {
        "id": new_id(),
        "instructor_id": instructor_id,
        "studio_id": str_or_none(data.get("studio_id")),
        "class_type": class_type,
        "title": title,
        "description": str_or_none(data.get("description")),
        "location": str_or_none(data.get("location")),
        "start_time": to_iso(data["start_time"]),
        "end_time": to_iso(data["end_time"]),
        "max_capacity": _capacity(data.get("max_capacity")),
        "is_public": bool(data.get("is_public", False)),
        "pricing_model": model,
        **pricing_fields_for(model, data),
        "ts": now_iso(),
    }


def _insert_class(s, params: dict) -> dict:
    s.execute(
        text("""
            INSERT INTO classes (id, instructor_id, studio_id, class_type, title, description, location,
                                 start_time, end_time, max_capacity, is_public,
                                 pricing_model, base_cost, cost_per_person, cost_per_hour,
                                 tiered_base_students, tiered_additional_cost,
                                 is_cancelled, created_at, updated_at)
            VALUES (:id, :instructor_id, :studio_id, :class_type, :title, :description, :location,
                    :start_time, :end_time, :max_capacity, :is_public,
                    :pricing_model, :base_cost, :cost_per_person, :cost_per_hour,
                    :tiered_base_students, :tiered_additional_cost,
                    :cancelled, :ts, :ts)
        """),
        {**params, "cancelled": False},
    )
    return _with_cost(_fetch_class(s, params["id"]))


def _instructor_for(s, data: dict) -> str:
    """Admins may schedule on behalf of another instructor; everyone else schedules for themselves."""
    profile = current_profile()
    requested = str_or_none(data.get("instructor_id"))
    if not is_admin(profile) or not requested or requested == profile["id"]:
        return profile["id"]
    role = s.execute(text("SELECT role FROM profiles WHERE id = :id"), {"id": requested}).scalar()
    if role is None:
        raise ValidationError("Invalid instructor_id: User not found")
    if role not in ROLE_GROUPS["instructor"]:
        raise ValidationError("Invalid instructor_id: User must be an instructor or admin")
    return requested


@bp.route("", methods=["POST"])
@requires("instructor")
def create_class():
    data = json_body()
    with get_session() as s:
        params = _class_params(data, _instructor_for(s, data))
        cls = _insert_class(s, params)
    log.info(f"✅ Class {cls['id']} '{cls['title']}' created ({cls['pricing_model']})")
    return jsonify({"ok": True, "class": cls}), 201


@bp.route("/bulk", methods=["POST"])
@requires("instructor")
def create_classes_bulk():
    """Create a batch of classes (e.g. a recurring series) in one transaction."""
    batch = json_body().get("classes")
    if not isinstance(batch, list) or not batch:
        raise ValidationError("No classes provided")
    if len(batch) > MAX_BULK_CLASSES:
        raise ValidationError(f"Cannot create more than {MAX_BULK_CLASSES} classes at once")

    with get_session() as s:
        all_params = []
        for i, data in enumerate(batch, start=1):
            if not isinstance(data, dict):
                raise ValidationError(f"Class {i}: must be an object")
            try:
                all_params.append(_class_params(data, _instructor_for(s, data)))
            except ValidationError as e:
                raise ValidationError(f"Class {i}: {e.message}")
        created = [_insert_class(s, params) for params in all_params]
    log.info(f"✅ {len(created)} classes created in bulk by {current_profile()['id']}")
    return jsonify({"ok": True, "classes": created}), 201


# ── Earnings ─────────────────────────────────────────────────────────────────
@bp.route("/earnings", methods=["GET"])
@requires("instructor")
def earnings():
    profile = current_profile()
    clauses, params = ["c.is_cancelled = :cancelled"], {"cancelled": False}
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
    if request.args.get("class_type"):
        clauses.append("c.class_type = :class_type")
        params["class_type"] = request.args["class_type"]

    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {CLASS_COLUMNS}, {ENROLLED_COUNT},
                       (SELECT COALESCE(SUM(p.amount), 0) FROM payments p
                        WHERE p.class_id = c.id AND p.payment_status = 'confirmed') AS collected_amount
                FROM classes c
                WHERE {' AND '.join(clauses)}
                ORDER BY c.start_time DESC
            """),
            params,
        ).mappings().all()

    classes = []
    by_class_type = {}
    for row in rows:
        cls = _with_cost(row)
        cls["calculated_value"] = cls.pop("calculated_cost")
        cls["collected_amount"] = round(float(cls.get("collected_amount") or 0), 2)
        # overpayment on one class never offsets another class's balance
        cls["outstanding"] = round(max(0.0, cls["calculated_value"] - cls["collected_amount"]), 2)
        classes.append(cls)

        bucket = by_class_type.setdefault(cls["class_type"], {"count": 0, "value": 0.0, "collected": 0.0})
        bucket["count"] += 1
        bucket["value"] = round(bucket["value"] + cls["calculated_value"], 2)
        bucket["collected"] = round(bucket["collected"] + cls["collected_amount"], 2)

    return jsonify({
        "ok": True,
        "classes": classes,
        "totals": {
            "class_count": len(classes),
            "calculated_value": round(sum(c["calculated_value"] for c in classes), 2),
            "collected_amount": round(sum(c["collected_amount"] for c in classes), 2),
            "outstanding": round(sum(c["outstanding"] for c in classes), 2),
            "by_class_type": by_class_type,
        },
    })


# ── Single class ─────────────────────────────────────────────────────────────
@bp.route("/<class_id>", methods=["GET"])
def get_class(class_id):
    with get_session() as s:
        row = _fetch_class(s, class_id)
        if not row:
            raise NotFound("Class not found")
        enrollments = s.execute(
            text("""
                SELECT e.id, e.student_id, e.enrolled_at, e.attendance_status, st.full_name
                FROM enrollments e
                JOIN students st ON st.id = e.student_id
                WHERE e.class_id = :cid
                ORDER BY e.enrolled_at
            """),
            {"cid": class_id},
        ).mappings().all()
        cls = _with_cost(row)
    cls["pricing_description"] = describe_pricing_model(cls)
    cls["enrollments"] = serialize_rows(enrollments)
    return jsonify({"ok": True, "class": cls})


@bp.route("/<class_id>", methods=["PATCH"])
@requires("instructor")
def update_class(class_id):
    data = json_body()
    with get_session() as s:
        existing = _owned_class(s, class_id)

        updates = {f: str_or_none(data[f]) for f in TEXT_FIELDS if f in data}
        if "title" in updates and not updates["title"]:
            raise ValidationError("title cannot be empty")
        if "class_type" in data:
            if data["class_type"] not in CLASS_TYPES:
                raise ValidationError(f"class_type must be one of: {', '.join(CLASS_TYPES)}")
            updates["class_type"] = data["class_type"]
        if "max_capacity" in data:
            updates["max_capacity"] = _capacity(data["max_capacity"])
        for flag in ("is_public", "is_cancelled"):
            if flag in data:
                updates[flag] = bool(data[flag])

        if "start_time" in data or "end_time" in data:
            start = data.get("start_time", existing["start_time"])
            end = data.get("end_time", existing["end_time"])
            _check_times(start, end)
            updates["start_time"], updates["end_time"] = to_iso(start), to_iso(end)

        if "pricing_model" in data or any(f in data for f in PRICING_FIELDS):
            model = data.get("pricing_model") or existing["pricing_model"]
            merged = {**{f: existing.get(f) for f in PRICING_FIELDS}, **data}
            valid, err = validate_pricing_data(model, merged)
            if not valid:
                raise ValidationError(err)
            updates["pricing_model"] = model
            updates.update(pricing_fields_for(model, merged))

        if not updates:
            raise ValidationError("No updatable fields provided")
        updates["updated_at"] = now_iso()
        assignments = ", ".join(f"{k} = :{k}" for k in updates)
        s.execute(text(f"UPDATE classes SET {assignments} WHERE id = :id"), {**updates, "id": class_id})
        cls = _with_cost(_fetch_class(s, class_id))
    return jsonify({"ok": True, "class": cls})


@bp.route("/<class_id>", methods=["DELETE"])
@requires("instructor")
def delete_class(class_id):
    with get_session() as s:
        _owned_class(s, class_id)
        s.execute(text("DELETE FROM enrollments WHERE class_id = :id"), {"id": class_id})
        s.execute(text("DELETE FROM classes WHERE id = :id"), {"id": class_id})
    log.info(f"[classes] {class_id} deleted by {current_profile()['id']}")
    return jsonify({"ok": True})


# ── Enrollments ──────────────────────────────────────────────────────────────
@bp.route("/<class_id>/enrollments", methods=["GET"])
@requires("instructor")
def list_enrollments(class_id):
    with get_session() as s:
        if not _fetch_class(s, class_id):
            raise NotFound("Class not found")
        rows = s.execute(
            text("""
                SELECT e.id, e.student_id, e.class_id, e.enrolled_at, e.attendance_status, e.notes,
                       st.full_name, st.email
                FROM enrollments e
                JOIN students st ON st.id = e.student_id
                WHERE e.class_id = :cid
                ORDER BY e.enrolled_at
            """),
            {"cid": class_id},
        ).mappings().all()
        return jsonify({"ok": True, "enrollments": serialize_rows(rows)})


def enroll_student(s, cls, student_id: str) -> dict:
    """Insert an enrollment after the duplicate and capacity checks."""
    already = s.execute(
        text("SELECT id FROM enrollments WHERE class_id = :cid AND student_id = :sid"),
        {"cid": cls["id"], "sid": student_id},
    ).first()
    if already:
        raise Conflict("Student is already enrolled in this class")
    capacity = cls.get("max_capacity")
    if capacity and int(cls.get("enrolled_count") or 0) >= int(capacity):
        raise ValidationError("Class is full")

    enrollment = {"id": new_id(), "student_id": student_id, "class_id": cls["id"], "enrolled_at": now_iso()}
    s.execute(
        text("""
            INSERT INTO enrollments (id, student_id, class_id, enrolled_at)
            VALUES (:id, :student_id, :class_id, :enrolled_at)
        """),
        enrollment,
    )
    return enrollment


@bp.route("/<class_id>/enrollments", methods=["POST"])
@requires("instructor")
def add_enrollment(class_id):
    student_id = str_or_none(json_body().get("student_id"))
    if not student_id:
        raise ValidationError("student_id is required")
    with get_session() as s:
        cls = _fetch_class(s, class_id)
        if not cls:
            raise NotFound("Class not found")
        if not s.execute(text("SELECT id FROM students WHERE id = :id"), {"id": student_id}).first():
            raise NotFound("Student not found")
        enrollment = enroll_student(s, cls, student_id)
    log.info(f"✅ Student {student_id} enrolled in {class_id}")
    return jsonify({"ok": True, "enrollment": enrollment}), 201


@bp.route("/<class_id>/enrollments/<student_id>", methods=["DELETE"])
@requires("instructor")
def remove_enrollment(class_id, student_id):
    with get_session() as s:
        result = s.execute(
            text("DELETE FROM enrollments WHERE class_id = :cid AND student_id = :sid"),
            {"cid": class_id, "sid": student_id},
        )
        if result.rowcount == 0:
            raise NotFound("Enrollment not found")
    return jsonify({"ok": True})
