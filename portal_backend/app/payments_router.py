"""
payments_router.py
────────────────────────────────────────────
Payment tracking for classes and studios.

A payment belongs to the instructor of its class or of its
student, and to the owner of its studio. Only those parties
(or an admin) can see, edit or confirm it.

Endpoints:
 • GET   /payments               ?status=&class_id=   (instructor)
 • POST  /payments                                    (instructor)
 • PATCH /payments/<id>                               (instructor)
 • POST  /payments/<id>/confirm                       (instructor | studio)
 • GET   /studio/payments                             (studio)
 • POST  /studio/payments                             (studio)
────────────────────────────────────────────
"""

import logging
from collections import Counter

from flask import Blueprint, jsonify, request
from sqlalchemy import text

from .auth import current_profile, has_instructor_privileges, is_admin, requires
from .db import get_session
from .settings import PAYMENT_METHODS, PAYMENT_STATUSES
from .utils import as_number, json_body, new_id, now_iso, serialize_row, serialize_rows, str_or_none, to_iso
from .utils.error_handler import Forbidden, NotFound, ValidationError

bp = Blueprint("payments_bp", __name__)
studio_bp = Blueprint("studio_payments_bp", __name__)
log = logging.getLogger(__name__)

PAYMENT_COLUMNS = """
    p.id, p.student_id, p.class_id, p.studio_id, p.amount, p.payment_method, p.payment_status,
    p.stripe_payment_id, p.transaction_date, p.confirmed_by_instructor_at, p.confirmed_by_studio_at,
    p.notes, p.receipt_url, p.requested_by, p.created_at, p.updated_at
"""

PAYMENT_JOINS = """
    FROM payments p
    LEFT JOIN classes c ON c.id = p.class_id
    LEFT JOIN students st ON st.id = p.student_id
"""

INSTRUCTOR_SCOPE = "(c.instructor_id = :iid OR st.instructor_id = :iid OR p.requested_by = :iid)"
STUDIO_SCOPE = "p.studio_id IN (SELECT id FROM studios WHERE owner_id = :owner)"


# ── Helpers ──────────────────────────────────────────────────────────────────
def _fetch(s, payment_id):
    return s.execute(
        text(f"SELECT {PAYMENT_COLUMNS} FROM payments p WHERE p.id = :id"), {"id": payment_id}
    ).mappings().first()


def _fetch_with_owners(s, payment_id):
    row = s.execute(
        text(f"""
            SELECT {PAYMENT_COLUMNS},
                   c.instructor_id AS class_instructor_id,
                   st.instructor_id AS student_instructor_id,
                   sd.owner_id AS studio_owner_id
            {PAYMENT_JOINS}
            LEFT JOIN studios sd ON sd.id = p.studio_id
            WHERE p.id = :id
        """),
        {"id": payment_id},
    ).mappings().first()
    if not row:
        raise NotFound("Payment not found")
    return row


def manages_payment(profile, row) -> bool:
    """Admin, the instructor of the payment's class or student, or whoever requested it."""
    if is_admin(profile):
        return True
    return profile["id"] in (row["class_instructor_id"], row["student_instructor_id"], row["requested_by"])


def owns_payment_studio(profile, row) -> bool:
    return is_admin(profile) or (row["studio_owner_id"] is not None and row["studio_owner_id"] == profile["id"])


def payment_stats(payments) -> dict:
    by_status = Counter(p["payment_status"] for p in payments)
    return {
        "total_count": len(payments),
        "total_amount": round(sum(float(p["amount"] or 0) for p in payments), 2),
        "by_status": {status: by_status.get(status, 0) for status in PAYMENT_STATUSES},
    }


def validate_amount_and_method(data) -> tuple:
    amount = as_number(data.get("amount"), "amount", allow_none=False)
    if amount <= 0:
        raise ValidationError("amount must be greater than 0")
    method = data.get("payment_method") or "other"
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    return round(amount, 2), method


def insert_payment(s, *, student_id, amount, method, class_id=None, studio_id=None, notes=None,
                   transaction_date=None, confirmed_by_studio_at=None, requested_by=None) -> dict:
    """Insert a pending payment and return it serialised."""
    payment_id = new_id()
    ts = now_iso()
    s.execute(
        text("""
            INSERT INTO payments (id, student_id, class_id, studio_id, amount, payment_method,
                                  payment_status, transaction_date, confirmed_by_studio_at,
                                  notes, requested_by, created_at, updated_at)
            VALUES (:id, :sid, :cid, :studio, :amount, :method, 'pending', :tx, :studio_ok,
                    :notes, :requested_by, :ts, :ts)
        """),
        {
            "id": payment_id,
            "sid": student_id,
            "cid": class_id,
            "studio": studio_id,
            "amount": amount,
            "method": method,
            "tx": transaction_date or ts,
            "studio_ok": confirmed_by_studio_at,
            "notes": notes,
            "requested_by": requested_by,
            "ts": ts,
        },
    )
    return serialize_row(_fetch(s, payment_id))


def _list(clauses, params):
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {PAYMENT_COLUMNS}, st.full_name AS student_name, c.title AS class_title
                {PAYMENT_JOINS}
                {where}
                ORDER BY p.transaction_date DESC
            """),
            params,
        ).mappings().all()
    payments = serialize_rows(rows)
    return jsonify({"ok": True, "payments": payments, "stats": payment_stats(payments)})


# ── Instructor payments ──────────────────────────────────────────────────────
@bp.route("", methods=["GET"])
@requires("instructor")
def list_payments():
    profile = current_profile()
    clauses, params = [], {}
    if not is_admin(profile):
        clauses.append(INSTRUCTOR_SCOPE)
        params["iid"] = profile["id"]
    if request.args.get("status"):
        clauses.append("p.payment_status = :status")
        params["status"] = request.args["status"]
    if request.args.get("class_id"):
        clauses.append("p.class_id = :cid")
        params["cid"] = request.args["class_id"]
    return _list(clauses, params)


@bp.route("", methods=["POST"])
@requires("instructor")
def create_payment():
    profile = current_profile()
    data = json_body()
    student_id = str_or_none(data.get("student_id"))
    if not student_id:
        raise ValidationError("student_id is required")
    amount, method = validate_amount_and_method(data)
    class_id = str_or_none(data.get("class_id"))
    studio_id = str_or_none(data.get("studio_id"))

    with get_session() as s:
        student = s.execute(
            text("SELECT id, instructor_id FROM students WHERE id = :id"), {"id": student_id}
        ).mappings().first()
        if not student:
            raise NotFound("Student not found")
        owners = {student["instructor_id"]}
        if class_id:
            cls = s.execute(
                text("SELECT instructor_id FROM classes WHERE id = :id"), {"id": class_id}
            ).mappings().first()
            if not cls:
                raise NotFound("Class not found")
            owners.add(cls["instructor_id"])
        if studio_id and not s.execute(text("SELECT id FROM studios WHERE id = :id"), {"id": studio_id}).first():
            raise NotFound("Studio not found")
        if not is_admin(profile) and profile["id"] not in owners:
            raise Forbidden("You can only record payments for your own students or classes")

        payment = insert_payment(
            s,
            student_id=student_id,
            amount=amount,
            method=method,
            class_id=class_id,
            studio_id=studio_id,
            notes=str_or_none(data.get("notes")),
            transaction_date=to_iso(data.get("transaction_date")),
            requested_by=profile["id"],
        )
    log.info(f"✅ Payment {payment['id']} recorded: {amount:.2f} via {method}")
    return jsonify({"ok": True, "payment": payment}), 201


@bp.route("/<payment_id>", methods=["PATCH"])
@requires("instructor")
def update_payment(payment_id):
    data = json_body()
    updates = {}
    if "payment_status" in data:
        if data["payment_status"] not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
        updates["payment_status"] = data["payment_status"]
    if "notes" in data:
        updates["notes"] = str_or_none(data["notes"])
    if not updates:
        raise ValidationError("No updatable fields provided")

    updates["updated_at"] = now_iso()
    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with get_session() as s:
        if not manages_payment(current_profile(), _fetch_with_owners(s, payment_id)):
            raise Forbidden("You can only modify payments for your own students or classes")
        s.execute(text(f"UPDATE payments SET {assignments} WHERE id = :id"), {**updates, "id": payment_id})
        payment = serialize_row(_fetch(s, payment_id))
    return jsonify({"ok": True, "payment": payment})


@bp.route("/<payment_id>/confirm", methods=["POST"])
@requires("instructor", "studio")
def confirm_payment(payment_id):
    profile = current_profile()
    ts = now_iso()
    with get_session() as s:
        row = _fetch_with_owners(s, payment_id)
        if has_instructor_privileges(profile):
            if not manages_payment(profile, row):
                raise Forbidden("You can only confirm payments for your own students or classes")
            stamp = "confirmed_by_instructor_at"
        else:
            if not owns_payment_studio(profile, row):
                raise Forbidden("You can only confirm payments for your own studios")
            stamp = "confirmed_by_studio_at"

        s.execute(
            text(f"""
                UPDATE payments
                SET payment_status = 'confirmed', {stamp} = :ts, updated_at = :ts
                WHERE id = :id
            """),
            {"ts": ts, "id": payment_id},
        )
        payment = serialize_row(_fetch(s, payment_id))
    log.info(f"✅ Payment {payment_id} confirmed by {profile['role']} {profile['id']}")
    return jsonify({"ok": True, "payment": payment})


# ── Studio view ──────────────────────────────────────────────────────────────
@studio_bp.route("/payments", methods=["GET"])
@requires("studio")
def studio_payments():
    profile = current_profile()
    clauses, params = [], {}
    if not is_admin(profile):
        clauses.append(STUDIO_SCOPE)
        params["owner"] = profile["id"]
    if request.args.get("status"):
        clauses.append("p.payment_status = :status")
        params["status"] = request.args["status"]
    return _list(clauses, params)


@studio_bp.route("/payments", methods=["POST"])
@requires("studio")
def create_studio_payment():
    """A studio records a payment it received; the studio side is pre-confirmed."""
    profile = current_profile()
    data = json_body()
    student_id = str_or_none(data.get("student_id"))
    if not student_id or data.get("amount") in (None, "") or not data.get("payment_method"):
        raise ValidationError("Missing required fields: student_id, amount, payment_method")
    amount, method = validate_amount_and_method(data)
    studio_id = str_or_none(data.get("studio_id"))

    with get_session() as s:
        if not s.execute(text("SELECT id FROM students WHERE id = :id"), {"id": student_id}).first():
            raise NotFound("Student not found")
        if studio_id:
            studio = s.execute(
                text("SELECT id, owner_id FROM studios WHERE id = :id"), {"id": studio_id}
            ).mappings().first()
            if not studio:
                raise NotFound("Studio not found")
            if not is_admin(profile) and studio["owner_id"] != profile["id"]:
                raise Forbidden("You can only record payments for your own studios")
        else:
            studio_id = s.execute(
                text("""
                    SELECT id FROM studios
                    WHERE owner_id = :owner AND is_active = :active
                    ORDER BY created_at LIMIT 1
                """),
                {"owner": profile["id"], "active": True},
            ).scalar()
            if not studio_id:
                raise ValidationError("studio_id is required")

        payment = insert_payment(
            s,
            student_id=student_id,
            amount=amount,
            method=method,
            studio_id=studio_id,
            notes=str_or_none(data.get("notes")),
            confirmed_by_studio_at=now_iso(),
        )
    log.info(f"✅ Studio payment {payment['id']} recorded by {profile['id']}: {amount:.2f}")
    return jsonify({"ok": True, "payment": payment}), 201
