"""
lesson_packs.py – Lesson-pack ledger
────────────────────────────────────────────────────────────
A purchase starts with remaining_lessons = lesson_count and is
only ever decremented, one lesson per usage row, never below 0.

 • purchase_pack()    → direct purchase or Stripe webhook confirmation
 • spend_lesson()     → conditional decrement + usage row, one transaction
 • purchase_history() → purchases, usage log and total remaining
────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .db import get_session
from .settings import DEFAULT_LESSON_PACKS
from .utils import new_id, now_iso, serialize_row, serialize_rows
from .utils.error_handler import Forbidden, NotFound, ValidationError

log = logging.getLogger(__name__)

PURCHASE_COLUMNS = """
    id, student_id, lesson_pack_id, instructor_id, remaining_lessons,
    stripe_checkout_session_id, purchased_at
"""


# ──────────────────────────────────────────────
# Packs
# ──────────────────────────────────────────────
def list_packs(active_only: bool = True) -> List[Dict[str, Any]]:
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT id, name, lesson_count, price, is_active, created_at
                FROM lesson_packs
                {"WHERE is_active = :active" if active_only else ""}
                ORDER BY lesson_count ASC
            """),
            {"active": True} if active_only else {},
        ).mappings().all()
        return serialize_rows(rows)


def get_pack(pack_id: str) -> Optional[Dict[str, Any]]:
    with get_session() as s:
        row = s.execute(
            text("SELECT id, name, lesson_count, price, is_active FROM lesson_packs WHERE id = :id"),
            {"id": pack_id},
        ).mappings().first()
        return serialize_row(row)


def seed_default_packs() -> List[Dict[str, Any]]:
    """Insert any default pack that is missing (matched by name)."""
    created = []
    with get_session() as s:
        for pack in DEFAULT_LESSON_PACKS:
            exists = s.execute(
                text("SELECT id FROM lesson_packs WHERE name = :nm"), {"nm": pack["name"]}
            ).first()
            if exists:
                continue
            row = {"id": new_id(), **pack, "is_active": True, "created_at": now_iso()}
            s.execute(
                text("""
                    INSERT INTO lesson_packs (id, name, lesson_count, price, is_active, created_at)
                    VALUES (:id, :name, :lesson_count, :price, :is_active, :created_at)
                """),
                row,
            )
            created.append(row)
            log.info(f"✅ Created pack: {pack['name']}")
    return created


# ──────────────────────────────────────────────
# Purchases
# ──────────────────────────────────────────────
def _fetch_purchase(s, purchase_id: str):
    return s.execute(
        text(f"SELECT {PURCHASE_COLUMNS} FROM lesson_pack_purchases WHERE id = :id"),
        {"id": purchase_id},
    ).mappings().first()


def list_purchases(student_id: str) -> List[Dict[str, Any]]:
    with get_session() as s:
        rows = s.execute(
            text(f"""
                SELECT {PURCHASE_COLUMNS}
                FROM lesson_pack_purchases
                WHERE student_id = :sid
                ORDER BY purchased_at DESC
            """),
            {"sid": student_id},
        ).mappings().all()
        return serialize_rows(rows)


def _purchase_for_session(s, checkout_session_id: str):
    return s.execute(
        text(f"""
            SELECT {PURCHASE_COLUMNS} FROM lesson_pack_purchases
            WHERE stripe_checkout_session_id = :cs
        """),
        {"cs": checkout_session_id},
    ).mappings().first()


def purchase_pack(
    student_id: str,
    pack_id: str,
    checkout_session_id: Optional[str] = None,
    instructor_id: Optional[str] = None,
    lesson_count: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Create a purchase with the pack's full lesson count.

    With a checkout_session_id the purchase has already been paid for:
    the call is idempotent (a replayed webhook returns the purchase that
    session created), a pack deactivated since checkout is still credited,
    and lesson_count (from the checkout metadata) wins over the pack's
    current count.
    """
    try:
        with get_session() as s:
            pack = s.execute(
                text("SELECT id, lesson_count, is_active FROM lesson_packs WHERE id = :id"),
                {"id": pack_id},
            ).mappings().first()
            if not pack or (not pack["is_active"] and not checkout_session_id):
                raise NotFound("Lesson pack not found")

            if checkout_session_id:
                existing = _purchase_for_session(s, checkout_session_id)
                if existing:
                    log.info(f"[ledger] checkout {checkout_session_id} already recorded → {existing['id']}")
                    return serialize_row(existing)

            remaining = int(pack["lesson_count"])
            if checkout_session_id and lesson_count:
                remaining = int(lesson_count)

            purchase_id = new_id()
            s.execute(
                text("""
                    INSERT INTO lesson_pack_purchases
                        (id, student_id, lesson_pack_id, instructor_id, remaining_lessons,
                         stripe_checkout_session_id, purchased_at)
                    VALUES (:id, :sid, :pid, :iid, :remaining, :cs, :ts)
                """),
                {
                    "id": purchase_id,
                    "sid": student_id,
                    "pid": pack_id,
                    "iid": instructor_id,
                    "remaining": remaining,
                    "cs": checkout_session_id,
                    "ts": now_iso(),
                },
            )
            purchase = serialize_row(_fetch_purchase(s, purchase_id))
    except IntegrityError:
        # a concurrent delivery of the same checkout won the unique constraint
        if not checkout_session_id:
            raise
        with get_session() as s:
            existing = _purchase_for_session(s, checkout_session_id)
        if not existing:
            raise
        log.info(f"[ledger] checkout {checkout_session_id} recorded concurrently → {existing['id']}")
        return serialize_row(existing)

    log.info(f"✅ Lesson pack purchase {purchase_id} → student {student_id} ({purchase['remaining_lessons']} lessons)")
    return purchase


def spend_lesson(
    purchase_id: str,
    student_id: str,
    lesson_request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Consume one lesson. The balance check and decrement are a single
    conditional UPDATE, so concurrent spenders can never drive it below 0.
    A linked private lesson request must belong to the same student.
    """
    with get_session() as s:
        purchase = _fetch_purchase(s, purchase_id)
        if not purchase:
            raise NotFound("Purchase not found")
        if purchase["student_id"] != student_id:
            raise Forbidden("Unauthorized")

        if lesson_request_id:
            owner = s.execute(
                text("SELECT student_id FROM private_lesson_requests WHERE id = :id"),
                {"id": lesson_request_id},
            ).scalar()
            if owner is None:
                raise NotFound("Lesson request not found")
            if owner != student_id:
                raise Forbidden("Lesson request belongs to another student")

        result = s.execute(
            text("""
                UPDATE lesson_pack_purchases
                SET remaining_lessons = remaining_lessons - 1
                WHERE id = :id
                  AND student_id = :sid
                  AND remaining_lessons > 0
            """),
            {"id": purchase_id, "sid": student_id},
        )
        if result.rowcount != 1:
            raise ValidationError("No lessons remaining in this pack")

        usage_id = new_id()
        s.execute(
            text("""
                INSERT INTO lesson_pack_usage
                    (id, lesson_pack_purchase_id, private_lesson_request_id, lessons_used, used_at)
                VALUES (:id, :pid, :rid, 1, :ts)
            """),
            {"id": usage_id, "pid": purchase_id, "rid": lesson_request_id, "ts": now_iso()},
        )

        usage = s.execute(
            text("""
                SELECT id, lesson_pack_purchase_id, private_lesson_request_id, lessons_used, used_at
                FROM lesson_pack_usage WHERE id = :id
            """),
            {"id": usage_id},
        ).mappings().first()
        updated = _fetch_purchase(s, purchase_id)
        out = {"usage": serialize_row(usage), "purchase": serialize_row(updated)}

    log.info(f"[ledger] spend {purchase_id} → {out['purchase']['remaining_lessons']} left")
    return out


def purchase_history(student_id: str) -> Dict[str, Any]:
    """All purchases (with pack info), every usage row and the total still available."""
    with get_session() as s:
        rows = s.execute(
            text("""
                SELECT p.id, p.student_id, p.lesson_pack_id, p.remaining_lessons, p.purchased_at,
                       lp.name AS pack_name, lp.lesson_count AS pack_lesson_count, lp.price AS pack_price
                FROM lesson_pack_purchases p
                JOIN lesson_packs lp ON lp.id = p.lesson_pack_id
                WHERE p.student_id = :sid
                ORDER BY p.purchased_at DESC
            """),
            {"sid": student_id},
        ).mappings().all()

        purchases = []
        for r in serialize_rows(rows):
            purchases.append({
                "id": r["id"],
                "student_id": r["student_id"],
                "lesson_pack_id": r["lesson_pack_id"],
                "remaining_lessons": r["remaining_lessons"],
                "purchased_at": r["purchased_at"],
                "lesson_pack": {
                    "id": r["lesson_pack_id"],
                    "name": r["pack_name"],
                    "lesson_count": r["pack_lesson_count"],
                    "price": r["pack_price"],
                },
            })

        usage = []
        if purchases:
            usage_rows = s.execute(
                text("""
                    SELECT u.id, u.lesson_pack_purchase_id, u.private_lesson_request_id,
                           u.lessons_used, u.used_at,
                           r.status AS request_status, r.requested_focus AS request_focus,
                           r.created_at AS request_created_at
                    FROM lesson_pack_usage u
                    JOIN lesson_pack_purchases p ON p.id = u.lesson_pack_purchase_id
                    LEFT JOIN private_lesson_requests r ON r.id = u.private_lesson_request_id
                    WHERE p.student_id = :sid
                    ORDER BY u.used_at DESC
                """),
                {"sid": student_id},
            ).mappings().all()
            for u in serialize_rows(usage_rows):
                request = None
                if u["private_lesson_request_id"]:
                    request = {
                        "id": u["private_lesson_request_id"],
                        "status": u["request_status"],
                        "requested_focus": u["request_focus"],
                        "created_at": u["request_created_at"],
                    }
                usage.append({
                    "id": u["id"],
                    "lesson_pack_purchase_id": u["lesson_pack_purchase_id"],
                    "private_lesson_request_id": u["private_lesson_request_id"],
                    "lessons_used": u["lessons_used"],
                    "used_at": u["used_at"],
                    "private_lesson_request": request,
                })

    total_remaining = sum(int(p["remaining_lessons"] or 0) for p in purchases)
    return {"purchases": purchases, "usage": usage, "total_remaining": total_remaining}


def total_remaining(student_id: str) -> int:
    with get_session() as s:
        value = s.execute(
            text("SELECT COALESCE(SUM(remaining_lessons), 0) FROM lesson_pack_purchases WHERE student_id = :sid"),
            {"sid": student_id},
        ).scalar()
    return int(value or 0)
