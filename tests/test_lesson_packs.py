"""
Tests for the lesson-pack ledger.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import text

from portal_backend.app import lesson_packs
from portal_backend.app.db import get_session
from portal_backend.app.utils import new_id, now_iso
from portal_backend.app.utils.error_handler import Forbidden, NotFound, ValidationError


def _lesson_request(student_id):
    request_id = new_id()
    with get_session() as s:
        s.execute(
            text("""
                INSERT INTO private_lesson_requests (id, student_id, status, created_at, updated_at)
                VALUES (:id, :sid, 'pending', :ts, :ts)
            """),
            {"id": request_id, "sid": student_id, "ts": now_iso()},
        )
    return request_id


class TestSeeding:
    def test_seed_is_idempotent(self, app):
        first = lesson_packs.seed_default_packs()
        second = lesson_packs.seed_default_packs()
        assert len(first) == 3
        assert second == []
        assert [p["lesson_count"] for p in lesson_packs.list_packs()] == [2, 5, 10]


class TestPurchase:
    def test_purchase_starts_full(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[5]["id"])
        assert purchase["remaining_lessons"] == 5
        assert lesson_packs.total_remaining(dancer["student_id"]) == 5

    def test_unknown_pack(self, dancer, packs):
        with pytest.raises(NotFound):
            lesson_packs.purchase_pack(dancer["student_id"], "missing")

    def test_checkout_session_is_idempotent(self, dancer, packs):
        a = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"], checkout_session_id="cs_1")
        b = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"], checkout_session_id="cs_1")
        assert a["id"] == b["id"]
        assert len(lesson_packs.list_purchases(dancer["student_id"])) == 1

    def test_paid_checkout_credited_after_pack_deactivated(self, dancer, packs):
        with get_session() as s:
            s.execute(text("UPDATE lesson_packs SET is_active = :a WHERE id = :id"), {"a": False, "id": packs[5]["id"]})
        with pytest.raises(NotFound):
            lesson_packs.purchase_pack(dancer["student_id"], packs[5]["id"])
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[5]["id"], checkout_session_id="cs_old")
        assert purchase["remaining_lessons"] == 5

    def test_paid_lesson_count_wins_over_current_pack(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(
            dancer["student_id"], packs[2]["id"], checkout_session_id="cs_repriced", lesson_count=3,
        )
        assert purchase["remaining_lessons"] == 3

    def test_duplicate_checkout_race_returns_winner(self, dancer, packs, monkeypatch):
        winner = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"], checkout_session_id="cs_race")

        real_lookup = lesson_packs._purchase_for_session
        lookups = []

        def lookup_misses_first(s, cs):
            lookups.append(cs)
            return None if len(lookups) == 1 else real_lookup(s, cs)

        monkeypatch.setattr(lesson_packs, "_purchase_for_session", lookup_misses_first)
        loser = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"], checkout_session_id="cs_race")
        assert loser["id"] == winner["id"]
        assert len(lookups) == 2
        assert len(lesson_packs.list_purchases(dancer["student_id"])) == 1


class TestSpend:
    def test_spend_decrements_and_logs_usage(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"])
        result = lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        assert result["purchase"]["remaining_lessons"] == 1
        assert result["usage"]["lessons_used"] == 1

    def test_cannot_spend_below_zero(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"])
        lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        with pytest.raises(ValidationError) as exc:
            lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        assert exc.value.message == "No lessons remaining in this pack"

        with get_session() as s:
            usage = s.execute(
                text("SELECT COUNT(*) FROM lesson_pack_usage WHERE lesson_pack_purchase_id = :id"),
                {"id": purchase["id"]},
            ).scalar()
        assert usage == 2

    def test_other_students_purchase_forbidden(self, make_user, packs):
        owner, other = make_user("dancer"), make_user("dancer")
        purchase = lesson_packs.purchase_pack(owner["student_id"], packs[2]["id"])
        with pytest.raises(Forbidden):
            lesson_packs.spend_lesson(purchase["id"], other["student_id"])

    def test_missing_purchase(self, dancer):
        with pytest.raises(NotFound):
            lesson_packs.spend_lesson("nope", dancer["student_id"])

    def test_lesson_request_must_belong_to_spender(self, make_user, packs):
        owner, other = make_user("dancer"), make_user("dancer")
        purchase = lesson_packs.purchase_pack(owner["student_id"], packs[2]["id"])
        request_id = _lesson_request(other["student_id"])
        with pytest.raises(Forbidden):
            lesson_packs.spend_lesson(purchase["id"], owner["student_id"], lesson_request_id=request_id)
        assert lesson_packs.total_remaining(owner["student_id"]) == 2

    def test_unknown_lesson_request(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"])
        with pytest.raises(NotFound):
            lesson_packs.spend_lesson(purchase["id"], dancer["student_id"], lesson_request_id="nope")

    def test_own_lesson_request_is_linked(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"])
        request_id = _lesson_request(dancer["student_id"])
        result = lesson_packs.spend_lesson(purchase["id"], dancer["student_id"], lesson_request_id=request_id)
        assert result["usage"]["private_lesson_request_id"] == request_id


class TestHistory:
    def test_history_totals_and_nesting(self, dancer, packs):
        p2 = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"])
        lesson_packs.purchase_pack(dancer["student_id"], packs[5]["id"])
        lesson_packs.spend_lesson(p2["id"], dancer["student_id"])

        history = lesson_packs.purchase_history(dancer["student_id"])
        assert history["total_remaining"] == 6
        assert len(history["purchases"]) == 2
        assert {p["lesson_pack"]["lesson_count"] for p in history["purchases"]} == {2, 5}
        assert len(history["usage"]) == 1
        assert history["usage"][0]["private_lesson_request"] is None

    def test_empty_history(self, dancer):
        assert lesson_packs.purchase_history(dancer["student_id"]) == {
            "purchases": [], "usage": [], "total_remaining": 0,
        }


class TestLedgerProperties:
    def test_five_pack_three_spends(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[5]["id"])
        for _ in range(3):
            result = lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        assert result["purchase"]["remaining_lessons"] == 2

        usage = [u for u in lesson_packs.purchase_history(dancer["student_id"])["usage"]
                 if u["lesson_pack_purchase_id"] == purchase["id"]]
        assert len(usage) == 3
        assert sum(u["lessons_used"] for u in usage) == 3

    def test_last_lesson_spends_once(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"])
        lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        with pytest.raises(ValidationError):
            lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
        assert lesson_packs.total_remaining(dancer["student_id"]) == 0

    def test_history_total_matches_purchases(self, dancer, packs):
        for size in (2, 5, 10):
            lesson_packs.purchase_pack(dancer["student_id"], packs[size]["id"])
        history = lesson_packs.purchase_history(dancer["student_id"])
        assert history["total_remaining"] == sum(p["remaining_lessons"] for p in history["purchases"]) == 17

    def test_concurrent_spends_never_overdraw(self, dancer, packs):
        purchase = lesson_packs.purchase_pack(dancer["student_id"], packs[2]["id"])
        start = threading.Barrier(4)

        def spend():
            start.wait()
            try:
                lesson_packs.spend_lesson(purchase["id"], dancer["student_id"])
                return "spent"
            except ValidationError:
                return "empty"

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = sorted(pool.map(lambda _: spend(), range(4)))

        assert outcomes == ["empty", "empty", "spent", "spent"]
        assert lesson_packs.total_remaining(dancer["student_id"]) == 0
        history = lesson_packs.purchase_history(dancer["student_id"])
        assert len(history["usage"]) == 2
