"""
Tests for dancer self-service: enrollment, lesson packs, lesson requests.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from portal_backend.app.db import get_session
from portal_backend.app.utils import new_id, now_iso


@pytest.fixture
def public_class(client, instructor):
    def _create(hours=24, **overrides):
        start = datetime.now(timezone.utc) + timedelta(hours=hours)
        payload = {
            "title": "Open Jazz",
            "class_type": "workshop",
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=1)).isoformat(),
            "is_public": True,
            "pricing_model": "per_class",
            "base_cost": 60,
        }
        payload.update(overrides)
        res = client.post("/classes", json=payload, headers=instructor["headers"])
        assert res.status_code == 201
        return res.get_json()["class"]

    return _create


class TestSelfEnrollment:
    def test_public_classes_show_spots_left(self, client, dancer, public_class):
        public_class(max_capacity=5)
        public_class(title="Private Coaching", is_public=False)
        classes = client.get("/dancer/public-classes", headers=dancer["headers"]).get_json()["classes"]
        assert [c["title"] for c in classes] == ["Open Jazz"]
        assert classes[0]["spots_left"] == 5

    def test_enroll_then_listed(self, client, dancer, public_class):
        cls = public_class()
        res = client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=dancer["headers"])
        assert res.status_code == 201
        mine = client.get("/dancer/classes", headers=dancer["headers"]).get_json()["classes"]
        assert [c["id"] for c in mine] == [cls["id"]]

    def test_enroll_twice_is_400(self, client, dancer, public_class):
        cls = public_class()
        client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=dancer["headers"])
        res = client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=dancer["headers"])
        assert res.status_code == 400

    def test_non_public_is_403(self, client, dancer, public_class):
        cls = public_class(is_public=False)
        assert client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=dancer["headers"]).status_code == 403

    def test_missing_class_is_404(self, client, dancer):
        assert client.post("/dancer/enroll", json={"class_id": "nope"}, headers=dancer["headers"]).status_code == 404

    def test_past_class_is_400(self, client, dancer, public_class):
        cls = public_class(hours=-5)
        assert client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=dancer["headers"]).status_code == 400

    def test_cancelled_class_is_400(self, client, dancer, instructor, public_class):
        cls = public_class()
        client.patch(f"/classes/{cls['id']}", json={"is_cancelled": True}, headers=instructor["headers"])
        assert client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=dancer["headers"]).status_code == 400

    def test_full_class_is_400(self, client, make_user, public_class):
        cls = public_class(max_capacity=1)
        first, second = make_user("dancer"), make_user("dancer")
        assert client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=first["headers"]).status_code == 201
        assert client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=second["headers"]).status_code == 400

    def test_instructor_without_student_record(self, client, instructor):
        assert client.get("/dancer/classes", headers=instructor["headers"]).status_code == 403


class TestLessonPackRoutes:
    def test_purchase_spend_history(self, client, dancer, packs):
        res = client.get("/dancer/lesson-packs", headers=dancer["headers"])
        assert len(res.get_json()["packs"]) == 3

        res = client.post("/dancer/lesson-packs/purchase", json={"lesson_pack_id": packs[2]["id"]}, headers=dancer["headers"])
        assert res.status_code == 201
        purchase = res.get_json()["purchase"]

        for expected in (1, 0):
            res = client.post(
                "/dancer/lesson-packs/spend",
                json={"lesson_pack_purchase_id": purchase["id"]},
                headers=dancer["headers"],
            )
            assert res.status_code == 200
            assert res.get_json()["purchase"]["remaining_lessons"] == expected

        res = client.post(
            "/dancer/lesson-packs/spend", json={"lesson_pack_purchase_id": purchase["id"]}, headers=dancer["headers"]
        )
        assert res.status_code == 400
        assert res.get_json()["error"] == "No lessons remaining in this pack"

        history = client.get("/dancer/lesson-packs/history", headers=dancer["headers"]).get_json()
        assert history["total_remaining"] == 0
        assert len(history["usage"]) == 2

    def test_spend_someone_elses_pack(self, client, make_user, packs):
        owner, thief = make_user("dancer"), make_user("dancer")
        purchase = client.post(
            "/dancer/lesson-packs/purchase", json={"lesson_pack_id": packs[5]["id"]}, headers=owner["headers"]
        ).get_json()["purchase"]
        res = client.post(
            "/dancer/lesson-packs/spend", json={"lesson_pack_purchase_id": purchase["id"]}, headers=thief["headers"]
        )
        assert res.status_code == 403

    def test_spend_linked_to_lesson_request(self, client, dancer, packs):
        lesson_request = client.post(
            "/dancer/lesson-requests",
            json={"requested_focus": "Turns", "preferred_dates": ["2026-11-02"]},
            headers=dancer["headers"],
        ).get_json()["request"]
        purchase = client.post(
            "/dancer/lesson-packs/purchase", json={"lesson_pack_id": packs[2]["id"]}, headers=dancer["headers"]
        ).get_json()["purchase"]
        client.post(
            "/dancer/lesson-packs/spend",
            json={"lesson_pack_purchase_id": purchase["id"], "private_lesson_request_id": lesson_request["id"]},
            headers=dancer["headers"],
        )
        usage = client.get("/dancer/lesson-packs/history", headers=dancer["headers"]).get_json()["usage"]
        assert usage[0]["private_lesson_request"]["requested_focus"] == "Turns"


class TestLessonRequests:
    def test_create_and_list(self, client, dancer):
        res = client.post(
            "/dancer/lesson-requests",
            json={"requested_focus": "Leaps", "preferred_dates": ["Mon", "Wed"], "additional_notes": "after 5pm"},
            headers=dancer["headers"],
        )
        assert res.status_code == 201
        assert res.get_json()["request"]["preferred_dates"] == ["Mon", "Wed"]
        assert res.get_json()["request"]["status"] == "pending"

        listed = client.get("/dancer/lesson-requests", headers=dancer["headers"]).get_json()["requests"]
        assert len(listed) == 1

    def test_focus_required(self, client, dancer):
        assert client.post("/dancer/lesson-requests", json={}, headers=dancer["headers"]).status_code == 400

    def test_instructor_updates_status(self, client, dancer, instructor):
        req = client.post(
            "/dancer/lesson-requests", json={"requested_focus": "Spins"}, headers=dancer["headers"]
        ).get_json()["request"]

        listed = client.get("/instructor/requests", headers=instructor["headers"]).get_json()["requests"]
        assert listed[0]["student"]["full_name"] == dancer["full_name"]

        res = client.put(
            "/instructor/requests",
            json={"id": req["id"], "status": "approved", "instructor_response": "See you Tuesday"},
            headers=instructor["headers"],
        )
        assert res.status_code == 200
        assert res.get_json()["request"]["status"] == "approved"

        bad = client.put("/instructor/requests", json={"id": req["id"], "status": "maybe"}, headers=instructor["headers"])
        assert bad.status_code == 400


class TestDancerPayments:
    def test_totals(self, client, dancer, instructor, assign_student):
        assign_student(dancer["student_id"], instructor["id"])
        for amount in (40, 60):
            client.post("/payments", json={"student_id": dancer["student_id"], "amount": amount}, headers=instructor["headers"])
        body = client.get("/dancer/payments", headers=dancer["headers"]).get_json()
        assert len(body["payments"]) == 2
        assert body["totals"] == {"paid": 0.0, "pending": 100.0}


class TestDancerStats:
    def test_counts_and_lists(self, client, app, dancer, instructor, public_class):
        for hours in (24, 48):
            cls = public_class(hours=hours)
            client.post("/dancer/enroll", json={"class_id": cls["id"]}, headers=dancer["headers"])
        past = (datetime.now(timezone.utc) - timedelta(days=3)).isoformat()
        with get_session() as s:
            s.execute(
                text("""
                    INSERT INTO classes (id, instructor_id, class_type, title, start_time, end_time,
                                         is_public, pricing_model, is_cancelled, created_at, updated_at)
                    VALUES (:id, :iid, 'group', 'Last Week', :st, :st, :p, 'per_person', :c, :ts, :ts)
                """),
                {"id": "past-class", "iid": instructor["id"], "st": past, "p": False, "c": False, "ts": now_iso()},
            )
            s.execute(
                text("INSERT INTO enrollments (id, student_id, class_id, enrolled_at) VALUES (:id, :sid, 'past-class', :ts)"),
                {"id": new_id(), "sid": dancer["student_id"], "ts": now_iso()},
            )
            for visibility, author in (("shared_with_student", instructor["id"]), ("private", instructor["id"]),
                                       ("shared_with_student", dancer["id"])):
                s.execute(
                    text("""
                        INSERT INTO notes (id, author_id, student_id, content, visibility, created_at, updated_at)
                        VALUES (:id, :aid, :sid, 'Keep your frame', :v, :ts, :ts)
                    """),
                    {"id": new_id(), "aid": author, "sid": dancer["student_id"], "v": visibility, "ts": now_iso()},
                )

        body = client.get("/dancer/stats", headers=dancer["headers"]).get_json()
        assert body["stats"] == {"upcoming_classes": 2, "total_classes_attended": 1, "recent_notes": 1}
        assert [c["title"] for c in body["upcoming_classes"]] == ["Open Jazz", "Open Jazz"]
        assert body["recent_notes"][0]["author_name"] == instructor["full_name"]

    def test_instructor_is_forbidden(self, client, instructor):
        assert client.get("/dancer/stats", headers=instructor["headers"]).status_code == 403
