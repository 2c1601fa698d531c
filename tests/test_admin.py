"""
Tests for the admin console, instructor access requests, students and studios.
"""
import pytest


class TestAccessRequests:
    def _submit(self, client, **overrides):
        payload = {"full_name": "New Teacher", "email": "teach@example.com", "message": "I teach tap"}
        payload.update(overrides)
        return client.post("/instructor-access-request", json=payload)

    def test_submit_and_duplicate_pending(self, client):
        assert self._submit(client).status_code == 201
        res = self._submit(client)
        assert res.status_code == 409

    def test_approved_is_conflict(self, client, admin):
        req = self._submit(client).get_json()["request"]
        client.patch(f"/admin/instructor-requests/{req['id']}", json={"status": "approved"}, headers=admin["headers"])
        assert self._submit(client).status_code == 409

    def test_rejected_resets_to_pending(self, client, admin):
        req = self._submit(client).get_json()["request"]
        res = client.patch(
            f"/admin/instructor-requests/{req['id']}",
            json={"status": "rejected", "admin_notes": "Need references"},
            headers=admin["headers"],
        )
        reviewed = res.get_json()["request"]
        assert reviewed["reviewed_by"] == admin["id"]
        assert reviewed["reviewed_at"]

        again = self._submit(client, message="Here are references").get_json()["request"]
        assert again["id"] == req["id"]
        assert again["status"] == "pending"
        assert again["message"] == "Here are references"
        assert again["admin_notes"] is None

    def test_invalid_email(self, client):
        assert self._submit(client, email="nope").status_code == 400

    def test_review_status_validated(self, client, admin):
        req = self._submit(client).get_json()["request"]
        res = client.patch(f"/admin/instructor-requests/{req['id']}", json={"status": "pending"}, headers=admin["headers"])
        assert res.status_code == 400

    def test_list_filter(self, client, admin):
        self._submit(client)
        assert len(client.get("/admin/instructor-requests?status=pending", headers=admin["headers"]).get_json()["requests"]) == 1
        assert client.get("/admin/instructor-requests?status=approved", headers=admin["headers"]).get_json()["requests"] == []


class TestUsersAndStats:
    def test_change_role(self, client, admin, dancer):
        res = client.patch(f"/admin/users/{dancer['id']}", json={"role": "instructor"}, headers=admin["headers"])
        assert res.get_json()["user"]["role"] == "instructor"
        assert client.get("/students", headers=dancer["headers"]).status_code == 200

    def test_unknown_role(self, client, admin, dancer):
        assert client.patch(f"/admin/users/{dancer['id']}", json={"role": "wizard"}, headers=admin["headers"]).status_code == 400

    def test_list_by_role(self, client, admin, dancer, instructor):
        users = client.get("/admin/users?role=dancer", headers=admin["headers"]).get_json()["users"]
        assert [u["id"] for u in users] == [dancer["id"]]

    def test_stats(self, client, admin, dancer, instructor):
        stats = client.get("/admin/stats", headers=admin["headers"]).get_json()["stats"]
        assert stats["profiles_by_role"]["dancer"] == 1
        assert stats["profiles_by_role"]["admin"] == 1
        assert stats["students"] == 1

    def test_seed_packs(self, client, admin):
        res = client.post("/admin/seed-lesson-packs", headers=admin["headers"])
        assert res.get_json()["created_count"] == 3
        res = client.post("/admin/seed-lesson-packs", headers=admin["headers"])
        assert res.get_json()["created_count"] == 0
        assert len(res.get_json()["packs"]) == 3

    def test_non_admin_blocked(self, client, instructor):
        assert client.get("/admin/users", headers=instructor["headers"]).status_code == 403


class TestStudents:
    def test_crud_and_search(self, client, instructor):
        created = client.post(
            "/students", json={"full_name": "Lena Park", "email": "LENA@example.com", "skill_level": "beginner"},
            headers=instructor["headers"],
        ).get_json()["student"]
        assert created["instructor_id"] == instructor["id"]
        assert created["email"] == "lena@example.com"

        found = client.get("/students?search=lena", headers=instructor["headers"]).get_json()["students"]
        assert [s["id"] for s in found] == [created["id"]]

        detail = client.get(f"/students/{created['id']}", headers=instructor["headers"]).get_json()
        assert detail["lesson_pack_balance"] == 0
        assert detail["classes"] == []

        client.patch(f"/students/{created['id']}", json={"skill_level": "intermediate"}, headers=instructor["headers"])
        client.delete(f"/students/{created['id']}", headers=instructor["headers"])
        inactive = client.get("/students?is_active=false", headers=instructor["headers"]).get_json()["students"]
        assert inactive[0]["skill_level"] == "intermediate"
        assert inactive[0]["is_active"] is False

    @pytest.mark.parametrize("payload", [{}, {"full_name": "X", "email": "bad"}])
    def test_invalid(self, client, instructor, payload):
        assert client.post("/students", json=payload, headers=instructor["headers"]).status_code == 400


class TestStudios:
    def test_create_and_list(self, client, instructor, dancer):
        res = client.post("/studios", json={"name": "Northside", "city": "Austin"}, headers=instructor["headers"])
        assert res.status_code == 201
        studios = client.get("/studios", headers=dancer["headers"]).get_json()["studios"]
        assert [s["name"] for s in studios] == ["Northside"]

    def test_name_required(self, client, instructor):
        assert client.post("/studios", json={"city": "Austin"}, headers=instructor["headers"]).status_code == 400

    def test_dancer_cannot_create(self, client, dancer):
        assert client.post("/studios", json={"name": "X"}, headers=dancer["headers"]).status_code == 403
