"""
Tests for sign-up / sign-in and the capability gate.
"""
import pytest

from portal_backend.app.auth import has_capability, required_capabilities, requires


class TestSignup:
    def test_dancer_signup_creates_student(self, client):
        res = client.post("/auth/signup", json={
            "email": "Ava@Example.com", "password": "longenough", "full_name": "Ava Dancer", "role": "dancer",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["profile"]["email"] == "ava@example.com"
        assert "password_hash" not in body["profile"]

        headers = {"Authorization": f"Bearer {body['token']}"}
        res = client.get("/dancer/lesson-packs", headers=headers)
        assert res.status_code == 200

    def test_duplicate_email_conflicts(self, client):
        payload = {"email": "dup@example.com", "password": "longenough", "full_name": "Dup"}
        assert client.post("/auth/signup", json=payload).status_code == 201
        res = client.post("/auth/signup", json=payload)
        assert res.status_code == 409
        assert res.get_json() == {"ok": False, "error": "An account with this email already exists"}

    @pytest.mark.parametrize("payload", [
        {"email": "bad", "password": "longenough", "full_name": "X"},
        {"email": "a@b.co", "password": "short", "full_name": "X"},
        {"email": "a@b.co", "password": "longenough"},
        {"email": "a@b.co", "password": "longenough", "full_name": "X", "role": "admin"},
    ])
    def test_invalid_signup(self, client, payload):
        assert client.post("/auth/signup", json=payload).status_code == 400


class TestSignin:
    def test_signin_roundtrip(self, client):
        client.post("/auth/signup", json={
            "email": "teach@example.com", "password": "longenough", "full_name": "Teach", "role": "instructor",
        })
        res = client.post("/auth/signin", json={"email": "teach@example.com", "password": "longenough"})
        assert res.status_code == 200
        token = res.get_json()["token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.get_json()["profile"]["role"] == "instructor"

    def test_wrong_password(self, client):
        client.post("/auth/signup", json={"email": "x@example.com", "password": "longenough", "full_name": "X"})
        res = client.post("/auth/signin", json={"email": "x@example.com", "password": "wrongpass"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid email or password"


class TestGate:
    def test_missing_token_is_401(self, client):
        res = client.get("/students")
        assert res.status_code == 401
        assert res.get_json()["ok"] is False

    def test_garbage_token_is_401(self, client):
        assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_wrong_role_is_403(self, client, dancer):
        assert client.get("/students", headers=dancer["headers"]).status_code == 403

    def test_admin_passes_every_gate(self, client, admin):
        assert client.get("/students", headers=admin["headers"]).status_code == 200
        assert client.get("/studio/payments", headers=admin["headers"]).status_code == 200
        assert client.get("/admin/stats", headers=admin["headers"]).status_code == 200

    def test_public_routes_need_no_token(self, client):
        assert client.get("/health").status_code == 200

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/does-not-exist")
        assert res.status_code == 404
        assert res.get_json()["ok"] is False

    def test_every_view_declares_a_known_capability(self, app):
        known = {"public", "authenticated", "instructor", "dancer", "studio", "admin"}
        for endpoint, view in app.view_functions.items():
            if endpoint == "static":
                continue
            capabilities = required_capabilities(view)
            assert capabilities and set(capabilities) <= known, endpoint

    def test_any_of_capabilities(self, client, studio_user, instructor, dancer):
        payload = {"title": "Liability", "content": "I accept the risks.", "recipient_type": "dancer",
                   "recipient_id": dancer["id"]}
        for user in (studio_user, instructor):
            assert client.post("/waivers", json=payload, headers=user["headers"]).status_code == 201
        res = client.post("/waivers", json=payload, headers=dancer["headers"])
        assert res.status_code == 403
        assert res.get_json()["error"] == "Forbidden: requires instructor or studio privileges"


class TestCapabilityHelpers:
    def test_groups(self):
        assert has_capability({"role": "guardian"}, "dancer")
        assert not has_capability({"role": "studio"}, "instructor")
        assert has_capability({"role": "admin"}, "studio")
        assert not has_capability(None, "authenticated")
        assert has_capability(None, "public")

    def test_unknown_capability_rejected(self):
        with pytest.raises(ValueError):
            requires("wizard")
        with pytest.raises(ValueError):
            requires("instructor", "wizard")
        with pytest.raises(ValueError):
            requires()

    def test_requires_tags_all_capabilities(self):
        @requires("dancer", "instructor")
        def view():
            pass

        assert required_capabilities(view) == ("dancer", "instructor")
        assert required_capabilities(lambda: None) == ("authenticated",)


class TestTokens:
    def test_tampered_token_rejected(self, client, instructor):
        token = instructor["token"]
        tampered = ("B" if token[0] == "A" else "A") + token[1:]
        res = client.get("/auth/me", headers={"Authorization": f"Bearer {tampered}"})
        assert res.status_code == 401

    def test_expired_token_rejected(self, app, instructor):
        from portal_backend.app.tokens import verify_session_token

        with app.app_context():
            assert verify_session_token(instructor["token"]) == instructor["id"]
            assert verify_session_token(instructor["token"], max_age=-1) is None

    def test_token_from_other_secret_rejected(self, app, client, instructor):
        app.config["SECRET_KEY"] = "rotated"
        assert client.get("/auth/me", headers=instructor["headers"]).status_code == 401
