"""
Shared fixtures: a fresh app on a per-test SQLite file plus
helpers for signed-in users of each role.
"""
import pytest
from sqlalchemy import text

from portal_backend.app import create_app
from portal_backend.app.db import get_session
from portal_backend.app.tokens import generate_session_token
from portal_backend.app.utils import new_id, now_iso


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "DATABASE_URL": f"sqlite:///{tmp_path / 'portal.db'}",
        "AUTO_CREATE_TABLES": True,
        "SECRET_KEY": "test-secret",
        "SIGNATURE_DIR": str(tmp_path / "signatures"),
        "PUBLIC_BASE_URL": "http://testserver",
        "STRIPE_SECRET_KEY": "sk_test_123",
        "STRIPE_WEBHOOK_SECRET": "whsec_test",
        "GMAIL_ACCESS_TOKEN": "gmail-token",
        "STUDIO_EMAIL_DOMAIN": "studio.example.com",
        "GOOGLE_PLACES_API_KEY": "places-key",
        "OPENAI_API_KEY": "sk-openai-test",
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create a profile (and a students row for dancers); returns ids + auth headers."""

    def _make(role="instructor", email=None, full_name=None):
        profile_id = new_id()
        ts = now_iso()
        email = email or f"{role}-{profile_id[:8]}@example.com"
        full_name = full_name or f"Test {role.title()}"
        student_id = None
        with get_session() as s:
            s.execute(
                text("""
                    INSERT INTO profiles (id, email, full_name, role, consent_given, created_at, updated_at)
                    VALUES (:id, :em, :nm, :role, :c, :ts, :ts)
                """),
                {"id": profile_id, "em": email, "nm": full_name, "role": role, "c": False, "ts": ts},
            )
            if role == "dancer":
                student_id = new_id()
                s.execute(
                    text("""
                        INSERT INTO students (id, profile_id, full_name, email, is_active, created_at, updated_at)
                        VALUES (:id, :pid, :nm, :em, :a, :ts, :ts)
                    """),
                    {"id": student_id, "pid": profile_id, "nm": full_name, "em": email, "a": True, "ts": ts},
                )
        with app.app_context():
            token = generate_session_token(profile_id)
        return {
            "id": profile_id,
            "email": email,
            "full_name": full_name,
            "student_id": student_id,
            "token": token,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return _make


@pytest.fixture
def instructor(make_user):
    return make_user("instructor")


@pytest.fixture
def dancer(make_user):
    return make_user("dancer")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def studio_user(make_user):
    return make_user("studio")


@pytest.fixture
def packs(app):
    from portal_backend.app.lesson_packs import list_packs, seed_default_packs

    seed_default_packs()
    return {p["lesson_count"]: p for p in list_packs()}


@pytest.fixture
def assign_student(app):
    """Put a student on an instructor's roster."""

    def _assign(student_id, instructor_id):
        with get_session() as s:
            s.execute(
                text("UPDATE students SET instructor_id = :iid WHERE id = :sid"),
                {"iid": instructor_id, "sid": student_id},
            )

    return _assign


@pytest.fixture
def make_studio(app):
    def _make(owner_id=None, name="Downtown"):
        studio_id = new_id()
        with get_session() as s:
            s.execute(
                text("""
                    INSERT INTO studios (id, owner_id, name, address, is_active, created_at, updated_at)
                    VALUES (:id, :owner, :name, '1 Main St', :a, :ts, :ts)
                """),
                {"id": studio_id, "owner": owner_id, "name": name, "a": True, "ts": now_iso()},
            )
        return studio_id

    return _make
