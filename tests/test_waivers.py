"""
Tests for waiver templates, issuing and signing.
"""
import base64
import os

import pytest
from sqlalchemy.exc import SQLAlchemyError

from portal_backend.app import waivers_router

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


@pytest.fixture
def waiver(client, instructor, dancer):
    res = client.post("/waivers", json={
        "title": "Liability Waiver",
        "content": "Issued {{issue_date}} by {{issuer_name}} to {{recipient_name}}. Signed {{signature_date}}.",
        "recipient_type": "dancer",
        "student_id": dancer["student_id"],
    }, headers=instructor["headers"])
    assert res.status_code == 201
    return res.get_json()["waiver"]


def _sign(client, waiver_id, headers, **overrides):
    payload = {"signature_image": PNG_DATA_URL, "signer_name": "Test Dancer", "signer_email": "d@example.com"}
    payload.update(overrides)
    return client.post(f"/waivers/{waiver_id}/sign", json=payload, headers=headers)


class TestTemplates:
    def test_template_lifecycle(self, client, instructor):
        res = client.post("/waiver-templates", json={"title": "Photo Release", "content": "..."}, headers=instructor["headers"])
        assert res.status_code == 201
        template = res.get_json()["template"]

        res = client.patch(f"/waiver-templates/{template['id']}", json={"title": "Media Release"}, headers=instructor["headers"])
        assert res.get_json()["template"]["title"] == "Media Release"

        client.delete(f"/waiver-templates/{template['id']}", headers=instructor["headers"])
        listed = client.get("/waiver-templates", headers=instructor["headers"]).get_json()["templates"]
        assert listed == []

    def test_title_and_content_required(self, client, instructor):
        assert client.post("/waiver-templates", json={"title": "x"}, headers=instructor["headers"]).status_code == 400


class TestIssue:
    def test_placeholders_filled_and_student_profile_becomes_recipient(self, waiver, instructor, dancer):
        assert waiver["recipient_id"] == dancer["id"]
        assert waiver["status"] == "pending"
        assert "{{issue_date}}" not in waiver["content"]
        assert f"by {instructor['full_name']}" in waiver["content"]
        assert f"to {dancer['full_name']}" in waiver["content"]
        assert "{{signature_date}}" in waiver["content"]

    def test_recipient_required(self, client, instructor):
        res = client.post("/waivers", json={"title": "t", "content": "c", "recipient_type": "dancer"},
                          headers=instructor["headers"])
        assert res.status_code == 400

    def test_dancer_cannot_issue(self, client, dancer):
        res = client.post("/waivers", json={"title": "t", "content": "c", "recipient_type": "dancer",
                                            "recipient_id": dancer["id"]}, headers=dancer["headers"])
        assert res.status_code == 403

    def test_visibility(self, client, waiver, dancer, make_user):
        assert client.get(f"/waivers/{waiver['id']}", headers=dancer["headers"]).status_code == 200
        stranger = make_user("dancer")
        assert client.get(f"/waivers/{waiver['id']}", headers=stranger["headers"]).status_code == 403
        assert [w["id"] for w in client.get("/waivers", headers=dancer["headers"]).get_json()["waivers"]] == [waiver["id"]]


class TestSign:
    def test_recipient_signs(self, app, client, waiver, dancer):
        res = _sign(client, waiver["id"], dancer["headers"])
        assert res.status_code == 200
        signed = res.get_json()["waiver"]
        assert signed["status"] == "signed"
        assert signed["signed_by_id"] == dancer["id"]
        assert "{{signature_date}}" not in signed["content"]

        filename = signed["signature_image_url"].rsplit("/", 1)[-1]
        assert os.path.isfile(os.path.join(app.config["SIGNATURE_DIR"], filename))

        image = client.get(f"/waivers/signatures/{filename}", headers=dancer["headers"])
        assert image.status_code == 200
        assert image.data == PNG_BYTES

        detail = client.get(f"/waivers/{waiver['id']}", headers=dancer["headers"]).get_json()["waiver"]
        assert detail["signatures"][0]["signer_name"] == "Test Dancer"

    def test_only_recipient(self, client, waiver, instructor):
        assert _sign(client, waiver["id"], instructor["headers"]).status_code == 403

    def test_cannot_sign_twice(self, client, waiver, dancer):
        _sign(client, waiver["id"], dancer["headers"])
        res = _sign(client, waiver["id"], dancer["headers"])
        assert res.status_code == 400

    def test_expired(self, client, instructor, dancer):
        waiver = client.post("/waivers", json={
            "title": "Old", "content": "c", "recipient_type": "dancer",
            "recipient_id": dancer["id"], "expires_at": "2020-01-01T00:00:00Z",
        }, headers=instructor["headers"]).get_json()["waiver"]
        res = _sign(client, waiver["id"], dancer["headers"])
        assert res.status_code == 400
        assert res.get_json()["error"] == "Waiver has expired"

    @pytest.mark.parametrize("image", ["not-a-data-url", "data:image/png;base64,!!!", "data:image/png;base64,aGVsbG8="])
    def test_bad_signature_image(self, client, waiver, dancer, image):
        assert _sign(client, waiver["id"], dancer["headers"], signature_image=image).status_code == 400

    def test_missing_fields(self, client, waiver, dancer):
        assert _sign(client, waiver["id"], dancer["headers"], signer_name="").status_code == 400

    def test_unknown_signature_file(self, client, dancer):
        assert client.get("/waivers/signatures/nothing.png", headers=dancer["headers"]).status_code == 404

    def test_failed_save_leaves_no_signature_file(self, app, client, waiver, dancer, monkeypatch):
        real_fetch = waivers_router._fetch
        calls = []

        def flaky_fetch(s, waiver_id):
            calls.append(waiver_id)
            if len(calls) > 1:
                raise SQLAlchemyError("connection dropped")
            return real_fetch(s, waiver_id)

        monkeypatch.setattr(waivers_router, "_fetch", flaky_fetch)
        res = _sign(client, waiver["id"], dancer["headers"])
        assert res.status_code == 500
        monkeypatch.undo()

        sig_dir = app.config["SIGNATURE_DIR"]
        assert not os.path.isdir(sig_dir) or os.listdir(sig_dir) == []
        detail = client.get(f"/waivers/{waiver['id']}", headers=dancer["headers"]).get_json()["waiver"]
        assert detail["status"] == "pending"
        assert detail["signatures"] == []
