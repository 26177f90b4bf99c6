import pytest

from memberhub.extensions import db as _db
from memberhub.models import User
from memberhub.security.models import UserSession


@pytest.fixture
def member(app):
    c = app.test_client()
    r = c.post("/auth/register", json={"email": "mia@example.com", "password": "password1", "name": "Mia"})
    assert r.status_code == 201
    c.user_id = r.get_json()["user"]["id"]
    r = c.post("/auth/login", json={"email": "mia@example.com", "password": "password1"})
    assert r.status_code == 200
    return c


@pytest.fixture
def admin(app):
    c = app.test_client()
    r = c.post("/auth/login", json={"email": app.config["ADMIN_EMAIL"], "password": app.config["ADMIN_PASSWORD"]})
    assert r.status_code == 200
    return c


def create_item(admin, **fields):
    payload = {"title": "Course", "kind": "course"}
    payload.update(fields)
    r = admin.post("/admin/content", json=payload)
    assert r.status_code == 201, r.get_json()
    return r.get_json()["item"]["id"]


class TestAuthRoutes:
    def test_register_validates_password(self, client):
        r = client.post("/auth/register", json={"email": "x@example.com", "password": "short"})
        assert r.status_code == 400
        r = client.post("/auth/register", json={"email": "x@example.com", "password": "lettersonly"})
        assert r.status_code == 400
        assert "number" in r.get_json()["error"]

    def test_login_returns_session_and_telemetry(self, client, member):
        r = member.get("/auth/me")
        assert r.status_code == 200
        assert r.get_json()["session_id"].startswith("session_")
        r = client.post("/auth/login", json={"email": "mia@example.com", "password": "password1"})
        body = r.get_json()
        assert body["heartbeat_minutes"] == 5
        assert body["session_timeout_minutes"] == 30

    def test_bad_password_is_401(self, client, member):
        r = client.post("/auth/login", json={"email": "mia@example.com", "password": "nope12345"})
        assert r.status_code == 401
        assert r.get_json()["reason"] == "invalid_credentials"

    def test_heartbeat_and_logout(self, app, member):
        assert member.post("/auth/heartbeat").get_json() == {"ok": True}
        assert member.post("/auth/logout").status_code == 200
        assert member.post("/auth/heartbeat").status_code == 401
        with app.app_context():
            s = UserSession.query.filter_by(user_id=member.user_id).one()
            assert s.is_active is False
            assert s.session_duration == 0

    def test_anonymous_requests_get_json_401(self, client):
        r = client.get("/content/")
        assert r.status_code == 401
        assert r.get_json()["error"]


class TestContentRoutes:
    def test_countdown_item_is_locked_until_granted(self, admin, member):
        item_id = create_item(admin, title="Week One", is_blocked=True, unlock_after_days=7)

        r = member.get(f"/content/{item_id}")
        assert r.status_code == 403
        body = r.get_json()
        assert body["lock_reason"] == "countdown"
        assert body["days_remaining"] == 7
        assert body["unlock_action"] == "wait"
        assert [i["id"] for i in member.get("/content/blocked").get_json()] == [item_id]

        r = admin.post(f"/admin/users/{member.user_id}/unlocks/{item_id}")
        assert r.get_json()["user"]["unlocked_courses"] == [item_id]

        r = member.get(f"/content/{item_id}")
        assert r.status_code == 200
        assert r.get_json()["title"] == "Week One"
        assert [i["id"] for i in member.get("/content/available").get_json()] == [item_id]

    def test_manual_item_offers_link(self, admin, member):
        item_id = create_item(admin, is_blocked=True, manual_unlock_only=True,
                              unblock_link="https://example.com/buy")
        body = member.get(f"/content/{item_id}").get_json()
        assert body["lock_reason"] == "manual"
        assert body["unlock_action"] == "link"

    def test_grant_opens_item_without_rules(self, admin, member):
        item_id = create_item(admin, title="VIP Workshop Replays", is_blocked=True)
        body = member.get(f"/content/{item_id}").get_json()
        assert body["lock_reason"] == "manual"
        assert body["unlock_action"] == "contact_admin"

        admin.post(f"/admin/users/{member.user_id}/unlocks/{item_id}")
        assert member.get(f"/content/{item_id}").status_code == 200
        assert member.get("/content/blocked").get_json() == []

    def test_kind_filter(self, admin, member):
        create_item(admin, title="A course")
        product_id = create_item(admin, title="A product", kind="product")
        listing = member.get("/content/?kind=product").get_json()
        assert [i["id"] for i in listing] == [product_id]

    def test_invalid_kind_is_rejected(self, admin):
        r = admin.post("/admin/content", json={"title": "Bad", "kind": "webinar"})
        assert r.status_code == 400

    def test_missing_item_is_json_404(self, member):
        r = member.get("/content/999")
        assert r.status_code == 404
        assert r.get_json()["status"] == 404

    def test_history_and_favorites(self, admin, member):
        item_id = create_item(admin, lessons=[{"title": "One"}, {"title": "Two"}])
        member.get(f"/content/{item_id}")
        lesson_id = member.get(f"/me/history/{item_id}").get_json()["history"]["last_lesson_id"]
        r = member.post(f"/me/history/{item_id}/complete/{lesson_id}")
        assert r.get_json()["progress"] == 50
        assert [row["item"]["id"] for row in member.get("/me/continue").get_json()] == [item_id]

        member.post(f"/me/favorites/{item_id}")
        assert [i["id"] for i in member.get("/me/favorites").get_json()] == [item_id]


class TestAdminRoutes:
    def test_members_cannot_reach_admin(self, member):
        assert member.get("/admin/users").status_code == 403
        assert member.post("/admin/content", json={"title": "x"}).status_code == 403

    def test_block_forces_logout(self, app, admin, member):
        r = admin.post(f"/admin/users/{member.user_id}/block", json={"reason": "chargeback"})
        assert r.get_json()["user"]["is_blocked"] is True

        r = member.get("/content/")
        assert r.status_code == 403
        assert r.get_json()["reason"] == "chargeback"
        assert member.get("/content/").status_code == 401

        r = member.post("/auth/login", json={"email": "mia@example.com", "password": "password1"})
        assert r.status_code == 403
        assert r.get_json()["reason"] == "blocked"

        admin.post(f"/admin/users/{member.user_id}/unblock")
        r = member.post("/auth/login", json={"email": "mia@example.com", "password": "password1"})
        assert r.status_code == 200

    def test_block_requires_reason(self, admin, member):
        assert admin.post(f"/admin/users/{member.user_id}/block", json={}).status_code == 400

    def test_sessions_and_terminate(self, admin, member):
        sessions = admin.get(f"/admin/users/{member.user_id}/sessions?active=1").get_json()
        [s] = sessions
        r = admin.post(f"/admin/sessions/{s['id']}/terminate")
        assert r.get_json()["session"]["is_active"] is False
        assert admin.post(f"/admin/sessions/{s['id']}/terminate").status_code == 404
        assert member.post("/auth/heartbeat").status_code == 401

    def test_risk_is_reported_per_user(self, app, admin, member):
        for ip in ("203.0.113.1", "203.0.113.2"):
            c = app.test_client()
            c.post("/auth/login", json={"email": "mia@example.com", "password": "password1"},
                   headers={"X-Forwarded-For": ip})
        [row] = admin.get("/admin/users").get_json()
        assert row["risk"] == "high"
        summary = admin.get("/admin/security/summary").get_json()
        assert summary["active_sessions"] == 4
        assert summary["users"][0]["risk"] == "high"

    def test_log_filters(self, admin, member):
        logs = admin.get(f"/admin/security/logs?user_id={member.user_id}&action=login").get_json()
        assert [l["action"] for l in logs] == ["login"]
        assert admin.get("/admin/security/logs?severity=extreme").status_code == 400

    def test_settings_round_trip(self, app, admin):
        r = admin.post("/admin/settings", json={"HEARTBEAT_MINUTES": 10})
        assert r.get_json()["HEARTBEAT_MINUTES"] == 10
        assert admin.post("/admin/settings", json={"SECRET_KEY": "x"}).status_code == 400
        c = app.test_client()
        body = c.post("/auth/login", json={"email": app.config["ADMIN_EMAIL"],
                                           "password": app.config["ADMIN_PASSWORD"]}).get_json()
        assert body["heartbeat_minutes"] == 10

    def test_scheduler_run_applies_due_unlocks(self, app, admin, member):
        item_id = create_item(admin, is_blocked=True, scheduled_unlock_date="2020-01-01T00:00:00Z")
        r = admin.post("/admin/scheduler/run")
        assert r.get_json()["scheduled_unlocked"] == [item_id]
        assert member.get(f"/content/{item_id}").status_code == 200
        notes = member.get("/notifications/poll").get_json()
        assert [n["type"] for n in notes] == ["success"]
        assert member.post("/notifications/mark_all_seen").get_json() == {"ok": True, "updated": 1}
        assert member.get("/notifications/poll").get_json() == []
        assert member.get("/notifications/").get_json()["unseen"] == 0

    def test_delete_content_removes_grants(self, app, admin, member):
        item_id = create_item(admin, is_blocked=True)
        admin.post(f"/admin/users/{member.user_id}/unlocks/{item_id}")
        assert admin.delete(f"/admin/content/{item_id}").get_json() == {"ok": True}
        with app.app_context():
            assert _db.session.get(User, member.user_id).unlocked_courses == set()

    def test_kind_change_keeps_grants(self, admin, member):
        item_id = create_item(admin, title="Vault", is_blocked=True)
        admin.post(f"/admin/users/{member.user_id}/unlocks/{item_id}")

        r = admin.patch(f"/admin/content/{item_id}", json={"kind": "product"})
        assert r.get_json()["item"]["kind"] == "product"
        assert member.get(f"/content/{item_id}").status_code == 200

        r = admin.post(f"/admin/users/{member.user_id}/unlocks/{item_id}")
        assert r.status_code == 200
        user = r.get_json()["user"]
        assert user["unlocked_products"] == [item_id]
        assert user["unlocked_courses"] == []
