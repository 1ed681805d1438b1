from __future__ import annotations

import time
from unittest.mock import patch

import pytest
from jose import jwt

from portal import identity
from portal.auth import MIN_PASSWORD_LENGTH


@pytest.mark.integration
class TestSignup:
    def test_signup_creates_user(self, client):
        resp = client.post("/auth/signup", json={"name": " Ada ", "email": "Ada@Example.com", "password": "secret123"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["email"] == "ada@example.com"
        assert data["name"] == "Ada"
        assert "hashed_password" not in data

    def test_duplicate_email(self, client, signup_user):
        signup_user(email="ada@example.com")
        resp = client.post("/auth/signup", json={"name": "Ada", "email": "ADA@example.com", "password": "secret123"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "EMAIL_EXISTS"

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "Ada", "email": "ada@example.com", "password": "123"},
            {"name": "   ", "email": "ada@example.com", "password": "secret123"},
            {"name": "Ada", "email": "not-an-email", "password": "secret123"},
        ],
    )
    def test_validation(self, client, payload):
        assert client.post("/auth/signup", json=payload).status_code == 422

    def test_password_length_boundary(self, client):
        short = "x" * (MIN_PASSWORD_LENGTH - 1)
        resp = client.post("/auth/signup", json={"name": "Ada", "email": "ada@example.com", "password": short})
        assert resp.status_code == 422

        exact = "x" * MIN_PASSWORD_LENGTH
        resp = client.post("/auth/signup", json={"name": "Ada", "email": "ada@example.com", "password": exact})
        assert resp.status_code == 201

    def test_welcome_email_attempted(self, client):
        with patch("portal.routers.auth.send_email_if_configured", return_value=True) as send:
            client.post("/auth/signup", json={"name": "Ada", "email": "ada@example.com", "password": "secret123"})
        send.assert_called_once()
        assert send.call_args[0][1] == "ada@example.com"


@pytest.mark.integration
class TestLogin:
    def test_login_returns_session_projection(self, client, signup_user, clock, settings):
        signup_user()
        resp = client.post("/auth/login", data={"username": "member@example.com", "password": "secret123"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["session"]["provider"] == "credentials"

        claims = jwt.decode(body["access_token"], settings.secret_key, algorithms=["HS256"])
        assert claims["aex"] == pytest.approx(clock.now + 1200)
        assert claims["exp"] >= int(claims["aex"])

    def test_login_starts_session_timers(self, app, client, signup_user, settings):
        signup_user()
        body = client.post("/auth/login", data={"username": "member@example.com", "password": "secret123"}).json()
        sid = jwt.decode(body["access_token"], settings.secret_key, algorithms=["HS256"])["sid"]
        assert sid in app.state.sessions

    def test_bad_password(self, client, signup_user):
        signup_user()
        resp = client.post("/auth/login", data={"username": "member@example.com", "password": "wrong-pass"})
        assert resp.status_code == 401

    def test_sso_not_configured(self, client):
        resp = client.post("/auth/sso", json={"id_token": "abc"})
        assert resp.status_code == 503


@pytest.mark.integration
class TestProtectedRoutes:
    def test_no_token_json(self, client):
        resp = client.get("/user")
        assert resp.status_code == 401

    def test_no_token_browser_goes_to_login(self, client):
        resp = client.get("/user", headers={"Accept": "text/html"}, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login"

    def test_garbage_token(self, client):
        resp = client.get("/user", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_dashboard(self, client, member):
        resp = client.get("/user", headers=member["headers"])
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "member@example.com"
        assert data["membership_details"]["has_membership"] is False
        assert data["membership_details"]["membership_type"] == "external"
        assert data["payment_methods"] == []


@pytest.mark.integration
class TestRefreshAndLogout:
    def test_refresh_keeps_absolute_expiry(self, client, member, clock, settings):
        before = jwt.decode(member["token"], settings.secret_key, algorithms=["HS256"])

        clock.advance(300)
        resp = client.post("/auth/refresh", headers=member["headers"])
        assert resp.status_code == 200
        after = jwt.decode(resp.json()["access_token"], settings.secret_key, algorithms=["HS256"])

        assert after["aex"] == before["aex"]
        assert after["exp"] == before["exp"]
        assert after["sid"] == before["sid"]
        assert resp.json()["session"]["expires_at"] == member["session"]["expires_at"]

    def test_refresh_after_expiry_fails(self, client, member, clock):
        clock.advance(1200)
        resp = client.post("/auth/refresh", headers=member["headers"])
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Session expired"

    def test_logout_revokes_token(self, client, member):
        resp = client.post("/auth/logout", headers=member["headers"])
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "ended": True, "redirect_to": "/login"}

        resp = client.get("/user", headers=member["headers"])
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Session ended"

    def test_logout_twice(self, client, member):
        client.post("/auth/logout", headers=member["headers"])
        resp = client.post("/auth/logout", headers=member["headers"])
        assert resp.status_code == 200
        assert resp.json()["ended"] is False

    def test_revoked_session_rejected(self, client, member, database, settings):
        claims = jwt.decode(member["token"], settings.secret_key, algorithms=["HS256"])
        db = database.session()
        try:
            identity.revoke(db, claims["sid"], claims["uid"], "admin")
        finally:
            db.close()

        assert client.get("/user", headers=member["headers"]).status_code == 401
        assert client.post("/auth/refresh", headers=member["headers"]).status_code == 401

    def test_new_login_is_a_new_session(self, client, member, login_user, clock, settings):
        clock.advance(600)
        second = login_user()
        a = jwt.decode(member["token"], settings.secret_key, algorithms=["HS256"])
        b = jwt.decode(second["access_token"], settings.secret_key, algorithms=["HS256"])
        assert b["sid"] != a["sid"]
        assert b["aex"] == pytest.approx(a["aex"] + 600)


@pytest.mark.integration
class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_settings_time_is_wall_clock_by_default(self, settings, database):
        from portal.main import create_app

        app = create_app(settings=settings, database=database)
        assert abs(app.state.clock() - time.time()) < 5
