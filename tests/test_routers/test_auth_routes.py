"""
Operator login and token checks.
"""

from app.models.party import UserRole
from app.routers.auth import create_access_token


class TestLogin:
    def test_valid_credentials(self, client, operator):
        resp = client.post(
            "/auth/token",
            data={"username": "billing@cabinet-du-lac.ch", "password": "correct horse"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["role"] == "BILLING"
        assert body["access_token"]

    def test_wrong_password(self, client, operator):
        resp = client.post(
            "/auth/token",
            data={"username": "billing@cabinet-du-lac.ch", "password": "battery staple"},
        )
        assert resp.status_code == 401

    def test_unknown_user(self, client):
        resp = client.post(
            "/auth/token", data={"username": "nobody@example.ch", "password": "x"}
        )
        assert resp.status_code == 401

    def test_inactive_account(self, client, db, operator):
        operator.is_active = False
        db.commit()
        resp = client.post(
            "/auth/token",
            data={"username": "billing@cabinet-du-lac.ch", "password": "correct horse"},
        )
        assert resp.status_code == 403


class TestMe:
    def test_returns_operator(self, client, operator, auth_headers):
        resp = client.get("/auth/me", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["email"] == "billing@cabinet-du-lac.ch"
        assert resp.json()["id"] == str(operator.id)

    def test_token_from_login_works(self, client, operator):
        token = client.post(
            "/auth/token",
            data={"username": "billing@cabinet-du-lac.ch", "password": "correct horse"},
        ).json()["access_token"]
        resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_missing_token(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_garbage_token(self, client):
        resp = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401


class TestTokenLifecycle:
    def test_email_case_insensitive(self, client, operator):
        resp = client.post(
            "/auth/token",
            data={"username": " Billing@Cabinet-du-Lac.ch ", "password": "correct horse"},
        )
        assert resp.status_code == 200

    def test_expiry_reported_in_seconds(self, client, operator):
        from app.settings import settings

        resp = client.post(
            "/auth/token",
            data={"username": "billing@cabinet-du-lac.ch", "password": "correct horse"},
        )
        assert resp.json()["expires_in"] == settings.access_token_expire_minutes * 60

    def test_role_change_invalidates_token(self, client, db, operator, auth_headers):
        operator.role = UserRole.ADMIN
        db.commit()
        assert client.get("/auth/me", headers=auth_headers).status_code == 401

    def test_deactivation_invalidates_token(self, client, db, operator, auth_headers):
        operator.is_active = False
        db.commit()
        assert client.get("/auth/me", headers=auth_headers).status_code == 401

    def test_token_without_role_claim(self, client, operator):
        token = create_access_token({"sub": operator.email, "user_id": str(operator.id)})
        resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
