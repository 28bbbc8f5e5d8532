"""Accounts, tokens, logout revocation and the password rules."""

import pytest

from services import auth_service
from utils.errors import UnauthenticatedError


class TestSignupAndLogin:
    def test_signup_then_login_returns_same_user(self, client):
        response = client.post("/api/auth/signup", json={
            "full_name": "Ada", "email": "ada@example.com", "password": "secret1",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["token"]
        user_id = body["user"]["id"]

        response = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "secret1"})
        assert response.status_code == 200
        assert response.json()["user"]["id"] == user_id

    def test_login_is_case_sensitive_on_password(self, client, signup):
        signup("ada@example.com", "Ada")
        response = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "SECRET1"})
        assert response.status_code == 401
        assert response.json() == {"error": "unauthenticated", "message": "Invalid email or password"}

    def test_login_unknown_email_uses_same_message(self, client):
        response = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret1"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    def test_email_is_case_insensitive(self, client, signup):
        _, user = signup("Mixed.Case@Example.com", "Mixed Case")
        assert user["email"] == "mixed.case@example.com"
        response = client.post("/api/auth/login", json={"email": "MIXED.case@example.COM", "password": "secret1"})
        assert response.status_code == 200

    def test_duplicate_email_conflicts(self, client, signup):
        signup("ada@example.com", "Ada")
        response = client.post("/api/auth/signup", json={
            "full_name": "Ada Again", "email": "ADA@example.com", "password": "secret1",
        })
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_password_of_five_rejected_six_accepted(self, client):
        short = client.post("/api/auth/signup", json={"full_name": "Ann", "email": "ann@example.com", "password": "12345"})
        assert short.status_code == 400
        assert short.json()["error"] == "validation"

        ok = client.post("/api/auth/signup", json={"full_name": "Ann", "email": "ann@example.com", "password": "123456"})
        assert ok.status_code == 201

    @pytest.mark.parametrize("full_name", ["A", "x" * 101])
    def test_full_name_length_bounds(self, client, full_name):
        response = client.post("/api/auth/signup", json={"full_name": full_name, "email": "n@example.com", "password": "secret1"})
        assert response.status_code == 400

    def test_invalid_email_rejected(self, client):
        response = client.post("/api/auth/signup", json={"full_name": "Ann", "email": "not-an-email", "password": "secret1"})
        assert response.status_code == 400

    def test_signup_with_admin_email_gets_admin_role(self, admin):
        assert admin["user"]["role"] == "admin"

    def test_password_hash_never_exposed(self, client, owner):
        response = client.get("/api/auth/profile", headers=owner["headers"])
        assert response.status_code == 200
        assert "password_hash" not in response.json()["user"]


class TestTokens:
    def test_missing_token_is_unauthenticated(self, client):
        response = client.get("/api/auth/profile")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_tampered_token_rejected(self, client, owner):
        token = owner["token"]
        forged = token[:-2] + ("AA" if not token.endswith("AA") else "BB")
        response = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {forged}"})
        assert response.status_code == 401

    def test_decode_rejects_garbage(self):
        with pytest.raises(UnauthenticatedError):
            auth_service.decode_token("not-a-token")

    def test_verify_returns_user(self, client, owner):
        response = client.get("/api/auth/verify", headers=owner["headers"])
        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["user"]["id"] == owner["user"]["id"]

    def test_logout_revokes_the_token(self, client, owner):
        response = client.post("/api/auth/logout", headers=owner["headers"])
        assert response.status_code == 200

        response = client.get("/api/auth/profile", headers=owner["headers"])
        assert response.status_code == 401

    def test_logout_leaves_other_sessions_alone(self, client, owner):
        second = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "secret1"}).json()["token"]
        client.post("/api/auth/logout", headers=owner["headers"])
        response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {second}"})
        assert response.status_code == 200

    def test_reset_password_invalidates_old_tokens(self, client, owner):
        response = client.post("/api/auth/reset-password", json={"email": "owner@example.com", "new_password": "newpass1"})
        assert response.status_code == 200

        assert client.get("/api/auth/profile", headers=owner["headers"]).status_code == 401
        assert client.post("/api/auth/login", json={"email": "owner@example.com", "password": "secret1"}).status_code == 401
        fresh = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "newpass1"})
        assert fresh.status_code == 200
        assert client.get("/api/auth/profile", headers={"Authorization": f"Bearer {fresh.json()['token']}"}).status_code == 200

    def test_reset_password_unknown_email(self, client):
        response = client.post("/api/auth/reset-password", json={"email": "ghost@example.com", "new_password": "newpass1"})
        assert response.status_code == 404


class TestProfile:
    def test_update_full_name(self, client, owner):
        response = client.put("/api/auth/profile", json={"full_name": "Olivia Renamed"}, headers=owner["headers"])
        assert response.status_code == 200
        assert response.json()["user"]["full_name"] == "Olivia Renamed"

    def test_update_rejects_short_name(self, client, owner):
        response = client.put("/api/auth/profile", json={"full_name": "O"}, headers=owner["headers"])
        assert response.status_code == 400
