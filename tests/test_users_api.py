"""
Tests for the /api/v1/users endpoints.

Covers the access gate (bearer parsing, deleted users), the ownership gate
and the profile update/delete flows.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import API, PASSWORD, bearer, login, register, use_refresh_cookie
from tokenvault.models.auth import RefreshToken, User


@pytest.fixture
async def alice(client: AsyncClient) -> dict:
    user_id = await register(client)
    access, cookie = await login(client)
    return {"id": user_id, "access": access, "cookie": cookie}


@pytest.fixture
async def bob(client: AsyncClient) -> dict:
    user_id = await register(client, username="bob", email="bob@example.com")
    access, cookie = await login(client, username="bob")
    return {"id": user_id, "access": access, "cookie": cookie}


@pytest.mark.api
class TestAccessGate:
    async def test_me(self, client, alice):
        response = await client.get(f"{API}/users/me", headers=bearer(alice["access"]))

        assert response.status_code == 200
        body = response.json()
        assert body == {
            "id": alice["id"],
            "username": "alice",
            "email": "alice@example.com",
            "givenName": "Alice",
            "familyName": "Liddell",
        }

    async def test_no_header(self, client, alice):
        assert (await client.get(f"{API}/users/me")).status_code == 401

    @pytest.mark.parametrize("scheme", ["bearer", "Basic", "Token", "BEARER"])
    async def test_scheme_must_be_exactly_bearer(self, client, alice, scheme):
        response = await client.get(
            f"{API}/users/me", headers={"Authorization": f"{scheme} {alice['access']}"}
        )

        assert response.status_code == 401

    async def test_garbage_token(self, client, alice):
        response = await client.get(f"{API}/users/me", headers=bearer("garbage"))

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_expired_token_is_generic_401(self, client, alice, rsa_keys):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        expired = jwt.encode(
            {"sub": alice["id"], "iat": past, "exp": past + timedelta(minutes=1)},
            rsa_keys["private_key"],
            algorithm="RS256",
        )

        expired_resp = await client.get(f"{API}/users/me", headers=bearer(expired))
        garbage_resp = await client.get(f"{API}/users/me", headers=bearer("garbage"))

        assert expired_resp.status_code == 401
        assert expired_resp.json() == garbage_resp.json()

    async def test_password_never_serialized(self, client, alice):
        response = await client.get(
            f"{API}/users/{alice['id']}", headers=bearer(alice["access"])
        )

        assert "password" not in response.text.lower()
        assert "hashed" not in response.text.lower()


@pytest.mark.api
class TestReadUser:
    async def test_any_authenticated_user_can_read(self, client, alice, bob):
        response = await client.get(
            f"{API}/users/{alice['id']}", headers=bearer(bob["access"])
        )

        assert response.status_code == 200
        assert response.json()["username"] == "alice"

    async def test_unknown_id(self, client, alice):
        response = await client.get(
            f"{API}/users/does-not-exist", headers=bearer(alice["access"])
        )

        assert response.status_code == 404


@pytest.mark.api
class TestPartialUpdate:
    async def test_update_profile(self, client, db_session: AsyncSession, alice):
        response = await client.patch(
            f"{API}/users/{alice['id']}",
            json={"givenName": "Alicia"},
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 204
        user = await db_session.get(User, alice["id"])
        assert user.given_name == "Alicia"
        assert user.family_name == "Liddell"

    async def test_empty_body(self, client, alice):
        response = await client.patch(
            f"{API}/users/{alice['id']}", json={}, headers=bearer(alice["access"])
        )

        assert response.status_code == 400

    async def test_password_must_be_repeated(self, client, alice):
        response = await client.patch(
            f"{API}/users/{alice['id']}",
            json={"password": "newpassword1", "passwordRepeat": "newpassword2"},
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 400

    async def test_password_change(self, client, alice):
        response = await client.patch(
            f"{API}/users/{alice['id']}",
            json={"password": "newpassword1", "passwordRepeat": "newpassword1"},
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 204
        old = await client.post(
            f"{API}/login", json={"username": "alice", "password": PASSWORD}
        )
        assert old.status_code == 401
        await login(client, password="newpassword1")

    async def test_other_users_profile_is_forbidden(self, client, alice, bob):
        response = await client.patch(
            f"{API}/users/{alice['id']}",
            json={"givenName": "Mallory"},
            headers=bearer(bob["access"]),
        )

        assert response.status_code == 403

    async def test_duplicate_username(self, client, alice, bob):
        response = await client.patch(
            f"{API}/users/{alice['id']}",
            json={"username": "bob"},
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 409

    async def test_unknown_id(self, client, alice):
        response = await client.patch(
            f"{API}/users/does-not-exist",
            json={"givenName": "x"},
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 404


@pytest.mark.api
class TestFullUpdate:
    def _payload(self, **overrides):
        payload = {
            "username": "alice_l",
            "givenName": "Alice",
            "familyName": "Pleasance",
            "email": "alice.l@example.com",
            "password": "another-password",
            "passwordRepeat": "another-password",
        }
        payload.update(overrides)
        return payload

    async def test_replace(self, client, db_session, alice):
        response = await client.put(
            f"{API}/users/{alice['id']}",
            json=self._payload(),
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 204
        user = await db_session.get(User, alice["id"])
        assert user.username == "alice_l"
        assert user.email == "alice.l@example.com"
        await login(client, username="alice_l", password="another-password")

    async def test_missing_field(self, client, alice):
        payload = self._payload()
        del payload["familyName"]

        response = await client.put(
            f"{API}/users/{alice['id']}", json=payload, headers=bearer(alice["access"])
        )

        assert response.status_code == 400

    async def test_repeat_mismatch(self, client, alice):
        response = await client.put(
            f"{API}/users/{alice['id']}",
            json=self._payload(passwordRepeat="different-password"),
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 400

    async def test_other_user_forbidden(self, client, alice, bob):
        response = await client.put(
            f"{API}/users/{alice['id']}",
            json=self._payload(),
            headers=bearer(bob["access"]),
        )

        assert response.status_code == 403

    async def test_duplicate_email(self, client, alice, bob):
        response = await client.put(
            f"{API}/users/{alice['id']}",
            json=self._payload(email="bob@example.com"),
            headers=bearer(alice["access"]),
        )

        assert response.status_code == 409


@pytest.mark.api
class TestDelete:
    async def test_delete_invalidates_everything(self, client, db_session, alice):
        _, second_cookie = await login(client)

        response = await client.delete(
            f"{API}/users/{alice['id']}", headers=bearer(alice["access"])
        )

        assert response.status_code == 204
        assert await db_session.get(User, alice["id"]) is None
        result = await db_session.execute(
            select(RefreshToken).filter(RefreshToken.user_id == alice["id"])
        )
        assert result.scalars().all() == []

        for cookie in (alice["cookie"], second_cookie):
            use_refresh_cookie(client, cookie)
            assert (await client.get(f"{API}/refresh")).status_code == 401

        # The access token is still cryptographically valid, but its user is gone.
        me = await client.get(f"{API}/users/me", headers=bearer(alice["access"]))
        assert me.status_code == 401

    async def test_delete_other_user_forbidden(self, client, alice, bob):
        response = await client.delete(
            f"{API}/users/{alice['id']}", headers=bearer(bob["access"])
        )

        assert response.status_code == 403

    async def test_other_users_sessions_survive(self, client, alice, bob):
        await client.delete(f"{API}/users/{alice['id']}", headers=bearer(alice["access"]))

        use_refresh_cookie(client, bob["cookie"])
        assert (await client.get(f"{API}/refresh")).status_code == 200
