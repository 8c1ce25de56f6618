"""Tests for auth endpoints: signup, login, refresh, logout, verify."""

from functools import partial

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from authsvc.api.deps import get_session_engine
from authsvc.core.errors import PersistenceUnavailable
from authsvc.db.session import get_db
from authsvc.main import app
from authsvc.services.session_engine import SessionEngine
from authsvc.services.sql_stores import commit_session

from conftest import ALICE_EMAIL, ALICE_PASSWORD


async def _login(client: AsyncClient, headers: dict, email=ALICE_EMAIL, password=ALICE_PASSWORD):
    return await client.post("/api/v1/auth/login", json={"email": email, "password": password}, headers=headers)


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["cache-control"] == "no-store"


@pytest.mark.asyncio
async def test_signup(client: AsyncClient, alice, client_headers: dict):
    resp = await client.post(
        "/api/v1/auth/signup",
        json={"name": "Bob", "email": "Bob@Test.com", "password": "securepass123"},
        headers=client_headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] is True
    assert data["data"]["user"]["email"] == "bob@test.com"
    assert data["data"]["user"]["name"] == "Bob"
    assert "password" not in resp.text


@pytest.mark.asyncio
async def test_register_alias(client: AsyncClient, alice, client_headers: dict):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"name": "Carol", "email": "carol@test.com", "password": "pw"},
        headers=client_headers,
    )
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_signup_duplicate_email(client: AsyncClient, alice, client_headers: dict):
    resp = await client.post(
        "/api/v1/auth/signup",
        json={"name": "Alice", "email": ALICE_EMAIL, "password": "other"},
        headers=client_headers,
    )
    assert resp.status_code == 409
    assert resp.json()["data"]["kind"] == "EmailAlreadyRegistered"


@pytest.mark.asyncio
async def test_signup_without_client(client: AsyncClient, alice):
    resp = await client.post(
        "/api/v1/auth/signup",
        json={"name": "Bob", "email": "bob@test.com", "password": "pw"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_login(client: AsyncClient, alice, client_headers: dict):
    resp = await _login(client, client_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] is True
    assert body["data"]["user"] == {"id": alice.id, "name": "Alice", "email": ALICE_EMAIL}
    tokens = body["data"]["tokens"]
    assert tokens["accessTokenExpiresIn"] == 900
    assert tokens["refreshTokenExpiresIn"] == 604800
    assert resp.cookies.get("accessToken") == tokens["accessToken"]
    assert resp.cookies.get("refreshToken") == tokens["refreshToken"]
    set_cookie = resp.headers.get_list("set-cookie")
    assert all("httponly" in c.lower() for c in set_cookie)


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, alice, client_headers: dict):
    resp = await _login(client, client_headers, password="wrong")
    assert resp.status_code == 401
    body = resp.json()
    assert body["status"] is False
    assert body["error"] == "Invalid credentials."
    assert "set-cookie" not in resp.headers


@pytest.mark.asyncio
async def test_login_unknown_email_same_response(client: AsyncClient, alice, client_headers: dict):
    wrong_pw = await _login(client, client_headers, password="wrong")
    unknown = await _login(client, client_headers, email="nobody@test.com")
    assert unknown.status_code == wrong_pw.status_code == 401
    assert unknown.json() == wrong_pw.json()


@pytest.mark.asyncio
async def test_login_bad_client_secret(client: AsyncClient, alice, client_headers: dict):
    resp = await _login(client, {**client_headers, "x-client-secret": "nope"})
    assert resp.status_code == 401
    assert resp.json()["data"]["kind"] == "UnauthorizedClient"


@pytest.mark.asyncio
async def test_login_inactive_account(client: AsyncClient, users, alice, client_headers: dict):
    users.set_state(alice.id, is_active=False)
    resp = await _login(client, client_headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_login_missing_password(client: AsyncClient, alice, client_headers: dict):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": ALICE_EMAIL, "password": ""}, headers=client_headers
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_verify_with_bearer(client: AsyncClient, alice, client_headers: dict):
    access_token = (await _login(client, client_headers)).json()["data"]["tokens"]["accessToken"]
    client.cookies.clear()
    resp = await client.get("/api/v1/auth/verify", headers={"Authorization": f"Bearer {access_token}"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data == {"userId": alice.id, "clientId": "hrm-app", "email": ALICE_EMAIL, "isActive": True}


@pytest.mark.asyncio
async def test_verify_with_cookie(client: AsyncClient, alice, client_headers: dict):
    await _login(client, client_headers)
    resp = await client.get("/api/v1/auth/verify")
    assert resp.status_code == 200
    assert resp.json()["data"]["userId"] == alice.id


@pytest.mark.asyncio
async def test_verify_missing_and_garbage_token(client: AsyncClient):
    resp = await client.get("/api/v1/auth/verify")
    assert resp.status_code == 401
    resp = await client.get("/api/v1/auth/verify", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401
    assert resp.json()["data"]["kind"] == "MalformedCredential"


@pytest.mark.asyncio
async def test_verify_expired_token(client: AsyncClient, alice, client_headers: dict, clock):
    await _login(client, client_headers)
    clock.advance(900)
    resp = await client.get("/api/v1/auth/verify")
    assert resp.status_code == 401
    assert resp.json()["data"]["kind"] == "ExpiredCredential"


@pytest.mark.asyncio
async def test_verify_inactive_claim(client: AsyncClient, codec):
    token = codec.mint({"id": "u-1", "clientId": None, "email": "x@test.com", "isActive": False}, 900)
    resp = await client.get("/api/v1/auth/verify", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_refresh_with_cookie_rotates(client: AsyncClient, alice, client_headers: dict):
    old_refresh = (await _login(client, client_headers)).json()["data"]["tokens"]["refreshToken"]
    resp = await client.post("/api/v1/auth/refresh")
    assert resp.status_code == 200
    new_refresh = resp.json()["data"]["tokens"]["refreshToken"]
    assert new_refresh != old_refresh
    assert client.cookies.get("refreshToken") == new_refresh

    client.cookies.clear()
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": old_refresh})
    assert resp.status_code == 401
    assert resp.json()["data"]["kind"] == "InvalidOrExpiredToken"


@pytest.mark.asyncio
async def test_refresh_with_body(client: AsyncClient, alice, client_headers: dict):
    refresh_token = (await _login(client, client_headers)).json()["data"]["tokens"]["refreshToken"]
    client.cookies.clear()
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_refresh_without_token(client: AsyncClient):
    resp = await client.post("/api/v1/auth/refresh")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_logout(client: AsyncClient, alice, client_headers: dict):
    refresh_token = (await _login(client, client_headers)).json()["data"]["tokens"]["refreshToken"]
    resp = await client.post("/api/v1/auth/logout")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Logged out successfully"
    assert "refreshToken" not in client.cookies

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert resp.status_code == 401
    resp = await client.post("/api/v1/auth/logout", json={"refresh_token": refresh_token})
    assert resp.status_code == 401


class UnavailableStore:
    async def find_valid(self, token, **filters):
        raise PersistenceUnavailable()


@pytest.mark.asyncio
async def test_store_unavailable_returns_503(client: AsyncClient, codec, users, clients, clock):
    engine = SessionEngine(codec, UnavailableStore(), users, clients, clock=clock.now)
    app.dependency_overrides[get_session_engine] = lambda: engine
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": "a" * 80})
    assert resp.status_code == 503
    assert resp.headers["retry-after"] == "5"
    assert resp.json()["data"]["kind"] == "PersistenceUnavailable"


class CommitFailsSession:
    """Stands in for an AsyncSession whose COMMIT is lost with the connection."""

    def __init__(self):
        self.commits = 0

    async def commit(self):
        self.commits += 1
        raise OperationalError("COMMIT", {}, ConnectionResetError("connection reset by peer"))


@pytest.mark.asyncio
async def test_login_commit_failure_returns_503_without_cookies(
    client: AsyncClient, codec, refresh_store, users, clients, clock, alice, client_headers: dict
):
    session = CommitFailsSession()
    engine = SessionEngine(
        codec, refresh_store, users, clients, clock=clock.now, commit=partial(commit_session, session)
    )
    app.dependency_overrides[get_session_engine] = lambda: engine
    resp = await _login(client, client_headers)
    assert session.commits == 1
    assert resp.status_code == 503
    assert resp.headers["retry-after"] == "5"
    assert "set-cookie" not in resp.headers
    assert "tokens" not in resp.text


@pytest.mark.asyncio
async def test_refresh_commit_failure_keeps_presented_cookie(
    client: AsyncClient, codec, refresh_store, users, clients, clock, alice, client_headers: dict
):
    old_refresh = (await _login(client, client_headers)).json()["data"]["tokens"]["refreshToken"]
    engine = SessionEngine(
        codec, refresh_store, users, clients, clock=clock.now, commit=partial(commit_session, CommitFailsSession())
    )
    app.dependency_overrides[get_session_engine] = lambda: engine
    resp = await client.post("/api/v1/auth/refresh")
    assert resp.status_code == 503
    assert "set-cookie" not in resp.headers
    assert client.cookies.get("refreshToken") == old_refresh


@pytest.mark.asyncio
async def test_verify_does_not_open_a_database_session(client: AsyncClient, alice, client_headers: dict):
    access_token = (await _login(client, client_headers)).json()["data"]["tokens"]["accessToken"]

    async def no_database():
        raise AssertionError("verify must not touch the database")
        yield  # pragma: no cover

    app.dependency_overrides[get_db] = no_database
    resp = await client.get("/api/v1/auth/verify", headers={"Authorization": f"Bearer {access_token}"})
    assert resp.status_code == 200
    assert resp.json()["data"]["userId"] == alice.id
