"""Login rate limit (slowapi, per client IP)."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient

from authsvc.core.rate_limit import DEFAULT_LIMITS, limiter, login_limit


def test_login_limit_follows_settings():
    with patch("authsvc.core.rate_limit.settings") as mock_settings:
        mock_settings.login_rate_limit = "3/hour"
        assert login_limit() == "3/hour"


def test_default_limits():
    assert DEFAULT_LIMITS == ["200/minute"]


@pytest.mark.asyncio
async def test_login_rate_limited(client: AsyncClient, alice, client_headers: dict):
    """Third attempt inside the window is rejected with 429, even with the right password."""
    limiter.enabled = True
    limiter.reset()
    try:
        with patch("authsvc.core.rate_limit.settings") as mock_settings:
            mock_settings.login_rate_limit = "2/minute"
            for _ in range(2):
                resp = await client.post(
                    "/api/v1/auth/login", json={"email": "alice@example.com", "password": "wrong"}, headers=client_headers
                )
                assert resp.status_code == 401
            resp = await client.post(
                "/api/v1/auth/login",
                json={"email": "alice@example.com", "password": "correct-pw"},
                headers=client_headers,
            )
            assert resp.status_code == 429
    finally:
        limiter.reset()
        limiter.enabled = False


@pytest.mark.asyncio
async def test_verify_not_subject_to_login_limit(client: AsyncClient):
    limiter.enabled = True
    limiter.reset()
    try:
        with patch("authsvc.core.rate_limit.settings") as mock_settings:
            mock_settings.login_rate_limit = "1/minute"
            for _ in range(3):
                resp = await client.get("/api/v1/auth/verify")
                assert resp.status_code == 401
    finally:
        limiter.reset()
        limiter.enabled = False
