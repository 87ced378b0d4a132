"""Tests for TokenManager: login, expiry, singleflight refresh."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from racesafe.errors import AuthError
from racesafe.foundation.clock import utc_now
from racesafe.history.tokens import TokenManager, TokenSet


def _tokens(name: str, ttl: float = 600, refresh: str | None = "r-1") -> TokenSet:
    return TokenSet(access_token=name, expires_at=utc_now() + timedelta(seconds=ttl), refresh_token=refresh)


class _Grants:
    """Scripted login/refresh grants that count their calls."""

    def __init__(self, login_results=None, refresh_results=None, delay: float = 0.0) -> None:
        self.login_results = list(login_results or [])
        self.refresh_results = list(refresh_results or [])
        self.delay = delay
        self.login_calls = 0
        self.refresh_calls = 0

    async def login(self) -> TokenSet:
        self.login_calls += 1
        await asyncio.sleep(self.delay)
        result = self.login_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def refresh(self, refresh_token: str) -> TokenSet:
        self.refresh_calls += 1
        await asyncio.sleep(self.delay)
        result = self.refresh_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_then_token(self):
        grants = _Grants(login_results=[_tokens("a-1")])
        manager = TokenManager(grants.login, grants.refresh)
        await manager.login()

        assert manager.is_authenticated
        assert await manager.access_token() == "a-1"

    @pytest.mark.asyncio
    async def test_token_before_login_is_auth_error(self):
        grants = _Grants()
        with pytest.raises(AuthError):
            await TokenManager(grants.login, grants.refresh).access_token()

    @pytest.mark.asyncio
    async def test_rejected_login(self):
        grants = _Grants(login_results=[AuthError("bad password")])
        manager = TokenManager(grants.login, grants.refresh)
        with pytest.raises(AuthError):
            await manager.login()
        assert not manager.is_authenticated


class TestRefresh:
    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self):
        grants = _Grants(login_results=[_tokens("a-1", ttl=30)], refresh_results=[_tokens("a-2")])
        manager = TokenManager(grants.login, grants.refresh)
        await manager.login()

        assert await manager.access_token() == "a-2"
        assert grants.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self):
        grants = _Grants(
            login_results=[_tokens("a-1", ttl=30)],
            refresh_results=[_tokens("a-2")],
            delay=0.01,
        )
        manager = TokenManager(grants.login, grants.refresh)
        await manager.login()

        tokens = await asyncio.gather(*(manager.access_token() for _ in range(5)))
        assert tokens == ["a-2"] * 5
        assert grants.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_force_refresh_with_superseded_token_is_free(self):
        grants = _Grants(login_results=[_tokens("a-1")], refresh_results=[_tokens("a-2")])
        manager = TokenManager(grants.login, grants.refresh)
        await manager.login()

        assert await manager.force_refresh("a-1") == "a-2"
        assert await manager.force_refresh("a-1") == "a-2"
        assert grants.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_rejected_refresh_token_falls_back_to_login(self):
        grants = _Grants(
            login_results=[_tokens("a-1"), _tokens("a-3")],
            refresh_results=[AuthError("refresh token expired")],
        )
        manager = TokenManager(grants.login, grants.refresh)
        await manager.login()

        assert await manager.force_refresh("a-1") == "a-3"
        assert grants.login_calls == 2

    @pytest.mark.asyncio
    async def test_exhausted_refresh_raises_and_waiters_adopt_failure(self):
        grants = _Grants(
            login_results=[_tokens("a-1", ttl=30), AuthError("locked out")],
            refresh_results=[AuthError("refresh token expired")],
            delay=0.01,
        )
        manager = TokenManager(grants.login, grants.refresh)
        await manager.login()

        results = await asyncio.gather(
            *(manager.access_token() for _ in range(3)),
            return_exceptions=True,
        )
        assert all(isinstance(r, AuthError) for r in results)
        assert grants.refresh_calls == 1
        assert grants.login_calls == 2
        assert not manager.is_authenticated

    @pytest.mark.asyncio
    async def test_scheduled_refresh_never_raises(self):
        grants = _Grants(
            login_results=[_tokens("a-1"), AuthError("down")],
            refresh_results=[AuthError("down")],
        )
        manager = TokenManager(grants.login, grants.refresh)
        assert await manager.refresh() is False
        await manager.login()
        assert await manager.refresh() is False

    @pytest.mark.asyncio
    async def test_scheduled_refresh_success(self):
        grants = _Grants(login_results=[_tokens("a-1")], refresh_results=[_tokens("a-2")])
        manager = TokenManager(grants.login, grants.refresh)
        await manager.login()
        assert await manager.refresh() is True
        assert await manager.access_token() == "a-2"
