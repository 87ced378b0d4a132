"""TokenManager — the single shared authentication handle.

Concurrency contract:
    - At most one refresh is in flight.  A caller that finds the token
      expired waits for that refresh instead of starting its own.
    - A waiter that queued behind an attempt adopts its outcome (fresh
      token or AuthError) rather than retrying.
    - A 401 is handled by force_refresh(stale_token): if the handle has
      already moved past `stale_token`, the current token is returned
      without another round trip.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from racesafe.errors import AuthError
from racesafe.foundation.clock import utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_SKEW = timedelta(seconds=60)


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    expires_at: datetime
    refresh_token: str | None = None

    def is_valid(self, now: datetime, skew: timedelta = DEFAULT_EXPIRY_SKEW) -> bool:
        return self.expires_at > now + skew


LoginGrant = Callable[[], Awaitable[TokenSet]]
RefreshGrant = Callable[[str], Awaitable[TokenSet]]


class TokenManager:
    """Owns the access token and serialises every attempt to renew it.

    Args:
        login: Performs the full credential grant.  Raises AuthError.
        refresh: Exchanges a refresh token for a new TokenSet.  Raises
            AuthError when the refresh token is rejected.
        expiry_skew: Tokens are treated as expired this long before
            their actual expiry.
    """

    def __init__(
        self,
        login: LoginGrant,
        refresh: RefreshGrant,
        expiry_skew: timedelta = DEFAULT_EXPIRY_SKEW,
    ) -> None:
        self._login = login
        self._refresh = refresh
        self._skew = expiry_skew
        self._tokens: TokenSet | None = None
        self._lock = asyncio.Lock()
        self._attempts = 0
        self._completed = 0
        self._last_error: AuthError | None = None

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_authenticated(self) -> bool:
        return self._tokens is not None and self._tokens.is_valid(utc_now(), self._skew)

    @property
    def refresh_attempts(self) -> int:
        return self._attempts

    # ── Public API ───────────────────────────────────────────────────────

    async def login(self) -> None:
        """Full credential grant.  Raises AuthError."""
        async with self._lock:
            self._attempts += 1
            try:
                self._tokens = await self._login()
                self._last_error = None
            except AuthError as exc:
                self._tokens = None
                self._last_error = exc
                raise
            finally:
                self._completed += 1
        logger.info("Authenticated; token expires at %s", self._tokens.expires_at.isoformat())

    async def access_token(self) -> str:
        """A currently valid access token, refreshing once if needed."""
        tokens = self._tokens
        if tokens is None:
            raise AuthError("Not authenticated. Call login() first.")
        if tokens.is_valid(utc_now(), self._skew):
            return tokens.access_token
        return await self.force_refresh(tokens.access_token)

    async def force_refresh(self, stale_token: str) -> str:
        """Renew the token unless someone already replaced `stale_token`."""
        observed = self._completed

        async with self._lock:
            current = self._tokens
            if current is not None and current.access_token != stale_token:
                return current.access_token
            if self._completed != observed:
                # An attempt finished while we waited and left no usable token.
                raise self._last_error or AuthError("token refresh failed")

            self._attempts += 1
            try:
                self._tokens = await self._renew(current)
                self._last_error = None
            except AuthError as exc:
                self._tokens = None
                self._last_error = exc
                raise
            finally:
                self._completed += 1
            return self._tokens.access_token

    async def refresh(self) -> bool:
        """Proactive refresh for the scheduled timer.  Never raises."""
        tokens = self._tokens
        if tokens is None:
            return False
        try:
            await self.force_refresh(tokens.access_token)
        except AuthError as exc:
            logger.warning("Token refresh failed: %s", exc)
            return False
        logger.debug("Token refreshed")
        return True

    # ── Internals ────────────────────────────────────────────────────────

    async def _renew(self, current: TokenSet | None) -> TokenSet:
        """Must be called while holding self._lock."""
        if current is not None and current.refresh_token:
            try:
                return await self._refresh(current.refresh_token)
            except AuthError as exc:
                logger.info("Refresh token rejected (%s); falling back to full login", exc)
        try:
            return await self._login()
        except AuthError as exc:
            raise AuthError(f"token refresh exhausted: {exc}") from exc
