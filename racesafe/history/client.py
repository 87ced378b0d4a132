"""IRacingDataClient — live Historical Record Access over the members data API.

Request flow:
    1. GET {base}/data/... with a bearer token.
    2. The API answers with {"link": <pre-signed URL>}; the link is fetched
       WITHOUT the Authorization header.
    3. Large payloads carry chunk_info; every chunk is fetched and failed
       chunks are skipped.

A 401 triggers exactly one forced token refresh and one retry.  A second
401 is an AuthError.  Every other failure is a TransientFetchError.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from racesafe.domain.records import (
    EventResultEntry,
    EventResults,
    LapIncidentSample,
    LicenseEntry,
    ParticipantIdentity,
    RaceRecord,
)
from racesafe.errors import AuthError, TransientFetchError
from racesafe.foundation.clock import to_api_minute, utc_now
from racesafe.history.tokens import TokenManager, TokenSet

logger = logging.getLogger(__name__)

BASE_URL = "https://members-ng.iracing.com"
OAUTH_URL = "https://oauth.iracing.com/oauth2/token"
OAUTH_SCOPE = "iracing.auth"

RACE_EVENT_TYPE = 5
RACE_SIMSESSION_TYPE = 6
DEFAULT_TIMEOUT_SECONDS = 20.0


def mask_secret(secret: str, identifier: str) -> str:
    """base64(sha256(secret + normalised identifier))."""
    normalized = identifier.strip().lower()
    digest = hashlib.sha256((secret + normalized).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


class _Unauthorized(Exception):
    pass


class IRacingDataClient:
    """aiohttp client implementing HistoricalRecordAccess and Authenticator.

    The ClientSession is created lazily on first use unless one is passed
    in.  A session passed in is not closed by close().
    """

    def __init__(
        self,
        email: str,
        password: str,
        client_id: str,
        client_secret: str,
        session: aiohttp.ClientSession | None = None,
        base_url: str = BASE_URL,
        oauth_url: str = OAUTH_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._email = email
        self._password = password
        self._client_id = client_id
        self._client_secret = client_secret
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")
        self._oauth_url = oauth_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._tokens = TokenManager(self._password_grant, self._refresh_grant)

    # ── Authenticator ────────────────────────────────────────────────────

    @property
    def is_authenticated(self) -> bool:
        return self._tokens.is_authenticated

    @property
    def has_credentials(self) -> bool:
        return all((self._email, self._password, self._client_id, self._client_secret))

    async def authenticate(self) -> None:
        if not self.has_credentials:
            raise AuthError("historical data credentials are not configured")
        await self._tokens.login()

    async def refresh(self) -> bool:
        return await self._tokens.refresh()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "IRacingDataClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── HistoricalRecordAccess ───────────────────────────────────────────

    async def fetch_recent_records(self, participant_id: int) -> list[RaceRecord]:
        data = await self._fetch("/data/stats/member_recent_races", {"cust_id": participant_id})
        races = data.get("races", []) if isinstance(data, dict) else []
        return _map_all(races, record_from_recent)

    async def search_records_by_date_range(
        self,
        participant_id: int,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> list[RaceRecord]:
        params: dict[str, Any] = {
            "cust_id": participant_id,
            "official_only": "true",
            "event_types": RACE_EVENT_TYPE,
            "start_range_begin": to_api_minute(start),
        }
        if end is not None:
            params["start_range_end"] = to_api_minute(end)

        data = await self._fetch("/data/results/search_series", params)
        body = data.get("data") if isinstance(data, dict) else None
        if isinstance(body, dict) and body.get("chunk_info"):
            rows = await self._fetch_chunks(body["chunk_info"])
        elif isinstance(body, list):
            rows = body
        else:
            rows = []
        return _map_all(rows, record_from_search)

    async def fetch_lap_incident_series(
        self,
        event_id: int,
        participant_id: int,
    ) -> list[LapIncidentSample]:
        data = await self._fetch(
            "/data/results/lap_data",
            {"subsession_id": event_id, "simsession_number": 0, "cust_id": participant_id},
        )
        if isinstance(data, dict) and data.get("chunk_info"):
            rows = await self._fetch_chunks(data["chunk_info"])
        elif isinstance(data, list):
            rows = data
        else:
            rows = []
        return _map_all(rows, lap_from_raw)

    async def fetch_participant_identity(
        self,
        participant_id: int,
    ) -> Optional[ParticipantIdentity]:
        data = await self._fetch(
            "/data/member/get",
            {"cust_ids": participant_id, "include_licenses": "true"},
        )
        members = data.get("members", []) if isinstance(data, dict) else []
        if not members:
            return None
        try:
            return identity_from_member(members[0])
        except ValidationError as exc:
            raise TransientFetchError(f"unexpected member payload: {exc}") from exc

    async def fetch_event_results(self, event_id: int) -> EventResults:
        data = await self._fetch("/data/results/get", {"subsession_id": event_id})
        if not isinstance(data, dict):
            raise TransientFetchError(f"Could not fetch results for session {event_id}")
        try:
            return results_from_payload(event_id, data)
        except ValidationError as exc:
            raise TransientFetchError(f"unexpected results payload: {exc}") from exc

    # ── Transport ────────────────────────────────────────────────────────

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _fetch(self, endpoint: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}{endpoint}"
        token = await self._tokens.access_token()
        try:
            data = await self._get_json(url, params, token)
        except _Unauthorized:
            logger.info("401 from %s; forcing token refresh", endpoint)
            token = await self._tokens.force_refresh(token)
            try:
                data = await self._get_json(url, params, token)
            except _Unauthorized as exc:
                raise AuthError(f"request to {endpoint} rejected after token refresh") from exc

        if isinstance(data, dict) and data.get("link"):
            # Pre-signed link: no Authorization header.
            try:
                data = await self._get_json(data["link"])
            except _Unauthorized as exc:
                raise TransientFetchError("data link rejected", status=401) from exc
        return data

    async def _fetch_chunks(self, chunk_info: dict[str, Any]) -> list[Any]:
        base = chunk_info.get("base_download_url", "")
        rows: list[Any] = []
        for name in chunk_info.get("chunk_file_names") or []:
            try:
                chunk = await self._get_json(f"{base}{name}")
            except (TransientFetchError, _Unauthorized) as exc:
                logger.debug("Skipping chunk %s: %s", name, exc)
                continue
            if isinstance(chunk, list):
                rows.extend(chunk)
        return rows

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        try:
            async with self._http().get(url, params=params, headers=headers) as resp:
                if resp.status == 401 and token is not None:
                    raise _Unauthorized()
                if resp.status >= 400:
                    text = await resp.text()
                    raise TransientFetchError(text[:200] or resp.reason or "error", status=resp.status)
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TransientFetchError(str(exc) or type(exc).__name__) from exc

    # ── OAuth grants ─────────────────────────────────────────────────────

    async def _password_grant(self) -> TokenSet:
        return await self._post_token({
            "grant_type": "password_limited",
            "client_id": self._client_id,
            "client_secret": mask_secret(self._client_secret, self._client_id),
            "username": self._email,
            "password": mask_secret(self._password, self._email),
            "scope": OAUTH_SCOPE,
        })

    async def _refresh_grant(self, refresh_token: str) -> TokenSet:
        tokens = await self._post_token({
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "client_secret": mask_secret(self._client_secret, self._client_id),
            "refresh_token": refresh_token,
        })
        if tokens.refresh_token is None:
            tokens = TokenSet(tokens.access_token, tokens.expires_at, refresh_token)
        return tokens

    async def _post_token(self, form: dict[str, str]) -> TokenSet:
        try:
            async with self._http().post(self._oauth_url, data=form) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise AuthError(f"token endpoint returned {resp.status}: {text[:200]}")
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise AuthError(f"token request failed: {exc}") from exc

        if not isinstance(body, dict) or not body.get("access_token"):
            raise AuthError("no access token received")
        return TokenSet(
            access_token=body["access_token"],
            expires_at=utc_now() + timedelta(seconds=float(body.get("expires_in", 0))),
            refresh_token=body.get("refresh_token"),
        )


# ── Payload mapping (pure) ───────────────────────────────────────────────────

def _map_all(rows: list[Any], mapper) -> list:
    mapped = []
    for raw in rows:
        if not isinstance(raw, dict):
            continue
        try:
            item = mapper(raw)
        except (ValidationError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Dropping unparseable row: %s", exc)
            continue
        if item is not None:
            mapped.append(item)
    return mapped


def record_from_recent(raw: dict[str, Any]) -> RaceRecord:
    track = raw.get("track") or {}
    return RaceRecord(
        event_id=raw["subsession_id"],
        start_time=raw["session_start_time"],
        track_id=track.get("track_id"),
        track_name=track.get("track_name") or "",
        series_id=raw.get("series_id"),
        series_name=raw.get("series_name") or "",
        start_position=raw.get("start_position"),
        finish_position=raw.get("finish_position"),
        incidents=raw.get("incidents") or 0,
        strength_of_field=raw.get("strength_of_field") or 0,
        irating_before=raw.get("oldi_rating"),
        irating_after=raw.get("newi_rating"),
        sub_level_before=raw.get("old_sub_level"),
        sub_level_after=raw.get("new_sub_level"),
        laps_completed=raw.get("laps") or 0,
    )


def record_from_search(raw: dict[str, Any]) -> RaceRecord:
    track = raw.get("track") or {}
    return RaceRecord(
        event_id=raw["subsession_id"],
        start_time=raw["start_time"],
        track_id=track.get("track_id"),
        track_name=track.get("track_name") or "",
        series_id=raw.get("series_id"),
        series_name=raw.get("series_name") or "",
        start_position=raw.get("start_position"),
        finish_position=raw.get("finish_position"),
        incidents=raw.get("incidents") or 0,
        strength_of_field=raw.get("strength_of_field") or 0,
        irating_before=raw.get("old_irating"),
        irating_after=raw.get("new_irating"),
        sub_level_before=raw.get("old_sub_level"),
        sub_level_after=raw.get("new_sub_level"),
        laps_completed=raw.get("laps_complete") or 0,
    )


def lap_from_raw(raw: dict[str, Any]) -> Optional[LapIncidentSample]:
    if raw.get("lap_number") is None:
        return None
    return LapIncidentSample(
        lap_number=raw["lap_number"],
        cumulative_incidents=int(raw.get("incident") or 0),
        lap_time=raw.get("lap_time"),
        session_time=raw.get("session_time"),
    )


def identity_from_member(raw: dict[str, Any]) -> ParticipantIdentity:
    licenses = [
        LicenseEntry(
            category_id=lic.get("category_id", 0),
            category=lic.get("category") or "",
            license_class=lic.get("group_name") or "",
            safety_rating=lic.get("safety_rating") or 0.0,
            irating=lic.get("irating") or 0,
        )
        for lic in raw.get("licenses") or []
    ]
    return ParticipantIdentity(
        participant_id=raw["cust_id"],
        display_name=raw.get("display_name") or f"Driver {raw['cust_id']}",
        licenses=licenses,
    )


def results_from_payload(event_id: int, raw: dict[str, Any]) -> EventResults:
    sessions = raw.get("session_results") or []
    race = next(
        (s for s in sessions if s.get("simsession_type") == RACE_SIMSESSION_TYPE),
        sessions[0] if sessions else {},
    )
    entries = [
        EventResultEntry(
            participant_id=row["cust_id"],
            display_name=row.get("display_name") or "",
            start_position=row.get("starting_position"),
            finish_position=row.get("finish_position"),
            incidents=row.get("incidents") or 0,
        )
        for row in race.get("results") or []
        if row.get("cust_id") is not None
    ]
    track = (raw.get("session_info") or {}).get("track") or raw.get("track") or {}
    return EventResults(
        event_id=raw.get("subsession_id") or event_id,
        series_name=raw.get("series_name") or "Unknown Series",
        track_name=track.get("track_name") or "Unknown Track",
        strength_of_field=raw.get("event_strength_of_field") or 0,
        entries=entries,
    )
