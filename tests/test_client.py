"""Tests for the historical data client: payload mapping, secret masking
and the 401 refresh-and-retry transport policy.

HTTP is mocked at the client's _get_json / _post_token level.
"""

from __future__ import annotations

import base64
import hashlib
from datetime import timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from racesafe.errors import AuthError, TransientFetchError
from racesafe.foundation.clock import utc_now
from racesafe.history.client import (
    IRacingDataClient,
    _Unauthorized,
    identity_from_member,
    lap_from_raw,
    mask_secret,
    record_from_recent,
    record_from_search,
    results_from_payload,
)
from racesafe.history.tokens import TokenSet


def _client() -> IRacingDataClient:
    return IRacingDataClient("driver@example.com", "hunter2", "racesafe", "s3cret")


def _tokens(name: str, refresh: str | None = "r-1") -> TokenSet:
    return TokenSet(access_token=name, expires_at=utc_now() + timedelta(hours=1), refresh_token=refresh)


# ── Masking ──────────────────────────────────────────────────────────────────

class TestMaskSecret:
    def test_sha256_of_secret_and_normalised_identifier(self):
        expected = base64.b64encode(hashlib.sha256(b"hunter2driver@example.com").digest()).decode()
        assert mask_secret("hunter2", "  Driver@Example.COM ") == expected

    def test_differs_per_identifier(self):
        assert mask_secret("x", "a@b.c") != mask_secret("x", "d@e.f")


# ── Mappers ──────────────────────────────────────────────────────────────────

class TestRecordMapping:
    def test_recent_race_row(self):
        record = record_from_recent({
            "subsession_id": 501,
            "session_start_time": "2026-03-01T18:00:00Z",
            "track": {"track_id": 9, "track_name": "Spa"},
            "series_name": "GT3",
            "incidents": 6,
            "oldi_rating": 2100,
            "newi_rating": 2080,
            "old_sub_level": 341,
            "new_sub_level": 330,
            "laps": 22,
        })
        assert record.event_id == 501
        assert record.start_time.tzinfo is not None
        assert record.track_name == "Spa"
        assert record.irating_before == 2100
        assert record.sub_level_delta == -11
        assert record.laps_completed == 22

    def test_search_row_uses_search_field_names(self):
        record = record_from_search({
            "subsession_id": 502,
            "start_time": "2026-03-02T18:00:00Z",
            "incidents": None,
            "old_irating": 1500,
            "laps_complete": 15,
        })
        assert record.incidents == 0
        assert record.irating_before == 1500
        assert record.laps_completed == 15
        assert record.start_time.astimezone(timezone.utc).hour == 18

    def test_lap_rows(self):
        assert lap_from_raw({"lap_number": 3, "incident": 4, "lap_time": 912345}).cumulative_incidents == 4
        assert lap_from_raw({"incident": 1}) is None


class TestIdentityMapping:
    def test_licenses(self):
        identity = identity_from_member({
            "cust_id": 77,
            "display_name": "Pat Pace",
            "licenses": [
                {"category_id": 2, "category": "road", "group_name": "Class C", "safety_rating": 3.1, "irating": 1400},
                {"category_id": 5, "category": "sports_car", "group_name": "Class A", "safety_rating": 4.2, "irating": 3100},
            ],
        })
        primary = identity.primary_license()
        assert primary.license_class == "Class A"
        assert primary.irating == 3100

    def test_no_licenses(self):
        identity = identity_from_member({"cust_id": 78})
        assert identity.display_name == "Driver 78"
        assert identity.primary_license() is None


class TestResultsMapping:
    def test_picks_race_simsession(self):
        results = results_from_payload(900, {
            "series_name": "Mazda Cup",
            "event_strength_of_field": 1650,
            "session_info": {"track": {"track_name": "Laguna Seca"}},
            "session_results": [
                {"simsession_type": 4, "results": [{"cust_id": 1}]},
                {"simsession_type": 6, "results": [
                    {"cust_id": 1, "display_name": "A", "starting_position": 2, "finish_position": 1},
                    {"cust_id": 2, "display_name": "B", "starting_position": 1, "finish_position": 2},
                    {"display_name": "ghost"},
                ]},
            ],
        })
        assert results.event_id == 900
        assert results.track_name == "Laguna Seca"
        assert results.strength_of_field == 1650
        assert [e.participant_id for e in results.entries] == [1, 2]
        assert results.entries[0].start_position == 2

    def test_defaults_when_sparse(self):
        results = results_from_payload(901, {})
        assert results.series_name == "Unknown Series"
        assert results.track_name == "Unknown Track"
        assert results.entries == []


# ── Transport ────────────────────────────────────────────────────────────────

class TestFetch:
    @pytest.mark.asyncio
    async def test_authenticate_requires_credentials(self):
        client = IRacingDataClient("", "", "", "")
        assert not client.has_credentials
        with pytest.raises(AuthError):
            await client.authenticate()

    @pytest.mark.asyncio
    async def test_follows_link_without_token(self):
        client = _client()
        with patch.object(client, "_post_token", AsyncMock(return_value=_tokens("a-1"))):
            await client.authenticate()
        get_json = AsyncMock(side_effect=[
            {"link": "https://scorpio.example/abc"},
            {"races": [{"subsession_id": 1, "session_start_time": "2026-03-01T18:00:00Z", "incidents": 2}]},
        ])
        with patch.object(client, "_get_json", get_json):
            races = await client.fetch_recent_records(42)

        assert [r.incidents for r in races] == [2]
        first, second = get_json.await_args_list
        assert first.args[2] == "a-1"
        assert second.args == ("https://scorpio.example/abc",)

    @pytest.mark.asyncio
    async def test_single_refresh_and_retry_on_401(self):
        client = _client()
        post_token = AsyncMock(side_effect=[_tokens("a-1"), _tokens("a-2")])
        get_json = AsyncMock(side_effect=[_Unauthorized(), {"members": [{"cust_id": 5}]}])
        with patch.object(client, "_post_token", post_token), patch.object(client, "_get_json", get_json):
            await client.authenticate()
            identity = await client.fetch_participant_identity(5)

        assert identity.participant_id == 5
        assert post_token.await_count == 2
        assert get_json.await_args_list[1].args[2] == "a-2"

    @pytest.mark.asyncio
    async def test_second_401_is_auth_error(self):
        client = _client()
        post_token = AsyncMock(side_effect=[_tokens("a-1"), _tokens("a-2")])
        get_json = AsyncMock(side_effect=[_Unauthorized(), _Unauthorized()])
        with patch.object(client, "_post_token", post_token), patch.object(client, "_get_json", get_json):
            await client.authenticate()
            with pytest.raises(AuthError):
                await client.fetch_recent_records(5)

    @pytest.mark.asyncio
    async def test_chunks_skip_failures(self):
        client = _client()
        get_json = AsyncMock(side_effect=[
            {"data": {"chunk_info": {
                "base_download_url": "https://chunks.example/",
                "chunk_file_names": ["0.json", "1.json"],
            }}},
            TransientFetchError("gone", status=404),
            [{"subsession_id": 3, "start_time": "2026-03-03T18:00:00Z", "incidents": 1}],
        ])
        with patch.object(client, "_post_token", AsyncMock(return_value=_tokens("a-1"))):
            await client.authenticate()
        with patch.object(client, "_get_json", get_json):
            races = await client.search_records_by_date_range(5, utc_now() - timedelta(days=30))

        assert [r.event_id for r in races] == [3]
        params = get_json.await_args_list[0].args[1]
        assert params["official_only"] == "true"
        assert params["event_types"] == 5

    @pytest.mark.asyncio
    async def test_unparseable_results_are_transient(self):
        client = _client()
        with patch.object(client, "_post_token", AsyncMock(return_value=_tokens("a-1"))):
            await client.authenticate()
        payload = {"session_results": [{"results": [{"cust_id": "not-a-number"}]}]}
        with patch.object(client, "_get_json", AsyncMock(return_value=payload)):
            with pytest.raises(TransientFetchError):
                await client.fetch_event_results(12)
