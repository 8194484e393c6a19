"""Tests for the Fitbit adapter: normalization, range checks and token refresh."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import httpx
import pytest

from src.ingest.adapters.fitbit import (
    FitbitClient,
    ProviderError,
    days_to_sync,
    resolve_timestamp,
)
from src.ingest.base import OAuthTokens
from src.ingest.credentials import CredentialRotator, RotationError, TokenManager
from src.ingest.tests.conftest import TEST_TZ, TOKEN_SECRET, FakeSecretStore
from src.models.ingest import FitbitSubscriptionEvent


def _response(status_code: int, payload: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json = MagicMock(return_value=payload or {})
    if status_code >= 400:
        request = httpx.Request("GET", "https://api.fitbit.com")
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError(
                "error", request=request, response=httpx.Response(status_code, request=request)
            )
        )
    else:
        response.raise_for_status = MagicMock()
    return response


async def _client(
    secret_store: FakeSecretStore,
    http_client: MagicMock | None = None,
    tokens: OAuthTokens | None = None,
) -> FitbitClient:
    tokens = tokens or OAuthTokens(
        access_token="old-access",
        refresh_token="old-refresh",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=8),
    )
    await secret_store.add_version(TOKEN_SECRET, tokens.to_json())
    return FitbitClient(
        client_id="test_client_id",
        client_secret="test_client_secret",
        tokens=TokenManager(CredentialRotator(secret_store, TOKEN_SECRET)),
        tz=TEST_TZ,
        http_client=http_client,
    )


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeWeights:
    @pytest.mark.asyncio
    async def test_normalizes_entries(self, secret_store, fitbit_day_raw) -> None:
        client = await _client(secret_store)
        samples = client.normalize_weights(fitbit_day_raw)

        assert [s.log_id for s in samples] == [12345, 12346]
        first = samples[0]
        assert first.date == date(2024, 5, 1)
        assert first.time == "06:45:12"
        assert first.weight == 78.4
        assert first.recorded_at == datetime(2024, 5, 1, 6, 45, 12, tzinfo=TEST_TZ)

    @pytest.mark.asyncio
    async def test_empty_response(self, secret_store) -> None:
        client = await _client(secret_store)
        assert client.normalize_weights({}) == []
        assert client.normalize_weights({"weight": []}) == []

    @pytest.mark.asyncio
    async def test_malformed_entry_raises(self, secret_store) -> None:
        client = await _client(secret_store)
        with pytest.raises(ProviderError):
            client.normalize_weights({"weight": [{"logId": 1, "date": "2024-05-01", "weight": 80}]})

    @pytest.mark.asyncio
    async def test_display_helpers(self, secret_store, fitbit_day_raw) -> None:
        client = await _client(secret_store)
        second = client.normalize_weights(fitbit_day_raw)[1]
        assert second.weight_display == "78.0"
        assert second.display_date == "May 1"
        assert second.js_date == "2024-05-01 21:10:00"


class TestResolveTimestamp:
    def test_uses_configured_zone(self) -> None:
        ts = resolve_timestamp("2024-05-01", "07:30:00", ZoneInfo("Australia/Sydney"))
        assert ts.utcoffset() == timedelta(hours=10)
        assert ts.astimezone(timezone.utc) == datetime(2024, 4, 30, 21, 30, tzinfo=timezone.utc)

    def test_utc(self) -> None:
        ts = resolve_timestamp("2024-05-01", "07:30:00", ZoneInfo("UTC"))
        assert ts == datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Subscription events
# ---------------------------------------------------------------------------


class TestDaysToSync:
    def test_distinct_dates_in_order(self) -> None:
        events = [
            FitbitSubscriptionEvent(collectionType="body", date="2024-05-02", subscriptionId="1"),
            FitbitSubscriptionEvent(collectionType="body", date="2024-05-01", subscriptionId="1"),
            FitbitSubscriptionEvent(collectionType="body", date="2024-05-02", subscriptionId="1"),
        ]
        assert days_to_sync(events) == [date(2024, 5, 2), date(2024, 5, 1)]

    def test_other_collections_skipped(self) -> None:
        events = [
            FitbitSubscriptionEvent(collectionType="activities", date="2024-05-01", subscriptionId="1"),
            FitbitSubscriptionEvent(collectionType="body", date="2024-05-03", subscriptionId="1"),
        ]
        assert days_to_sync(events) == [date(2024, 5, 3)]


# ---------------------------------------------------------------------------
# Range validation
# ---------------------------------------------------------------------------


class TestFetchRangeValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "start, end",
        [
            (date(2024, 5, 10), date(2024, 5, 1)),
            (date(2024, 4, 20), date(2024, 5, 10)),
            (date(2023, 12, 31), date(2024, 1, 1)),
        ],
    )
    async def test_rejects_bad_ranges(self, secret_store, start, end) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock()
        client = await _client(secret_store, http_client)

        with pytest.raises(ValueError):
            await client.fetch_range(start, end)
        http_client.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_month_range_url(self, secret_store, fitbit_day_raw) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock(return_value=_response(200, fitbit_day_raw))
        client = await _client(secret_store, http_client)

        samples = await client.fetch_range(date(2024, 5, 1), date(2024, 5, 31))

        assert len(samples) == 2
        url = http_client.get.call_args.args[0]
        assert url.endswith("/1/user/-/body/log/weight/date/2024-05-01/2024-05-31.json")


# ---------------------------------------------------------------------------
# HTTP and token refresh
# ---------------------------------------------------------------------------


class TestFetchDay:
    @pytest.mark.asyncio
    async def test_sends_bearer_and_locale(self, secret_store, fitbit_day_raw) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock(return_value=_response(200, fitbit_day_raw))
        client = await _client(secret_store, http_client)

        samples = await client.fetch_day(date(2024, 5, 1))

        assert len(samples) == 2
        call = http_client.get.call_args
        assert call.args[0].endswith("/1/user/-/body/log/weight/date/2024-05-01.json")
        assert call.kwargs["headers"]["Authorization"] == "Bearer old-access"
        assert call.kwargs["headers"]["Accept-Language"] == "en_AU"

    @pytest.mark.asyncio
    async def test_401_refreshes_rotates_and_retries(self, secret_store, fitbit_day_raw) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock(side_effect=[_response(401), _response(200, fitbit_day_raw)])
        http_client.post = AsyncMock(
            return_value=_response(
                200,
                {
                    "access_token": "new-access",
                    "refresh_token": "new-refresh",
                    "expires_in": 28800,
                    "user_id": "ABC123",
                },
            )
        )
        client = await _client(secret_store, http_client)

        samples = await client.fetch_day(date(2024, 5, 1))

        assert len(samples) == 2
        assert http_client.get.call_count == 2
        retry_headers = http_client.get.call_args_list[1].kwargs["headers"]
        assert retry_headers["Authorization"] == "Bearer new-access"

        post = http_client.post.call_args
        assert post.kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "old-refresh"}
        assert post.kwargs["auth"] == ("test_client_id", "test_client_secret")

        # Refreshed pair is the only live version of the token secret
        assert len(secret_store.live()) == 1
        stored = OAuthTokens.from_json(await secret_store.get_latest_version(TOKEN_SECRET))
        assert stored.access_token == "new-access"
        assert stored.refresh_token == "new-refresh"
        assert stored.extra == {"user_id": "ABC123"}

    @pytest.mark.asyncio
    async def test_second_401_raises(self, secret_store) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock(side_effect=[_response(401), _response(401)])
        http_client.post = AsyncMock(
            return_value=_response(200, {"access_token": "new-access", "refresh_token": "r2"})
        )
        client = await _client(secret_store, http_client)

        with pytest.raises(httpx.HTTPStatusError):
            await client.fetch_day(date(2024, 5, 1))
        assert http_client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_before_request(self, secret_store, fitbit_day_raw) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock(return_value=_response(200, fitbit_day_raw))
        http_client.post = AsyncMock(
            return_value=_response(200, {"access_token": "fresh", "refresh_token": "r2"})
        )
        expired = OAuthTokens(
            access_token="stale",
            refresh_token="r1",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        )
        client = await _client(secret_store, http_client, tokens=expired)

        await client.fetch_day(date(2024, 5, 1))

        assert http_client.post.call_count == 1
        assert http_client.get.call_args.kwargs["headers"]["Authorization"] == "Bearer fresh"

    @pytest.mark.asyncio
    async def test_token_loaded_once(self, secret_store, fitbit_day_raw) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock(return_value=_response(200, fitbit_day_raw))
        client = await _client(secret_store, http_client)
        client._token_manager.load = AsyncMock(wraps=client._token_manager.load)

        await client.fetch_day(date(2024, 5, 1))
        await client.fetch_day(date(2024, 5, 2))

        assert client._token_manager.load.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_token_save_keeps_refreshed_pair(self, secret_store, fitbit_day_raw) -> None:
        http_client = MagicMock()
        http_client.get = AsyncMock(
            side_effect=[_response(401), _response(200, fitbit_day_raw)]
        )
        http_client.post = AsyncMock(
            return_value=_response(
                200, {"access_token": "new-access", "refresh_token": "new-refresh"}
            )
        )
        client = await _client(secret_store, http_client)
        secret_store.fail_add = True

        with pytest.raises(RotationError):
            await client.fetch_day(date(2024, 5, 1))

        assert client._tokens.access_token == "new-access"
        assert client._tokens.refresh_token == "new-refresh"

        # Next call uses the in-memory pair without refreshing again
        samples = await client.fetch_day(date(2024, 5, 1))
        assert len(samples) == 2
        assert http_client.post.call_count == 1
        assert http_client.get.call_args.kwargs["headers"]["Authorization"] == "Bearer new-access"

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, secret_store) -> None:
        client = await _client(secret_store)
        with pytest.raises(ProviderError):
            await client.refresh(OAuthTokens(access_token="a"))
