"""Fitbit Web API adapter for body-weight logs.

Environment variables (via Settings):
    FITBIT_CLIENT_ID      — OAuth2 client ID
    FITBIT_CLIENT_SECRET  — OAuth2 client secret

API base: https://api.fitbit.com

Endpoints used:
    /1/user/-/body/log/weight/date/{date}.json          — one day of weight logs
    /1/user/-/body/log/weight/date/{start}/{end}.json   — a range (max 31 days, one month)
    /oauth2/token                                       — refresh_token grant

The access token is read from the token secret on first use.  A 401 from
the API refreshes it, persists the refreshed pair through credential
rotation, and retries the request once.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import httpx

from src.ingest.base import OAuthTokens, WeightProvider, WeightSample
from src.ingest.credentials import TokenManager
from src.models.ingest import FitbitSubscriptionEvent

logger = logging.getLogger("scalesync.ingest.fitbit")

_FITBIT_API_BASE = "https://api.fitbit.com"
_FITBIT_TOKEN_URL = "https://api.fitbit.com/oauth2/token"

# Refresh this long before the stated expiry
_EXPIRY_MARGIN = timedelta(seconds=60)


class ProviderError(RuntimeError):
    """Raised when Fitbit returns a payload that cannot be normalized."""


def resolve_timestamp(day: str, time_of_day: str, tz: ZoneInfo) -> datetime:
    """Combine a Fitbit ``date`` and ``time`` into an aware datetime in ``tz``."""
    naive = datetime.strptime(f"{day} {time_of_day}", "%Y-%m-%d %H:%M:%S")
    return naive.replace(tzinfo=tz)


def days_to_sync(events: list[FitbitSubscriptionEvent]) -> list[date]:
    """Return the distinct dates named by weight notifications, in delivery order.

    Notifications for other collections are skipped.
    """
    days: list[date] = []
    for event in events:
        if event.collection_type != "body":
            logger.info(
                "Ignoring %s notification for %s (subscription %s)",
                event.collection_type, event.date, event.subscription_id,
            )
            continue
        if event.date not in days:
            days.append(event.date)
    return days


class FitbitClient(WeightProvider):
    """Fitbit body-weight adapter.

    Supports:
    - Day and month-range weight log fetches
    - OAuth2 refresh on 401, persisted through the token secret
    """

    SOURCE_ID = "fitbit"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        tokens: TokenManager,
        tz: ZoneInfo | None = None,
        locale: str = "en_AU",
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = 15.0,
        max_range_days: int = 31,
    ) -> None:
        """Initialize the Fitbit adapter.

        Args:
            client_id:      OAuth2 client ID.
            client_secret:  OAuth2 client secret.
            tokens:         Token persistence (load / store via rotation).
            tz:             Zone used to resolve weight timestamps.
            locale:         Accept-Language sent to Fitbit; picks the unit system.
            http_client:    Optional pre-configured httpx client (for testing).
            timeout_s:      Per-request timeout.
            max_range_days: Longest range Fitbit accepts in one call.
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_manager = tokens
        self._tz = tz or ZoneInfo("UTC")
        self._locale = locale
        self._http_client = http_client
        self._timeout_s = timeout_s
        self._max_range_days = max_range_days
        self._tokens: OAuthTokens | None = None
        self._token_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # WeightProvider interface
    # ------------------------------------------------------------------

    async def fetch_day(self, day: date) -> list[WeightSample]:
        """Fetch every weight log filed under ``day``."""
        raw = await self._get(
            f"{_FITBIT_API_BASE}/1/user/-/body/log/weight/date/{day.isoformat()}.json"
        )
        return self.normalize_weights(raw)

    async def fetch_range(self, start: date, end: date) -> list[WeightSample]:
        """Fetch weight logs for a range confined to one calendar month.

        Raises:
            ValueError: If the range is inverted, crosses a month, or is too long.
        """
        if end < start:
            raise ValueError(f"Inverted range {start}..{end}")
        if (start.year, start.month) != (end.year, end.month):
            raise ValueError(f"Fitbit range {start}..{end} crosses a month boundary")
        if (end - start).days + 1 > self._max_range_days:
            raise ValueError(f"Fitbit range {start}..{end} exceeds {self._max_range_days} days")

        raw = await self._get(
            f"{_FITBIT_API_BASE}/1/user/-/body/log/weight/date/"
            f"{start.isoformat()}/{end.isoformat()}.json"
        )
        return self.normalize_weights(raw)

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_weights(self, raw: dict) -> list[WeightSample]:
        """Convert a Fitbit weight log response to WeightSamples.

        This is a pure function — no I/O, no side effects.

        Raises:
            ProviderError: If an entry is missing its id, date, time, or weight.
        """
        samples: list[WeightSample] = []
        for entry in raw.get("weight", []) or []:
            try:
                log_id = int(entry["logId"])
                day = entry["date"]
                time_of_day = entry["time"]
                weight = float(entry["weight"])
                recorded_at = resolve_timestamp(day, time_of_day, self._tz)
            except (KeyError, TypeError, ValueError) as exc:
                raise ProviderError(f"Malformed Fitbit weight entry {entry!r}: {exc}") from exc

            samples.append(
                WeightSample(
                    log_id=log_id,
                    date=recorded_at.date(),
                    time=time_of_day,
                    weight=weight,
                    recorded_at=recorded_at,
                )
            )
        return samples

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def refresh(self, tokens: OAuthTokens) -> OAuthTokens:
        """Exchange the refresh token for a new token pair.

        Raises:
            ProviderError:         If no refresh token is stored.
            httpx.HTTPStatusError: On non-2xx responses.
        """
        if not tokens.refresh_token:
            raise ProviderError("Stored Fitbit token has no refresh_token")

        logger.info("Fitbit: refreshing access token")
        data = {"grant_type": "refresh_token", "refresh_token": tokens.refresh_token}
        auth = (self._client_id, self._client_secret)

        if self._http_client:
            response = await self._http_client.post(_FITBIT_TOKEN_URL, data=data, auth=auth)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.post(_FITBIT_TOKEN_URL, data=data, auth=auth)

        response.raise_for_status()
        payload = response.json()

        expires_in = payload.get("expires_in", 28800)
        return OAuthTokens(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token", tokens.refresh_token),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            token_type=payload.get("token_type", "Bearer"),
            extra={k: payload[k] for k in ("user_id", "scope") if k in payload},
        )

    async def _current_tokens(self) -> OAuthTokens:
        if self._tokens is None:
            async with self._token_lock:
                if self._tokens is None:
                    self._tokens = await self._token_manager.load()
        return self._tokens

    async def _refresh_tokens(self, stale: OAuthTokens) -> OAuthTokens:
        """Refresh once per stale token, however many requests saw it fail."""
        async with self._token_lock:
            if self._tokens is not None and self._tokens.access_token != stale.access_token:
                return self._tokens
            fresh = await self.refresh(stale)
            # The old refresh token is spent once refresh() returns
            self._tokens = fresh
            await self._token_manager.store(fresh)
            return fresh

    def _is_expired(self, tokens: OAuthTokens) -> bool:
        if tokens.expires_at is None:
            return False
        return tokens.expires_at - _EXPIRY_MARGIN <= datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _build_headers(self, tokens: OAuthTokens) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {tokens.access_token}",
            "Accept-Language": self._locale,
            "Accept-Locale": self._locale,
        }

    async def _send(self, url: str, tokens: OAuthTokens) -> httpx.Response:
        headers = self._build_headers(tokens)
        if self._http_client:
            return await self._http_client.get(url, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout_s) as client:
            return await client.get(url, headers=headers)

    async def _get(self, url: str) -> dict:
        """Make an authenticated GET request to the Fitbit API.

        Raises:
            httpx.HTTPStatusError: On non-2xx responses (after one refresh on 401).
        """
        tokens = await self._current_tokens()
        if self._is_expired(tokens):
            tokens = await self._refresh_tokens(tokens)

        response = await self._send(url, tokens)
        if response.status_code == 401:
            logger.info("Fitbit: 401 from %s, refreshing token and retrying", url)
            tokens = await self._refresh_tokens(tokens)
            response = await self._send(url, tokens)

        response.raise_for_status()
        return response.json()
