"""Composition root: build every service handle once and hand them out.

The store, secret store, and HTTP client are built at startup by
``build_container``.  The Fitbit client is built on first use; it reads its
token from the secret store lazily, behind its own lock, so concurrent first
requests trigger exactly one token load.
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

import asyncpg
import httpx

from src.config import Settings
from src.ingest.adapters.fitbit import FitbitClient
from src.ingest.base import WeightProvider
from src.ingest.config_loader import IngestConfig, get_ingest_config
from src.ingest.credentials import CredentialRotator, TokenManager
from src.ingest.sync.coordinator import SyncCoordinator
from src.ingest.sync.energy import EnergySync
from src.ingest.sync.reconciler import Reconciler
from src.ingest.sync.store import PostgresStore, Store
from src.services.database import close_pool, create_pool
from src.services.secret_store import S3SecretStore, SecretStore, create_s3_client

logger = logging.getLogger("scalesync.services")


class ServiceContainer:
    """Explicitly constructed service handles shared by every request."""

    def __init__(
        self,
        settings: Settings,
        store: Store,
        secret_store: SecretStore,
        provider: WeightProvider | None = None,
        config: IngestConfig | None = None,
        pool: asyncpg.Pool | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.config = config or get_ingest_config()
        self.store = store
        self.secret_store = secret_store
        self.rotator = CredentialRotator(secret_store, settings.token_secret_name)
        self.tokens = TokenManager(self.rotator)
        self.reconciler = Reconciler(store)
        self.energy = EnergySync(self.reconciler)
        self._provider = provider
        self._coordinator: SyncCoordinator | None = None
        self._pool = pool
        self._http_client = http_client

    @property
    def provider(self) -> WeightProvider:
        if self._provider is None:
            self._provider = FitbitClient(
                client_id=self.settings.fitbit_client_id,
                client_secret=self.settings.fitbit_client_secret,
                tokens=self.tokens,
                tz=ZoneInfo(self.settings.timezone),
                locale=self.settings.fitbit_locale,
                http_client=self._http_client,
                timeout_s=self.config.provider.request_timeout_s,
                max_range_days=self.config.provider.max_range_days,
            )
        return self._provider

    @property
    def coordinator(self) -> SyncCoordinator:
        if self._coordinator is None:
            self._coordinator = SyncCoordinator(
                self.provider,
                self.reconciler,
                max_concurrency=self.config.fan_out.max_concurrency,
            )
        return self._coordinator

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
        if self._pool is not None:
            await close_pool(self._pool)


async def build_container(settings: Settings) -> ServiceContainer:
    """Create the production services.  Call once at app startup."""
    config = get_ingest_config()
    pool = await create_pool(settings)
    secret_store = S3SecretStore(settings.secret_bucket_name, create_s3_client(settings))
    http_client = httpx.AsyncClient(timeout=config.provider.request_timeout_s)
    logger.info(
        "Services ready (timezone=%s, token secret=%s)",
        settings.timezone, settings.token_secret_name,
    )
    return ServiceContainer(
        settings=settings,
        store=PostgresStore(pool),
        secret_store=secret_store,
        config=config,
        pool=pool,
        http_client=http_client,
    )
