"""Wiring of the sync components from settings."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from .client import RetryingApiClient
from .config import SyncSettings
from .connectors import HttpConnector, ProviderConnectorBase
from .database import RegionDatabaseRegistry
from .query import SettlementQueryService
from .sync import MultiRegionCoordinator, RegionSyncJob
from .token_session import AuthSessionManager

logger = logging.getLogger(__name__)


@dataclass
class SyncComponents:
    """Components built once at startup and shared by reference."""
    settings: SyncSettings
    connector: ProviderConnectorBase
    sessions: AuthSessionManager
    client: RetryingApiClient
    databases: RegionDatabaseRegistry
    job: RegionSyncJob
    coordinator: MultiRegionCoordinator
    query: SettlementQueryService

    async def aclose(self) -> None:
        """Drain running jobs, then release transport and datastores."""
        await self.coordinator.close()
        await self.connector.aclose()
        await self.databases.shutdown()


def build_components(
    settings: Optional[SyncSettings] = None,
    connector: Optional[ProviderConnectorBase] = None,
    databases: Optional[RegionDatabaseRegistry] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    close_grace_period: Optional[float] = None,
) -> SyncComponents:
    """Build the full component graph.

    Args:
        settings: Settings to use. Loaded from the environment if omitted.
        connector: Provider transport. An HttpConnector is built if omitted.
        databases: Region datastores. Built from the environment if omitted.
        sleep: Awaitable used between retry attempts.
        close_grace_period: Seconds the coordinator waits on close.

    Returns:
        SyncComponents holding every component.
    """
    settings = settings or SyncSettings.from_env()
    connector = connector or HttpConnector(settings)
    databases = databases or RegionDatabaseRegistry.from_env(settings.regions)

    sessions = AuthSessionManager(
        connector,
        settings.username,
        settings.password,
        validity=timedelta(hours=settings.token_validity_hours),
        safety_margin=timedelta(hours=settings.token_safety_margin_hours),
    )
    client = RetryingApiClient(
        connector,
        sessions,
        max_retries=settings.max_retries,
        base_delay=settings.retry_base_delay_ms / 1000,
        max_lookback_days=settings.max_lookback_days,
        today=settings.today,
        sleep=sleep,
    )
    job = RegionSyncJob(
        client,
        databases,
        chargebacks_enabled=settings.chargebacks_enabled,
        today=settings.today,
    )
    coordinator = MultiRegionCoordinator(
        job,
        pool_size=settings.pool_size,
        per_region_timeout=settings.per_region_timeout_seconds,
        max_lookback_days=settings.max_lookback_days,
        days_back=settings.days_back,
        regions=settings.regions,
        today=settings.today,
        close_grace_period=close_grace_period,
    )
    query = SettlementQueryService(
        client,
        today=settings.today,
        max_lookback_days=settings.max_lookback_days,
        regions=settings.regions,
    )
    logger.info(
        f"Sync components ready: {len(settings.regions)} regions, pool size {settings.pool_size}, "
        f"chargebacks {'enabled' if settings.chargebacks_enabled else 'disabled'}"
    )
    return SyncComponents(
        settings=settings,
        connector=connector,
        sessions=sessions,
        client=client,
        databases=databases,
        job=job,
        coordinator=coordinator,
        query=query,
    )
