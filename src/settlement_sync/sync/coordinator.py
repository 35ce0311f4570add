"""Fan-out of region jobs and consolidation of their results."""

import asyncio
import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import ValidationError
from ..models import ConsolidatedSyncResult, DateRange, RegionSyncResult
from .job import RegionSyncJob
from .pool import WorkerPool

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "interrupted before the region result was collected"


class MultiRegionCoordinator:
    """
    Runs one RegionSyncJob per region on a bounded worker pool and merges the
    results into a ConsolidatedSyncResult.

    Each job is awaited in submission order for at most the per-region
    timeout. A timeout is recorded as a failed region; the job itself keeps
    running and its writes still land, but its late result is not merged.
    Partial success is a normal outcome: only invalid parameters are raised.
    """

    def __init__(
        self,
        job: RegionSyncJob,
        pool_size: int = 5,
        per_region_timeout: float = 60,
        max_lookback_days: int = 90,
        days_back: int = 7,
        regions: Optional[Iterable[str]] = None,
        today: Optional[Callable[[], date]] = None,
        close_grace_period: Optional[float] = None,
    ):
        """Initialize the coordinator and its worker pool.

        Args:
            job: Pipeline run for every region.
            pool_size: Default number of concurrent region jobs.
            per_region_timeout: Default seconds to wait for each region.
            max_lookback_days: Maximum date range span.
            days_back: Default window for :meth:`sync_recent`.
            regions: Default regions for :meth:`sync_recent`.
            today: Current date in the provider's timezone.
            close_grace_period: Seconds :meth:`close` waits for jobs that
                outlived their timeout before cancelling them.
        """
        if per_region_timeout <= 0:
            raise ValidationError(f"per_region_timeout must be positive, got {per_region_timeout}")
        self.job = job
        self.per_region_timeout = per_region_timeout
        self.max_lookback_days = max_lookback_days
        self.days_back = days_back
        self.regions = list(regions or [])
        self.close_grace_period = close_grace_period
        self._today = today or date.today
        self.pool = WorkerPool(pool_size, name="regions")
        self._call_pools: List[WorkerPool] = []
        # Most recent run, kept when the caller is interrupted before receiving it
        self.last_result: Optional[ConsolidatedSyncResult] = None

    @staticmethod
    def _normalize_regions(region_codes: Iterable[str]) -> List[str]:
        codes: List[str] = []
        for code in region_codes or []:
            code = (code or "").strip().upper()
            if code and code not in codes:
                codes.append(code)
        return codes

    def _pool_for_call(self, pool_size: Optional[int]) -> WorkerPool:
        if pool_size is None or pool_size == self.pool.size:
            return self.pool
        pool = WorkerPool(pool_size, name=f"regions-{pool_size}")
        self._call_pools.append(pool)
        return pool

    def _release_call_pools(self) -> None:
        # Pools whose jobs have all finished no longer need draining
        self._call_pools = [p for p in self._call_pools if p.pending > 0]

    @staticmethod
    def _task_result(region_code: str, task: asyncio.Task) -> RegionSyncResult:
        if task.cancelled():
            return RegionSyncResult.failed(region_code, "cancelled")
        error = task.exception()
        if error is not None:
            logger.error(f"[{region_code}] Region job raised: {error!r}")
            return RegionSyncResult.failed(region_code, f"job error: {type(error).__name__}: {error}")
        return task.result()

    async def _collect(
        self,
        region_code: str,
        task: asyncio.Task,
        timeout: float,
    ) -> RegionSyncResult:
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning(f"[{region_code}] No result after {timeout:g}s; marking as timed out")
            return RegionSyncResult.failed(region_code, f"timeout: exceeded {timeout:g} seconds")
        return self._task_result(region_code, task)

    async def sync_regions(
        self,
        region_codes: Iterable[str],
        date_range: DateRange,
        pool_size: Optional[int] = None,
        per_region_timeout: Optional[float] = None,
    ) -> ConsolidatedSyncResult:
        """Synchronize every region for ``date_range``.

        Args:
            region_codes: Regions to synchronize. Duplicates are ignored.
            date_range: Inclusive query window shared by all regions.
            pool_size: Concurrent jobs for this call. Defaults to the
                coordinator's pool.
            per_region_timeout: Seconds to wait for each region.

        Returns:
            ConsolidatedSyncResult, finalized.

        Raises:
            ValidationError: If the region list is empty or the parameters
                are invalid.
            asyncio.CancelledError: If the caller is cancelled; results
                collected so far are consolidated first.
        """
        codes = self._normalize_regions(region_codes)
        if not codes:
            raise ValidationError("at least one region code is required")
        timeout = self.per_region_timeout if per_region_timeout is None else per_region_timeout
        if timeout <= 0:
            raise ValidationError(f"per_region_timeout must be positive, got {timeout}")
        if pool_size is not None and pool_size <= 0:
            raise ValidationError(f"pool_size must be positive, got {pool_size}")
        date_range.check(self._today(), self.max_lookback_days)

        pool = self._pool_for_call(pool_size)
        consolidated = ConsolidatedSyncResult(date_range=date_range)
        self.last_result = consolidated
        logger.info(
            f"Starting sync of {len(codes)} regions ({', '.join(codes)}) for {date_range} "
            f"with {pool.size} workers, {timeout:g}s per region"
        )

        tasks = [
            (code, pool.submit(self.job.run, code, date_range, name=f"sync-{code}"))
            for code in codes
        ]

        position = 0
        try:
            for position, (code, task) in enumerate(tasks):
                consolidated.add(await self._collect(code, task, timeout))
        except asyncio.CancelledError:
            code, _ = tasks[position]
            logger.warning(f"Sync interrupted while waiting for region {code}")
            consolidated.add(RegionSyncResult.failed(code, INTERRUPTED_MESSAGE))
            for code, task in tasks[position + 1:]:
                if task.done():
                    consolidated.add(self._task_result(code, task))
                else:
                    consolidated.add(RegionSyncResult.failed(code, INTERRUPTED_MESSAGE))
            consolidated.finalize()
            raise
        finally:
            self._release_call_pools()

        consolidated.finalize()
        logger.info(
            f"Sync finished: {consolidated.regions_succeeded}/{consolidated.regions_queried} "
            f"regions succeeded, {consolidated.total_settlements} settlements, "
            f"{consolidated.records_updated} records updated, {consolidated.orphans} orphans"
        )
        for result in consolidated.region_results:
            if not result.success:
                logger.warning(f"[{result.region_code}] Failed: {result.error_message}")
        return consolidated

    async def sync_recent(
        self,
        region_codes: Optional[Iterable[str]] = None,
        days_back: Optional[int] = None,
        pool_size: Optional[int] = None,
        per_region_timeout: Optional[float] = None,
    ) -> ConsolidatedSyncResult:
        """Synchronize the last ``days_back`` days up to today.

        Raises:
            ValidationError: If ``days_back`` is outside 1..max_lookback_days.
        """
        days = self.days_back if days_back is None else days_back
        if days < 1 or days > self.max_lookback_days:
            raise ValidationError(
                f"days_back must be between 1 and {self.max_lookback_days}, got {days}"
            )
        date_range = DateRange.last_days(days, self._today())
        return await self.sync_regions(
            region_codes if region_codes is not None else self.regions,
            date_range,
            pool_size=pool_size,
            per_region_timeout=per_region_timeout,
        )

    async def check_connectivity(self) -> bool:
        return await self.job.client.check_connectivity()

    def token_status(self) -> Dict[str, Any]:
        sessions = self.job.client.sessions
        expires_at = sessions.token_expires_at
        return {
            "has_valid_token": sessions.has_valid_token(),
            "expires_at": expires_at.isoformat() if expires_at else None,
        }

    async def health(self) -> Dict[str, Any]:
        """Provider reachability, token state and pool usage."""
        reachable = await self.check_connectivity()
        return {
            "provider_reachable": reachable,
            "token": self.token_status(),
            "regions": self.regions,
            "pool": {
                "size": self.pool.size,
                "running": self.pool.running,
                "pending": self.pool.pending,
            },
        }

    async def close(self) -> None:
        """Drain the worker pools; jobs still running after the grace period are cancelled."""
        await self.pool.close(self.close_grace_period)
        for pool in self._call_pools:
            await pool.close(self.close_grace_period)
        self._call_pools = []

    async def __aenter__(self) -> "MultiRegionCoordinator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
