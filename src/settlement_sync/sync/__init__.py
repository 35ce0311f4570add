"""Region jobs and the multi-region coordinator."""

from .job import RegionSyncJob
from .pool import WorkerPool
from .coordinator import MultiRegionCoordinator

__all__ = [
    "RegionSyncJob",
    "WorkerPool",
    "MultiRegionCoordinator",
]
