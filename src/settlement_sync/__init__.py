# settlement_sync package
__version__ = "0.1.0"

from .config import SyncSettings
from .errors import (
    SettlementSyncError,
    ValidationError,
    AuthError,
    RemoteError,
    TransientNetworkError,
    PersistenceError,
)
from .models import (
    AuthToken,
    DateRange,
    SettlementRecord,
    SettlementLineItem,
    SettlementStatus,
    ChargebackRecord,
    ChargebackStatus,
    ReconciliationOutcome,
    RegionSyncResult,
    ConsolidatedSyncResult,
    QueryPeriod,
    SettlementSummary,
    ChargebackSummary,
    RegionQueryResult,
)
from .token_session import AuthSessionManager
from .client import RetryingApiClient
from .query import SettlementQueryService
from .reconciliation import ReconciliationEngine, ChargebackProcessor, ReportGenerator
from .sync import RegionSyncJob, MultiRegionCoordinator, WorkerPool
from .bootstrap import SyncComponents, build_components
