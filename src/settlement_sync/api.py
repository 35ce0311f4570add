"""HTTP API for triggering synchronization runs and checking provider health."""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from slowapi.errors import RateLimitExceeded

from .auth import limiter, sync_rate_limit, sync_rate_limit_exceeded, verify_api_key
from .bootstrap import SyncComponents, build_components
from .errors import ValidationError
from .models import ConsolidatedSyncResult, DateRange, QueryPeriod
from .reconciliation import ReportGenerator, REPORT_FORMATS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncJobRequestBody(BaseModel):
    """Request body for starting a sync run.

    Either give ``date_from`` and ``date_to``, or ``days_back`` (defaults to
    the configured window).
    """
    regions: Optional[List[str]] = Field(None, description="Regions to sync; defaults to all configured")
    date_from: Optional[date] = Field(None, description="First day, inclusive")
    date_to: Optional[date] = Field(None, description="Last day, inclusive")
    days_back: Optional[int] = Field(None, description="Sync the last N days up to today")
    pool_size: Optional[int] = Field(None, description="Concurrent region jobs for this run")
    per_region_timeout: Optional[float] = Field(None, description="Seconds to wait per region")


class RegionResultResponse(BaseModel):
    """Per-region outcome."""
    region_code: str
    success: bool
    settlements_fetched: int = 0
    chargebacks_fetched: int = 0
    records_updated: int = 0
    chargebacks_processed: int = 0
    orphan_count: int = 0
    urgent_chargebacks: int = 0
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None


class SyncJobSummaryResponse(BaseModel):
    """Summary response for a sync run."""
    date_from: date
    date_to: date
    regions_queried: int = 0
    regions_succeeded: int = 0
    regions_failed: int = 0
    total_settlements: int = 0
    total_chargebacks: int = 0
    records_updated: int = 0
    chargebacks_processed: int = 0
    orphans: int = 0
    urgent_chargebacks: int = 0
    region_results: List[RegionResultResponse] = Field(default_factory=list)


class QueryRequestBody(BaseModel):
    """Request body for a read-only query.

    Give exactly one of ``date_from``/``date_to``, ``days_back`` or ``period``.
    """
    regions: Optional[List[str]] = Field(None, description="Regions to query; defaults to all configured")
    date_from: Optional[date] = Field(None, description="First day, inclusive")
    date_to: Optional[date] = Field(None, description="Last day, inclusive")
    days_back: Optional[int] = Field(None, description="Query the last N days up to today")
    period: Optional[QueryPeriod] = Field(None, description="Preset window")
    include_chargebacks: bool = Field(False, description="Also summarize chargebacks")


def get_components(request: Request) -> SyncComponents:
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Sync service not initialized")
    return components


async def _run_sync(components: SyncComponents, body: SyncJobRequestBody) -> ConsolidatedSyncResult:
    coordinator = components.coordinator
    regions = body.regions if body.regions else coordinator.regions
    if body.date_from is not None or body.date_to is not None:
        if body.days_back is not None:
            raise ValidationError("use either date_from/date_to or days_back, not both")
        return await coordinator.sync_regions(
            regions,
            DateRange(date_from=body.date_from, date_to=body.date_to),
            pool_size=body.pool_size,
            per_region_timeout=body.per_region_timeout,
        )
    return await coordinator.sync_recent(
        regions,
        days_back=body.days_back,
        pool_size=body.pool_size,
        per_region_timeout=body.per_region_timeout,
    )


def _summary_response(result: ConsolidatedSyncResult) -> SyncJobSummaryResponse:
    return SyncJobSummaryResponse(
        date_from=result.date_range.date_from,
        date_to=result.date_range.date_to,
        regions_queried=result.regions_queried,
        regions_succeeded=result.regions_succeeded,
        regions_failed=result.regions_failed,
        total_settlements=result.total_settlements,
        total_chargebacks=result.total_chargebacks,
        records_updated=result.records_updated,
        chargebacks_processed=result.chargebacks_processed,
        orphans=result.orphans,
        urgent_chargebacks=result.urgent_chargebacks,
        region_results=[
            RegionResultResponse(**r.model_dump(exclude={"errors"}))
            for r in result.region_results
        ],
    )


@router.post("/jobs", response_model=SyncJobSummaryResponse)
@limiter.limit(sync_rate_limit)
async def create_sync_job(
    request: Request,
    body: SyncJobRequestBody,
    components: SyncComponents = Depends(get_components),
    api_key: str = Depends(verify_api_key),
):
    """
    Run a synchronization over the requested regions.

    Returns consolidated totals and one entry per region. Regions that fail
    or time out are reported in the body; the request itself only fails on
    invalid parameters.
    """
    logger.info(f"Sync run requested for regions={body.regions or 'configured'}")
    try:
        result = await _run_sync(components, body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _summary_response(result)


@router.post("/jobs/report")
@limiter.limit(sync_rate_limit)
async def create_sync_report(
    request: Request,
    body: SyncJobRequestBody,
    format: str = Query(default="json", description="Output format: json, csv, text, detailed_text"),
    components: SyncComponents = Depends(get_components),
    api_key: str = Depends(verify_api_key),
):
    """Run a synchronization and return the rendered report."""
    if format not in REPORT_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"format must be one of: {', '.join(REPORT_FORMATS)}",
        )
    try:
        result = await _run_sync(components, body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if format == "json":
        return result.to_full_dict()
    return PlainTextResponse(ReportGenerator(result).render(format))


@router.post("/query")
@limiter.limit(sync_rate_limit)
async def query_settlements(
    request: Request,
    body: QueryRequestBody,
    components: SyncComponents = Depends(get_components),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """
    Fetch and summarize settlements, and optionally chargebacks, per region.

    The regional ledgers are not touched. Regions whose query fails are
    reported in the body.
    """
    date_range = None
    if body.date_from is not None or body.date_to is not None:
        date_range = DateRange(date_from=body.date_from, date_to=body.date_to)
    try:
        results = await components.query.query_regions(
            body.regions or None,
            date_range=date_range,
            days_back=body.days_back,
            period=body.period,
            include_chargebacks=body.include_chargebacks,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "limits": components.query.limits(),
        "region_results": [r.to_dict() for r in results],
    }


@router.get("/health")
async def sync_health(
    components: SyncComponents = Depends(get_components),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Provider reachability, token state and worker pool usage."""
    return await components.coordinator.health()


def create_app(components: Optional[SyncComponents] = None) -> FastAPI:
    """Build the API application.

    Args:
        components: Prebuilt components. When omitted they are built from the
            environment at startup. Either way they are closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "components", None) is None:
            app.state.components = build_components()
        try:
            yield
        finally:
            await app.state.components.aclose()
            app.state.components = None

    app = FastAPI(title="Settlement Sync API", lifespan=lifespan)
    app.state.limiter = limiter
    app.state.components = components
    app.add_exception_handler(RateLimitExceeded, sync_rate_limit_exceeded)
    app.include_router(router)
    return app


app = create_app()
