"""REST API router."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from progressgate import __version__
from progressgate.api.deps import (
    get_cache_store,
    get_db_session,
    get_feed,
    get_feedback_tracker,
    get_owner_id,
    get_registry,
    require_owner_id,
    verify_api_key,
)
from progressgate.api.schemas import (
    CacheClearResponse,
    CacheStatsResponse,
    FeedbackStatusResponse,
    HealthResponse,
    OwnerResultsResponse,
    RefreshResponse,
    ReportProgressRequest,
    ReportProgressResponse,
    ResultAvailabilityResponse,
    StopTrackingResponse,
    StoreResultRequest,
    StoreResultResponse,
    SubmitFeedbackRequest,
    TaskProgressResponse,
    TaskResultResponse,
    UpdateSourcesRequest,
)
from progressgate.cache import (
    CacheEntity,
    CacheStore,
    cache_key,
    fetch_owner_results,
    fetch_task_result,
)
from progressgate.db.repositories import ProgressRepository, ResultRepository
from progressgate.db.tables import PROGRESS_TABLE, RESULTS_TABLE
from progressgate.errors import InvalidFeedbackError, ProgressGateError, TaskNotTrackedError
from progressgate.feed import ChangeFeed
from progressgate.models import Change, ChangeType
from progressgate.observability.metrics import metrics
from progressgate.progress.feedback import FeedbackTracker
from progressgate.progress.tracker import TaskProgressTracker, TrackerRegistry

logger = logging.getLogger("progressgate.api")

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


def _progress_response(tracker: TaskProgressTracker) -> TaskProgressResponse:
    return TaskProgressResponse.from_view(tracker.view(), tracker.result_availability())


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/metrics")
async def get_metrics():
    """In-process counters, gauges and timings."""
    return metrics.snapshot()


# ============================================================================
# Progress (UI side)
# ============================================================================


@router.get("/tasks/{task_id}/progress", response_model=TaskProgressResponse)
async def get_task_progress(
    task_id: str,
    breadth: int = Query(1, ge=1, le=100),
    depth: int = Query(1, ge=1, le=100),
    registry: TrackerRegistry = Depends(get_registry),
):
    """
    Get the progress view for a task.

    The first read starts tracking: subscribe, seed from a snapshot, watch
    the result and start the janitor. ``breadth`` and ``depth`` only
    matter on that first read.
    """
    tracker = await registry.get_or_start(task_id, breadth=breadth, depth=depth)
    return _progress_response(tracker)


@router.delete("/tasks/{task_id}/progress", response_model=StopTrackingResponse)
async def stop_task_progress(
    task_id: str,
    registry: TrackerRegistry = Depends(get_registry),
):
    """Stop tracking a task (consumer navigated away)."""
    stopped = await registry.stop(task_id)
    return StopTrackingResponse(task_id=task_id, stopped=stopped)


@router.post("/tasks/{task_id}/refresh", response_model=RefreshResponse)
async def refresh_task_progress(
    task_id: str,
    registry: TrackerRegistry = Depends(get_registry),
):
    """Reconcile a tracked task with a fresh snapshot."""
    try:
        tracker = registry.get(task_id)
    except TaskNotTrackedError as e:
        raise HTTPException(status_code=404, detail=e.message)

    refreshed = await tracker.refresh()
    return RefreshResponse(refreshed=refreshed, progress=_progress_response(tracker))


@router.get("/tasks/{task_id}/result-availability", response_model=ResultAvailabilityResponse)
async def get_result_availability(
    task_id: str,
    registry: TrackerRegistry = Depends(get_registry),
):
    """Whether the final result exists, independent of progress."""
    try:
        availability = registry.get(task_id).result_availability()
    except TaskNotTrackedError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return ResultAvailabilityResponse(**availability.model_dump())


@router.get("/tasks/{task_id}/result", response_model=TaskResultResponse)
async def get_task_result(
    task_id: str,
    refresh: bool = Query(False),
    cache: CacheStore = Depends(get_cache_store),
):
    """Get the stored result for a task (cached)."""
    try:
        result = await fetch_task_result(cache, task_id, force_refresh=refresh)
    except ProgressGateError as e:
        raise HTTPException(status_code=504, detail=e.message)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No result for task {task_id}")
    return TaskResultResponse(**result)


@router.get("/owners/me/results", response_model=OwnerResultsResponse)
async def get_owner_results(
    refresh: bool = Query(False),
    owner_id: str = Depends(require_owner_id),
    cache: CacheStore = Depends(get_cache_store),
):
    """Task ids with a stored result for the current owner (cached)."""
    try:
        task_ids = await fetch_owner_results(cache, owner_id, force_refresh=refresh)
    except ProgressGateError as e:
        raise HTTPException(status_code=504, detail=e.message)
    return OwnerResultsResponse(owner_id=owner_id, task_ids=task_ids)


# ============================================================================
# Executor side
# ============================================================================


@router.post("/tasks/{task_id}/progress", response_model=ReportProgressResponse)
async def report_progress(
    task_id: str,
    request: ReportProgressRequest,
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_feed),
):
    """Store a progress record and announce it on the change feed."""
    repo = ProgressRepository(session)
    try:
        record = await repo.create(
            task_id=task_id,
            label=request.label,
            owner_id=request.owner_id,
            sources=[s.model_dump() for s in request.sources],
            record_id=request.record_id,
            created_at=request.created_at,
        )
        await session.commit()
    except IntegrityError:
        raise HTTPException(status_code=409, detail=f"Progress record already exists: {request.record_id}")

    await feed.publish(
        Change(
            table=PROGRESS_TABLE,
            event_type=ChangeType.INSERT,
            new=record.model_dump(exclude={"settled"}, mode="json"),
        )
    )
    return ReportProgressResponse(
        record_id=record.id,
        task_id=record.task_id,
        created_at=record.created_at,
    )


@router.put("/tasks/{task_id}/progress/{record_id}/sources", response_model=ReportProgressResponse)
async def update_progress_sources(
    task_id: str,
    record_id: str,
    request: UpdateSourcesRequest,
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_feed),
):
    """Replace the sources of a record and announce the update."""
    repo = ProgressRepository(session)
    updated = await repo.set_sources(task_id, record_id, [s.model_dump() for s in request.sources])
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Progress record not found: {record_id}")
    await session.commit()

    await feed.publish(
        Change(
            table=PROGRESS_TABLE,
            event_type=ChangeType.UPDATE,
            new=updated.model_dump(exclude={"settled"}, mode="json"),
        )
    )
    return ReportProgressResponse(
        record_id=updated.id,
        task_id=updated.task_id,
        created_at=updated.created_at,
    )


@router.post("/tasks/{task_id}/results", response_model=StoreResultResponse)
async def store_result(
    task_id: str,
    request: StoreResultRequest,
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_feed),
    cache: CacheStore = Depends(get_cache_store),
):
    """Store the final result for a task and announce it."""
    result = await ResultRepository(session).create(
        task_id=task_id,
        content=request.content,
        owner_id=request.owner_id,
        result_id=request.result_id,
    )
    await session.commit()

    cache.invalidate(cache_key(CacheEntity.TASK_RESULT, task_id))
    if request.owner_id:
        cache.invalidate(cache_key(CacheEntity.OWNER_RESULTS, request.owner_id))

    await feed.publish(
        Change(
            table=RESULTS_TABLE,
            event_type=ChangeType.INSERT,
            new={
                "result_id": result["result_id"],
                "task_id": task_id,
                "owner_id": request.owner_id,
            },
        )
    )
    return StoreResultResponse(result_id=result["result_id"], task_id=task_id)


# ============================================================================
# Feedback
# ============================================================================


@router.get("/tasks/{task_id}/feedback", response_model=FeedbackStatusResponse)
async def get_feedback_status(
    task_id: str,
    tracker: FeedbackTracker = Depends(get_feedback_tracker),
):
    """Whether feedback was already submitted for a task."""
    try:
        submitted = await tracker.has_submitted(task_id)
    except Exception as e:
        logger.error(f"Feedback status check failed for task {task_id}: {e}")
        raise HTTPException(status_code=503, detail="Feedback status unavailable")
    return FeedbackStatusResponse(task_id=task_id, submitted=submitted)


@router.post("/tasks/{task_id}/feedback", response_model=FeedbackStatusResponse)
async def submit_feedback(
    task_id: str,
    request: SubmitFeedbackRequest,
    owner_id: Optional[str] = Depends(get_owner_id),
    tracker: FeedbackTracker = Depends(get_feedback_tracker),
):
    """Submit one-time feedback for a task."""
    try:
        submitted = await tracker.submit(
            task_id,
            rating=request.rating,
            comment=request.comment,
            owner_id=owner_id,
        )
    except InvalidFeedbackError as e:
        raise HTTPException(status_code=422, detail=e.message)

    if not submitted:
        raise HTTPException(status_code=502, detail="Feedback submission failed, please retry")
    return FeedbackStatusResponse(task_id=task_id, submitted=True)


# ============================================================================
# Cache
# ============================================================================


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: CacheStore = Depends(get_cache_store)):
    """Cache entry counts by entity type."""
    return CacheStatsResponse(**cache.stats())


@router.post("/cache/evict", response_model=CacheClearResponse)
async def evict_cache(cache: CacheStore = Depends(get_cache_store)):
    """Remove expired and stale entries."""
    return CacheClearResponse(removed=cache.evict_stale())


@router.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(
    owner_id: Optional[str] = Depends(get_owner_id),
    cache: CacheStore = Depends(get_cache_store),
):
    """Clear the cache; scoped to the owner when X-Owner-ID is given (sign-out)."""
    removed = cache.clear_owner(owner_id) if owner_id else cache.clear()
    return CacheClearResponse(removed=removed)
