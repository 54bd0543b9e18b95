"""
Calendar Sync API endpoints
Manual sync triggers, sync log history, engine status and flag clearing
"""
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
import logging

from jobs.calendar_sync import CalendarSyncEngine
from services.sync_orchestrator import SyncRejected
from services.sync_state import SyncStatus

router = APIRouter()
logger = logging.getLogger(__name__)


# ============================================
# REQUEST/RESPONSE MODELS
# ============================================

class BulkSyncRequest(BaseModel):
    property_ids: Optional[List[int]] = None  # None = every active, unflagged property
    force: bool = False


class SyncTriggerResponse(BaseModel):
    status: str
    property_id: int
    sync_log_id: int
    message: str


class BulkSyncResponse(BaseModel):
    status: str
    admitted: int
    sync_log_ids: List[int]
    rejected: Dict[int, str]


class SyncLogResponse(BaseModel):
    id: int
    property_id: int
    platform: str
    status: str
    message: Optional[str]
    availabilities_updated: int
    captcha_encountered: bool
    execution_time_ms: Optional[int]
    triggered_by: str
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class FlaggedPropertyResponse(BaseModel):
    property_id: int
    reason: Optional[str]
    sync_log_id: Optional[int]
    flagged_at: datetime

    class Config:
        from_attributes = True


class AvailabilityResponse(BaseModel):
    date: date
    is_available: bool
    source: str
    price: Optional[float]
    currency: Optional[str]
    minimum_stay: Optional[int]
    last_updated: datetime

    class Config:
        from_attributes = True


class SyncStatusResponse(BaseModel):
    enabled: bool
    accepting: bool
    in_flight: List[Dict[str, Any]]
    flagged: List[FlaggedPropertyResponse]
    pool: Dict[str, Any]
    config: Dict[str, Any]


def get_sync_engine(request: Request) -> CalendarSyncEngine:
    """Sync engine built at startup (see main.lifespan)."""
    engine = getattr(request.app.state, "calendar_sync", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Calendar sync engine not running")
    return engine


def _rejection_to_http(e: SyncRejected) -> HTTPException:
    if e.reason == "not_found":
        return HTTPException(status_code=404, detail=str(e))
    if e.reason == "shutting_down":
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=409, detail=str(e))


# ============================================
# MANUAL SYNC TRIGGER
# ============================================

@router.post("/properties/{property_id}/sync", response_model=SyncTriggerResponse)
async def trigger_property_sync(
    property_id: int,
    force: bool = False,
    engine: CalendarSyncEngine = Depends(get_sync_engine)
):
    """
    Sync one property now, whether or not it is due.

    Runs in background - poll /logs/{sync_log_id} for the outcome.
    force=true also runs a property flagged after a critical error.
    """
    try:
        attempt = engine.orchestrator.start_sync(property_id, force=force)
    except SyncRejected as e:
        raise _rejection_to_http(e)

    return {
        "status": "started",
        "property_id": property_id,
        "sync_log_id": attempt.log_id,
        "message": f"Sync queued for property {property_id}",
    }


@router.post("/sync", response_model=BulkSyncResponse)
async def trigger_bulk_sync(
    request: BulkSyncRequest,
    engine: CalendarSyncEngine = Depends(get_sync_engine)
):
    """Sync several properties now (all active ones when no ids are given)."""
    if not engine.orchestrator.accepting:
        raise HTTPException(status_code=503, detail="Calendar sync is shutting down")

    accepted, rejected = engine.orchestrator.start_many(request.property_ids, force=request.force)
    return {
        "status": "started" if accepted else "nothing_started",
        "admitted": len(accepted),
        "sync_log_ids": [attempt.log_id for attempt in accepted],
        "rejected": rejected,
    }


# ============================================
# SYNC LOG HISTORY
# ============================================

@router.get("/logs", response_model=List[SyncLogResponse])
async def list_sync_logs(
    property_id: Optional[int] = None,
    status: Optional[SyncStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    engine: CalendarSyncEngine = Depends(get_sync_engine)
):
    """Sync attempts, newest first."""
    return engine.store.list_sync_logs(
        property_id=property_id,
        status=status.value if status else None,
        limit=limit,
    )


@router.get("/logs/{log_id}", response_model=SyncLogResponse)
async def get_sync_log(
    log_id: int,
    engine: CalendarSyncEngine = Depends(get_sync_engine)
):
    log = engine.store.get_sync_log(log_id)
    if log is None:
        raise HTTPException(status_code=404, detail=f"Sync log {log_id} not found")
    return log


@router.get("/properties/{property_id}/availability", response_model=List[AvailabilityResponse])
async def get_property_availability(
    property_id: int,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    engine: CalendarSyncEngine = Depends(get_sync_engine)
):
    """Stored availability for a property."""
    if engine.store.get_property(property_id) is None:
        raise HTTPException(status_code=404, detail=f"Property {property_id} not found")
    return engine.store.get_availability(property_id, from_date, to_date)


# ============================================
# STATUS & OPERATOR ACTIONS
# ============================================

@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(engine: CalendarSyncEngine = Depends(get_sync_engine)):
    """Engine state: running jobs, flagged properties and proxy pool health."""
    config = engine.config
    return {
        "enabled": config.enabled,
        "accepting": engine.orchestrator.accepting,
        "in_flight": engine.orchestrator.in_flight_attempts(),
        "flagged": [FlaggedPropertyResponse.model_validate(flag) for flag in engine.store.list_flagged_properties()],
        "pool": engine.pool.stats(),
        "config": {
            "max_concurrency": config.scraping.max_concurrency,
            "interval_minutes": config.scheduler_interval_minutes,
            "stealth_enabled": config.stealth.enabled,
            "rotation_interval_minutes": config.proxy.rotation_interval_minutes,
            "min_success_rate": config.proxy.min_success_rate,
            "residential_only": config.proxy.residential_only,
        },
    }


@router.delete("/properties/{property_id}/flag")
async def clear_property_flag(
    property_id: int,
    engine: CalendarSyncEngine = Depends(get_sync_engine)
):
    """Clear a critical-error flag so the property is scheduled again."""
    if not engine.store.clear_property_flag(property_id):
        raise HTTPException(status_code=404, detail=f"Property {property_id} is not flagged")
    return {"status": "success", "message": f"Property {property_id} will be synced on the next pass"}
