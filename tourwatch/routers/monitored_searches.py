"""Monitored searches router: lifecycle, inline controls and manual ticks."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tourwatch.database import get_db
from tourwatch.dependencies import get_owner_id, require_ops_token
from tourwatch.schemas.monitoring import ControlActionRequest, CreateMonitoredSearchRequest
from tourwatch.services.errors import MonitoringError, SearchNotFoundError, SearchStoppedError
from tourwatch.services.monitor_scheduler import monitor_scheduler
from tourwatch.services.monitoring_service import monitoring_service, search_to_dict

logger = logging.getLogger(__name__)

router = APIRouter()


def _raise_http(e: MonitoringError):
    if isinstance(e, SearchNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SearchStoppedError):
        raise HTTPException(status_code=409, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


@router.post("", status_code=201)
async def create_monitored_search(
    req: CreateMonitoredSearchRequest,
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    """Start monitoring a new query, or an already saved one."""
    try:
        saved_query_id = req.saved_query_id
        if saved_query_id is None:
            query = await monitoring_service.save_query(db, owner_id, req.query)
            saved_query_id = query.id
        search = await monitoring_service.create_monitored_search(
            db,
            owner_id=owner_id,
            saved_query_id=saved_query_id,
            conditions=req.conditions,
            monitor_until=req.monitor_until,
            monitor_days=req.monitor_days,
        )
    except MonitoringError as e:
        await db.rollback()
        _raise_http(e)
    return search_to_dict(search)


@router.get("")
async def list_monitored_searches(
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    """List the owner's active (including paused) monitored searches."""
    searches = await monitoring_service.list_active(db, owner_id)
    return {"searches": [search_to_dict(s) for s in searches], "count": len(searches)}


@router.post("/controls")
async def apply_control(
    req: ControlActionRequest,
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    """Inline-button callback from a delivered notification."""
    try:
        search = await monitoring_service.apply_control_action(db, req.callback_data, owner_id)
    except MonitoringError as e:
        _raise_http(e)
    return search_to_dict(search)


@router.post("/run-tick", dependencies=[Depends(require_ops_token)])
async def run_tick():
    """Run one monitoring tick now (ops / external cron)."""
    summary = await monitor_scheduler.tick()
    return summary.as_dict()


@router.post("/{search_id}/pause")
async def pause_monitored_search(
    search_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    try:
        search = await monitoring_service.pause(db, search_id, owner_id)
    except MonitoringError as e:
        _raise_http(e)
    return search_to_dict(search)


@router.post("/{search_id}/resume")
async def resume_monitored_search(
    search_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    try:
        search = await monitoring_service.resume(db, search_id, owner_id)
    except MonitoringError as e:
        _raise_http(e)
    return search_to_dict(search)


@router.post("/{search_id}/stop")
async def stop_monitored_search(
    search_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    """Stop monitoring for good. A stopped search cannot be resumed."""
    try:
        search = await monitoring_service.stop(db, search_id, owner_id)
    except MonitoringError as e:
        _raise_http(e)
    return search_to_dict(search)
