"""Sync API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from message_search.api.dependencies import get_principal, get_scheduler, get_tracker
from message_search.models.dto import SyncCancelResponse, SyncStateResponse
from message_search.models.entities import SyncStateSnapshot
from message_search.security.identity import Principal
from message_search.sync.scheduler import SyncScheduler
from message_search.sync.state import SyncStateTracker

router = APIRouter()


@router.get("", response_model=list[SyncStateResponse], summary="List sync state for every source")
async def list_sync_states(
    owner: Principal = Depends(get_principal),
    tracker: SyncStateTracker = Depends(get_tracker),
) -> list[SyncStateResponse]:
    return [_to_response(state) for state in tracker.list_states(owner)]


@router.post("/{source}", response_model=SyncStateResponse, status_code=202, summary="Start a sync run")
async def start_sync(
    source: str,
    owner: Principal = Depends(get_principal),
    scheduler: SyncScheduler = Depends(get_scheduler),
) -> SyncStateResponse:
    return _to_response(scheduler.submit(owner, source))


@router.get("/{source}", response_model=SyncStateResponse, summary="Current sync state for a source")
async def get_sync_status(
    source: str,
    owner: Principal = Depends(get_principal),
    tracker: SyncStateTracker = Depends(get_tracker),
) -> SyncStateResponse:
    return _to_response(tracker.get(owner, source))


@router.post("/{source}/cancel", response_model=SyncCancelResponse, summary="Stop a running sync")
async def cancel_sync(
    source: str,
    owner: Principal = Depends(get_principal),
    scheduler: SyncScheduler = Depends(get_scheduler),
) -> SyncCancelResponse:
    return SyncCancelResponse(source=source, cancelled=scheduler.cancel(owner, source))


def _to_response(state: SyncStateSnapshot) -> SyncStateResponse:
    return SyncStateResponse(
        source=state.source,
        status=state.status.value,
        cursor=state.cursor,
        error=state.error,
        last_synced_at=state.last_synced_at,
        updated_at=state.updated_at,
    )


__all__ = ["router"]
