"""Read-only view of the in-process sync scheduler."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from mirror.api.deps import get_sync_engine
from mirror.schemas.sync import SyncEventItem, SyncStatusResponse
from mirror.services.sync_service import SyncEngine, SyncReport

router = APIRouter(prefix="/api/sync", tags=["sync"])


def report_to_response(report: SyncReport) -> SyncStatusResponse:
    return SyncStatusResponse(
        status=str(report.status),
        started_at=report.started_at,
        finished_at=report.finished_at,
        downloaded=report.downloaded,
        kept=report.kept,
        deleted=report.deleted,
        events=[
            SyncEventItem(kind=str(event.kind), name=event.name, detail=event.detail)
            for event in report.events
        ],
    )


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    engine: Annotated[SyncEngine | None, Depends(get_sync_engine)],
) -> SyncStatusResponse:
    """Report the outcome of the last scheduled reconciliation pass."""
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sync scheduling is disabled on this server",
        )
    if engine.last_report is None:
        return SyncStatusResponse(status="pending")
    return report_to_response(engine.last_report)
