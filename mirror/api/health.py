"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mirror.api.deps import get_manifest_store
from mirror.exceptions import ManifestFormatError
from mirror.services.manifest_service import ManifestStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    manifest: str
    media_items: int


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    store: Annotated[ManifestStore, Depends(get_manifest_store)],
) -> HealthResponse:
    """Health check endpoint for monitoring and watchdogs."""
    manifest_status = "ok"
    media_items = 0
    try:
        media_items = len(store.snapshot().items)
    except (ManifestFormatError, OSError):
        logger.warning("Health check could not read the manifest", exc_info=True)
        manifest_status = "error"

    return HealthResponse(
        status="ok" if manifest_status == "ok" else "degraded",
        version="0.1.0",
        manifest=manifest_status,
        media_items=media_items,
    )
