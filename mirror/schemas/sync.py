"""Sync status schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SyncEventItem(BaseModel):
    """A per-item problem recorded during a reconciliation pass."""

    kind: str
    name: str
    detail: str


class SyncStatusResponse(BaseModel):
    """Outcome of the most recent reconciliation pass run by this server."""

    status: str
    started_at: str | None = None
    finished_at: str | None = None
    downloaded: list[str] = Field(default_factory=list)
    kept: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    events: list[SyncEventItem] = Field(default_factory=list)
