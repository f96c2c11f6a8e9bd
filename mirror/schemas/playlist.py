"""Playlist listing consumed by the kiosk player."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PlaylistItem(BaseModel):
    """One playable item, derived from the manifest on every request."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    local_name: str = Field(alias="localName")
    url: str | None = None
    size: int | None = None
    modified_time: str | None = Field(default=None, alias="modifiedTime")


class PlaylistResponse(BaseModel):
    items: list[PlaylistItem] = Field(default_factory=list)
