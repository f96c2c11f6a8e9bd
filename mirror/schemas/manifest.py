"""Schemas for the local manifest and the remote playlist descriptor."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ManifestEntry(BaseModel):
    """One locally retained media file and the remote state it was mirrored from."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    local_name: str = Field(alias="localName", min_length=1)
    remote_id: str = Field(alias="driveId", min_length=1)
    name: str
    title: str | None = None
    checksum: str | None = Field(default=None, alias="md5")
    remote_modified_time: str | None = Field(default=None, alias="modifiedTime")
    size_bytes: int = Field(alias="size", ge=0)
    updated_at: str = Field(alias="updatedAt")

    @property
    def display_title(self) -> str:
        return self.title or self.name


class Manifest(BaseModel):
    """Mapping from local file name to manifest entry, persisted as one document."""

    items: dict[str, ManifestEntry] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _keys_match_entries(self) -> Manifest:
        for key, entry in self.items.items():
            if key != entry.local_name:
                msg = f"Manifest key {key!r} does not match localName {entry.local_name!r}"
                raise ValueError(msg)
            if "/" in key or "\\" in key or key in {".", ".."}:
                msg = f"Manifest key {key!r} is not a plain file name"
                raise ValueError(msg)
        return self

    def by_remote_id(self) -> dict[str, ManifestEntry]:
        """Index entries by remote id. Later entries win on duplicates."""
        return {entry.remote_id: entry for entry in self.items.values()}

    def to_document(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)


class DescriptorItem(BaseModel):
    """A single ``{"file": ..., "title": ...}`` line of the playlist descriptor."""

    model_config = ConfigDict(extra="ignore")

    file: str = Field(min_length=1)
    title: str | None = None


class PlaylistDescriptor(BaseModel):
    """Remote-hosted list of wanted file names, in play order."""

    model_config = ConfigDict(extra="ignore")

    items: list[DescriptorItem] = Field(default_factory=list)

    def wanted(self) -> list[DescriptorItem]:
        """Return descriptor items with duplicate file names collapsed to the first."""
        seen: set[str] = set()
        result: list[DescriptorItem] = []
        for item in self.items:
            if item.file in seen:
                continue
            seen.add(item.file)
            result.append(item)
        return result
