"""Shared API dependencies: settings, manifest store, sync engine."""

from __future__ import annotations

from fastapi import Request

from mirror.config import Settings
from mirror.services.manifest_service import ManifestStore
from mirror.services.sync_service import SyncEngine


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_manifest_store(request: Request) -> ManifestStore:
    """Get the manifest store from app state."""
    store: ManifestStore = request.app.state.manifest_store
    return store


def get_sync_engine(request: Request) -> SyncEngine | None:
    """Get the in-process sync engine, or None when the server does not schedule passes."""
    engine: SyncEngine | None = getattr(request.app.state, "sync_engine", None)
    return engine
