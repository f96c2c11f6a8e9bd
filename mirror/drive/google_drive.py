"""Google Drive v3 implementation of the remote directory capability."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from mirror.drive.base import RemoteFile
from mirror.drive.credentials import ServiceAccountTokenProvider, StaticTokenProvider
from mirror.exceptions import TransportError

if TYPE_CHECKING:
    from pathlib import Path

    from mirror.config import Settings
    from mirror.drive.credentials import TokenProvider

logger = logging.getLogger(__name__)

_LIST_FIELDS = "nextPageToken, files(id, name, mimeType, md5Checksum, modifiedTime, size)"
_GOOGLE_NATIVE_PREFIX = "application/vnd.google-apps."
_DOWNLOAD_CHUNK_BYTES = 1024 * 1024


def _to_remote_file(raw: dict[str, Any]) -> RemoteFile | None:
    file_id = raw.get("id")
    name = raw.get("name")
    if not isinstance(file_id, str) or not isinstance(name, str):
        logger.warning("Ignoring malformed Drive listing entry: %r", raw)
        return None
    mime_type = raw.get("mimeType") or ""
    if mime_type.startswith(_GOOGLE_NATIVE_PREFIX):
        # Folders and Docs/Sheets have no downloadable bytes.
        logger.debug("Ignoring Drive-native item %s (%s)", name, mime_type)
        return None
    try:
        size = int(raw.get("size") or 0)
    except (TypeError, ValueError):
        size = 0
    return RemoteFile(
        id=file_id,
        name=name,
        checksum=raw.get("md5Checksum") or None,
        modified_time=raw.get("modifiedTime") or None,
        size_bytes=size,
    )


class GoogleDriveClient:
    """Lists and downloads files in a Drive folder over the REST API."""

    def __init__(
        self,
        token_provider: TokenProvider,
        client: httpx.AsyncClient,
        api_base: str = "https://www.googleapis.com/drive/v3",
    ) -> None:
        self._tokens = token_provider
        self._client = client
        self._api_base = api_base.rstrip("/")

    async def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self._tokens.get_token()}"}

    async def list(self, folder_id: str) -> list[RemoteFile]:
        files: list[RemoteFile] = []
        page_token: str | None = None
        while True:
            params: dict[str, str] = {
                "q": f"'{folder_id}' in parents and trashed = false",
                "fields": _LIST_FIELDS,
                "pageSize": "1000",
                "includeItemsFromAllDrives": "true",
                "supportsAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token
            try:
                resp = await self._client.get(
                    f"{self._api_base}/files", params=params, headers=await self._headers()
                )
                resp.raise_for_status()
                data = resp.json()
            except httpx.HTTPError as exc:
                raise TransportError(f"Listing folder {folder_id} failed: {exc}") from exc
            except ValueError as exc:
                raise TransportError(f"Listing folder {folder_id} returned invalid JSON") from exc

            for raw in data.get("files") or []:
                remote = _to_remote_file(raw)
                if remote is not None:
                    files.append(remote)
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Listed %d files in Drive folder %s", len(files), folder_id)
        return files

    async def download(self, file_id: str, dest_path: Path) -> None:
        url = f"{self._api_base}/files/{file_id}"
        params = {"alt": "media", "supportsAllDrives": "true"}
        try:
            async with self._client.stream(
                "GET", url, params=params, headers=await self._headers()
            ) as resp:
                resp.raise_for_status()
                with open(dest_path, "wb") as fh:
                    async for chunk in resp.aiter_bytes(_DOWNLOAD_CHUNK_BYTES):
                        fh.write(chunk)
        except httpx.HTTPError as exc:
            raise TransportError(f"Downloading {file_id} failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


def create_drive_client(settings: Settings) -> GoogleDriveClient:
    """Build a Drive client from settings, choosing the configured credential source."""
    if not (settings.gcp_sa_key or settings.gcp_sa_key_file or settings.drive_access_token):
        raise ValueError(
            "No Drive credentials configured: set GCP_SA_KEY, GCP_SA_KEY_FILE, "
            "or DRIVE_ACCESS_TOKEN"
        )

    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True)
    tokens: TokenProvider
    if settings.gcp_sa_key:
        tokens = ServiceAccountTokenProvider.from_json(settings.gcp_sa_key, http)
    elif settings.gcp_sa_key_file is not None:
        tokens = ServiceAccountTokenProvider.from_file(settings.gcp_sa_key_file, http)
    else:
        tokens = StaticTokenProvider(settings.drive_access_token)
    return GoogleDriveClient(tokens, http, api_base=settings.drive_api_base)
