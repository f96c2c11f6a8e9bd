"""Bearer token providers for the Drive API.

Acquiring credentials is not this project's concern; these providers only turn
already-provisioned secrets into access tokens.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import jwt

from mirror.exceptions import TransportError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DRIVE_READONLY_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
_GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
_JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
_ASSERTION_LIFETIME_SECONDS = 3600
_REFRESH_MARGIN_SECONDS = 60


class TokenProvider(Protocol):
    async def get_token(self) -> str:
        """Return a currently valid bearer token."""
        ...


class StaticTokenProvider:
    """Serves a token provisioned out of band."""

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError("Access token must not be empty")
        self._token = token

    async def get_token(self) -> str:
        return self._token


class ServiceAccountTokenProvider:
    """Exchanges a signed service-account assertion for an access token."""

    def __init__(
        self,
        key_info: dict[str, Any],
        client: httpx.AsyncClient,
        scope: str = DRIVE_READONLY_SCOPE,
    ) -> None:
        missing = [k for k in ("client_email", "private_key") if not key_info.get(k)]
        if missing:
            raise ValueError(f"Service account key missing fields: {', '.join(missing)}")
        self._email: str = key_info["client_email"]
        self._private_key: str = key_info["private_key"]
        self._key_id: str | None = key_info.get("private_key_id")
        self._token_uri: str = key_info.get("token_uri") or _GOOGLE_TOKEN_URI
        self._scope = scope
        self._client = client
        self._token: str | None = None
        self._expires_at = 0.0

    @classmethod
    def from_json(cls, raw: str, client: httpx.AsyncClient) -> ServiceAccountTokenProvider:
        try:
            key_info = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Service account key is not valid JSON: {exc}") from exc
        if not isinstance(key_info, dict):
            raise ValueError("Service account key must be a JSON object")
        return cls(key_info, client)

    @classmethod
    def from_file(cls, path: Path, client: httpx.AsyncClient) -> ServiceAccountTokenProvider:
        return cls.from_json(path.read_text(encoding="utf-8"), client)

    def _assertion(self, now: int) -> str:
        claims = {
            "iss": self._email,
            "scope": self._scope,
            "aud": self._token_uri,
            "iat": now,
            "exp": now + _ASSERTION_LIFETIME_SECONDS,
        }
        headers = {"kid": self._key_id} if self._key_id else None
        return jwt.encode(claims, self._private_key, algorithm="RS256", headers=headers)

    async def get_token(self) -> str:
        now = time.time()
        if self._token is not None and now < self._expires_at - _REFRESH_MARGIN_SECONDS:
            return self._token

        try:
            resp = await self._client.post(
                self._token_uri,
                data={"grant_type": _JWT_BEARER_GRANT, "assertion": self._assertion(int(now))},
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            raise TransportError(f"Token exchange failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError("Token endpoint returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise TransportError("Token endpoint returned an unexpected payload")

        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise TransportError("Token endpoint returned no access_token")
        try:
            lifetime = float(payload.get("expires_in", _ASSERTION_LIFETIME_SECONDS))
        except (TypeError, ValueError) as exc:
            raise TransportError("Token endpoint returned an invalid expires_in") from exc
        self._token = token
        self._expires_at = now + lifetime
        logger.debug("Obtained Drive access token for %s", self._email)
        return token
