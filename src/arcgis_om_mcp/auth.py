# ArcGIS OM Approval MCP Server
# File: auth.py
# Version: v1

"""Token client for the ArcGIS portal ``generateToken`` endpoint."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from .config import OmApprovalConfig
from .errors import AuthError
from .models import Token

logger = logging.getLogger(__name__)

# Tokens are stored as expiring this long before the portal says they do.
SAFETY_MARGIN_SECONDS = 5 * 60


@dataclass
class ArcGisTokenClient:
    """Acquire an ArcGIS token with username/password and cache it in memory.

    The cached token is reused while ``clock() < expires_at``. ``expires_at``
    is the requested lifetime minus a five minute margin, so with the default
    60 minutes a token is dropped after 55.
    """

    config: OmApprovalConfig
    clock: Callable[[], float] = time.time
    transport: Optional[httpx.AsyncBaseTransport] = None

    _token: Optional[Token] = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def cached_token(self) -> Optional[Token]:
        return self._token

    def invalidate(self) -> None:
        """Forget the cached token so the next call fetches a new one."""
        self._token = None

    async def get_token(self) -> str:
        """Return a valid token value, fetching a new one if needed."""
        token = await self.get_token_info()
        return token.value

    async def get_token_info(self) -> Token:
        token = self._token
        if token is not None and token.is_valid(self.clock()):
            return token

        async with self._lock:
            # Another waiter may have refreshed while we were blocked.
            token = self._token
            if token is not None and token.is_valid(self.clock()):
                return token

            token = await self._fetch_token()
            self._token = token
            return token

    async def _fetch_token(self) -> Token:
        cfg = self.config
        if not cfg.token_url or not cfg.username or not cfg.password:
            raise AuthError(
                "ArcGIS token configuration is incomplete. "
                "Set ARCGIS_URL_TOKEN, ARCGIS_USERNAME and ARCGIS_PASSWORD."
            )

        form = {
            "username": cfg.username,
            "password": cfg.password,
            "client": "referer",
            "referer": cfg.referer,
            "expiration": str(cfg.token_expiration_minutes),
            "f": "json",
        }

        async with httpx.AsyncClient(
            timeout=float(cfg.http_timeout_seconds),
            verify=cfg.verify_tls,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post(cfg.token_url, data=form)
            except httpx.RequestError as exc:
                raise AuthError(
                    f"Error calling ArcGIS token endpoint at '{cfg.token_url}': {exc}"
                ) from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            body_preview = exc.response.text[:500]
            raise AuthError(
                f"Failed to obtain ArcGIS token from '{cfg.token_url}' "
                f"(HTTP {status}). Check ARCGIS_USERNAME and ARCGIS_PASSWORD. "
                f"Response snippet: {body_preview}"
            ) from exc

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise AuthError(
                f"ArcGIS token endpoint '{cfg.token_url}' did not return JSON."
            ) from exc

        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            # The portal reports bad credentials as HTTP 200 with an error object.
            err = data["error"]
            raise AuthError(
                "ArcGIS token request was rejected: "
                f"{err.get('code')} {err.get('message') or ''}".strip()
            )

        value = data.get("token") if isinstance(data, dict) else None
        if not value:
            raise AuthError("ArcGIS token response did not contain 'token'")

        lifetime = cfg.token_expiration_minutes * 60 - SAFETY_MARGIN_SECONDS
        expires_at = self.clock() + max(lifetime, 0)
        logger.info(
            "Obtained ArcGIS token for user '%s' (valid for %d s).",
            cfg.username,
            max(lifetime, 0),
        )
        return Token(value=str(value), expires_at=expires_at)
