"""Credential placement for outgoing requests.

Read keys travel either as the ``api-key`` query parameter or as a bearer
header depending on the endpoint. Private keys are exchanged for a
short-lived JWT, which is always sent as a bearer header and refreshed once
when the server answers 401.
"""

from __future__ import annotations

import logging
import time
from typing import Literal

import httpx

from rag_stream.config import RAG_AUTH_JWT_URL, RAG_PRIVATE_API_KEY, RAG_READ_API_KEY

_log = logging.getLogger("rag_stream")

KeyPosition = Literal["header", "query-params"]
Credentials = tuple[dict[str, str], dict[str, str]]  # (headers, query params)


class AuthError(RuntimeError):
    """Missing credential or failed token exchange."""


class ApiKeyAuth:
    refreshable = False

    def __init__(self, api_key: str = RAG_READ_API_KEY) -> None:
        self.api_key = api_key

    async def credentials(
        self, http: httpx.AsyncClient, position: KeyPosition, refresh: bool = False
    ) -> Credentials:
        if not self.api_key:
            raise AuthError("Read API key is required for this operation")
        if position == "query-params":
            return {}, {"api-key": self.api_key}
        return {"Authorization": f"Bearer {self.api_key}"}, {}


class JWTAuth:
    """Exchanges a private API key for a JWT on first use and after a 401."""

    refreshable = True

    def __init__(
        self,
        jwt_url: str = RAG_AUTH_JWT_URL,
        private_api_key: str = RAG_PRIVATE_API_KEY,
        leeway: float = 30.0,
    ) -> None:
        self.jwt_url = jwt_url
        self.private_api_key = private_api_key
        self.leeway = leeway
        self._token: str | None = None
        self._expires_at: float = 0.0

    async def credentials(
        self, http: httpx.AsyncClient, position: KeyPosition, refresh: bool = False
    ) -> Credentials:
        if refresh or self._token is None or time.monotonic() >= self._expires_at:
            await self._exchange(http)
        return {"Authorization": f"Bearer {self._token}"}, {}

    async def _exchange(self, http: httpx.AsyncClient) -> None:
        if not self.private_api_key:
            raise AuthError("Private API key is required for this operation")
        if not self.jwt_url:
            raise AuthError("JWT exchange URL is not configured")
        try:
            resp = await http.post(
                self.jwt_url,
                headers={"Authorization": f"Bearer {self.private_api_key}"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AuthError(f"JWT exchange failed: {e}") from e

        token = data.get("jwt") if isinstance(data, dict) else None
        if not token:
            raise AuthError("JWT exchange response did not contain a token")
        expires_in = float(data.get("expires_in") or 3600)
        self._token = token
        self._expires_at = time.monotonic() + max(expires_in - self.leeway, 0.0)
        _log.info("JWT acquired, valid for %.0fs", expires_in)
