"""HTTP transport for the search/answer service.

Two capabilities: a JSON request, and opening a streamed response whose body
is handed out as an async iterator of raw byte chunks.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from rag_stream.auth import ApiKeyAuth, JWTAuth, KeyPosition
from rag_stream.config import RAG_API_URL, RAG_TIMEOUT

_log = logging.getLogger("rag_stream")


class TransportError(RuntimeError):
    """Non-2xx response, connection failure or timeout."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.url:
            parts.append(f"url={self.url}")
        if self.body:
            parts.append(f"body={self.body}")
        return " ".join(parts)


class RagClient:
    def __init__(
        self,
        base_url: str = RAG_API_URL,
        auth: ApiKeyAuth | JWTAuth | None = None,
        timeout: float = RAG_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = auth if auth is not None else ApiKeyAuth()
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> RagClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request_json(
        self,
        method: str,
        path: str,
        body: Any | None = None,
        api_key_position: KeyPosition = "header",
    ) -> Any:
        response = await self._send(method, path, body, api_key_position, stream=False, accept="application/json")
        try:
            if response.is_error:
                raise TransportError(
                    "HTTP error", url=self._url(path), status_code=response.status_code, body=response.text
                )
            try:
                return response.json()
            except ValueError as e:
                raise TransportError(
                    "Invalid JSON response", url=self._url(path), status_code=response.status_code, body=response.text
                ) from e
        finally:
            await response.aclose()

    @contextlib.asynccontextmanager
    async def open_stream(
        self,
        method: str,
        path: str,
        body: Any | None = None,
        api_key_position: KeyPosition = "query-params",
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a streamed request; yields the body as raw byte chunks.

        The response is closed when the context exits, which is also how an
        in-flight stream gets torn down on cancellation.
        """
        response = await self._send(method, path, body, api_key_position, stream=True, accept="text/event-stream")
        try:
            if response.is_error:
                text = (await response.aread()).decode("utf-8", errors="replace")
                raise TransportError(
                    "HTTP error", url=self._url(path), status_code=response.status_code, body=text
                )
            yield _iter_body(response, self._url(path))
        finally:
            await response.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        body: Any | None,
        api_key_position: KeyPosition,
        stream: bool,
        accept: str,
    ) -> httpx.Response:
        url = self._url(path)
        response = await self._attempt(method, url, body, api_key_position, stream, accept, refresh=False)
        if response.status_code == 401 and self.auth.refreshable:
            _log.warning("401 from %s, refreshing credentials", url)
            await response.aclose()
            response = await self._attempt(method, url, body, api_key_position, stream, accept, refresh=True)
        return response

    async def _attempt(
        self,
        method: str,
        url: str,
        body: Any | None,
        api_key_position: KeyPosition,
        stream: bool,
        accept: str,
        refresh: bool,
    ) -> httpx.Response:
        auth_headers, params = await self.auth.credentials(self._http, api_key_position, refresh=refresh)
        headers = {"Accept": accept, **auth_headers}
        request = self._http.build_request(method.upper(), url, json=body, headers=headers, params=params)
        try:
            return await self._http.send(request, stream=stream)
        except httpx.TimeoutException as e:
            _log.warning("Request to %s timed out", url)
            raise TransportError("Request timed out", url=url) from e
        except httpx.HTTPError as e:
            _log.warning("Request to %s failed: %s", url, e)
            raise TransportError("Failed to reach server", url=url) from e


async def _iter_body(response: httpx.Response, url: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as e:
        raise TransportError("Stream interrupted", url=url) from e
