"""Async JSON client for the Picvault image API.

A thin wrapper over :class:`httpx.AsyncClient` that decodes JSON bodies and
turns every transport failure or non-2xx status into :class:`ApiError`.  The
listing and mutation controllers depend only on :meth:`ApiClient.get`,
:meth:`ApiClient.put` and :meth:`ApiClient.delete`.

No retries are attempted here or anywhere else in the client layer.

Usage
-----
::

    async with ApiClient("http://localhost:8787") as client:
        page = await client.get("/api/images", {"page": "1", "limit": "24"})
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from picvault.core.config import config
from picvault.core.exceptions import ApiError

logger = logging.getLogger(__name__)


class ApiClient:
    """JSON-over-HTTP client bound to one API base URL.

    Args:
        base_url: API root.  Defaults to ``config.api_base_url``.
        timeout: Request timeout in seconds.  Defaults to
            ``config.request_timeout``.
        client: Pre-built ``httpx.AsyncClient`` (tests pass one with a
            ``MockTransport``).  When given, ``base_url`` and ``timeout`` are
            ignored and the caller owns its lifecycle.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or config.api_base_url,
            timeout=timeout if timeout is not None else config.request_timeout,
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get(self, path: str, params: dict[str, str] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def put(self, path: str, body: dict[str, Any] | None = None) -> Any:
        return await self._request("PUT", path, json=body)

    async def delete(self, path: str) -> Any:
        return await self._request("DELETE", path)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            ApiError: On transport failure, a status of 400 or above, or a
                body that is not valid JSON.
        """
        logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            raise ApiError(
                f"{method} {path} returned {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc


def _error_detail(response: httpx.Response) -> str:
    # FastAPI errors carry ``detail``; the listing API uses ``message``.
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body)
    return str(body)
