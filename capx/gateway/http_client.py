from __future__ import annotations

import asyncio
from typing import Any, Mapping

import aiohttp
import structlog

from capx.infra.result import MalformedResponseError, TransportError
from capx.infra.types.http import SessionProtocol

LOGGER = structlog.get_logger(__name__)


class JsonHttpClient:
    """Thin JSON-over-HTTP helper shared by every upstream gateway.

    Transport problems (connection errors, timeouts, non-2xx statuses) are
    raised as ``TransportError``; an undecodable body is raised as
    ``MalformedResponseError``.
    """

    def __init__(
        self,
        session: SessionProtocol,
        *,
        timeout_seconds: float = 30.0,
        user_agent: str | None = None,
    ) -> None:
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._default_headers: dict[str, str] = {"Accept": "application/json"}
        if user_agent:
            self._default_headers["User-Agent"] = user_agent

    async def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        merged_headers = {**self._default_headers, **dict(headers or {})}
        try:
            async with self._session.get(
                url,
                params=dict(params or {}),
                headers=merged_headers,
                timeout=self._timeout,
            ) as response:
                response.raise_for_status()
                try:
                    return await response.json(content_type=None)
                except ValueError as exc:
                    raise MalformedResponseError(
                        "Response body is not valid JSON",
                        context={"url": url, "status": response.status},
                        cause=exc,
                    ) from exc
        except aiohttp.ClientResponseError as exc:
            raise TransportError(
                f"HTTP {exc.status} from upstream",
                context={"url": url, "status": exc.status},
                cause=exc,
            ) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(
                f"Request failed: {type(exc).__name__}",
                context={"url": url},
                cause=exc,
            ) from exc


__all__ = ["JsonHttpClient"]
