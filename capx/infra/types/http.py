"""Lightweight typing protocols for the HTTP session and response.

Only the small surface area the gateways use is described here. Real
``aiohttp.ClientSession`` objects satisfy these protocols structurally, and
so do the fakes used by the test suite.
"""

from __future__ import annotations

from typing import Any, AsyncContextManager, Mapping, Protocol


class ResponseProtocol(Protocol):
    status: int

    def raise_for_status(self) -> None: ...

    async def json(self, *, content_type: str | None = ...) -> Any: ...


class SessionProtocol(Protocol):
    def get(
        self,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: Any = None,
    ) -> AsyncContextManager[ResponseProtocol]: ...

    async def close(self) -> None: ...


__all__ = ["ResponseProtocol", "SessionProtocol"]
