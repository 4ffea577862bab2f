from __future__ import annotations

from capx.gateway.http_client import JsonHttpClient
from capx.infra.result import (
    MalformedResponseError,
    TransportError,
    async_returns_result,
)
from capx.models.capacity_models import (
    Credentials,
    ListingEntry,
    parse_capacity_detail,
    parse_children_listing,
    parse_flat_listing,
)


class CapacityApiGateway:
    """Gateway around the capacity-listing endpoints.

    Every call returns ``Result``: ``Ok`` with normalized ``ListingEntry``
    values, or ``Err(TransportError | MalformedResponseError)``.
    """

    def __init__(self, client: JsonHttpClient, *, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    @async_returns_result(TransportError, exception_map={ValueError: MalformedResponseError})
    async def fetch_root_capacities(
        self,
        *,
        language: str,
        credentials: Credentials,
    ) -> list[ListingEntry]:
        payload = await self._client.get_json(
            f"{self._base_url}/capacity",
            params={"language": language},
            headers=credentials.headers(),
        )
        return parse_flat_listing(payload, source="roots")

    @async_returns_result(TransportError, exception_map={ValueError: MalformedResponseError})
    async def fetch_children(
        self,
        parent_code: int,
        *,
        language: str,
        credentials: Credentials,
    ) -> list[ListingEntry]:
        payload = await self._client.get_json(
            f"{self._base_url}/capacity/type/{parent_code}",
            params={"language": language},
            headers=credentials.headers(),
        )
        return parse_children_listing(payload, parent_code=parent_code)

    @async_returns_result(TransportError, exception_map={ValueError: MalformedResponseError})
    async def fetch_capacity(
        self,
        code: int,
        *,
        language: str,
        credentials: Credentials,
    ) -> ListingEntry:
        """Single-item lookup returning name, description and both external ids."""
        payload = await self._client.get_json(
            f"{self._base_url}/capacity/{code}",
            params={"language": language},
            headers=credentials.headers(),
        )
        return parse_capacity_detail(payload, code=code)

    @async_returns_result(TransportError, exception_map={ValueError: MalformedResponseError})
    async def search_capacities(
        self,
        query: str,
        *,
        language: str,
        credentials: Credentials,
    ) -> list[ListingEntry]:
        payload = await self._client.get_json(
            f"{self._base_url}/capacity/search",
            params={"q": query, "language": language},
            headers=credentials.headers(),
        )
        return parse_flat_listing(payload, source="search")


__all__ = ["CapacityApiGateway"]
