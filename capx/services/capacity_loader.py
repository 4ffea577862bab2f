"""Lazy, per-parent children loading with request coalescing."""

from __future__ import annotations

from dataclasses import replace

import structlog

from capx.gateway.capacity_api import CapacityApiGateway
from capx.infra.single_flight import SingleFlight
from capx.models.capacity_models import (
    MAX_LEVEL,
    CapacityNode,
    ChildrenPage,
    Credentials,
    ListingEntry,
)
from capx.models.tree_models import AttributeDeriver, CapacityTree
from capx.services import attribute_deriver

LOGGER = structlog.get_logger(__name__)


class ParentKeyedLoader:
    """Fetch the children of one parent on demand.

    The loader never mutates a tree. It answers from the tree it is given
    when that tree already knows the parent's children, otherwise it runs
    one coalesced fetch per ``(language, parent_code)`` and hands back the
    normalized nodes for the store to merge.
    """

    def __init__(
        self,
        gateway: CapacityApiGateway,
        *,
        derive: AttributeDeriver = attribute_deriver.derive,
    ) -> None:
        self._gateway = gateway
        self._derive = derive
        self._flights: SingleFlight[tuple[str, int], ChildrenPage] = SingleFlight(
            "capacity_loader"
        )

    def in_flight(self, parent_code: int, *, language: str) -> bool:
        return self._flights.in_flight((language, parent_code))

    def placeholder(self, code: int) -> CapacityNode:
        """Minimal stand-in parent used until the authoritative node is known."""
        node = CapacityNode(code=code, level=1, root_code=code, is_placeholder=True)
        return node.with_attributes(code, self._derive(code))

    async def load_children(
        self,
        parent_code: int,
        *,
        language: str,
        credentials: Credentials,
        tree: CapacityTree | None = None,
        parent: CapacityNode | None = None,
    ) -> list[CapacityNode]:
        page = await self.load_children_page(
            parent_code, language=language, credentials=credentials, tree=tree, parent=parent
        )
        return list(page.children)

    async def load_children_page(
        self,
        parent_code: int,
        *,
        language: str,
        credentials: Credentials,
        tree: CapacityTree | None = None,
        parent: CapacityNode | None = None,
    ) -> ChildrenPage:
        """Children of ``parent_code`` as a page the store can merge.

        ``parent`` is the caller's authoritative node for ``parent_code``;
        a node found in ``tree`` takes precedence over it. Only a parent
        known to neither is replaced by a level-1 placeholder.

        Raises:
            ValueError: if ``parent`` is a node for another code.
        """
        if parent is not None and parent.code != parent_code:
            raise ValueError(f"parent node {parent.code} does not match code {parent_code}")

        if tree is not None and tree.language == language:
            cached = tree.get(parent_code)
            if cached is not None:
                if tree.knows_children(parent_code):
                    LOGGER.debug(
                        "capacity_loader.cache.hit", parent_code=parent_code, language=language
                    )
                    return ChildrenPage(parent=cached, children=tree.children(parent_code))
                parent = cached

        if parent is None:
            parent = self.placeholder(parent_code)

        if parent.level >= MAX_LEVEL:
            return ChildrenPage(parent=replace(parent, has_children=False), children=[])

        resolved_parent = parent

        async def _work() -> ChildrenPage:
            return await self._fetch(resolved_parent, language=language, credentials=credentials)

        return await self._flights.do((language, parent_code), _work)

    async def _fetch(
        self, parent: CapacityNode, *, language: str, credentials: Credentials
    ) -> ChildrenPage:
        result = await self._gateway.fetch_children(
            parent.code, language=language, credentials=credentials
        )
        if result.is_err():
            error = result.unwrap_err()
            LOGGER.warning(
                "capacity_loader.fetch.failed",
                parent_code=parent.code,
                language=language,
                error_type=type(error).__name__,
                error=str(error),
            )
            return ChildrenPage(parent=parent, children=[], complete=False)

        children = [
            self._child_of(parent, entry) for entry in result.unwrap() if entry.code != parent.code
        ]
        LOGGER.debug(
            "capacity_loader.fetch.done",
            parent_code=parent.code,
            language=language,
            children=len(children),
        )
        return ChildrenPage(parent=replace(parent, has_children=bool(children)), children=children)

    def _child_of(self, parent: CapacityNode, entry: ListingEntry) -> CapacityNode:
        root_code = parent.root_code or parent.code
        node = CapacityNode(
            code=entry.code,
            name=entry.name,
            description=entry.description,
            external_id=entry.external_id,
            external_alt_id=entry.external_alt_id,
            level=parent.level + 1,
            parent_code=parent.code,
        )
        return node.with_attributes(root_code, self._derive(root_code))


__all__ = ["ParentKeyedLoader"]
