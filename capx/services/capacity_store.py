"""Language-scoped, in-memory capacity tree with atomic commits."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Mapping

import structlog

from capx.gateway.capacity_api import CapacityApiGateway
from capx.infra.events.tree_events import (
    Subscriber,
    TreeEvent,
    TreeEventBus,
    TreeEventKind,
    UnsubscribeCallback,
)
from capx.infra.result import CacheCorruptionError, CapacityUnavailableError
from capx.infra.single_flight import SingleFlight
from capx.models.capacity_models import (
    MAX_LEVEL,
    CapacityNode,
    ChildrenPage,
    Credentials,
    ListingEntry,
    ResolvedTranslation,
    TranslationRequest,
    sanitize_capacity_name,
)
from capx.models.tree_models import AttributeDeriver, CapacityTree, TreeBuilder
from capx.services import attribute_deriver
from capx.services.capacity_loader import ParentKeyedLoader
from capx.services.snapshot_store import SnapshotStore
from capx.services.translation_pipeline import TranslationPipeline

LOGGER = structlog.get_logger(__name__)

DEFAULT_SNAPSHOT_KEY = "capx-unified-cache"


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class CapacityTreeStore:
    """Authoritative capacity tree for the currently selected language.

    Readers always see one fully built tree. ``_commit`` is the only place
    the active tree is replaced, and every commit happens under the write
    lock. A tree that fails to build never replaces the previous one.
    """

    def __init__(
        self,
        gateway: CapacityApiGateway,
        loader: ParentKeyedLoader,
        pipeline: TranslationPipeline,
        snapshots: SnapshotStore,
        events: TreeEventBus | None = None,
        *,
        language: str = "en",
        fallback_language: str = "en",
        snapshot_key: str = DEFAULT_SNAPSHOT_KEY,
        clock: Callable[[], int] = _epoch_millis,
        derive: AttributeDeriver = attribute_deriver.derive,
    ) -> None:
        self._gateway = gateway
        self._loader = loader
        self._pipeline = pipeline
        self._snapshots = snapshots
        self._events = events or TreeEventBus()
        self._default_language = language.lower()
        self._fallback_language = fallback_language.lower()
        self._snapshot_key = snapshot_key
        self._clock = clock
        self._derive = derive

        self._tree = CapacityTree.empty(self._default_language)
        self._write_lock = asyncio.Lock()
        self._updates: SingleFlight[str, CapacityTree] = SingleFlight("capacity_store")
        self._active_updates = 0

    # --- Read API ---

    @property
    def tree(self) -> CapacityTree:
        return self._tree

    @property
    def language(self) -> str:
        return self._tree.language

    @property
    def is_loaded(self) -> bool:
        return not self._tree.is_empty

    @property
    def is_updating(self) -> bool:
        return self._active_updates > 0

    @property
    def events(self) -> TreeEventBus:
        return self._events

    def get_node(self, code: int) -> CapacityNode | None:
        return self._tree.get(code)

    def get_children(self, parent_code: int) -> list[CapacityNode]:
        return self._tree.children(parent_code)

    def get_root_nodes(self) -> list[CapacityNode]:
        return self._tree.roots()

    def has_children(self, code: int) -> bool:
        node = self._tree.get(code)
        return node.has_children if node is not None else False

    def is_fallback(self, code: int) -> bool:
        node = self._tree.get(code)
        return node.is_fallback_translation if node is not None else False

    def get_name(self, code: int) -> str:
        """Display name with only its first letter capitalized; ``Capacity <code>`` when unknown."""
        node = self._tree.get(code)
        name = sanitize_capacity_name(node.name if node is not None else None, code)
        if node is None or name == f"Capacity {code}":
            return name
        return name.capitalize()

    def get_description(self, code: int) -> str:
        node = self._tree.get(code)
        return node.description if node is not None else ""

    def get_external_id(self, code: int) -> str:
        node = self._tree.get(code)
        return node.external_id if node is not None else ""

    def get_alt_id(self, code: int) -> str:
        node = self._tree.get(code)
        return node.external_alt_id if node is not None else ""

    def get_color(self, code: int) -> str:
        node = self._tree.get(code)
        return node.color if node is not None else self._derive(code).color

    def get_icon(self, code: int) -> str:
        node = self._tree.get(code)
        return node.icon if node is not None else self._derive(code).icon

    # --- Control API ---

    async def subscribe(self, listener: Subscriber) -> UnsubscribeCallback:
        return await self._events.subscribe(listener)

    async def preload(self, credentials: Credentials) -> CapacityTree:
        """Load the current language unless it is already loaded."""
        return await self.update_language(self._tree.language, credentials)

    async def update_language(self, language: str, credentials: Credentials) -> CapacityTree:
        """Make ``language`` the active tree, building it if needed.

        Raises:
            CapacityUnavailableError: if the root listing failed or was empty;
                the previously committed tree stays active.
        """
        language = language.strip().lower()
        # With another language's update in flight, queue behind it so the
        # language requested last is the one left active.
        if self._is_current(language) and not self._updates:
            LOGGER.debug("capacity_store.update.noop", language=language, nodes=len(self._tree))
            return self._tree
        if not credentials:
            LOGGER.warning("capacity_store.update.no_credentials", language=language)
            return self._tree

        async def _work() -> CapacityTree:
            return await self._run_update(language, credentials)

        return await self._updates.do(language, _work)

    async def load_children(self, parent_code: int, credentials: Credentials) -> list[CapacityNode]:
        """Expand one parent on demand and merge its children into the active tree."""
        tree = self._tree
        language = tree.language
        parent = tree.get(parent_code)
        if parent is not None and parent.level >= MAX_LEVEL:
            return []

        known = parent is not None and tree.knows_children(parent_code)
        page = await self._loader.load_children_page(
            parent_code, language=language, credentials=credentials, tree=tree
        )
        if known or not page.complete:
            return list(page.children)

        async with self._write_lock:
            if self._tree.language != language:
                LOGGER.info(
                    "capacity_store.children.discarded",
                    parent_code=parent_code,
                    fetched_language=language,
                    active_language=self._tree.language,
                )
                return []
            builder = TreeBuilder.from_tree(self._tree, derive=self._derive)
            self._merge_page(builder, page)
            merged = self._commit(builder.build(timestamp=self._clock()))
            self._persist(merged)
            children = merged.children(parent_code)

        await self._publish("children_merged", merged, parent_code=parent_code)
        return children

    async def describe(self, code: int, credentials: Credentials) -> CapacityNode | None:
        """Fetch one capacity's details, filling an empty description in the active tree."""
        language = self._tree.language
        result = await self._gateway.fetch_capacity(code, language=language, credentials=credentials)
        if result.is_err():
            error = result.unwrap_err()
            LOGGER.warning(
                "capacity_store.describe.failed",
                code=code,
                language=language,
                error_type=type(error).__name__,
                error=str(error),
            )
            return self._tree.get(code)

        entry = result.unwrap()
        node = self._tree.get(code)
        if node is None:
            return self._detached_node(entry)
        if node.description or not entry.description:
            return node

        async with self._write_lock:
            if self._tree.language != language or code not in self._tree:
                return self._tree.get(code)
            builder = TreeBuilder.from_tree(self._tree, derive=self._derive)
            current = builder.get(code)
            assert current is not None
            builder.update(
                code,
                description=entry.description,
                external_alt_id=current.external_alt_id or entry.external_alt_id,
            )
            merged = self._commit(builder.build(timestamp=self._clock()))
            self._persist(merged)

        await self._publish("committed", merged)
        return merged.get(code)

    async def search(self, query: str, credentials: Credentials) -> list[CapacityNode]:
        """Flat search; results carry derived attributes but are not merged."""
        query = query.strip()
        if not query:
            return []
        language = self._tree.language
        result = await self._gateway.search_capacities(
            query, language=language, credentials=credentials
        )
        if result.is_err():
            error = result.unwrap_err()
            LOGGER.warning(
                "capacity_store.search.failed",
                language=language,
                error_type=type(error).__name__,
                error=str(error),
            )
            return []
        return [self._detached_node(entry) for entry in result.unwrap()]

    async def restore(self, snapshot: Mapping[str, Any]) -> CapacityTree:
        """Replace the active tree with a previously persisted snapshot.

        Raises:
            CacheCorruptionError: if the snapshot cannot be read back.
        """
        tree = CapacityTree.from_snapshot(snapshot)
        async with self._write_lock:
            self._commit(tree)
        await self._publish("restored", tree)
        return tree

    async def clear(self) -> None:
        """Drop the active tree and its persisted snapshot."""
        async with self._write_lock:
            self._commit(CapacityTree.empty(self._default_language))
            try:
                self._snapshots.delete(self._snapshot_key)
            except OSError as exc:
                LOGGER.warning("capacity_store.snapshot.delete_failed", error=str(exc))
        LOGGER.info("capacity_store.cleared", language=self._default_language)
        await self._publish("cleared", self._tree)

    # --- Update path ---

    def _is_current(self, language: str) -> bool:
        return self._tree.language == language and not self._tree.is_empty

    async def _run_update(self, language: str, credentials: Credentials) -> CapacityTree:
        async with self._write_lock:
            if self._is_current(language):
                return self._tree
            self._active_updates += 1
            started = time.perf_counter()
            try:
                restored = self._restore_snapshot(language)
                if restored is not None:
                    tree = self._commit(restored)
                    kind: TreeEventKind = "restored"
                else:
                    tree = self._commit(await self._build(language, credentials))
                    self._persist(tree)
                    kind = "committed"
            except CapacityUnavailableError as exc:
                LOGGER.error(
                    "capacity_store.update.failed",
                    language=language,
                    error=str(exc),
                    kept_language=self._tree.language,
                    kept_nodes=len(self._tree),
                )
                failed = exc
            else:
                failed = None
                LOGGER.info(
                    "capacity_store.update.committed",
                    language=language,
                    source=kind,
                    nodes=len(tree),
                    duration_ms=int((time.perf_counter() - started) * 1000),
                )
            finally:
                self._active_updates -= 1

        if failed is not None:
            await self._events.publish(TreeEvent(kind="failed", language=language))
            raise failed
        await self._publish(kind, tree)
        return tree

    def _restore_snapshot(self, language: str) -> CapacityTree | None:
        try:
            snapshot = self._snapshots.load(self._snapshot_key)
            if snapshot is None:
                return None
            if snapshot.get("language") != language:
                LOGGER.debug(
                    "capacity_store.snapshot.language_mismatch",
                    requested=language,
                    stored=snapshot.get("language"),
                )
                return None
            tree = CapacityTree.from_snapshot(snapshot)
        except CacheCorruptionError as exc:
            LOGGER.warning(
                "capacity_store.snapshot.corrupt",
                language=language,
                error=str(exc),
                context=exc.log_safe_context(),
            )
            return None
        if tree.is_empty:
            return None
        return tree

    async def _build(self, language: str, credentials: Credentials) -> CapacityTree:
        roots_result = await self._gateway.fetch_root_capacities(
            language=language, credentials=credentials
        )
        if roots_result.is_err():
            error = roots_result.unwrap_err()
            raise CapacityUnavailableError(
                "Root capacity listing failed",
                context={"language": language, "error_type": type(error).__name__},
                cause=error,
            )
        entries = roots_result.unwrap()
        if not entries:
            raise CapacityUnavailableError(
                "Root capacity listing is empty", context={"language": language}
            )

        builder = TreeBuilder(language, derive=self._derive)
        roots = [builder.add_root(self._node_from_entry(entry)) for entry in entries]
        await asyncio.gather(
            *(self._expand_root(builder, root, language, credentials) for root in roots)
        )

        await self._apply_translations(builder, language)
        if language != self._fallback_language:
            self._mark_untranslatable(builder)
        return builder.build(timestamp=self._clock())

    async def _expand_root(
        self,
        builder: TreeBuilder,
        root: CapacityNode,
        language: str,
        credentials: Credentials,
    ) -> None:
        page = await self._loader.load_children_page(
            root.code, language=language, credentials=credentials, parent=root
        )
        self._merge_page(builder, page)
        if not page.complete:
            return

        child_pages = await asyncio.gather(
            *(
                self._loader.load_children_page(
                    child.code, language=language, credentials=credentials, parent=child
                )
                for child in page.children
            )
        )
        for child_page in child_pages:
            self._merge_page(builder, child_page)

    @staticmethod
    def _merge_page(builder: TreeBuilder, page: ChildrenPage) -> None:
        if page.parent.code not in builder:
            builder.upsert(page.parent)
        if page.complete:
            builder.attach_children(page.parent.code, page.children)

    async def _apply_translations(self, builder: TreeBuilder, language: str) -> None:
        requests = [
            TranslationRequest(code=node.code, external_id=node.external_id)
            for node in builder.nodes()
            if node.external_id.strip()
        ]
        if not requests:
            return
        for translation in await self._pipeline.resolve(requests, language):
            node = builder.get(translation.code)
            if node is None:
                continue
            if not translation.resolved:
                if language != self._fallback_language:
                    builder.update(node.code, is_fallback_translation=True)
                continue
            builder.update(node.code, **self._translated_fields(node, translation))

    @staticmethod
    def _translated_fields(node: CapacityNode, translation: ResolvedTranslation) -> dict[str, Any]:
        if node.is_root:
            name = translation.name or node.name
        elif translation.name and translation.name != node.name:
            name = translation.name
        else:
            name = node.name
        return {
            "name": name,
            "description": translation.description or node.description,
            "external_alt_id": translation.external_alt_id or node.external_alt_id,
            "is_fallback_translation": translation.is_fallback_translation,
        }

    @staticmethod
    def _mark_untranslatable(builder: TreeBuilder) -> None:
        for node in builder.nodes():
            if not node.external_id.strip() and not node.is_fallback_translation:
                builder.update(node.code, is_fallback_translation=True)

    # --- Commit path ---

    def _commit(self, tree: CapacityTree) -> CapacityTree:
        self._tree = tree
        return tree

    def _persist(self, tree: CapacityTree) -> None:
        try:
            self._snapshots.save(self._snapshot_key, tree.to_snapshot())
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning(
                "capacity_store.snapshot.save_failed",
                language=tree.language,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    async def _publish(
        self, kind: TreeEventKind, tree: CapacityTree, *, parent_code: int | None = None
    ) -> None:
        await self._events.publish(
            TreeEvent(kind=kind, language=tree.language, node_count=len(tree), parent_code=parent_code)
        )

    # --- Node construction ---

    def _node_from_entry(self, entry: ListingEntry) -> CapacityNode:
        return CapacityNode(
            code=entry.code,
            name=entry.name,
            description=entry.description,
            external_id=entry.external_id,
            external_alt_id=entry.external_alt_id,
        )

    def _detached_node(self, entry: ListingEntry) -> CapacityNode:
        known = self._tree.get(entry.code)
        level = known.level if known is not None else 1
        parent_code = known.parent_code if known is not None else None
        root_code = known.root_code if known is not None else entry.code
        node = CapacityNode(
            code=entry.code,
            name=entry.name or (known.name if known is not None else ""),
            description=entry.description or (known.description if known is not None else ""),
            external_id=entry.external_id or (known.external_id if known is not None else ""),
            external_alt_id=entry.external_alt_id,
            level=level,
            parent_code=parent_code,
        )
        return node.with_attributes(root_code, self._derive(root_code))


__all__ = ["DEFAULT_SNAPSHOT_KEY", "CapacityTreeStore"]
