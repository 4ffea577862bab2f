"""Bootstrap function for wiring the capacity cache."""

from __future__ import annotations

from capx.config.settings import CacheSettings
from capx.gateway.capacity_api import CapacityApiGateway
from capx.gateway.http_client import JsonHttpClient
from capx.gateway.sparql import MetabaseTranslationSource, WikidataTranslationSource
from capx.infra.di.container import DependencyContainer
from capx.infra.di.lifecycle import Lifecycle
from capx.infra.events.tree_events import TreeEventBus
from capx.infra.types.http import SessionProtocol
from capx.services.capacity_loader import ParentKeyedLoader
from capx.services.capacity_store import CapacityTreeStore
from capx.services.snapshot_store import (
    InMemorySnapshotStore,
    JsonFileSnapshotStore,
    SnapshotStore,
)
from capx.services.translation_pipeline import TranslationPipeline


def bootstrap_container(settings: CacheSettings, session: SessionProtocol) -> DependencyContainer:
    """Build a container holding one fully wired ``CapacityTreeStore``.

    The HTTP session is owned by the caller and must stay open for as long
    as the container's services are in use.
    """
    container = DependencyContainer()

    container.register_instance(CacheSettings, settings)
    container.register_instance(SessionProtocol, session)  # type: ignore[type-abstract]

    def create_http_client() -> JsonHttpClient:
        return JsonHttpClient(
            container.resolve(SessionProtocol),  # type: ignore[type-abstract]
            timeout_seconds=settings.request_timeout_seconds,
            user_agent=settings.user_agent,
        )

    container.register(JsonHttpClient, factory=create_http_client, lifecycle=Lifecycle.SINGLETON)

    # Gateways
    container.register(
        CapacityApiGateway,
        factory=lambda: CapacityApiGateway(
            container.resolve(JsonHttpClient), base_url=settings.api_base_url
        ),
        lifecycle=Lifecycle.SINGLETON,
    )
    container.register(
        MetabaseTranslationSource,
        factory=lambda: MetabaseTranslationSource(
            container.resolve(JsonHttpClient),
            endpoint=settings.metabase_sparql_url,
            fallback_language=settings.fallback_language,
        ),
        lifecycle=Lifecycle.SINGLETON,
    )
    container.register(
        WikidataTranslationSource,
        factory=lambda: WikidataTranslationSource(
            container.resolve(JsonHttpClient),
            endpoint=settings.wikidata_sparql_url,
            fallback_language=settings.fallback_language,
        ),
        lifecycle=Lifecycle.SINGLETON,
    )

    # Services
    container.register(
        TranslationPipeline,
        factory=lambda: TranslationPipeline(
            container.resolve(MetabaseTranslationSource),
            container.resolve(WikidataTranslationSource),
            batch_size=settings.translation_batch_size,
            batch_attempts=settings.translation_batch_attempts,
            retry_wait_seconds=settings.translation_retry_wait_seconds,
        ),
        lifecycle=Lifecycle.SINGLETON,
    )
    container.register(ParentKeyedLoader, lifecycle=Lifecycle.SINGLETON)
    container.register(TreeEventBus, lifecycle=Lifecycle.SINGLETON)

    snapshot_dir = settings.snapshot_dir
    snapshots: SnapshotStore = (
        JsonFileSnapshotStore(snapshot_dir) if snapshot_dir is not None else InMemorySnapshotStore()
    )
    container.register_instance(SnapshotStore, snapshots)  # type: ignore[type-abstract]

    def create_capacity_store() -> CapacityTreeStore:
        return CapacityTreeStore(
            container.resolve(CapacityApiGateway),
            container.resolve(ParentKeyedLoader),
            container.resolve(TranslationPipeline),
            container.resolve(SnapshotStore),  # type: ignore[type-abstract]
            container.resolve(TreeEventBus),
            language=settings.language,
            fallback_language=settings.fallback_language,
            snapshot_key=settings.snapshot_key,
        )

    container.register(
        CapacityTreeStore, factory=create_capacity_store, lifecycle=Lifecycle.SINGLETON
    )

    # Validation: ensure the store resolves at bootstrap
    _ = container.resolve(CapacityTreeStore)

    return container


__all__ = ["bootstrap_container"]
