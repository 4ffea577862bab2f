"""Unit tests for the capacity tree store."""

from __future__ import annotations

import asyncio

import pytest

from capx.infra.events.tree_events import TreeEvent, TreeEventBus
from capx.infra.result import CacheCorruptionError, CapacityUnavailableError
from capx.models.capacity_models import Credentials
from capx.services.attribute_deriver import derive
from capx.services.snapshot_store import InMemorySnapshotStore
from tests.fixtures.capacity_fakes import entry
from tests.fixtures.store_factory import (
    build_store,
    sample_gateway,
    sample_primary,
    sample_secondary,
)


class FailingSnapshotStore(InMemorySnapshotStore):
    def save(self, key: str, snapshot: object) -> None:  # type: ignore[override]
        raise OSError("disk full")


def _recorder(events: list[TreeEvent]):
    async def listener(event: TreeEvent) -> None:
        events.append(event)

    return listener


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_language_builds_three_levels(credentials: Credentials) -> None:
    store = build_store(sample_gateway())

    tree = await store.update_language("en", credentials)

    assert tree.language == store.language == "en"
    assert store.is_loaded and not store.is_updating
    assert [node.code for node in store.get_root_nodes()] == [36, 10, 106]
    assert [(n.code, n.name) for n in store.get_children(36)] == [
        (361, "Public Speaking"),
        (362, "Written Communication"),
    ]
    grandchild = store.get_node(50123)
    assert grandchild is not None
    assert grandchild.level == 3
    assert grandchild.parent_code == 361
    assert store.has_children(36) and store.has_children(361)
    assert not store.has_children(362) and not store.has_children(106)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_descendants_share_root_attributes(credentials: Credentials) -> None:
    store = build_store(sample_gateway())
    await store.update_language("en", credentials)

    root = store.get_node(36)
    assert root is not None
    for code in (361, 362, 50123):
        node = store.get_node(code)
        assert node is not None
        assert (node.color, node.icon, node.category) == (root.color, root.icon, root.category)
    # 50123 on its own would be a "learning" code.
    assert derive(50123).category == "learning"
    assert store.get_color(50123) == derive(36).color


@pytest.mark.unit
@pytest.mark.asyncio
async def test_second_update_for_same_language_makes_no_calls(credentials: Credentials) -> None:
    gateway = sample_gateway()
    primary, secondary = sample_primary(), sample_secondary()
    store = build_store(gateway, primary, secondary)

    first = await store.update_language("en", credentials)
    calls = (len(gateway.calls), len(primary.calls), len(secondary.calls))

    second = await store.update_language("EN", credentials)

    assert second is first
    assert (len(gateway.calls), len(primary.calls), len(secondary.calls)) == calls


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_updates_share_one_build(credentials: Credentials) -> None:
    gateway = sample_gateway(delay=0.01)
    store = build_store(gateway)

    trees = await asyncio.gather(*(store.update_language("pt", credentials) for _ in range(5)))

    assert len(gateway.calls_of("roots")) == 1
    assert all(tree is trees[0] for tree in trees)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_updates_for_different_languages_never_interleave(credentials: Credentials) -> None:
    gateway = sample_gateway(delay=0.005)
    store = build_store(gateway)

    en_tree, pt_tree = await asyncio.gather(
        store.update_language("en", credentials), store.update_language("pt", credentials)
    )

    assert en_tree.language == "en" and pt_tree.language == "pt"
    assert store.language == "pt"
    languages = [call[1] for call in gateway.calls]
    # Every English call happens before the first Portuguese one.
    assert languages == sorted(languages, key=lambda lang: lang != "en")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_switching_back_during_another_build_leaves_last_request_active(
    credentials: Credentials,
) -> None:
    gateway = sample_gateway()
    store = build_store(gateway)
    await store.update_language("en", credentials)
    gateway.delay = 0.01

    to_pt = asyncio.create_task(store.update_language("pt", credentials))
    await asyncio.sleep(0)
    back_to_en = await store.update_language("en", credentials)
    pt_tree = await to_pt

    assert pt_tree.language == "pt"
    assert back_to_en.language == "en"
    assert store.language == "en"
    assert store.tree is back_to_en


@pytest.mark.unit
@pytest.mark.asyncio
async def test_translations_and_fallback_flags_for_non_default_language(
    credentials: Credentials,
) -> None:
    store = build_store(sample_gateway())
    await store.update_language("pt", credentials)

    assert store.get_name(36) == "Comunicação"
    assert store.get_description(36) == "Ability to communicate"
    assert store.is_fallback(36)

    assert store.get_node(361).name == "Falar em público"  # type: ignore[union-attr]
    assert not store.is_fallback(361)
    assert store.get_name(10) == "Organização"
    assert not store.is_fallback(10)

    # No external id: can never be resolved in Portuguese.
    assert store.is_fallback(106)
    assert store.is_fallback(101)
    # External id but neither source knows it.
    assert store.is_fallback(362)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_default_language_marks_nothing_as_fallback(credentials: Credentials) -> None:
    store = build_store(sample_gateway())
    await store.update_language("en", credentials)

    assert not any(node.is_fallback_translation for node in store.tree.code_index.values())
    assert store.get_alt_id(36) == ""
    assert store.get_external_id(36) == "Q1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_root_failure_keeps_previous_tree(credentials: Credentials) -> None:
    gateway = sample_gateway()
    events: list[TreeEvent] = []
    store = build_store(gateway)
    await store.subscribe(_recorder(events))
    previous = await store.update_language("en", credentials)

    gateway.fail_roots = True
    with pytest.raises(CapacityUnavailableError):
        await store.update_language("pt", credentials)

    assert store.tree is previous
    assert store.language == "en"
    assert not store.is_updating
    assert [event.kind for event in events] == ["committed", "failed"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_root_listing_is_unavailable(credentials: Credentials) -> None:
    gateway = sample_gateway()
    gateway.roots = []
    store = build_store(gateway)

    with pytest.raises(CapacityUnavailableError):
        await store.update_language("en", credentials)
    assert not store.is_loaded


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_credentials_is_a_noop() -> None:
    gateway = sample_gateway()
    store = build_store(gateway)

    tree = await store.update_language("pt", Credentials(""))

    assert tree.is_empty
    assert gateway.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_commit_persists_snapshot_and_new_store_restores_it(
    credentials: Credentials,
) -> None:
    snapshots = InMemorySnapshotStore()
    first = build_store(sample_gateway(), snapshots=snapshots)
    built = await first.update_language("pt", credentials)

    gateway = sample_gateway()
    events: list[TreeEvent] = []
    bus = TreeEventBus()
    await bus.subscribe(_recorder(events))
    second = build_store(gateway, snapshots=snapshots, events=bus)

    restored = await second.update_language("pt", credentials)

    assert gateway.calls == []
    assert restored == built
    assert [event.kind for event in events] == ["restored"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_snapshot_of_other_language_or_corrupt_snapshot_is_a_miss(
    credentials: Credentials,
) -> None:
    snapshots = InMemorySnapshotStore()
    await build_store(sample_gateway(), snapshots=snapshots).update_language("en", credentials)

    gateway = sample_gateway()
    await build_store(gateway, snapshots=snapshots).update_language("pt", credentials)
    assert len(gateway.calls_of("roots")) == 1

    snapshots.save("capx-unified-cache", {"language": "de", "code_index": "garbage", "adjacency": {}})
    gateway = sample_gateway()
    tree = await build_store(gateway, snapshots=snapshots).update_language("de", credentials)
    assert len(gateway.calls_of("roots")) == 1
    assert tree.language == "de"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_persistence_failure_is_not_fatal(credentials: Credentials) -> None:
    store = build_store(sample_gateway(), snapshots=FailingSnapshotStore())
    tree = await store.update_language("en", credentials)
    assert store.tree is tree
    assert len(tree) == 7


@pytest.mark.unit
@pytest.mark.asyncio
async def test_preload_loads_configured_language_once(credentials: Credentials) -> None:
    gateway = sample_gateway()
    store = build_store(gateway, language="pt")

    await store.preload(credentials)
    await store.preload(credentials)

    assert store.language == "pt"
    assert len(gateway.calls_of("roots")) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_children_expands_unknown_parent(credentials: Credentials) -> None:
    gateway = sample_gateway()
    gateway.failing_children.add(362)
    events: list[TreeEvent] = []
    store = build_store(gateway)
    await store.subscribe(_recorder(events))
    await store.update_language("en", credentials)
    assert not store.tree.knows_children(362)

    gateway.failing_children.clear()
    gateway.children[362] = [entry(3621, "Essays")]
    children = await store.load_children(362, credentials)

    assert [node.code for node in children] == [3621]
    assert store.get_node(3621).level == 3  # type: ignore[union-attr]
    assert store.get_node(3621).color == derive(36).color  # type: ignore[union-attr]
    assert store.has_children(362)
    assert events[-1].kind == "children_merged"
    assert events[-1].parent_code == 362


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_children_uses_known_adjacency(credentials: Credentials) -> None:
    gateway = sample_gateway()
    store = build_store(gateway)
    await store.update_language("en", credentials)
    before = len(gateway.calls)

    children = await store.load_children(36, credentials)

    assert [node.code for node in children] == [361, 362]
    assert len(gateway.calls) == before
    assert await store.load_children(50123, credentials) == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_placeholder_parent_is_not_listed_as_root(credentials: Credentials) -> None:
    gateway = sample_gateway()
    store = build_store(gateway)
    await store.update_language("en", credentials)
    gateway.children[999] = [entry(9991, "Orphan")]

    children = await store.load_children(999, credentials)

    assert [node.code for node in children] == [9991]
    assert store.get_node(999).is_placeholder  # type: ignore[union-attr]
    assert [node.code for node in store.get_root_nodes()] == [36, 10, 106]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_children_result_is_discarded_after_language_switch(
    credentials: Credentials,
) -> None:
    gateway = sample_gateway()
    gateway.failing_children.add(362)
    store = build_store(gateway)
    await store.update_language("en", credentials)
    gateway.failing_children.clear()
    gateway.children[362] = [entry(3621, "Essays")]
    gateway.delay = 0.01

    expand = asyncio.create_task(store.load_children(362, credentials))
    switch = asyncio.create_task(store.update_language("pt", credentials))
    children, _ = await asyncio.gather(expand, switch)

    assert children == []
    assert store.language == "pt"
    assert all(node.code != 3621 or node.level == 3 for node in store.tree.code_index.values())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_describe_fills_empty_description(credentials: Credentials) -> None:
    gateway = sample_gateway()
    store = build_store(gateway)
    await store.update_language("en", credentials)
    assert store.get_description(362) == ""

    node = await store.describe(362, credentials)

    assert node is not None
    assert node.description == "Writing for an audience"
    assert store.get_description(362) == "Writing for an audience"
    assert store.get_alt_id(362) == "Q9362"

    # Already described: no overwrite.
    await store.describe(36, credentials)
    assert store.get_description(36) == "Ability to communicate"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_returns_detached_nodes(credentials: Credentials) -> None:
    store = build_store(sample_gateway())
    await store.update_language("en", credentials)
    before = store.tree

    results = await store.search("written", credentials)

    assert [node.code for node in results] == [362]
    assert results[0].color == derive(36).color
    assert results[0].level == 2
    assert store.tree is before
    assert await store.search("   ", credentials) == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_restore_and_clear(credentials: Credentials) -> None:
    snapshots = InMemorySnapshotStore()
    source = build_store(sample_gateway())
    snapshot = (await source.update_language("pt", credentials)).to_snapshot()

    store = build_store(sample_gateway(), snapshots=snapshots)
    restored = await store.restore(snapshot)
    assert store.language == "pt"
    assert store.tree is restored

    with pytest.raises(CacheCorruptionError):
        await store.restore({"language": "pt"})
    assert store.tree is restored

    await store.update_language("en", credentials)
    assert "capx-unified-cache" in snapshots

    await store.clear()
    assert not store.is_loaded
    assert store.language == "en"
    assert "capx-unified-cache" not in snapshots


@pytest.mark.unit
@pytest.mark.asyncio
async def test_read_api_defaults_for_unknown_codes() -> None:
    store = build_store(sample_gateway())

    assert store.get_node(999) is None
    assert store.get_children(999) == []
    assert store.get_name(999) == "Capacity 999"
    assert store.get_description(999) == ""
    assert store.get_external_id(999) == ""
    assert not store.has_children(999)
    assert not store.is_fallback(999)
    assert store.get_color(10611) == derive(10611).color
    assert store.get_icon(10611) == "wifi_tethering"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_name_capitalizes_first_letter_only(credentials: Credentials) -> None:
    store = build_store(sample_gateway())
    await store.update_language("en", credentials)
    assert store.get_name(361) == "Public speaking"
    assert store.get_node(361).name == "Public Speaking"  # type: ignore[union-attr]
