from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Sequence, cast

import structlog

from capx.infra.result import CacheCorruptionError
from capx.models.capacity_models import MAX_LEVEL, CapacityAttributes, CapacityNode

LOGGER = structlog.get_logger(__name__)

__all__ = ["AttributeDeriver", "CapacityTree", "TreeBuilder"]

AttributeDeriver = Callable[[int], CapacityAttributes]


@dataclass(slots=True, frozen=True)
class CapacityTree:
    """Committed, read-only capacity tree for exactly one language."""

    language: str
    code_index: Mapping[int, CapacityNode] = field(default_factory=dict)
    adjacency: Mapping[int, tuple[int, ...]] = field(default_factory=dict)
    timestamp: int = 0

    @classmethod
    def empty(cls, language: str) -> "CapacityTree":
        return cls(language=language)

    @property
    def is_empty(self) -> bool:
        return not self.code_index

    def __len__(self) -> int:
        return len(self.code_index)

    def __contains__(self, code: object) -> bool:
        return code in self.code_index

    def get(self, code: int) -> CapacityNode | None:
        return self.code_index.get(code)

    def knows_children(self, parent_code: int) -> bool:
        return parent_code in self.adjacency

    def children(self, parent_code: int) -> list[CapacityNode]:
        codes = self.adjacency.get(parent_code, ())
        return [self.code_index[code] for code in codes if code in self.code_index]

    def roots(self) -> list[CapacityNode]:
        return [
            node
            for node in self.code_index.values()
            if node.level == 1 and not node.is_placeholder
        ]

    def to_snapshot(self) -> dict[str, Any]:
        """Serializable ``{code_index, adjacency, language, timestamp}`` mapping (JSON-safe keys)."""
        return {
            "code_index": {str(code): node.to_dict() for code, node in self.code_index.items()},
            "adjacency": {str(code): list(children) for code, children in self.adjacency.items()},
            "language": self.language,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "CapacityTree":
        """Rebuild a tree from ``to_snapshot`` output.

        Raises:
            CacheCorruptionError: if the mapping is incomplete or inconsistent.
        """
        try:
            language = snapshot["language"]
            if not isinstance(language, str) or not language:
                raise ValueError("snapshot language must be a non-empty string")
            timestamp = int(snapshot.get("timestamp", 0))

            raw_index = cast(Mapping[str, Any], snapshot["code_index"])
            code_index: dict[int, CapacityNode] = {}
            for raw_code, raw_node in raw_index.items():
                node = CapacityNode.from_dict(cast(Mapping[str, Any], raw_node))
                if node.code != int(raw_code):
                    raise ValueError(f"node key {raw_code} does not match code {node.code}")
                code_index[node.code] = node

            raw_adjacency = cast(Mapping[str, Any], snapshot["adjacency"])
            adjacency: dict[int, tuple[int, ...]] = {}
            for raw_parent, raw_children in raw_adjacency.items():
                children = tuple(int(code) for code in cast(Iterable[Any], raw_children))
                missing = [code for code in children if code not in code_index]
                if missing:
                    raise ValueError(f"adjacency of {raw_parent} references unknown codes {missing}")
                adjacency[int(raw_parent)] = children
        except CacheCorruptionError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise CacheCorruptionError(
                f"Snapshot is unreadable: {exc}",
                context={"keys": sorted(str(k) for k in snapshot.keys())},
                cause=exc,
            ) from exc

        return cls(
            language=language,
            code_index=code_index,
            adjacency=adjacency,
            timestamp=timestamp,
        )


class TreeBuilder:
    """Mutable working copy used by the store to assemble the next tree.

    Every node that passes through the builder has its level, root and
    attributes recomputed from its parent, so the committed tree always
    satisfies the level and attribute-inheritance invariants.
    """

    def __init__(self, language: str, *, derive: AttributeDeriver) -> None:
        self.language = language
        self._derive = derive
        self._nodes: dict[int, CapacityNode] = {}
        self._adjacency: dict[int, list[int]] = {}

    @classmethod
    def from_tree(cls, tree: CapacityTree, *, derive: AttributeDeriver) -> "TreeBuilder":
        builder = cls(tree.language, derive=derive)
        builder._nodes = dict(tree.code_index)
        builder._adjacency = {code: list(children) for code, children in tree.adjacency.items()}
        return builder

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, code: object) -> bool:
        return code in self._nodes

    def get(self, code: int) -> CapacityNode | None:
        return self._nodes.get(code)

    def nodes(self) -> list[CapacityNode]:
        return list(self._nodes.values())

    def knows_children(self, parent_code: int) -> bool:
        return parent_code in self._adjacency

    def add_root(self, node: CapacityNode) -> CapacityNode:
        root = replace(node, level=1, parent_code=None, is_placeholder=False)
        return self.upsert(root.with_attributes(root.code, self._derive(root.code)))

    def upsert(self, node: CapacityNode) -> CapacityNode:
        """Insert or replace a node, reconciling placeholders.

        A placeholder never overwrites a real node. A real node replacing a
        placeholder keeps the known adjacency and re-derives its subtree.
        """
        existing = self._nodes.get(node.code)
        if existing is None:
            self._nodes[node.code] = node
            return node

        if node.is_placeholder and not existing.is_placeholder:
            return existing

        known_children = bool(self._adjacency.get(node.code))
        merged = replace(node, has_children=node.has_children or known_children)
        self._nodes[node.code] = merged
        if existing.is_placeholder and not merged.is_placeholder:
            LOGGER.debug(
                "tree_builder.placeholder.reconciled",
                code=merged.code,
                level=merged.level,
                root_code=merged.root_code,
            )
        if (existing.level, existing.root_code) != (merged.level, merged.root_code):
            self._relevel_subtree(merged.code)
        return merged

    def attach_children(self, parent_code: int, children: Sequence[CapacityNode]) -> CapacityNode:
        """Record ``children`` as the complete child list of ``parent_code``."""
        parent = self._nodes[parent_code]
        if parent.level >= MAX_LEVEL:
            LOGGER.warning(
                "tree_builder.children.level_cap",
                parent_code=parent_code,
                dropped=len(children),
            )
            self._adjacency[parent_code] = []
            parent = replace(parent, has_children=False)
            self._nodes[parent_code] = parent
            return parent

        codes: list[int] = []
        for child in children:
            if child.code == parent_code:
                continue
            previous = self._nodes.get(child.code)
            if previous is not None and previous.parent_code not in (None, parent_code):
                self._detach(previous.parent_code, child.code)
            self.upsert(self._as_child_of(parent, child))
            codes.append(child.code)

        self._adjacency[parent_code] = codes
        parent = replace(parent, has_children=bool(codes))
        self._nodes[parent_code] = parent
        return parent

    def update(self, code: int, **changes: Any) -> CapacityNode | None:
        node = self._nodes.get(code)
        if node is None:
            return None
        updated = replace(node, **changes)
        self._nodes[code] = updated
        return updated

    def build(self, *, timestamp: int) -> CapacityTree:
        return CapacityTree(
            language=self.language,
            code_index=dict(self._nodes),
            adjacency={code: tuple(children) for code, children in self._adjacency.items()},
            timestamp=timestamp,
        )

    def _as_child_of(self, parent: CapacityNode, child: CapacityNode) -> CapacityNode:
        placed = replace(child, level=parent.level + 1, parent_code=parent.code)
        return placed.with_attributes(parent.root_code, self._derive(parent.root_code))

    def _detach(self, parent_code: int | None, child_code: int) -> None:
        if parent_code is None:
            return
        siblings = self._adjacency.get(parent_code)
        if siblings and child_code in siblings:
            siblings.remove(child_code)

    def _relevel_subtree(self, code: int) -> None:
        pending = [code]
        while pending:
            parent = self._nodes[pending.pop()]
            for child_code in list(self._adjacency.get(parent.code, ())):
                child = self._nodes.get(child_code)
                if child is None:
                    continue
                if parent.level >= MAX_LEVEL:
                    self._drop_subtree(child_code)
                    continue
                self._nodes[child_code] = self._as_child_of(parent, child)
                pending.append(child_code)
            if parent.level >= MAX_LEVEL and parent.code in self._adjacency:
                self._adjacency[parent.code] = []
                self._nodes[parent.code] = replace(parent, has_children=False)

    def _drop_subtree(self, code: int) -> None:
        LOGGER.warning("tree_builder.subtree.dropped", code=code, reason="level_cap")
        for child_code in self._adjacency.pop(code, []):
            self._drop_subtree(child_code)
        self._nodes.pop(code, None)
