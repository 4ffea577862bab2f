from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping, Sequence, cast

import structlog

from capx.infra.result import MalformedResponseError

LOGGER = structlog.get_logger(__name__)

__all__ = [
    "CapacityAttributes",
    "CapacityLevel",
    "CapacityNode",
    "ChildrenPage",
    "Credentials",
    "ListingEntry",
    "MAX_LEVEL",
    "ResolvedTranslation",
    "SourceRecord",
    "TranslationRequest",
    "is_entity_id",
    "parse_children_listing",
    "parse_capacity_detail",
    "parse_flat_listing",
    "sanitize_capacity_name",
]

CapacityLevel = Literal[1, 2, 3]
MAX_LEVEL: int = 3

_ENTITY_ID = re.compile(r"^Q\d+$")


def is_entity_id(value: str) -> bool:
    """True for bare knowledge-graph ids such as ``Q12345``."""
    return bool(_ENTITY_ID.match(value.strip()))


def sanitize_capacity_name(name: str | None, code: int) -> str:
    """Replace an empty name or a bare entity id with the generic ``Capacity <code>`` label."""
    if not name or not name.strip() or is_entity_id(name):
        return f"Capacity {code}"
    return name


@dataclass(slots=True, frozen=True)
class Credentials:
    """Caller credentials forwarded to the capacity API."""

    token: str = field(repr=False)

    def __bool__(self) -> bool:
        return bool(self.token and self.token.strip())

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self.token}"}

    def __repr__(self) -> str:
        return "Credentials(token='***')"


@dataclass(slots=True, frozen=True)
class CapacityAttributes:
    color: str
    icon: str
    category: str


@dataclass(slots=True, frozen=True)
class CapacityNode:
    """One entry of the capacity tree.

    ``color``/``icon``/``category`` are always derived from ``root_code``;
    callers never author them directly.
    """

    code: int
    name: str = ""
    description: str = ""
    external_id: str = ""
    external_alt_id: str = ""
    level: int = 1
    parent_code: int | None = None
    root_code: int = 0
    color: str = ""
    icon: str = ""
    category: str = ""
    has_children: bool = False
    is_fallback_translation: bool = False
    is_placeholder: bool = False

    @property
    def is_root(self) -> bool:
        return self.level == 1

    def with_attributes(self, root_code: int, attributes: CapacityAttributes) -> "CapacityNode":
        return replace(
            self,
            root_code=root_code,
            color=attributes.color,
            icon=attributes.icon,
            category=attributes.category,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "external_id": self.external_id,
            "external_alt_id": self.external_alt_id,
            "level": self.level,
            "parent_code": self.parent_code,
            "root_code": self.root_code,
            "color": self.color,
            "icon": self.icon,
            "category": self.category,
            "has_children": self.has_children,
            "is_fallback_translation": self.is_fallback_translation,
            "is_placeholder": self.is_placeholder,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CapacityNode":
        """Rebuild a node from ``to_dict`` output; raises on missing or mistyped fields."""
        level = int(data["level"])
        if level < 1 or level > MAX_LEVEL:
            raise ValueError(f"Capacity level out of range: {level}")
        parent_raw = data.get("parent_code")
        return cls(
            code=int(data["code"]),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            external_id=str(data.get("external_id") or ""),
            external_alt_id=str(data.get("external_alt_id") or ""),
            level=level,
            parent_code=int(parent_raw) if parent_raw is not None else None,
            root_code=int(data["root_code"]),
            color=str(data.get("color") or ""),
            icon=str(data.get("icon") or ""),
            category=str(data.get("category") or ""),
            has_children=bool(data.get("has_children", False)),
            is_fallback_translation=bool(data.get("is_fallback_translation", False)),
            is_placeholder=bool(data.get("is_placeholder", False)),
        )


@dataclass(slots=True, frozen=True)
class ChildrenPage:
    """Outcome of one children fetch.

    ``complete`` is False when the fetch failed; an empty ``children`` list
    then means "unknown", not "proven to have no children".
    """

    parent: CapacityNode
    children: Sequence[CapacityNode]
    complete: bool = True


# --- Boundary types ---


@dataclass(slots=True, frozen=True)
class ListingEntry:
    """Normalized item of any capacity-listing response."""

    code: int
    name: str = ""
    description: str = ""
    external_id: str = ""
    external_alt_id: str = ""


@dataclass(slots=True, frozen=True)
class TranslationRequest:
    code: int
    external_id: str


@dataclass(slots=True, frozen=True)
class SourceRecord:
    """One item returned by a translation source, keyed by external id.

    Language tags are ``None`` when the source does not declare them.
    """

    external_id: str
    name: str = ""
    description: str = ""
    label_language: str | None = None
    description_language: str | None = None
    external_alt_id: str = ""


@dataclass(slots=True, frozen=True)
class ResolvedTranslation:
    code: int
    external_id: str
    name: str = ""
    description: str = ""
    external_alt_id: str = ""
    is_fallback_translation: bool = False
    resolved: bool = False


# --- Defensive parsers for listing payloads ---


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _entry_from_object(code: int, item: Mapping[str, Any]) -> ListingEntry:
    return ListingEntry(
        code=code,
        name=_as_text(item.get("name")),
        description=_as_text(item.get("description")),
        external_id=_as_text(item.get("wd_code") or item.get("external_id")),
        external_alt_id=_as_text(item.get("metabase_code") or item.get("external_alt_id")),
    )


def _coerce_code(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


def parse_flat_listing(payload: Any, *, source: str) -> list[ListingEntry]:
    """Parse a list of ``{code, name, wd_code, ...}`` objects.

    Items with an unusable code are dropped and logged; a payload that is
    not a list raises ``MalformedResponseError``.
    """
    if not isinstance(payload, list):
        raise MalformedResponseError(
            f"{source} listing must be a JSON array",
            context={"source": source, "payload_type": type(payload).__name__},
        )
    entries: list[ListingEntry] = []
    for raw_item in cast(list[Any], payload):
        if not isinstance(raw_item, Mapping):
            LOGGER.warning("capacity_models.listing.item_dropped", source=source, reason="not_object")
            continue
        item = cast(Mapping[str, Any], raw_item)
        code = _coerce_code(item.get("code"))
        if code is None:
            LOGGER.warning(
                "capacity_models.listing.item_dropped",
                source=source,
                reason="bad_code",
                code=repr(item.get("code")),
            )
            continue
        entries.append(_entry_from_object(code, item))
    return entries


def parse_children_listing(payload: Any, *, parent_code: int) -> list[ListingEntry]:
    """Parse a children-by-parent payload of either shape.

    ``{"361": "Public Speaking"}`` and
    ``{"361": {"name": ..., "wd_code": ..., "metabase_code": ...}}`` are both
    accepted; a list of objects is parsed as a flat listing.
    """
    source = f"children:{parent_code}"
    if isinstance(payload, list):
        return parse_flat_listing(payload, source=source)
    if not isinstance(payload, Mapping):
        raise MalformedResponseError(
            "children listing must be a JSON object",
            context={"parent_code": parent_code, "payload_type": type(payload).__name__},
        )

    entries: list[ListingEntry] = []
    for raw_key, value in cast(Mapping[Any, Any], payload).items():
        code = _coerce_code(raw_key)
        if code is None:
            LOGGER.warning(
                "capacity_models.children.item_dropped",
                parent_code=parent_code,
                reason="bad_code",
                code=repr(raw_key),
            )
            continue
        if isinstance(value, str):
            entries.append(ListingEntry(code=code, name=value.strip()))
        elif isinstance(value, Mapping):
            entries.append(_entry_from_object(code, cast(Mapping[str, Any], value)))
        elif value is None:
            entries.append(ListingEntry(code=code))
        else:
            LOGGER.warning(
                "capacity_models.children.item_dropped",
                parent_code=parent_code,
                reason="bad_value",
                code=code,
            )
    return entries


def parse_capacity_detail(payload: Any, *, code: int) -> ListingEntry:
    """Parse a single-item lookup ``{name, description, wd_code, metabase_code}``."""
    if not isinstance(payload, Mapping):
        raise MalformedResponseError(
            "capacity detail must be a JSON object",
            context={"code": code, "payload_type": type(payload).__name__},
        )
    return _entry_from_object(code, cast(Mapping[str, Any], payload))
