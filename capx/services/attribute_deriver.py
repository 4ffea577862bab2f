"""Deterministic color/icon/category derivation from a capacity code."""

from __future__ import annotations

from typing import Final

from capx.models.capacity_models import CapacityAttributes

DEFAULT_CATEGORY: Final = "organizational"

CATEGORY_COLORS: Final[dict[str, str]] = {
    "organizational": "#0078D4",
    "communication": "#BE0078",
    "learning": "#00965A",
    "community": "#8E44AD",
    "social": "#D35400",
    "strategic": "#3498DB",
    "technology": "#27AE60",
}

CATEGORY_ICONS: Final[dict[str, str]] = {
    "organizational": "corporate_fare",
    "communication": "communication",
    "learning": "local_library",
    "community": "communities",
    "social": "cheer",
    "strategic": "chess_pawn",
    "technology": "wifi_tethering",
}

# CSS filters that tint the monochrome icon assets to each category color.
ICON_FILTERS: Final[dict[str, str]] = {
    "#0078D4": "invert(46%) sepia(66%) saturate(2299%) hue-rotate(187deg) brightness(102%) contrast(101%)",
    "#BE0078": "invert(21%) sepia(91%) saturate(3184%) hue-rotate(297deg) brightness(89%) contrast(96%)",
    "#00965A": "invert(48%) sepia(85%) saturate(385%) hue-rotate(115deg) brightness(97%) contrast(101%)",
    "#8E44AD": "invert(29%) sepia(67%) saturate(860%) hue-rotate(225deg) brightness(89%) contrast(88%)",
    "#D35400": "invert(45%) sepia(95%) saturate(1480%) hue-rotate(347deg) brightness(98%) contrast(96%)",
    "#3498DB": "invert(50%) sepia(80%) saturate(850%) hue-rotate(187deg) brightness(95%) contrast(92%)",
    "#27AE60": "invert(56%) sepia(75%) saturate(436%) hue-rotate(93deg) brightness(132%) contrast(98%)",
}


def _build_prefix_table(prefixes: dict[str, str]) -> tuple[tuple[str, str], ...]:
    # Longest prefix first so that "106" is tested before "10".
    return tuple(sorted(prefixes.items(), key=lambda item: (-len(item[0]), item[0])))


ROOT_PREFIXES: Final[tuple[tuple[str, str], ...]] = _build_prefix_table(
    {
        "10": "organizational",
        "36": "communication",
        "50": "learning",
        "56": "community",
        "65": "social",
        "74": "strategic",
        "106": "technology",
    }
)


def category_for(code: int) -> str:
    digits = str(abs(code))
    for prefix, category in ROOT_PREFIXES:
        if digits.startswith(prefix):
            return category
    return DEFAULT_CATEGORY


def derive(code: int) -> CapacityAttributes:
    """Return the color, icon and category of ``code``. Never fails."""
    category = category_for(code)
    return CapacityAttributes(
        color=CATEGORY_COLORS[category],
        icon=CATEGORY_ICONS[category],
        category=category,
    )


def color_for_category(value: str | None) -> str:
    """Resolve a category name (or pass through a color) to a hex color."""
    if not value:
        return "#000000"
    return CATEGORY_COLORS.get(value, value)


def icon_filter(color: str | None) -> str:
    """CSS filter for a hex color or category name; empty when unknown."""
    if not color:
        return ""
    if color.startswith("#"):
        return ICON_FILTERS.get(color.upper(), "")
    return ICON_FILTERS.get(CATEGORY_COLORS.get(color, ""), "")


__all__ = [
    "CATEGORY_COLORS",
    "CATEGORY_ICONS",
    "DEFAULT_CATEGORY",
    "ICON_FILTERS",
    "ROOT_PREFIXES",
    "category_for",
    "color_for_category",
    "derive",
    "icon_filter",
]
