"""
Derive color/size dimensions from supplier variant labels.

The supplier stores the option values in `variantKey` ("Black", "Green-M",
"White2Pack"); the English variant name is the fallback, with the product name
stripped from its front.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from dropship_engine.schemas.supplier import SupplierVariant

KNOWN_COLORS = {
    "black", "white", "red", "blue", "green", "yellow", "orange", "purple",
    "pink", "brown", "gray", "grey", "beige", "cream", "ivory", "navy",
    "gold", "silver", "bronze", "copper", "rose", "coral", "teal", "cyan",
    "maroon", "burgundy", "lavender", "lilac", "violet", "indigo", "magenta",
    "turquoise", "khaki", "olive", "tan", "peach", "salmon", "mint",
    "charcoal", "champagne", "wine", "plum", "mauve", "rust", "taupe",
    "aqua", "fuchsia", "lime", "lemon", "mocha", "caramel", "chocolate",
    "coffee", "apricot", "emerald", "ruby", "sapphire", "pearl",
    "dark blue", "light blue", "sky blue", "royal blue", "baby blue", "navy blue",
    "dark green", "light green", "army green", "forest green", "olive green",
    "dark red", "light red", "wine red", "dark gray", "light gray",
    "dark grey", "light grey", "dark brown", "light brown",
    "dark pink", "light pink", "hot pink", "rose gold", "rose pink",
    "warm white", "cool white", "off white", "natural", "multicolor",
    "rainbow", "colorful", "transparent", "clear", "golden",
    "matte black", "glossy black", "oak", "walnut", "maple", "cherry",
    "bamboo", "teak", "mahogany",
}

# longest first so "dark blue" wins over "dark" prefixes
_COLORS_BY_LENGTH = sorted(KNOWN_COLORS, key=len, reverse=True)

JUNK_VALUES = {
    "default", "defaulttitle", "default title", "as picture", "as pic",
    "as shown", "as photo", "one size", "one color", "standard",
    "regular", "main", "single", "n/a", "na", "none", "-",
}

SIZE_PATTERNS = [
    re.compile(r"^(XXS|XS|S|M|L|XL|XXL|XXXL|2XL|3XL|4XL|5XL|6XL)$", re.IGNORECASE),
    re.compile(r"^\d+(\.\d+)?\s*(cm|mm|in|ft|inch|inches)?$", re.IGNORECASE),
    re.compile(r"^\d+[xX×]\d+(\s*(cm|mm|in|ft))?$"),
    re.compile(r"^(twin|full|queen|king|california king|cal king)$", re.IGNORECASE),
]

MODEL_CODE = re.compile(r"^([A-Z]{1,3}\d{3,}|style\d+)$", re.IGNORECASE)
QUANTITY = re.compile(r"^\d+\s*(pcs?|pieces?|packs?|sets?|pairs?)$", re.IGNORECASE)
PACK_STYLE = re.compile(r"^\d*PACK(\d+)$", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedVariant:
    name: str
    color: str | None
    size: str | None


def is_color(value: str) -> bool:
    return re.sub(r"\s+color$", "", value.strip().lower()) in KNOWN_COLORS


def is_size(value: str) -> bool:
    value = value.strip()
    return any(p.match(value) for p in SIZE_PATTERNS)


def _title(value: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), value.strip())


def parse_option_label(label: str) -> ParsedVariant | None:
    """Split one option label into color/size; None when it carries nothing usable."""
    raw = label.strip()
    lower = raw.lower()
    if not raw or lower in JUNK_VALUES:
        return None
    if MODEL_CODE.match(raw) or QUANTITY.match(raw):
        return ParsedVariant(name=raw, color=None, size=None)

    color = size = None
    if "-" in raw:
        parts = raw.split("-")
        if len(parts) == 2:
            first, second = parts
            if is_color(first):
                color = _title(first)
                if is_size(second):
                    size = second.strip().upper()
            elif is_size(second):
                size = second.strip().upper()
                pack = PACK_STYLE.match(first.strip())
                if pack:
                    color = f"Style {pack.group(1)}"
    elif is_color(raw):
        color = _title(raw)
    elif is_size(raw):
        size = raw.upper()
    else:
        # "White2Pack", "Black10cm"
        for known in _COLORS_BY_LENGTH:
            remainder = raw[len(known):]
            if lower.startswith(known) and remainder[:1].isdigit():
                color = _title(known)
                if is_size(remainder):
                    size = remainder
                break

    parts = [p for p in (color, size) if p]
    return ParsedVariant(name=" / ".join(parts) if parts else raw, color=color, size=size)


def parse_variant(variant: SupplierVariant, product_name: str | None = None) -> ParsedVariant:
    fallback_name = variant.name or variant.variant_key or variant.vid

    if variant.variant_key:
        parsed = parse_option_label(variant.variant_key)
        if parsed and (parsed.color or parsed.size):
            return parsed

    label = (variant.name or "").strip()
    if label and product_name and label.lower().startswith(product_name.lower().strip()):
        label = re.sub(r"^[-_/|,\s]+", "", label[len(product_name.strip()):]).strip()

    if label:
        parsed = parse_option_label(label)
        if parsed and (parsed.color or parsed.size):
            return parsed

    key = (variant.variant_key or "").strip()
    if key and key.lower() not in JUNK_VALUES and not MODEL_CODE.match(key):
        return ParsedVariant(name=key, color=None, size=None)
    return ParsedVariant(name=fallback_name, color=None, size=None)
