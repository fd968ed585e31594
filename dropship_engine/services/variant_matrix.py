"""
Which color/size combinations of a product can be bought.

Colors and sizes are listed from every active variant (so an out-of-stock size
still renders, greyed out); only combinations with positive stock are
selectable. When changing one dimension invalidates the other, the fallback
is: keep the current value if still valid, else the first in-stock match in
matrix order, else the first value of that dimension in matrix order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

Combo = tuple[Optional[str], Optional[str]]


def _dimension(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass
class AvailabilityMatrix:
    colors: list[str] = field(default_factory=list)
    sizes: list[str] = field(default_factory=list)
    combos: dict[Combo, Any] = field(default_factory=dict)  # in-stock only
    color_images: dict[str, str] = field(default_factory=dict)
    primary_image: str | None = None

    @classmethod
    def build(cls, variants: Iterable[Any], primary_image: str | None = None) -> "AvailabilityMatrix":
        """Build from variant rows (ORM objects or anything with the same attributes), in display order."""
        matrix = cls(primary_image=primary_image)
        for variant in variants:
            if getattr(variant, "is_active", True) is False:
                continue
            color = _dimension(getattr(variant, "color", None))
            size = _dimension(getattr(variant, "size", None))

            if color and color not in matrix.colors:
                matrix.colors.append(color)
            if size and size not in matrix.sizes:
                matrix.sizes.append(size)

            image = getattr(variant, "image_url", None)
            if color and image and color not in matrix.color_images:
                matrix.color_images[color] = image

            stock = getattr(variant, "stock_count", None) or 0
            if stock > 0 and (color, size) not in matrix.combos:
                matrix.combos[(color, size)] = variant.id
        return matrix

    @property
    def has_colors(self) -> bool:
        return bool(self.colors)

    @property
    def has_sizes(self) -> bool:
        return bool(self.sizes)

    def is_combo_valid(self, color: str | None, size: str | None) -> bool:
        return (_dimension(color), _dimension(size)) in self.combos

    def variant_id_for(self, color: str | None, size: str | None) -> Any | None:
        return self.combos.get((_dimension(color), _dimension(size)))

    def available_colors(self, size: str | None = None) -> list[str]:
        size = _dimension(size)
        if size is None:
            return list(self.colors)
        return [c for c in self.colors if (c, size) in self.combos]

    def available_sizes(self, color: str | None = None) -> list[str]:
        color = _dimension(color)
        if color is None:
            return list(self.sizes)
        return [s for s in self.sizes if (color, s) in self.combos]

    def best_color_for_size(self, size: str | None, current_color: str | None = None) -> str | None:
        if not self.colors:
            return None
        if current_color and self.is_combo_valid(current_color, size):
            return _dimension(current_color)
        in_stock = self.available_colors(size) if _dimension(size) else [
            c for c in self.colors if (c, None) in self.combos
        ]
        return in_stock[0] if in_stock else self.colors[0]

    def best_size_for_color(self, color: str | None, current_size: str | None = None) -> str | None:
        if not self.sizes:
            return None
        if current_size and self.is_combo_valid(color, current_size):
            return _dimension(current_size)
        in_stock = self.available_sizes(color) if _dimension(color) else [
            s for s in self.sizes if (None, s) in self.combos
        ]
        return in_stock[0] if in_stock else self.sizes[0]

    def best_image(self, color: str | None) -> str | None:
        color = _dimension(color)
        if color and color in self.color_images:
            return self.color_images[color]
        return self.primary_image
