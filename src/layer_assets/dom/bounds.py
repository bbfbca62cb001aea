"""Integer rectangles."""

from dataclasses import dataclass
from typing import Any

_SIDES = ("top", "left", "bottom", "right")


@dataclass
class Bounds:
    """Rectangle in document pixels. Empty rectangles are kept as all zeroes."""

    top: int = 0
    left: int = 0
    bottom: int = 0
    right: int = 0

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "Bounds":
        bounds = cls(**{side: int(raw[side]) for side in _SIDES if side in raw})
        return cls() if bounds.is_empty() else bounds

    def to_raw(self) -> dict[str, int]:
        return {side: getattr(self, side) for side in _SIDES}

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def apply_change(self, raw: dict[str, Any]) -> dict[str, dict[str, int]]:
        """Update the given sides. Returns {side: {"previous": old}} for sides that changed."""
        previous = self.to_raw()
        for side in _SIDES:
            if side in raw:
                setattr(self, side, int(raw[side]))
        if self.is_empty():
            self.top = self.left = self.bottom = self.right = 0
        return {side: {"previous": previous[side]} for side in _SIDES if getattr(self, side) != previous[side]}

    def union(self, other: "Bounds") -> "Bounds":
        if other.is_empty():
            return Bounds(self.top, self.left, self.bottom, self.right)
        if self.is_empty():
            return Bounds(other.top, other.left, other.bottom, other.right)
        return Bounds(
            top=min(self.top, other.top),
            left=min(self.left, other.left),
            bottom=max(self.bottom, other.bottom),
            right=max(self.right, other.right),
        )

    def intersect(self, other: "Bounds") -> "Bounds":
        result = Bounds(
            top=max(self.top, other.top),
            left=max(self.left, other.left),
            bottom=min(self.bottom, other.bottom),
            right=min(self.right, other.right),
        )
        return Bounds() if result.is_empty() else result

    def scale(self, factor: float) -> "Bounds":
        result = Bounds(
            top=round(self.top * factor),
            left=round(self.left * factor),
            bottom=round(self.bottom * factor),
            right=round(self.right * factor),
        )
        return Bounds() if result.is_empty() else result

    def padding_to(self, outer: "Bounds") -> dict[str, int]:
        """Distance from each side of this rectangle to the matching side of `outer`."""
        return {
            "top": self.top - outer.top,
            "left": self.left - outer.left,
            "bottom": outer.bottom - self.bottom,
            "right": outer.right - self.right,
        }
