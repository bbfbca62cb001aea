"""Layer masks."""

from dataclasses import dataclass
from typing import Any

from layer_assets.dom.bounds import Bounds
from layer_assets.dom.raw import compact


@dataclass
class Mask:
    bounds: Bounds | None = None
    enabled: bool | None = None
    extend_with_white: bool | None = None

    @property
    def is_enabled(self) -> bool:
        return self.enabled is not False

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "Mask":
        return cls(
            bounds=Bounds.from_raw(raw["bounds"]) if "bounds" in raw else None,
            enabled=raw.get("enabled"),
            extend_with_white=raw.get("extendWithWhite"),
        )

    def to_raw(self) -> dict[str, Any]:
        return compact(
            {
                "bounds": self.bounds.to_raw() if self.bounds is not None else None,
                "enabled": self.enabled,
                "extendWithWhite": self.extend_with_white,
            }
        )

    def apply_change(self, raw: dict[str, Any]) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        if "bounds" in raw:
            if self.bounds is None:
                self.bounds = Bounds.from_raw(raw["bounds"])
                changes["bounds"] = {"previous": None}
            else:
                bounds_changes = self.bounds.apply_change(raw["bounds"])
                if bounds_changes:
                    changes["bounds"] = bounds_changes
        if "enabled" in raw and raw["enabled"] != self.enabled:
            changes["enabled"] = {"previous": self.enabled}
            self.enabled = raw["enabled"]
        if "extendWithWhite" in raw and raw["extendWithWhite"] != self.extend_with_white:
            changes["extendWithWhite"] = {"previous": self.extend_with_white}
            self.extend_with_white = raw["extendWithWhite"]
        return changes
