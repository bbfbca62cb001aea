"""Export components parsed from layer names."""

from dataclasses import dataclass, field, fields, replace
from typing import Any

# Dataclass field name -> key used in raw (host/JSON) dictionaries.
_RAW_KEYS: dict[str, str] = {
    "width_unit": "widthUnit",
    "height_unit": "heightUnit",
    "canvas_width": "canvasWidth",
    "canvas_height": "canvasHeight",
    "canvas_offset_x": "canvasOffsetX",
    "canvas_offset_y": "canvasOffsetY",
}


@dataclass(frozen=True)
class Component:
    """One export target parsed from a layer name.

    A component without `file` and without `default` is a plain-name fallback.
    """

    name: str
    file: str | None = None
    extension: str | None = None
    quality: str | int | None = None
    scale: float | None = None
    width: float | None = None
    height: float | None = None
    width_unit: str | None = None
    height_unit: str | None = None
    folder: tuple[str, ...] = ()
    suffix: str | None = None
    canvas_width: int | None = None
    canvas_height: int | None = None
    canvas_offset_x: int | None = None
    canvas_offset_y: int | None = None
    default: bool = False
    # File name as written in the layer, before invalid characters were replaced.
    written_file: str | None = field(default=None, compare=False, repr=False)

    @property
    def has_size(self) -> bool:
        return self.width is not None or self.height is not None

    @property
    def has_canvas(self) -> bool:
        return self.canvas_width is not None or self.canvas_height is not None

    @property
    def relative_path(self) -> str | None:
        """Path of the generated file inside the asset directory."""
        if self.file is None:
            return None
        return "/".join([*self.folder, self.file])

    def to_dict(self) -> dict[str, Any]:
        """Return the raw form, omitting unset fields."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "written_file" or value is None or value == () or value is False:
                continue
            if f.name == "folder":
                value = list(value)
            result[_RAW_KEYS.get(f.name, f.name)] = value
        return result

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Component":
        """Build a component from its raw form. Unknown keys are rejected."""
        by_raw_key = {_RAW_KEYS.get(f.name, f.name): f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in raw.items():
            if key not in by_raw_key:
                msg = f"Unknown component key {key!r}"
                raise ValueError(msg)
            if key == "folder":
                value = tuple(value)
            kwargs[by_raw_key[key]] = value
        return cls(**kwargs)

    def with_changes(self, **changes: Any) -> "Component":
        return replace(self, **changes)


@dataclass(frozen=True)
class AssetSpec:
    """A normalized component and the validation errors found for it."""

    component: Component
    errors: tuple[str, ...] = field(default=())

    @property
    def is_valid(self) -> bool:
        return not self.errors and (self.component.file is not None or self.component.default)

    def with_errors(self, *errors: str) -> "AssetSpec":
        return replace(self, errors=self.errors + errors)
