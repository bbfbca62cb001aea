"""Document-wide component bookkeeping: default templates and duplicate paths."""

from dataclasses import dataclass, field
from pathlib import PurePosixPath

from layer_assets.models.component import AssetSpec, Component

ONE_DEFAULTS_LAYER_ERROR = "At most one defaults layer is allowed per document."

# Paths are owned by a layer id or by ("comp", comp id).
PathOwner = int | tuple[str, int]


def derive_component(default: Component, basic: Component) -> Component:
    """Apply a default template to a file component.

    Folders are concatenated, the suffix goes in front of the extension and
    size, canvas and quality settings are only taken from the template when the
    file component has none of its own.
    """
    if basic.file is None:
        msg = f"Cannot derive from a component without a file: {basic.name!r}"
        raise ValueError(msg)

    changes: dict[str, object] = {"folder": default.folder + basic.folder}
    if default.suffix:
        path = PurePosixPath(basic.file)
        changes["file"] = f"{path.stem}{default.suffix}{path.suffix}"

    if basic.scale is None and not basic.has_size:
        changes.update(
            scale=default.scale,
            width=default.width,
            height=default.height,
            width_unit=default.width_unit,
            height_unit=default.height_unit,
        )
    if not basic.has_canvas:
        changes.update(
            canvas_width=default.canvas_width,
            canvas_height=default.canvas_height,
            canvas_offset_x=default.canvas_offset_x,
            canvas_offset_y=default.canvas_offset_y,
        )
    if basic.quality is None:
        changes["quality"] = default.quality

    return basic.with_changes(**changes, written_file=None)


@dataclass
class ComponentRegistry:
    """Tracks the components of all layers in one document.

    Knows which layer holds the default templates and which layer or layer
    comp first claimed each output path.
    """

    defaults_layer_id: int | None = None
    defaults: list[Component] = field(default_factory=list)
    _paths: dict[str, PathOwner] = field(default_factory=dict)
    _owned_paths: dict[PathOwner, set[str]] = field(default_factory=dict)

    def set_defaults(self, layer_id: int, specs: list[AssetSpec]) -> list[AssetSpec]:
        """Register a defaults layer. Returns specs, with an error if another layer has defaults."""
        if self.defaults_layer_id is not None and self.defaults_layer_id != layer_id:
            return [spec.with_errors(ONE_DEFAULTS_LAYER_ERROR) for spec in specs]
        self.defaults_layer_id = layer_id
        self.defaults = [spec.component for spec in specs if spec.is_valid]
        return specs

    def clear_defaults(self, layer_id: int) -> bool:
        """Forget the defaults of a layer. Returns True if it held them."""
        if self.defaults_layer_id != layer_id:
            return False
        self.defaults_layer_id = None
        self.defaults = []
        return True

    def expand(self, specs: list[AssetSpec]) -> list[AssetSpec]:
        """Replace every valid file spec by one derived spec per default template.

        Without templates, specs are returned unchanged.
        """
        if not self.defaults:
            return specs
        result: list[AssetSpec] = []
        for spec in specs:
            if spec.component.file is None or not spec.is_valid:
                result.append(spec)
                continue
            result.extend(AssetSpec(component=derive_component(default, spec.component)) for default in self.defaults)
        return result

    def claim_paths(self, owner: PathOwner, specs: list[AssetSpec]) -> list[AssetSpec]:
        """Claim output paths for a layer or layer comp.

        Specs whose path is already owned by someone else get a "Duplicate path" error.
        """
        self.release_paths(owner)
        claimed: set[str] = set()
        result: list[AssetSpec] = []
        for spec in specs:
            path = spec.component.relative_path
            if path is not None and spec.is_valid:
                current = self._paths.get(path)
                if (current is not None and current != owner) or path in claimed:
                    spec = spec.with_errors(f"Duplicate path: {path}")
                else:
                    self._paths[path] = owner
                    claimed.add(path)
            result.append(spec)
        self._owned_paths[owner] = claimed
        return result

    def release_paths(self, owner: PathOwner) -> None:
        for path in self._owned_paths.pop(owner, set()):
            if self._paths.get(path) == owner:
                del self._paths[path]
