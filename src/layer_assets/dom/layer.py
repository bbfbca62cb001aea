"""Layers of a document.

All layer kinds share one record type, `Layer`. What differs between kinds is
the set of payload keys they carry and whether they have children.
"""

import copy
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger

from layer_assets.dom.bounds import Bounds
from layer_assets.dom.mask import Mask
from layer_assets.dom.raw import compact
from layer_assets.exceptions import StructuralAmbiguityError

ROOT_LAYER_ID = -1


class LayerKind(StrEnum):
    """Layer kinds, valued by the host's "type" strings."""

    BASIC = "layer"
    SHAPE = "shapeLayer"
    TEXT = "textLayer"
    ADJUSTMENT = "adjustmentLayer"
    SMART_OBJECT = "smartObjectLayer"
    BACKGROUND = "backgroundLayer"
    GROUP = "layerSection"


PAYLOAD_KEYS: dict[LayerKind, tuple[str, ...]] = {
    LayerKind.BASIC: ("smartObject",),
    LayerKind.SHAPE: ("fill", "path"),
    LayerKind.TEXT: ("text",),
    LayerKind.ADJUSTMENT: ("adjustment",),
    LayerKind.SMART_OBJECT: ("smartObject", "timeContent"),
    LayerKind.BACKGROUND: (),
    LayerKind.GROUP: (),
}

# Kinds whose change events may carry a "pixels" flag.
_PIXEL_KINDS = (LayerKind.BASIC, LayerKind.BACKGROUND)

# Keys describing the position of a layer or the kind of change, not its properties.
_STRUCTURAL_KEYS = ("id", "index", "type", "added", "removed", "layers")

_PLAIN_PROPERTIES: dict[str, str] = {
    "name": "name",
    "visible": "visible",
    "clipped": "clipped",
    "generatorSettings": "generator_settings",
    "blendOptions": "blend_options",
    "protection": "protection",
}


@dataclass(eq=False)
class Layer:
    """A layer or layer group.

    Groups keep their children in `layers`, ordered bottom to top. The flat
    index of a layer is derived from its position and never stored.
    """

    id: int
    kind: LayerKind
    name: str | None = None
    bounds: Bounds | None = None
    bounds_with_fx: Bounds | None = None
    visible: bool | None = None
    clipped: bool | None = None
    mask: Mask | None = None
    layer_effects: dict[str, Any] | None = None
    generator_settings: Any = None
    blend_options: Any = None
    protection: Any = None
    payload: dict[str, Any] = field(default_factory=dict)
    layers: list["Layer"] | None = None
    parent: "Layer | None" = field(default=None, repr=False)

    @property
    def is_group(self) -> bool:
        return self.kind is LayerKind.GROUP

    def __str__(self) -> str:
        text = f"{self.id}:{self.name or '-'}"
        if self.layers is not None:
            text += " [" + ", ".join(str(child) for child in self.layers) + "]"
        return text


def layer_kind(raw: dict[str, Any]) -> LayerKind:
    try:
        return LayerKind(raw["type"])
    except (KeyError, ValueError):
        msg = f"Unknown layer type {raw.get('type')!r} for layer {raw.get('id')!r}"
        raise StructuralAmbiguityError(msg) from None


def create_layer(raw: dict[str, Any], parent: Layer | None = None) -> Layer:
    """Build a layer, and for groups all of its descendants, from its raw description."""
    kind = LayerKind.GROUP if parent is None and "type" not in raw else layer_kind(raw)
    layer = Layer(id=raw["id"], kind=kind, parent=parent)

    for key, value in raw.items():
        if key in _STRUCTURAL_KEYS or key == "pixels":
            continue
        if key in _PLAIN_PROPERTIES:
            setattr(layer, _PLAIN_PROPERTIES[key], value)
        elif key == "bounds":
            layer.bounds = Bounds.from_raw(value)
        elif key == "boundsWithFX":
            layer.bounds_with_fx = Bounds.from_raw(value)
        elif key == "mask":
            layer.mask = Mask.from_raw(value)
        elif key == "layerEffects":
            layer.layer_effects = copy.deepcopy(value)
        elif key in PAYLOAD_KEYS[kind]:
            layer.payload[key] = value
        else:
            logger.warning("Unhandled property in raw layer {}: {}={!r}", layer.id, key, value)

    if kind is LayerKind.GROUP:
        layer.layers = []
        # Children are added bottom up; each one takes the slots right above the previous one.
        target_index = 0
        for raw_child in sorted(raw.get("layers", []), key=lambda child: child.get("index", 0)):
            child = create_layer(raw_child, layer)
            target_index += layer_size(child) - 1
            add_layer_at_index(layer, child, target_index)
            target_index += 1
    return layer


def layer_size(layer: Layer) -> int:
    """Number of flat index slots a layer occupies.

    A group takes one slot for itself and one for its end marker.
    """
    if layer.layers is None:
        return 1
    return 2 + sum(layer_size(child) for child in layer.layers)


def iter_layers(layer: Layer) -> Iterator[Layer]:
    """Yield the layer and its descendants, parents before children."""
    yield layer
    for child in layer.layers or []:
        yield from iter_layers(child)


def add_layer_at_index(group: Layer, child: Layer, target_index: int) -> None:
    """Insert `child` so that its flat index within `group` becomes `target_index`.

    Descends into a child group only when the target falls strictly inside the
    slots that group will occupy once the new layer is in it.
    """
    if group.layers is None:
        msg = f"Cannot add layers to non-group layer {group.id}"
        raise StructuralAmbiguityError(msg)

    child_size = layer_size(child)
    current_index = child_size - 1
    next_index = current_index
    position = 0
    while position < len(group.layers):
        if target_index <= current_index:
            break
        sibling = group.layers[position]
        next_index += layer_size(sibling)
        if target_index < next_index and sibling.is_group:
            start = current_index - (child_size - 1)
            add_layer_at_index(sibling, child, target_index - (start + 1))
            return
        current_index = next_index
        position += 1

    if current_index != target_index:
        msg = f"Invalid insertion index {target_index} for layer {child.id} in group {group.id}"
        raise StructuralAmbiguityError(msg)
    child.parent = group
    group.layers.insert(position, child)


def find_layer(group: Layer, layer_id: int) -> tuple[Layer, int] | None:
    """Return the layer with the given id and its flat index within `group`."""
    current_index = 0
    for child in group.layers or []:
        if child.is_group:
            current_index += 1
            found = find_layer(child, layer_id)
            if found is not None:
                return found[0], found[1] + current_index
            current_index += layer_size(child) - 2
        if child.id == layer_id:
            return child, current_index
        current_index += 1
    return None


def find_layer_at_index(group: Layer, index: int) -> Layer | None:
    """Return the layer whose flat index within `group` is `index`.

    End markers of groups have no layer.
    """
    current_index = 0
    for child in group.layers or []:
        size = layer_size(child)
        if index < current_index + size:
            if index == current_index + size - 1:
                return child
            if index == current_index:
                return None
            return find_layer_at_index(child, index - current_index - 1)
        current_index += size
    return None


def detach_layer(layer: Layer) -> None:
    parent = layer.parent
    if parent is None or parent.layers is None:
        return
    for position, child in enumerate(parent.layers):
        if child is layer:
            del parent.layers[position]
            layer.parent = None
            return
    msg = f"Unable to detach layer {layer.id} from its parent {parent.id}"
    raise StructuralAmbiguityError(msg)


def _replace_property(layer: Layer, attribute: str, value: Any) -> dict[str, Any] | None:
    previous = getattr(layer, attribute)
    setattr(layer, attribute, value)
    if previous == value:
        return None
    return {"previous": previous}


def _update_mask(layer: Layer, raw: dict[str, Any]) -> dict[str, Any] | None:
    if raw.get("removed"):
        previous = layer.mask
        layer.mask = None
        return {"previous": previous}
    if layer.mask is None:
        layer.mask = Mask.from_raw(raw)
        return {"previous": None}
    return layer.mask.apply_change(raw) or None


def _update_bounds(current: Bounds | None, raw: dict[str, Any]) -> tuple[Bounds, dict[str, Any] | None]:
    if current is None:
        return Bounds.from_raw(raw), {"previous": None}
    return current, current.apply_change(raw) or None


def apply_layer_properties(layer: Layer, raw: dict[str, Any]) -> dict[str, Any]:
    """Apply the property part of a raw layer change.

    Returns {property: change} for every property that changed. Structural
    keys (index, added, removed, layers) are left to the tree.

    Raises:
        StructuralAmbiguityError: For ids that do not match and for "changed" markers.
    """
    if raw.get("id") != layer.id:
        msg = f"Layer ID mismatch: this {layer.id}; change {raw.get('id')}"
        raise StructuralAmbiguityError(msg)
    if "changed" in raw:
        msg = f"Unknown change to layer {layer.id}"
        raise StructuralAmbiguityError(msg)

    changes: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _STRUCTURAL_KEYS:
            continue
        change: Any = None
        if key in _PLAIN_PROPERTIES:
            change = _replace_property(layer, _PLAIN_PROPERTIES[key], value)
        elif key == "bounds":
            layer.bounds, change = _update_bounds(layer.bounds, value)
        elif key == "boundsWithFX":
            layer.bounds_with_fx, change = _update_bounds(layer.bounds_with_fx, value)
        elif key == "mask":
            change = _update_mask(layer, value)
        elif key == "layerEffects":
            previous = copy.deepcopy(layer.layer_effects)
            layer.layer_effects = {**(layer.layer_effects or {}), **value}
            if layer.layer_effects != previous:
                change = {"previous": previous}
        elif key == "metaDataOnly":
            change = bool(value)
        elif key == "pixels" and layer.kind in _PIXEL_KINDS:
            change = bool(value)
        elif key in PAYLOAD_KEYS[layer.kind]:
            previous = layer.payload.get(key)
            layer.payload[key] = value
            change = {"previous": previous}
        else:
            logger.warning("Unhandled property in raw change to layer {}: {}={!r}", layer.id, key, value)
        if change is not None:
            changes[key] = change
    return changes


def layer_to_raw(layer: Layer, index: int) -> dict[str, Any]:
    """Raw description of a layer whose flat index is `index`."""
    raw = compact(
        {
            "id": layer.id,
            "type": layer.kind.value,
            "index": index,
            "name": layer.name,
            "bounds": layer.bounds.to_raw() if layer.bounds is not None else None,
            "boundsWithFX": layer.bounds_with_fx.to_raw() if layer.bounds_with_fx is not None else None,
            "visible": layer.visible,
            "clipped": layer.clipped,
            "mask": layer.mask.to_raw() if layer.mask is not None else None,
            "layerEffects": copy.deepcopy(layer.layer_effects),
            "generatorSettings": layer.generator_settings,
            "blendOptions": layer.blend_options,
            "protection": layer.protection,
        }
    )
    raw.update(layer.payload)
    if layer.layers is not None:
        raw["layers"] = children_to_raw(layer, offset=index - layer_size(layer) + 2)
    return raw


def children_to_raw(group: Layer, *, offset: int = 0) -> list[dict[str, Any]]:
    """Raw descriptions of the children of a group, top first.

    `offset` is the flat index of the group's lowest child slot.
    """
    result: list[dict[str, Any]] = []
    current_index = offset
    for child in group.layers or []:
        current_index += layer_size(child) - 1
        result.append(layer_to_raw(child, current_index))
        current_index += 1
    result.reverse()
    return result
