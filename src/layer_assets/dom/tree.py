"""Application of partial layer-tree changes."""

from dataclasses import dataclass, field
from typing import Any, Literal

from layer_assets.dom.layer import (
    Layer,
    add_layer_at_index,
    apply_layer_properties,
    create_layer,
    detach_layer,
    find_layer,
    iter_layers,
    layer_size,
)
from layer_assets.exceptions import StructuralAmbiguityError

ChangeType = Literal["added", "removed", "moved", "unchanged"]


@dataclass
class LayerChange:
    """What happened to one layer during a tree change."""

    type: ChangeType
    layer: Layer
    changes: dict[str, Any] = field(default_factory=dict)
    previous_parent: Layer | None = None


@dataclass
class TreeUpdate:
    """Successful tree change: per-layer changes keyed by layer id."""

    layers: dict[int, LayerChange] = field(default_factory=dict)


@dataclass(frozen=True)
class ResyncRequired:
    """The change could not be applied; the document must be fetched again."""

    reason: str


def apply_tree_change(root: Layer, raw_layers: list[dict[str, Any]]) -> TreeUpdate | ResyncRequired:
    """Apply the "layers" part of a document change to the tree under `root`.

    The tree is mutated in place. On ResyncRequired it is left in an
    unspecified state and must be discarded. Malformed property values also
    end in ResyncRequired.
    """
    try:
        changed = _collect_changes(root, raw_layers)
        # Detach everything that moves or goes away before inserting anything, so
        # that insertion indices line up with the final tree.
        for change in changed.values():
            if change.type in ("moved", "removed"):
                change.previous_parent = change.layer.parent
                detach_layer(change.layer)
        _apply_group_change(root, raw_layers, changed, parent_index=None)
    except StructuralAmbiguityError as e:
        return ResyncRequired(str(e))
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        return ResyncRequired(f"Malformed layer change: {e!r}")
    return TreeUpdate(layers=changed)


def _collect_changes(root: Layer, raw_layers: list[dict[str, Any]]) -> dict[int, LayerChange]:
    changed: dict[int, LayerChange] = {}
    pending = list(raw_layers)
    while pending:
        raw = pending.pop()
        layer_id = raw.get("id")
        if not isinstance(layer_id, int):
            msg = f"Layer change without a valid id: {layer_id!r}"
            raise StructuralAmbiguityError(msg)
        if layer_id in changed:
            msg = f"Layer {layer_id} appears twice in one change"
            raise StructuralAmbiguityError(msg)

        found = find_layer(root, layer_id)
        if raw.get("added"):
            if found is not None:
                msg = f"Added layer {layer_id} already exists"
                raise StructuralAmbiguityError(msg)
            # Descendants of an added group are created along with it.
            for layer in iter_layers(create_layer(raw, root)):
                changed[layer.id] = LayerChange(type="added", layer=layer)
            continue
        if found is None:
            if raw.get("removed"):
                continue
            msg = f"Can't find changed layer {layer_id}"
            raise StructuralAmbiguityError(msg)

        layer = found[0]
        if raw.get("removed"):
            change_type: ChangeType = "removed"
        elif "index" in raw:
            change_type = "moved"
        else:
            change_type = "unchanged"
        changed[layer_id] = LayerChange(type=change_type, layer=layer)
        pending.extend(raw.get("layers", []))
    return changed


def _apply_group_change(
    group: Layer,
    raw_layers: list[dict[str, Any]],
    changed: dict[int, LayerChange],
    parent_index: int | None,
) -> None:
    """Apply property changes to the children of `group`, then place the moved ones.

    `parent_index` is the final flat index of `group`, None for the root.
    """
    raw_layers = sorted(raw_layers, key=lambda raw: raw.get("index", 0))
    placed: list[tuple[int, Layer]] = []

    for raw in raw_layers:
        change = changed.get(raw["id"])
        if change is None:
            continue
        child = change.layer
        if change.type != "added":
            nested = raw.get("layers")
            if nested:
                if child.layers is None:
                    msg = f"Change lists children of non-group layer {child.id}"
                    raise StructuralAmbiguityError(msg)
                if "index" not in raw and any("index" in sub or sub.get("added") for sub in nested):
                    msg = f"Children of group {child.id} moved without an index for the group"
                    raise StructuralAmbiguityError(msg)
                _apply_group_change(child, nested, changed, raw.get("index"))
            change.changes.update(apply_layer_properties(child, raw))
        if change.type in ("added", "moved"):
            if "index" not in raw:
                msg = f"Layer {child.id} was {change.type} without an index"
                raise StructuralAmbiguityError(msg)
            placed.append((raw["index"], child))

    # Children of this group start right above its end marker.
    final_size = layer_size(group) + sum(layer_size(child) for _, child in placed)
    offset = 0 if parent_index is None else parent_index - (final_size - 2)

    for index, child in placed:
        add_layer_at_index(group, child, index - offset)
