"""Tests for layer construction and the flat index primitives."""

import pytest

from layer_assets.dom.bounds import Bounds
from layer_assets.dom.layer import (
    Layer,
    LayerKind,
    add_layer_at_index,
    apply_layer_properties,
    create_layer,
    find_layer,
    find_layer_at_index,
    iter_layers,
    layer_size,
)
from layer_assets.exceptions import StructuralAmbiguityError


def _root(*raw_layers: dict) -> Layer:
    return create_layer({"id": -1, "layers": list(raw_layers)})


def _all_consistent(root: Layer) -> bool:
    for layer in iter_layers(root):
        if layer is root:
            continue
        found = find_layer(root, layer.id)
        if found is None or find_layer_at_index(root, found[1]) is not layer:
            return False
    return True


# Flat indices, bottom up: 0 layer 1, 1 end of 5, 2 end of 3, 3 layer 2, 4 group 3, 5 layer 4, 6 group 5.
NESTED = [
    {
        "id": 5,
        "index": 6,
        "type": "layerSection",
        "layers": [
            {"id": 4, "index": 5, "type": "layer"},
            {
                "id": 3,
                "index": 4,
                "type": "layerSection",
                "layers": [{"id": 2, "index": 3, "type": "textLayer"}],
            },
        ],
    },
    {"id": 1, "index": 0, "type": "layer"},
]


def test_create_orders_children_bottom_up() -> None:
    """Children are stored bottom to top whatever order the raw list has."""
    root = _root(*NESTED)

    assert [child.id for child in root.layers or []] == [1, 5]
    assert str(root) == "-1:- [1:-, 5:- [3:- [2:-], 4:-]]"


def test_group_size_counts_end_marker() -> None:
    """A group takes two slots plus those of its children."""
    root = _root(*NESTED)

    assert layer_size(root) == 9
    assert layer_size(find_layer(root, 3)[0]) == 3  # type: ignore[index]


def test_find_layer_returns_flat_index() -> None:
    """Flat indices count end markers of groups."""
    root = _root(*NESTED)

    assert {layer_id: find_layer(root, layer_id)[1] for layer_id in (1, 2, 3, 4, 5)} == {  # type: ignore[index]
        1: 0,
        2: 3,
        3: 4,
        4: 5,
        5: 6,
    }


def test_find_layer_at_index_end_markers_are_empty() -> None:
    """End markers of groups have no layer."""
    root = _root(*NESTED)

    assert find_layer_at_index(root, 1) is None
    assert find_layer_at_index(root, 99) is None
    assert find_layer_at_index(root, 3).id == 2  # type: ignore[union-attr]


def test_unknown_type_is_ambiguous() -> None:
    """Layers of unknown kind cannot be modelled."""
    with pytest.raises(StructuralAmbiguityError, match="Unknown layer type"):
        _root({"id": 1, "index": 0, "type": "mysteryLayer"})


def test_add_layer_at_top_and_bottom() -> None:
    """Indices at the ends of a group insert there."""
    root = _root(*NESTED)

    add_layer_at_index(root, Layer(id=10, kind=LayerKind.BASIC), 0)
    add_layer_at_index(root, Layer(id=11, kind=LayerKind.BASIC), 8)

    assert [child.id for child in root.layers or []] == [10, 1, 5, 11]
    assert _all_consistent(root)


def test_add_layer_descends_into_group() -> None:
    """An index strictly inside a group's slots inserts into that group."""
    root = _root(*NESTED)

    add_layer_at_index(root, Layer(id=10, kind=LayerKind.BASIC), 5)

    group = find_layer(root, 5)[0]  # type: ignore[index]
    assert [child.id for child in group.layers or []] == [3, 10, 4]
    assert find_layer(root, 10)[1] == 5  # type: ignore[index]
    assert _all_consistent(root)


def test_add_group_into_nested_group() -> None:
    """Multi-slot layers land at the index of their top slot."""
    root = _root(*NESTED)
    new_group = create_layer(
        {"id": 20, "type": "layerSection", "layers": [{"id": 21, "index": 1, "type": "layer"}]}
    )

    add_layer_at_index(root, new_group, 8)

    assert find_layer(root, 20)[1] == 8  # type: ignore[index]
    assert find_layer(root, 20)[0].parent.id == 5  # type: ignore[index, union-attr]
    assert _all_consistent(root)


def test_add_layer_at_invalid_index() -> None:
    """Indices past the end are ambiguous."""
    root = _root(*NESTED)

    with pytest.raises(StructuralAmbiguityError, match="Invalid insertion index"):
        add_layer_at_index(root, Layer(id=10, kind=LayerKind.BASIC), 42)


def test_apply_layer_properties_reports_changes() -> None:
    """Changed properties are reported with their previous values."""
    layer = create_layer(
        {"id": 1, "type": "layer", "name": "a", "bounds": {"top": 0, "left": 0, "bottom": 5, "right": 5}}
    )

    changes = apply_layer_properties(layer, {"id": 1, "name": "b", "bounds": {"right": 9}, "visible": False})

    assert changes == {
        "name": {"previous": "a"},
        "bounds": {"right": {"previous": 5}},
        "visible": {"previous": None},
    }
    assert layer.bounds == Bounds(0, 0, 5, 9)


def test_apply_layer_properties_rejects_unknown_change() -> None:
    """A "changed" marker cannot be applied incrementally."""
    layer = Layer(id=1, kind=LayerKind.BASIC)

    with pytest.raises(StructuralAmbiguityError, match="Unknown change"):
        apply_layer_properties(layer, {"id": 1, "changed": True})


def test_mask_removal() -> None:
    """Removing a mask clears it and reports the old one."""
    layer = create_layer(
        {"id": 1, "type": "layer", "mask": {"bounds": {"top": 1, "left": 1, "bottom": 2, "right": 2}}}
    )

    changes = apply_layer_properties(layer, {"id": 1, "mask": {"removed": True}})

    assert layer.mask is None
    assert "mask" in changes
