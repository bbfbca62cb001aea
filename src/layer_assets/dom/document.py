"""Model of an open document."""

import math
import ntpath
import posixpath
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from layer_assets.config import DEFAULT_PPI
from layer_assets.dom.bounds import Bounds
from layer_assets.dom.layer import (
    ROOT_LAYER_ID,
    Layer,
    LayerKind,
    children_to_raw,
    create_layer,
    find_layer,
    find_layer_at_index,
    iter_layers,
)
from layer_assets.dom.raw import compact
from layer_assets.dom.tree import ResyncRequired, TreeUpdate, apply_tree_change
from layer_assets.exceptions import StaleChangeError, StructuralAmbiguityError

# Document properties that are stored as-is.
_OPAQUE_PROPERTIES: dict[str, str] = {
    "version": "version",
    "globalLight": "global_light",
    "generatorSettings": "generator_settings",
    "comps": "comps",
    "placed": "placed",
}

_IGNORED_PROPERTIES = ("profile", "mode", "depth")


def parse_resolution(raw: Any) -> float:
    """Read a resolution in pixels per inch, falling back to 72."""
    try:
        ppi = float(raw)
    except (TypeError, ValueError):
        ppi = math.nan
    if math.isnan(ppi) or ppi <= 0:
        logger.warning("Unusable document resolution {!r}, assuming {} ppi", raw, DEFAULT_PPI)
        return DEFAULT_PPI
    return ppi


@dataclass
class DocumentUpdate(TreeUpdate):
    """Successful document change.

    `document` holds {property: {"previous": value}} for changed document properties.
    """

    document: dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class Document:
    """A document and its layer tree.

    (time_stamp, count) orders the changes: a change that does not strictly
    exceed them is stale.
    """

    id: int
    root: Layer
    count: int | None = None
    time_stamp: float | None = None
    version: str | None = None
    file: str | None = None
    bounds: Bounds | None = None
    resolution: float | None = None
    global_light: Any = None
    generator_settings: Any = None
    comps: Any = None
    placed: Any = None
    selection: dict[int, Layer] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "Document":
        """Build a document from a full raw description.

        Raises:
            StructuralAmbiguityError: When the layer tree cannot be built.
        """
        document = cls(id=raw["id"], root=create_layer({"id": ROOT_LAYER_ID, "layers": raw.get("layers", [])}))
        for key, value in raw.items():
            if key in ("id", "layers", "selection") or key in _IGNORED_PROPERTIES:
                continue
            if key == "count":
                document.count = value
            elif key == "timeStamp":
                document.time_stamp = value
            elif key == "file":
                document.file = value
            elif key == "bounds":
                document.bounds = Bounds.from_raw(value)
            elif key == "resolution":
                document.resolution = parse_resolution(value)
            elif key in _OPAQUE_PROPERTIES:
                setattr(document, _OPAQUE_PROPERTIES[key], value)
            else:
                logger.warning("Unhandled property in raw document {}: {}={!r}", document.id, key, value)
        if "selection" in raw:
            document.set_selection(raw["selection"])
        return document

    @property
    def name(self) -> str | None:
        """File name with extension."""
        if self.file is None:
            return None
        return ntpath.basename(self.file) if "\\" in self.file else posixpath.basename(self.file)

    @property
    def extension(self) -> str | None:
        if self.name is None:
            return None
        return posixpath.splitext(self.name)[1]

    @property
    def directory(self) -> str | None:
        if self.file is None or not any(sep in self.file for sep in "/\\"):
            return None
        return ntpath.dirname(self.file) if "\\" in self.file else posixpath.dirname(self.file)

    @property
    def saved(self) -> bool:
        return self.directory is not None

    @property
    def ppi(self) -> float:
        return self.resolution if self.resolution is not None else DEFAULT_PPI

    def set_selection(self, indices: list[int]) -> None:
        selection: dict[int, Layer] = {}
        for index in indices:
            layer = find_layer_at_index(self.root, index)
            if layer is None:
                msg = f"Unable to set selection: no layer found at index {index}"
                raise StructuralAmbiguityError(msg)
            selection[layer.id] = layer
        self.selection = selection

    def find_layer(self, layer_id: int) -> tuple[Layer, int] | None:
        return find_layer(self.root, layer_id)

    def find_layer_at_index(self, index: int) -> Layer | None:
        return find_layer_at_index(self.root, index)

    def iter_layers(self) -> Iterator[Layer]:
        """All layers, parents before children, without the root."""
        for child in self.root.layers or []:
            yield from iter_layers(child)

    def has_adjustment_layer(self) -> bool:
        return any(layer.kind is LayerKind.ADJUSTMENT for layer in self.iter_layers())

    def is_stale(self, raw: dict[str, Any]) -> bool:
        time_stamp = raw.get("timeStamp")
        if time_stamp is None or self.time_stamp is None:
            return False
        if time_stamp != self.time_stamp:
            return time_stamp < self.time_stamp
        count = raw.get("count")
        return count is not None and self.count is not None and count <= self.count

    def apply_change(self, raw: dict[str, Any]) -> DocumentUpdate | ResyncRequired:
        """Apply a change event to this document.

        Returns ResyncRequired when the change cannot be applied safely; the
        document must then be discarded and fetched again.

        Raises:
            StaleChangeError: When the change is not newer than the document.
        """
        if raw.get("id") != self.id:
            msg = f"Document ID mismatch: this {self.id}; change {raw.get('id')}"
            raise ValueError(msg)
        if self.is_stale(raw):
            msg = (
                f"Stale change to document {self.id}: ({raw.get('timeStamp')}, {raw.get('count')}) "
                f"is not newer than ({self.time_stamp}, {self.count})"
            )
            raise StaleChangeError(msg)
        if raw.get("changed"):
            return ResyncRequired("Unknown change to document")

        result = DocumentUpdate()
        if "layers" in raw:
            tree_result = apply_tree_change(self.root, raw["layers"])
            if isinstance(tree_result, ResyncRequired):
                return tree_result
            result.layers = tree_result.layers
            self.selection = {
                layer_id: layer
                for layer_id, layer in self.selection.items()
                if find_layer(self.root, layer_id) is not None
            }

        try:
            self._apply_properties(raw, result.document)
        except (StructuralAmbiguityError, KeyError, TypeError, ValueError, AttributeError) as e:
            return ResyncRequired(f"Unable to apply document change: {e}")

        for key, attribute in (("count", "count"), ("timeStamp", "time_stamp"), ("version", "version")):
            if key in raw:
                setattr(self, attribute, raw[key])
        return result

    def _apply_properties(self, raw: dict[str, Any], changes: dict[str, Any]) -> None:
        if "file" in raw and raw["file"] != self.file:
            changes["file"] = {"previous": self.file}
            self.file = raw["file"]
        if "bounds" in raw:
            if self.bounds is None:
                self.bounds = Bounds.from_raw(raw["bounds"])
                changes["bounds"] = {"previous": None}
            else:
                bounds_changes = self.bounds.apply_change(raw["bounds"])
                if bounds_changes:
                    changes["bounds"] = bounds_changes
        if "resolution" in raw:
            resolution = parse_resolution(raw["resolution"])
            if resolution != self.resolution:
                changes["resolution"] = {"previous": self.resolution}
                self.resolution = resolution
        for key in ("globalLight", "generatorSettings", "comps", "placed"):
            if key in raw:
                attribute = _OPAQUE_PROPERTIES[key]
                changes[key] = {"previous": getattr(self, attribute)}
                setattr(self, attribute, raw[key])
        if "selection" in raw:
            previous = sorted(self.selection)
            self.set_selection(raw["selection"])
            if sorted(self.selection) != previous:
                changes["selection"] = {"previous": previous}

    def to_raw(self) -> dict[str, Any]:
        """Raw description of the document, with flat indices recomputed from the tree."""
        raw = compact(
            {
                "id": self.id,
                "count": self.count,
                "timeStamp": self.time_stamp,
                "version": self.version,
                "file": self.file,
                "bounds": self.bounds.to_raw() if self.bounds is not None else None,
                "resolution": self.resolution,
                "globalLight": self.global_light,
                "generatorSettings": self.generator_settings,
                "comps": self.comps,
                "placed": self.placed,
            }
        )
        raw["layers"] = children_to_raw(self.root)
        if self.selection:
            located = [find_layer(self.root, layer_id) for layer_id in self.selection]
            raw["selection"] = sorted(found[1] for found in located if found is not None)
        return raw

    def __str__(self) -> str:
        return f"Document {self.id} [" + ", ".join(str(child) for child in self.root.layers or []) + "]"
