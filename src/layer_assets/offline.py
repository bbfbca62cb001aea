"""A host backed by recorded documents, for replaying change logs without the editor."""

import json
import logging
from pathlib import Path
from typing import Any

from layer_assets.dom.bounds import Bounds
from layer_assets.dom.document import Document
from layer_assets.dom.layer import iter_layers
from layer_assets.dom.tree import ResyncRequired
from layer_assets.exceptions import StaleChangeError


class OfflineHost:
    """Serve documents from memory and keep them updated with the replayed events.

    Rendering produces no pixels: saved "images" are JSON files describing the
    render request, and SVGs are empty rectangles of the layer's size.
    """

    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self.logger = logging.getLogger("offline-host")
        self.documents: dict[int, Document] = {}
        self.active_document_id: int | None = None
        for raw in documents:
            self.add_document(raw)

    def add_document(self, raw: dict[str, Any]) -> None:
        document = Document.from_raw(raw)
        self.documents[document.id] = document
        self.active_document_id = document.id

    def apply_event(self, raw: dict[str, Any]) -> None:
        """Update the host's own copy of a document with a change event."""
        document_id = raw.get("id")
        if not isinstance(document_id, int):
            self.logger.warning(f"Event without a document id: {repr(raw)[:64]}")
            return
        if raw.get("closed"):
            self.documents.pop(document_id, None)
            return
        document = self.documents.get(document_id)
        if document is None:
            self.logger.warning(f"Event for unknown document {document_id}")
            return
        if raw.get("active"):
            self.active_document_id = document.id
        try:
            result = document.apply_change(raw)
        except StaleChangeError as e:
            self.logger.debug(str(e))
            return
        if isinstance(result, ResyncRequired):
            self.logger.warning(f"Host copy of document {document_id} is out of date: {result.reason}")

    async def get_document_info(
        self, document_id: int | None = None, flags: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if document_id is None:
            document_id = self.active_document_id
        document = self.documents.get(document_id) if document_id is not None else None
        return document.to_raw() if document is not None else {}

    def _layer_bounds(self, document_id: int, layer_id: int) -> Bounds:
        document = self.documents.get(document_id)
        found = document.find_layer(layer_id) if document is not None else None
        if found is None:
            msg = f"No layer {layer_id} in document {document_id}"
            raise RuntimeError(msg)
        layer = found[0]
        if layer.layers is not None:
            bounds = Bounds()
            for descendant in iter_layers(layer):
                if descendant is not layer and descendant.bounds is not None:
                    bounds = bounds.union(descendant.bounds)
            return bounds
        return layer.bounds_with_fx or layer.bounds or Bounds()

    async def get_pixmap(self, document_id: int, layer_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        bounds = self._layer_bounds(document_id, layer_id)
        reply: dict[str, Any] = {"bounds": bounds.to_raw()}
        if not settings.get("boundsOnly"):
            reply["pixmap"] = {"documentId": document_id, "layerId": layer_id, "settings": settings}
        return reply

    async def get_document_pixmap(self, document_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        document = self.documents.get(document_id)
        if document is None:
            msg = f"No document {document_id}"
            raise RuntimeError(msg)
        bounds = document.bounds or Bounds()
        reply: dict[str, Any] = {"bounds": bounds.to_raw()}
        if not settings.get("boundsOnly"):
            reply["pixmap"] = {"documentId": document_id, "compId": settings.get("compId"), "settings": settings}
        return reply

    async def get_svg(self, document_id: int, layer_id: int, scale: float) -> str:
        bounds = self._layer_bounds(document_id, layer_id)
        width = round(bounds.width * scale)
        height = round(bounds.height * scale)
        return (
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">'
            f'<rect width="{width}" height="{height}" fill="none"/></svg>\n'
        )

    async def save_pixmap(self, pixmap: Any, path: str, settings: dict[str, Any]) -> None:
        Path(path).write_text(json.dumps({"pixmap": pixmap, "settings": settings}, indent=2), encoding="utf-8")

    async def get_open_document_ids(self) -> list[int]:
        return list(self.documents)
