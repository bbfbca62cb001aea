"""On-demand export of single components to explicit destinations."""

import asyncio
import logging
import posixpath
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from layer_assets.config import DEFAULT_PPI, FALLBACK_BASE_DIRECTORY, GeneratorConfig
from layer_assets.core.contexts import DocumentContext, update_path_info
from layer_assets.core.limiter import ConcurrencyLimiter
from layer_assets.core.renderer import AssetRenderer
from layer_assets.dom.document import Document
from layer_assets.exceptions import ExportError
from layer_assets.models.component import Component
from layer_assets.protocols import HostProtocol, WriterProtocol
from layer_assets.writer import AssetWriter

# Request keys that are not part of the component itself.
_REQUEST_KEYS = ("documentId", "layerId", "compId", "path", "fileName")


@dataclass(frozen=True)
class ExportRequest:
    """One component to render and where to save it.

    `path` is an absolute destination; `file_name` is relative to the asset
    directory of the document. Without `document_id` the active document is
    used, without `layer_id` the whole document (in layer comp `comp_id`).
    """

    component: Component
    document_id: int | None = None
    layer_id: int | None = None
    comp_id: int | None = None
    path: str | None = None
    file_name: str | None = None

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "ExportRequest":
        """Build a request from its JSON form: the raw component plus the request keys."""
        component_raw = {key: value for key, value in raw.items() if key not in _REQUEST_KEYS}
        component_raw.setdefault("name", raw.get("fileName") or posixpath.basename(raw.get("path") or ""))
        return cls(
            component=Component.from_dict(component_raw),
            document_id=raw.get("documentId"),
            layer_id=raw.get("layerId"),
            comp_id=raw.get("compId"),
            path=raw.get("path"),
            file_name=raw.get("fileName"),
        )


def retarget(component: Component, relative_path: str) -> Component:
    """The component, writing to `relative_path` instead of its own file."""
    *folder, file = relative_path.split("/")
    extension = component.extension or posixpath.splitext(file)[1][1:].lower() or None
    return component.with_changes(file=file, folder=tuple(folder), extension=extension)


class AssetExporter:
    """Renders components on request, independent of the watched asset directories.

    Documents are fetched anew for every request. Renders share one
    ConcurrencyLimiter so that a batch of exports does not flood the host.
    """

    def __init__(
        self,
        host: HostProtocol,
        config: GeneratorConfig | None = None,
        *,
        limiter: ConcurrencyLimiter | None = None,
        writer_factory: Callable[[Path], WriterProtocol] = AssetWriter,
        fallback_directory: Path = FALLBACK_BASE_DIRECTORY,
    ) -> None:
        self.host = host
        self.config = config or GeneratorConfig()
        self.limiter = limiter or ConcurrencyLimiter(self.config.max_concurrent_updates)
        self.renderer = AssetRenderer(host, self.config)
        self.writer_factory = writer_factory
        self.fallback_directory = fallback_directory
        self.logger = logging.getLogger("exporter")
        self._writers: dict[Path, WriterProtocol] = {}

    async def get_document(self, document_id: int | None = None) -> Document:
        """Fetch a document, the active one if no id is given."""
        raw = await self.host.get_document_info(document_id)
        if not raw or not isinstance(raw.get("id"), int):
            which = "the active document" if document_id is None else f"document {document_id}"
            msg = f"No information received for {which}"
            raise ExportError(msg)
        return Document.from_raw(raw)

    def destination(self, document: Document, request: ExportRequest) -> tuple[Path, Component]:
        """Directory to write into and the component retargeted to its file there."""
        if request.path:
            path = Path(request.path)
            if not path.is_absolute():
                msg = f"Export path must be absolute: {request.path}"
                raise ExportError(msg)
            return path.parent, retarget(request.component, path.name)
        if request.file_name:
            context = DocumentContext(document_id=document.id)
            file = document.file or f"document-{document.id}"
            update_path_info(context, file, self.config, fallback_directory=self.fallback_directory)
            directory = context.asset_generation_dir or self.fallback_directory
            return directory, retarget(request.component, request.file_name)
        msg = "Can not save file without a path or fileName"
        raise ExportError(msg)

    def _writer(self, directory: Path) -> WriterProtocol:
        if directory not in self._writers:
            self._writers[directory] = self.writer_factory(directory)
        return self._writers[directory]

    async def generate_component(
        self, document: Document, request: ExportRequest, component: Component, writer: WriterProtocol
    ) -> None:
        """Render a component of a layer or of the whole document through the limiter.

        Raises:
            ExportError: When the requested layer does not exist.
            RenderError: When the host fails to render or save it.
        """
        mask_bounds = None
        if request.layer_id is not None:
            found = document.find_layer(request.layer_id)
            if found is None:
                msg = f"Layer with id {request.layer_id} not found."
                raise ExportError(msg)
            mask = found[0].mask
            if mask is not None and mask.is_enabled:
                mask_bounds = mask.bounds
        ppi = document.resolution or DEFAULT_PPI

        async def render() -> None:
            exact_bounds = await self.renderer.get_exact_bounds(document.id, request.layer_id, comp_id=request.comp_id)
            await self.renderer.render(
                document.id,
                request.layer_id,
                component,
                writer=writer,
                exact_bounds=exact_bounds,
                mask_bounds=mask_bounds,
                ppi=ppi,
                comp_id=request.comp_id,
            )

        await self.limiter.enqueue(render)

    async def export_component(self, request: ExportRequest) -> Path:
        """Render one component and save it. Returns the path of the new file.

        Raises:
            ExportError: For a missing destination, document or layer, and
                with "Error generating component: ..." when rendering failed.
        """
        document = await self.get_document(request.document_id)
        directory, component = self.destination(document, request)
        try:
            await self.generate_component(document, request, component, self._writer(directory))
        except ExportError:
            raise
        except Exception as e:
            msg = f"Error generating component: {e}"
            raise ExportError(msg) from e
        target = directory / str(component.relative_path)
        self.logger.info(f"Exported {component.name!r} to {target}")
        return target

    async def export_components(self, requests: Iterable[ExportRequest]) -> list[Path | BaseException]:
        """Export several components. A failing one does not stop the others."""
        return await asyncio.gather(*(self.export_component(request) for request in requests), return_exceptions=True)

    def close(self) -> None:
        for writer in self._writers.values():
            writer.close()
        self._writers = {}
