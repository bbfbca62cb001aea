"""Per-document and per-layer bookkeeping kept next to the layer tree."""

import json
import ntpath
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from layer_assets.config import DEFAULT_PPI, FALLBACK_BASE_DIRECTORY, PLUGIN_ID, GeneratorConfig
from layer_assets.core.error_log import ErrorLog
from layer_assets.dom.bounds import Bounds
from layer_assets.dom.document import Document
from layer_assets.dom.mask import Mask
from layer_assets.models.component import AssetSpec
from layer_assets.naming.components import ComponentRegistry
from layer_assets.protocols import WriterProtocol


@dataclass
class SourceContext:
    """Export state shared by layers and layer comps: what their name asks for."""

    name: str | None = None
    valid_file_components: list[AssetSpec] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    render_errors: list[str] = field(default_factory=list)

    def relative_paths(self) -> list[str]:
        return [spec.component.relative_path for spec in self.valid_file_components if spec.component.relative_path]

    def folders(self) -> list[str]:
        return ["/".join(spec.component.folder) for spec in self.valid_file_components if spec.component.folder]


@dataclass
class LayerContext(SourceContext):
    """Export state of one layer, cached between changes."""

    parent_layer_id: int | None = None
    type: str | None = None
    bounds: Bounds | None = None
    mask: Mask | None = None


@dataclass
class CompContext(SourceContext):
    """Export state of one layer comp. `raw` is the description it was last rendered from."""

    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class DocumentContext:
    """Export state of one document."""

    document_id: int
    asset_generation_enabled: bool = False
    path: str | None = None
    is_saved: bool = False
    asset_generation_dir: Path | None = None
    ppi: float = DEFAULT_PPI
    document: Document | None = None
    writer: WriterProtocol | None = None
    layers: dict[int, LayerContext] = field(default_factory=dict)
    comps: dict[int, CompContext] = field(default_factory=dict)
    registry: ComponentRegistry = field(default_factory=ComponentRegistry)
    error_log: ErrorLog = field(default_factory=ErrorLog)

    def layer(self, layer_id: int) -> LayerContext:
        """Return the context of a layer, creating it on first use."""
        if layer_id not in self.layers:
            self.layers[layer_id] = LayerContext()
        return self.layers[layer_id]

    def comp(self, comp_id: int) -> CompContext:
        if comp_id not in self.comps:
            self.comps[comp_id] = CompContext()
        return self.comps[comp_id]

    def sources(self) -> list[SourceContext]:
        """Contexts of all layers and layer comps."""
        return [*self.layers.values(), *self.comps.values()]

    def reset(self) -> None:
        """Forget the layer tree and all layer and comp state; keep enablement and paths."""
        self.document = None
        self.layers = {}
        self.comps = {}
        self.registry = ComponentRegistry()


def update_path_info(
    context: DocumentContext,
    file: str,
    config: GeneratorConfig,
    *,
    fallback_directory: Path = FALLBACK_BASE_DIRECTORY,
) -> None:
    """Derive the saved flag and the asset directory from a document's file path.

    Unsaved documents only have a name ("Untitled-1"); their assets go to
    `fallback_directory`.
    """
    is_windows_path = "\\" in file
    pathmod = ntpath if is_windows_path else posixpath
    is_saved = ("/" in file or "\\" in file) and "/.Trashes/" not in file

    file_name = pathmod.basename(file)
    document_name, _ = posixpath.splitext(file_name)
    base_directory = Path(pathmod.dirname(file)) if is_saved else fallback_directory
    relative_dir = config.asset_generation_dir or f"{document_name}-assets"

    context.path = file
    context.is_saved = is_saved
    context.asset_generation_dir = base_directory / relative_dir


def extract_enabled(generator_settings: Any) -> bool | None:
    """Read the "enabled" flag stored for this tool in a document's generatorSettings.

    The host stores plugin settings either as an object or as a JSON string
    under "json". Returns None when the document has no settings for us.
    """
    if not isinstance(generator_settings, dict):
        return None
    settings = generator_settings.get(PLUGIN_ID)
    if isinstance(settings, dict) and isinstance(settings.get("json"), str):
        try:
            settings = json.loads(settings["json"])
        except ValueError:
            return None
    if not isinstance(settings, dict) or "enabled" not in settings:
        return None
    return bool(settings["enabled"])
