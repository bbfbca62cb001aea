"""Tests for document and layer contexts."""

import json
from pathlib import Path

from layer_assets.config import GeneratorConfig
from layer_assets.core.contexts import CompContext, DocumentContext, LayerContext, extract_enabled, update_path_info
from layer_assets.naming.analyzer import analyze_layer_name, valid_file_components


def test_saved_document_assets_next_to_file(tmp_path: Path) -> None:
    """Saved documents get "<name>-assets" beside them."""
    context = DocumentContext(document_id=1)

    update_path_info(context, "/Users/me/design.psd", GeneratorConfig(), fallback_directory=tmp_path)

    assert context.is_saved
    assert context.path == "/Users/me/design.psd"
    assert context.asset_generation_dir == Path("/Users/me/design-assets")


def test_unsaved_document_uses_fallback(tmp_path: Path) -> None:
    """Unsaved documents write to the fallback directory."""
    context = DocumentContext(document_id=1)

    update_path_info(context, "Untitled-1", GeneratorConfig(), fallback_directory=tmp_path)

    assert not context.is_saved
    assert context.asset_generation_dir == tmp_path / "Untitled-1-assets"


def test_trashed_document_counts_as_unsaved(tmp_path: Path) -> None:
    """Documents in the trash are treated like unsaved ones."""
    context = DocumentContext(document_id=1)

    update_path_info(context, "/Volumes/x/.Trashes/501/design.psd", GeneratorConfig(), fallback_directory=tmp_path)

    assert not context.is_saved
    assert context.asset_generation_dir == tmp_path / "design-assets"


def test_configured_asset_directory() -> None:
    """The asset-generation-dir setting replaces the "-assets" folder name."""
    context = DocumentContext(document_id=1)

    update_path_info(context, "/Users/me/design.psd", GeneratorConfig(asset_generation_dir="export"))

    assert context.asset_generation_dir == Path("/Users/me/export")


def test_windows_path_is_saved(tmp_path: Path) -> None:
    """Backslash paths are recognized as saved."""
    context = DocumentContext(document_id=1)

    update_path_info(context, "C:\\Users\\me\\design.psd", GeneratorConfig(), fallback_directory=tmp_path)

    assert context.is_saved
    assert context.asset_generation_dir is not None
    assert context.asset_generation_dir.name == "design-assets"


def test_extract_enabled() -> None:
    """The flag is read from an object or from a JSON string."""
    assert extract_enabled({"generator-assets": {"enabled": True}}) is True
    assert extract_enabled({"generator-assets": {"json": json.dumps({"enabled": False})}}) is False
    assert extract_enabled({"generator-assets": {"json": "{broken"}}) is None
    assert extract_enabled({"other-plugin": {"enabled": True}}) is None
    assert extract_enabled(None) is None


def test_layer_context_paths_and_folders() -> None:
    """Relative paths and folders come from the valid components."""
    layer = LayerContext(valid_file_components=valid_file_components(analyze_layer_name("a/b/icon.png + logo.svg")))

    assert layer.relative_paths() == ["a/b/icon.png", "logo.svg"]
    assert layer.folders() == ["a/b"]


def test_reset_keeps_paths() -> None:
    """Resetting drops layers but keeps enablement and the asset directory."""
    context = DocumentContext(document_id=1, asset_generation_enabled=True, asset_generation_dir=Path("/x"))
    context.layer(5).name = "icon.png"
    context.comp(9).name = "home.png"
    context.registry.claim_paths(5, analyze_layer_name("icon.png"))

    context.reset()

    assert context.layers == {}
    assert context.comps == {}
    assert context.asset_generation_enabled
    assert context.asset_generation_dir == Path("/x")
    assert context.registry.claim_paths(6, analyze_layer_name("icon.png"))[0].errors == ()


def test_sources_lists_layers_and_comps() -> None:
    """Layers and layer comps are both sources of files."""
    context = DocumentContext(document_id=1)
    layer = context.layer(5)
    comp = context.comp(9)

    assert context.sources() == [layer, comp]
    assert isinstance(comp, CompContext)
    assert context.comp(9) is comp
