"""Tests for unit conversion, scaling and component rendering."""

from pathlib import Path

import pytest

from layer_assets.config import GeneratorConfig
from layer_assets.core.renderer import AssetRenderer, canvas_padding, convert_to_pixels, scale_factors
from layer_assets.dom.bounds import Bounds
from layer_assets.exceptions import RenderError
from layer_assets.models.component import Component
from layer_assets.naming.analyzer import analyze_layer_name
from tests.unit.fakes import FakeHost, FakeWriter


def _component(name: str) -> Component:
    [spec] = analyze_layer_name(name)
    assert spec.errors == ()
    return spec.component


def test_convert_to_pixels() -> None:
    """Physical units scale with the resolution; pixels do not."""
    assert convert_to_pixels(1, "in", 72) == 72
    assert convert_to_pixels(2.54, "cm", 72) == pytest.approx(72)
    assert convert_to_pixels(25.4, "mm", 144) == pytest.approx(144)
    assert convert_to_pixels(10, "px", 300) == 10
    assert convert_to_pixels(10, None, 300) == 10


def test_convert_to_pixels_rejects_unknown_unit() -> None:
    """Units outside in, cm, mm and px are refused."""
    with pytest.raises(ValueError, match="Unsupported unit 'pt'"):
        convert_to_pixels(10, "pt", 72)


def test_scale_factors_relative_scale() -> None:
    """A relative scale applies to both axes."""
    assert scale_factors(_component("50% icon.png"), Bounds(0, 0, 10, 10), 72) == (0.5, 0.5)
    assert scale_factors(_component("icon.png"), Bounds(0, 0, 10, 10), 72) == (1.0, 1.0)


def test_scale_factors_keep_aspect_ratio_for_missing_dimension() -> None:
    """A "?" dimension takes the factor of the other one."""
    assert scale_factors(_component("20x? icon.png"), Bounds(0, 0, 40, 10), 72) == (2.0, 2.0)


def test_scale_factors_with_units() -> None:
    """Both dimensions may use physical units."""
    component = _component("1inx1in icon.png")

    assert scale_factors(component, Bounds(0, 0, 72, 36), 72) == (2.0, 1.0)


def test_canvas_padding_centers_image() -> None:
    """The image sits in the middle of the canvas, shifted by the offsets."""
    assert canvas_padding(_component("[100x50] icon.png"), 40, 20) == {
        "left": 30,
        "top": 15,
        "right": 30,
        "bottom": 15,
    }
    assert canvas_padding(_component("[100x50+5-3] icon.png"), 40, 20) == {
        "left": 35,
        "top": 12,
        "right": 25,
        "bottom": 18,
    }
    assert canvas_padding(_component("icon.png"), 40, 20) is None


def test_canvas_smaller_than_image() -> None:
    """A canvas cannot crop the image."""
    with pytest.raises(ValueError, match="smaller than the image"):
        canvas_padding(_component("[10x10] icon.png"), 40, 20)


async def test_render_pixmap(tmp_path: Path) -> None:
    """Pixmaps are saved to a scratch file and moved into place."""
    host = FakeHost()
    writer = FakeWriter(tmp_dir=tmp_path)
    renderer = AssetRenderer(host, GeneratorConfig())

    await renderer.render(
        7,
        2,
        _component("50% small/icon.jpg-8"),
        writer=writer,
        exact_bounds=Bounds(50, 50, 70, 90),
        ppi=72.0,
    )

    assert writer.files == {"small/icon.jpg": "pixmap-2"}
    _, _, pixmap_settings = host.calls[0][1]
    assert pixmap_settings == {"boundsOnly": False, "scaleX": 0.5, "scaleY": 0.5, "includeAncestorMasks": False}
    [(_, save_settings)] = host.saved.values()
    assert save_settings == {"format": "jpg", "ppi": 72.0, "quality": 80}
    assert list(tmp_path.iterdir()) == []


async def test_render_svg() -> None:
    """SVGs are written as text with the component's scale."""
    host = FakeHost()
    writer = FakeWriter()
    renderer = AssetRenderer(host, GeneratorConfig())

    await renderer.render(7, 3, _component("200% logo.svg"), writer=writer, exact_bounds=Bounds(0, 0, 5, 5), ppi=72.0)

    assert writer.files == {"logo.svg": "<svg id='3'/>"}
    assert host.calls == [("get_svg", (7, 3, 2.0))]


def test_save_settings_pad_to_mask() -> None:
    """Empty mask areas around the pixels are kept as padding."""
    renderer = AssetRenderer(FakeHost(), GeneratorConfig())

    settings = renderer.save_settings(
        _component("icon.png"), Bounds(10, 10, 20, 20), Bounds(0, 0, 30, 20), 72.0, (2.0, 2.0)
    )

    assert settings["padding"] == {"top": 20, "left": 20, "bottom": 20, "right": 0}


def test_save_settings_canvas() -> None:
    """A canvas becomes padding and is forwarded to the host."""
    renderer = AssetRenderer(FakeHost(), GeneratorConfig(use_smart_scaling=True))
    component = _component("[30x20] icon.png-24")

    settings = renderer.save_settings(component, Bounds(0, 0, 10, 10), None, 72.0, (1.0, 1.0))

    assert settings == {
        "format": "png",
        "ppi": 72.0,
        "quality": 24,
        "padding": {"left": 10, "top": 5, "right": 10, "bottom": 5},
        "canvas": {"width": 30, "height": 20, "offsetX": 0, "offsetY": 0},
    }
    assert renderer.pixmap_settings(component, Bounds(0, 0, 10, 10), 72.0)["useSmartScaling"] is True


async def test_render_failure_names_component(tmp_path: Path) -> None:
    """Host failures are wrapped with the component name."""
    host = FakeHost()
    host.failing_layers.add(2)
    renderer = AssetRenderer(host, GeneratorConfig())

    with pytest.raises(RenderError, match="^icon.png: cannot render layer 2$"):
        await renderer.render(
            7,
            2,
            _component("icon.png"),
            writer=FakeWriter(tmp_dir=tmp_path),
            exact_bounds=Bounds(0, 0, 5, 5),
            ppi=72.0,
        )


class _FullDiskWriter(FakeWriter):
    def move_file(self, source: Path, fname_rel: str) -> None:
        msg = "disk full"
        raise OSError(msg)


async def test_failed_move_discards_scratch_file(tmp_path: Path) -> None:
    """A rendition that cannot be moved into place does not stay behind."""
    writer = _FullDiskWriter(tmp_dir=tmp_path)
    renderer = AssetRenderer(FakeHost(), GeneratorConfig())

    with pytest.raises(RenderError, match="^icon.png: disk full$"):
        await renderer.render(7, 3, _component("icon.png"), writer=writer, exact_bounds=Bounds(0, 0, 5, 5), ppi=72.0)

    assert writer.discarded == [tmp_path / "tmp-1.png"]
    assert list(tmp_path.iterdir()) == []


async def test_render_layer_comp(tmp_path: Path) -> None:
    """Comps render the whole document with the comp applied."""
    host = FakeHost()
    writer = FakeWriter(tmp_dir=tmp_path)
    renderer = AssetRenderer(host, GeneratorConfig())

    bounds = await renderer.get_exact_bounds(7, comp_id=11)
    await renderer.render(7, None, _component("home.png"), writer=writer, exact_bounds=bounds, ppi=72.0, comp_id=11)

    assert bounds == Bounds(0, 0, 100, 200)
    assert writer.files == {"home.png": "comp-11"}
    assert [args[1]["compId"] for name, args in host.calls if name == "get_document_pixmap"] == [11, 11]


async def test_svg_of_layer_comp_is_rejected() -> None:
    """SVG output exists only for single layers."""
    renderer = AssetRenderer(FakeHost(), GeneratorConfig())

    with pytest.raises(RenderError, match="home.svg: SVG is only supported for layers"):
        await renderer.render(
            7, None, _component("home.svg"), writer=FakeWriter(), exact_bounds=Bounds(0, 0, 5, 5), ppi=72.0, comp_id=11
        )
