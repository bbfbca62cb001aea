"""Rendering of single components into files."""

import asyncio
from typing import Any

from layer_assets.config import GeneratorConfig
from layer_assets.dom.bounds import Bounds
from layer_assets.exceptions import RenderError
from layer_assets.models.component import Component
from layer_assets.protocols import HostProtocol, WriterProtocol

# Pixels per unit, as a factor of the document resolution.
_UNIT_FACTORS: dict[str, float] = {
    "in": 1.0,
    "cm": 1 / 2.54,
    "mm": 1 / 25.4,
}


def convert_to_pixels(value: float, unit: str | None, ppi: float) -> float:
    """Convert a length to pixels at the given resolution. No unit means pixels."""
    if unit is None or unit == "px":
        return float(value)
    try:
        return value * ppi * _UNIT_FACTORS[unit]
    except KeyError:
        msg = f"Unsupported unit {unit!r}"
        raise ValueError(msg) from None


def scale_factors(component: Component, bounds: Bounds, ppi: float) -> tuple[float, float]:
    """Horizontal and vertical scale turning `bounds` into the requested output size.

    A missing dimension keeps the aspect ratio of the other one.
    """
    if component.width is None and component.height is None:
        scale = component.scale if component.scale is not None else 1
        return float(scale), float(scale)

    scale_x: float | None = None
    scale_y: float | None = None
    if component.width is not None and bounds.width > 0:
        scale_x = convert_to_pixels(component.width, component.width_unit, ppi) / bounds.width
    if component.height is not None and bounds.height > 0:
        scale_y = convert_to_pixels(component.height, component.height_unit, ppi) / bounds.height
    if scale_x is None:
        scale_x = scale_y
    if scale_y is None:
        scale_y = scale_x
    return scale_x or 1.0, scale_y or 1.0


def canvas_padding(component: Component, width: int, height: int) -> dict[str, int] | None:
    """Padding that centers a `width` x `height` image on the component's canvas, shifted by its offsets."""
    if not component.has_canvas:
        return None
    canvas_width = component.canvas_width if component.canvas_width is not None else width
    canvas_height = component.canvas_height if component.canvas_height is not None else height
    if canvas_width < width or canvas_height < height:
        msg = f"Canvas {canvas_width}x{canvas_height} is smaller than the image ({width}x{height})"
        raise ValueError(msg)
    left = (canvas_width - width) // 2 + (component.canvas_offset_x or 0)
    top = (canvas_height - height) // 2 + (component.canvas_offset_y or 0)
    return {
        "left": left,
        "top": top,
        "right": canvas_width - width - left,
        "bottom": canvas_height - height - top,
    }


class AssetRenderer:
    """Renders components of one layer through the host and stores them with a writer."""

    def __init__(self, host: HostProtocol, config: GeneratorConfig) -> None:
        self.host = host
        self.config = config

    async def get_exact_bounds(
        self, document_id: int, layer_id: int | None = None, *, comp_id: int | None = None
    ) -> Bounds:
        """Bounds of the visible pixels of a layer, or of the whole document in a layer comp."""
        settings: dict[str, Any] = {"boundsOnly": True}
        if layer_id is not None:
            settings["includeAncestorMasks"] = self.config.include_ancestor_masks
            reply = await self.host.get_pixmap(document_id, layer_id, settings)
        else:
            if comp_id is not None:
                settings["compId"] = comp_id
            reply = await self.host.get_document_pixmap(document_id, settings)
        return Bounds.from_raw(reply.get("bounds") or {})

    async def render(
        self,
        document_id: int,
        layer_id: int | None,
        component: Component,
        *,
        writer: WriterProtocol,
        exact_bounds: Bounds,
        mask_bounds: Bounds | None = None,
        ppi: float,
        comp_id: int | None = None,
    ) -> None:
        """Render one component of a layer, or of the whole document when `layer_id` is None.

        `comp_id` selects the layer comp a document is rendered in.

        Raises:
            RenderError: With "<component name>: <error>" when anything fails.
        """
        try:
            if component.extension == "svg":
                if layer_id is None:
                    msg = f"{component.name}: SVG is only supported for layers"
                    raise RenderError(msg)
                await self._render_svg(document_id, layer_id, component, writer)
            else:
                await self._render_pixmap(
                    document_id, layer_id, component, writer, exact_bounds, mask_bounds, ppi, comp_id
                )
        except RenderError:
            raise
        except Exception as e:
            msg = f"{component.name}: {e}"
            raise RenderError(msg) from e

    async def _render_svg(
        self, document_id: int, layer_id: int, component: Component, writer: WriterProtocol
    ) -> None:
        svg = await self.host.get_svg(document_id, layer_id, component.scale or 1)
        await asyncio.to_thread(writer.write_text, component.relative_path, svg)

    def pixmap_settings(self, component: Component, exact_bounds: Bounds, ppi: float) -> dict[str, Any]:
        scale_x, scale_y = scale_factors(component, exact_bounds, ppi)
        settings: dict[str, Any] = {
            "boundsOnly": False,
            "scaleX": scale_x,
            "scaleY": scale_y,
            "includeAncestorMasks": self.config.include_ancestor_masks,
        }
        if self.config.use_smart_scaling:
            settings["useSmartScaling"] = True
        return settings

    def save_settings(
        self,
        component: Component,
        exact_bounds: Bounds,
        mask_bounds: Bounds | None,
        ppi: float,
        scale: tuple[float, float],
    ) -> dict[str, Any]:
        scale_x, scale_y = scale
        width = round(exact_bounds.width * scale_x)
        height = round(exact_bounds.height * scale_y)

        padding = canvas_padding(component, width, height)
        if padding is None and mask_bounds is not None:
            # Keep the empty parts of the mask around the visible pixels.
            padded = exact_bounds.union(mask_bounds)
            raw_padding = exact_bounds.padding_to(padded)
            padding = {
                "top": round(raw_padding["top"] * scale_y),
                "left": round(raw_padding["left"] * scale_x),
                "bottom": round(raw_padding["bottom"] * scale_y),
                "right": round(raw_padding["right"] * scale_x),
            }

        settings: dict[str, Any] = {"format": component.extension, "ppi": ppi}
        if component.quality is not None:
            settings["quality"] = component.quality
        if padding is not None and any(padding.values()):
            settings["padding"] = padding
        if component.has_canvas:
            settings["canvas"] = {
                "width": component.canvas_width,
                "height": component.canvas_height,
                "offsetX": component.canvas_offset_x or 0,
                "offsetY": component.canvas_offset_y or 0,
            }
        return settings

    async def _render_pixmap(
        self,
        document_id: int,
        layer_id: int | None,
        component: Component,
        writer: WriterProtocol,
        exact_bounds: Bounds,
        mask_bounds: Bounds | None,
        ppi: float,
        comp_id: int | None,
    ) -> None:
        relative_path = component.relative_path
        if relative_path is None:
            msg = f"{component.name}: no file to render to"
            raise RenderError(msg)

        pixmap_settings = self.pixmap_settings(component, exact_bounds, ppi)
        save_settings = self.save_settings(
            component, exact_bounds, mask_bounds, ppi, (pixmap_settings["scaleX"], pixmap_settings["scaleY"])
        )
        if layer_id is not None:
            reply = await self.host.get_pixmap(document_id, layer_id, pixmap_settings)
        else:
            if comp_id is not None:
                pixmap_settings["compId"] = comp_id
            reply = await self.host.get_document_pixmap(document_id, pixmap_settings)
        pixmap = reply.get("pixmap") if isinstance(reply, dict) else None
        if pixmap is None:
            msg = f"{component.name}: host returned no pixmap"
            raise RenderError(msg)

        tmp_path = writer.temp_path(relative_path)
        try:
            await self.host.save_pixmap(pixmap, str(tmp_path), save_settings)
            await asyncio.to_thread(writer.move_file, tmp_path, relative_path)
        finally:
            await asyncio.to_thread(writer.discard_temp, tmp_path)
