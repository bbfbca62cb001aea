"""Debounced, concurrency-bounded regeneration of layer assets.

Every layer that changes gets a `PendingLayerUpdate` moving through

    IDLE -> DEBOUNCING -> RUNNING -> (IDLE | DEBOUNCING)

A change while DEBOUNCING restarts the quiet-period timer. A change while
RUNNING marks the update superseded; once the run completes, the timer is
started again for the buffered changes. Runs of one layer therefore never
overlap and no change is dropped.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from layer_assets.config import MAX_PATH_LENGTH, GeneratorConfig
from layer_assets.core.contexts import CompContext, DocumentContext, LayerContext, SourceContext
from layer_assets.core.error_log import ErrorLog, write_report
from layer_assets.core.limiter import ConcurrencyLimiter
from layer_assets.core.renderer import AssetRenderer
from layer_assets.dom.bounds import Bounds
from layer_assets.dom.mask import Mask
from layer_assets.exceptions import RenderError
from layer_assets.naming.analyzer import analyze_layer_name, collect_errors, valid_file_components
from layer_assets.protocols import HostProtocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


# Calls the callback once after the delay (in seconds) unless cancelled first.
TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def loop_timer(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class UpdateState(Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    RUNNING = "running"


@dataclass(eq=False)
class PendingLayerUpdate:
    """Buffered changes to one layer and the progress of their processing."""

    document_id: int
    layer_id: int
    done: "asyncio.Future[None]"
    state: UpdateState = UpdateState.IDLE
    superseded: bool = False
    timer: TimerHandle | None = None
    changes: list[dict[str, Any]] = field(default_factory=list)
    runs: int = 0


class LayerUpdateScheduler:
    """Turns layer changes into asset files.

    Shares the document contexts with the reconciler, which owns them; this
    class only touches the layer contexts of layers it updates.
    """

    def __init__(
        self,
        host: HostProtocol,
        config: GeneratorConfig,
        *,
        contexts: dict[int, DocumentContext],
        limiter: ConcurrencyLimiter | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self.host = host
        self.config = config
        self.contexts = contexts
        self.limiter = limiter or ConcurrencyLimiter(config.max_concurrent_updates)
        self.timer_factory = timer_factory or loop_timer
        self.renderer = AssetRenderer(host, config)
        self.logger = logging.getLogger("scheduler")
        self._updates: dict[tuple[int, int], PendingLayerUpdate] = {}
        self._report_locks: dict[int, asyncio.Lock] = {}

    def pending(self) -> list["asyncio.Future[None]"]:
        """Completion futures of all updates not yet settled."""
        return [update.done for update in self._updates.values()]

    def get_update(self, document_id: int, layer_id: int) -> PendingLayerUpdate | None:
        return self._updates.get((document_id, layer_id))

    def schedule(self, document_id: int, raw_layer: dict[str, Any]) -> "asyncio.Future[None]":
        """Buffer a layer change and (re)start the quiet period of its layer.

        Returns a future settling once the buffered changes are processed.
        """
        key = (document_id, raw_layer["id"])
        update = self._updates.get(key)
        if update is None:
            update = PendingLayerUpdate(
                document_id=document_id,
                layer_id=raw_layer["id"],
                done=asyncio.get_running_loop().create_future(),
            )
            self._updates[key] = update
        update.changes.append(raw_layer)

        if update.state is UpdateState.RUNNING:
            update.superseded = True
        else:
            self._start_timer(update)
        return update.done

    def cancel_document(self, document_id: int) -> None:
        """Drop all updates of a document. Runs already in progress complete but are not repeated."""
        for key in [key for key in self._updates if key[0] == document_id]:
            update = self._updates.pop(key)
            if update.timer is not None:
                update.timer.cancel()
                update.timer = None
            if not update.done.done():
                update.done.cancel()
        self._report_locks.pop(document_id, None)

    def cancel_all(self) -> None:
        for document_id in {key[0] for key in self._updates}:
            self.cancel_document(document_id)

    def _start_timer(self, update: PendingLayerUpdate) -> None:
        if update.timer is not None:
            update.timer.cancel()
        update.state = UpdateState.DEBOUNCING
        update.timer = self.timer_factory(self.config.debounce_delay, lambda: self._on_quiet(update))

    def _on_quiet(self, update: PendingLayerUpdate) -> None:
        update.timer = None
        update.state = UpdateState.RUNNING
        future = self.limiter.enqueue(lambda: self.start_layer_update(update))
        future.add_done_callback(lambda f: self._finish(update, f))

    def _finish(self, update: PendingLayerUpdate, future: "asyncio.Future[None]") -> None:
        key = (update.document_id, update.layer_id)
        if self._updates.get(key) is not update:
            # Cancelled while running.
            return
        if update.superseded:
            update.superseded = False
            self._start_timer(update)
            return

        del self._updates[key]
        update.state = UpdateState.IDLE
        if update.done.done():
            return
        if future.cancelled():
            update.done.cancel()
        elif future.exception() is not None:
            update.done.set_exception(future.exception())  # type: ignore[arg-type]
        else:
            update.done.set_result(None)

    async def start_layer_update(self, update: PendingLayerUpdate) -> None:
        """Process all changes buffered for a layer so far."""
        update.runs += 1
        changes, update.changes = update.changes, []
        context = self.contexts.get(update.document_id)
        if context is None:
            return
        layer_id = update.layer_id
        layer_context = context.layer(layer_id)

        removed = False
        latest_name: str | None = None
        for raw in changes:
            if "type" in raw:
                layer_context.type = raw["type"]
            if raw.get("removed"):
                removed = True
            if "name" in raw:
                latest_name = raw["name"]
            if "bounds" in raw:
                if layer_context.bounds is None:
                    layer_context.bounds = Bounds.from_raw(raw["bounds"])
                else:
                    layer_context.bounds.apply_change(raw["bounds"])
            if "mask" in raw:
                if raw["mask"].get("removed"):
                    layer_context.mask = None
                elif layer_context.mask is None:
                    layer_context.mask = Mask.from_raw(raw["mask"])
                else:
                    layer_context.mask.apply_change(raw["mask"])

        try:
            if removed:
                self.logger.debug(f"Layer {layer_id} was removed")
                await self.delete_files_related_to_source(context, layer_context)
                self._forget_layer(context, layer_id)
                return

            if latest_name is not None and latest_name != layer_context.name:
                await self.delete_files_related_to_source(context, layer_context)
                self.update_layer_name(context, layer_id, layer_context, latest_name)

            if self._needs_rendering(context, layer_context):
                await self.create_layer_images(context, layer_id, layer_context)
        finally:
            await self.report_errors(context)

    def _needs_rendering(self, context: DocumentContext, source: SourceContext) -> bool:
        return bool(context.asset_generation_enabled and context.writer is not None and source.valid_file_components)

    def update_layer_name(
        self, context: DocumentContext, layer_id: int, layer_context: LayerContext, name: str
    ) -> None:
        """Re-analyze a layer's name and record its components and errors."""
        registry = context.registry
        specs = analyze_layer_name(name, self.config)
        if any(spec.component.default for spec in specs):
            specs = registry.set_defaults(layer_id, specs)
            defaults_changed = registry.defaults_layer_id == layer_id
        else:
            defaults_changed = registry.clear_defaults(layer_id)
        specs = registry.claim_paths(layer_id, registry.expand(specs))

        layer_context.name = name
        layer_context.valid_file_components = valid_file_components(specs)
        layer_context.errors = collect_errors(specs)
        layer_context.render_errors = []
        context.error_log.remove_errors(layer_id)
        for error in layer_context.errors:
            context.error_log.add_error(layer_id, name, error)

        if defaults_changed:
            self._refresh_components(context, except_layer_id=layer_id)

    def _refresh_components(self, context: DocumentContext, *, except_layer_id: int) -> None:
        """Have every other named layer re-derive its components from the current defaults."""
        for layer_id, layer_context in context.layers.items():
            if layer_id == except_layer_id or layer_context.name is None:
                continue
            name = layer_context.name
            # Clearing the name makes the next run treat it as renamed.
            layer_context.name = None
            self.schedule(context.document_id, {"id": layer_id, "name": name})

    def _forget_layer(self, context: DocumentContext, layer_id: int) -> None:
        context.registry.release_paths(layer_id)
        defaults_changed = context.registry.clear_defaults(layer_id)
        context.error_log.remove_errors(layer_id)
        context.layers.pop(layer_id, None)
        if defaults_changed:
            self._refresh_components(context, except_layer_id=layer_id)

    async def create_layer_images(self, context: DocumentContext, layer_id: int, layer_context: LayerContext) -> None:
        """Render all valid components of a layer.

        Raises:
            RenderError: When at least one component failed. The others are still written.
        """
        if context.writer is None:
            return
        exact_bounds = await self.renderer.get_exact_bounds(context.document_id, layer_id)
        if exact_bounds.is_empty():
            self.logger.debug(f"Layer {layer_id} is empty, removing its files")
            await self.delete_files_related_to_source(context, layer_context)
            return

        mask = layer_context.mask
        mask_bounds = mask.bounds if mask is not None and mask.is_enabled else None
        errors = await self._render_components(
            context, layer_context, exact_bounds, layer_id=layer_id, mask_bounds=mask_bounds
        )
        self._record_render_errors(context, layer_id, layer_context, errors, source_type=ErrorLog.LAYER)
        if errors:
            total = len(layer_context.valid_file_components)
            msg = f"Failed to render {len(errors)} of {total} components of layer {layer_id}"
            raise RenderError(msg)

    async def _render_components(
        self,
        context: DocumentContext,
        source: SourceContext,
        exact_bounds: Bounds,
        *,
        layer_id: int | None = None,
        comp_id: int | None = None,
        mask_bounds: Bounds | None = None,
    ) -> list[str]:
        """Render every valid component of a layer or layer comp and return the errors."""
        writer = context.writer
        if writer is None:
            return []
        base_length = len(str(context.asset_generation_dir or ""))
        errors: list[str] = []
        renders = []
        for spec in source.valid_file_components:
            path = spec.component.relative_path
            if path is not None and base_length + len(path) + 1 >= MAX_PATH_LENGTH:
                errors.append(f"Asset path is too long: {path}")
                continue
            renders.append(
                self.renderer.render(
                    context.document_id,
                    layer_id,
                    spec.component,
                    writer=writer,
                    exact_bounds=exact_bounds,
                    mask_bounds=mask_bounds,
                    ppi=context.ppi,
                    comp_id=comp_id,
                )
            )
        results = await asyncio.gather(*renders, return_exceptions=True)
        errors.extend(str(result) for result in results if isinstance(result, BaseException))
        return errors

    def _record_render_errors(
        self,
        context: DocumentContext,
        source_id: int,
        source: SourceContext,
        errors: list[str],
        *,
        source_type: str,
    ) -> None:
        error_log = context.error_log
        if source.render_errors:
            # Previous render errors are stale now; keep only the name errors.
            error_log.remove_errors(source_id, source_type=source_type)
            for error in source.errors:
                error_log.add_error(source_id, source.name, error, source_type=source_type)
        source.render_errors = errors
        for error in errors:
            self.logger.warning(f"Failed to render {source_type} {source_id}: {error}")
            error_log.add_error(source_id, source.name, error, source_type=source_type)

    def schedule_comp(self, context: DocumentContext, raw_comp: dict[str, Any]) -> "asyncio.Future[None]":
        """Queue the regeneration of a new or changed layer comp.

        Comps are not debounced: the host reports them once per document change.
        """
        comp_id = raw_comp["id"]
        context.comp(comp_id).raw = dict(raw_comp)
        return self.limiter.enqueue(lambda: self.start_comp_update(context, comp_id))

    def remove_comp(self, context: DocumentContext, comp_id: int) -> "asyncio.Future[None]":
        """Forget a layer comp and queue the deletion of its files."""
        comp_context = context.comps.pop(comp_id, None)
        context.registry.release_paths(("comp", comp_id))
        context.error_log.remove_errors(comp_id, source_type=ErrorLog.COMP)

        async def remove() -> None:
            if comp_context is not None:
                self.logger.debug(f"Layer comp {comp_id} was removed")
                await self.delete_files_related_to_source(context, comp_context)
            await self.report_errors(context)

        return self.limiter.enqueue(remove)

    async def start_comp_update(self, context: DocumentContext, comp_id: int) -> None:
        """Bring the files of one layer comp in line with its latest description."""
        if self.contexts.get(context.document_id) is not context:
            return
        comp_context = context.comps.get(comp_id)
        if comp_context is None:
            return
        try:
            name = comp_context.raw.get("name") or ""
            if name != comp_context.name:
                await self.delete_files_related_to_source(context, comp_context)
                self.update_comp_name(context, comp_id, comp_context, name)
            if self._needs_rendering(context, comp_context):
                await self.create_comp_images(context, comp_id, comp_context)
        finally:
            await self.report_errors(context)

    def update_comp_name(self, context: DocumentContext, comp_id: int, comp_context: CompContext, name: str) -> None:
        """Re-analyze a layer comp's name. Comps cannot carry defaults."""
        specs = [
            spec.with_errors("Default spec in layer comp names are unsupported.") if spec.component.default else spec
            for spec in analyze_layer_name(name, self.config)
        ]
        specs = context.registry.claim_paths(("comp", comp_id), specs)

        comp_context.name = name
        comp_context.valid_file_components = valid_file_components(specs)
        comp_context.errors = collect_errors(specs)
        comp_context.render_errors = []
        context.error_log.remove_errors(comp_id, source_type=ErrorLog.COMP)
        for error in comp_context.errors:
            context.error_log.add_error(comp_id, name, error, source_type=ErrorLog.COMP)

    async def create_comp_images(self, context: DocumentContext, comp_id: int, comp_context: CompContext) -> None:
        """Render the whole document as seen in a layer comp, once per valid component.

        Raises:
            RenderError: When at least one component failed.
        """
        if context.writer is None:
            return
        exact_bounds = await self.renderer.get_exact_bounds(context.document_id, comp_id=comp_id)
        if exact_bounds.is_empty():
            self.logger.debug(f"Layer comp {comp_id} is empty, removing its files")
            await self.delete_files_related_to_source(context, comp_context)
            return
        errors = await self._render_components(context, comp_context, exact_bounds, comp_id=comp_id)
        self._record_render_errors(context, comp_id, comp_context, errors, source_type=ErrorLog.COMP)
        if errors:
            total = len(comp_context.valid_file_components)
            msg = f"Failed to render {len(errors)} of {total} components of layer comp {comp_id}"
            raise RenderError(msg)

    async def delete_files_related_to_source(self, context: DocumentContext, source: SourceContext) -> None:
        """Delete the generated files of a layer or layer comp, then its folders that became empty."""
        writer = context.writer
        paths = source.relative_paths()
        if writer is None or not paths:
            return
        folders = source.folders()

        def delete() -> None:
            for path in paths:
                writer.delete_file(path)
            writer.prune_empty_dirs(folders)

        try:
            await asyncio.to_thread(delete)
        except OSError as e:
            self.logger.error(f"Could not delete files of {source.name!r}: {e}")

    async def report_errors(self, context: DocumentContext) -> None:
        """Bring errors.txt of a document up to date."""
        writer = context.writer
        if writer is None or not context.asset_generation_enabled:
            return
        lock = self._report_locks.setdefault(context.document_id, asyncio.Lock())
        async with lock:
            plan = context.error_log.pending_report()
            if plan is None:
                return
            try:
                await asyncio.to_thread(write_report, writer, *plan)
            except OSError as e:
                self.logger.error(f"Could not update the errors file of document {context.document_id}: {e}")
