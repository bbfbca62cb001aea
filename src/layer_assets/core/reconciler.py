"""Keeps an in-memory model of every open document in sync with the host's change events."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from layer_assets.config import ERRORS_FILE_NAME, FALLBACK_BASE_DIRECTORY, GeneratorConfig
from layer_assets.core.contexts import DocumentContext, extract_enabled, update_path_info
from layer_assets.core.error_log import ErrorLog
from layer_assets.core.limiter import ConcurrencyLimiter
from layer_assets.core.migration import claim_directory, move_assets
from layer_assets.core.scheduler import LayerUpdateScheduler, TimerFactory
from layer_assets.dom.document import Document, DocumentUpdate, parse_resolution
from layer_assets.dom.layer import ROOT_LAYER_ID, LayerKind
from layer_assets.dom.tree import ResyncRequired
from layer_assets.exceptions import FatalIOError, StaleChangeError, StructuralAmbiguityError
from layer_assets.protocols import HostProtocol, WriterProtocol
from layer_assets.writer import AssetWriter


class DocumentState(Enum):
    UNKNOWN = "unknown"
    FETCHING_FULL = "fetching-full"
    READY = "ready"


def flatten_layer_changes(raw_layers: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """All layer entries of a change, breadth first, without their nested "layers"."""
    result: list[dict[str, Any]] = []
    queue = deque(raw_layers)
    while queue:
        raw = queue.popleft()
        result.append({key: value for key, value in raw.items() if key != "layers"})
        queue.extend(raw.get("layers", []))
    return result


class ReconciliationService:
    """Owns the contexts of all open documents and feeds layer changes to the scheduler.

    Per document: UNKNOWN -> FETCHING_FULL -> READY. A READY document applies
    incremental changes; anything it cannot apply safely sends it back to
    FETCHING_FULL. Changes arriving while a full fetch is in flight make the
    fetch repeat once it returns.
    """

    def __init__(
        self,
        host: HostProtocol,
        config: GeneratorConfig | None = None,
        *,
        writer_factory: Callable[[Path], WriterProtocol] = AssetWriter,
        limiter: ConcurrencyLimiter | None = None,
        timer_factory: TimerFactory | None = None,
        enable_by_default: bool = False,
        fallback_directory: Path = FALLBACK_BASE_DIRECTORY,
    ) -> None:
        self.host = host
        self.config = config or GeneratorConfig()
        self.writer_factory = writer_factory
        self.enable_by_default = enable_by_default
        self.fallback_directory = fallback_directory
        self.contexts: dict[int, DocumentContext] = {}
        self.states: dict[int | None, DocumentState] = {}
        self.scheduler = LayerUpdateScheduler(
            host, self.config, contexts=self.contexts, limiter=limiter, timer_factory=timer_factory
        )
        self.logger = logging.getLogger("reconciler")
        self._change_while_fetching: dict[int | None, bool] = {}
        self._batches: set[asyncio.Task[None]] = set()

    def state(self, document_id: int) -> DocumentState:
        return self.states.get(document_id, DocumentState.UNKNOWN)

    async def start(self) -> None:
        """Fetch all documents that are already open."""
        for document_id in await self.host.get_open_document_ids():
            await self.request_entire_document(document_id)

    async def wait_idle(self) -> None:
        """Wait until every scheduled update and batch has settled."""
        while True:
            pending: list[asyncio.Future[Any]] = [*self._batches, *self.scheduler.pending()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        self.scheduler.cancel_all()
        for task in self._batches:
            task.cancel()
        for context in self.contexts.values():
            if context.writer is not None:
                context.writer.close()

    async def handle_change(self, raw: dict[str, Any]) -> None:
        """Process one change event from the host.

        Raises:
            FatalIOError: When the asset directory of a newly saved document
                cannot be claimed. Generation is disabled for that document.
        """
        document_id = raw.get("id")
        if not isinstance(document_id, int):
            self.logger.warning(f"Ignoring change without a document id: {repr(raw)[:64]}")
            return
        if raw.get("closed"):
            self.close_document(document_id)
            return

        state = self.state(document_id)
        if state is DocumentState.FETCHING_FULL:
            self._change_while_fetching[document_id] = True
            return
        context = self.contexts.get(document_id)
        if state is DocumentState.UNKNOWN or context is None or context.document is None:
            self.logger.info(f"Unknown document {document_id}, getting all information")
            await self.request_entire_document(document_id)
            return

        document = context.document
        if document.is_stale(raw):
            self.logger.debug(
                f"Dropping stale change to document {document_id}: "
                f"({raw.get('timeStamp')}, {raw.get('count')}) <= ({document.time_stamp}, {document.count})"
            )
            return

        reason = self.unknown_change_reason(context, raw)
        if reason is not None:
            await self.resync(context, reason)
            return
        if "bounds" in raw and "layers" not in raw:
            self.logger.info(f"Document {document_id} was resized, regenerating everything")
            await self.request_entire_document(document_id)
            return

        try:
            result = document.apply_change(raw)
        except StaleChangeError as e:
            self.logger.debug(str(e))
            return
        if isinstance(result, ResyncRequired):
            await self.resync(context, result.reason)
            return
        await self.process_changes_to_document(context, raw, result)

    def unknown_change_reason(self, context: DocumentContext, raw: dict[str, Any]) -> str | None:
        """Why a change cannot be applied incrementally, or None if it can.

        Adjustment layers affect everything below them, so any change to one and
        any reordering in a document that has one requires a full resync.
        """
        if raw.get("changed"):
            return "Unknown change to the document"
        layers_moved = False
        for layer in flatten_layer_changes(raw.get("layers", [])):
            layer_id = layer.get("id")
            if layer.get("changed"):
                return f"Unknown change to layer {layer_id}"
            layer_type = layer.get("type") or self._known_layer_type(context, layer_id)
            if not layer_type:
                return f"Unknown type of layer {layer_id}"
            if layer_type == LayerKind.ADJUSTMENT:
                return f"Adjustment layer {layer_id} changed"
            if "index" in layer:
                layers_moved = True
        if layers_moved and self._has_adjustment_layer(context):
            return "Layers moved in a document containing adjustment layers"
        return None

    def _known_layer_type(self, context: DocumentContext, layer_id: Any) -> str | None:
        layer_context = context.layers.get(layer_id)
        if layer_context is not None and layer_context.type:
            return layer_context.type
        if context.document is not None and isinstance(layer_id, int):
            found = context.document.find_layer(layer_id)
            if found is not None:
                return found[0].kind.value
        return None

    def _has_adjustment_layer(self, context: DocumentContext) -> bool:
        if any(layer.type == LayerKind.ADJUSTMENT for layer in context.layers.values()):
            return True
        return context.document is not None and context.document.has_adjustment_layer()

    async def resync(self, context: DocumentContext, reason: str) -> None:
        """Delete everything generated for a document and fetch it again."""
        self.logger.info(f"Resyncing document {context.document_id}: {reason}")
        self.scheduler.cancel_document(context.document_id)
        for source in context.sources():
            await self.scheduler.delete_files_related_to_source(context, source)
        await self.request_entire_document(context.document_id)

    async def request_entire_document(self, document_id: int | None = None) -> None:
        """Fetch a whole document (the active one if no id is given) and regenerate its assets."""
        while True:
            self.states[document_id] = DocumentState.FETCHING_FULL
            self._change_while_fetching[document_id] = False
            try:
                raw = await self.host.get_document_info(document_id)
            except Exception:
                self.states[document_id] = DocumentState.UNKNOWN
                raise
            if self.states.get(document_id) is not DocumentState.FETCHING_FULL:
                self.logger.debug(f"Document {document_id} was closed while fetching it")
                return
            if not self._change_while_fetching.pop(document_id, False):
                break
            self.logger.info(f"A change occurred while waiting for document {document_id}, requesting it again")

        if document_id is None:
            del self.states[None]
        if not raw or not isinstance(raw.get("id"), int):
            self.logger.warning(f"No document information received for {document_id}")
            self.states.pop(document_id, None)
            return
        document_id = raw["id"]
        if "file" not in raw:
            self.logger.warning(f"File information is missing from document {document_id}")

        try:
            document = Document.from_raw(raw)
        except (StructuralAmbiguityError, KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Unable to build document {document_id}: {e}")
            self.states[document_id] = DocumentState.UNKNOWN
            return

        context = self.contexts.get(document_id)
        if context is None:
            context = DocumentContext(document_id=document_id, asset_generation_enabled=self.enable_by_default)
            self.contexts[document_id] = context
        else:
            self.scheduler.cancel_document(document_id)
            context.reset()
        enabled = extract_enabled(raw.get("generatorSettings"))
        if enabled is not None:
            context.asset_generation_enabled = enabled
        context.document = document
        self.states[document_id] = DocumentState.READY
        await self.process_changes_to_document(context, raw)

    async def set_asset_generation_enabled(self, document_id: int, enabled: bool) -> None:
        """Switch generation on or off. Switching it on regenerates every asset."""
        context = self.contexts.get(document_id)
        if context is None or context.asset_generation_enabled == enabled:
            return
        context.asset_generation_enabled = enabled
        if enabled:
            await self.request_entire_document(document_id)

    def close_document(self, document_id: int) -> None:
        self.logger.info(f"Document {document_id} was closed")
        self.scheduler.cancel_document(document_id)
        context = self.contexts.pop(document_id, None)
        if context is not None and context.writer is not None:
            context.writer.close()
        self.states.pop(document_id, None)
        self._change_while_fetching.pop(document_id, None)

    async def process_changes_to_document(
        self, context: DocumentContext, raw: dict[str, Any], update: DocumentUpdate | None = None
    ) -> None:
        """Bring the context in line with an applied change and schedule the affected layers."""
        if "file" in raw:
            await self.process_path_change(context, raw["file"])
        if "resolution" in raw:
            context.ppi = parse_resolution(raw["resolution"])
        if update is not None and "generatorSettings" in update.document:
            enabled = extract_enabled(raw["generatorSettings"])
            if enabled is not None and enabled != context.asset_generation_enabled:
                await self.set_asset_generation_enabled(context.document_id, enabled)
                return

        futures: list[asyncio.Future[None]] = []
        scheduled: set[int] = set()
        parents: deque[int] = deque()
        for raw_layer in flatten_layer_changes(raw.get("layers", [])):
            layer_id = raw_layer["id"]
            layer_context = context.layer(layer_id)
            new_parent = None if raw_layer.get("removed") else self._parent_layer_id(context, layer_id)
            for parent_id in (layer_context.parent_layer_id, new_parent):
                if parent_id is not None:
                    parents.append(parent_id)
            layer_context.parent_layer_id = new_parent
            futures.append(self.scheduler.schedule(context.document_id, raw_layer))
            scheduled.add(layer_id)

        # A group's assets contain its children, so changes bubble up.
        while parents:
            parent_id = parents.popleft()
            if parent_id in scheduled:
                continue
            scheduled.add(parent_id)
            futures.append(self.scheduler.schedule(context.document_id, {"id": parent_id}))
            grandparent = self._parent_layer_id(context, parent_id)
            if grandparent is not None:
                parents.append(grandparent)

        raw_comps = raw.get("comps")
        if isinstance(raw_comps, list):
            futures.extend(self._schedule_comps(context, raw_comps))

        if futures:
            task = asyncio.ensure_future(self._settle_batch(context, futures))
            self._batches.add(task)
            task.add_done_callback(self._batches.discard)

    def _schedule_comps(self, context: DocumentContext, raw_comps: list[Any]) -> list["asyncio.Future[None]"]:
        """Diff the host's full list of layer comps against the known ones and queue the differences."""
        current = {
            raw_comp["id"]: raw_comp
            for raw_comp in raw_comps
            if isinstance(raw_comp, dict) and isinstance(raw_comp.get("id"), int)
        }
        futures = [
            self.scheduler.remove_comp(context, comp_id) for comp_id in list(context.comps) if comp_id not in current
        ]
        for comp_id, raw_comp in current.items():
            known = context.comps.get(comp_id)
            if known is None or known.raw != raw_comp:
                futures.append(self.scheduler.schedule_comp(context, raw_comp))
        return futures

    def _parent_layer_id(self, context: DocumentContext, layer_id: int) -> int | None:
        if context.document is None:
            return None
        found = context.document.find_layer(layer_id)
        if found is None or found[0].parent is None or found[0].parent.id == ROOT_LAYER_ID:
            return None
        return found[0].parent.id

    async def _settle_batch(self, context: DocumentContext, futures: list["asyncio.Future[None]"]) -> None:
        await asyncio.gather(*futures, return_exceptions=True)
        writer = context.writer
        if writer is None or self.contexts.get(context.document_id) is not context:
            return
        if await asyncio.to_thread(writer.remove_if_empty):
            self.logger.debug(f"Removed empty asset directory of document {context.document_id}")

    async def process_path_change(self, context: DocumentContext, file: str) -> None:
        """Follow a document to a new file path.

        A first save moves the assets generated so far next to the document. A
        "Save As" of a saved document disables generation instead.

        Raises:
            FatalIOError: When the new asset directory cannot be claimed.
        """
        was_saved = context.is_saved
        previous_path = context.path
        previous_dir = context.asset_generation_dir
        update_path_info(context, file, self.config, fallback_directory=self.fallback_directory)

        if previous_path is None or previous_dir is None:
            self._open_writer(context)
            return
        if previous_path == file:
            return
        if was_saved and context.is_saved:
            self.logger.info(f"Document {context.document_id} was saved as {file!r}, disabling asset generation")
            context.asset_generation_enabled = False
            self._open_writer(context)
            return
        if (
            not was_saved
            and context.is_saved
            and str(previous_dir).lower() != str(context.asset_generation_dir).lower()
        ):
            await self.migrate_asset_directory(context, previous_dir)
            return
        self._open_writer(context)

    def _open_writer(self, context: DocumentContext) -> None:
        if context.asset_generation_dir is None:
            return
        if context.writer is not None:
            context.writer.close()
        context.writer = self.writer_factory(context.asset_generation_dir)

    async def migrate_asset_directory(self, context: DocumentContext, previous_dir: Path) -> None:
        """Move generated assets from `previous_dir` to the context's current asset directory."""
        new_dir = context.asset_generation_dir
        if new_dir is None:
            return
        old_writer = context.writer
        self.logger.info(f"Moving assets of document {context.document_id} from {previous_dir} to {new_dir}")
        try:
            await asyncio.to_thread(claim_directory, new_dir)
        except FatalIOError:
            context.asset_generation_enabled = False
            raise
        self._open_writer(context)

        if old_writer is not None:
            await asyncio.to_thread(old_writer.delete_file, ERRORS_FILE_NAME)
        context.error_log.remove_all_errors()
        for layer_id, layer_context in context.layers.items():
            for error in layer_context.errors + layer_context.render_errors:
                context.error_log.add_error(layer_id, layer_context.name, error)
        for comp_id, comp_context in context.comps.items():
            for error in comp_context.errors + comp_context.render_errors:
                context.error_log.add_error(comp_id, comp_context.name, error, source_type=ErrorLog.COMP)

        relative_paths = [path for source in context.sources() for path in source.relative_paths()]
        failed = await asyncio.to_thread(move_assets, previous_dir, new_dir, relative_paths)
        if failed:
            self.logger.warning(f"Could not move {len(failed)} files to {new_dir}")
        if old_writer is not None:
            folders = [folder for source in context.sources() for folder in source.folders()]
            await asyncio.to_thread(old_writer.prune_empty_dirs, folders)
            await asyncio.to_thread(old_writer.remove_if_empty)
        await self.scheduler.report_errors(context)
