"""Fake implementations for testing asset generation."""

import asyncio
import copy
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from layer_assets.core.reconciler import ReconciliationService
    from layer_assets.core.scheduler import LayerUpdateScheduler


class FakeHost:
    """In-memory fake for HostApi.

    Serves predefined documents and layer bounds and records all calls for assertions.
    """

    def __init__(self) -> None:
        self.documents: dict[int, dict[str, Any]] = {}
        self.active_document_id: int | None = None
        self.layer_bounds: dict[int, dict[str, int]] = {}
        self.failing_layers: set[int] = set()
        self.failing_comps: set[int] = set()
        self.document_bounds: dict[str, int] = {"top": 0, "left": 0, "bottom": 100, "right": 200}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.saved: dict[str, tuple[Any, dict[str, Any]]] = {}
        # Batches handed out by get_change_events, one per call.
        self.event_batches: list[list[dict[str, Any]]] = []
        # When set, document and pixmap requests wait for it.
        self.gate: asyncio.Event | None = None

    def add_document(self, raw: dict[str, Any]) -> None:
        """Register a document, which also becomes the active one."""
        self.documents[raw["id"]] = raw
        self.active_document_id = raw["id"]

    async def get_document_info(
        self, document_id: int | None = None, flags: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        self.calls.append(("get_document_info", (document_id,)))
        if self.gate is not None:
            await self.gate.wait()
        key = document_id if document_id is not None else self.active_document_id
        return copy.deepcopy(self.documents[key]) if key in self.documents else {}

    async def get_pixmap(self, document_id: int, layer_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("get_pixmap", (document_id, layer_id, settings)))
        if self.gate is not None:
            await self.gate.wait()
        if layer_id in self.failing_layers and not settings.get("boundsOnly"):
            msg = f"cannot render layer {layer_id}"
            raise RuntimeError(msg)
        bounds = self.layer_bounds.get(layer_id, {"top": 0, "left": 0, "bottom": 10, "right": 10})
        reply: dict[str, Any] = {"bounds": bounds}
        if not settings.get("boundsOnly"):
            reply["pixmap"] = f"pixmap-{layer_id}"
        return reply

    async def get_document_pixmap(self, document_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("get_document_pixmap", (document_id, settings)))
        comp_id = settings.get("compId")
        if comp_id in self.failing_comps and not settings.get("boundsOnly"):
            msg = f"cannot render comp {comp_id}"
            raise RuntimeError(msg)
        reply: dict[str, Any] = {"bounds": self.document_bounds}
        if not settings.get("boundsOnly"):
            reply["pixmap"] = f"document-{document_id}" if comp_id is None else f"comp-{comp_id}"
        return reply

    async def get_svg(self, document_id: int, layer_id: int, scale: float) -> str:
        self.calls.append(("get_svg", (document_id, layer_id, scale)))
        if layer_id in self.failing_layers:
            msg = f"cannot render layer {layer_id}"
            raise RuntimeError(msg)
        return f"<svg id='{layer_id}'/>"

    async def save_pixmap(self, pixmap: Any, path: str, settings: dict[str, Any]) -> None:
        self.calls.append(("save_pixmap", (pixmap, path, settings)))
        Path(path).write_text(str(pixmap), encoding="utf-8")
        self.saved[path] = (pixmap, settings)

    async def get_open_document_ids(self) -> list[int]:
        self.calls.append(("get_open_document_ids", ()))
        return list(self.documents)

    async def get_change_events(self) -> list[dict[str, Any]]:
        self.calls.append(("get_change_events", ()))
        return self.event_batches.pop(0) if self.event_batches else []

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeWriter:
    """In-memory fake for AssetWriter.

    Stores files in a dict keyed by their relative path.
    """

    def __init__(self, datadir: Path | str = "assets", tmp_dir: Path | None = None) -> None:
        self.datadir = str(datadir)
        self.files: dict[str, str] = {}
        self.dirs_pruned: list[list[str]] = []
        self.removed = False
        self.closed = False
        self.discarded: list[Path] = []
        self._tmp_dir = tmp_dir
        self._tmp_count = 0

    def write_text(self, fname_rel: str, contents: str) -> None:
        self.files[fname_rel] = contents

    def append_text(self, fname_rel: str, contents: str) -> None:
        self.files[fname_rel] = self.files.get(fname_rel, "") + contents

    def temp_path(self, fname_rel: str) -> Path:
        """Return a fresh scratch file path; requires `tmp_dir`."""
        if self._tmp_dir is None:
            msg = "FakeWriter: no tmp_dir for temp_path()"
            raise RuntimeError(msg)
        self._tmp_count += 1
        return self._tmp_dir / f"tmp-{self._tmp_count}{Path(fname_rel).suffix}"

    def move_file(self, source: Path, fname_rel: str) -> None:
        self.files[fname_rel] = source.read_text(encoding="utf-8")
        source.unlink()

    def discard_temp(self, path: Path) -> None:
        if path.exists():
            self.discarded.append(path)
            path.unlink()

    def delete_file(self, fname_rel: str) -> bool:
        return self.files.pop(fname_rel, None) is not None

    def prune_empty_dirs(self, dirs_rel: list[str]) -> list[str]:
        self.dirs_pruned.append(list(dirs_rel))
        return []

    def remove_if_empty(self) -> bool:
        if self.files:
            return False
        self.removed = True
        return True

    def close(self) -> None:
        self.closed = True


class FakeTimer:
    """Manually fired timer factory.

    Call it like `loop.call_later(delay, callback)`; nothing happens until
    `fire_all()` runs the callbacks of all timers not cancelled.
    """

    def __init__(self) -> None:
        self.handles: list[FakeTimerHandle] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> "FakeTimerHandle":
        handle = FakeTimerHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self) -> list["FakeTimerHandle"]:
        return [handle for handle in self.handles if not handle.cancelled and not handle.fired]

    def fire_all(self) -> int:
        """Fire all active timers. Returns how many fired."""
        handles = self.active
        for handle in handles:
            handle.fire()
        return len(handles)


class FakeTimerHandle:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


async def settle_updates(scheduler: "LayerUpdateScheduler", timer: FakeTimer) -> None:
    """Fire debounce timers until no layer update is pending."""
    while True:
        pending = scheduler.pending()
        if not pending:
            return
        timer.fire_all()
        await asyncio.wait(pending, timeout=0.05)


async def settle(service: "ReconciliationService", timer: FakeTimer) -> None:
    """Run all scheduled layer updates of a service and wait for their batches."""
    await settle_updates(service.scheduler, timer)
    await service.wait_idle()
