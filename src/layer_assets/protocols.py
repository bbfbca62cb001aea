"""Protocols for dependency injection of the host and the file system."""

from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class HostProtocol(Protocol):
    """Protocol for the image-editing host that owns the documents."""

    async def get_document_info(
        self, document_id: int | None = None, flags: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Return the full raw description of a document (the active one if no id is given)."""
        ...

    async def get_pixmap(self, document_id: int, layer_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        """Render a layer. Returns {"pixmap": ..., "bounds": {...}}."""
        ...

    async def get_document_pixmap(self, document_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        """Render the whole document, in the layer comp named by settings["compId"] if given."""
        ...

    async def get_svg(self, document_id: int, layer_id: int, scale: float) -> str:
        """Render a layer as SVG text."""
        ...

    async def save_pixmap(self, pixmap: Any, path: str, settings: dict[str, Any]) -> None:
        """Encode a pixmap to a file (format, quality, ppi, padding)."""
        ...

    async def get_open_document_ids(self) -> list[int]:
        """Return ids of all open documents."""
        ...


@runtime_checkable
class WriterProtocol(Protocol):
    """Protocol for writers owning one asset directory."""

    def write_text(self, fname_rel: str, contents: str) -> None:
        """Write a text file relative to the asset directory."""
        ...

    def append_text(self, fname_rel: str, contents: str) -> None:
        """Append to a text file relative to the asset directory."""
        ...

    def temp_path(self, fname_rel: str) -> Path:
        """Return a scratch path the host can save a rendition of `fname_rel` to."""
        ...

    def move_file(self, source: Path, fname_rel: str) -> None:
        """Move a finished file into the asset directory."""
        ...

    def discard_temp(self, path: Path) -> None:
        """Remove a scratch file that was not moved into the asset directory."""
        ...

    def delete_file(self, fname_rel: str) -> bool:
        """Delete a file. Returns False if it did not exist."""
        ...

    def prune_empty_dirs(self, dirs_rel: list[str]) -> list[str]:
        """Remove the given folders, deepest first, if they are empty."""
        ...

    def remove_if_empty(self) -> bool:
        """Remove the asset directory itself if it is empty."""
        ...

    def close(self) -> None:
        """Release scratch space. Called when the writer is replaced or its document closes."""
        ...


@runtime_checkable
class EventSourceProtocol(HostProtocol, Protocol):
    """A host that also hands out its document change events."""

    async def get_change_events(self) -> list[dict[str, Any]]:
        """Return the change events queued since the previous call."""
        ...
