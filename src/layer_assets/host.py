"""Client for the image-editing host, spoken to as JSON over HTTP."""

import asyncio
import json
import logging
from typing import Any

import requests


class HostApi:
    """Host queries over HTTP.

    Every method POSTs a JSON object to `{base_url}/{method}` and reads a JSON
    object back. The blocking requests run in a worker thread so that the event
    loop keeps processing change events.
    """

    def __init__(self, base_url: str, *, timeout: float | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.sess = requests.Session()
        self.logger = logging.getLogger("host")
        self.logger.debug(f"Host API ready: {self.base_url!r}")

    def call(self, method: str, args: dict[str, Any]) -> Any:
        """Invoke a host method, return the "result" member of the reply."""
        self.logger.debug(f"Making request: {method!r} {repr(args)[:48]}")
        r = self.sess.post(
            f"{self.base_url}/{method}",
            json.dumps(args),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        r.raise_for_status()
        rv: dict[str, Any] = r.json()
        if rv.get("error"):
            msg = f"Host call failed: ({method!r}, {repr(args)[:48]}) -> {rv['error']!r}"
            raise RuntimeError(msg)
        return rv.get("result")

    async def _call(self, method: str, args: dict[str, Any]) -> Any:
        return await asyncio.to_thread(self.call, method, args)

    async def get_document_info(
        self, document_id: int | None = None, flags: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        args: dict[str, Any] = {"flags": flags or {}}
        if document_id is not None:
            args["documentId"] = document_id
        return await self._call("getDocumentInfo", args) or {}

    async def get_pixmap(self, document_id: int, layer_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        return await self._call(
            "getPixmap", {"documentId": document_id, "layerId": layer_id, "settings": settings}
        )

    async def get_document_pixmap(self, document_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        return await self._call("getDocumentPixmap", {"documentId": document_id, "settings": settings})

    async def get_svg(self, document_id: int, layer_id: int, scale: float) -> str:
        result = await self._call("getSVG", {"documentId": document_id, "layerId": layer_id, "scale": scale})
        return result if isinstance(result, str) else result["svgText"]

    async def save_pixmap(self, pixmap: Any, path: str, settings: dict[str, Any]) -> None:
        await self._call("savePixmap", {"pixmap": pixmap, "path": path, "settings": settings})

    async def get_open_document_ids(self) -> list[int]:
        return list(await self._call("getOpenDocumentIDs", {}) or [])

    async def get_change_events(self) -> list[dict[str, Any]]:
        """Change events the host queued since the previous call, oldest first."""
        return list(await self._call("getChangeEvents", {}) or [])
