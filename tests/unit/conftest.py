"""Shared test fixtures."""

import copy
from pathlib import Path
from typing import Any

import pytest

from layer_assets.config import GeneratorConfig
from layer_assets.core.reconciler import ReconciliationService
from tests.unit.fakes import FakeHost, FakeTimer, FakeWriter

# Flat indices, bottom up: 0 background, 1 end of "icons", 2 "small", 3 "icon", 4 "icons".
SAMPLE_DOCUMENT: dict[str, Any] = {
    "id": 7,
    "count": 1,
    "timeStamp": 100.0,
    "version": "1.0",
    "file": "/Users/me/design.psd",
    "resolution": 72,
    "bounds": {"top": 0, "left": 0, "bottom": 100, "right": 200},
    "layers": [
        {
            "id": 4,
            "index": 4,
            "type": "layerSection",
            "name": "icons",
            "visible": True,
            "layers": [
                {
                    "id": 3,
                    "index": 3,
                    "type": "layer",
                    "name": "icon.png",
                    "visible": True,
                    "bounds": {"top": 10, "left": 10, "bottom": 42, "right": 42},
                },
                {
                    "id": 2,
                    "index": 2,
                    "type": "layer",
                    "name": "50% small/icon.jpg-8",
                    "visible": True,
                    "bounds": {"top": 50, "left": 50, "bottom": 70, "right": 90},
                },
            ],
        },
        {
            "id": 1,
            "index": 0,
            "type": "backgroundLayer",
            "name": "Background",
            "visible": True,
            "bounds": {"top": 0, "left": 0, "bottom": 100, "right": 200},
        },
    ],
}


@pytest.fixture
def sample_document() -> dict[str, Any]:
    """A fresh copy of SAMPLE_DOCUMENT."""
    return copy.deepcopy(SAMPLE_DOCUMENT)


@pytest.fixture
def fake_host(sample_document: dict[str, Any]) -> FakeHost:
    """FakeHost serving the sample document."""
    host = FakeHost()
    host.add_document(sample_document)
    return host


@pytest.fixture
def fake_timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def writers(tmp_path: Path) -> dict[str, FakeWriter]:
    """FakeWriters created by the service, keyed by asset directory."""
    return {}


@pytest.fixture
def service(
    fake_host: FakeHost, fake_timer: FakeTimer, writers: dict[str, FakeWriter], tmp_path: Path
) -> ReconciliationService:
    """ReconciliationService with fake host, writers and timers, generating by default."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    def writer_factory(datadir: Path) -> FakeWriter:
        writer = FakeWriter(datadir, tmp_dir=scratch)
        writers[str(datadir)] = writer
        return writer

    return ReconciliationService(
        fake_host,
        GeneratorConfig(),
        writer_factory=writer_factory,
        timer_factory=fake_timer,
        enable_by_default=True,
        fallback_directory=tmp_path / "desktop",
    )
