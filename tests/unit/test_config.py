"""Tests for generator settings."""

import json
from pathlib import Path

import pytest

from layer_assets import config
from layer_assets.config import GeneratorConfig, load_config


def test_from_mapping_reads_dashed_keys() -> None:
    """Keys use dashes; unknown keys are ignored."""
    result = GeneratorConfig.from_mapping(
        {"webp-enabled": True, "max-concurrent-updates": 2, "debounce-delay": 0.5, "css-enabled": True}
    )

    assert result.webp_enabled is True
    assert result.max_concurrent_updates == 2
    assert result.debounce_delay == 0.5
    assert result.svg_enabled is True


@pytest.mark.parametrize(
    "data",
    [
        {"svg-enabled": "yes"},
        {"max-concurrent-updates": 0},
        {"max-concurrent-updates": True},
        {"debounce-delay": -1},
        {"asset-generation-dir": 3},
    ],
)
def test_from_mapping_rejects_bad_values(data: dict[str, object]) -> None:
    """Values of the wrong type are refused."""
    with pytest.raises(ValueError, match="Bad value for config key"):
        GeneratorConfig.from_mapping(data)


def test_load_explicit_path(tmp_path: Path) -> None:
    """An explicit config file is read."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"asset-generation-dir": "export"}))

    assert load_config(path).asset_generation_dir == "export"


def test_load_requires_object(tmp_path: Path) -> None:
    """The file must hold a JSON object."""
    path = tmp_path / "config.json"
    path.write_text("[]")

    with pytest.raises(ValueError, match="must contain a JSON object"):
        load_config(path)


def test_load_first_existing_default(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Without a path, the first existing standard location wins."""
    second = tmp_path / "second.json"
    second.write_text(json.dumps({"use-smart-scaling": True}))
    monkeypatch.setattr(config, "CONFIG_FILES", [tmp_path / "missing.json", second])

    assert load_config().use_smart_scaling is True


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """No config file means default settings."""
    monkeypatch.setattr(config, "CONFIG_FILES", [tmp_path / "missing.json"])

    assert load_config() == GeneratorConfig()
