"""Configuration constants and generator settings."""

import json
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

# Quiet period after the last change to a layer before its assets are regenerated.
DELAY_TO_WAIT_UNTIL_USER_DONE: float = 0.3

# How many "-old", "-old-2", ... names to try before giving up on a directory rename.
MAX_DIR_RENAME_ATTEMPTS: int = 1000

# Longest file path the platform accepts, asset directory included.
MAX_PATH_LENGTH: int = 255 if sys.platform == "darwin" else 260

DEFAULT_PPI: float = 72.0

ERRORS_FILE_NAME: str = "errors.txt"

# Where assets of unsaved documents go.
FALLBACK_BASE_DIRECTORY: Path = Path("~/Desktop").expanduser()

SUPPORTED_UNITS: tuple[str, ...] = ("in", "cm", "px", "mm")

# Key of this tool's settings inside a document's generatorSettings.
PLUGIN_ID: str = "generator-assets"

# Generator config location. First file found is used.
CONFIG_FILES: list[Path] = [
    Path("~/.config/layer-assets/config.json").expanduser(),
    Path("~/.layer-assets.json").expanduser(),
]


@dataclass(frozen=True)
class GeneratorConfig:
    """Recognized generator settings, keyed by their dashed names in JSON."""

    svg_enabled: bool = True
    webp_enabled: bool = False
    asset_generation_dir: str | None = None
    use_smart_scaling: bool = False
    include_ancestor_masks: bool = False
    max_concurrent_updates: int | None = None
    debounce_delay: float = field(default=DELAY_TO_WAIT_UNTIL_USER_DONE)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "GeneratorConfig":
        """Build a config from a JSON object, ignoring unknown keys."""
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            key = f.name.replace("_", "-")
            if key not in data:
                continue
            value = data[key]
            if not _type_matches(f.name, value):
                msg = f"Bad value for config key {key!r}: {value!r}"
                raise ValueError(msg)
            kwargs[f.name] = value
        return cls(**kwargs)


def _type_matches(name: str, value: Any) -> bool:
    if name in ("svg_enabled", "webp_enabled", "use_smart_scaling", "include_ancestor_masks"):
        return isinstance(value, bool)
    if name == "asset_generation_dir":
        return value is None or isinstance(value, str)
    if name == "max_concurrent_updates":
        return value is None or (isinstance(value, int) and not isinstance(value, bool) and value > 0)
    if name == "debounce_delay":
        return isinstance(value, int | float) and not isinstance(value, bool) and value >= 0
    return False


def load_config(path: Path | None = None) -> GeneratorConfig:
    """Load generator settings from `path` or the first existing CONFIG_FILES entry.

    An explicit path must exist. Otherwise defaults are returned when no file is found.
    """
    if path is not None:
        return _read_config(path)
    for candidate in CONFIG_FILES:
        if candidate.is_file():
            return _read_config(candidate)
    return GeneratorConfig()


def _read_config(path: Path) -> GeneratorConfig:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        msg = f"Config file {str(path)!r} must contain a JSON object"
        raise ValueError(msg)
    return GeneratorConfig.from_mapping(data)
