"""Normalization and validation of parsed components."""

from collections.abc import Iterable

from layer_assets.config import SUPPORTED_UNITS, GeneratorConfig
from layer_assets.exceptions import LayerNameParseError
from layer_assets.models.component import AssetSpec, Component
from layer_assets.naming.parser import INVALID_FILE_CHARS, parse_layer_name

_QUALITY_PERCENT_EXTENSIONS = ("jpg", "webp")


def supported_extensions(config: GeneratorConfig) -> set[str]:
    extensions = {"jpg", "png", "gif"}
    if config.svg_enabled:
        extensions.add("svg")
    if config.webp_enabled:
        extensions.add("webp")
    return extensions


def normalize(component: Component) -> tuple[Component, list[str]]:
    """Lower-case extension and units and turn quality into a number.

    Returns the normalized component and the errors found while normalizing
    the quality. The quality is left untouched when it cannot be normalized.
    """
    changes: dict[str, object] = {}
    extension = component.extension
    if extension is not None:
        extension = extension.lower()
        if extension == "jpeg":
            extension = "jpg"
        changes["extension"] = extension
    if component.width_unit is not None:
        changes["width_unit"] = component.width_unit.lower()
    if component.height_unit is not None:
        changes["height_unit"] = component.height_unit.lower()

    errors: list[str] = []
    quality = component.quality
    if quality is not None and not isinstance(quality, int):
        if extension in _QUALITY_PERCENT_EXTENSIONS:
            number, error = _jpg_quality(quality)
        elif extension == "png":
            number, error = _png_quality(quality)
        else:
            number = None
            error = f'There should not be a quality setting for files with the extension "{extension}"'
        if error is not None:
            errors.append(error)
        if number is not None:
            changes["quality"] = number

    return component.with_changes(**changes), errors


def _jpg_quality(quality: str) -> tuple[int | None, str | None]:
    if quality.endswith("%"):
        value = int(quality[:-1])
        if not 1 <= value <= 100:
            return None, f'Quality must be between 1% and 100% (is {quality})'
        return value, None
    if quality.isdigit():
        value = int(quality)
        if not 1 <= value <= 10:
            return None, f'Quality must be between 1 and 10 (is {quality})'
        return value * 10, None
    return None, f'Quality must be between 1 and 10 (is {quality})'


def _png_quality(quality: str) -> tuple[int | None, str | None]:
    # "NNa" asks for an alpha channel on top of NN bits.
    if quality.endswith("a") and quality[:-1].isdigit():
        value = int(quality[:-1]) + 8
    elif quality.isdigit():
        value = int(quality)
    else:
        value = None
    if value in (8, 24, 32):
        return value, None
    return None, f'PNG quality must be 8, 24 or 32 (is {quality})'


def analyze_component(component: Component, config: GeneratorConfig | None = None) -> AssetSpec:
    """Normalize a component and collect its validation errors."""
    config = config or GeneratorConfig()
    normalized, quality_errors = normalize(component)
    errors: list[str] = []

    if normalized.scale == 0:
        errors.append("Cannot scale an image to 0%")
    if normalized.width == 0:
        errors.append("Cannot set an image width to 0")
    if normalized.height == 0:
        errors.append("Cannot set an image height to 0")

    if normalized.width_unit is not None and normalized.width_unit not in SUPPORTED_UNITS:
        errors.append(f'Unsupported image width unit "{normalized.width_unit}"')
    if normalized.height_unit is not None and normalized.height_unit not in SUPPORTED_UNITS:
        errors.append(f'Unsupported image height unit "{normalized.height_unit}"')

    if normalized.extension is not None and normalized.extension not in supported_extensions(config):
        errors.append(f'Unsupported extension "{normalized.extension}"')
    else:
        errors.extend(quality_errors)

    written_file = normalized.written_file or normalized.file
    if written_file is not None:
        for char in written_file:
            if char in INVALID_FILE_CHARS or char == "/" or char == "\0":
                errors.append(f'File name contains invalid character "{char}"')
                break

    return AssetSpec(component=normalized, errors=tuple(errors))


def analyze_layer_name(layer_name: str, config: GeneratorConfig | None = None) -> list[AssetSpec]:
    """Parse and analyze a layer name.

    Parse errors do not propagate: they degrade to a single plain-name
    component carrying the parse error.
    """
    try:
        components = parse_layer_name(layer_name)
    except LayerNameParseError as e:
        return [AssetSpec(component=Component(name=layer_name), errors=(str(e),))]
    return [analyze_component(component, config) for component in components]


def valid_file_components(specs: Iterable[AssetSpec]) -> list[AssetSpec]:
    """Return the specs that produce a file."""
    return [spec for spec in specs if spec.is_valid and spec.component.file is not None]


def collect_errors(specs: Iterable[AssetSpec]) -> list[str]:
    """Return all errors, prefixed with the name of the component they belong to."""
    return [f"{spec.component.name}: {error}" for spec in specs for error in spec.errors]
