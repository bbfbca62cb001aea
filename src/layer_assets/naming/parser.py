"""Parser for the layer name mini-language.

A layer name is a list of items separated by "," or "+". Each item is either a
file description, optionally prefixed by a relative scale or an absolute size
and a canvas directive::

    50% icon.png-8
    100x? lo-res/icon.jpg-90%
    [32x32+2-4] icon.png

or, when the name starts with the "default" keyword, a template contributing
a scale, folders and a file name suffix to every other component of the document::

    default 200% @2x + 50% small/

Anything that cannot be read as a file description becomes a plain-name
component. Only a small set of violations inside otherwise well-formed file
descriptions raise LayerNameParseError.
"""

import re

from layer_assets.exceptions import LayerNameParseError
from layer_assets.models.component import Component

_NUMBER = r"(?:\d+(?:\.\d+)?|\.\d+)"

_SCALE_RE = re.compile(rf"({_NUMBER})%\s*")

# Each dimension is a number with an optional glued unit, or "?" for "keep aspect ratio".
_SIZE_RE = re.compile(
    rf"(?:({_NUMBER})([a-zA-Z]+)?|\?)\s*x\s*(?:({_NUMBER})([a-zA-Z]+)?|\?)\s+"
)

_CANVAS_RE = re.compile(r"\[(\d+)(?:x(\d+))?(?:([+-]\d+)([+-]\d+))?\]\s*")

# Extension, followed by an optional quality glued to it: "-90", "-90%", "90%", "8", "24a".
_EXTENSION_RE = re.compile(r"([a-zA-Z]+)(?:-?(\d+a|\d+%?))?")

_DEFAULT_RE = re.compile(r"default(?:\s+|$)")

INVALID_FILE_CHARS = '=<>:"\\|?*'
_INVALID_FILE_CHARS_RE = re.compile("[" + re.escape(INVALID_FILE_CHARS) + "]")


def parse_layer_name(layer_name: str) -> list[Component]:
    """Parse a layer name into its components.

    Never returns an empty list: a name without any usable item yields a
    single plain-name component.

    Raises:
        LayerNameParseError: For NUL characters and malformed folder paths.
    """
    if "\0" in layer_name:
        msg = "Layer name contains a NUL character"
        raise LayerNameParseError(msg)

    text = layer_name.strip()
    is_default = _DEFAULT_RE.match(text) is not None
    if is_default:
        text = text[len("default") :]

    items = [item.strip() for item in _split_items(text)]
    items = [item for item in items if item]
    if not items:
        if is_default:
            return [Component(name=layer_name.strip(), default=True)]
        return [Component(name=layer_name)]

    if is_default:
        return [_parse_default_item(item) for item in items]
    return [_parse_item(item) for item in items]


def _split_items(text: str) -> list[str]:
    """Split on "," and "+" outside of canvas brackets."""
    items: list[str] = []
    depth = 0
    start = 0
    for pos, char in enumerate(text):
        if char == "[":
            depth += 1
        elif char == "]" and depth:
            depth -= 1
        elif char in ",+" and not depth:
            items.append(text[start:pos])
            start = pos + 1
    items.append(text[start:])
    return items


def _to_number(text: str) -> int | float:
    value = float(text)
    return int(value) if value.is_integer() else value


def _parse_prefix(item: str) -> tuple[dict[str, object], str]:
    """Consume an optional scale or size, then an optional canvas directive."""
    props: dict[str, object] = {}
    rest = item

    size = _SIZE_RE.match(rest)
    scale = _SCALE_RE.match(rest)
    if size:
        width, width_unit, height, height_unit = size.groups()
        if width is not None:
            props["width"] = _to_number(width)
            if width_unit:
                props["width_unit"] = width_unit
        if height is not None:
            props["height"] = _to_number(height)
            if height_unit:
                props["height_unit"] = height_unit
        rest = rest[size.end() :]
    elif scale:
        props["scale"] = float(scale.group(1)) / 100
        rest = rest[scale.end() :]

    canvas = _CANVAS_RE.match(rest)
    if canvas:
        canvas_width, canvas_height, offset_x, offset_y = canvas.groups()
        props["canvas_width"] = int(canvas_width)
        props["canvas_height"] = int(canvas_height if canvas_height is not None else canvas_width)
        if offset_x is not None:
            props["canvas_offset_x"] = int(offset_x)
            props["canvas_offset_y"] = int(offset_y)
        rest = rest[canvas.end() :]

    return props, rest


def _split_folders(path: str, *, what: str) -> tuple[tuple[str, ...], str]:
    """Split "a/b/leaf" into (("a", "b"), "leaf"), validating every folder."""
    if "/" not in path:
        return (), path
    *folders, leaf = path.split("/")
    for folder in folders:
        if not folder:
            msg = f"Folder name must not be empty in {path!r}"
            raise LayerNameParseError(msg)
        if folder.startswith("."):
            msg = f"Folder name must not start with a dot in {path!r}"
            raise LayerNameParseError(msg)
    if leaf[:1].isspace():
        msg = f"{what} begins with whitespace in {path!r}"
        raise LayerNameParseError(msg)
    if leaf.startswith("."):
        msg = f"{what} must not start with a dot in {path!r}"
        raise LayerNameParseError(msg)
    return tuple(_sanitize(folder) for folder in folders), leaf


def _sanitize(text: str) -> str:
    return _INVALID_FILE_CHARS_RE.sub("_", text)


def _parse_item(item: str) -> Component:
    props, rest = _parse_prefix(item)

    dot = rest.rfind(".")
    if dot <= 0 or rest[dot - 1] == "/":
        return Component(name=item)
    tail = _EXTENSION_RE.fullmatch(rest[dot + 1 :])
    if tail is None:
        return Component(name=item)
    extension, quality = tail.groups()

    folder, base = _split_folders(rest[:dot], what="File name")
    return Component(
        name=item,
        file=_sanitize(f"{base}.{extension}"),
        written_file=f"{base}.{extension}",
        extension=extension.lower(),
        quality=quality,
        folder=folder,
        **props,  # type: ignore[arg-type]
    )


def _parse_default_item(item: str) -> Component:
    props, rest = _parse_prefix(item)
    folder, suffix = _split_folders(rest, what="Suffix")
    return Component(
        name=item,
        folder=folder,
        suffix=_sanitize(suffix) or None,
        default=True,
        **props,  # type: ignore[arg-type]
    )
