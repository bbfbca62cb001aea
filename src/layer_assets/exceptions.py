"""Exception hierarchy for asset generation."""


class AssetsError(Exception):
    """Base class for all errors raised by this package."""


class LayerNameParseError(AssetsError):
    """A layer name violates the naming grammar in a detectable way."""


class StructuralAmbiguityError(AssetsError):
    """A change refers to layers or shapes the tree cannot reconcile."""


class StaleChangeError(AssetsError):
    """A change is not newer than the document it is applied to."""


class RenderError(AssetsError):
    """The host failed to render or save one component."""


class FatalIOError(AssetsError):
    """A file system operation failed in a way that needs user intervention."""


class ExportError(AssetsError):
    """An on-demand export could not be carried out."""
