class PreviewError(Exception):
    """Base for failures raised while accepting or previewing a document.

    `reason` is a short stable category ("too large", "download failed", ...);
    `message` is the text shown to the user.
    """

    kind = "preview"

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason


class ValidationError(PreviewError):
    kind = "validation"


class LoadError(PreviewError):
    kind = "load"


class FormatError(PreviewError):
    kind = "format"


class ConversionError(PreviewError):
    kind = "conversion"


class RenderError(PreviewError):
    kind = "render"


class ActionUnavailableError(ValueError):
    """Raised when a viewer action is requested in a state that does not offer it."""
