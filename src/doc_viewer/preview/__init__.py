"""
Domain layer for document intake and preview.
Provides the intake gate, the format classifier, the preview engine state
machine and the gateways it talks to, so front-ends (HTTP or others) can use
the same core logic.
"""

from .classifier import FormatClass, classify
from .errors import (
    ActionUnavailableError,
    ConversionError,
    FormatError,
    LoadError,
    PreviewError,
    RenderError,
    ValidationError,
)
from .intake import IntakeCallbacks, IntakeConfig, IntakeDisplayState, IntakeGate
from .interfaces import (
    DocumentFetcher,
    DownloadLink,
    FileCandidate,
    ImagePreviewGateway,
    MarkupConverterGateway,
    PagedRendererGateway,
    StorageGateway,
    StoredDocumentRef,
    ValidationVerdict,
)
from .service import ErrorDetail, PreviewAction, PreviewEngine, PreviewPhase, PreviewSession
from .surface import KeyBindings, PreviewSurface
