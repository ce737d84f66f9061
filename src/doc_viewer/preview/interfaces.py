from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class FileCandidate:
    """A file picked or dropped by the user, not yet accepted."""

    data: bytes
    name: str
    mime_hint: str = ""
    size_bytes: int = -1

    def __post_init__(self) -> None:
        if self.size_bytes < 0:
            object.__setattr__(self, "size_bytes", len(self.data))


@dataclass(frozen=True)
class StoredDocumentRef:
    location_uri: str
    display_name: str


@dataclass(frozen=True)
class ValidationVerdict:
    is_valid: bool
    reason: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class DownloadLink:
    url: str
    filename: str


class DocumentFetcher(Protocol):
    def fetch_bytes(self, location_uri: str) -> bytes:
        """Return the raw content stored at the given location.
        This is a blocking call; callers should offload to threads if needed.
        """


class StorageGateway(Protocol):
    def store(self, candidate: FileCandidate) -> StoredDocumentRef:
        ...


class PagedDocument(Protocol):
    @property
    def page_count(self) -> int:
        ...

    def render_page(self, page_number: int) -> str:
        ...


class PagedRendererGateway(Protocol):
    def parse(self, data: bytes) -> PagedDocument:
        """Parse a paginated document. Blocking."""


class MarkupConverterGateway(Protocol):
    def convert_to_markup(self, data: bytes, filename: str) -> str:
        """Convert a word-processor document into HTML markup. Blocking."""


class ImagePreviewGateway(Protocol):
    def make_preview(self, data: bytes, mime_type: str) -> str:
        """Return a data URL suitable for an inline thumbnail. Blocking."""
