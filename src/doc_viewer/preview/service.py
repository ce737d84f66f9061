import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import quote

from .. import config
from .classifier import FormatClass, classify
from .errors import (
    ActionUnavailableError,
    ConversionError,
    FormatError,
    LoadError,
    PreviewError,
    RenderError,
)
from .interfaces import (
    DocumentFetcher,
    DownloadLink,
    MarkupConverterGateway,
    PagedDocument,
    PagedRendererGateway,
    StoredDocumentRef,
)

log = logging.getLogger(__name__)


class PreviewPhase(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class PreviewAction(str, enum.Enum):
    RETRY = "retry"
    DOWNLOAD = "download"
    OPEN_EXTERNALLY = "open_externally"
    NEXT_PAGE = "next_page"
    PREVIOUS_PAGE = "previous_page"


@dataclass(frozen=True)
class ErrorDetail:
    kind: str
    reason: str
    message: str

    @classmethod
    def from_error(cls, err: PreviewError) -> "ErrorDetail":
        return cls(kind=err.kind, reason=err.reason, message=err.message)


@dataclass
class PreviewSession:
    reference: StoredDocumentRef | None = None
    format_class: FormatClass | None = None
    generation: int = 0
    phase: PreviewPhase = PreviewPhase.IDLE
    error: ErrorDetail | None = None
    current_page: int = 1
    total_pages: int | None = None
    converted_markup: str | None = None
    document: PagedDocument | None = field(default=None, repr=False)

    @property
    def unsupported(self) -> bool:
        return self.reference is not None and self.format_class is FormatClass.UNKNOWN


# User-facing wording for each failure category.
MESSAGES = {
    "empty file": "The file is empty and cannot be processed.",
    "corrupted or incomplete": "The file appears to be corrupted or incomplete.",
    "empty or corrupted document": "The document appears to be empty or corrupted.",
    "invalid format": "Invalid document format. The file may be corrupted or not a valid Word document.",
    "download failed": "Failed to download the file. Please try again.",
    "conversion failed": "Failed to convert the document.",
    "load failed": "There was an error loading the document. Please try again.",
    "timed out": "The document took too long to load. Please try again.",
}

# Message fragments of converter failures, checked in order.
_CONVERSION_SIGNATURES: list[tuple[str, tuple[str, ...]]] = [
    ("invalid format", (
        "end of central directory",
        "not a zip file",
        "bad magic number",
        "package not found",
        "file format not allowed",
    )),
    ("download failed", ("http error", "connection", "download")),
]


def categorize_conversion_failure(exc: BaseException) -> ConversionError:
    text = f"{type(exc).__name__}: {exc}".lower()
    for reason, needles in _CONVERSION_SIGNATURES:
        if any(n in text for n in needles):
            return ConversionError(reason, MESSAGES[reason])
    return ConversionError("conversion failed", MESSAGES["conversion failed"])


class PreviewEngine:
    """Drives one preview session at a time through Idle/Loading/Ready/Error.

    Adapter work runs as background tasks tagged with the session generation
    they were started for. A completion whose generation no longer matches
    the live session is dropped, so switching documents never lets an old
    result land on the new one.
    """

    def __init__(
        self,
        fetcher: DocumentFetcher,
        paged_renderer: PagedRendererGateway,
        markup_converter: MarkupConverterGateway,
        *,
        adapter_timeout: float | None = config.ADAPTER_TIMEOUT_SEC,
        min_document_bytes: int = config.MIN_DOCUMENT_BYTES,
        online_viewer_url: str = config.ONLINE_VIEWER_URL,
    ) -> None:
        self._fetcher = fetcher
        self._paged_renderer = paged_renderer
        self._markup_converter = markup_converter
        self._adapter_timeout = adapter_timeout
        self._min_document_bytes = min_document_bytes
        self._online_viewer_url = online_viewer_url
        self._generation = 0
        self._session = PreviewSession()
        self._tasks: set[asyncio.Task] = set()

    @property
    def session(self) -> PreviewSession:
        return self._session

    async def set_reference(self, ref: StoredDocumentRef | None) -> None:
        self._generation += 1
        if ref is None:
            self._session = PreviewSession(generation=self._generation)
            log.debug("Session %d idle", self._generation)
            return

        fmt = classify(ref.display_name)
        self._session = PreviewSession(reference=ref, format_class=fmt, generation=self._generation)
        if fmt is FormatClass.UNKNOWN:
            # nothing to process; show the download-only display
            self._session.phase = PreviewPhase.READY
            log.debug("Session %d: %s is not previewable", self._generation, ref.display_name)
            return
        self._start(self._session)

    async def retry(self) -> bool:
        prev = self._session
        if prev.phase is not PreviewPhase.ERROR:
            return False
        self._generation += 1
        self._session = PreviewSession(
            reference=prev.reference,
            format_class=prev.format_class,
            generation=self._generation,
        )
        log.info("Retrying %s (session %d)", prev.reference.display_name if prev.reference else "?", self._generation)
        self._start(self._session)
        return True

    def _start(self, session: PreviewSession) -> None:
        if session.reference is None:
            raise ActionUnavailableError("no document to load")
        session.phase = PreviewPhase.LOADING
        if session.format_class is FormatClass.IMAGE:
            # the embedding surface reports the real outcome via image_loaded/image_failed
            session.phase = PreviewPhase.READY
            return
        task = asyncio.create_task(
            self._run(session.generation, session.reference, session.format_class)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, generation: int, ref: StoredDocumentRef, fmt: FormatClass | None) -> None:
        try:
            if fmt is FormatClass.PAGED_DOCUMENT:
                document = await self._load_paged(ref)
                self._apply(generation, document=document)
            else:
                markup = await self._load_convertible(ref)
                self._apply(generation, markup=markup)
        except PreviewError as e:
            log.warning("Preview of %s failed: %s (%s)", ref.display_name, e.reason, e)
            self._apply(generation, error=ErrorDetail.from_error(e))

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        coro = asyncio.to_thread(fn, *args)
        if self._adapter_timeout is None:
            return await coro
        return await asyncio.wait_for(coro, self._adapter_timeout)

    async def _fetch(self, ref: StoredDocumentRef) -> bytes:
        try:
            return await self._call(self._fetcher.fetch_bytes, ref.location_uri)
        except asyncio.TimeoutError:
            raise LoadError("timed out", MESSAGES["timed out"])
        except LoadError:
            raise
        except Exception as e:
            raise LoadError("download failed", MESSAGES["download failed"]) from e

    async def _load_paged(self, ref: StoredDocumentRef) -> PagedDocument:
        data = await self._fetch(ref)
        try:
            document = await self._call(self._paged_renderer.parse, data)
        except asyncio.TimeoutError:
            raise RenderError("timed out", MESSAGES["timed out"])
        except Exception as e:
            raise RenderError("render failed", str(e) or "Failed to load PDF document") from e
        if document.page_count < 1:
            raise RenderError("render failed", "The document has no pages.")
        return document

    async def _load_convertible(self, ref: StoredDocumentRef) -> str:
        data = await self._fetch(ref)
        if len(data) == 0:
            raise FormatError("empty file", MESSAGES["empty file"])
        if len(data) < self._min_document_bytes:
            raise FormatError("corrupted or incomplete", MESSAGES["corrupted or incomplete"])
        log.debug("Converting %s (%d bytes)", ref.display_name, len(data))
        try:
            markup = await self._call(self._markup_converter.convert_to_markup, data, ref.display_name)
        except asyncio.TimeoutError:
            raise ConversionError("timed out", MESSAGES["timed out"])
        except Exception as e:
            raise categorize_conversion_failure(e) from e
        if not markup or not markup.strip():
            raise FormatError("empty or corrupted document", MESSAGES["empty or corrupted document"])
        return markup

    def _is_current(self, generation: int) -> bool:
        if generation != self._session.generation:
            log.debug("Dropping outcome of stale session %d (live: %d)", generation, self._session.generation)
            return False
        return True

    def _apply(
        self,
        generation: int,
        *,
        document: PagedDocument | None = None,
        markup: str | None = None,
        error: ErrorDetail | None = None,
    ) -> None:
        if not self._is_current(generation):
            return
        s = self._session
        if error is not None:
            s.phase = PreviewPhase.ERROR
            s.error = error
            return
        if document is not None:
            s.document = document
            s.total_pages = document.page_count
            s.current_page = 1
        if markup is not None:
            s.converted_markup = markup
        s.error = None
        s.phase = PreviewPhase.READY
        log.debug("Session %d ready", generation)

    # signals from the surface that embeds an image preview

    def image_loaded(self, generation: int) -> None:
        s = self._session
        # Error is only left through retry or a new reference
        if self._is_current(generation) and s.format_class is FormatClass.IMAGE and s.phase is PreviewPhase.READY:
            log.debug("Image for session %d loaded", generation)

    def image_failed(self, generation: int, message: str | None = None) -> None:
        if not self._is_current(generation) or self._session.format_class is not FormatClass.IMAGE:
            return
        self._session.phase = PreviewPhase.ERROR
        self._session.error = ErrorDetail("load", "load failed", message or MESSAGES["load failed"])

    # page navigation

    def go_to_page(self, page_number: int) -> int:
        s = self._session
        if s.phase is PreviewPhase.READY and s.total_pages:
            s.current_page = min(max(1, page_number), s.total_pages)
        return s.current_page

    def next_page(self) -> int:
        return self.go_to_page(self._session.current_page + 1)

    def previous_page(self) -> int:
        return self.go_to_page(self._session.current_page - 1)

    async def render_page(self) -> str | None:
        """Text of the current page, or None if rendering failed (the session moves to Error).

        Raises ActionUnavailableError if a new reference replaced the session meanwhile.
        """
        s = self._session
        if s.phase is not PreviewPhase.READY or s.document is None:
            raise ActionUnavailableError("no paged document is loaded")
        generation = s.generation
        try:
            text = await self._call(s.document.render_page, s.current_page)
        except asyncio.TimeoutError:
            err: PreviewError = RenderError("timed out", MESSAGES["timed out"])
        except Exception as e:
            err = RenderError("render failed", str(e) or "Failed to render page")
        else:
            if not self._is_current(generation):
                raise ActionUnavailableError("the document changed while the page was rendering")
            return text
        log.warning("Rendering page %d of %s failed: %s", s.current_page, s.reference.display_name if s.reference else "?", err)
        self._apply(generation, error=ErrorDetail.from_error(err))
        return None

    # fallback actions

    def available_actions(self) -> frozenset[PreviewAction]:
        s = self._session
        actions: set[PreviewAction] = set()
        if s.reference is None or s.phase not in (PreviewPhase.READY, PreviewPhase.ERROR):
            return frozenset(actions)
        actions.add(PreviewAction.DOWNLOAD)
        if s.unsupported:
            return frozenset(actions)
        if s.format_class is FormatClass.CONVERTIBLE_DOCUMENT:
            actions.add(PreviewAction.OPEN_EXTERNALLY)
        if s.phase is PreviewPhase.ERROR:
            actions.add(PreviewAction.RETRY)
        elif s.total_pages:
            if s.current_page < s.total_pages:
                actions.add(PreviewAction.NEXT_PAGE)
            if s.current_page > 1:
                actions.add(PreviewAction.PREVIOUS_PAGE)
        return frozenset(actions)

    def download_link(self) -> DownloadLink:
        if PreviewAction.DOWNLOAD not in self.available_actions():
            raise ActionUnavailableError("download is not available")
        ref = self._session.reference
        if ref is None:
            raise ActionUnavailableError("download is not available")
        return DownloadLink(url=ref.location_uri, filename=ref.display_name)

    def external_viewer_url(self) -> str:
        if PreviewAction.OPEN_EXTERNALLY not in self.available_actions():
            raise ActionUnavailableError("online viewer is only offered for Word documents")
        ref = self._session.reference
        if ref is None:
            raise ActionUnavailableError("online viewer is not available")
        return self._online_viewer_url.format(src=quote(ref.location_uri, safe=""))

    async def wait_idle(self) -> None:
        """Wait for all adapter work started so far, including superseded sessions."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        for t in list(self._tasks):
            t.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def snapshot(self) -> dict[str, object]:
        s = self._session
        return {
            "generation": s.generation,
            "phase": s.phase.value,
            "format": s.format_class.value if s.format_class else None,
            "unsupported": s.unsupported,
            "document": (
                {"url": s.reference.location_uri, "name": s.reference.display_name}
                if s.reference else None
            ),
            "error": (
                {"kind": s.error.kind, "reason": s.error.reason, "message": s.error.message}
                if s.error else None
            ),
            "current_page": s.current_page,
            "total_pages": s.total_pages,
            "converted_markup": s.converted_markup,
            "actions": sorted(a.value for a in self.available_actions()),
        }
