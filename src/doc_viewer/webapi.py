import asyncio
import logging
import os

from fastapi import Body, FastAPI, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from doc_viewer import config
from doc_viewer.preview import (
    ActionUnavailableError,
    FileCandidate,
    IntakeCallbacks,
    IntakeConfig,
    IntakeDisplayState,
    IntakeGate,
    PreviewEngine,
    StoredDocumentRef,
    ValidationError,
)
from doc_viewer.preview.adapters import (
    DoclingMarkupConverter,
    LocalStorage,
    PillowImagePreviewer,
    PypdfRenderer,
    RequestsFetcher,
)

log = logging.getLogger(__name__)

app = FastAPI(
    title="Document Viewer",
    version=os.getenv("DOC_VIEWER_VERSION", "0.1.0"),
    description=(
        "Upload documents with type and size checks, then preview PDF, "
        "Word and image files inline."
    ),
)

WAIT_TIMEOUT_SEC = float(os.getenv("WAIT_TIMEOUT_SEC", "30"))

STORAGE: LocalStorage | None = None
ENGINE: PreviewEngine | None = None
PREVIEWER = PillowImagePreviewer()


class DocumentIn(BaseModel):
    url: str
    name: str


class ImageReportIn(BaseModel):
    generation: int
    ok: bool
    message: str | None = None


@app.on_event("startup")
async def _startup() -> None:
    config.configure_logging()
    (config.DATA_DIR / "files").mkdir(parents=True, exist_ok=True)
    global STORAGE, ENGINE
    STORAGE = LocalStorage(
        str(config.DATA_DIR),
        base_url=config.PUBLIC_BASE_URL,
        fetcher=RequestsFetcher(timeout=config.FETCH_TIMEOUT_SEC),
    )
    ENGINE = PreviewEngine(
        fetcher=STORAGE,
        paged_renderer=PypdfRenderer(),
        markup_converter=DoclingMarkupConverter(),
        adapter_timeout=config.ADAPTER_TIMEOUT_SEC,
        min_document_bytes=config.MIN_DOCUMENT_BYTES,
        online_viewer_url=config.ONLINE_VIEWER_URL,
    )
    log.info("Document viewer ready; data dir %s", config.DATA_DIR)


@app.on_event("shutdown")
async def _shutdown() -> None:
    if ENGINE is not None:
        await ENGINE.stop()


def _engine() -> PreviewEngine:
    if ENGINE is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "preview engine is not running"})
    return ENGINE


def _storage() -> LocalStorage:
    if STORAGE is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "storage is not configured"})
    return STORAGE


def _check(gate: IntakeGate, candidate: FileCandidate) -> None:
    try:
        gate.require_valid(candidate)
    except ValidationError as e:
        code = 415 if e.reason == "unsupported type" else 413
        raise HTTPException(status_code=code, detail={"code": e.reason.replace(" ", "_"), "message": e.message})


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.post("/files", status_code=status.HTTP_201_CREATED)
async def upload_file(file: UploadFile = File(...)) -> JSONResponse:
    """Accept a document through the intake gate and store it.

    Returns the stored reference (`url`, `name`) the preview endpoints take,
    plus an inline thumbnail for images.
    """
    storage = _storage()
    settings = IntakeConfig(accept=tuple(config.ALLOWED_TYPES), max_size_mb=config.MAX_UPLOAD_MB)
    name = file.filename or "upload"
    mime_hint = file.content_type or ""

    state = IntakeDisplayState()
    stored: list[StoredDocumentRef] = []

    def on_file_select(c: FileCandidate) -> None:
        state.selected_file = c
        stored.append(storage.store(c))

    gate = IntakeGate(state, IntakeCallbacks(on_file_select=on_file_select), settings, previewer=PREVIEWER)
    # type is judged before any bytes are read
    _check(gate, FileCandidate(data=b"", name=name, mime_hint=mime_hint))

    # Stream with a hard cap so oversized uploads are never fully buffered
    chunks: list[bytes] = []
    size_bytes = 0
    CHUNK = 1024 * 1024
    while True:
        chunk = await file.read(CHUNK)
        if not chunk:
            break
        size_bytes += len(chunk)
        if size_bytes > settings.max_size_bytes:
            _check(gate, FileCandidate(data=b"", name=name, mime_hint=mime_hint, size_bytes=size_bytes))
        chunks.append(chunk)

    candidate = FileCandidate(data=b"".join(chunks), name=name, mime_hint=mime_hint)
    _check(gate, candidate)

    await gate.select(candidate)
    await gate.drain_previews()
    ref = stored[0]
    body = {"url": ref.location_uri, "name": ref.display_name, "preview": state.file_preview}
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body, headers={"Location": ref.location_uri})


@app.get("/files/{file_id}")
def download_file(file_id: str) -> FileResponse:
    storage = _storage()
    try:
        meta = storage.load_meta(file_id)
        path = storage.path_for(file_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "file not found"})
    if not path.exists():
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "file not found"})
    return FileResponse(
        path,
        filename=str(meta.get("filename") or path.name),
        media_type=str(meta.get("content_type") or "application/octet-stream"),
    )


@app.post("/preview")
async def set_preview(document: DocumentIn | None = Body(None)) -> dict[str, object]:
    ref = StoredDocumentRef(location_uri=document.url, display_name=document.name) if document else None
    await _engine().set_reference(ref)
    return _engine().snapshot()


@app.delete("/preview")
async def clear_preview() -> dict[str, object]:
    await _engine().set_reference(None)
    return _engine().snapshot()


@app.get("/preview")
async def get_preview(wait: bool = False) -> dict[str, object]:
    """Current session state; with `wait=true`, block until adapter work settles."""
    if wait:
        try:
            await asyncio.wait_for(_engine().wait_idle(), WAIT_TIMEOUT_SEC)
        except asyncio.TimeoutError:
            pass
    return _engine().snapshot()


@app.post("/preview/retry")
async def retry_preview() -> dict[str, object]:
    if not await _engine().retry():
        raise HTTPException(status_code=409, detail={"code": "not_retryable", "message": "retry is only available after an error"})
    return _engine().snapshot()


@app.post("/preview/next")
async def next_page() -> dict[str, object]:
    _engine().next_page()
    return _engine().snapshot()


@app.post("/preview/previous")
async def previous_page() -> dict[str, object]:
    _engine().previous_page()
    return _engine().snapshot()


@app.get("/preview/page")
async def render_page() -> dict[str, object]:
    engine = _engine()
    try:
        text = await engine.render_page()
    except ActionUnavailableError as e:
        raise HTTPException(status_code=409, detail={"code": "unavailable", "message": str(e)})
    return {"page": engine.session.current_page, "total_pages": engine.session.total_pages, "text": text}


@app.post("/preview/image")
async def report_image(report: ImageReportIn) -> dict[str, object]:
    engine = _engine()
    if report.ok:
        engine.image_loaded(report.generation)
    else:
        engine.image_failed(report.generation, report.message)
    return engine.snapshot()


@app.get("/preview/download")
async def preview_download() -> dict[str, str]:
    try:
        link = _engine().download_link()
    except ActionUnavailableError as e:
        raise HTTPException(status_code=409, detail={"code": "unavailable", "message": str(e)})
    return {"url": link.url, "filename": link.filename}


@app.get("/preview/external")
async def preview_external() -> dict[str, str]:
    try:
        url = _engine().external_viewer_url()
    except ActionUnavailableError as e:
        raise HTTPException(status_code=409, detail={"code": "unavailable", "message": str(e)})
    return {"url": url}


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("doc_viewer.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
