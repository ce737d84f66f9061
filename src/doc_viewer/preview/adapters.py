import base64
import io
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import nh3
import requests

from .. import config
from .errors import LoadError
from .interfaces import (
    DocumentFetcher,
    DownloadLink,
    FileCandidate,
    ImagePreviewGateway,
    MarkupConverterGateway,
    PagedRendererGateway,
    StorageGateway,
    StoredDocumentRef,
)
from .service import MESSAGES

log = logging.getLogger(__name__)


class RequestsFetcher(DocumentFetcher):
    def __init__(self, timeout: float = config.FETCH_TIMEOUT_SEC) -> None:
        self._timeout = timeout

    def fetch_bytes(self, location_uri: str) -> bytes:
        if location_uri.startswith("file://"):
            path = Path(url2pathname(urlparse(location_uri).path))
            try:
                return path.read_bytes()
            except OSError as e:
                raise LoadError("download failed", MESSAGES["download failed"]) from e
        try:
            resp = requests.get(location_uri, timeout=self._timeout)
        except requests.RequestException as e:
            log.warning("Fetching %s failed: %s", location_uri, e)
            raise LoadError("download failed", MESSAGES["download failed"]) from e
        if resp.status_code != 200:
            log.warning("Fetching %s failed: HTTP error! status: %s", location_uri, resp.status_code)
            raise LoadError("download failed", MESSAGES["download failed"])
        return resp.content


class LocalStorage(StorageGateway, DocumentFetcher):
    """Stores accepted files on local disk and serves their bytes back.

    References point at `<base_url>/files/<id>` when a base URL is configured
    (the HTTP surface serves that path), otherwise at a `file://` URI.
    URIs that do not belong to this storage are fetched with `fetcher`.
    """

    def __init__(
        self,
        data_dir: str,
        base_url: str | None = None,
        fetcher: DocumentFetcher | None = None,
    ) -> None:
        self._base = Path(data_dir).resolve()
        self._base_url = base_url.rstrip("/") if base_url else None
        self._fetcher = fetcher or RequestsFetcher()

    def file_dir(self, file_id: str) -> Path:
        if not re.fullmatch(r"[0-9a-f]{32}", file_id):
            raise FileNotFoundError("file not found")
        return self._base / "files" / file_id

    def store(self, candidate: FileCandidate) -> StoredDocumentRef:
        file_id = uuid.uuid4().hex
        d = self.file_dir(file_id)
        d.mkdir(parents=True, exist_ok=True)

        original_name = candidate.name or "upload"
        ext = ""
        if "." in original_name:
            ext = "." + original_name.rsplit(".", 1)[-1]
        path = d / f"original{ext}"
        path.write_bytes(candidate.data)

        meta = {
            "id": file_id,
            "filename": original_name,
            "content_type": candidate.mime_hint or "application/octet-stream",
            "size_bytes": len(candidate.data),
            "created_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "path": str(path),
        }
        with (d / "meta.json").open("w", encoding="utf-8") as f:
            json.dump(meta, f, ensure_ascii=False, indent=2)

        uri = f"{self._base_url}/files/{file_id}" if self._base_url else path.as_uri()
        log.info("Stored %s as %s (%d bytes)", original_name, file_id, len(candidate.data))
        return StoredDocumentRef(location_uri=uri, display_name=original_name)

    def load_meta(self, file_id: str) -> dict[str, object]:
        p = self.file_dir(file_id) / "meta.json"
        if not p.exists():
            raise FileNotFoundError("file not found")
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)

    def path_for(self, file_id: str) -> Path:
        return Path(str(self.load_meta(file_id)["path"]))

    def fetch_bytes(self, location_uri: str) -> bytes:
        prefix = f"{self._base_url}/files/" if self._base_url else None
        if prefix and location_uri.startswith(prefix):
            file_id = location_uri[len(prefix):].split("/", 1)[0]
            try:
                return self.path_for(file_id).read_bytes()
            except OSError as e:
                raise LoadError("download failed", MESSAGES["download failed"]) from e
        return self._fetcher.fetch_bytes(location_uri)


class PypdfDocument:
    def __init__(self, reader) -> None:
        self._reader = reader

    @property
    def page_count(self) -> int:
        return len(self._reader.pages)

    def render_page(self, page_number: int) -> str:
        if not 1 <= page_number <= self.page_count:
            raise IndexError(f"page {page_number} out of range 1..{self.page_count}")
        return self._reader.pages[page_number - 1].extract_text() or ""


class PypdfRenderer(PagedRendererGateway):
    def parse(self, data: bytes) -> PypdfDocument:
        from pypdf import PdfReader

        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted and not reader.decrypt(""):
            raise ValueError("PDF is password-protected")
        # touch the page tree so structural damage surfaces here
        _ = len(reader.pages)
        return PypdfDocument(reader)


_BODY_RE = re.compile(r"<body[^>]*>(.*)</body>", re.IGNORECASE | re.DOTALL)
_URL_SCHEMES = {"http", "https", "mailto"}


def sanitize_markup(html: str) -> str:
    """Strip scripts, event handlers and non-web link schemes from converted markup."""
    return nh3.clean(html, url_schemes=_URL_SCHEMES)


class DoclingMarkupConverter(MarkupConverterGateway):
    def convert_to_markup(self, data: bytes, filename: str) -> str:
        from docling.datamodel.base_models import DocumentStream
        from docling.document_converter import DocumentConverter

        converter = DocumentConverter()
        result = converter.convert(DocumentStream(name=filename, stream=io.BytesIO(data)))
        try:
            doc = result.document
        except AttributeError:
            to_doc = getattr(result, "to_doc", None)
            doc = to_doc() if callable(to_doc) else result
        # html export methods vary across docling versions
        for m in ("export_to_html", "to_html", "as_html"):
            fn = getattr(doc, m, None)
            if callable(fn):
                html = fn()
                break
        else:
            raise RuntimeError("Doc object lacks an HTML export method")

        # keep the body only; the host page provides the document shell
        match = _BODY_RE.search(html)
        body = match.group(1) if match else html
        return sanitize_markup(body).strip()


class PillowImagePreviewer(ImagePreviewGateway):
    def __init__(self, max_px: int = config.IMAGE_PREVIEW_PX) -> None:
        self._max_px = max_px

    def make_preview(self, data: bytes, mime_type: str) -> str:
        from PIL import Image

        buf = io.BytesIO()
        with Image.open(io.BytesIO(data)) as img:
            img.thumbnail((self._max_px, self._max_px))
            if img.mode in ("RGBA", "LA", "P"):
                fmt = "PNG"
                img.save(buf, format=fmt)
            else:
                fmt = "JPEG"
                img.convert("RGB").save(buf, format=fmt)
        encoded = base64.b64encode(buf.getvalue()).decode("ascii")
        return f"data:image/{fmt.lower()};base64,{encoded}"


def save_download(fetcher: DocumentFetcher, link: DownloadLink, dest_dir: str | Path) -> Path:
    """Materialise the bytes behind a download link as a local file."""
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    target = dest / (Path(link.filename).name or "download")
    target.write_bytes(fetcher.fetch_bytes(link.url))
    log.info("Saved %s to %s", link.filename, target)
    return target
