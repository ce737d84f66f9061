import base64
import io

import pytest

from conftest import make_pdf_bytes, make_png_bytes
from doc_viewer.preview import DownloadLink, FileCandidate, LoadError
from doc_viewer.preview.adapters import (
    DoclingMarkupConverter,
    LocalStorage,
    PillowImagePreviewer,
    PypdfRenderer,
    RequestsFetcher,
    sanitize_markup,
    save_download,
)


class _Resp:
    def __init__(self, status_code: int, content: bytes = b""):
        self.status_code = status_code
        self.content = content


def test_local_storage_round_trip_with_base_url(tmp_path):
    storage = LocalStorage(str(tmp_path), base_url="http://viewer.local/")
    ref = storage.store(FileCandidate(data=b"%PDF-1.4 body", name="report.pdf", mime_hint="application/pdf"))

    assert ref.display_name == "report.pdf"
    assert ref.location_uri.startswith("http://viewer.local/files/")
    assert storage.fetch_bytes(ref.location_uri) == b"%PDF-1.4 body"

    file_id = ref.location_uri.rsplit("/", 1)[-1]
    meta = storage.load_meta(file_id)
    assert meta["filename"] == "report.pdf"
    assert meta["size_bytes"] == 13
    assert storage.path_for(file_id).name == "original.pdf"


def test_local_storage_file_uris(tmp_path):
    storage = LocalStorage(str(tmp_path))
    ref = storage.store(FileCandidate(data=b"abc", name="notes.docx"))
    assert ref.location_uri.startswith("file://")
    assert storage.fetch_bytes(ref.location_uri) == b"abc"


def test_local_storage_rejects_unknown_ids(tmp_path):
    storage = LocalStorage(str(tmp_path))
    with pytest.raises(FileNotFoundError):
        storage.load_meta("0" * 32)
    with pytest.raises(FileNotFoundError):
        storage.file_dir("../../etc")


def test_requests_fetcher_maps_http_errors(monkeypatch):
    from doc_viewer.preview import adapters

    monkeypatch.setattr(adapters.requests, "get", lambda url, timeout: _Resp(404))
    with pytest.raises(LoadError) as exc:
        RequestsFetcher().fetch_bytes("http://example.test/x.pdf")
    assert exc.value.reason == "download failed"

    monkeypatch.setattr(adapters.requests, "get", lambda url, timeout: _Resp(200, b"ok"))
    assert RequestsFetcher().fetch_bytes("http://example.test/x.pdf") == b"ok"


def test_requests_fetcher_missing_local_file(tmp_path):
    with pytest.raises(LoadError):
        RequestsFetcher().fetch_bytes((tmp_path / "missing.pdf").as_uri())


def test_pypdf_renderer_counts_pages():
    doc = PypdfRenderer().parse(make_pdf_bytes(pages=3))
    assert doc.page_count == 3
    assert doc.render_page(1) == ""
    with pytest.raises(IndexError):
        doc.render_page(4)


def test_pypdf_renderer_rejects_garbage():
    with pytest.raises(Exception):
        PypdfRenderer().parse(b"this is not a pdf at all")


def test_pillow_preview_png_keeps_alpha():
    url = PillowImagePreviewer(max_px=16).make_preview(make_png_bytes(), "image/png")
    assert url.startswith("data:image/png;base64,")

    from PIL import Image

    raw = base64.b64decode(url.split(",", 1)[1])
    with Image.open(io.BytesIO(raw)) as img:
        assert max(img.size) <= 16


def test_pillow_preview_rgb_is_jpeg():
    url = PillowImagePreviewer().make_preview(make_png_bytes(mode="RGB"), "image/png")
    assert url.startswith("data:image/jpeg;base64,")


def test_pillow_preview_rejects_non_images():
    with pytest.raises(Exception):
        PillowImagePreviewer().make_preview(b"not an image", "image/png")


def test_save_download(tmp_path):
    storage = LocalStorage(str(tmp_path / "store"))
    ref = storage.store(FileCandidate(data=b"payload", name="scan.png"))
    target = save_download(storage, DownloadLink(url=ref.location_uri, filename="scan.png"), tmp_path / "out")
    assert target == tmp_path / "out" / "scan.png"
    assert target.read_bytes() == b"payload"


def test_docling_converter_keeps_body(monkeypatch):
    document_converter = pytest.importorskip("docling.document_converter")
    seen = {}

    class _Doc:
        def export_to_html(self):
            return "<html><head><title>t</title></head><body>\n<p>Hello</p>\n</body></html>"

    class _Result:
        document = _Doc()

    class _Converter:
        def convert(self, source):
            seen["name"] = source.name
            seen["data"] = source.stream.read()
            return _Result()

    monkeypatch.setattr(document_converter, "DocumentConverter", _Converter)

    markup = DoclingMarkupConverter().convert_to_markup(b"docx-bytes", "thesis.docx")
    assert markup == "<p>Hello</p>"
    assert seen == {"name": "thesis.docx", "data": b"docx-bytes"}


def test_sanitize_markup_drops_scripts_and_javascript_links():
    html = (
        '<p onclick="steal()">Intro</p>'
        "<script>alert(1)</script>"
        '<a href="javascript:alert(2)">click</a>'
        '<a href="https://example.test/ref">ref</a>'
    )
    clean = sanitize_markup(html)
    assert "<script" not in clean
    assert "alert" not in clean
    assert "onclick" not in clean
    assert "javascript:" not in clean
    assert "Intro" in clean
    assert 'href="https://example.test/ref"' in clean


def test_docling_converter_sanitizes_body(monkeypatch):
    document_converter = pytest.importorskip("docling.document_converter")

    class _Doc:
        def export_to_html(self):
            return '<html><body><p>Hi</p><a href="javascript:alert(1)">x</a><script>bad()</script></body></html>'

    class _Result:
        document = _Doc()

    class _Converter:
        def convert(self, source):
            return _Result()

    monkeypatch.setattr(document_converter, "DocumentConverter", _Converter)

    markup = DoclingMarkupConverter().convert_to_markup(b"docx-bytes", "thesis.docx")
    assert markup.startswith("<p>Hi</p>")
    assert "javascript:" not in markup
    assert "bad()" not in markup
