import asyncio
import io
import threading

import pytest

from doc_viewer.preview import PreviewEngine


class FakeFetcher:
    """Serves canned payloads; a payload may be an exception to raise.

    URIs listed in `gates` block (in the worker thread) until the event is set.
    """

    def __init__(self, payloads=None, gates=None):
        self.payloads: dict[str, object] = dict(payloads or {})
        self.gates: dict[str, threading.Event] = dict(gates or {})
        self.calls: list[str] = []

    def fetch_bytes(self, location_uri: str) -> bytes:
        self.calls.append(location_uri)
        gate = self.gates.get(location_uri)
        if gate is not None:
            gate.wait(5)
        value = self.payloads[location_uri]
        if isinstance(value, BaseException):
            raise value
        return value  # type: ignore[return-value]


class FakePagedDocument:
    def __init__(self, pages: int):
        self.pages = pages

    @property
    def page_count(self) -> int:
        return self.pages

    def render_page(self, page_number: int) -> str:
        return f"page {page_number}"


class FakePagedRenderer:
    def __init__(self, pages: int = 5, error: Exception | None = None):
        self.pages = pages
        self.error = error
        self.calls = 0

    def parse(self, data: bytes) -> FakePagedDocument:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return FakePagedDocument(self.pages)


class FakeConverter:
    def __init__(self, markup: str = "<p>Hello</p>", error: Exception | None = None):
        self.markup = markup
        self.error = error
        self.calls = 0

    def convert_to_markup(self, data: bytes, filename: str) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.markup


class FakePreviewer:
    def __init__(self, result: str = "data:image/png;base64,AAAA", error: Exception | None = None, gate=None):
        self.result = result
        self.error = error
        self.gate = gate
        self.calls = 0

    def make_preview(self, data: bytes, mime_type: str) -> str:
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.result


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def renderer():
    return FakePagedRenderer()


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def engine(fetcher, renderer, converter):
    return PreviewEngine(fetcher, renderer, converter, adapter_timeout=5)


def make_pdf_bytes(pages: int = 2) -> bytes:
    from pypdf import PdfWriter

    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=200, height=200)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def make_png_bytes(size=(64, 48), mode="RGBA") -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new(mode, size, color=(10, 20, 30, 255) if mode == "RGBA" else (10, 20, 30)).save(buf, format="PNG")
    return buf.getvalue()
