import io
from types import SimpleNamespace

import pytest
from docx import Document
from pypdf import PdfWriter

from fileforge.conversion import document
from fileforge.errors import ConversionTimeoutError, ValidationError


def test_md_to_html(dispatcher):
    out = dispatcher.convert(b"# Notes\n\n| a | b |\n|---|---|\n| 1 | 2 |\n", "md-to-html").decode()
    assert out.startswith("<!DOCTYPE html>")
    assert "<h1>Notes</h1>" in out
    assert "<table>" in out


def test_html_to_md(dispatcher):
    html = (
        b"<html><head><title>t</title><style>p{}</style></head><body>"
        b"<h2>Title</h2><p>Some <strong>bold</strong> and <a href='https://x.test'>link</a>.</p>"
        b"<ul><li>one</li><li>two<ul><li>nested</li></ul></li></ul>"
        b"<table><tr><th>h</th></tr><tr><td>v</td></tr></table>"
        b"<script>alert(1)</script></body></html>"
    )
    md = dispatcher.convert(html, "html-to-md").decode()
    assert "## Title" in md
    assert "Some **bold** and [link](https://x.test)." in md
    assert "- one\n- two\n   - nested" in md
    assert "| h |\n|---|\n| v |" in md
    assert "alert" not in md and "p{}" not in md


def test_txt_docx_round_trip(dispatcher):
    docx_bytes = dispatcher.convert(b"first line\n\nsecond line\n", "txt-to-docx")
    assert [p.text for p in Document(io.BytesIO(docx_bytes)).paragraphs] == ["first line", "second line"]
    assert dispatcher.convert(docx_bytes, "docx-to-txt").decode() == "first line\nsecond line"


def test_encrypted_pdf_is_rejected(dispatcher):
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    writer.encrypt("secret")
    buf = io.BytesIO()
    writer.write(buf)
    with pytest.raises(ValidationError):
        dispatcher.convert(buf.getvalue(), "pdf-to-txt")


def test_html_to_pdf_renders_inline_without_temp_file(dispatcher, temp_manager, monkeypatch):
    seen = {}

    def fake_render(timeout, content):
        seen["content"] = content
        seen["temp"] = list(temp_manager.active_files())
        return b"%PDF-1.7 fake"

    monkeypatch.setattr(document, "render_pdf", fake_render)
    html = b"<p>hi</p><iframe src='file:///etc/passwd'></iframe>"
    assert dispatcher.convert(html, "html-to-pdf", source_extension="html") == b"%PDF-1.7 fake"
    assert seen["content"] == html.decode()
    assert seen["temp"] == []


class FakeRoute:
    def __init__(self, url):
        self.request = SimpleNamespace(url=url)
        self.outcome = None

    def continue_(self):
        self.outcome = "continued"

    def abort(self, error_code=None):
        self.outcome = ("aborted", error_code)


@pytest.mark.parametrize("url", [
    "file:///etc/passwd",
    "FILE:///C:/Windows/win.ini",
    "chrome://settings",
    "view-source:file:///etc/hosts",
])
def test_local_resources_are_blocked_while_rendering(url):
    route = FakeRoute(url)
    document.guard_request(route)
    assert route.outcome == ("aborted", "accessdenied")


@pytest.mark.parametrize("url", ["https://cdn.test/style.css", "http://x.test/a.png", "data:image/png;base64,AAAA"])
def test_web_resources_are_allowed_while_rendering(url):
    route = FakeRoute(url)
    document.guard_request(route)
    assert route.outcome == "continued"


def test_md_to_pdf_renders_in_memory(dispatcher, temp_manager, monkeypatch):
    seen = {}

    def fake_render(timeout, content):
        seen["content"] = content
        seen["temp"] = list(temp_manager.active_files())
        return b"%PDF-1.7 fake"

    monkeypatch.setattr(document, "render_pdf", fake_render)
    dispatcher.convert(b"# Heading", "md-to-pdf")
    assert "<h1>Heading</h1>" in seen["content"]
    assert seen["temp"] == []


def test_pdf_render_timeout(dispatcher, monkeypatch):
    def slow(timeout, content):
        raise TimeoutError("PDF rendering exceeded 5s")

    monkeypatch.setattr(document, "render_pdf", slow)
    with pytest.raises(ConversionTimeoutError):
        dispatcher.convert(b"plain text", "txt-to-pdf")
