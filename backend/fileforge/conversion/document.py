"""Document conversions: text extraction, Markdown/HTML transforms, PDF rendering."""
import html
import io
import logging
import re
from urllib.parse import urlsplit

import markdown
from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from docx import Document
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright
from pypdf import PdfReader

from fileforge.conversion.base import Converter, FunctionConverter, SourceFile
from fileforge.conversion.models import AdvancedOptions, Category
from fileforge.errors import ValidationError

logger = logging.getLogger("fileforge.document")

_PAGE_STYLE = """
  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
    max-width: 800px;
    margin: 0 auto;
    padding: 40px 20px;
    line-height: 1.6;
    color: #333;
  }
  h1 { border-bottom: 2px solid #eee; padding-bottom: 10px; }
  h2 { border-bottom: 1px solid #eee; padding-bottom: 8px; }
  code { background: #f4f4f4; padding: 2px 6px; border-radius: 3px; font-family: 'Courier New', monospace; }
  pre { background: #f4f4f4; padding: 15px; border-radius: 5px; overflow-x: auto; white-space: pre-wrap; word-wrap: break-word; }
  pre code { background: none; padding: 0; }
  table { border-collapse: collapse; }
  th, td { border: 1px solid #ddd; padding: 4px 8px; }
  img { max-width: 100%; height: auto; }
"""


def _text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("Document must be UTF-8 encoded text")


def html_page(body: str, title: str = "Converted Document") -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"UTF-8\">\n"
        "<meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\">\n"
        f"<title>{html.escape(title)}</title>\n<style>{_PAGE_STYLE}</style>\n</head>\n"
        f"<body>\n{body}\n</body>\n</html>\n"
    )


def markdown_to_html_body(text: str) -> str:
    return markdown.markdown(text, extensions=["extra", "sane_lists"])


def text_to_html_body(text: str) -> str:
    return f"<pre>{html.escape(text)}</pre>"


# --- extraction ------------------------------------------------------------

def docx_to_txt(data: bytes, options: AdvancedOptions) -> bytes:
    doc = Document(io.BytesIO(data))
    lines = [p.text for p in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            lines.append("\t".join(cell.text for cell in row.cells))
    return "\n".join(lines).encode("utf-8")


def pdf_to_txt(data: bytes, options: AdvancedOptions) -> bytes:
    reader = PdfReader(io.BytesIO(data))
    if reader.is_encrypted:
        raise ValidationError("PDF is password-protected; remove the password and try again")
    pages = [(page.extract_text() or "").strip() for page in reader.pages]
    return "\n\n".join(p for p in pages if p).encode("utf-8")


def txt_to_docx(data: bytes, options: AdvancedOptions) -> bytes:
    doc = Document()
    lines = [line.strip() for line in _text(data).splitlines() if line.strip()]
    for line in lines or [""]:
        doc.add_paragraph(line)
    out = io.BytesIO()
    doc.save(out)
    return out.getvalue()


# --- markdown / html -------------------------------------------------------

def md_to_html(data: bytes, options: AdvancedOptions) -> bytes:
    return html_page(markdown_to_html_body(_text(data)), title="Converted Markdown").encode("utf-8")


_SKIP_TAGS = {"script", "style", "head", "title", "meta", "link", "noscript", "template"}
_BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "header", "footer", "aside", "nav", "body", "html",
    "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "pre", "blockquote", "hr", "table", "figure",
}


def _inline_nodes(nodes) -> str:
    parts = []
    for child in nodes:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            parts.append(re.sub(r"\s+", " ", str(child)))
            continue
        if not isinstance(child, Tag) or child.name in _SKIP_TAGS:
            continue
        name = child.name
        if name in ("strong", "b"):
            inner = _inline(child).strip()
            parts.append(f"**{inner}**" if inner else "")
        elif name in ("em", "i"):
            inner = _inline(child).strip()
            parts.append(f"*{inner}*" if inner else "")
        elif name == "code":
            parts.append(f"`{child.get_text()}`")
        elif name == "a":
            label = _inline(child).strip()
            href = child.get("href")
            parts.append(f"[{label}]({href})" if href else label)
        elif name == "img":
            parts.append(f"![{child.get('alt', '')}]({child.get('src', '')})")
        elif name == "br":
            parts.append("  \n")
        else:
            parts.append(_inline(child))
    return "".join(parts)


def _inline(node: Tag) -> str:
    return _inline_nodes(node.children)


def _list_block(node: Tag, depth: int = 0) -> str:
    lines = []
    ordered = node.name == "ol"
    items = [li for li in node.find_all("li", recursive=False)]
    for index, li in enumerate(items, start=1):
        marker = f"{index}." if ordered else "-"
        nested = [c for c in li.find_all(["ul", "ol"], recursive=False)]
        for sub in nested:
            sub.extract()
        lines.append(f"{'   ' * depth}{marker} {_inline(li).strip()}")
        for sub in nested:
            lines.append(_list_block(sub, depth + 1))
    return "\n".join(lines)


def _table_block(node: Tag) -> str:
    rows = []
    for tr in node.find_all("tr"):
        rows.append([_inline(cell).strip().replace("|", "\\|") for cell in tr.find_all(["th", "td"])])
    if not rows:
        return ""
    width = max(len(r) for r in rows)
    rows = [r + [""] * (width - len(r)) for r in rows]
    lines = ["| " + " | ".join(rows[0]) + " |", "|" + "|".join(["---"] * width) + "|"]
    lines += ["| " + " | ".join(r) + " |" for r in rows[1:]]
    return "\n".join(lines)


def _blocks(node: Tag) -> list[str]:
    blocks: list[str] = []
    pending = ""

    def flush() -> None:
        nonlocal pending
        if pending.strip():
            blocks.append(pending.strip())
        pending = ""

    for child in node.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            pending += re.sub(r"\s+", " ", str(child))
            continue
        if not isinstance(child, Tag) or child.name in _SKIP_TAGS:
            continue
        name = child.name
        if name not in _BLOCK_TAGS:
            pending += _inline_nodes([child])
            continue
        flush()
        if re.fullmatch(r"h[1-6]", name):
            blocks.append(f"{'#' * int(name[1])} {_inline(child).strip()}")
        elif name == "p":
            text = _inline(child).strip()
            if text:
                blocks.append(text)
        elif name in ("ul", "ol"):
            blocks.append(_list_block(child))
        elif name == "pre":
            blocks.append(f"```\n{child.get_text().rstrip()}\n```")
        elif name == "blockquote":
            inner = "\n\n".join(_blocks(child))
            blocks.append("\n".join(f"> {line}" if line else ">" for line in inner.splitlines()))
        elif name == "hr":
            blocks.append("---")
        elif name == "table":
            blocks.append(_table_block(child))
        else:
            blocks.extend(_blocks(child))
    flush()
    return [b for b in blocks if b]


def html_to_markdown(source: str) -> str:
    soup = BeautifulSoup(source, "html.parser")
    root = soup.body or soup
    return "\n\n".join(_blocks(root)) + "\n"


def html_to_md(data: bytes, options: AdvancedOptions) -> bytes:
    return html_to_markdown(_text(data)).encode("utf-8")


# --- PDF rendering (headless Chromium) -------------------------------------

# Uploaded markup may only pull in web and inline resources, never local files.
ALLOWED_SCHEMES = {"http", "https", "data", "blob", "about"}


def request_allowed(url: str) -> bool:
    return urlsplit(url).scheme.lower() in ALLOWED_SCHEMES


def guard_request(route) -> None:
    """Playwright route handler: abort file:// and other non-web requests."""
    url = route.request.url
    if request_allowed(url):
        route.continue_()
        return
    logger.warning("Blocked %s request during PDF rendering", urlsplit(url).scheme or "unknown")
    route.abort("accessdenied")


def render_pdf(timeout: float, content: str) -> bytes:
    """Print an HTML document to A4 PDF. Raises TimeoutError when Chromium exceeds ``timeout`` seconds."""
    timeout_ms = timeout * 1000
    logger.debug("Rendering PDF from %s chars of HTML", len(content))
    try:
        with sync_playwright() as p:
            browser = p.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-dev-shm-usage"],
                timeout=timeout_ms,
            )
            try:
                page = browser.new_page()
                page.set_default_timeout(timeout_ms)
                page.route("**/*", guard_request)
                page.set_content(content, wait_until="networkidle")
                return page.pdf(format="A4", print_background=True)
            finally:
                browser.close()
    except PlaywrightTimeoutError:
        raise TimeoutError(f"PDF rendering exceeded {timeout:g}s")


class PdfRenderer(Converter):
    """Render HTML, Markdown or plain text to PDF.

    Every source is loaded into an about:blank page as inline content; HTML is
    used as-is, Markdown and text are wrapped in a page template first.
    """

    category = Category.DOCUMENT
    subprocess_backed = True

    def __init__(self, source_format: str, timeout: float):
        self.source_format = source_format
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"PdfRenderer({self.source_format})"

    def convert(self, source: SourceFile, options: AdvancedOptions) -> bytes:
        text = _text(source.data)
        if self.source_format == "html":
            return render_pdf(self.timeout, text)
        if self.source_format == "md":
            body = markdown_to_html_body(text)
        else:
            body = text_to_html_body(text)
        return render_pdf(self.timeout, html_page(body))


def converters(timeout: float) -> dict[str, Converter]:
    table: dict[str, Converter] = {
        "docx-to-txt": FunctionConverter(Category.DOCUMENT, docx_to_txt),
        "pdf-to-txt": FunctionConverter(Category.DOCUMENT, pdf_to_txt),
        "txt-to-docx": FunctionConverter(Category.DOCUMENT, txt_to_docx),
        "md-to-html": FunctionConverter(Category.DOCUMENT, md_to_html),
        "html-to-md": FunctionConverter(Category.DOCUMENT, html_to_md),
    }
    for source_format in ("html", "md", "txt"):
        table[f"{source_format}-to-pdf"] = PdfRenderer(source_format, timeout)
    return table
