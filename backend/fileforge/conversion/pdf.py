"""PDF tools: page operations with pypdf, rendering and stamping with PyMuPDF, images to PDF with Pillow."""
import io
import logging

import fitz
from PIL import Image, ImageOps
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from fileforge.config import DEFAULT_QUALITY, PDF_IMAGE_DPI, PDF_RENDER_DPI
from fileforge.conversion.base import CombiningConverter, Converter, FunctionConverter, SourceFile
from fileforge.conversion.image import flatten
from fileforge.conversion.models import AdvancedOptions, Category
from fileforge.conversion.resize import center_on_page
from fileforge.errors import ValidationError

logger = logging.getLogger("fileforge.pdf")

# Points (1/72 inch).
PAGE_SIZES = {"a4": (595.28, 841.89), "letter": (612.0, 792.0)}
PAGE_MARGIN_PT = 40
DEFAULT_ROTATION = 90
WATERMARK_DEFAULTS = {"font_size": 50, "opacity": 30, "rotation": -45, "position": "diagonal"}
WATERMARK_COLOR = (0.5, 0.5, 0.5)
FOOTER_OFFSET_PT = 30
_ENCRYPTED_MESSAGE = "PDF is password-protected; remove the password and try again"


def parse_page_range(spec: str, page_count: int) -> list[int]:
    """``"1-3, 5"`` -> sorted 0-based page indices. Numbers outside the document are dropped."""
    pages: set[int] = set()
    for part in (spec or "").split(","):
        part = part.strip()
        if not part:
            continue
        start, sep, end = part.partition("-")
        try:
            first = int(start)
            last = int(end) if sep else first
        except ValueError:
            raise ValidationError(f"Invalid page range '{part}'; use page numbers like 1-3,5")
        pages.update(range(max(1, first), min(page_count, last) + 1))
    if not pages:
        raise ValidationError(f"No pages selected; the document has {page_count} page(s)")
    return sorted(p - 1 for p in pages)


def _selected(options: AdvancedOptions, page_count: int) -> list[int]:
    if options.pages:
        return parse_page_range(options.pages, page_count)
    return list(range(page_count))


def _reader(data: bytes) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted:
            raise ValidationError(_ENCRYPTED_MESSAGE)
        if not reader.pages:
            raise ValidationError("PDF has no pages")
    except PdfReadError as e:
        raise ValidationError(f"Not a readable PDF: {e}")
    return reader


def _write(writer: PdfWriter) -> bytes:
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def _open(data: bytes) -> fitz.Document:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except RuntimeError as e:
        raise ValidationError(f"Not a readable PDF: {e}")
    if doc.needs_pass:
        doc.close()
        raise ValidationError(_ENCRYPTED_MESSAGE)
    return doc


# --- page operations (pypdf) -----------------------------------------------

def merge_pdfs(sources: list[SourceFile], options: AdvancedOptions) -> bytes:
    if len(sources) < 2:
        raise ValidationError("Provide at least 2 PDF files to merge")
    writer = PdfWriter()
    for source in sources:
        writer.append(_reader(source.data))
    return _write(writer)


def split_pages(data: bytes, options: AdvancedOptions) -> list[bytes]:
    """One single-page PDF per selected page (every page by default)."""
    reader = _reader(data)
    outputs = []
    for index in _selected(options, len(reader.pages)):
        writer = PdfWriter()
        writer.add_page(reader.pages[index])
        outputs.append(_write(writer))
    return outputs


def extract_pages(data: bytes, options: AdvancedOptions) -> bytes:
    reader = _reader(data)
    writer = PdfWriter()
    for index in parse_page_range(options.pages, len(reader.pages)):
        writer.add_page(reader.pages[index])
    return _write(writer)


def rotate_pages(data: bytes, options: AdvancedOptions) -> bytes:
    angle = options.rotation if options.rotation is not None else DEFAULT_ROTATION
    if angle % 90:
        raise ValidationError("rotation must be a multiple of 90 degrees")
    writer = PdfWriter(clone_from=_reader(data))
    for index in _selected(options, len(writer.pages)):
        writer.pages[index].rotate(angle)
    return _write(writer)


def protect_pdf(data: bytes, options: AdvancedOptions) -> bytes:
    writer = PdfWriter(clone_from=_reader(data))
    writer.encrypt(user_password=options.password, algorithm="AES-256")
    return _write(writer)


def compress_pdf(data: bytes, options: AdvancedOptions) -> bytes:
    """Deflate content streams and drop duplicate objects. Never returns a larger file."""
    writer = PdfWriter(clone_from=_reader(data))
    for page in writer.pages:
        page.compress_content_streams()
    writer.compress_identical_objects(remove_identicals=True, remove_orphans=True)
    out = _write(writer)
    if len(out) >= len(data):
        logger.debug("Compression saved nothing (%s -> %s bytes); keeping the original", len(data), len(out))
        return data
    return out


# --- rendering and stamping (PyMuPDF) --------------------------------------

def render_pages(data: bytes, options: AdvancedOptions, target: str) -> list[bytes]:
    """Rasterize the selected pages to PNG or JPEG at PDF_RENDER_DPI."""
    zoom = PDF_RENDER_DPI / 72
    outputs = []
    with _open(data) as doc:
        for index in _selected(options, doc.page_count):
            pix = doc[index].get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
            png = pix.tobytes("png")
            if target == "png":
                outputs.append(png)
                continue
            with Image.open(io.BytesIO(png)) as img:
                out = io.BytesIO()
                img.convert("RGB").save(out, format="JPEG", quality=options.quality or DEFAULT_QUALITY)
            outputs.append(out.getvalue())
    logger.debug("Rendered %s pages to %s", len(outputs), target)
    return outputs


def pdf_to_png(data: bytes, options: AdvancedOptions) -> list[bytes]:
    return render_pages(data, options, "png")


def pdf_to_jpg(data: bytes, options: AdvancedOptions) -> list[bytes]:
    return render_pages(data, options, "jpg")


def watermark_pdf(data: bytes, options: AdvancedOptions) -> bytes:
    """Stamp text on every page: diagonal through the centre, centred, or as a footer."""
    text = options.watermark_text
    font_size = options.font_size or WATERMARK_DEFAULTS["font_size"]
    opacity = (options.opacity if options.opacity is not None else WATERMARK_DEFAULTS["opacity"]) / 100
    position = options.position or WATERMARK_DEFAULTS["position"]
    angle = options.rotation if options.rotation is not None else WATERMARK_DEFAULTS["rotation"]
    text_width = fitz.get_text_length(text, fontname="helv", fontsize=font_size)
    with _open(data) as doc:
        for page in doc:
            rect = page.rect
            x = (rect.width - text_width) / 2
            morph = None
            if position == "footer":
                y = rect.height - FOOTER_OFFSET_PT
            else:
                # Baseline a third of the font size below the middle centres the glyphs.
                y = rect.height / 2 + font_size / 3
                if position == "diagonal":
                    morph = (fitz.Point(rect.width / 2, rect.height / 2), fitz.Matrix(angle))
            page.insert_text(
                fitz.Point(x, y),
                text,
                fontsize=font_size,
                fontname="helv",
                color=WATERMARK_COLOR,
                fill_opacity=opacity,
                morph=morph,
            )
        return doc.tobytes(garbage=3, deflate=True)


# --- images -> PDF (Pillow) ------------------------------------------------

def _page_pixels(page_size: str) -> tuple[int, int]:
    width_pt, height_pt = PAGE_SIZES[page_size]
    return round(width_pt * PDF_IMAGE_DPI / 72), round(height_pt * PDF_IMAGE_DPI / 72)


def images_to_pdf(sources: list[SourceFile], options: AdvancedOptions) -> bytes:
    """One page per image, in upload order. ``pageSize`` a4 (default) / letter, or fit to each image."""
    page_size = options.page_size or "a4"
    margin = round(PAGE_MARGIN_PT * PDF_IMAGE_DPI / 72)
    pages = []
    for source in sources:
        with Image.open(io.BytesIO(source.data)) as opened:
            opened.load()
            img = flatten(ImageOps.exif_transpose(opened))
        if page_size != "fit":
            img = center_on_page(img, _page_pixels(page_size), margin)
        pages.append(img)
    if not pages:
        raise ValidationError("Provide at least one image")
    out = io.BytesIO()
    resolution = 72.0 if page_size == "fit" else float(PDF_IMAGE_DPI)
    pages[0].save(out, format="PDF", save_all=True, append_images=pages[1:], resolution=resolution)
    return out.getvalue()


def converters() -> dict[str, Converter]:
    table: dict[str, Converter] = {
        "merge-pdf": CombiningConverter(Category.PDF, merge_pdfs),
        "images-to-pdf": CombiningConverter(Category.PDF, images_to_pdf),
    }
    for conversion_id, func in (
        ("split-pdf", split_pages),
        ("extract-pdf-pages", extract_pages),
        ("rotate-pdf", rotate_pages),
        ("watermark-pdf", watermark_pdf),
        ("protect-pdf", protect_pdf),
        ("compress-pdf", compress_pdf),
        ("pdf-to-png", pdf_to_png),
        ("pdf-to-jpg", pdf_to_jpg),
    ):
        table[conversion_id] = FunctionConverter(Category.PDF, func)
    return table
