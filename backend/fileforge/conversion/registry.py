"""Static catalog of supported conversions."""
import logging
from typing import Optional

from fileforge.config import MAX_FILES_PER_UPLOAD
from fileforge.conversion.models import SAME_FORMAT, Category, ConversionPreset
from fileforge.errors import UnsupportedConversionError

logger = logging.getLogger("fileforge.registry")


def _preset(
    conversion_id: str,
    label: str,
    from_extensions: list[str],
    to_extension: str,
    category: Category,
    requires_advanced: bool = False,
    required_options: tuple = (),
    min_files: int = 1,
    max_files: int = 1,
) -> ConversionPreset:
    return ConversionPreset(
        id=conversion_id,
        label=label,
        from_extensions=frozenset(e.lower() for e in from_extensions),
        to_extension=to_extension,
        category=category,
        requires_advanced=requires_advanced or bool(required_options),
        required_options=required_options,
        min_files=min_files,
        max_files=max(min_files, max_files),
    )


CONVERSION_PRESETS: list[ConversionPreset] = [
    # Documents
    _preset("docx-to-txt", "DOCX to TXT", ["docx"], "txt", Category.DOCUMENT),
    _preset("pdf-to-txt", "PDF to TXT", ["pdf"], "txt", Category.DOCUMENT),
    _preset("txt-to-docx", "TXT to DOCX", ["txt"], "docx", Category.DOCUMENT),
    _preset("txt-to-pdf", "TXT to PDF", ["txt"], "pdf", Category.DOCUMENT),
    _preset("md-to-pdf", "Markdown to PDF", ["md", "markdown"], "pdf", Category.DOCUMENT),
    _preset("html-to-pdf", "HTML to PDF", ["html", "htm"], "pdf", Category.DOCUMENT),
    _preset("md-to-html", "Markdown to HTML", ["md", "markdown"], "html", Category.DOCUMENT),
    _preset("html-to-md", "HTML to Markdown", ["html", "htm"], "md", Category.DOCUMENT),
    # Images
    _preset("png-to-jpg", "PNG to JPG", ["png"], "jpg", Category.IMAGE),
    _preset("jpg-to-png", "JPG to PNG", ["jpg", "jpeg"], "png", Category.IMAGE),
    _preset("png-to-webp", "PNG to WebP", ["png"], "webp", Category.IMAGE),
    _preset("jpg-to-webp", "JPG to WebP", ["jpg", "jpeg"], "webp", Category.IMAGE),
    _preset("webp-to-png", "WebP to PNG", ["webp"], "png", Category.IMAGE),
    _preset("webp-to-jpg", "WebP to JPG", ["webp"], "jpg", Category.IMAGE),
    _preset("gif-to-png", "GIF to PNG", ["gif"], "png", Category.IMAGE),
    _preset("gif-to-jpg", "GIF to JPG", ["gif"], "jpg", Category.IMAGE),
    _preset("gif-to-webp", "GIF to WebP", ["gif"], "webp", Category.IMAGE),
    _preset("png-to-gif", "PNG to GIF", ["png"], "gif", Category.IMAGE),
    _preset("jpg-to-gif", "JPG to GIF", ["jpg", "jpeg"], "gif", Category.IMAGE),
    _preset("heic-to-jpg", "HEIC to JPG", ["heic", "heif"], "jpg", Category.IMAGE),
    _preset("heic-to-png", "HEIC to PNG", ["heic", "heif"], "png", Category.IMAGE),
    _preset("png-to-ico", "PNG to ICO (Favicon)", ["png"], "ico", Category.IMAGE),
    _preset("jpg-to-ico", "JPG to ICO (Favicon)", ["jpg", "jpeg"], "ico", Category.IMAGE),
    _preset(
        "image-resize", "Resize Image", ["png", "jpg", "jpeg", "webp", "gif"], SAME_FORMAT, Category.IMAGE,
        requires_advanced=True,
    ),
    _preset("compress-image", "Compress Image", ["png", "jpg", "jpeg", "webp"], SAME_FORMAT, Category.IMAGE),
    # PDF tools
    _preset(
        "merge-pdf", "Merge PDFs", ["pdf"], "pdf", Category.PDF,
        min_files=2, max_files=MAX_FILES_PER_UPLOAD,
    ),
    _preset("split-pdf", "Split PDF into Pages", ["pdf"], "pdf", Category.PDF),
    _preset("extract-pdf-pages", "Extract PDF Pages", ["pdf"], "pdf", Category.PDF, required_options=("pages",)),
    _preset("rotate-pdf", "Rotate PDF Pages", ["pdf"], "pdf", Category.PDF),
    _preset(
        "watermark-pdf", "Watermark PDF", ["pdf"], "pdf", Category.PDF,
        required_options=("watermark_text",),
    ),
    _preset("protect-pdf", "Password-Protect PDF", ["pdf"], "pdf", Category.PDF, required_options=("password",)),
    _preset("compress-pdf", "Compress PDF", ["pdf"], "pdf", Category.PDF),
    _preset("pdf-to-png", "PDF to PNG Images", ["pdf"], "png", Category.PDF),
    _preset("pdf-to-jpg", "PDF to JPG Images", ["pdf"], "jpg", Category.PDF),
    _preset(
        "images-to-pdf", "Images to PDF", ["png", "jpg", "jpeg", "webp", "gif", "heic", "heif"], "pdf",
        Category.PDF, max_files=MAX_FILES_PER_UPLOAD,
    ),
    # Audio
    _preset("mp3-to-wav", "MP3 to WAV", ["mp3"], "wav", Category.AUDIO),
    _preset("wav-to-mp3", "WAV to MP3", ["wav"], "mp3", Category.AUDIO),
    _preset("m4a-to-mp3", "M4A to MP3", ["m4a"], "mp3", Category.AUDIO),
    _preset("aac-to-mp3", "AAC to MP3", ["aac"], "mp3", Category.AUDIO),
    # Video
    _preset("mp4-to-webm", "MP4 to WEBM", ["mp4"], "webm", Category.VIDEO),
    _preset("mp4-to-mp3", "Extract Audio (MP4 to MP3)", ["mp4"], "mp3", Category.VIDEO),
    # Data
    _preset("csv-to-xlsx", "CSV to XLSX", ["csv"], "xlsx", Category.DATA),
    _preset("xlsx-to-csv", "XLSX to CSV", ["xlsx"], "csv", Category.DATA),
    _preset("xlsx-to-json", "XLSX to JSON", ["xlsx"], "json", Category.DATA),
    _preset("json-to-csv", "JSON to CSV", ["json"], "csv", Category.DATA),
    _preset("json-to-xlsx", "JSON to XLSX", ["json"], "xlsx", Category.DATA),
    _preset("csv-to-json", "CSV to JSON", ["csv"], "json", Category.DATA),
    _preset("md-to-csv", "Markdown to CSV", ["md", "markdown"], "csv", Category.DATA),
    _preset("xml-to-json", "XML to JSON", ["xml"], "json", Category.DATA),
    _preset("xml-to-csv", "XML to CSV", ["xml"], "csv", Category.DATA),
    _preset("yaml-to-json", "YAML to JSON", ["yaml", "yml"], "json", Category.DATA),
    _preset("yaml-to-csv", "YAML to CSV", ["yaml", "yml"], "csv", Category.DATA),
    _preset("tsv-to-csv", "TSV to CSV", ["tsv"], "csv", Category.DATA),
    _preset("csv-to-tsv", "CSV to TSV", ["csv"], "tsv", Category.DATA),
    _preset("json-to-yaml", "JSON to YAML", ["json"], "yaml", Category.DATA),
]

# Known conversions that this deployment refuses outright.
DISABLED_CONVERSIONS = {
    "docx-to-pdf": "DOCX to PDF conversion requires LibreOffice, which is not available in this deployment.",
    "pdf-to-docx": "PDF to DOCX conversion requires layout-reconstruction tools that are not available in this deployment.",
}

# Fields that must be present when a preset has requires_advanced set.
MANDATORY_OPTIONS = {
    Category.IMAGE: ("width", "height"),
    Category.AUDIO: ("trim_start",),
    Category.VIDEO: ("resolution",),
    Category.DATA: ("sheet_name",),
    Category.DOCUMENT: (),
    Category.PDF: (),
}

_PRESETS_BY_ID: dict[str, ConversionPreset] = {p.id: p for p in CONVERSION_PRESETS}
if len(_PRESETS_BY_ID) != len(CONVERSION_PRESETS):
    raise RuntimeError("Duplicate conversion preset id in CONVERSION_PRESETS")


def presets_for_extension(extension: str) -> list[ConversionPreset]:
    """Presets accepting ``extension`` (case-insensitive, leading dot ignored). Empty when unsupported."""
    ext = (extension or "").strip().lower().lstrip(".")
    if not ext:
        return []
    return [p for p in CONVERSION_PRESETS if ext in p.from_extensions]


def preset_by_id(conversion_type: str) -> ConversionPreset:
    """Resolve a conversion type. Raises UnsupportedConversionError for unknown or disabled ids."""
    conversion_type = (conversion_type or "").strip().lower()
    reason: Optional[str] = DISABLED_CONVERSIONS.get(conversion_type)
    if reason:
        logger.info("Rejected disabled conversion %s", conversion_type)
        raise UnsupportedConversionError(conversion_type, reason)
    preset = _PRESETS_BY_ID.get(conversion_type)
    if preset is None:
        raise UnsupportedConversionError(conversion_type)
    return preset


def required_options(preset: ConversionPreset) -> tuple:
    """Option fields a request for ``preset`` must carry."""
    if not preset.requires_advanced:
        return ()
    return preset.required_options or MANDATORY_OPTIONS[preset.category]


def all_presets() -> list[ConversionPreset]:
    return list(CONVERSION_PRESETS)


def output_extension(preset: ConversionPreset, source_extension: Optional[str] = None) -> str:
    """Extension of the produced file; SAME_FORMAT presets follow the source."""
    if preset.to_extension != SAME_FORMAT:
        return preset.to_extension
    ext = (source_extension or "").lower().lstrip(".")
    if ext in preset.from_extensions:
        return "jpg" if ext == "jpeg" else ext
    return "jpg"
