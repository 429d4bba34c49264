"""Image reformat / resize with Pillow (HEIC via pillow-heif)."""
import io
import logging
from typing import Optional

from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

from fileforge.config import COMPRESS_QUALITY, DEFAULT_QUALITY, ICO_SIZES
from fileforge.conversion.base import Converter, SourceFile
from fileforge.conversion.models import AdvancedOptions, Category
from fileforge.conversion.resize import contain_on_square, fit_within, stretch_to

# Register HEIF opener for HEIC files
register_heif_opener()

logger = logging.getLogger("fileforge.image")

PIL_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "gif": "GIF",
    "ico": "ICO",
}
LOSSY_FORMATS = {"JPEG", "WEBP"}


def flatten(img: Image.Image, background=(255, 255, 255)) -> Image.Image:
    """Composite transparency onto a solid background (JPEG has no alpha)."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        out = Image.new("RGB", rgba.size, background)
        out.paste(rgba, mask=rgba.split()[-1])
        return out
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


class ImageConverter(Converter):
    """Reformat to ``target`` (or keep the source format when ``target`` is None).

    Width/height options resize with a contain fit that never upscales, or
    stretch to the exact box with ``fit="fill"``.
    """

    category = Category.IMAGE

    def __init__(self, target: Optional[str], default_quality: int = DEFAULT_QUALITY):
        self.target = target
        self.default_quality = default_quality

    def __repr__(self) -> str:
        return f"ImageConverter({self.target or 'same'})"

    def _output_format(self, img: Image.Image) -> str:
        if self.target:
            return PIL_FORMATS[self.target]
        if img.format in PIL_FORMATS.values():
            return img.format
        return "JPEG"

    def convert(self, source: SourceFile, options: AdvancedOptions) -> bytes:
        with Image.open(io.BytesIO(source.data)) as opened:
            fmt = self._output_format(opened)
            opened.load()
            # Honour camera orientation before any resize.
            img = ImageOps.exif_transpose(opened)

            if options.fit == "fill" and options.width and options.height:
                img = stretch_to(img, options.width, options.height)
            elif options.width or options.height:
                img = fit_within(img, options.width, options.height)

            out = io.BytesIO()
            if fmt == "ICO":
                base = contain_on_square(img, max(ICO_SIZES))
                base.save(out, format="ICO", sizes=[(s, s) for s in ICO_SIZES])
            elif fmt == "JPEG":
                quality = options.quality or self.default_quality
                flatten(img).save(out, format="JPEG", quality=quality, optimize=True)
            elif fmt == "WEBP":
                quality = options.quality or self.default_quality
                if img.mode not in ("RGB", "RGBA"):
                    img = img.convert("RGBA")
                img.save(out, format="WEBP", quality=quality, method=4)
            elif fmt == "PNG":
                if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I"):
                    img = img.convert("RGBA")
                img.save(out, format="PNG", optimize=True)
            else:
                img.save(out, format=fmt)
        logger.debug("Encoded %s (%s bytes)", fmt, out.tell())
        return out.getvalue()


def converters() -> dict[str, Converter]:
    table: dict[str, Converter] = {}
    for conversion_id in (
        "png-to-jpg", "jpg-to-png", "png-to-webp", "jpg-to-webp", "webp-to-png", "webp-to-jpg",
        "gif-to-png", "gif-to-jpg", "gif-to-webp", "png-to-gif", "jpg-to-gif",
        "heic-to-jpg", "heic-to-png", "png-to-ico", "jpg-to-ico",
    ):
        table[conversion_id] = ImageConverter(conversion_id.rsplit("-to-", 1)[1])
    table["image-resize"] = ImageConverter(None)
    table["compress-image"] = ImageConverter(None, default_quality=COMPRESS_QUALITY)
    return table
