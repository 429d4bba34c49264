"""Resize helpers: contain-fit without upscaling, exact stretch, square icon and page canvases."""
import logging
from typing import Optional, Tuple

from PIL import Image

logger = logging.getLogger("fileforge.resize")


def fit_within(
    img: Image.Image,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> Image.Image:
    """
    Scale image to fit inside target width and/or height, keeping aspect ratio.
    Never enlarges: an image already inside the box is returned unchanged (copied).
    If only one dimension is set, the other is unconstrained.
    """
    w, h = img.size
    if target_width is None and target_height is None:
        return img.copy()
    scales = []
    if target_width is not None:
        scales.append(target_width / w)
    if target_height is not None:
        scales.append(target_height / h)
    scale = min(scales)
    if scale >= 1.0:
        return img.copy()
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    logger.debug("Resizing %sx%s -> %sx%s", w, h, new_w, new_h)
    return img.resize((new_w, new_h), Image.Resampling.LANCZOS)


def contain_on_square(
    img: Image.Image,
    size: int,
    fill_color: Tuple[int, int, int, int] = (0, 0, 0, 0),
) -> Image.Image:
    """Scale to fit a size x size square (up or down) and center it on a fill background."""
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    w, h = img.size
    scale = min(size / w, size / h)
    new_w, new_h = max(1, int(w * scale)), max(1, int(h * scale))
    resized = img.resize((new_w, new_h), Image.Resampling.LANCZOS)
    out = Image.new("RGBA", (size, size), fill_color)
    out.paste(resized, ((size - new_w) // 2, (size - new_h) // 2), resized)
    return out


def stretch_to(img: Image.Image, width: int, height: int) -> Image.Image:
    """Exact width x height, ignoring aspect ratio."""
    if img.size == (width, height):
        return img.copy()
    return img.resize((width, height), Image.Resampling.LANCZOS)


def center_on_page(
    img: Image.Image,
    page_size: Tuple[int, int],
    margin: int = 0,
    fill_color: Tuple[int, int, int] = (255, 255, 255),
) -> Image.Image:
    """Scale (up or down) into the page less ``margin`` on every side and center it on an RGB page."""
    page_w, page_h = page_size
    box_w, box_h = max(1, page_w - 2 * margin), max(1, page_h - 2 * margin)
    w, h = img.size
    scale = min(box_w / w, box_h / h)
    new_w, new_h = max(1, int(w * scale)), max(1, int(h * scale))
    resized = img.resize((new_w, new_h), Image.Resampling.LANCZOS)
    page = Image.new("RGB", (page_w, page_h), fill_color)
    page.paste(resized, ((page_w - new_w) // 2, (page_h - new_h) // 2))
    return page
