import io

import pytest
from PIL import Image

from fileforge.errors import ConversionError


def _image_bytes(fmt="PNG", size=(200, 100), mode="RGBA", color=(255, 0, 0, 128)):
    img = Image.new(mode, size, color if mode == "RGBA" else color[:3])
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


def _open(data):
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def test_png_to_jpg_flattens_alpha(dispatcher):
    out = _open(dispatcher.convert(_image_bytes(), "png-to-jpg"))
    assert out.format == "JPEG"
    assert out.mode == "RGB"
    assert out.size == (200, 100)


@pytest.mark.parametrize("conversion_type,fmt", [
    ("png-to-webp", "WEBP"),
    ("png-to-gif", "GIF"),
    ("jpg-to-png", "PNG"),
])
def test_reformat(dispatcher, conversion_type, fmt):
    src_fmt = "JPEG" if conversion_type.startswith("jpg") else "PNG"
    mode = "RGB" if src_fmt == "JPEG" else "RGBA"
    out = _open(dispatcher.convert(_image_bytes(src_fmt, mode=mode), conversion_type))
    assert out.format == fmt


def test_resize_contains_and_keeps_format(dispatcher):
    out = _open(dispatcher.convert(_image_bytes(), "image-resize", {"width": 50, "height": 50}, source_extension="png"))
    assert out.format == "PNG"
    assert out.size == (50, 25)


def test_resize_never_upscales(dispatcher):
    src = _image_bytes("JPEG", size=(40, 30), mode="RGB")
    out = _open(dispatcher.convert(src, "image-resize", {"width": 400, "height": 400}, source_extension="jpg"))
    assert out.format == "JPEG"
    assert out.size == (40, 30)


def test_quality_option_changes_lossy_output(dispatcher):
    src = Image.effect_noise((256, 256), 64).convert("RGB")
    buf = io.BytesIO()
    src.save(buf, format="PNG")
    low = dispatcher.convert(buf.getvalue(), "png-to-jpg", {"quality": 10})
    high = dispatcher.convert(buf.getvalue(), "png-to-jpg", {"quality": 95})
    assert len(low) < len(high)


def test_png_to_ico_favicon_sizes(dispatcher):
    out = _open(dispatcher.convert(_image_bytes(size=(300, 120)), "png-to-ico"))
    assert out.format == "ICO"
    assert (48, 48) in out.info["sizes"]
    assert (16, 16) in out.info["sizes"]


def test_corrupt_image_is_conversion_error(dispatcher):
    with pytest.raises(ConversionError) as exc:
        dispatcher.convert(b"\x89PNG not really", "png-to-jpg")
    assert exc.value.conversion_type == "png-to-jpg"


def test_resize_fill_stretches_to_exact_box(dispatcher):
    opts = {"width": 50, "height": 50, "fit": "fill"}
    out = _open(dispatcher.convert(_image_bytes(), "image-resize", opts, source_extension="png"))
    assert out.size == (50, 50)


def test_compress_image_keeps_format_and_shrinks(dispatcher):
    src = Image.effect_noise((256, 256), 64).convert("RGB")
    buf = io.BytesIO()
    src.save(buf, format="JPEG", quality=98)
    out = dispatcher.convert(buf.getvalue(), "compress-image", source_extension="jpg")
    assert _open(out).format == "JPEG"
    assert len(out) < len(buf.getvalue())
