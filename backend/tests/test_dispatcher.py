import subprocess
import threading
import time

import pytest

from fileforge import config
from fileforge.conversion.base import Converter, FunctionConverter
from fileforge.conversion.dispatcher import FormatDispatcher, parse_options
from fileforge.conversion.models import Category
from fileforge.conversion.registry import CONVERSION_PRESETS, required_options
from fileforge.errors import (
    ConversionError,
    ConversionTimeoutError,
    UnsupportedConversionError,
    ValidationError,
)

MANDATORY_VALUES = {
    "width": 10,
    "height": 10,
    "trim_start": 0,
    "resolution": "10x10",
    "sheet_name": "Sheet1",
    "pages": "1",
    "watermark_text": "DRAFT",
    "password": "s3cret",
}


def _options_for(preset):
    if not preset.requires_advanced:
        return None
    return {name: MANDATORY_VALUES[name] for name in required_options(preset)}


class RecordingConverter(Converter):
    category = Category.AUDIO
    requires_path = True
    subprocess_backed = True

    def __init__(self, error=None):
        self.error = error
        self.seen_paths = []

    def convert(self, source, options):
        assert source.path is not None and source.path.read_bytes() == source.data
        self.seen_paths.append(source.path)
        if self.error:
            raise self.error
        return b"converted"


def test_every_registered_preset_has_a_converter(dispatcher):
    for preset in CONVERSION_PRESETS:
        assert dispatcher.converter_for(preset.id) is not None


@pytest.mark.parametrize("preset", CONVERSION_PRESETS, ids=lambda p: p.id)
def test_zero_byte_input_is_a_validation_error(dispatcher, temp_manager, preset):
    with pytest.raises(ValidationError):
        dispatcher.convert(b"", preset.id, _options_for(preset))
    assert temp_manager.active_files() == []


def test_unknown_conversion_type(dispatcher):
    with pytest.raises(UnsupportedConversionError):
        dispatcher.convert(b"data", "abc-to-xyz")


def test_docx_to_pdf_fails_before_any_temp_file(dispatcher, temp_manager):
    with pytest.raises(UnsupportedConversionError) as exc:
        dispatcher.convert(b"PK\x03\x04 docx bytes", "docx-to-pdf")
    assert "LibreOffice" in exc.value.message
    assert temp_manager.active_files() == []


def test_image_resize_requires_dimensions(dispatcher):
    with pytest.raises(ValidationError) as exc:
        dispatcher.validate("image-resize", {"width": 100})
    assert "height" in exc.value.message
    preset, options = dispatcher.validate("image-resize", {"width": 100, "height": 50})
    assert (options.width, options.height) == (100, 50)


def test_camel_case_options_and_range_checks():
    options = parse_options({"trimStart": 1.5, "trimEnd": 4, "sheetName": "Data"})
    assert options.trim_start == 1.5
    assert options.trim_end == 4
    assert options.sheet_name == "Data"
    with pytest.raises(ValidationError):
        parse_options({"quality": 101})
    with pytest.raises(ValidationError):
        parse_options(["not", "a", "mapping"])


def test_trim_window_must_be_positive(dispatcher):
    with pytest.raises(ValidationError):
        dispatcher.validate("mp3-to-wav", {"trimStart": 10, "trimEnd": 5})


def test_media_presets_gated_when_ffmpeg_disabled(dispatcher, monkeypatch):
    monkeypatch.setattr(config, "ENABLE_MEDIA_CONVERSIONS", "false")
    with pytest.raises(UnsupportedConversionError) as exc:
        dispatcher.validate("wav-to-mp3")
    assert "ffmpeg" in exc.value.message
    # Non-media presets are unaffected.
    dispatcher.validate("csv-to-json")


def test_path_converter_gets_scoped_temp_file(temp_manager):
    converter = RecordingConverter()
    d = FormatDispatcher(temp=temp_manager, converters={"mp3-to-wav": converter}, timeout=5)
    assert d.convert(b"ID3 audio", "mp3-to-wav", source_extension="mp3") == b"converted"
    [path] = converter.seen_paths
    assert path.suffix == ".mp3"
    assert not path.exists()
    assert temp_manager.active_files() == []


def test_converter_failure_is_wrapped_without_paths(temp_manager):
    converter = RecordingConverter(RuntimeError("cannot decode /var/lib/secret/input.mp3\ntraceback line"))
    d = FormatDispatcher(temp=temp_manager, converters={"mp3-to-wav": converter}, timeout=5)
    with pytest.raises(ConversionError) as exc:
        d.convert(b"ID3 audio", "mp3-to-wav")
    err = exc.value
    assert err.conversion_type == "mp3-to-wav"
    assert "/var/lib/secret" not in err.message
    assert "traceback" not in err.message
    assert not converter.seen_paths[0].exists()


@pytest.mark.parametrize("error", [subprocess.TimeoutExpired(["ffmpeg"], 5), TimeoutError("slow")])
def test_timeouts_become_conversion_timeout(temp_manager, error):
    converter = RecordingConverter(error)
    d = FormatDispatcher(temp=temp_manager, converters={"mp3-to-wav": converter}, timeout=5)
    with pytest.raises(ConversionTimeoutError) as exc:
        d.convert(b"ID3 audio", "mp3-to-wav")
    assert isinstance(exc.value, TimeoutError)
    assert temp_manager.active_files() == []


def test_diagnostic_is_capped(dispatcher):
    text = dispatcher.diagnostic(ValueError("x" * 500))
    assert len(text) <= 200
    assert dispatcher.diagnostic(ValueError("")) == "ValueError"


def test_in_process_converter_is_time_limited(temp_manager):
    release = threading.Event()

    def stuck(data, options):
        release.wait(10)
        return b"late"

    d = FormatDispatcher(
        temp=temp_manager,
        converters={"csv-to-json": FunctionConverter(Category.DATA, stuck)},
        timeout=0.5,
    )
    started = time.monotonic()
    try:
        with pytest.raises(ConversionTimeoutError) as exc:
            d.convert(b"a,b\n1,2\n", "csv-to-json")
        assert time.monotonic() - started < 5
        assert exc.value.conversion_type == "csv-to-json"
    finally:
        release.set()
        d.shutdown(wait=True)


def test_in_process_converter_within_limit_returns_output(temp_manager):
    d = FormatDispatcher(
        temp=temp_manager,
        converters={"csv-to-json": FunctionConverter(Category.DATA, lambda data, options: b"[]")},
        timeout=5,
    )
    try:
        assert d.convert(b"a\n", "csv-to-json") == b"[]"
    finally:
        d.shutdown(wait=True)


def test_file_count_limits(dispatcher):
    with pytest.raises(ValidationError) as exc:
        dispatcher.convert(b"%PDF-1.4", "merge-pdf")
    assert "at least 2" in exc.value.message
    with pytest.raises(ValidationError) as exc:
        dispatcher.combine([(b"a,b\n", "csv"), (b"c,d\n", "csv")], "csv-to-json")
    assert "single file" in exc.value.message


def test_pdf_presets_require_their_options(dispatcher):
    with pytest.raises(ValidationError) as exc:
        dispatcher.validate("watermark-pdf")
    assert "watermark_text" in exc.value.message
    with pytest.raises(ValidationError):
        dispatcher.validate("protect-pdf", {"password": "abc"})
    dispatcher.validate("rotate-pdf")
