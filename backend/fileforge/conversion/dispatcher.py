"""Routes a conversion type to its converter and owns source materialization."""
import logging
import re
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from fileforge import config
from fileforge.conversion import audio, data, document, image, pdf, video
from fileforge.conversion.base import Converter, Output, SourceFile
from fileforge.conversion.models import AdvancedOptions, Category, ConversionPreset
from fileforge.conversion.registry import preset_by_id, required_options
from fileforge.conversion.tempfiles import TempResourceManager
from fileforge.errors import (
    ConversionError,
    ConversionTimeoutError,
    FileForgeError,
    UnsupportedConversionError,
    ValidationError,
)

logger = logging.getLogger("fileforge.dispatcher")

MEDIA_UNAVAILABLE_REASON = "Audio and video conversions require ffmpeg, which is not available in this deployment."
_MAX_DIAGNOSTIC_CHARS = 200
# Absolute/multi-segment paths and scoped temp file names.
_PATH_RE = re.compile(r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+){2,}|ff-(?:in|out)-[0-9a-f]{32}(?:\.\w+)?")


def parse_options(raw: Union[AdvancedOptions, Mapping[str, Any], None]) -> AdvancedOptions:
    """Build AdvancedOptions from a client mapping (camelCase or snake_case keys)."""
    if raw is None:
        return AdvancedOptions()
    if isinstance(raw, AdvancedOptions):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("advancedOptions must be an object")
    try:
        return AdvancedOptions.model_validate(dict(raw))
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "advancedOptions"
        raise ValidationError(f"Invalid advanced option '{field}': {first.get('msg', 'invalid value')}")


def build_converters(temp: TempResourceManager, timeout: float) -> dict[str, Converter]:
    """One table for every category; later categories never shadow earlier ids."""
    table: dict[str, Converter] = {}
    for part in (
        image.converters(),
        audio.converters(temp, timeout),
        video.converters(temp, timeout),
        document.converters(timeout),
        data.converters(),
        pdf.converters(),
    ):
        overlap = table.keys() & part.keys()
        if overlap:
            raise RuntimeError(f"Duplicate converter ids: {sorted(overlap)}")
        table.update(part)
    return table


class FormatDispatcher:
    """Resolve, validate, and run a single conversion.

    The converter table is built once. Converters with ``requires_path`` get the
    input written to a scoped temp file that is removed on every exit path;
    subprocess-backed converters run under a semaphore sized to the CPU count so
    a burst of uploads queues instead of spawning unbounded ffmpeg/Chromium
    processes, and enforce ``timeout`` on the child process. In-process
    converters run on a dedicated thread pool and are abandoned once they
    exceed ``timeout``. Every failure leaves as a FileForgeError subclass.
    """

    def __init__(
        self,
        temp: Optional[TempResourceManager] = None,
        converters: Optional[Mapping[str, Converter]] = None,
        timeout: Optional[float] = None,
        max_subprocesses: Optional[int] = None,
        max_in_process: Optional[int] = None,
    ):
        self.temp = temp or TempResourceManager()
        self.timeout = timeout or config.CONVERSION_TIMEOUT_SECONDS
        self._converters = dict(converters) if converters is not None else build_converters(self.temp, self.timeout)
        self._subprocess_slots = threading.BoundedSemaphore(max_subprocesses or config.MAX_SUBPROCESS_CONVERSIONS)
        self._in_process = ThreadPoolExecutor(
            max_workers=max_in_process or config.MAX_WORKERS,
            thread_name_prefix="fileforge-convert",
        )
        logger.info("FormatDispatcher ready with %s converters", len(self._converters))

    def converter_for(self, conversion_type: str) -> Converter:
        converter = self._converters.get(conversion_type)
        if converter is None:
            raise UnsupportedConversionError(conversion_type)
        return converter

    def validate(self, conversion_type: str, options: Any = None) -> tuple[ConversionPreset, AdvancedOptions]:
        """Check everything about a request that can be checked without touching its bytes."""
        preset = preset_by_id(conversion_type)
        if preset.category in (Category.AUDIO, Category.VIDEO) and not config.media_conversions_available():
            raise UnsupportedConversionError(preset.id, MEDIA_UNAVAILABLE_REASON)
        self.converter_for(preset.id)
        opts = parse_options(options)
        missing = [name for name in required_options(preset) if getattr(opts, name) is None]
        if missing:
            raise ValidationError(f"{preset.label} requires advanced options: {', '.join(missing)}")
        if opts.trim_end is not None and opts.trim_end <= (opts.trim_start or 0):
            raise ValidationError("trimEnd must be greater than trimStart")
        return preset, opts

    def validate_file_count(self, preset: ConversionPreset, count: int) -> None:
        if count < preset.min_files:
            raise ValidationError(f"{preset.label} needs at least {preset.min_files} files")
        if count > preset.max_files:
            if preset.max_files == 1:
                raise ValidationError(f"{preset.label} takes a single file")
            raise ValidationError(f"{preset.label} takes at most {preset.max_files} files")

    def convert(
        self,
        input_bytes: bytes,
        conversion_type: str,
        options: Any = None,
        source_extension: str = "",
    ) -> Output:
        """Bytes, or a list of bytes for presets that produce one file per page."""
        return self.combine([(input_bytes, source_extension)], conversion_type, options)

    def combine(
        self,
        inputs: Sequence[tuple[bytes, str]],
        conversion_type: str,
        options: Any = None,
    ) -> Output:
        """Run one conversion over ``(bytes, extension)`` inputs, in order."""
        preset, opts = self.validate(conversion_type, options)
        if not inputs or any(not data for data, _ in inputs):
            raise ValidationError("Input file is empty")
        self.validate_file_count(preset, len(inputs))
        converter = self.converter_for(preset.id)
        default_ext = next(iter(sorted(preset.from_extensions)))
        sources = [
            SourceFile(data=data, extension=(ext or "").lower().lstrip(".") or default_ext)
            for data, ext in inputs
        ]
        size = sum(len(s.data) for s in sources)
        logger.info("Converting %s (%s files, %s bytes)", preset.id, len(sources), size)
        try:
            if converter.subprocess_backed:
                with self._subprocess_slots:
                    output = self._run(converter, sources, opts)
            else:
                output = self._run_bounded(preset.id, self._run, converter, sources, opts)
        except FileForgeError:
            raise
        except (subprocess.TimeoutExpired, TimeoutError):
            logger.warning("%s timed out after %ss (%s bytes)", preset.id, self.timeout, size)
            raise ConversionTimeoutError(preset.id, self.timeout)
        except Exception as e:
            logger.warning("%s failed (%s bytes): %s", preset.id, size, type(e).__name__)
            raise ConversionError(preset.id, self.diagnostic(e))
        outputs = output if isinstance(output, list) else [output]
        if not outputs or not all(outputs):
            raise ConversionError(preset.id, "converter produced no output")
        logger.info("Converted %s (%s -> %s bytes)", preset.id, size, sum(len(o) for o in outputs))
        return output

    def _run(self, converter: Converter, sources: list[SourceFile], options: AdvancedOptions) -> Output:
        if converter.combines_sources or len(sources) > 1:
            return converter.convert_many(sources, options)
        source = sources[0]
        if not converter.requires_path:
            return converter.convert(source, options)
        with self.temp.temp_file(source.data, source.extension) as path:
            source.path = path
            try:
                return converter.convert(source, options)
            finally:
                source.path = None

    def _run_bounded(self, conversion_type: str, func: Callable[..., Output], *args) -> Output:
        future = self._in_process.submit(func, *args)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeoutError:
            if future.done():
                # The converter itself raised TimeoutError.
                raise
            future.cancel()
            logger.error("%s still running after %ss; abandoning it", conversion_type, self.timeout)
            raise ConversionTimeoutError(conversion_type, self.timeout)

    def shutdown(self, wait: bool = False) -> None:
        self._in_process.shutdown(wait=wait, cancel_futures=True)

    def diagnostic(self, err: Exception) -> str:
        """First line of the error, with filesystem paths removed and length capped."""
        text = str(err).strip().splitlines()[0] if str(err).strip() else type(err).__name__
        text = _PATH_RE.sub("<file>", text)
        if len(text) > _MAX_DIAGNOSTIC_CHARS:
            text = text[: _MAX_DIAGNOSTIC_CHARS - 3] + "..."
        return text or type(err).__name__
