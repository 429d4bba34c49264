"""Audio reformat with an optional trim window (ffmpeg)."""
import logging

from fileforge.config import AUDIO_BITRATES, AUDIO_CODECS
from fileforge.conversion.base import Converter, SourceFile
from fileforge.conversion.media import run_ffmpeg
from fileforge.conversion.models import AdvancedOptions, Category
from fileforge.conversion.tempfiles import TempResourceManager

logger = logging.getLogger("fileforge.audio")


def trim_args(options: AdvancedOptions) -> tuple[list[str], list[str]]:
    """(input args, output args) for the trim window. No end means to natural end."""
    start = options.trim_start or 0
    before, after = [], []
    if start > 0:
        before = ["-ss", f"{start:g}"]
    if options.trim_end is not None:
        after = ["-t", f"{options.trim_end - start:g}"]
    return before, after


class AudioConverter(Converter):
    requires_path = True
    subprocess_backed = True

    def __init__(self, target: str, temp: TempResourceManager, timeout: float, category: Category = Category.AUDIO):
        self.target = target
        self.temp = temp
        self.timeout = timeout
        self.category = category

    def __repr__(self) -> str:
        return f"AudioConverter({self.target})"

    def convert(self, source: SourceFile, options: AdvancedOptions) -> bytes:
        before, after = trim_args(options)
        args = [*before, "-i", str(source.path), *after, "-vn", "-c:a", AUDIO_CODECS[self.target]]
        bitrate = AUDIO_BITRATES.get(self.target)
        if bitrate:
            args += ["-b:a", bitrate]
        with self.temp.reserve(self.target) as out_path:
            run_ffmpeg([*args, str(out_path)], self.timeout)
            data = out_path.read_bytes()
        logger.info("Encoded audio %s (%s -> %s bytes)", self.target, len(source.data), len(data))
        return data


def converters(temp: TempResourceManager, timeout: float) -> dict[str, Converter]:
    return {
        "mp3-to-wav": AudioConverter("wav", temp, timeout),
        "wav-to-mp3": AudioConverter("mp3", temp, timeout),
        "m4a-to-mp3": AudioConverter("mp3", temp, timeout),
        "aac-to-mp3": AudioConverter("mp3", temp, timeout),
    }
