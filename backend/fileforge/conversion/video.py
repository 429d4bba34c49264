"""Video reformat with an optional resolution change, and audio extraction (ffmpeg)."""
import logging
import re
from typing import Optional

from fileforge.config import VIDEO_CODECS
from fileforge.conversion.audio import AudioConverter
from fileforge.conversion.base import Converter, SourceFile
from fileforge.conversion.media import run_ffmpeg
from fileforge.conversion.models import AdvancedOptions, Category
from fileforge.conversion.tempfiles import TempResourceManager

logger = logging.getLogger("fileforge.video")

_RESOLUTION_RE = re.compile(r"^\s*(\d{1,5})\s*[xX]\s*(\d{1,5})\s*$")

# Audio track codec paired with each container's video codec.
_AUDIO_FOR_CONTAINER = {"webm": ["-c:a", "libopus"], "mp4": ["-c:a", "aac"]}
_CODEC_ARGS = {
    "libvpx-vp9": ["-crf", "32", "-b:v", "0"],
    "libx264": ["-preset", "medium", "-crf", "23"],
}


def parse_resolution(value: Optional[str]) -> Optional[tuple[int, int]]:
    """Parse "WxH". Malformed or zero values give None (no resize)."""
    if not value:
        return None
    m = _RESOLUTION_RE.match(value)
    if not m:
        logger.debug("Ignoring malformed resolution %r", value)
        return None
    w, h = int(m.group(1)), int(m.group(2))
    if w <= 0 or h <= 0:
        return None
    return w, h


class VideoConverter(Converter):
    category = Category.VIDEO
    requires_path = True
    subprocess_backed = True

    def __init__(self, target: str, temp: TempResourceManager, timeout: float):
        self.target = target
        self.temp = temp
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"VideoConverter({self.target})"

    def build_args(self, source_path: str, options: AdvancedOptions) -> list[str]:
        codec = VIDEO_CODECS[self.target]
        args = ["-i", source_path]
        size = parse_resolution(options.resolution)
        if size:
            args += ["-vf", f"scale={size[0]}:{size[1]}"]
        args += ["-c:v", codec, *_CODEC_ARGS.get(codec, [])]
        args += _AUDIO_FOR_CONTAINER.get(self.target, [])
        return args

    def convert(self, source: SourceFile, options: AdvancedOptions) -> bytes:
        args = self.build_args(str(source.path), options)
        with self.temp.reserve(self.target) as out_path:
            run_ffmpeg([*args, str(out_path)], self.timeout)
            data = out_path.read_bytes()
        logger.info("Encoded video %s (%s -> %s bytes)", self.target, len(source.data), len(data))
        return data


def converters(temp: TempResourceManager, timeout: float) -> dict[str, Converter]:
    return {
        "mp4-to-webm": VideoConverter("webm", temp, timeout),
        "mp4-to-mp3": AudioConverter("mp3", temp, timeout, category=Category.VIDEO),
    }
