"""ffmpeg invocation shared by the audio and video converters."""
import logging
import subprocess

from fileforge import config

logger = logging.getLogger("fileforge.media")


def run_ffmpeg(args: list[str], timeout: float) -> None:
    """Run ffmpeg with ``args``. Raises subprocess.TimeoutExpired past ``timeout`` (the child is killed)."""
    cmd = [config.FFMPEG_BIN, "-hide_banner", "-nostdin", "-y", *args]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        logger.error("ffmpeg not found. Install ffmpeg for audio/video conversion.")
        raise RuntimeError("ffmpeg not installed")
    if result.returncode != 0:
        lines = (result.stderr or result.stdout or "").strip().splitlines()
        raise RuntimeError(f"ffmpeg exited with code {result.returncode}: {lines[-1] if lines else 'no output'}")
