import subprocess
from pathlib import Path

import pytest

from fileforge.conversion import media
from fileforge.conversion.audio import trim_args
from fileforge.conversion.dispatcher import parse_options
from fileforge.conversion.video import parse_resolution
from fileforge.errors import ConversionError, ConversionTimeoutError


class FakeFfmpeg:
    """Stands in for subprocess.run; writes a fake output file like ffmpeg would."""

    def __init__(self, returncode=0, timeout=False):
        self.returncode = returncode
        self.timeout = timeout
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        input_path = Path(cmd[cmd.index("-i") + 1])
        assert input_path.exists()
        if self.timeout:
            raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))
        if self.returncode == 0:
            Path(cmd[-1]).write_bytes(b"encoded:" + input_path.read_bytes())
            return subprocess.CompletedProcess(cmd, 0, "", "")
        return subprocess.CompletedProcess(cmd, self.returncode, "", "frame=0\nInvalid data found when processing input")


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    def install(**kwargs):
        fake = FakeFfmpeg(**kwargs)
        monkeypatch.setattr(media.subprocess, "run", fake)
        return fake
    return install


@pytest.mark.parametrize("conversion_type,ext", [("wav-to-mp3", "wav"), ("mp4-to-webm", "mp4"), ("mp4-to-mp3", "mp4")])
def test_temp_files_removed_after_success(dispatcher, temp_manager, fake_ffmpeg, conversion_type, ext):
    fake = fake_ffmpeg()
    out = dispatcher.convert(b"media-bytes", conversion_type, source_extension=ext)
    assert out == b"encoded:media-bytes"
    assert len(fake.calls) == 1
    assert temp_manager.active_files() == []
    for arg in fake.calls[0]:
        if "ff-" in arg:
            assert not Path(arg).exists()


@pytest.mark.parametrize("conversion_type", ["mp3-to-wav", "mp4-to-webm"])
def test_temp_files_removed_after_failure(dispatcher, temp_manager, fake_ffmpeg, conversion_type):
    fake_ffmpeg(returncode=1)
    with pytest.raises(ConversionError) as exc:
        dispatcher.convert(b"corrupt", conversion_type)
    assert "Invalid data found" in exc.value.message
    assert temp_manager.active_files() == []


def test_temp_files_removed_after_timeout(dispatcher, temp_manager, fake_ffmpeg):
    fake_ffmpeg(timeout=True)
    with pytest.raises(ConversionTimeoutError):
        dispatcher.convert(b"long audio", "wav-to-mp3")
    assert temp_manager.active_files() == []


def test_missing_ffmpeg_binary_is_a_conversion_error(dispatcher, monkeypatch):
    def not_installed(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(media.subprocess, "run", not_installed)
    with pytest.raises(ConversionError) as exc:
        dispatcher.convert(b"audio", "mp3-to-wav")
    assert "ffmpeg not installed" in exc.value.message


def test_audio_command_uses_trim_window_and_fixed_bitrate(dispatcher, fake_ffmpeg):
    fake = fake_ffmpeg()
    dispatcher.convert(b"audio", "wav-to-mp3", {"trimStart": 2, "trimEnd": 7.5})
    cmd = fake.calls[0]
    assert cmd[cmd.index("-ss") + 1] == "2"
    assert cmd.index("-ss") < cmd.index("-i")
    assert cmd[cmd.index("-t") + 1] == "5.5"
    assert cmd[cmd.index("-b:a") + 1] == "192k"
    assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"


def test_trim_defaults_to_whole_file():
    assert trim_args(parse_options(None)) == ([], [])
    assert trim_args(parse_options({"trimEnd": 3})) == ([], ["-t", "3"])


def test_video_resolution_is_applied(dispatcher, fake_ffmpeg):
    fake = fake_ffmpeg()
    dispatcher.convert(b"video", "mp4-to-webm", {"resolution": "640x360"})
    cmd = fake.calls[0]
    assert cmd[cmd.index("-vf") + 1] == "scale=640:360"
    assert cmd[cmd.index("-c:v") + 1] == "libvpx-vp9"


def test_malformed_resolution_is_ignored(dispatcher, fake_ffmpeg):
    fake = fake_ffmpeg()
    dispatcher.convert(b"video", "mp4-to-webm", {"resolution": "huge"})
    assert "-vf" not in fake.calls[0]


@pytest.mark.parametrize("value,expected", [
    ("1280x720", (1280, 720)),
    (" 640 X 480 ", (640, 480)),
    ("0x480", None),
    ("640", None),
    ("", None),
    (None, None),
])
def test_parse_resolution(value, expected):
    assert parse_resolution(value) == expected
