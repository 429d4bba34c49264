"""Application configuration. Loads from environment and .env file."""
import logging
import os
import shutil
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Paths (override with env). FILEFORGE_DATA_DIR moves all three at once.
DATA_DIR = Path(os.getenv("FILEFORGE_DATA_DIR", str(BASE_DIR)))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(DATA_DIR / "uploads")))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(DATA_DIR / "outputs")))
TEMP_DIR = Path(os.getenv("TEMP_DIR", str(DATA_DIR / "tmp")))
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
TEMP_DIR.mkdir(parents=True, exist_ok=True)

# Conversion options (env overrides)
DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "90"))
ICO_SIZES = [16, 32, 48]
COMPRESS_QUALITY = int(os.getenv("COMPRESS_QUALITY", "80"))

# PDF tools: page rendering resolution, and the resolution images are laid out at on A4/Letter pages.
PDF_RENDER_DPI = int(os.getenv("PDF_RENDER_DPI", "144"))
PDF_IMAGE_DPI = 150

# Output bitrate is fixed per audio format; one codec per video container.
AUDIO_BITRATES = {"mp3": "192k"}
AUDIO_CODECS = {"mp3": "libmp3lame", "wav": "pcm_s16le"}
VIDEO_CODECS = {"webm": "libvpx-vp9", "mp4": "libx264"}

# Media (ffmpeg) conversions: "auto" enables them only when ffmpeg is on PATH.
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
ENABLE_MEDIA_CONVERSIONS = os.getenv("ENABLE_MEDIA_CONVERSIONS", "auto").strip().lower()


def media_conversions_available() -> bool:
    if ENABLE_MEDIA_CONVERSIONS in ("1", "true", "yes"):
        return True
    if ENABLE_MEDIA_CONVERSIONS in ("0", "false", "no"):
        return False
    return shutil.which(FFMPEG_BIN) is not None


# Jobs: state and artifacts are purged after the TTL regardless of download.
JOB_TTL_SECONDS = int(os.getenv("JOB_TTL_SECONDS", str(15 * 60)))
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
JOB_LOCK_STRIPES = int(os.getenv("JOB_LOCK_STRIPES", "16"))

# Concurrency
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(32, (os.cpu_count() or 4) + 4))))
# Subprocess-backed conversions (ffmpeg, headless Chromium) are bounded separately.
MAX_SUBPROCESS_CONVERSIONS = int(os.getenv("MAX_SUBPROCESS_CONVERSIONS", str(os.cpu_count() or 2)))
CONVERSION_TIMEOUT_SECONDS = int(os.getenv("CONVERSION_TIMEOUT_SECONDS", "300"))

# Temp cleanup: consecutive delete failures at this count are logged as errors.
TEMP_CLEANUP_ALERT_THRESHOLD = int(os.getenv("TEMP_CLEANUP_ALERT_THRESHOLD", "5"))

# Limits (env)
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "200"))
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024
MAX_FILES_PER_UPLOAD = int(os.getenv("MAX_FILES_PER_UPLOAD", "20"))
RATE_LIMIT_REQUESTS_PER_MINUTE = int(os.getenv("RATE_LIMIT_REQUESTS_PER_MINUTE", "10"))

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("fileforge")
