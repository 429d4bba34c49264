"""Serve a completed job's result files, singly or as a zip archive."""
import io
import logging
import zipfile
from pathlib import Path
from typing import Iterable

from fileforge.errors import ArtifactUnavailableError, NotFoundError

logger = logging.getLogger("fileforge.artifacts")

ZIP_CONTENT_TYPE = "application/zip"

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "ico": "image/x-icon",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "webm": "video/webm",
    "mp4": "video/mp4",
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "txt": "text/plain; charset=utf-8",
    "md": "text/markdown; charset=utf-8",
    "html": "text/html; charset=utf-8",
    "csv": "text/csv; charset=utf-8",
    "tsv": "text/tab-separated-values; charset=utf-8",
    "json": "application/json",
    "yaml": "application/x-yaml",
}


def content_type_for(name: str) -> str:
    ext = Path(name).suffix.lstrip(".").lower()
    return CONTENT_TYPES.get(ext, "application/octet-stream")


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        logger.error("Result file unreadable: %s (%s)", path.name, e.strerror or type(e).__name__)
        raise ArtifactUnavailableError(f"Result file could not be read: {path.name}") from e


def _sanitize_folder_name(name: str) -> str:
    """Safe folder name for zip (no path separators, no empty)."""
    s = "".join(c for c in name if c.isalnum() or c in "._- ").strip() or "file"
    return s[:64]


class ArtifactPackager:
    """Turns result file paths into downloadable payloads.

    Nothing is ever skipped: a zip is built fully in memory and any file that
    cannot be read aborts the whole archive with ArtifactUnavailableError.
    """

    def single(self, result_files: list[str], file_index: int = 0) -> tuple[bytes, str, str]:
        """(bytes, content type, filename) for one result."""
        if not result_files:
            raise NotFoundError("Job has no result files")
        if file_index < 0 or file_index >= len(result_files):
            raise NotFoundError(f"No result file at index {file_index}")
        path = Path(result_files[file_index])
        return _read(path), content_type_for(path.name), path.name

    def zip(self, result_files: list[str]) -> bytes:
        if not result_files:
            raise NotFoundError("Job has no result files")
        return self.zip_groups([("", result_files)])

    def zip_groups(self, groups: Iterable[tuple[str, list[str]]]) -> bytes:
        """One archive from several jobs' results; each non-empty label becomes a folder."""
        buf = io.BytesIO()
        count = 0
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            seen: set[str] = set()
            for label, paths in groups:
                folder = _sanitize_folder_name(label) if label else ""
                for p in paths:
                    path = Path(p)
                    arcname = f"{folder}/{path.name}" if folder else path.name
                    if arcname in seen:
                        arcname = _dedupe(arcname, seen)
                    seen.add(arcname)
                    zf.writestr(arcname, _read(path))
                    count += 1
        if count == 0:
            raise NotFoundError("No result files to package")
        logger.info("Packaged %s files into zip (%s bytes)", count, buf.tell())
        return buf.getvalue()


def _dedupe(arcname: str, seen: set[str]) -> str:
    stem, dot, ext = arcname.rpartition(".")
    if not dot:
        stem, ext = arcname, ""
    n = 2
    while True:
        candidate = f"{stem}_{n}.{ext}" if ext else f"{stem}_{n}"
        if candidate not in seen:
            return candidate
        n += 1

