"""Upload intake: validation and an opaque fileId -> bytes store on disk."""
import logging
import mimetypes
import re
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

import filetype

from fileforge import config
from fileforge.conversion.models import FileInfo
from fileforge.conversion.tempfiles import stale_files
from fileforge.errors import NotFoundError, ValidationError

logger = logging.getLogger("fileforge.uploads")

DANGEROUS_EXTENSIONS = {
    "exe", "dll", "bat", "cmd", "com", "pif", "scr", "vbs", "js",
    "jar", "app", "deb", "rpm", "msi", "sh", "ps1", "dmg",
}
DANGEROUS_MIMES = (
    "application/x-msdownload",
    "application/x-executable",
    "application/x-msdos-program",
    "application/x-sh",
    "application/x-shellscript",
)
_BLOCKED_MESSAGE = "File type is not allowed for security reasons"
_FILE_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def safe_filename(name: str) -> str:
    """Base name only, limited to a conservative character set."""
    base = Path((name or "").replace("\\", "/")).name
    cleaned = re.sub(r"[^\w.\- ]", "_", base).strip(" .")
    return cleaned[:128] or "upload"


def validate_upload(name: str, size: int, declared_mime: Optional[str], head: bytes = b"") -> None:
    """Size limit, extension blocklist, declared and sniffed MIME blocklist."""
    if size <= 0:
        raise ValidationError(f"File is empty: {name}")
    if size > config.MAX_FILE_SIZE_BYTES:
        raise ValidationError(f"File size exceeds {config.MAX_FILE_SIZE_MB}MB limit")
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    if ext in DANGEROUS_EXTENSIONS:
        raise ValidationError(_BLOCKED_MESSAGE)
    if declared_mime and any(m in declared_mime.lower() for m in DANGEROUS_MIMES):
        raise ValidationError(_BLOCKED_MESSAGE)
    if head:
        kind = filetype.guess(head)
        if kind is not None and any(m in kind.mime for m in DANGEROUS_MIMES):
            logger.warning("Blocked upload %s: sniffed %s", name, kind.mime)
            raise ValidationError(_BLOCKED_MESSAGE)


class UploadStore:
    """Stores validated uploads under UPLOAD_DIR as ``{fileId}_{name}``.

    Uploads share the job TTL: :meth:`sweep` removes anything older.
    """

    def __init__(self, root: Optional[Path] = None, clock: Callable[[], float] = time.time):
        self.root = Path(root or config.UPLOAD_DIR)
        self.root.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.Lock()
        self._files: dict[str, FileInfo] = {}

    def save(self, name: str, data: bytes, declared_mime: Optional[str] = None) -> FileInfo:
        name = safe_filename(name)
        validate_upload(name, len(data), declared_mime, data[:8192])
        file_id = uuid.uuid4().hex
        path = self.root / f"{file_id}_{name}"
        path.write_bytes(data)
        mime = declared_mime or mimetypes.guess_type(name)[0] or "application/octet-stream"
        info = FileInfo(
            id=file_id,
            name=name,
            size=len(data),
            mime_type=mime,
            path=str(path),
            created_at=self._clock(),
        )
        with self._lock:
            self._files[file_id] = info
        logger.info("Stored upload %s (%s bytes)", file_id, len(data))
        return info

    def stat(self, file_id: str) -> FileInfo:
        if not _FILE_ID_RE.match(file_id or ""):
            raise NotFoundError(f"File not found: {file_id}")
        with self._lock:
            info = self._files.get(file_id)
        if info is None or not Path(info.path).is_file():
            raise NotFoundError(f"File not found or expired: {file_id}")
        return info

    def get_uploaded_bytes(self, file_id: str) -> bytes:
        info = self.stat(file_id)
        try:
            return Path(info.path).read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"File not found or expired: {file_id}")

    def claim(self, file_id: str, conversion_type: str) -> FileInfo:
        """Bind an upload to one job. A second claim on the same fileId is NotFoundError."""
        self.stat(file_id)
        with self._lock:
            info = self._files.get(file_id)
            if info is None or info.chosen_preset is not None:
                raise NotFoundError(f"File not found or already converted: {file_id}")
            info.chosen_preset = conversion_type
            return info

    def release(self, file_id: str) -> None:
        """Undo a claim whose job was never created."""
        with self._lock:
            info = self._files.get(file_id)
            if info is not None:
                info.chosen_preset = None

    def consume(self, info: FileInfo) -> bytes:
        """Bytes of a claimed upload; the stored file is removed once read."""
        try:
            data = Path(info.path).read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"File not found or expired: {info.id}")
        self.discard(info.id)
        return data

    def discard(self, file_id: str) -> None:
        with self._lock:
            info = self._files.pop(file_id, None)
        if info is None:
            return
        try:
            Path(info.path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove upload %s: %s", file_id, e)

    def sweep(self, max_age_seconds: float) -> int:
        """Expire tracked uploads, then remove any file left on disk past the TTL
        (leftovers from a previous process included)."""
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [fid for fid, info in self._files.items() if info.created_at <= cutoff]
        for fid in stale:
            self.discard(fid)
        orphans = 0
        for path in stale_files(self.root, max_age_seconds):
            try:
                path.unlink(missing_ok=True)
                orphans += 1
            except OSError as e:
                logger.warning("Could not remove stale upload %s: %s", path.name, e)
        if stale or orphans:
            logger.info("Swept %s expired uploads, %s stale files", len(stale), orphans)
        return len(stale) + orphans
