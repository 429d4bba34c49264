"""Scoped temporary files for converters that need a filesystem path."""
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from fileforge import config

logger = logging.getLogger("fileforge.tempfiles")

TEMP_PREFIX = "ff-"


def stale_files(root: Path, max_age_seconds: float, pattern: str = "*") -> list[Path]:
    """Regular files under ``root`` not modified for ``max_age_seconds``."""
    cutoff = time.time() - max_age_seconds
    stale = []
    for path in root.glob(pattern):
        try:
            if path.is_file() and path.stat().st_mtime <= cutoff:
                stale.append(path)
        except OSError:
            continue
    return stale


class TempResourceManager:
    """Creates collision-free temp files under one root and guarantees their removal.

    Every file handed out by :meth:`temp_file` or :meth:`reserve` is deleted when
    the ``with`` block exits, including on exceptions. Delete failures are logged,
    never raised; :meth:`sweep` reclaims anything left behind.
    """

    def __init__(self, root: Optional[Path] = None, alert_threshold: Optional[int] = None):
        self.root = Path(root or config.TEMP_DIR)
        self.root.mkdir(parents=True, exist_ok=True)
        self.alert_threshold = alert_threshold or config.TEMP_CLEANUP_ALERT_THRESHOLD
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self.total_failures = 0

    def _new_path(self, extension_hint: str, role: str) -> Path:
        ext = (extension_hint or "").strip().lstrip(".").lower()
        name = f"{TEMP_PREFIX}{role}-{uuid.uuid4().hex}"
        if ext:
            name = f"{name}.{ext}"
        return self.root / name

    @contextmanager
    def temp_file(self, data: bytes, extension_hint: str = "") -> Iterator[Path]:
        """Write ``data`` to a fresh temp file and yield its path for the block's duration."""
        path = self._new_path(extension_hint, "in")
        try:
            path.write_bytes(data)
            yield path
        finally:
            self.release(path)

    @contextmanager
    def reserve(self, extension_hint: str = "") -> Iterator[Path]:
        """Yield an unused path (nothing written) that is removed afterwards if created."""
        path = self._new_path(extension_hint, "out")
        try:
            yield path
        finally:
            self.release(path)

    def release(self, path: Path) -> bool:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self._record_failure(path, e)
            return False
        with self._lock:
            self._consecutive_failures = 0
        return True

    def _record_failure(self, path: Path, err: OSError) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self.total_failures += 1
            failures = self._consecutive_failures
        if failures >= self.alert_threshold:
            logger.error(
                "Temp cleanup failing repeatedly (%s consecutive): could not remove %s: %s",
                failures, path.name, err,
            )
        else:
            logger.warning("Could not remove temp file %s: %s", path.name, err)

    def sweep(self, max_age_seconds: float) -> int:
        """Remove temp files older than ``max_age_seconds``. Returns the number removed."""
        removed = 0
        for path in stale_files(self.root, max_age_seconds, f"{TEMP_PREFIX}*"):
            if self.release(path):
                removed += 1
        if removed:
            logger.info("Swept %s stale temp files", removed)
        return removed

    def active_files(self) -> list[Path]:
        return sorted(self.root.glob(f"{TEMP_PREFIX}*"))
