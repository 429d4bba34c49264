"""Conversion service: accepts requests, runs them on a worker pool, serves results."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional

from fileforge import config
from fileforge.artifacts import ArtifactPackager
from fileforge.conversion.dispatcher import FormatDispatcher
from fileforge.conversion.models import FileInfo, Job, JobStatus
from fileforge.conversion.registry import output_extension, preset_by_id
from fileforge.conversion.tempfiles import TempResourceManager, stale_files
from fileforge.errors import FileForgeError, ValidationError
from fileforge.jobs import JobLifecycleTracker
from fileforge.uploads import UploadStore

logger = logging.getLogger("fileforge.service")


class ConversionService:
    """Wires uploads, dispatcher, job tracker and packager behind the API's operations."""

    def __init__(
        self,
        uploads: Optional[UploadStore] = None,
        dispatcher: Optional[FormatDispatcher] = None,
        tracker: Optional[JobLifecycleTracker] = None,
        packager: Optional[ArtifactPackager] = None,
        output_dir: Optional[Path] = None,
        max_workers: Optional[int] = None,
    ):
        self.uploads = uploads or UploadStore()
        self.dispatcher = dispatcher or FormatDispatcher()
        self.tracker = tracker or JobLifecycleTracker()
        self.packager = packager or ArtifactPackager()
        self.output_dir = Path(output_dir or config.OUTPUT_DIR)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.MAX_WORKERS,
            thread_name_prefix="fileforge-worker",
        )
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        logger.info("ConversionService initialized with max_workers=%s", max_workers or config.MAX_WORKERS)

    @property
    def temp(self) -> TempResourceManager:
        return self.dispatcher.temp

    # --- submission ---------------------------------------------------------

    def start_conversion(self, file_id: str, conversion_type: str, advanced_options: Any = None) -> str:
        """Validate, create a pending job and queue it. Returns the jobId immediately.

        Nothing is created (no job, no temp file) when validation fails.
        """
        if not file_id:
            raise ValidationError("fileId is required")
        return self.start_combined([file_id], conversion_type, advanced_options)

    def start_combined(self, file_ids: list[str], conversion_type: str, advanced_options: Any = None) -> str:
        """One job over several uploads (merge-pdf, images-to-pdf), in the given order."""
        if not file_ids or not all(file_ids):
            raise ValidationError("fileIds must be a non-empty list of fileIds")
        if len(set(file_ids)) != len(file_ids):
            raise ValidationError("fileIds must not repeat")
        if not conversion_type:
            raise ValidationError("conversionType is required")
        preset, options = self.dispatcher.validate(conversion_type, advanced_options)
        self.dispatcher.validate_file_count(preset, len(file_ids))
        for file_id in file_ids:
            info = self.uploads.stat(file_id)
            if info.extension not in preset.from_extensions:
                raise ValidationError(
                    f"{preset.label} does not accept .{info.extension or '?'} files "
                    f"(expected {', '.join(sorted(preset.from_extensions))})"
                )
        infos = []
        try:
            for file_id in file_ids:
                infos.append(self.uploads.claim(file_id, preset.id))
        except FileForgeError:
            for info in infos:
                self.uploads.release(info.id)
            raise
        source_name = infos[0].name if len(infos) == 1 else f"combined.{preset.to_extension}"
        job_id = self.tracker.create(conversion_type=preset.id, source_name=source_name)
        self._executor.submit(self._run_job, job_id, infos, preset.id, options, source_name)
        logger.info("Queued job %s (%s, %s files)", job_id, preset.id, len(infos))
        return job_id

    def start_batch(self, items: list[dict]) -> list[dict]:
        """Each item is submitted on its own; one bad item never affects the others."""
        if not items:
            raise ValidationError("items must be a non-empty list")
        results = []
        for item in items:
            file_id = item.get("fileId") or item.get("file_id")
            conversion_type = item.get("conversionType") or item.get("conversion_type")
            options = item.get("advancedOptions", item.get("advanced_options"))
            try:
                job_id = self.start_conversion(file_id, conversion_type, options)
                results.append({"fileId": file_id, "jobId": job_id})
            except FileForgeError as e:
                results.append({"fileId": file_id, "error": e.message, "errorCode": e.code})
        return results

    # --- worker -------------------------------------------------------------

    def _run_job(self, job_id: str, infos: list[FileInfo], conversion_type: str, options, source_name: str) -> None:
        try:
            self.tracker.start(job_id, message="Reading input file...")
            inputs = [(self.uploads.consume(info), info.extension) for info in infos]
            self.tracker.update(job_id, progress=30, message="Converting file...")
            output = self.dispatcher.combine(inputs, conversion_type, options)
            self.tracker.update(job_id, progress=80, message="Preparing output...")
            outputs = output if isinstance(output, list) else [output]
            paths = self._write_outputs(job_id, source_name, infos[0].extension, conversion_type, outputs)
            self.tracker.complete(job_id, [str(p) for p in paths])
            logger.info("Job %s completed -> %s file(s)", job_id, len(paths))
        except FileForgeError as e:
            logger.warning("Job %s failed (%s): %s", job_id, e.code, e.message)
            self.tracker.fail(job_id, e.message, e.code)
        except Exception as e:
            logger.exception("Job %s crashed: %s", job_id, type(e).__name__)
            self.tracker.fail(job_id, "Conversion failed", "conversion_failed")
        finally:
            for info in infos:
                self.uploads.discard(info.id)

    def _write_outputs(
        self, job_id: str, source_name: str, source_extension: str, conversion_type: str, outputs: list[bytes]
    ) -> list[Path]:
        """``{stem}_{job8}.{ext}``, or ``{stem}_{job8}_page-{n}.{ext}`` when there are several."""
        preset = preset_by_id(conversion_type)
        ext = output_extension(preset, source_extension)
        stem = Path(source_name).stem or "converted"
        paths = []
        for n, data in enumerate(outputs, start=1):
            suffix = f"_page-{n}" if len(outputs) > 1 else ""
            out_path = self.output_dir / f"{stem}_{job_id[:8]}{suffix}.{ext}"
            out_path.write_bytes(data)
            paths.append(out_path)
        return paths

    # --- queries ------------------------------------------------------------

    def get_status(self, job_id: str) -> Job:
        return self.tracker.get(job_id)

    def _completed(self, job_id: str) -> Job:
        job = self.tracker.get(job_id)
        if job.status != JobStatus.COMPLETED:
            raise ValidationError(f"Job {job_id} is not completed (status: {job.status.value})")
        return job

    def download_result(self, job_id: str, file_index: int = 0) -> tuple[bytes, str, str]:
        """(bytes, content type, filename) of one result file."""
        job = self._completed(job_id)
        return self.packager.single(job.result_files, file_index)

    def download_zip(self, job_id: str) -> bytes:
        job = self._completed(job_id)
        return self.packager.zip(job.result_files)

    def zip_outputs(self, job_ids: list[str]) -> bytes:
        """One archive across several completed jobs, a folder per source file."""
        if not job_ids:
            raise ValidationError("jobIds must be a non-empty list")
        groups = []
        for job_id in dict.fromkeys(job_ids):
            job = self._completed(job_id)
            label = f"{Path(job.source_name or 'file').stem}_{job.job_id[:8]}"
            groups.append((label, job.result_files))
        return self.packager.zip_groups(groups)

    # --- TTL sweeping -------------------------------------------------------

    def sweep(self) -> int:
        """Purge expired jobs with their artifacts, stale uploads and leftover temp files.

        Output files older than the TTL are removed even when no job refers to
        them; a live job's outputs are always younger than the job itself.
        """
        expired = self.tracker.sweep()
        artifacts = [Path(p) for job in expired for p in job.result_files or ()]
        artifacts += stale_files(self.output_dir, config.JOB_TTL_SECONDS)
        for path in artifacts:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove artifact %s: %s", path.name, e)
        self.uploads.sweep(config.JOB_TTL_SECONDS)
        self.temp.sweep(config.JOB_TTL_SECONDS)
        return len(expired)

    def _sweep_loop(self) -> None:
        while not self._stop.wait(config.SWEEP_INTERVAL_SECONDS):
            try:
                self.sweep()
            except Exception:
                logger.exception("TTL sweep failed")

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="fileforge-sweeper", daemon=True)
        self._sweeper.start()
        logger.info("TTL sweeper started (every %ss, ttl %ss)", config.SWEEP_INTERVAL_SECONDS, config.JOB_TTL_SECONDS)

    def shutdown(self, wait: bool = False) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self._executor.shutdown(wait=wait, cancel_futures=True)
        self.dispatcher.shutdown(wait=wait)
        logger.info("ConversionService stopped")


# Singleton
_conversion_service: Optional[ConversionService] = None
_service_lock = threading.Lock()


def get_conversion_service() -> ConversionService:
    global _conversion_service
    with _service_lock:
        if _conversion_service is None:
            _conversion_service = ConversionService()
        return _conversion_service


def shutdown_conversion_service() -> None:
    global _conversion_service
    with _service_lock:
        svc, _conversion_service = _conversion_service, None
    if svc is not None:
        svc.shutdown()
