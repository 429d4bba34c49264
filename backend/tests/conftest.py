import os
import tempfile
import time

# Must be set before fileforge.config is imported.
os.environ.setdefault("FILEFORGE_DATA_DIR", tempfile.mkdtemp(prefix="fileforge-test-"))
os.environ.setdefault("RATE_LIMIT_REQUESTS_PER_MINUTE", "100000")
os.environ.setdefault("ENABLE_MEDIA_CONVERSIONS", "true")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "3600")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

from fileforge.conversion.dispatcher import FormatDispatcher  # noqa: E402
from fileforge.conversion.models import JobStatus  # noqa: E402
from fileforge.conversion.service import ConversionService  # noqa: E402
from fileforge.conversion.tempfiles import TempResourceManager  # noqa: E402
from fileforge.uploads import UploadStore  # noqa: E402


@pytest.fixture
def temp_manager(tmp_path):
    return TempResourceManager(tmp_path / "tmp", alert_threshold=3)


@pytest.fixture
def dispatcher(temp_manager):
    return FormatDispatcher(temp=temp_manager, timeout=5, max_subprocesses=2)


@pytest.fixture
def service(tmp_path, dispatcher):
    svc = ConversionService(
        uploads=UploadStore(tmp_path / "uploads"),
        dispatcher=dispatcher,
        output_dir=tmp_path / "outputs",
        max_workers=8,
    )
    yield svc
    svc.shutdown(wait=True)


def wait_for_terminal(svc, job_id, timeout=15.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = svc.get_status(job_id)
        if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            return job
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish within {timeout}s")


@pytest.fixture
def wait_for():
    return wait_for_terminal
