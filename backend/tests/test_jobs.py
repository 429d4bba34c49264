import threading

import pytest

from fileforge.conversion.models import JobStatus
from fileforge.errors import NotFoundError
from fileforge.jobs import JobLifecycleTracker


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return JobLifecycleTracker(ttl_seconds=900, stripes=4, clock=clock)


def test_new_job_is_pending(tracker):
    job = tracker.get(tracker.create("csv-to-json", "a.csv"))
    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert job.result_files is None and job.error is None


def test_happy_path(tracker):
    job_id = tracker.create()
    assert tracker.start(job_id)
    assert tracker.get(job_id).status == JobStatus.PROCESSING
    assert tracker.complete(job_id, ["/out/a.json"])
    job = tracker.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result_files == ["/out/a.json"]
    assert job.error is None
    assert job.progress == 100


def test_terminal_states_are_final(tracker):
    done = tracker.create()
    tracker.start(done)
    tracker.complete(done, ["/out/a.json"])
    assert tracker.fail(done, "late failure") is False
    assert tracker.update(done, progress=5, message="again") is False
    job = tracker.get(done)
    assert job.status == JobStatus.COMPLETED and job.error is None and job.message == "Conversion complete"

    failed = tracker.create()
    tracker.fail(failed, "bad input", "validation_error")
    assert tracker.complete(failed, ["/out/b.json"]) is False
    job = tracker.get(failed)
    assert job.status == JobStatus.FAILED
    assert job.error == "bad input"
    assert job.error_code == "validation_error"
    assert job.result_files is None


def test_backward_transition_rejected(tracker):
    job_id = tracker.create()
    tracker.start(job_id)
    assert tracker.update(job_id, status=JobStatus.PENDING) is False
    assert tracker.get(job_id).status == JobStatus.PROCESSING


def test_pending_cannot_jump_to_completed(tracker):
    job_id = tracker.create()
    assert tracker.update(job_id, status=JobStatus.COMPLETED, result_files=["x"]) is False
    assert tracker.get(job_id).status == JobStatus.PENDING


def test_completed_requires_result_files(tracker):
    job_id = tracker.create()
    tracker.start(job_id)
    with pytest.raises(ValueError):
        tracker.complete(job_id, [])
    assert tracker.get(job_id).status == JobStatus.PROCESSING


def test_progress_never_decreases(tracker):
    job_id = tracker.create()
    tracker.start(job_id)
    tracker.update(job_id, progress=60)
    tracker.update(job_id, progress=30)
    assert tracker.get(job_id).progress == 60
    tracker.update(job_id, progress=400)
    assert tracker.get(job_id).progress == 100


def test_get_returns_a_snapshot(tracker):
    job_id = tracker.create()
    tracker.start(job_id)
    tracker.complete(job_id, ["/out/a"])
    snapshot = tracker.get(job_id)
    snapshot.result_files.append("/out/b")
    snapshot.status = JobStatus.FAILED
    assert tracker.get(job_id).result_files == ["/out/a"]
    assert tracker.get(job_id).status == JobStatus.COMPLETED


def test_unknown_job(tracker):
    with pytest.raises(NotFoundError):
        tracker.get("missing")
    with pytest.raises(NotFoundError):
        tracker.update("missing", progress=1)


def test_expired_job_is_not_found_and_swept(tracker, clock):
    job_id = tracker.create()
    clock.now += 899
    tracker.get(job_id)
    clock.now += 2
    with pytest.raises(NotFoundError):
        tracker.get(job_id)
    removed = tracker.sweep()
    assert [j.job_id for j in removed] == [job_id]
    assert len(tracker) == 0


def test_concurrent_creates_and_updates(tracker):
    ids = []
    lock = threading.Lock()

    def worker():
        job_id = tracker.create()
        tracker.start(job_id)
        for p in range(20, 100, 20):
            tracker.update(job_id, progress=p)
        tracker.complete(job_id, [f"/out/{job_id}"])
        with lock:
            ids.append(job_id)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(set(ids)) == 50
    for job_id in ids:
        job = tracker.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result_files == [f"/out/{job_id}"]
