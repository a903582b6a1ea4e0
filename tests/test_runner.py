"""
Tests for batch processing: FIFO selection, the parallel-calls cap, failure
isolation and claim exclusivity between overlapping batches.
"""

import threading
from collections import Counter

import pytest

from conftest import FakeClient, text_request
from text_synthesis.jobs import (
    QueueRunner,
    JobStatus,
    PersistenceError,
    ClaimConflict
)


def enqueue_texts(storage, clock, texts):
    ids = []
    for text in texts:
        ids.append(storage.enqueue(text_request(text), "1", "audio"))
        clock.advance(1)
    return ids


def test_failed_synthesis_records_error(storage, clock):
    job_id = storage.enqueue(text_request("Hello"), "1", "audio")
    assert job_id == 1

    runner = QueueRunner(storage, FakeClient(fail_with="quota exceeded"), clock=clock)
    result = runner.process_batch(limit=3)

    job = storage.get_job(job_id)
    assert job.status == JobStatus.ERROR
    assert job.error == "quota exceeded"
    assert job.completed_at is None
    assert result.failed == [job_id]
    assert result.completed == []


def test_successful_synthesis_sets_completion_time(storage, clock, client):
    job_id = storage.enqueue(text_request("Hello"), "1", "audio")
    clock.advance(30)

    result = QueueRunner(storage, client, clock=clock).process_batch(limit=0)

    job = storage.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.completed_at == clock.now
    assert job.error is None
    assert result.completed == [job_id]
    assert client.texts() == ["Hello"]


def test_batch_takes_oldest_jobs_up_to_limit(storage, clock, client):
    ids = enqueue_texts(storage, clock, ["one", "two", "three", "four", "five"])

    result = QueueRunner(storage, client, clock=clock).process_batch(limit=3)

    assert sorted(result.claimed) == ids[:3]
    assert sorted(client.texts()) == ["one", "three", "two"]
    for job_id in ids[:3]:
        assert storage.get_job(job_id).status == JobStatus.COMPLETED
    for job_id in ids[3:]:
        assert storage.get_job(job_id).status == JobStatus.WAITING


def test_unlimited_batch_processes_every_waiting_job(storage, clock, client):
    ids = enqueue_texts(storage, clock, [f"job {i}" for i in range(7)])

    result = QueueRunner(storage, client, clock=clock).process_batch(limit=0)

    assert sorted(result.completed) == ids
    assert storage.get_waiting_jobs() == []


def test_empty_queue_is_a_noop(storage, client):
    result = QueueRunner(storage, client).process_batch(limit=3)

    assert result.claimed == []
    assert client.calls == []


def test_negative_limit_is_rejected(storage, client):
    with pytest.raises(ValueError):
        QueueRunner(storage, client).process_batch(limit=-1)


def test_one_failure_does_not_stop_the_batch(storage, clock):
    ids = enqueue_texts(storage, clock, ["ok 1", "broken", "ok 2"])
    client = FakeClient(failures={"broken": "Invalid SSML"})

    result = QueueRunner(storage, client, clock=clock).process_batch(limit=0)

    assert sorted(result.completed) == [ids[0], ids[2]]
    assert result.failed == [ids[1]]
    assert storage.get_job(ids[1]).error == "Invalid SSML"


def test_unexpected_exceptions_are_recorded_on_the_job(storage, clock):
    class ExplodingClient:
        def synthesize(self, request):
            raise RuntimeError()

    job_id = storage.enqueue(text_request("Hello"), "1", "audio")
    QueueRunner(storage, ExplodingClient(), clock=clock).process_batch()

    job = storage.get_job(job_id)
    assert job.status == JobStatus.ERROR
    assert job.error == "RuntimeError"


def test_failed_jobs_are_not_retried_automatically(storage, clock):
    job_id = storage.enqueue(text_request("Hello"), "1", "audio")
    failing = FakeClient(fail_with="quota exceeded")
    QueueRunner(storage, failing, clock=clock).process_batch(limit=3)

    healthy = FakeClient()
    runner = QueueRunner(storage, healthy, clock=clock)
    runner.process_batch(limit=3)
    runner.process_batch(limit=0)

    assert healthy.calls == []
    assert storage.get_job(job_id).status == JobStatus.ERROR


def test_in_flight_calls_never_exceed_limit(storage, clock):
    enqueue_texts(storage, clock, [f"job {i}" for i in range(6)])
    client = FakeClient(delay=0.05)

    runner = QueueRunner(storage, client, clock=clock)
    runner.process_batch(limit=2)
    runner.process_batch(limit=2)
    runner.process_batch(limit=2)

    assert len(client.calls) == 6
    assert client.max_in_flight <= 2


def test_batch_runs_jobs_in_parallel(storage, clock):
    enqueue_texts(storage, clock, [f"job {i}" for i in range(4)])
    client = FakeClient(delay=0.2)

    QueueRunner(storage, client, clock=clock).process_batch(limit=4)

    assert client.max_in_flight > 1


def test_overlapping_batches_never_share_a_job(storage, clock):
    ids = enqueue_texts(storage, clock, [f"job {i}" for i in range(12)])
    client = FakeClient(delay=0.02)
    results = []
    barrier = threading.Barrier(2)

    def batch():
        runner = QueueRunner(storage, client, clock=clock)
        barrier.wait()
        results.append(runner.process_batch(limit=0))

    threads = [threading.Thread(target=batch) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    claimed = results[0].claimed + results[1].claimed
    assert sorted(claimed) == ids
    assert not set(results[0].claimed) & set(results[1].claimed)
    assert max(Counter(client.texts()).values()) == 1


def test_result_handler_receives_audio(storage, clock, client):
    job_id = storage.enqueue(text_request("Hello"), "1042", "audio")
    received = []

    runner = QueueRunner(
        storage,
        client,
        result_handler=lambda job, result: received.append((job.id, job.page_ref, result.audio_content)),
        clock=clock
    )
    runner.process_batch()

    assert received == [(job_id, "1042", b"RIFF....WAVE")]


def test_result_handler_failure_marks_job_as_error(storage, clock, client):
    job_id = storage.enqueue(text_request("Hello"), "1", "audio")

    def handler(job, result):
        raise IOError("Page 1 is locked")

    QueueRunner(storage, client, result_handler=handler, clock=clock).process_batch()

    job = storage.get_job(job_id)
    assert job.status == JobStatus.ERROR
    assert job.error == "Page 1 is locked"


def test_persistence_failure_aborts_the_batch(storage, clock, client, monkeypatch):
    enqueue_texts(storage, clock, ["one", "two"])

    def broken_claim(job_id):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(storage, "claim", broken_claim)

    with pytest.raises(PersistenceError):
        QueueRunner(storage, client, clock=clock).process_batch(limit=0)
    assert client.calls == []


def test_process_job_requires_a_waiting_job(storage, clock, client):
    job_id = storage.enqueue(text_request("Hello"), "1", "audio")
    runner = QueueRunner(storage, client, clock=clock)

    assert runner.process_job(job_id) == JobStatus.COMPLETED
    with pytest.raises(ClaimConflict):
        runner.process_job(job_id)
    with pytest.raises(ClaimConflict):
        runner.process_job(999)


def test_job_log_records_failure(storage, clock):
    job_id = storage.enqueue(text_request("Hello"), "1", "audio")
    QueueRunner(storage, FakeClient(fail_with="quota exceeded"), clock=clock).process_batch()

    errors = storage.get_logs(job_id, level="ERROR")
    assert len(errors) == 1
    assert errors[0]["metadata"]["error_message"] == "quota exceeded"
    assert errors[0]["metadata"]["error_type"] == "TransientAPIError"


def test_worker_connections_are_released_after_each_batch(storage, clock, client):
    runner = QueueRunner(storage, client, clock=clock)

    for batch in range(50):
        enqueue_texts(storage, clock, [f"batch {batch} job {i}" for i in range(3)])
        runner.process_batch(limit=3)

    assert len(client.calls) == 150
    # Only the test thread's own connection stays open
    assert len(storage._connections) <= 1
