import asyncio

import pytest

from ytscribe.core.errors import (
    ExtractionFailedError,
    JobNotFoundError,
    JobStateError,
    QueueFullError,
    TranscriptNotFoundError,
)
from ytscribe.services.orchestrator import VideoRef


def _ref(video_id: str) -> VideoRef:
    return VideoRef(video_id=video_id, video_url=f"https://www.youtube.com/watch?v={video_id}")


A, B, C, X = "aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc", "xxxxxxxxxxx"


def test_mixed_batch_uses_cache_first(cache, jobs, extractor, make_cached, make_orchestrator):
    cache.put(make_cached(A))
    cache.put(make_cached(B))

    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [_ref(A), _ref(B), _ref(C)])

    outcome = asyncio.run(main())

    assert outcome.status == "completed"
    assert outcome.cache_hits == 2
    assert outcome.urls_to_extract == 1
    assert [r.video_id for r in outcome.results] == [A, B, C]
    assert [r.from_cache for r in outcome.results] == [True, True, False]
    assert extractor.calls == [C]

    job = jobs.get(outcome.job_id)
    assert job.total_items == 3
    assert job.processed_items == 3
    assert job.successful_items == 3
    assert job.failed_items == 0

    # the fresh extraction is now cached with its renderings
    cached_c = cache.get(C)
    assert cached_c is not None
    assert cached_c.srt.startswith("1\n00:00:00,000 --> 00:00:05,000\n")
    assert cached_c.text.splitlines()[0] == f"0:00 hello from {C}"


def test_job_lifecycle_with_one_failure(jobs, fake_extractor, make_orchestrator, monkeypatch):
    extractor = fake_extractor(failures={B: TranscriptNotFoundError(reason="captions disabled")})
    statuses = []
    real_update_status = jobs.update_status

    def spy(job_id, status, error_message=None):
        statuses.append(status)
        real_update_status(job_id, status, error_message)

    monkeypatch.setattr(jobs, "update_status", spy)

    async def main():
        orch = make_orchestrator(extractor)
        job = orch.create_job("batch", 2)
        assert jobs.get(job.id).status == "pending"
        return await orch.process(job.id, [_ref(A), _ref(B)])

    outcome = asyncio.run(main())

    assert statuses == ["processing"]
    job = jobs.get(outcome.job_id)
    assert job.status == "completed"
    assert job.successful_items == 1
    assert job.failed_items == 1
    assert job.completed_at is not None

    results = jobs.get_results(outcome.job_id)
    assert [r.success for r in results] == [True, False]
    assert results[1].error_code == "NO_TRANSCRIPT"
    assert results[1].error_message == "captions disabled"


def test_duplicate_ids_yield_one_result_per_position(jobs, extractor, make_orchestrator):
    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [_ref(X), _ref(X)])

    outcome = asyncio.run(main())

    assert extractor.calls == [X]
    results = jobs.get_results(outcome.job_id)
    assert len(results) == 2
    assert all(r.video_id == X for r in results)
    job = jobs.get(outcome.job_id)
    assert (job.total_items, job.processed_items, job.successful_items) == (2, 2, 2)


def test_duplicate_cached_ids_count_each_position(cache, jobs, extractor, make_cached, make_orchestrator):
    cache.put(make_cached(X))

    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [_ref(X), _ref(A), _ref(X)])

    outcome = asyncio.run(main())

    assert outcome.cache_hits == 2
    assert outcome.urls_to_extract == 1
    assert [r.video_id for r in jobs.get_results(outcome.job_id)] == [X, A, X]
    # one lookup for both positions
    assert cache.get(X).access_count == 3


def test_empty_item_list_completes_immediately(jobs, extractor, make_orchestrator):
    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [])

    outcome = asyncio.run(main())

    job = jobs.get(outcome.job_id)
    assert job.status == "completed"
    assert (job.total_items, job.processed_items, job.successful_items, job.failed_items) == (0, 0, 0, 0)
    assert jobs.get_results(outcome.job_id) == []
    assert extractor.calls == []


def test_progress_pushes_are_exact_and_monotonic(cache, jobs, fake_extractor, make_cached, make_orchestrator, monkeypatch):
    cache.put(make_cached(A))
    ids = [f"vid{i:08d}" for i in range(8)]
    extractor = fake_extractor(
        failures={ids[2]: ExtractionFailedError("timeout"), ids[5]: RuntimeError("browser crashed")},
        delay=0.001,
    )
    pushes = []
    real_update_progress = jobs.update_progress

    def spy(job_id, processed, successful, failed):
        pushes.append((processed, successful, failed))
        real_update_progress(job_id, processed, successful, failed)

    monkeypatch.setattr(jobs, "update_progress", spy)

    async def main():
        orch = make_orchestrator(extractor, max_concurrency=3)
        return await orch.run("batch", [_ref(A)] + [_ref(v) for v in ids])

    outcome = asyncio.run(main())

    total = 9
    assert pushes
    for processed, successful, failed in pushes:
        assert processed == successful + failed
        assert processed <= total
    assert [p[0] for p in pushes] == sorted(p[0] for p in pushes)
    assert pushes[-1] == (9, 7, 2)
    assert (outcome.successful, outcome.failed) == (7, 2)

    results = jobs.get_results(outcome.job_id)
    assert [r.video_id for r in results] == [A] + ids
    assert results[3].error_code == "EXTRACTION_FAILED"
    assert results[6].error_code == "EXTRACTION_ERROR"


def test_cache_write_failure_does_not_fail_the_item(cache, jobs, extractor, make_orchestrator, monkeypatch):
    def broken_put(_t):
        raise RuntimeError("disk full")

    monkeypatch.setattr(cache, "put", broken_put)

    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [_ref(A)])

    outcome = asyncio.run(main())

    assert outcome.successful == 1
    assert jobs.get(outcome.job_id).status == "completed"
    assert cache.exists(A) is False


def test_cache_lookup_failure_extracts_everything(cache, extractor, make_cached, make_orchestrator, monkeypatch):
    cache.put(make_cached(A))

    def broken_get_batch(_ids):
        raise RuntimeError("db locked")

    monkeypatch.setattr(cache, "get_batch", broken_get_batch)

    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [_ref(A)])

    outcome = asyncio.run(main())
    assert outcome.cache_hits == 0
    assert extractor.calls == [A]


def test_cached_failures_are_retried_by_default(cache, extractor, make_cached, make_orchestrator):
    cache.put(make_cached(A, error_code="EXTRACTION_FAILED"))

    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [_ref(A)])

    outcome = asyncio.run(main())
    assert outcome.cache_hits == 0
    assert outcome.successful == 1
    assert extractor.calls == [A]
    assert cache.get(A).is_failure is False


def test_cached_failures_served_when_retry_disabled(cache, jobs, extractor, make_cached, make_orchestrator):
    cache.put(make_cached(A, error_code="NO_TRANSCRIPT"))

    async def main():
        orch = make_orchestrator(extractor, retry_failed=False)
        return await orch.run("batch", [_ref(A)])

    outcome = asyncio.run(main())
    assert outcome.cache_hits == 1
    assert extractor.calls == []
    assert outcome.failed == 1
    assert jobs.get_results(outcome.job_id)[0].error_code == "NO_TRANSCRIPT"
    assert jobs.get(outcome.job_id).status == "completed"


def test_extractor_failures_are_cached(cache, fake_extractor, make_orchestrator):
    extractor = fake_extractor(failures={A: TranscriptNotFoundError()})

    async def main():
        orch = make_orchestrator(extractor)
        return await orch.run("batch", [_ref(A)])

    asyncio.run(main())
    cached = cache.get(A)
    assert cached.is_failure
    assert cached.error_code == "NO_TRANSCRIPT"


def test_queue_rejection_becomes_item_failure_and_is_not_cached(cache, jobs, extractor, make_orchestrator):
    async def main():
        orch = make_orchestrator(extractor, max_concurrency=1, max_queue_size=0)
        gate = asyncio.Event()
        blocker = orch.queue.submit(gate.wait)  # other traffic holds the only slot
        outcome = await orch.run("batch", [_ref(A)])
        gate.set()
        await blocker
        return outcome

    outcome = asyncio.run(main())

    assert outcome.failed == 1
    assert outcome.results[0].error_code == "QUEUE_FULL"
    assert jobs.get(outcome.job_id).status == "completed"
    assert cache.exists(A) is False
    assert extractor.calls == []


def test_job_level_store_failure_marks_job_failed(jobs, extractor, make_orchestrator, monkeypatch):
    def broken_add_results(_results):
        raise RuntimeError("results table is gone")

    monkeypatch.setattr(jobs, "add_results", broken_add_results)

    async def main():
        orch = make_orchestrator(extractor)
        job = orch.create_job("batch", 1)
        with pytest.raises(RuntimeError, match="results table is gone"):
            await orch.process(job.id, [_ref(A)])
        return job.id

    job_id = asyncio.run(main())
    job = jobs.get(job_id)
    assert job.status == "failed"
    assert job.error_message == "results table is gone"
    assert job.completed_at is not None


def test_abort_fills_remaining_positions(jobs, fake_extractor, make_orchestrator):
    async def main():
        gate = asyncio.Event()
        extractor = fake_extractor(gate=gate)
        orch = make_orchestrator(extractor, max_concurrency=1)
        job = orch.create_job("playlist", 3)
        task = asyncio.ensure_future(orch.process(job.id, [_ref(A), _ref(B), _ref(C)]))

        while not extractor.calls:
            await asyncio.sleep(0.001)
        assert orch.running_jobs() == [job.id]
        assert orch.abort(job.id) is True
        outcome = await task
        assert orch.running_jobs() == []
        assert orch.abort(job.id) is False
        return outcome

    outcome = asyncio.run(main())

    assert outcome.status == "aborted"
    assert len(outcome.results) == 3
    job = jobs.get(outcome.job_id)
    assert job.status == "aborted"
    assert job.processed_items == job.total_items == 3
    results = jobs.get_results(outcome.job_id)
    assert [r.error_code for r in results] == ["ABORTED", "ABORTED", "ABORTED"]


def test_finished_job_is_not_processed_again(jobs, extractor, make_orchestrator, monkeypatch):
    async def main():
        orch = make_orchestrator(extractor)
        outcome = await orch.run("batch", [_ref(A)])
        before = jobs.get(outcome.job_id)

        statuses = []
        monkeypatch.setattr(jobs, "update_status", lambda *args, **kwargs: statuses.append(args))
        with pytest.raises(JobStateError) as exc:
            await orch.process(outcome.job_id, [_ref(B), _ref(C)])
        assert exc.value.context["status"] == "completed"
        return outcome.job_id, before, statuses

    job_id, before, statuses = asyncio.run(main())

    assert statuses == []
    assert jobs.get(job_id) == before
    assert len(jobs.get_results(job_id)) == 1
    assert extractor.calls == [A]


def test_process_rejects_unknown_job_and_wrong_item_count(jobs, extractor, make_orchestrator):
    async def main():
        orch = make_orchestrator(extractor)
        with pytest.raises(JobNotFoundError):
            await orch.process("missing-job", [_ref(A)])

        job = orch.create_job("batch", 2)
        with pytest.raises(ValueError):
            await orch.process(job.id, [_ref(A)])
        return job.id

    job_id = asyncio.run(main())

    job = jobs.get(job_id)
    assert job.status == "pending"
    assert job.processed_items == 0
    assert jobs.get_results(job_id) == []
    assert extractor.calls == []


def test_job_cannot_be_processed_twice_at_once(jobs, fake_extractor, make_orchestrator):
    async def main():
        gate = asyncio.Event()
        extractor = fake_extractor(gate=gate)
        orch = make_orchestrator(extractor)
        job = orch.create_job("batch", 1)

        first = asyncio.ensure_future(orch.process(job.id, [_ref(A)]))
        await asyncio.sleep(0)
        with pytest.raises(JobStateError):
            await orch.process(job.id, [_ref(A)])

        gate.set()
        return await first, extractor

    outcome, extractor = asyncio.run(main())

    assert outcome.status == "completed"
    assert extractor.calls == [A]
    assert len(jobs.get_results(outcome.job_id)) == 1


def test_single_video_served_from_cache(cache, extractor, make_cached, make_orchestrator):
    cache.put(make_cached(A))

    async def main():
        return await make_orchestrator(extractor).transcribe(_ref(A))

    item = asyncio.run(main())
    assert item.success
    assert item.from_cache
    assert extractor.calls == []


def test_single_video_miss_is_extracted_and_cached(cache, extractor, make_orchestrator):
    async def main():
        return await make_orchestrator(extractor).transcribe(_ref(A))

    item = asyncio.run(main())
    assert item.success
    assert item.from_cache is False
    assert item.video_title == f"Video {A}"
    assert extractor.calls == [A]
    assert cache.get(A).text == item.text


def test_single_video_queue_rejection_propagates_with_stats(cache, extractor, make_orchestrator):
    async def main():
        orch = make_orchestrator(extractor, max_concurrency=1, max_queue_size=0)
        gate = asyncio.Event()
        blocker = orch.queue.submit(gate.wait)
        try:
            with pytest.raises(QueueFullError) as exc:
                await orch.transcribe(_ref(A))
        finally:
            gate.set()
            await blocker
        return exc.value

    err = asyncio.run(main())
    assert err.context["queue_stats"]["active"] == 1
    assert cache.exists(A) is False
    assert extractor.calls == []


def test_single_video_failure_is_cached_and_raised(cache, fake_extractor, make_orchestrator):
    extractor = fake_extractor(failures={A: TranscriptNotFoundError(reason="captions disabled")})

    async def main():
        with pytest.raises(TranscriptNotFoundError):
            await make_orchestrator(extractor).transcribe(_ref(A))
        # with retries off the cached failure is raised without another extraction
        with pytest.raises(TranscriptNotFoundError) as exc:
            await make_orchestrator(extractor, retry_failed=False).transcribe(_ref(A))
        return exc.value

    err = asyncio.run(main())
    assert err.message == "captions disabled"
    assert extractor.calls == [A]
    assert cache.get(A).error_code == "NO_TRANSCRIPT"
