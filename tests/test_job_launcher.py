"""Tests for JobLauncher: single and batch launches."""

import asyncio

import pytest

from jobtracker.core.config import TrackerConfig
from jobtracker.core.exceptions import LaunchError, RemoteJobsError
from jobtracker.core.managers.job_launcher import PROVISIONAL_STEP, JobLauncher
from jobtracker.core.models.job import JobKind, StatusCode
from jobtracker.core.models.problem import ProblemResponse

from fakes import record, wait_until


@pytest.fixture
def launcher(remote, scheduler, history, fast_config):
    return JobLauncher(remote, scheduler, history, fast_config)


class TestStart:
    @pytest.mark.asyncio
    async def test_provisional_history_entry_before_first_poll(self, launcher, remote, history, scheduler):
        remote.script("job-1", record("job-1", "Running", progress=0))
        job_id = await launcher.start(JobKind.account_close, {"wallet": "w1"})

        assert job_id == "job-1"
        entry = await history.get(job_id)
        assert entry.status == StatusCode.running
        assert entry.progress == 0
        assert entry.kind == JobKind.account_close
        assert entry.metadata == {"wallet": "w1"}
        assert scheduler.is_polling(job_id)
        assert remote.started == [("job-1", JobKind.account_close, {"wallet": "w1"})]

    @pytest.mark.asyncio
    async def test_provisional_step_is_replaced_by_polls(self, launcher, remote, history, observer):
        remote.script(
            "job-1",
            record("job-1", "Running", progress=20, current_step="Closing 1/5"),
            record("job-1", "Completed", result="Success"),
        )
        await launcher.start(JobKind.token_account_close)
        assert (await history.get("job-1")).current_step in (PROVISIONAL_STEP, "Closing 1/5")
        await wait_until(lambda: observer.completions)
        entry = await history.get("job-1")
        assert entry.status == StatusCode.completed
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_remote_rejection_raises_launch_error(self, launcher, remote, history, scheduler):
        remote.start_error = RemoteJobsError(
            ProblemResponse(title="Upstream HTTP Error", status=409, detail="wallet not configured")
        )
        with pytest.raises(LaunchError) as excinfo:
            await launcher.start(JobKind.fund_distribute, {"amount": 5})
        assert excinfo.value.upstream_status == 409
        assert excinfo.value.kind == JobKind.fund_distribute
        assert "wallet not configured" in excinfo.value.message
        assert len(history) == 0
        assert scheduler.polling_count == 0

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_raises_launch_error(self, launcher, remote):
        remote.start_error = ConnectionError("worker down")
        with pytest.raises(LaunchError) as excinfo:
            await launcher.start(JobKind.refund)
        assert excinfo.value.upstream_status is None
        assert excinfo.value.diagnostic == "ConnectionError"

    @pytest.mark.asyncio
    async def test_empty_job_id_is_a_launch_error(self, launcher, remote):
        async def no_id(kind, params):
            return ""

        remote.start_job = no_id
        with pytest.raises(LaunchError):
            await launcher.start(JobKind.refund)

    @pytest.mark.asyncio
    async def test_shutdown_during_launch_is_a_launch_error(self, launcher, remote, scheduler):
        remote.launch_delay = 0.05
        launch = asyncio.create_task(launcher.start(JobKind.refund))
        await wait_until(lambda: remote.in_flight == 1)
        await scheduler.shutdown()

        with pytest.raises(LaunchError) as excinfo:
            await launch
        assert excinfo.value.diagnostic == "TrackerStopped"
        assert remote.started == [("job-1", JobKind.refund, {})]
        assert not scheduler.is_polling("job-1")

    @pytest.mark.asyncio
    async def test_duplicate_remote_id_is_accepted(self, launcher, remote, scheduler):
        async def same_id(kind, params):
            return "job-1"

        remote.script("job-1", record("job-1", "Running"))
        remote.start_job = same_id
        assert await launcher.start(JobKind.refund) == "job-1"
        assert await launcher.start(JobKind.refund) == "job-1"
        assert scheduler.polling_count == 1


class TestBatch:
    @pytest.mark.asyncio
    async def test_batch_records_failures_without_aborting(self, launcher, remote, scheduler):
        requests = [{"mint": "a"}, {"mint": "b", "fail": True}, {"mint": "c"}]
        batch = await launcher.start_batch(JobKind.token_burn, requests)

        assert batch.job_ids == ["job-1", "job-2"]
        assert len(batch.launch_errors) == 1
        assert batch.launch_errors[0].startswith("#1:")
        assert launcher.get_batch(batch.batch_id) is batch
        assert all(scheduler.is_polling(j) for j in batch.job_ids)

    @pytest.mark.asyncio
    async def test_batch_respects_max_concurrent(self, launcher, remote):
        remote.launch_delay = 0.02
        batch = await launcher.start_batch(JobKind.refund_amount, [{"n": i} for i in range(6)], max_concurrent=2)
        assert len(batch.job_ids) == 6
        assert remote.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_batch_defaults_to_configured_concurrency(self, launcher, remote, fast_config):
        remote.launch_delay = 0.02
        await launcher.start_batch(JobKind.refund_amount, [{"n": i} for i in range(8)])
        assert remote.max_in_flight == fast_config.batch_max_concurrent

    @pytest.mark.asyncio
    async def test_oldest_batches_are_dropped_past_history_limit(self, remote, scheduler, history):
        launcher = JobLauncher(remote, scheduler, history, TrackerConfig(poll_interval=0.01, history_limit=2))
        first = await launcher.start_batch(JobKind.refund, [{}])
        second = await launcher.start_batch(JobKind.refund, [{}])
        third = await launcher.start_batch(JobKind.refund, [{}])

        assert launcher.get_batch(first.batch_id) is None
        assert [b.batch_id for b in launcher.batches()] == [second.batch_id, third.batch_id]
