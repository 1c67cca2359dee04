"""
Tests for the APScheduler-backed notification scheduler.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from campus_push.features.push_notifications.jobs.job_table import JobTable, default_jobs
from campus_push.features.push_notifications.jobs.notification_job import NotificationJobError
from campus_push.features.push_notifications.pipeline.eligibility import default_rules
from campus_push.features.push_notifications.services.scheduler import JobScheduler


def _runner(run_once=None):
    runner = MagicMock()
    runner.run_once = run_once or AsyncMock(return_value={"tokens_sent": 0})
    runner.get_job_status.side_effect = lambda name: {
        "job_name": name,
        "state": "idle",
        "last_run_time": None,
        "last_run_metrics": None,
    }
    return runner


@pytest.fixture
def job_table():
    return JobTable(default_jobs(), default_rules())


@pytest.mark.asyncio
async def test_start_registers_one_cron_job_per_definition(job_table):
    scheduler = JobScheduler(job_table, _runner())
    scheduler.start()
    try:
        assert scheduler.running is True
        assert scheduler.next_run_time("StartOfDay") is not None
        assert scheduler.next_run_time("EndOfDay") is not None
        assert scheduler.next_run_time("Unknown") is None

        status = scheduler.get_status()
        assert status["scheduler_running"] is True
        assert [job["job_name"] for job in status["jobs"]] == ["StartOfDay", "EndOfDay"]
        assert status["jobs"][0]["cron_expr"] == "0 * * * *"
        assert status["jobs"][0]["next_run_time"].endswith("+00:00")
    finally:
        await scheduler.shutdown()

    assert scheduler.running is False
    assert scheduler.health_check()["healthy"] is False


@pytest.mark.asyncio
async def test_restart_after_shutdown(job_table):
    scheduler = JobScheduler(job_table, _runner())
    scheduler.start()
    await scheduler.shutdown()

    scheduler.start()
    try:
        assert scheduler.running is True
        assert scheduler.next_run_time("EndOfDay") is not None
    finally:
        await scheduler.shutdown()

    assert scheduler.running is False


@pytest.mark.asyncio
async def test_tick_swallows_failures(job_table):
    run_once = AsyncMock(
        side_effect=NotificationJobError("boom", job_name="EndOfDay", phase="load")
    )
    scheduler = JobScheduler(job_table, _runner(run_once))

    await scheduler._tick("EndOfDay")

    run_once.assert_awaited_once_with(job_table["EndOfDay"])


@pytest.mark.asyncio
async def test_run_now_propagates_and_rejects_unknown_job(job_table):
    run_once = AsyncMock(
        side_effect=NotificationJobError("boom", job_name="EndOfDay", phase="load")
    )
    scheduler = JobScheduler(job_table, _runner(run_once))

    with pytest.raises(NotificationJobError):
        await scheduler.run_now("EndOfDay")
    with pytest.raises(KeyError):
        await scheduler.run_now("Unknown")


@pytest.mark.asyncio
async def test_run_all_continues_after_failure(job_table):
    run_once = AsyncMock(
        side_effect=[
            NotificationJobError("boom", job_name="StartOfDay", phase="load"),
            {"job_name": "EndOfDay", "tokens_sent": 3},
        ]
    )
    scheduler = JobScheduler(job_table, _runner(run_once))

    results = await scheduler.run_all()

    assert results["StartOfDay"]["error"] == "boom"
    assert results["EndOfDay"]["tokens_sent"] == 3


def test_health_check_when_not_started(job_table):
    health = JobScheduler(job_table, _runner()).health_check()

    assert health["healthy"] is False
    assert health["scheduler_running"] is False
    assert health["job_count"] == 2
