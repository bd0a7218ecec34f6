"""Tests for trigger handling and the cron scheduler."""
from datetime import datetime
from unittest.mock import MagicMock

import pytest
import pytz

from conftest import NOW
from localoracle.models import CycleSummary
from localoracle.scheduler import (
    CronPayload,
    MissingScheduleTimeError,
    Scheduler,
    get_scheduler_status,
    on_cron_trigger,
    payload_for_firing,
    start_scheduler,
    stop_scheduler,
)


def summary_for(scheduled_time):
    return CycleSummary(workflow="settlement", scheduled_time=scheduled_time, status="no-markets")


class TestOnCronTrigger:

    def test_passes_scheduled_time(self):
        workflow = MagicMock(side_effect=summary_for)

        summary = on_cron_trigger(CronPayload(scheduled_execution_time=NOW), workflow)

        workflow.assert_called_once_with(NOW)
        assert summary.scheduled_time == NOW

    def test_missing_time_raises(self):
        workflow = MagicMock()

        with pytest.raises(MissingScheduleTimeError):
            on_cron_trigger(CronPayload(), workflow)

        workflow.assert_not_called()

    def test_missing_payload_raises(self):
        with pytest.raises(MissingScheduleTimeError):
            on_cron_trigger(None, MagicMock())


class TestPayloadForFiring:

    def test_truncates_to_minute(self):
        firing = datetime(2025, 6, 1, 12, 10, 7, 123456, tzinfo=pytz.utc)

        payload = payload_for_firing(pytz.utc, now=firing)

        assert payload.scheduled_execution_time == datetime(2025, 6, 1, 12, 10, tzinfo=pytz.utc)


class TestScheduler:

    def test_safe_execute_runs_workflow(self):
        workflow = MagicMock(side_effect=summary_for)
        scheduler = Scheduler("UTC")
        scheduler.add_workflow("settlement", "*/10 * * * *", workflow)

        scheduler._safe_execute("settlement")

        scheduled_time = workflow.call_args.args[0]
        assert scheduled_time.second == 0
        assert scheduled_time.microsecond == 0
        assert not scheduler.is_job_running("settlement")

    def test_overlapping_firing_skipped(self):
        workflow = MagicMock(side_effect=summary_for)
        scheduler = Scheduler("UTC")
        scheduler.add_workflow("settlement", "*/10 * * * *", workflow)
        scheduler._execution_locks["settlement"].acquire()

        scheduler._safe_execute("settlement")

        workflow.assert_not_called()
        assert scheduler.is_job_running("settlement")

    def test_workflow_error_is_logged_and_lock_released(self):
        workflow = MagicMock(side_effect=RuntimeError("rpc exploded"))
        scheduler = Scheduler("UTC")
        scheduler.add_workflow("trading", "0 * * * *", workflow)

        scheduler._safe_execute("trading")

        assert not scheduler.is_job_running("trading")

    def test_start_registers_cron_jobs(self):
        started = start_scheduler({
            "settlement": ("*/10 * * * *", MagicMock()),
            "trading": ("0 * * * *", MagicMock()),
        }, timezone="UTC")

        assert started
        status = get_scheduler_status()
        assert status["is_running"]
        assert status["timezone"] == "UTC"
        assert set(status["jobs"]) == {"settlement", "trading"}
        assert status["jobs"]["trading"]["cron"] == "0 * * * *"
        assert status["jobs"]["trading"]["next_run_time"] is not None

        assert stop_scheduler(wait=False)
        assert not get_scheduler_status()["is_running"]

    def test_invalid_cron_fails_to_start(self):
        assert not start_scheduler({"settlement": ("not a cron at all", MagicMock())})
        assert not get_scheduler_status()["is_running"]

    def test_start_without_workflows(self):
        assert not Scheduler().start()

    def test_status_without_instance(self):
        assert get_scheduler_status() == {"is_running": False, "timezone": None, "jobs": {}}
