"""
Scheduler module for cron-driven workflow execution.

This module registers the settlement and trading workflows with APScheduler
under their cron expressions. Every firing hands the workflow a CronPayload
carrying the scheduled execution time; a firing without one is rejected with
MissingScheduleTimeError. Cycles of the same workflow never overlap.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import pytz
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from localoracle.models import CycleSummary

# Configure module logger
logger = logging.getLogger(__name__)


WorkflowFunction = Callable[[datetime], CycleSummary]


@dataclass(frozen=True)
class CronPayload:
    """Payload supplied by a scheduler firing."""
    scheduled_execution_time: Optional[datetime] = None


class MissingScheduleTimeError(RuntimeError):
    """Raised when a trigger fires without a scheduled execution time."""


def on_cron_trigger(payload: Optional[CronPayload], workflow: WorkflowFunction) -> CycleSummary:
    """
    Entry point for one workflow invocation.

    Args:
        payload: Trigger payload
        workflow: Workflow run function taking the scheduled time as "now"

    Returns:
        CycleSummary produced by the workflow

    Raises:
        MissingScheduleTimeError: If the payload has no scheduled execution time
    """
    if payload is None or payload.scheduled_execution_time is None:
        raise MissingScheduleTimeError("Scheduled execution time is required")

    return workflow(payload.scheduled_execution_time)


def payload_for_firing(timezone: pytz.BaseTzInfo, now: Optional[datetime] = None) -> CronPayload:
    """
    Build the payload for a cron firing.

    Cron triggers fire on minute boundaries, so the scheduled time is the
    firing time truncated to the minute.
    """
    if now is None:
        now = datetime.now(timezone)
    return CronPayload(scheduled_execution_time=now.replace(second=0, microsecond=0))


class Scheduler:
    """
    Scheduler for cron-driven workflow execution.

    Each registered workflow becomes its own APScheduler job with
    max_instances=1, guarded by its own non-blocking lock.
    """

    def __init__(self, timezone: str = "UTC"):
        """
        Initialize the scheduler.

        Args:
            timezone: Timezone the cron expressions are evaluated in
        """
        self.timezone = pytz.timezone(timezone)
        self.scheduler: Optional[BackgroundScheduler] = None
        self.workflows: dict[str, tuple[str, WorkflowFunction]] = {}
        self.is_running = False
        self._execution_locks: dict[str, threading.Lock] = {}

    def add_workflow(self, name: str, cron_expression: str, workflow: WorkflowFunction) -> bool:
        """
        Register a workflow to be started with the scheduler.

        Args:
            name: Workflow name, also used as the job id
            cron_expression: 5-field cron expression
            workflow: Workflow run function

        Returns:
            True if registered, False otherwise
        """
        if self.is_running:
            logger.warning("Cannot add workflows while the scheduler is running")
            return False

        if not callable(workflow):
            logger.error("workflow must be callable")
            return False

        self.workflows[name] = (cron_expression, workflow)
        self._execution_locks[name] = threading.Lock()
        return True

    def start(self) -> bool:
        """
        Start the scheduler with all registered workflows.

        Returns:
            True if scheduler started successfully, False otherwise
        """
        if self.is_running:
            logger.warning("Scheduler is already running")
            return False

        if not self.workflows:
            logger.error("No workflows registered")
            return False

        try:
            self.scheduler = BackgroundScheduler(timezone=self.timezone)

            # Add event listeners for monitoring
            self.scheduler.add_listener(
                self._on_job_executed,
                EVENT_JOB_EXECUTED | EVENT_JOB_ERROR
            )

            for name, (cron_expression, _) in self.workflows.items():
                self.scheduler.add_job(
                    func=self._safe_execute,
                    trigger=CronTrigger.from_crontab(cron_expression, timezone=self.timezone),
                    args=[name],
                    id=name,
                    name=f"{name} workflow",
                    replace_existing=True,
                    max_instances=1,
                    coalesce=True,
                )
                logger.info(f"Scheduled {name} workflow with cron '{cron_expression}'")

            self.scheduler.start()
            self.is_running = True

            logger.info(f"Scheduler started ({self.timezone.zone})")
            return True

        except ValueError as e:
            logger.error(f"Failed to start scheduler: {e}")
            self.scheduler = None
            self.is_running = False
            return False

    def stop(self, wait: bool = True) -> bool:
        """
        Stop the scheduler gracefully.

        Args:
            wait: Whether to wait for running jobs to complete

        Returns:
            True if scheduler stopped successfully, False otherwise
        """
        if not self.is_running or not self.scheduler:
            logger.warning("Scheduler is not running")
            return False

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=wait)

        self.is_running = False
        self.scheduler = None

        logger.info("Scheduler stopped successfully")
        return True

    def _safe_execute(self, name: str) -> None:
        """
        Run one firing of a workflow with overlap prevention.

        A previous cycle of the same workflow still in progress makes this
        firing a no-op. MissingScheduleTimeError is re-raised so the job
        is reported as failed.
        """
        lock = self._execution_locks[name]
        if not lock.acquire(blocking=False):
            logger.warning(f"{name} execution skipped: previous run still in progress")
            return

        _, workflow = self.workflows[name]
        payload = payload_for_firing(self.timezone)
        start_time = datetime.now(self.timezone)

        try:
            summary = on_cron_trigger(payload, workflow)
            duration = (datetime.now(self.timezone) - start_time).total_seconds()
            logger.info(f"{name} cycle finished: {summary.status} ({duration:.2f} seconds)")

        except MissingScheduleTimeError:
            logger.error(f"{name} firing rejected: no scheduled execution time")
            raise

        except Exception as e:
            duration = (datetime.now(self.timezone) - start_time).total_seconds()
            logger.error(f"{name} cycle failed after {duration:.2f} seconds: {e}", exc_info=True)

        finally:
            lock.release()

    def _on_job_executed(self, event) -> None:
        """
        Event listener for job execution events.

        Args:
            event: APScheduler event object
        """
        if event.exception:
            logger.error(f"Job {event.job_id} raised an exception: {event.exception}")
        else:
            logger.debug(f"Job {event.job_id} executed successfully")

    def get_next_run_time(self, name: str) -> Optional[datetime]:
        """
        Get the next scheduled run time of a workflow.

        Returns:
            Next run time as datetime, or None if not scheduled
        """
        if not self.is_running or not self.scheduler:
            return None

        job = self.scheduler.get_job(name)
        return job.next_run_time if job else None

    def is_job_running(self, name: str) -> bool:
        """Check if a cycle of the named workflow is currently running."""
        lock = self._execution_locks.get(name)
        return lock is not None and lock.locked()

    def get_status(self) -> dict:
        """
        Get current scheduler status.

        Returns:
            Dictionary with scheduler status information
        """
        jobs = {}
        for name, (cron_expression, _) in self.workflows.items():
            next_run = self.get_next_run_time(name)
            jobs[name] = {
                "cron": cron_expression,
                "job_running": self.is_job_running(name),
                "next_run_time": next_run.isoformat() if next_run else None,
            }

        return {
            "is_running": self.is_running,
            "timezone": self.timezone.zone,
            "jobs": jobs,
        }


# Global scheduler instance
_scheduler_instance: Optional[Scheduler] = None


def start_scheduler(workflows: dict[str, tuple[str, WorkflowFunction]], timezone: str = "UTC") -> bool:
    """
    Start the global scheduler instance.

    Args:
        workflows: Mapping of workflow name to (cron expression, run function)
        timezone: Timezone the cron expressions are evaluated in

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler_instance

    if _scheduler_instance is not None and _scheduler_instance.is_running:
        logger.warning("Scheduler is already running")
        return False

    _scheduler_instance = Scheduler(timezone)
    for name, (cron_expression, workflow) in workflows.items():
        if not _scheduler_instance.add_workflow(name, cron_expression, workflow):
            return False

    return _scheduler_instance.start()


def stop_scheduler(wait: bool = True) -> bool:
    """
    Stop the global scheduler instance.

    Args:
        wait: Whether to wait for running jobs to complete

    Returns:
        True if scheduler stopped successfully, False otherwise
    """
    if _scheduler_instance is None:
        logger.warning("Scheduler instance does not exist")
        return False

    return _scheduler_instance.stop(wait)


def get_scheduler_status() -> dict:
    """
    Get status of the global scheduler instance.

    Returns:
        Dictionary with scheduler status information
    """
    if _scheduler_instance is None:
        return {
            "is_running": False,
            "timezone": None,
            "jobs": {},
        }

    return _scheduler_instance.get_status()
