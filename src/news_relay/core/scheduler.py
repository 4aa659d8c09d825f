"""
Task scheduler for periodic relay runs.

Uses APScheduler to trigger one run per interval. Runs never overlap: the
job allows a single instance and missed triggers coalesce, so the
watermark store only ever sees one writer.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, JobEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from news_relay.config import Config, get_config
from news_relay.core.coordinator import RunReport, RunState
from news_relay.exceptions import ConfigurationError
from news_relay.logger import get_logger

logger = get_logger(__name__)

RELAY_JOB_ID = "relay_run"


@dataclass
class JobStatus:
    """Status of the scheduled relay job."""

    job_id: str
    name: str
    next_run_time: Optional[datetime]
    is_active: bool
    trigger: str
    last_state: Optional[RunState] = None
    last_error: Optional[str] = None


@dataclass
class SchedulerStats:
    """Statistics for scheduled runs."""

    total_executions: int = 0
    successful_executions: int = 0
    partial_executions: int = 0
    failed_executions: int = 0
    skipped_executions: int = 0
    last_execution_time: Optional[datetime] = None
    uptime_seconds: float = 0.0


class RelayScheduler:
    """Run the relay on a fixed interval in a background thread."""

    def __init__(
        self,
        run_once: Callable[[], Awaitable[RunReport]],
        interval_minutes: Optional[int] = None,
        config: Optional[Config] = None,
    ):
        """Initialize relay scheduler.

        Args:
            run_once: Coroutine factory performing one complete run
            interval_minutes: Run interval (default from config)
            config: Configuration, global one by default
        """
        config = config or get_config()

        self.run_once = run_once
        self.interval_minutes = interval_minutes or config.schedule_interval_minutes
        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            timezone=config.window.reference_timezone,
        )

        self.stats = SchedulerStats()
        self.start_time: Optional[datetime] = None
        self.last_report: Optional[RunReport] = None
        self.last_error: Optional[str] = None

        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._on_job_skipped, EVENT_JOB_MAX_INSTANCES)

    def start(self, run_immediately: bool = True) -> None:
        """Schedule the relay job and start the scheduler.

        Args:
            run_immediately: Trigger the first run now instead of after one interval
        """
        if self.scheduler.running:
            logger.warning("Scheduler is already running")
            return

        job_kwargs = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(self.scheduler.timezone)

        self.scheduler.add_job(
            func=self._run_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=RELAY_JOB_ID,
            name="Relay run",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **job_kwargs,
        )
        self.scheduler.start()
        self.start_time = datetime.now()
        logger.info(f"Scheduler started, running every {self.interval_minutes} minutes")

    def stop(self, wait: bool = True) -> None:
        """Stop the scheduler.

        Args:
            wait: Whether to wait for a running job to complete
        """
        if not self.scheduler.running:
            logger.warning("Scheduler is not running")
            return

        self.scheduler.shutdown(wait=wait)
        if self.start_time:
            self.stats.uptime_seconds = (datetime.now() - self.start_time).total_seconds()
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_job_status(self) -> Optional[JobStatus]:
        """Get status of the relay job, None before start()."""
        job = self.scheduler.get_job(RELAY_JOB_ID)
        if job is None:
            return None
        return JobStatus(
            job_id=job.id,
            name=job.name,
            next_run_time=job.next_run_time,
            is_active=job.next_run_time is not None,
            trigger=str(job.trigger),
            last_state=self.last_report.state if self.last_report else None,
            last_error=self.last_error,
        )

    def get_stats(self) -> SchedulerStats:
        if self.start_time and self.scheduler.running:
            self.stats.uptime_seconds = (datetime.now() - self.start_time).total_seconds()
        return self.stats

    def _run_job(self) -> Optional[RunReport]:
        """Execute one run on the worker thread's own event loop."""
        self.stats.total_executions += 1
        self.stats.last_execution_time = datetime.now()

        try:
            report = asyncio.run(self.run_once())
        except ConfigurationError as e:
            logger.error(f"Scheduled run rejected: {e}")
            self.stats.failed_executions += 1
            self.last_error = str(e)
            return None
        except Exception as e:
            logger.exception(f"Scheduled run crashed: {e}")
            self.stats.failed_executions += 1
            self.last_error = f"{type(e).__name__}: {e}"
            return None

        self.last_report = report
        if report.state == RunState.COMPLETED:
            self.stats.successful_executions += 1
            self.last_error = None
        elif report.state == RunState.COMPLETED_WITH_FAILURES:
            self.stats.partial_executions += 1
            self.last_error = "; ".join(str(failure) for failure in report.failures)
        else:
            self.stats.failed_executions += 1
            self.last_error = "; ".join(str(failure) for failure in report.failures)
        return report

    def _on_job_error(self, event: JobEvent) -> None:
        exception = event.exception
        if exception:
            self.last_error = f"{type(exception).__name__}: {exception}"
            logger.error(f"Job {event.job_id} failed: {self.last_error}")

    def _on_job_skipped(self, event) -> None:
        self.stats.skipped_executions += 1
        logger.warning("Previous run still in progress, skipping this trigger")


def create_scheduler(
    run_once: Callable[[], Awaitable[RunReport]],
    interval_minutes: Optional[int] = None,
    config: Optional[Config] = None,
) -> RelayScheduler:
    """Create a configured RelayScheduler instance.

    Args:
        run_once: Coroutine factory performing one complete run
        interval_minutes: Override the configured interval
        config: Configuration, global one by default

    Returns:
        Configured RelayScheduler instance
    """
    return RelayScheduler(run_once=run_once, interval_minutes=interval_minutes, config=config)
