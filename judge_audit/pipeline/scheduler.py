"""In-process scheduler: weekly evaluation run + periodic alert check.

The two triggers are independent asyncio tasks. A slow or failing evaluation
run never delays the alert loop, and a failure in either loop is logged and
the loop waits for its next slot.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import structlog

from judge_audit.config import ScheduleConfig
from judge_audit.schemas.evaluation import AlertCheck, RunSummary

logger = structlog.get_logger(__name__)


def next_weekly_run(
    after: datetime,
    weekday: int,
    hour: int,
    minute: int,
    tz: str = "UTC",
) -> datetime:
    """Next wall-clock ``weekday hour:minute`` in ``tz`` strictly after ``after``.

    Returned in UTC. Wall-clock arithmetic is done in the local zone so the run
    stays at the configured local time across DST changes.
    """
    zone = ZoneInfo(tz)
    local = after.astimezone(zone)
    days_ahead = (weekday - local.weekday()) % 7
    candidate = datetime(
        local.year, local.month, local.day, hour, minute, tzinfo=zone
    ) + timedelta(days=days_ahead)
    if candidate <= local:
        candidate += timedelta(days=7)
    return candidate.astimezone(timezone.utc)


class Scheduler:
    """Runs ``run_evaluation`` weekly and ``check_alerts`` every interval.

    ``check_alerts(since)`` is blocking (store query, SMTP) and runs in a worker
    thread. ``since`` is where the check window starts: the previous check's
    ``checked_at``, or one interval before the scheduler started.
    """

    def __init__(
        self,
        run_evaluation: Callable[[], Awaitable[RunSummary]],
        check_alerts: Callable[[datetime], AlertCheck],
        schedule: ScheduleConfig | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._run_evaluation = run_evaluation
        self._sleep = sleep
        self._check_alerts = check_alerts
        self._schedule = schedule or ScheduleConfig()
        self._clock = clock
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def _evaluation_loop(self) -> None:
        s = self._schedule
        while True:
            due = next_weekly_run(self._clock(), s.weekday, s.hour, s.minute, s.timezone)
            delay = max(0.0, (due - self._clock()).total_seconds())
            logger.info("evaluation_scheduled", due=due.isoformat(), in_seconds=round(delay))
            await self._sleep(delay)
            try:
                summary = await self._run_evaluation()
                logger.info(
                    "scheduled_run_finished",
                    run_id=summary.run_id,
                    status=summary.status,
                    evaluated=summary.evaluated,
                )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("scheduled_run_failed")

    async def _alert_loop(self) -> None:
        # Fixed slots: check duration does not push later checks back. Each
        # window starts where the last delivered (or quiet) check ended, so an
        # undelivered alert is retried on the next slot.
        interval = timedelta(minutes=self._schedule.alert_interval_minutes)
        started = self._clock()
        next_due = started + interval
        since = started - interval
        while True:
            await self._sleep(max(0.0, (next_due - self._clock()).total_seconds()))
            try:
                check = await asyncio.to_thread(self._check_alerts, since)
                if check.delivered or not check.fired:
                    since = check.checked_at
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("alert_check_failed")
            now = self._clock()
            next_due += interval
            while next_due <= now:
                next_due += interval

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._evaluation_loop(), name="weekly-evaluation"),
            asyncio.create_task(self._alert_loop(), name="alert-check"),
        ]
        logger.info(
            "scheduler_started",
            weekday=self._schedule.weekday,
            time=f"{self._schedule.hour:02d}:{self._schedule.minute:02d}",
            timezone=self._schedule.timezone,
            alert_interval_minutes=self._schedule.alert_interval_minutes,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("scheduler_stopped")

    async def serve_forever(self) -> None:
        """Start both loops and block until cancelled."""
        self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()
