"""Critical Alerter: one notification per check when new CRITICAL rows exist.

Each check looks at rows persisted in ``[window_start, now]``. A row written
late in a long run carries an old evaluated_at but a fresh persisted_at, so
it is still picked up. The scheduler chains windows through ``since``; one
notification is sent per cycle regardless of how many rows are critical.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from judge_audit import metrics
from judge_audit.config import AlertsConfig
from judge_audit.errors import AlertDeliveryFailed
from judge_audit.notifications import Notifier
from judge_audit.persistence.store import EvaluationStore
from judge_audit.schemas.evaluation import AlertCheck

logger = structlog.get_logger(__name__)


class Alerter:
    def __init__(
        self,
        store: EvaluationStore,
        notifier: Notifier,
        interval_minutes: int = 60,
        alerts: AlertsConfig | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.interval = timedelta(minutes=interval_minutes)
        self.alerts = alerts or AlertsConfig()
        self._clock = clock

    def check(self, now: datetime | None = None, since: datetime | None = None) -> AlertCheck:
        """Run one check cycle. Delivery failures are logged, not raised.

        ``since`` is the previous check's ``checked_at`` when the caller runs
        checks back to back, so consecutive windows share an edge. Without it
        the window is the last ``interval``.
        """
        now = now or self._clock()
        window_start = since if since is not None else now - self.interval
        count = self.store.count_critical_since(window_start, now)

        if count == 0:
            metrics.record_alert_check("quiet")
            logger.debug("alert_check_quiet", window_start=window_start.isoformat())
            return AlertCheck(
                checked_at=now, window_start=window_start, critical_count=0, fired=False
            )

        body = f"{self.alerts.body}\n\nCRITICAL results in the last check window: {count}"
        try:
            self.notifier.send(self.alerts.subject, body)
        except AlertDeliveryFailed as exc:
            metrics.record_alert_check("delivery_failed")
            logger.error("alert_delivery_failed", critical_count=count, error=str(exc))
            return AlertCheck(
                checked_at=now,
                window_start=window_start,
                critical_count=count,
                fired=True,
                delivered=False,
                error=str(exc),
            )

        metrics.record_alert_check("sent")
        logger.warning("alert_fired", critical_count=count)
        return AlertCheck(
            checked_at=now,
            window_start=window_start,
            critical_count=count,
            fired=True,
            delivered=True,
        )
