"""Reminders for deliveries waiting too long in one status."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from core.delivery import Delivery
from core.types import DeliveryStatus

from .notifications import NotificationDispatcher
from .registry import DeliveryRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderReport:
    pending: int = 0
    stuck: int = 0


class ReminderScanner:
    """Notification-only passes over waiting deliveries; never changes a record.

    Published deliveries that have waited longer than ``pending_after`` but
    less than ``pending_until`` are pushed to the courier pool again. Claimed
    deliveries not picked up within ``stuck_after`` are logged as stuck and
    their courier is reminded. Both windows are exclusive at their edges.
    """

    def __init__(
        self,
        registry: DeliveryRegistry,
        notifier: NotificationDispatcher,
        pending_after: timedelta = timedelta(minutes=10),
        pending_until: timedelta = timedelta(minutes=25),
        stuck_after: timedelta = timedelta(hours=2),
        interval: timedelta = timedelta(minutes=5),
    ) -> None:
        if pending_after >= pending_until:
            raise ValueError("pending_after must be shorter than pending_until")
        self.registry = registry
        self.notifier = notifier
        self.pending_after = pending_after
        self.pending_until = pending_until
        self.stuck_after = stuck_after
        self.interval = interval
        self.last_run: datetime | None = None

    def tick(self, now: datetime) -> ReminderReport | None:
        """Run both passes if ``interval`` has elapsed since the last run."""
        if self.last_run is not None and now - self.last_run < self.interval:
            return None
        return self.run(now)

    def run(self, now: datetime) -> ReminderReport:
        self.last_run = now
        report = ReminderReport(pending=self.remind_pending(now), stuck=self.check_stuck(now))
        if report.pending or report.stuck:
            logger.info(
                f"Reminders sent: {report.pending} waiting for a courier, "
                f"{report.stuck} stuck before pickup"
            )
        return report

    def remind_pending(self, now: datetime) -> int:
        oldest = now - self.pending_until
        reminded = 0
        for delivery in self.registry.list_by_status(
            DeliveryStatus.PUBLISHED, older_than=now - self.pending_after
        ):
            since = delivery.status_since
            if since is None or since <= oldest:
                continue
            if self._remind(delivery, now):
                reminded += 1
        return reminded

    def check_stuck(self, now: datetime) -> int:
        stuck = 0
        for delivery in self.registry.list_by_status(
            DeliveryStatus.CLAIMED, older_than=now - self.stuck_after
        ):
            logger.warning(
                f"Stuck delivery {delivery.order_number}: claimed by {delivery.courier_id} "
                f"at {delivery.status_since}, not picked up yet"
            )
            if self._remind(delivery, now):
                stuck += 1
        return stuck

    def _remind(self, delivery: Delivery, now: datetime) -> bool:
        try:
            self.notifier.remind(delivery, now)
        except Exception as e:
            logger.error(f"Reminder failed for {delivery.id}: {e}", exc_info=True)
            return False
        return True
