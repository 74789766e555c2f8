"""Expiry of published deliveries nobody claimed in time."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from core.delivery import Delivery
from core.errors import DispatchError, VersionConflict
from core.events import Actor, DispatchEvent
from core.fsm import LifecycleStateMachine, TransitionResult
from core.types import DeliveryStatus

from .registry import DeliveryRegistry

logger = logging.getLogger(__name__)

EventListener = Callable[[DispatchEvent], None]


def _format_ttl(ttl: timedelta) -> str:
    minutes = int(ttl.total_seconds() // 60)
    if minutes * 60 == int(ttl.total_seconds()):
        return f"{minutes} minutes"
    return f"{int(ttl.total_seconds())} seconds"


class ExpirySweeper:
    """Cancels ``published`` deliveries older than the TTL.

    ``sweep`` is idempotent: a record already cancelled (or claimed) by a
    concurrent writer is skipped, never cancelled twice. ``tick`` is what a
    scheduler calls; it sweeps at most once per ``interval``.
    """

    def __init__(
        self,
        registry: DeliveryRegistry,
        ttl: timedelta = timedelta(minutes=30),
        interval: timedelta = timedelta(minutes=5),
        state_machine: LifecycleStateMachine | None = None,
        listener: EventListener | None = None,
    ) -> None:
        self.registry = registry
        self.ttl = ttl
        self.interval = interval
        self.state_machine = state_machine or LifecycleStateMachine()
        self.listener = listener
        self.last_run: datetime | None = None

    def tick(self, now: datetime) -> int | None:
        """Sweep if ``interval`` has elapsed since the last run.

        Returns:
            Number of cancelled deliveries, or None when the sweep was not due.
        """
        if self.last_run is not None and now - self.last_run < self.interval:
            return None
        return self.sweep(now)

    def sweep(self, now: datetime, ttl: timedelta | None = None) -> int:
        """Cancel every published delivery that entered ``published`` before ``now - ttl``."""
        ttl = ttl if ttl is not None else self.ttl
        self.last_run = now
        cutoff = now - ttl
        reason = f"expired: not claimed within {_format_ttl(ttl)}"
        cancelled = 0

        for delivery in self.registry.list_by_status(DeliveryStatus.PUBLISHED, older_than=cutoff):
            try:
                result = self._expire(delivery, now, reason)
            except VersionConflict:
                logger.debug(f"Delivery {delivery.id} changed during sweep, skipping")
                continue
            except DispatchError as e:
                logger.info(f"Delivery {delivery.id} not expired: {e}")
                continue
            except Exception as e:
                logger.error(f"Failed to expire delivery {delivery.id}: {e}", exc_info=True)
                continue
            cancelled += 1
            self._publish(result.event)

        if cancelled:
            logger.info(f"Expired {cancelled} unclaimed deliveries (cutoff {cutoff.isoformat()})")
        return cancelled

    def _expire(self, delivery: Delivery, now: datetime, reason: str) -> TransitionResult:
        captured: list[TransitionResult] = []

        def mutate(current: Delivery) -> Delivery:
            result = self.state_machine.transition(
                current, DeliveryStatus.CANCELLED, Actor.system(), now, reason=reason
            )
            captured.append(result)
            return result.delivery

        stored = self.registry.conditional_update(delivery.id, delivery.version, mutate)
        return TransitionResult(delivery=stored, event=captured[-1].event)

    def _publish(self, event: DispatchEvent) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception as e:
            logger.error(f"Expiry listener failed for {event.delivery_id}: {e}", exc_info=True)
