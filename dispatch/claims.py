"""Claim race resolution.

Many couriers may claim the same published delivery at once. Exactly one
conditional update can succeed; every loser re-reads the record and learns
whether someone else won or an unrelated write got in the way.
"""

import logging
from datetime import datetime

from core.delivery import Delivery
from core.errors import (
    AlreadyClaimed,
    AlreadyTerminal,
    ClaimConflict,
    NotEligible,
    VersionConflict,
)
from core.events import Actor
from core.fsm import LifecycleStateMachine, TransitionResult
from core.types import CourierID, DeliveryID, DeliveryStatus

from .couriers import CourierDirectory
from .registry import DeliveryRegistry

logger = logging.getLogger(__name__)


class ClaimCoordinator:
    def __init__(
        self,
        registry: DeliveryRegistry,
        couriers: CourierDirectory,
        state_machine: LifecycleStateMachine | None = None,
        max_attempts: int = 2,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.registry = registry
        self.couriers = couriers
        self.state_machine = state_machine or LifecycleStateMachine()
        self.max_attempts = max_attempts

    def check_eligibility(self, delivery: Delivery, courier_id: CourierID, now: datetime) -> None:
        """Raise ``NotEligible`` unless the courier may claim this delivery."""
        courier = self.couriers.get_courier(courier_id)
        if courier is None:
            raise NotEligible(f"Unknown courier {courier_id}")
        if not courier.is_active:
            raise NotEligible(f"Courier {courier_id} is not active")
        if not courier.is_available:
            raise NotEligible(f"Courier {courier_id} is not available")
        if courier.is_blocked(now):
            raise NotEligible(f"Courier {courier_id} is blocked until {courier.blocked_until}")
        if courier.vehicle_type != delivery.vehicle_type:
            raise NotEligible(
                f"Courier {courier_id} drives {courier.vehicle_type.value}, "
                f"delivery needs {delivery.vehicle_type.value}"
            )

    def claim(self, delivery_id: DeliveryID, courier_id: CourierID, now: datetime) -> TransitionResult:
        """Try to assign a published delivery to ``courier_id``.

        Raises:
            DeliveryNotFound: no such delivery
            NotEligible: courier may not take this delivery
            AlreadyClaimed: another courier holds it
            AlreadyTerminal: delivery was cancelled
            ClaimConflict: kept losing to concurrent writes; retryable
        """
        delivery = self.registry.get(delivery_id)
        self.check_eligibility(delivery, courier_id, now)
        actor = Actor.courier(courier_id)
        captured: list[TransitionResult] = []

        def mutate(current: Delivery) -> Delivery:
            self._raise_if_taken(current)
            result = self.state_machine.transition(current, DeliveryStatus.CLAIMED, actor, now)
            captured.append(result)
            return result.delivery

        for attempt in range(1, self.max_attempts + 1):
            self._raise_if_taken(delivery)
            captured.clear()
            try:
                stored = self.registry.conditional_update(delivery_id, delivery.version, mutate)
            except VersionConflict:
                logger.info(
                    f"Claim of {delivery_id} by {courier_id} lost a version race "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                delivery = self.registry.get(delivery_id)
                continue
            logger.info(f"Delivery {delivery_id} claimed by courier {courier_id}")
            return TransitionResult(delivery=stored, event=captured[-1].event)

        self._raise_if_taken(delivery)
        raise ClaimConflict(
            f"Claim of {delivery_id} by {courier_id} conflicted {self.max_attempts} times"
        )

    @staticmethod
    def _raise_if_taken(delivery: Delivery) -> None:
        if delivery.status == DeliveryStatus.CANCELLED:
            raise AlreadyTerminal(f"Delivery {delivery.id} was cancelled")
        if delivery.is_assigned:
            raise AlreadyClaimed(
                f"Delivery {delivery.id} already claimed by courier {delivery.courier_id}"
            )

