"""Delivery lifecycle state machine.

The machine is pure: it validates a requested status change against the
transition table and returns a new record plus the event describing it.
Persisting the record is the registry's job.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from core.delivery import Delivery
from core.errors import AlreadyTerminal, IllegalTransition, NotAssignedCourier
from core.events import Actor, DispatchEvent
from core.types import ActorType, CourierID, DeliveryStatus

logger = logging.getLogger(__name__)

S = DeliveryStatus

# (from, to) -> actor types allowed to request it
TRANSITIONS: dict[tuple[DeliveryStatus, DeliveryStatus], frozenset[ActorType]] = {
    (S.PENDING, S.PUBLISHED): frozenset({ActorType.SYSTEM}),
    (S.PUBLISHED, S.CLAIMED): frozenset({ActorType.COURIER}),
    (S.PUBLISHED, S.CANCELLED): frozenset({ActorType.OPERATOR, ActorType.SYSTEM}),
    (S.CLAIMED, S.PICKED_UP): frozenset({ActorType.COURIER}),
    (S.CLAIMED, S.CANCELLED): frozenset({ActorType.OPERATOR}),
    (S.PICKED_UP, S.IN_TRANSIT): frozenset({ActorType.COURIER}),
    (S.PICKED_UP, S.CANCELLED): frozenset({ActorType.OPERATOR}),
    (S.IN_TRANSIT, S.DELIVERED): frozenset({ActorType.COURIER}),
    (S.IN_TRANSIT, S.CANCELLED): frozenset({ActorType.OPERATOR}),
    (S.DELIVERED, S.COMPLETED): frozenset({ActorType.SYSTEM, ActorType.OPERATOR}),
}

# Statuses from which a cancel request is refused outright
NON_CANCELLABLE = frozenset({S.DELIVERED, S.COMPLETED, S.CANCELLED})


@dataclass(frozen=True)
class TransitionResult:
    """Accepted transition: the new record and its event."""

    delivery: Delivery
    event: DispatchEvent


class LifecycleStateMachine:
    """Validates and applies delivery status changes."""

    def __init__(
        self,
        transitions: dict[tuple[DeliveryStatus, DeliveryStatus], frozenset[ActorType]] | None = None,
    ) -> None:
        self.transitions = transitions if transitions is not None else TRANSITIONS

    def allowed_targets(self, status: DeliveryStatus) -> list[DeliveryStatus]:
        """Statuses reachable from ``status`` in one step, in table order."""
        return [to for (frm, to) in self.transitions if frm == status]

    def is_legal(
        self, from_status: DeliveryStatus, to_status: DeliveryStatus, actor_type: ActorType
    ) -> bool:
        return actor_type in self.transitions.get((from_status, to_status), frozenset())

    def transition(
        self,
        delivery: Delivery,
        target: DeliveryStatus,
        actor: Actor,
        now: datetime,
        payload: dict[str, Any] | None = None,
        *,
        reason: str | None = None,
        proof_of_delivery: str | None = None,
    ) -> TransitionResult:
        """Apply one lifecycle transition.

        Args:
            delivery: Current record; never mutated.
            target: Requested status.
            actor: Who asks for the change. A courier actor claims for itself.
            now: Transition time, used for the timeline stamp and the event.
            payload: Extra event data.
            reason: Cancellation reason, stored on the record when cancelling.
            proof_of_delivery: Stored on the record when completing.

        Returns:
            TransitionResult with ``version`` incremented by one.

        Raises:
            NotAssignedCourier: A courier acts on a delivery held by someone else.
            AlreadyTerminal: Cancel requested on a delivered, completed or cancelled record.
            IllegalTransition: Pair not in the table, actor type not allowed, or
                publication without pricing.
        """
        current = delivery.status

        if (
            actor.actor_type == ActorType.COURIER
            and delivery.is_assigned
            and delivery.courier_id != actor.actor_id
        ):
            raise NotAssignedCourier(
                f"Courier {actor.actor_id} is not assigned to delivery {delivery.id} "
                f"(assigned: {delivery.courier_id})"
            )

        if target == S.CANCELLED and current in NON_CANCELLABLE:
            raise AlreadyTerminal(
                f"Delivery {delivery.id} is {current.value} and cannot be cancelled"
            )

        if not self.is_legal(current, target, actor.actor_type):
            raise IllegalTransition(
                f"Delivery {delivery.id}: {current.value} -> {target.value} "
                f"not allowed for {actor.actor_type.value}"
            )

        if target == S.PUBLISHED and delivery.pricing is None:
            raise IllegalTransition(f"Delivery {delivery.id} cannot be published without pricing")

        changes: dict[str, Any] = {
            "status": target,
            "version": delivery.version + 1,
            "timeline": delivery.timeline.stamp(target, now),
        }
        event_payload: dict[str, Any] = dict(payload or {})

        if target == S.CLAIMED:
            changes["courier_id"] = CourierID(actor.actor_id)
            event_payload["courier_id"] = str(actor.actor_id)
        elif target == S.CANCELLED:
            changes["cancellation_reason"] = reason
            event_payload["reason"] = reason
        elif target == S.COMPLETED:
            changes["proof_of_delivery"] = proof_of_delivery

        if delivery.courier_id is not None and "courier_id" not in event_payload:
            event_payload["courier_id"] = str(delivery.courier_id)

        updated = replace(delivery, **changes)
        event = DispatchEvent(
            delivery_id=delivery.id,
            order_number=delivery.order_number,
            from_status=current,
            to_status=target,
            actor_type=actor.actor_type,
            actor_id=actor.actor_id,
            timestamp=now,
            version=updated.version,
            payload=event_payload,
        )
        logger.debug(
            f"Delivery {delivery.id}: {current.value} -> {target.value} "
            f"by {actor.actor_type.value}"
        )
        return TransitionResult(delivery=updated, event=event)
