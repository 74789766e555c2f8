"""Lifecycle events and the actors that cause them."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from core.types import ActorID, ActorType, DeliveryID, DeliveryStatus, OrderNumber

SYSTEM_ACTOR_ID = ActorID("system")


@dataclass(frozen=True)
class Actor:
    """Who requested a transition."""

    actor_type: ActorType
    actor_id: ActorID

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorType.SYSTEM, SYSTEM_ACTOR_ID)

    @classmethod
    def operator(cls, operator_id: str) -> "Actor":
        return cls(ActorType.OPERATOR, ActorID(operator_id))

    @classmethod
    def courier(cls, courier_id: str) -> "Actor":
        return cls(ActorType.COURIER, ActorID(courier_id))

    def to_dict(self) -> dict[str, Any]:
        return {"actor_type": self.actor_type.value, "actor_id": str(self.actor_id)}


@dataclass(frozen=True)
class DispatchEvent:
    """Emitted exactly once per accepted transition."""

    delivery_id: DeliveryID
    order_number: OrderNumber
    from_status: DeliveryStatus
    to_status: DeliveryStatus
    actor_type: ActorType
    actor_id: ActorID
    timestamp: datetime
    version: int
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def actor(self) -> Actor:
        return Actor(self.actor_type, self.actor_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivery_id": str(self.delivery_id),
            "order_number": str(self.order_number),
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "actor_type": self.actor_type.value,
            "actor_id": str(self.actor_id),
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "payload": dict(self.payload),
        }
