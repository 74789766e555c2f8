from enum import Enum
from typing import NewType

# IDs
DeliveryID = NewType("DeliveryID", str)
CourierID = NewType("CourierID", str)
OrderNumber = NewType("OrderNumber", str)
ZoneID = NewType("ZoneID", str)
ActorID = NewType("ActorID", str)


class DeliveryStatus(str, Enum):
    """Delivery lifecycle status (single source of truth for progress)."""

    PENDING = "pending"
    PUBLISHED = "published"
    CLAIMED = "claimed"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses in which a courier holds the delivery
ASSIGNED_STATUSES = frozenset(
    {
        DeliveryStatus.CLAIMED,
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.IN_TRANSIT,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.COMPLETED,
    }
)

TERMINAL_STATUSES = frozenset({DeliveryStatus.COMPLETED, DeliveryStatus.CANCELLED})


class VehicleType(str, Enum):
    """Vehicle a delivery requires and a courier drives."""

    MOTORCYCLE = "motorcycle"
    CAR = "car"
    VAN = "van"
    TRUCK = "truck"


class ActorType(str, Enum):
    """Who requested a lifecycle transition."""

    SYSTEM = "system"
    OPERATOR = "operator"
    COURIER = "courier"


class Priority(str, Enum):
    """Delivery priority levels."""

    NORMAL = "normal"
    URGENT = "urgent"


class Channel(str, Enum):
    """Notification channels, in no particular order."""

    PUSH = "push"
    WHATSAPP = "whatsapp"
    SMS = "sms"


class RecipientRole(str, Enum):
    """Role of a notification recipient relative to a delivery."""

    SENDER = "sender"
    RECIPIENT = "recipient"
    COURIER = "courier"
    COURIER_POOL = "courier_pool"


class SendStatus(str, Enum):
    """Result reported by a notification gateway for one message."""

    DELIVERED = "delivered"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """Per-recipient result of dispatching one event."""

    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"


class DistanceSource(str, Enum):
    """Which provider produced the distance used for pricing."""

    ROUTING = "routing"
    HAVERSINE = "haversine"
