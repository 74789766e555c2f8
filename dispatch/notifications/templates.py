"""Message templates keyed by lifecycle status and recipient role."""

from dataclasses import dataclass
from typing import Any

from core.types import Channel, DeliveryStatus, RecipientRole

CONTACT_CHANNELS = (Channel.WHATSAPP, Channel.SMS)
COURIER_CHANNELS = (Channel.PUSH, Channel.WHATSAPP, Channel.SMS)
POOL_CHANNELS = (Channel.PUSH, Channel.WHATSAPP)


@dataclass(frozen=True)
class MessageTemplate:
    """Message text plus the channels to try, in priority order."""

    text: str
    channels: tuple[Channel, ...]

    def render(self, context: dict[str, Any]) -> str:
        return self.text.format_map(_Defaults(context)).strip()


class _Defaults(dict[str, Any]):
    """Renders missing placeholders as a dash instead of failing."""

    def __missing__(self, key: str) -> str:
        return "-"


S = DeliveryStatus
R = RecipientRole

TEMPLATES: dict[tuple[DeliveryStatus, RecipientRole], MessageTemplate] = {
    (S.PUBLISHED, R.SENDER): MessageTemplate(
        "Hi {name}, your delivery {order_number} is registered. "
        "We are looking for an available courier and will update you once one takes it.",
        CONTACT_CHANNELS,
    ),
    (S.PUBLISHED, R.COURIER_POOL): MessageTemplate(
        "New delivery available: {order_number} ({vehicle_type}). "
        "Pickup: {pickup}. Dropoff: {dropoff}. Distance: {distance_km} km. "
        "Courier payout: {courier_earnings}.",
        POOL_CHANNELS,
    ),
    (S.CLAIMED, R.SENDER): MessageTemplate(
        "Hi {name}, courier {courier_name} ({courier_phone}) took delivery {order_number} "
        "and is on the way to pick it up.",
        CONTACT_CHANNELS,
    ),
    (S.CLAIMED, R.COURIER): MessageTemplate(
        "Delivery {order_number} is yours. Pickup: {pickup}, contact {sender_name} "
        "{sender_phone}. Payout: {courier_earnings}. {notes}",
        COURIER_CHANNELS,
    ),
    (S.PICKED_UP, R.RECIPIENT): MessageTemplate(
        "Hi {name}, your package {order_number} was picked up by {courier_name}. "
        "Estimated arrival in {estimated_minutes} minutes.",
        CONTACT_CHANNELS,
    ),
    (S.PICKED_UP, R.COURIER): MessageTemplate(
        "Deliver {order_number} to {dropoff}, contact {recipient_name} {recipient_phone}. {notes}",
        COURIER_CHANNELS,
    ),
    (S.IN_TRANSIT, R.RECIPIENT): MessageTemplate(
        "Hi {name}, {courier_name} is heading to {dropoff} with delivery {order_number}.",
        CONTACT_CHANNELS,
    ),
    (S.DELIVERED, R.SENDER): MessageTemplate(
        "Hi {name}, delivery {order_number} was delivered to {dropoff}.",
        CONTACT_CHANNELS,
    ),
    (S.DELIVERED, R.RECIPIENT): MessageTemplate(
        "{name}, your package {order_number} has been delivered. Thank you!",
        CONTACT_CHANNELS,
    ),
    (S.DELIVERED, R.COURIER): MessageTemplate(
        "Well done {courier_name}! Delivery {order_number} is done. You earned {courier_earnings}.",
        COURIER_CHANNELS,
    ),
    (S.COMPLETED, R.COURIER): MessageTemplate(
        "Delivery {order_number} is closed and {courier_earnings} was credited to your balance.",
        COURIER_CHANNELS,
    ),
    (S.CANCELLED, R.SENDER): MessageTemplate(
        "Hi {name}, delivery {order_number} was cancelled ({reason}).",
        CONTACT_CHANNELS,
    ),
    (S.CANCELLED, R.COURIER): MessageTemplate(
        "Delivery {order_number} was cancelled ({reason}). No further action is needed.",
        COURIER_CHANNELS,
    ),
}


def roles_for(
    status: DeliveryStatus,
    templates: dict[tuple[DeliveryStatus, RecipientRole], MessageTemplate] = TEMPLATES,
) -> list[RecipientRole]:
    """Roles that receive a message when a delivery enters ``status``."""
    return [role for (to_status, role) in templates if to_status == status]

REMINDER_TEMPLATES: dict[tuple[DeliveryStatus, RecipientRole], MessageTemplate] = {
    (S.PUBLISHED, R.COURIER_POOL): MessageTemplate(
        "Still waiting: delivery {order_number} ({vehicle_type}) from {pickup} to {dropoff}. "
        "Courier payout: {courier_earnings}.",
        POOL_CHANNELS,
    ),
    (S.CLAIMED, R.COURIER): MessageTemplate(
        "Reminder: delivery {order_number} is waiting for pickup at {pickup}. "
        "If something is wrong, please report it.",
        COURIER_CHANNELS,
    ),
}
