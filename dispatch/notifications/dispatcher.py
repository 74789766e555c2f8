"""Turns lifecycle events into per-recipient notifications."""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from core.courier import Courier
from core.delivery import Contact, Delivery
from core.events import DispatchEvent
from core.types import (
    Channel,
    DeliveryID,
    DeliveryStatus,
    OutcomeStatus,
    RecipientRole,
    SendStatus,
)

from ..couriers import CourierDirectory
from ..registry import DeliveryRegistry
from .gateway import NotificationGateway, Recipient
from .templates import REMINDER_TEMPLATES, TEMPLATES, MessageTemplate, roles_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelAttempt:
    channel: Channel
    status: SendStatus
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"channel": self.channel.value, "status": self.status.value, "error": self.error}


@dataclass(frozen=True)
class NotificationOutcome:
    """What happened when one recipient was notified of one event."""

    delivery_id: DeliveryID
    to_status: DeliveryStatus
    event_version: int
    role: RecipientRole
    recipient_id: str
    status: OutcomeStatus
    timestamp: datetime
    channel: Channel | None = None
    attempts: tuple[ChannelAttempt, ...] = field(default_factory=tuple)
    detail: str | None = None
    reminder: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivery_id": str(self.delivery_id),
            "to_status": self.to_status.value,
            "event_version": self.event_version,
            "role": self.role.value,
            "recipient_id": self.recipient_id,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "channel": self.channel.value if self.channel else None,
            "attempts": [a.to_dict() for a in self.attempts],
            "detail": self.detail,
            "reminder": self.reminder,
        }


class NotificationLog:
    """Append-only record of notification outcomes.

    With ``maxlen`` set only the newest outcomes are kept, oldest dropped first.
    """

    def __init__(self, maxlen: int | None = None) -> None:
        self._entries: deque[NotificationOutcome] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def maxlen(self) -> int | None:
        return self._entries.maxlen

    def append(self, outcome: NotificationOutcome) -> None:
        with self._lock:
            self._entries.append(outcome)

    def entries(self, delivery_id: DeliveryID | None = None) -> list[NotificationOutcome]:
        with self._lock:
            if delivery_id is None:
                return list(self._entries)
            return [e for e in self._entries if e.delivery_id == delivery_id]

    def was_notified(
        self, delivery_id: DeliveryID, to_status: DeliveryStatus, role: RecipientRole
    ) -> bool:
        return any(
            e.to_status == to_status
            and e.role == role
            and e.status == OutcomeStatus.DELIVERED
            and not e.reminder
            for e in self.entries(delivery_id)
        )


def contact_recipient(role: RecipientRole, contact: Contact) -> Recipient:
    addresses: dict[Channel, str] = {}
    if contact.phone:
        addresses = {Channel.WHATSAPP: contact.phone, Channel.SMS: contact.phone}
    return Recipient(
        role=role,
        recipient_id=f"{role.value}:{contact.phone or contact.name}",
        name=contact.name,
        addresses=addresses,
    )


def courier_recipient(role: RecipientRole, courier: Courier) -> Recipient:
    addresses: dict[Channel, str] = {Channel.PUSH: str(courier.id)}
    if courier.phone:
        addresses[Channel.WHATSAPP] = courier.phone
        addresses[Channel.SMS] = courier.phone
    return Recipient(
        role=role, recipient_id=str(courier.id), name=courier.name, addresses=addresses
    )


class NotificationDispatcher:
    """Maps an event to recipients and messages and tries channels in order.

    Failures never propagate: the transition that produced the event is
    already committed, so every result ends up in the notification log.
    Reminders go through the same channels but never follow a transition.
    """

    def __init__(
        self,
        gateway: NotificationGateway,
        couriers: CourierDirectory,
        registry: DeliveryRegistry | None = None,
        log: NotificationLog | None = None,
        templates: dict[tuple[DeliveryStatus, RecipientRole], MessageTemplate] | None = None,
        reminder_templates: dict[tuple[DeliveryStatus, RecipientRole], MessageTemplate]
        | None = None,
    ) -> None:
        self.gateway = gateway
        self.couriers = couriers
        self.registry = registry
        self.log = log if log is not None else NotificationLog()
        self.templates = templates if templates is not None else TEMPLATES
        self.reminder_templates = (
            reminder_templates if reminder_templates is not None else REMINDER_TEMPLATES
        )

    def dispatch(
        self, event: DispatchEvent, delivery: Delivery | None = None
    ) -> list[NotificationOutcome]:
        """Notify everyone the event concerns.

        Args:
            event: Accepted transition.
            delivery: Record after the transition; read from the registry when omitted.

        Returns:
            One outcome per recipient, in template order.
        """
        if delivery is None and self.registry is not None:
            delivery = self.registry.get_by_id(event.delivery_id)
        if delivery is None:
            logger.warning(f"Cannot notify for unknown delivery {event.delivery_id}")
            return []

        outcomes = self._send_all(
            delivery,
            self.templates,
            event.to_status,
            event.version,
            event.timestamp,
            reason=event.payload.get("reason"),
        )
        delivered = sum(1 for o in outcomes if o.status == OutcomeStatus.DELIVERED)
        logger.info(
            f"Event {event.delivery_id} -> {event.to_status.value}: "
            f"{delivered}/{len(outcomes)} recipients notified"
        )
        return outcomes

    def remind(self, delivery: Delivery, now: datetime) -> list[NotificationOutcome]:
        """Send the reminders configured for the delivery's current status."""
        outcomes = self._send_all(
            delivery,
            self.reminder_templates,
            delivery.status,
            delivery.version,
            now,
            reminder=True,
        )
        if outcomes:
            delivered = sum(1 for o in outcomes if o.status == OutcomeStatus.DELIVERED)
            logger.info(
                f"Reminder for {delivery.order_number} ({delivery.status.value}): "
                f"{delivered}/{len(outcomes)} recipients notified"
            )
        return outcomes

    def _send_all(
        self,
        delivery: Delivery,
        templates: dict[tuple[DeliveryStatus, RecipientRole], MessageTemplate],
        status: DeliveryStatus,
        version: int,
        timestamp: datetime,
        reason: str | None = None,
        reminder: bool = False,
    ) -> list[NotificationOutcome]:
        outcomes: list[NotificationOutcome] = []
        context = self._context(delivery, reason)
        for role in roles_for(status, templates):
            template = templates[(status, role)]
            for recipient in self._recipients(role, delivery, timestamp):
                base: dict[str, Any] = {
                    "delivery_id": delivery.id,
                    "to_status": status,
                    "event_version": version,
                    "role": recipient.role,
                    "recipient_id": recipient.recipient_id,
                    "timestamp": timestamp,
                    "reminder": reminder,
                }
                outcome = self._notify(base, recipient, template, context)
                self.log.append(outcome)
                outcomes.append(outcome)
        return outcomes

    def _recipients(
        self, role: RecipientRole, delivery: Delivery, now: datetime
    ) -> list[Recipient]:
        if role == RecipientRole.SENDER:
            return [contact_recipient(role, delivery.sender)]
        if role == RecipientRole.RECIPIENT:
            return [contact_recipient(role, delivery.recipient)]
        if role == RecipientRole.COURIER:
            if delivery.courier_id is None:
                return []
            courier = self.couriers.get_courier(delivery.courier_id)
            if courier is None:
                return [Recipient(role=role, recipient_id=str(delivery.courier_id))]
            return [courier_recipient(role, courier)]
        if role == RecipientRole.COURIER_POOL:
            pool = self.couriers.list_eligible(delivery.vehicle_type, now)
            return [courier_recipient(role, c) for c in pool]
        return []

    def _context(self, delivery: Delivery, reason: str | None) -> dict[str, Any]:
        courier = self.couriers.get_courier(delivery.courier_id) if delivery.courier_id else None
        pricing = delivery.pricing
        return {
            "order_number": delivery.order_number,
            "vehicle_type": delivery.vehicle_type.value,
            "pickup": delivery.pickup.label(),
            "dropoff": delivery.dropoff.label(),
            "sender_name": delivery.sender.name,
            "sender_phone": delivery.sender.phone or "",
            "recipient_name": delivery.recipient.name,
            "recipient_phone": delivery.recipient.phone or "",
            "courier_name": courier.name if courier else "",
            "courier_phone": (courier.phone or "") if courier else "",
            "courier_earnings": pricing.courier_earnings if pricing else "-",
            "final_price": pricing.final_price if pricing else "-",
            "distance_km": pricing.distance_km if pricing else "-",
            "estimated_minutes": pricing.estimated_minutes if pricing else "-",
            "reason": reason or delivery.cancellation_reason or "",
            "notes": delivery.notes,
        }

    def _notify(
        self,
        base: dict[str, Any],
        recipient: Recipient,
        template: MessageTemplate,
        context: dict[str, Any],
    ) -> NotificationOutcome:
        channels = [c for c in template.channels if recipient.address_for(c)]
        if not channels:
            return NotificationOutcome(
                **base, status=OutcomeStatus.SKIPPED, detail="no reachable address"
            )

        message = template.render({**context, "name": recipient.name or "there"})
        attempts: list[ChannelAttempt] = []
        for channel in channels:
            try:
                status = self.gateway.send(recipient, channel, message)
            except Exception as e:
                logger.warning(f"{channel.value} send to {recipient.recipient_id} raised: {e}")
                attempts.append(ChannelAttempt(channel, SendStatus.FAILED, str(e)))
                continue
            attempts.append(ChannelAttempt(channel, status))
            if status == SendStatus.DELIVERED:
                return NotificationOutcome(
                    **base, status=OutcomeStatus.DELIVERED, channel=channel, attempts=tuple(attempts)
                )

        logger.warning(
            f"All channels failed for {recipient.role.value} {recipient.recipient_id} "
            f"on {base['delivery_id']} -> {base['to_status'].value}"
        )
        return NotificationOutcome(**base, status=OutcomeStatus.FAILED, attempts=tuple(attempts))
