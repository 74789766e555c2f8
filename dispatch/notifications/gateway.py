"""Notification transport port and adapters."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from core.types import Channel, RecipientRole, SendStatus


@dataclass(frozen=True)
class Recipient:
    """Someone to notify and the addresses they can be reached at per channel."""

    role: RecipientRole
    recipient_id: str
    name: str = ""
    addresses: dict[Channel, str] = field(default_factory=dict)

    def address_for(self, channel: Channel) -> str | None:
        return self.addresses.get(channel)

    @property
    def is_reachable(self) -> bool:
        return bool(self.addresses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "recipient_id": self.recipient_id,
            "name": self.name,
            "addresses": {channel.value: address for channel, address in self.addresses.items()},
        }


class NotificationGateway(Protocol):
    """Sends one message over one channel.

    Returns ``SendStatus.FAILED`` for a clean refusal; may also raise, which
    the dispatcher records as a failed attempt.
    """

    def send(self, recipient: Recipient, channel: Channel, message: str) -> SendStatus: ...


@dataclass(frozen=True)
class SentMessage:
    recipient: Recipient
    channel: Channel
    address: str
    message: str


class InMemoryGateway:
    """Records messages instead of sending them.

    Channels in ``failing_channels`` report FAILED; channels in
    ``raising_channels`` raise ConnectionError.
    """

    def __init__(
        self,
        failing_channels: set[Channel] | None = None,
        raising_channels: set[Channel] | None = None,
    ) -> None:
        self.failing_channels = set(failing_channels or ())
        self.raising_channels = set(raising_channels or ())
        self.sent: list[SentMessage] = []
        self._lock = threading.Lock()

    def send(self, recipient: Recipient, channel: Channel, message: str) -> SendStatus:
        if channel in self.raising_channels:
            raise ConnectionError(f"{channel.value} gateway unreachable")
        if channel in self.failing_channels:
            return SendStatus.FAILED
        address = recipient.address_for(channel) or ""
        with self._lock:
            self.sent.append(SentMessage(recipient, channel, address, message))
        return SendStatus.DELIVERED

    def messages_for(self, recipient_id: str) -> list[SentMessage]:
        with self._lock:
            return [m for m in self.sent if m.recipient.recipient_id == recipient_id]


class LoggingGateway:
    """Writes every message to the log and reports it delivered."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def send(self, recipient: Recipient, channel: Channel, message: str) -> SendStatus:
        self.logger.info(
            f"[{channel.value}] -> {recipient.role.value} {recipient.recipient_id} "
            f"({recipient.address_for(channel)}): {message}"
        )
        return SendStatus.DELIVERED
