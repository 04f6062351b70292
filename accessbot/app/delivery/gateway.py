"""Contracts for the external messaging and group membership collaborators."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)


class DeliveryResult(str, Enum):
    """Outcome of a single delivery attempt."""

    DELIVERED = "delivered"
    UNREACHABLE = "unreachable"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class Button:
    text: str
    callback_data: str


@dataclass(frozen=True)
class OutboundMessage:
    """Message body plus an optional inline keyboard (one tuple per row)."""

    text: str
    buttons: Tuple[Tuple[Button, ...], ...] = field(default_factory=tuple)
    parse_mode: Optional[str] = "Markdown"


class NotificationGateway(Protocol):
    """Delivers a message to a chat; a single attempt without retries."""

    def deliver(self, chat_id: int, message: OutboundMessage) -> DeliveryResult:
        ...


class MembershipProvider(Protocol):
    """Queries and mutates membership of the managed group.

    Implementations raise :class:`~accessbot.app.errors.MembershipProviderError`
    when the platform cannot be reached or rejects the call.
    """

    def is_member(self, group_id: int, user_id: int) -> bool:
        ...

    def create_single_use_invite(self, group_id: int, user_id: int, ttl_seconds: int) -> Optional[str]:
        ...

    def remove_member(self, group_id: int, user_id: int) -> bool:
        ...


@dataclass
class LogChannel:
    """Posts operational alerts to the admin log channel."""

    gateway: NotificationGateway
    channel_id: Optional[int]

    def post(self, text: str) -> bool:
        if not self.channel_id:
            logger.debug("Log channel not configured; dropping alert", extra={"alert": text})
            return False
        try:
            result = self.gateway.deliver(self.channel_id, OutboundMessage(text=text))
        except Exception:
            logger.warning("Posting to log channel failed", exc_info=True)
            return False
        if result != DeliveryResult.DELIVERED:
            logger.warning("Log channel post not delivered", extra={"result": result.value})
            return False
        return True


def button_rows(rows: Sequence[Sequence[Button]]) -> Tuple[Tuple[Button, ...], ...]:
    return tuple(tuple(row) for row in rows)


__all__ = [
    "Button",
    "DeliveryResult",
    "LogChannel",
    "MembershipProvider",
    "NotificationGateway",
    "OutboundMessage",
    "button_rows",
]
