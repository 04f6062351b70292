"""Outbound messaging, membership control, and blocked-recipient handling."""

from .blocked import BlockedRecipientHandler
from .broadcast import BroadcastResult, BroadcastService, BroadcastTarget
from .gateway import (
    Button,
    DeliveryResult,
    LogChannel,
    MembershipProvider,
    NotificationGateway,
    OutboundMessage,
)
from .messenger import Messenger
from .telegram import TelegramAPIError, TelegramBotClient

__all__ = [
    "BlockedRecipientHandler",
    "BroadcastResult",
    "BroadcastService",
    "BroadcastTarget",
    "Button",
    "DeliveryResult",
    "LogChannel",
    "MembershipProvider",
    "Messenger",
    "NotificationGateway",
    "OutboundMessage",
    "TelegramAPIError",
    "TelegramBotClient",
]
