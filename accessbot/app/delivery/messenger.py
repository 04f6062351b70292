"""Delivery wrapper applying the blocked-recipient procedure to every send."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .blocked import BlockedRecipientHandler
from .gateway import DeliveryResult, NotificationGateway, OutboundMessage

logger = logging.getLogger(__name__)


@dataclass
class Messenger:
    """Sends one message to one user with exactly one attempt."""

    gateway: NotificationGateway
    blocked_handler: BlockedRecipientHandler

    def send(self, telegram_id: int, message: OutboundMessage) -> DeliveryResult:
        try:
            result = self.gateway.deliver(telegram_id, message)
        except Exception:
            logger.warning("Delivery raised unexpectedly", exc_info=True, extra={"user_id": telegram_id})
            return DeliveryResult.TRANSIENT_ERROR

        if result == DeliveryResult.UNREACHABLE:
            try:
                self.blocked_handler.handle(telegram_id)
            except Exception:
                logger.exception("Failed to record blocked recipient", extra={"user_id": telegram_id})
        elif result == DeliveryResult.TRANSIENT_ERROR:
            logger.warning("Delivery failed transiently", extra={"user_id": telegram_id})
        return result
