"""The single place where a user is marked as having blocked the bot."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..subscriptions.models import AuditAction, AuditEvent
from ..subscriptions.service import AuditLogger, SubscriptionRepository
from .gateway import LogChannel

logger = logging.getLogger(__name__)

BLOCKED_REASON = "recipient blocked"


@dataclass
class BlockedRecipientHandler:
    """Records that a recipient is unreachable and alerts the admins."""

    repository: SubscriptionRepository
    audit_logger: AuditLogger
    log_channel: LogChannel

    def handle(self, telegram_id: int) -> None:
        self.repository.mark_user_blocked(telegram_id)
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.BAN_USER,
                target_user_id=telegram_id,
                details={"reason": BLOCKED_REASON},
            )
        )
        self.log_channel.post(
            f"🚫 *Bot Blocked*\nUser ID: `{telegram_id}` has blocked the bot.\nStatus updated to blocked."
        )
        logger.warning("User blocked the bot; marked as blocked", extra={"user_id": telegram_id})
