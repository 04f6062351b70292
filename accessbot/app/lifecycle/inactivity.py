"""Re-engagement messages for users who have gone quiet."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..delivery import messages
from ..delivery.gateway import DeliveryResult
from ..delivery.messenger import Messenger
from ..subscriptions.service import SubscriptionRepository
from ..timeutils import current_time
from .results import JobSummary

logger = logging.getLogger(__name__)


@dataclass
class InactiveUserDetector:
    """Contacts active users idle for ``inactivity_days`` and users expired for ``expired_days``."""

    repository: SubscriptionRepository
    messenger: Messenger
    inactivity_days: int = 30
    expired_days: int = 7
    clock: Optional[Callable[[], datetime]] = None

    def run(self) -> JobSummary:
        now = current_time(self.clock)
        summary = JobSummary(job="inactivity")
        users = self.repository.list_inactive_users(
            inactive_before=now - timedelta(days=self.inactivity_days),
            expired_before=now - timedelta(days=self.expired_days),
        )
        summary.candidates = len(users)
        for user in users:
            try:
                result = self.messenger.send(user.telegram_id, messages.reengagement(user))
            except Exception:
                summary.failures += 1
                logger.exception("Re-engagement message failed", extra={"user_id": user.telegram_id})
                continue
            if result == DeliveryResult.DELIVERED:
                summary.delivered += 1
            else:
                summary.failures += 1

        if summary.delivered:
            logger.info("Re-engagement messages sent", extra={"contacted": summary.delivered})
        return summary
