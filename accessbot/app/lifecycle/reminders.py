"""Pre-expiry reminders sent once per checkpoint."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Dict, Iterable, List, Optional

from ..delivery import messages
from ..delivery.gateway import DeliveryResult
from ..delivery.messenger import Messenger
from ..subscriptions.models import ReminderCheckpoint, Subscription, SubscriptionStatus
from ..subscriptions.service import SubscriptionRepository
from ..timeutils import current_time, day_window
from .results import JobSummary

logger = logging.getLogger(__name__)

CHECKPOINTS = (
    ReminderCheckpoint.DAY7,
    ReminderCheckpoint.DAY3,
    ReminderCheckpoint.DAY1,
    ReminderCheckpoint.DAY0,
)


@dataclass(frozen=True)
class ReminderAction:
    subscription: Subscription
    checkpoint: ReminderCheckpoint


def plan_reminders(
    now: datetime,
    tz: tzinfo,
    subscriptions: Iterable[Subscription],
) -> List[ReminderAction]:
    """Return the reminders due today for ``subscriptions``.

    A subscription is due at a checkpoint when it is active, its expiry falls
    inside the local calendar day ``offset`` days from today, and the latch for
    that checkpoint is still unset.
    """

    windows = {checkpoint: day_window(now, tz, checkpoint.offset_days) for checkpoint in CHECKPOINTS}
    actions: List[ReminderAction] = []
    seen = set()
    for subscription in subscriptions:
        if subscription.status != SubscriptionStatus.ACTIVE or subscription.id in seen:
            continue
        for checkpoint in CHECKPOINTS:
            start, end = windows[checkpoint]
            if start <= subscription.expiry_date < end and not subscription.reminder_flags.is_set(checkpoint):
                actions.append(ReminderAction(subscription=subscription, checkpoint=checkpoint))
                seen.add(subscription.id)
                break
    return actions


@dataclass
class ReminderEngine:
    """Delivers checkpointed reminders and latches each one on success."""

    repository: SubscriptionRepository
    messenger: Messenger
    tz: tzinfo
    clock: Optional[Callable[[], datetime]] = None

    def collect_candidates(self, now: datetime) -> List[Subscription]:
        candidates: Dict[int, Subscription] = {}
        for checkpoint in CHECKPOINTS:
            start, end = day_window(now, self.tz, checkpoint.offset_days)
            for subscription in self.repository.list_due_for_reminder(
                checkpoint, window_start=start, window_end=end
            ):
                candidates.setdefault(subscription.id, subscription)
        return list(candidates.values())

    def run(self) -> JobSummary:
        now = current_time(self.clock)
        summary = JobSummary(job="reminders")
        plans = self.repository.list_active_plans()
        actions = plan_reminders(now, self.tz, self.collect_candidates(now))
        summary.candidates = len(actions)

        for action in actions:
            subscription = action.subscription
            try:
                result = self.messenger.send(
                    subscription.user_id,
                    messages.expiry_reminder(subscription, action.checkpoint, plans, self.tz),
                )
                if result == DeliveryResult.DELIVERED:
                    self.repository.set_reminder_flag(subscription.id, action.checkpoint)
                    summary.delivered += 1
                    summary.bump(action.checkpoint.value)
                    logger.info(
                        "Expiry reminder sent",
                        extra={"user_id": subscription.user_id, "checkpoint": action.checkpoint.value},
                    )
                else:
                    summary.failures += 1
            except Exception:
                summary.failures += 1
                logger.exception(
                    "Expiry reminder failed",
                    extra={"subscription_id": subscription.id, "checkpoint": action.checkpoint.value},
                )
        return summary
