"""Daily grace-period processing: active → grace → expired.

An active subscription whose expiry fell on an earlier local day enters
grace. While in grace the number of whole days since expiry (measured from
local midnight) drives an early reminder on day one, a final warning the day
before removal, and removal from the group once the grace length is reached.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from ..delivery import messages
from ..delivery.gateway import DeliveryResult, LogChannel, MembershipProvider
from ..delivery.messenger import Messenger
from ..errors import MembershipProviderError
from ..subscriptions.models import (
    AuditAction,
    AuditEvent,
    GraceLatch,
    GraceNotifications,
    Plan,
    Subscription,
    SubscriptionStatus,
    UserStatus,
)
from ..subscriptions.service import AuditLogger, SubscriptionRepository
from ..timeutils import current_time, start_of_day, whole_days_between
from .results import JobSummary

logger = logging.getLogger(__name__)

GRACE_EXPIRED_REASON = "grace period expired"


class GraceActionKind(str, Enum):
    ENTER_GRACE = "enter_grace"
    EARLY_REMINDER = "early_reminder"
    FINAL_WARNING = "final_warning"
    REVOKE = "revoke"


@dataclass(frozen=True)
class GraceAction:
    kind: GraceActionKind
    subscription: Subscription
    days_since_expiry: int


def evaluate_grace(subscription: Subscription, days_since_expiry: int, grace_period_days: int) -> Optional[GraceActionKind]:
    """Decide what, if anything, is due today for a subscription in grace."""

    if days_since_expiry >= grace_period_days:
        return GraceActionKind.REVOKE
    # Day 0 is the run that starts grace; its own notice covers it.
    if days_since_expiry < 1:
        return None
    notifications = subscription.grace_notifications
    if days_since_expiry == grace_period_days - 1:
        return None if notifications.is_set(GraceLatch.DAY2) else GraceActionKind.FINAL_WARNING
    if days_since_expiry == 1 and not notifications.is_set(GraceLatch.DAY1):
        return GraceActionKind.EARLY_REMINDER
    return None


def plan_grace_actions(
    now: datetime,
    tz: tzinfo,
    grace_period_days: int,
    active_candidates: Iterable[Subscription],
    grace_candidates: Iterable[Subscription],
) -> List[GraceAction]:
    """Compute today's grace transitions without touching any collaborator.

    Subscriptions entering grace are evaluated again as grace records in the
    same run, so a subscription that expired several days ago goes straight
    through to removal.
    """

    today = start_of_day(now, tz)
    actions: List[GraceAction] = []
    in_grace: List[Subscription] = []

    for subscription in active_candidates:
        if subscription.status != SubscriptionStatus.ACTIVE or subscription.expiry_date >= today:
            continue
        days = whole_days_between(today, subscription.expiry_date)
        actions.append(GraceAction(GraceActionKind.ENTER_GRACE, subscription, days))
        in_grace.append(
            subscription.model_copy(
                update={
                    "status": SubscriptionStatus.GRACE,
                    "grace_days_used": 0,
                    "grace_notifications": GraceNotifications(),
                }
            )
        )

    entering = {subscription.id for subscription in in_grace}
    for subscription in grace_candidates:
        if subscription.status == SubscriptionStatus.GRACE and subscription.id not in entering:
            in_grace.append(subscription)

    for subscription in in_grace:
        days = whole_days_between(today, subscription.expiry_date)
        kind = evaluate_grace(subscription, days, grace_period_days)
        if kind is not None:
            actions.append(GraceAction(kind, subscription, days))
    return actions


@dataclass
class GracePeriodEngine:
    """Applies grace transitions, warnings, and removals."""

    repository: SubscriptionRepository
    messenger: Messenger
    membership: MembershipProvider
    audit_logger: AuditLogger
    log_channel: LogChannel
    group_id: int
    tz: tzinfo
    grace_period_days: int = 3
    clock: Optional[Callable[[], datetime]] = None

    def run(self) -> JobSummary:
        now = current_time(self.clock)
        summary = JobSummary(job="grace")
        today = start_of_day(now, self.tz)
        actions = plan_grace_actions(
            now,
            self.tz,
            self.grace_period_days,
            self.repository.list_active_expired_before(today),
            self.repository.list_by_status([SubscriptionStatus.GRACE]),
        )
        summary.candidates = len(actions)
        plans = self.repository.list_active_plans() if actions else []
        skipped: set = set()

        for action in actions:
            subscription = action.subscription
            if subscription.id in skipped:
                continue
            try:
                applied = self._apply(action, plans)
            except Exception:
                applied = False
                summary.failures += 1
                logger.exception(
                    "Grace action failed",
                    extra={"subscription_id": subscription.id, "action": action.kind.value},
                )
            if applied:
                summary.bump(action.kind.value)
            elif action.kind == GraceActionKind.ENTER_GRACE:
                skipped.add(subscription.id)
        return summary

    def _apply(self, action: GraceAction, plans: Sequence[Plan]) -> bool:
        handler = {
            GraceActionKind.ENTER_GRACE: self._enter_grace,
            GraceActionKind.EARLY_REMINDER: self._early_reminder,
            GraceActionKind.FINAL_WARNING: self._final_warning,
            GraceActionKind.REVOKE: self._revoke,
        }[action.kind]
        return handler(action, plans)

    def _enter_grace(self, action: GraceAction, plans: Sequence[Plan]) -> bool:
        subscription = action.subscription
        updated = self.repository.transition_status(
            subscription.id,
            expected=SubscriptionStatus.ACTIVE,
            new_status=SubscriptionStatus.GRACE,
            grace_days_used=0,
        )
        if updated is None:
            logger.info("Subscription changed before grace entry; skipping", extra={"subscription_id": subscription.id})
            return False

        self.repository.update_user_status(
            subscription.user_id,
            status=UserStatus.EXPIRED,
            grace_days_remaining=self.grace_period_days,
        )
        self.messenger.send(
            subscription.user_id,
            messages.grace_started(subscription, self.grace_period_days, plans, self.tz),
        )
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.GRACE_STARTED,
                target_user_id=subscription.user_id,
                details={"subscription_id": str(subscription.id), "grace_days": str(self.grace_period_days)},
            )
        )
        self.log_channel.post(
            f"⚠️ *Grace Period Started*\nUser: `{subscription.user_id}`\nPlan: {subscription.plan_name}"
        )
        return True

    def _early_reminder(self, action: GraceAction, plans: Sequence[Plan]) -> bool:
        subscription = action.subscription
        if not self.repository.set_grace_notification(subscription.id, GraceLatch.DAY1):
            return False
        days_left = self.grace_period_days - action.days_since_expiry
        self.messenger.send(subscription.user_id, messages.grace_reminder(days_left, plans))
        return True

    def _final_warning(self, action: GraceAction, plans: Sequence[Plan]) -> bool:
        subscription = action.subscription
        if not self.repository.set_grace_notification(subscription.id, GraceLatch.DAY2):
            return False
        self.messenger.send(subscription.user_id, messages.final_warning(plans))
        return True

    def _revoke(self, action: GraceAction, plans: Sequence[Plan]) -> bool:
        subscription = action.subscription
        updated = self.repository.transition_status(
            subscription.id,
            expected=SubscriptionStatus.GRACE,
            new_status=SubscriptionStatus.EXPIRED,
            grace_days_used=self.grace_period_days,
        )
        if updated is None:
            logger.info("Subscription left grace before removal; skipping", extra={"subscription_id": subscription.id})
            return False

        removed = False
        try:
            removed = self.membership.remove_member(self.group_id, subscription.user_id)
        except MembershipProviderError:
            logger.warning(
                "Group removal failed; reconciler will retry",
                exc_info=True,
                extra={"user_id": subscription.user_id},
            )

        self.repository.update_user_status(
            subscription.user_id, status=UserStatus.EXPIRED, grace_days_remaining=0
        )
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.BAN_USER,
                target_user_id=subscription.user_id,
                details={
                    "reason": GRACE_EXPIRED_REASON,
                    "days_overdue": str(action.days_since_expiry),
                    "removed": str(removed).lower(),
                },
            )
        )
        result = self.messenger.send(subscription.user_id, messages.access_removed())
        if result != DeliveryResult.DELIVERED:
            logger.info("Removal notice not delivered", extra={"user_id": subscription.user_id})
        self.log_channel.post(
            "🚫 *User Removed After Grace Period*\n"
            f"User: `{subscription.user_id}`\nDays overdue: {action.days_since_expiry}"
        )
        return True
