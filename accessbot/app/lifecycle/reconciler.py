"""Repairs drift between subscription status and actual group membership."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from ..delivery import messages
from ..delivery.gateway import DeliveryResult, LogChannel, MembershipProvider
from ..delivery.messenger import Messenger
from ..errors import MembershipProviderError
from ..subscriptions.models import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    AuditAction,
    AuditEvent,
    Subscription,
    SubscriptionStatus,
)
from ..subscriptions.service import AuditLogger, SubscriptionRepository
from ..timeutils import current_time
from .results import JobSummary

logger = logging.getLogger(__name__)

RECONCILER_REASON = "removed by reconciler"


def plan_reconciliation(
    now: datetime,
    active: Iterable[Subscription],
    closed: Iterable[Subscription],
    open_user_ids: Iterable[int],
) -> Tuple[List[Subscription], List[Subscription]]:
    """Split candidates into membership checks for each pass.

    Returns ``(should_be_members, should_not_be_members)``. Closed records are
    reduced to one per user, and users that still hold an open subscription are
    never scheduled for removal.
    """

    should_be_members = [
        subscription
        for subscription in active
        if subscription.status == SubscriptionStatus.ACTIVE and subscription.expiry_date > now
    ]
    keep = set(open_user_ids) | {subscription.user_id for subscription in should_be_members}
    should_not_be_members: List[Subscription] = []
    seen = set()
    for subscription in closed:
        if subscription.status not in TERMINAL_STATUSES:
            continue
        if subscription.user_id in keep or subscription.user_id in seen:
            continue
        seen.add(subscription.user_id)
        should_not_be_members.append(subscription)
    return should_be_members, should_not_be_members


@dataclass
class MembershipReconciler:
    """Invites paying users missing from the group and removes lapsed ones."""

    repository: SubscriptionRepository
    messenger: Messenger
    membership: MembershipProvider
    audit_logger: AuditLogger
    log_channel: LogChannel
    group_id: int
    invite_ttl_seconds: int = 600
    clock: Optional[Callable[[], datetime]] = None

    def run(self) -> JobSummary:
        now = current_time(self.clock)
        summary = JobSummary(job="reconcile")
        open_user_ids = {s.user_id for s in self.repository.list_by_status(OPEN_STATUSES)}
        missing_candidates, lapsed_candidates = plan_reconciliation(
            now,
            self.repository.list_active_valid_at(now),
            self.repository.list_by_status(TERMINAL_STATUSES),
            open_user_ids,
        )
        summary.candidates = len(missing_candidates) + len(lapsed_candidates)

        for subscription in missing_candidates:
            try:
                if self._ensure_member(subscription):
                    summary.bump("invited")
                    summary.delivered += 1
            except MembershipProviderError:
                summary.failures += 1
                logger.warning("Membership check failed", exc_info=True, extra={"user_id": subscription.user_id})
            except Exception:
                summary.failures += 1
                logger.exception("Invite repair failed", extra={"subscription_id": subscription.id})

        for subscription in lapsed_candidates:
            try:
                if self._ensure_removed(subscription):
                    summary.bump("removed")
            except MembershipProviderError:
                summary.failures += 1
                logger.warning("Membership removal failed", exc_info=True, extra={"user_id": subscription.user_id})
            except Exception:
                summary.failures += 1
                logger.exception("Removal repair failed", extra={"subscription_id": subscription.id})
        return summary

    def _ensure_member(self, subscription: Subscription) -> bool:
        if self.membership.is_member(self.group_id, subscription.user_id):
            return False
        link = self.membership.create_single_use_invite(
            self.group_id, subscription.user_id, self.invite_ttl_seconds
        )
        if not link:
            logger.warning("Invite link could not be created", extra={"user_id": subscription.user_id})
            return False
        self.repository.record_invite_link(subscription.id, link)
        result = self.messenger.send(
            subscription.user_id, messages.rejoin_invite(link, self.invite_ttl_seconds)
        )
        logger.info("Resent invite to active user", extra={"user_id": subscription.user_id})
        return result == DeliveryResult.DELIVERED

    def _ensure_removed(self, subscription: Subscription) -> bool:
        if not self.membership.is_member(self.group_id, subscription.user_id):
            return False
        if not self.membership.remove_member(self.group_id, subscription.user_id):
            logger.warning("Group removal was refused", extra={"user_id": subscription.user_id})
            return False
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.MEMBERSHIP_REPAIRED,
                target_user_id=subscription.user_id,
                details={"reason": RECONCILER_REASON, "subscription_id": str(subscription.id)},
            )
        )
        self.log_channel.post(f"🚫 *Expired User Removed by Monitor*\nUser: `{subscription.user_id}`")
        return True
