"""Subscription issuance and renewal on top of the entitlement store."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Protocol, Sequence

from ..errors import ConcurrentUpdateError, MembershipProviderError
from ..timeutils import current_time
from .models import (
    SYSTEM_ACTOR_ID,
    AccessRequest,
    AuditAction,
    AuditEvent,
    DailySummary,
    GraceLatch,
    Plan,
    ReminderCheckpoint,
    RequestStatus,
    Subscription,
    SubscriptionStatus,
    User,
    UserRole,
    UserStatus,
)

logger = logging.getLogger(__name__)


class SubscriptionRepository(Protocol):
    """Persistence operations required by the lifecycle services.

    Every mutating method is a conditional update: it returns ``None`` or
    ``False`` when the guard (expected status, expected version, or unset
    latch) no longer holds, instead of overwriting a concurrent change.
    """

    # Users
    def get_user(self, telegram_id: int) -> Optional[User]:
        ...

    def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        ...

    def save_user(self, user: User) -> User:
        ...

    def set_user_referrer(self, telegram_id: int, referrer_id: int) -> bool:
        ...

    def update_user_status(
        self,
        telegram_id: int,
        *,
        status: UserStatus,
        grace_days_remaining: Optional[int],
    ) -> Optional[User]:
        ...

    def mark_user_blocked(self, telegram_id: int) -> Optional[User]:
        ...

    def mark_referral_bonus_applied(self, telegram_id: int) -> bool:
        ...

    def list_users(
        self,
        *,
        role: UserRole,
        statuses: Optional[Iterable[UserStatus]] = None,
        created_after: Optional[datetime] = None,
        include_blocked: bool = False,
    ) -> Sequence[User]:
        ...

    def list_inactive_users(self, *, inactive_before: datetime, expired_before: datetime) -> Sequence[User]:
        ...

    # Plans and requests
    def get_plan(self, plan_id: int) -> Optional[Plan]:
        ...

    def list_active_plans(self) -> Sequence[Plan]:
        ...

    def get_request(self, request_id: int) -> Optional[AccessRequest]:
        ...

    def resolve_request(
        self,
        request_id: int,
        *,
        status: RequestStatus,
        action_by: int,
        action_at: datetime,
        plan_id: Optional[int] = None,
    ) -> Optional[AccessRequest]:
        ...

    def reopen_request(self, request_id: int, *, action_by: int) -> Optional[AccessRequest]:
        ...

    # Subscriptions
    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        ...

    def get_open_subscription(self, user_id: int) -> Optional[Subscription]:
        ...

    def find_active_subscription(self, user_id: int, *, now: datetime) -> Optional[Subscription]:
        ...

    def create_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def count_subscriptions(self, user_id: int, statuses: Iterable[SubscriptionStatus]) -> int:
        ...

    def list_due_for_reminder(
        self,
        checkpoint: ReminderCheckpoint,
        *,
        window_start: datetime,
        window_end: datetime,
    ) -> Sequence[Subscription]:
        ...

    def list_active_expired_before(self, cutoff: datetime) -> Sequence[Subscription]:
        ...

    def list_active_valid_at(self, now: datetime) -> Sequence[Subscription]:
        ...

    def list_by_status(self, statuses: Iterable[SubscriptionStatus]) -> Sequence[Subscription]:
        ...

    def set_reminder_flag(self, subscription_id: int, checkpoint: ReminderCheckpoint) -> bool:
        ...

    def set_grace_notification(self, subscription_id: int, latch: GraceLatch) -> bool:
        ...

    def transition_status(
        self,
        subscription_id: int,
        *,
        expected: SubscriptionStatus,
        new_status: SubscriptionStatus,
        grace_days_used: int,
    ) -> Optional[Subscription]:
        ...

    def renew_subscription(
        self,
        subscription_id: int,
        *,
        expected_version: int,
        plan: Plan,
        expiry_date: datetime,
        approved_by: Optional[int],
    ) -> Optional[Subscription]:
        ...

    def extend_expiry(
        self,
        subscription_id: int,
        *,
        expected_version: int,
        expiry_date: datetime,
    ) -> Optional[Subscription]:
        ...

    def record_invite_link(self, subscription_id: int, invite_link: str) -> None:
        ...

    # Offers and reporting
    def deactivate_expired_offers(self, now: datetime) -> int:
        ...

    def compute_daily_summary(self, day_start: datetime, day_end: datetime) -> DailySummary:
        ...

    def save_daily_summary(self, summary: DailySummary) -> DailySummary:
        ...


class AuditLogger(Protocol):
    """Append-only sink for audit events."""

    def log(self, event: AuditEvent) -> None:
        ...


class MembershipRemover(Protocol):
    def __call__(self, user_id: int) -> bool:
        ...


@dataclass
class SubscriptionService:
    """Creates, renews, and manually expires subscriptions.

    A user holds at most one open (active or grace) subscription. Approving a
    user that already has one extends it in place from ``max(expiry, now)``
    instead of issuing a second record.
    """

    repository: SubscriptionRepository
    audit_logger: AuditLogger
    clock: Optional[Callable[[], datetime]] = None
    max_renew_attempts: int = 2
    remove_member: Optional[MembershipRemover] = None

    def _now(self) -> datetime:
        return current_time(self.clock)

    def create_or_renew(self, user_id: int, plan: Plan, admin_id: Optional[int]) -> Subscription:
        user = self.repository.get_user(user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")

        for _ in range(max(1, self.max_renew_attempts)):
            existing = self.repository.get_open_subscription(user_id)
            if existing is None:
                subscription = self._create(user_id, plan, admin_id)
                break
            renewed = self._renew(existing, plan, admin_id)
            if renewed is not None:
                subscription = renewed
                break
            logger.warning(
                "Renewal lost a concurrent update; retrying",
                extra={"subscription_id": existing.id, "user_id": user_id},
            )
        else:
            raise ConcurrentUpdateError(existing.id)

        self.repository.update_user_status(user_id, status=UserStatus.ACTIVE, grace_days_remaining=None)
        return subscription

    def _create(self, user_id: int, plan: Plan, admin_id: Optional[int]) -> Subscription:
        start = self._now()
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan.id,
            plan_name=plan.name,
            duration_days=plan.duration_days,
            start_date=start,
            expiry_date=start + timedelta(days=plan.duration_days),
            status=SubscriptionStatus.ACTIVE,
            approved_by=admin_id,
            is_renewal=False,
            created_at=start,
            updated_at=start,
        )
        created = self.repository.create_subscription(subscription)
        logger.info(
            "Subscription created",
            extra={"user_id": user_id, "plan": plan.name, "expiry_date": created.expiry_date.isoformat()},
        )
        return created

    def _renew(self, existing: Subscription, plan: Plan, admin_id: Optional[int]) -> Optional[Subscription]:
        base = max(existing.expiry_date, self._now())
        new_expiry = base + timedelta(days=plan.duration_days)
        renewed = self.repository.renew_subscription(
            existing.id,
            expected_version=existing.version,
            plan=plan,
            expiry_date=new_expiry,
            approved_by=admin_id,
        )
        if renewed is not None:
            logger.info(
                "Subscription renewed",
                extra={
                    "user_id": existing.user_id,
                    "added_days": plan.duration_days,
                    "expiry_date": new_expiry.isoformat(),
                },
            )
        return renewed

    def expire_subscription(
        self,
        subscription_id: int,
        *,
        admin_id: int = SYSTEM_ACTOR_ID,
        remove_member: Optional[MembershipRemover] = None,
    ) -> Subscription:
        """Manually end an open subscription and revoke group access.

        ``remove_member`` overrides the service-wide remover for this call. A
        failed removal is logged; the expiry and its audit entry still stand.
        """

        subscription = self.repository.get_subscription(subscription_id)
        if subscription is None:
            raise LookupError("Subscription not found")
        if not subscription.is_open:
            return subscription

        updated = self.repository.transition_status(
            subscription_id,
            expected=subscription.status,
            new_status=SubscriptionStatus.EXPIRED,
            grace_days_used=subscription.grace_days_used,
        )
        if updated is None:
            raise ConcurrentUpdateError(subscription_id)

        self.repository.update_user_status(
            subscription.user_id, status=UserStatus.EXPIRED, grace_days_remaining=None
        )
        remover = remove_member if remove_member is not None else self.remove_member
        removed = False
        if remover is not None:
            try:
                removed = remover(subscription.user_id)
            except MembershipProviderError:
                logger.warning(
                    "Group removal failed during manual expiry; reconciler will retry",
                    exc_info=True,
                    extra={"user_id": subscription.user_id},
                )
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.MANUAL_EXPIRE,
                actor_id=admin_id,
                target_user_id=subscription.user_id,
                details={"subscription_id": str(subscription_id), "removed": str(removed).lower()},
            )
        )
        return updated

    def list_expiring_between(self, start: datetime, end: datetime) -> Sequence[Subscription]:
        return [
            subscription
            for subscription in self.repository.list_active_valid_at(start)
            if subscription.expiry_date < end
        ]


__all__ = [
    "AuditLogger",
    "SubscriptionRepository",
    "SubscriptionService",
]
