"""In-memory stand-ins for the repository, gateway, membership provider and audit sink."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from accessbot.app.delivery.gateway import DeliveryResult, OutboundMessage
from accessbot.app.errors import MembershipProviderError
from accessbot.app.subscriptions.models import (
    AccessRequest,
    AuditEvent,
    DailySummary,
    GraceLatch,
    GraceNotifications,
    Offer,
    Plan,
    ReminderCheckpoint,
    ReminderFlags,
    RequestStatus,
    Subscription,
    SubscriptionStatus,
    User,
    UserRole,
    UserStatus,
)
from accessbot.app.subscriptions.service import SubscriptionRepository

GROUP_ID = -100123
LOG_CHANNEL_ID = -100999
ADMIN_ID = 42


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemorySubscriptionRepository(SubscriptionRepository):
    """Dictionary-backed repository honouring the same conditional-update guards as SQL."""

    def __init__(self, clock: FixedClock) -> None:
        self.clock = clock
        self.users: Dict[int, User] = {}
        self.plans: Dict[int, Plan] = {}
        self.subscriptions: Dict[int, Subscription] = {}
        self.requests: Dict[int, AccessRequest] = {}
        self.offers: Dict[int, Offer] = {}
        self.summaries: Dict[datetime, DailySummary] = {}
        self._next_id = 1

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def _update_subscription(self, subscription: Subscription, **changes) -> Subscription:
        changes.setdefault("updated_at", self.clock())
        updated = subscription.model_copy(update=changes)
        self.subscriptions[updated.id] = updated
        return updated

    def _update_user(self, user: User, **changes) -> User:
        changes.setdefault("updated_at", self.clock())
        updated = user.model_copy(update=changes)
        self.users[updated.telegram_id] = updated
        return updated

    # Seeding helpers
    def add_plan(self, plan: Plan) -> Plan:
        self.plans[plan.id] = plan
        return plan

    def add_request(self, user_id: int, *, status: RequestStatus = RequestStatus.PENDING) -> AccessRequest:
        request = AccessRequest(id=self._new_id(), user_id=user_id, status=status, requested_at=self.clock())
        self.requests[request.id] = request
        return request

    def add_offer(self, title: str, valid_till: datetime, *, is_active: bool = True) -> Offer:
        offer = Offer(id=self._new_id(), title=title, valid_till=valid_till, is_active=is_active)
        self.offers[offer.id] = offer
        return offer

    # Users
    def get_user(self, telegram_id: int) -> Optional[User]:
        return self.users.get(telegram_id)

    def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        code = referral_code.strip().upper()
        return next((user for user in self.users.values() if user.referral_code == code), None)

    def save_user(self, user: User) -> User:
        self.users[user.telegram_id] = user
        return user

    def set_user_referrer(self, telegram_id: int, referrer_id: int) -> bool:
        user = self.users.get(telegram_id)
        if user is None or user.referred_by is not None or telegram_id == referrer_id:
            return False
        self._update_user(user, referred_by=referrer_id)
        return True

    def update_user_status(self, telegram_id: int, *, status: UserStatus, grace_days_remaining: Optional[int]) -> Optional[User]:
        user = self.users.get(telegram_id)
        if user is None:
            return None
        return self._update_user(user, status=status, grace_days_remaining=grace_days_remaining)

    def mark_user_blocked(self, telegram_id: int) -> Optional[User]:
        user = self.users.get(telegram_id)
        if user is None:
            return None
        return self._update_user(user, is_blocked=True, status=UserStatus.BLOCKED)

    def mark_referral_bonus_applied(self, telegram_id: int) -> bool:
        user = self.users.get(telegram_id)
        if user is None or user.referral_bonus_applied:
            return False
        self._update_user(user, referral_bonus_applied=True)
        return True

    def list_users(
        self,
        *,
        role: UserRole,
        statuses: Optional[Iterable[UserStatus]] = None,
        created_after: Optional[datetime] = None,
        include_blocked: bool = False,
    ) -> Sequence[User]:
        wanted = set(statuses) if statuses is not None else None
        return [
            user
            for user in sorted(self.users.values(), key=lambda item: item.telegram_id)
            if user.role == role
            and (wanted is None or user.status in wanted)
            and (created_after is None or user.created_at >= created_after)
            and (include_blocked or not user.is_blocked)
        ]

    def list_inactive_users(self, *, inactive_before: datetime, expired_before: datetime) -> Sequence[User]:
        return [
            user
            for user in sorted(self.users.values(), key=lambda item: item.telegram_id)
            if user.role == UserRole.USER
            and not user.is_blocked
            and (
                (user.status == UserStatus.ACTIVE and user.last_interaction < inactive_before)
                or (user.status == UserStatus.EXPIRED and user.updated_at < expired_before)
            )
        ]

    # Plans and requests
    def get_plan(self, plan_id: int) -> Optional[Plan]:
        return self.plans.get(plan_id)

    def list_active_plans(self) -> Sequence[Plan]:
        return sorted((plan for plan in self.plans.values() if plan.is_active), key=lambda plan: plan.duration_days)

    def get_request(self, request_id: int) -> Optional[AccessRequest]:
        return self.requests.get(request_id)

    def resolve_request(
        self,
        request_id: int,
        *,
        status: RequestStatus,
        action_by: int,
        action_at: datetime,
        plan_id: Optional[int] = None,
    ) -> Optional[AccessRequest]:
        request = self.requests.get(request_id)
        if request is None or request.status != RequestStatus.PENDING:
            return None
        updated = request.model_copy(
            update={
                "status": status,
                "action_by": action_by,
                "action_at": action_at,
                "plan_id": plan_id if plan_id is not None else request.plan_id,
            }
        )
        self.requests[request_id] = updated
        return updated

    def reopen_request(self, request_id: int, *, action_by: int) -> Optional[AccessRequest]:
        request = self.requests.get(request_id)
        if request is None or request.status != RequestStatus.APPROVED or request.action_by != action_by:
            return None
        updated = request.model_copy(update={"status": RequestStatus.PENDING, "action_by": None, "action_at": None})
        self.requests[request_id] = updated
        return updated

    # Subscriptions
    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        return self.subscriptions.get(subscription_id)

    def get_open_subscription(self, user_id: int) -> Optional[Subscription]:
        candidates = [s for s in self.subscriptions.values() if s.user_id == user_id and s.is_open]
        return max(candidates, key=lambda s: s.expiry_date) if candidates else None

    def find_active_subscription(self, user_id: int, *, now: datetime) -> Optional[Subscription]:
        candidates = [
            s
            for s in self.subscriptions.values()
            if s.user_id == user_id and s.status == SubscriptionStatus.ACTIVE and s.expiry_date > now
        ]
        return max(candidates, key=lambda s: s.expiry_date) if candidates else None

    def create_subscription(self, subscription: Subscription) -> Subscription:
        if subscription.is_open and self.get_open_subscription(subscription.user_id) is not None:
            raise RuntimeError("user already holds an open subscription")
        created = subscription.model_copy(update={"id": self._new_id(), "version": 0})
        self.subscriptions[created.id] = created
        return created

    def count_subscriptions(self, user_id: int, statuses: Iterable[SubscriptionStatus]) -> int:
        wanted = set(statuses)
        return sum(1 for s in self.subscriptions.values() if s.user_id == user_id and s.status in wanted)

    def list_due_for_reminder(
        self,
        checkpoint: ReminderCheckpoint,
        *,
        window_start: datetime,
        window_end: datetime,
    ) -> Sequence[Subscription]:
        return [
            s
            for s in self.subscriptions.values()
            if s.status == SubscriptionStatus.ACTIVE
            and window_start <= s.expiry_date < window_end
            and not s.reminder_flags.is_set(checkpoint)
        ]

    def list_active_expired_before(self, cutoff: datetime) -> Sequence[Subscription]:
        return [s for s in self.subscriptions.values() if s.status == SubscriptionStatus.ACTIVE and s.expiry_date < cutoff]

    def list_active_valid_at(self, now: datetime) -> Sequence[Subscription]:
        return [s for s in self.subscriptions.values() if s.status == SubscriptionStatus.ACTIVE and s.expiry_date > now]

    def list_by_status(self, statuses: Iterable[SubscriptionStatus]) -> Sequence[Subscription]:
        wanted = set(statuses)
        return [s for s in self.subscriptions.values() if s.status in wanted]

    def set_reminder_flag(self, subscription_id: int, checkpoint: ReminderCheckpoint) -> bool:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None or subscription.reminder_flags.is_set(checkpoint):
            return False
        flags = subscription.reminder_flags.model_copy(update={checkpoint.value: True})
        self._update_subscription(subscription, reminder_flags=flags)
        return True

    def set_grace_notification(self, subscription_id: int, latch: GraceLatch) -> bool:
        subscription = self.subscriptions.get(subscription_id)
        if (
            subscription is None
            or subscription.status != SubscriptionStatus.GRACE
            or subscription.grace_notifications.is_set(latch)
        ):
            return False
        notifications = subscription.grace_notifications.model_copy(update={latch.value: True})
        self._update_subscription(subscription, grace_notifications=notifications)
        return True

    def transition_status(
        self,
        subscription_id: int,
        *,
        expected: SubscriptionStatus,
        new_status: SubscriptionStatus,
        grace_days_used: int,
    ) -> Optional[Subscription]:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None or subscription.status != expected:
            return None
        changes = {
            "status": new_status,
            "grace_days_used": grace_days_used,
            "version": subscription.version + 1,
        }
        if new_status == SubscriptionStatus.GRACE:
            changes["grace_notifications"] = GraceNotifications()
        return self._update_subscription(subscription, **changes)

    def renew_subscription(
        self,
        subscription_id: int,
        *,
        expected_version: int,
        plan: Plan,
        expiry_date: datetime,
        approved_by: Optional[int],
    ) -> Optional[Subscription]:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None or subscription.version != expected_version or not subscription.is_open:
            return None
        return self._update_subscription(
            subscription,
            plan_id=plan.id,
            plan_name=plan.name,
            duration_days=plan.duration_days,
            expiry_date=expiry_date,
            status=SubscriptionStatus.ACTIVE,
            reminder_flags=ReminderFlags(),
            grace_days_used=0,
            grace_notifications=GraceNotifications(),
            is_renewal=True,
            approved_by=approved_by,
            version=subscription.version + 1,
        )

    def extend_expiry(self, subscription_id: int, *, expected_version: int, expiry_date: datetime) -> Optional[Subscription]:
        subscription = self.subscriptions.get(subscription_id)
        if (
            subscription is None
            or subscription.version != expected_version
            or subscription.status != SubscriptionStatus.ACTIVE
        ):
            return None
        return self._update_subscription(subscription, expiry_date=expiry_date, version=subscription.version + 1)

    def record_invite_link(self, subscription_id: int, invite_link: str) -> None:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is not None:
            self._update_subscription(subscription, invite_link=invite_link)

    # Offers and reporting
    def deactivate_expired_offers(self, now: datetime) -> int:
        count = 0
        for offer in list(self.offers.values()):
            if offer.is_active and offer.valid_till < now:
                self.offers[offer.id] = offer.model_copy(update={"is_active": False})
                count += 1
        return count

    def compute_daily_summary(self, day_start: datetime, day_end: datetime) -> DailySummary:
        def within(value: Optional[datetime]) -> bool:
            return value is not None and day_start <= value < day_end

        return DailySummary(
            day=day_start,
            new_users=sum(1 for user in self.users.values() if within(user.created_at)),
            requests_received=sum(1 for request in self.requests.values() if within(request.requested_at)),
            approvals=sum(
                1
                for request in self.requests.values()
                if request.status == RequestStatus.APPROVED and within(request.action_at)
            ),
            renewals=sum(1 for s in self.subscriptions.values() if s.is_renewal and within(s.updated_at)),
            expired_today=sum(
                1 for s in self.subscriptions.values() if s.status == SubscriptionStatus.EXPIRED and within(s.updated_at)
            ),
        )

    def save_daily_summary(self, summary: DailySummary) -> DailySummary:
        self.summaries[summary.day] = summary
        return summary


class RecordingAuditLogger:
    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [event.action.value for event in self.events]


class FakeGateway:
    """Records deliveries; chat ids in ``unreachable``/``transient`` fail accordingly."""

    def __init__(self) -> None:
        self.sent: List[Tuple[int, OutboundMessage]] = []
        self.attempts: List[int] = []
        self.unreachable: Set[int] = set()
        self.transient: Set[int] = set()

    def deliver(self, chat_id: int, message: OutboundMessage) -> DeliveryResult:
        self.attempts.append(chat_id)
        if chat_id in self.unreachable:
            return DeliveryResult.UNREACHABLE
        if chat_id in self.transient:
            return DeliveryResult.TRANSIENT_ERROR
        self.sent.append((chat_id, message))
        return DeliveryResult.DELIVERED

    def texts_for(self, chat_id: int) -> List[str]:
        return [message.text for target, message in self.sent if target == chat_id]


class FakeMembership:
    def __init__(self) -> None:
        self.members: Set[int] = set()
        self.removed: List[int] = []
        self.invites: List[int] = []
        self.failing: Set[int] = set()

    def _check(self, user_id: int) -> None:
        if user_id in self.failing:
            raise MembershipProviderError(f"provider unavailable for {user_id}")

    def is_member(self, group_id: int, user_id: int) -> bool:
        self._check(user_id)
        return user_id in self.members

    def create_single_use_invite(self, group_id: int, user_id: int, ttl_seconds: int) -> Optional[str]:
        self._check(user_id)
        self.invites.append(user_id)
        return f"https://t.me/+invite{user_id}"

    def remove_member(self, group_id: int, user_id: int) -> bool:
        self._check(user_id)
        self.removed.append(user_id)
        self.members.discard(user_id)
        return True


def add_user(repo: InMemorySubscriptionRepository, telegram_id: int, **overrides) -> User:
    now = repo.clock()
    fields = {
        "telegram_id": telegram_id,
        "name": f"User {telegram_id}",
        "created_at": now - timedelta(days=30),
        "updated_at": now,
        "last_interaction": now,
    }
    fields.update(overrides)
    return repo.save_user(User(**fields))


def add_subscription(
    repo: InMemorySubscriptionRepository,
    user_id: int,
    *,
    expiry: datetime,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    duration_days: int = 30,
    **overrides,
) -> Subscription:
    fields = {
        "user_id": user_id,
        "plan_id": 1,
        "plan_name": "Monthly",
        "duration_days": duration_days,
        "start_date": expiry - timedelta(days=duration_days),
        "expiry_date": expiry,
        "status": status,
        "created_at": expiry - timedelta(days=duration_days),
        "updated_at": repo.clock(),
    }
    fields.update(overrides)
    return repo.create_subscription(Subscription(**fields))
