"""Domain models for users, plans, and the subscription lifecycle."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_referral_code() -> str:
    """Return a short upper-case code suitable for referral links."""

    return uuid4().hex[:8].upper()


class UserRole(str, Enum):
    """Roles a bot user can hold."""

    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class UserStatus(str, Enum):
    """Account-level status mirrored from the user's subscriptions."""

    ACTIVE = "active"
    EXPIRED = "expired"
    PENDING = "pending"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a subscription."""

    ACTIVE = "active"
    GRACE = "grace"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


OPEN_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.GRACE})
TERMINAL_STATUSES = frozenset({SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED})
# Statuses counted when deciding whether a subscription is the user's first.
CONVERTED_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.GRACE, SubscriptionStatus.EXPIRED}
)


class ReminderCheckpoint(str, Enum):
    """Named pre-expiry reminder latches."""

    DAY7 = "day7"
    DAY3 = "day3"
    DAY1 = "day1"
    DAY0 = "day0"

    @property
    def offset_days(self) -> int:
        return _CHECKPOINT_OFFSETS[self]


_CHECKPOINT_OFFSETS = {
    ReminderCheckpoint.DAY7: 7,
    ReminderCheckpoint.DAY3: 3,
    ReminderCheckpoint.DAY1: 1,
    ReminderCheckpoint.DAY0: 0,
}


class GraceLatch(str, Enum):
    """Grace-period notification latches.

    ``DAY1`` guards the early reminder sent one day into grace and ``DAY2``
    guards the final warning sent the day before removal.
    """

    DAY1 = "day1"
    DAY2 = "day2"


class RequestStatus(str, Enum):
    """Status of a premium access request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditAction(str, Enum):
    """Audit categories written by the lifecycle engine."""

    APPROVE_REQUEST = "approve_request"
    REJECT_REQUEST = "reject_request"
    BROADCAST = "broadcast"
    BAN_USER = "ban_user"
    MANUAL_EXPIRE = "manual_expire"
    REFERRAL_BONUS = "referral_bonus"
    GRACE_STARTED = "grace_started"
    MEMBERSHIP_REPAIRED = "membership_repaired"


SYSTEM_ACTOR_ID = 0


class User(BaseModel):
    """A bot user keyed by their Telegram identifier."""

    telegram_id: int
    name: str = ""
    username: Optional[str] = None
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.INACTIVE
    is_blocked: bool = False
    referral_code: str = Field(default_factory=generate_referral_code)
    referred_by: Optional[int] = None
    referral_bonus_applied: bool = False
    last_interaction: datetime = Field(default_factory=_utcnow)
    grace_days_remaining: Optional[int] = None
    awaiting_support: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Plan(BaseModel):
    """Catalog entry describing a purchasable access duration."""

    id: int
    name: str
    duration_days: int = Field(ge=1)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    is_active: bool = True

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ReminderFlags(BaseModel):
    """One-way latches for pre-expiry reminders."""

    day7: bool = False
    day3: bool = False
    day1: bool = False
    day0: bool = False

    model_config = ConfigDict(frozen=True)

    def is_set(self, checkpoint: ReminderCheckpoint) -> bool:
        return bool(getattr(self, checkpoint.value))


class GraceNotifications(BaseModel):
    """One-way latches for grace-period warnings."""

    day1: bool = False
    day2: bool = False

    model_config = ConfigDict(frozen=True)

    def is_set(self, latch: GraceLatch) -> bool:
        return bool(getattr(self, latch.value))


class Subscription(BaseModel):
    """Time-bounded access grant owned by a single user."""

    id: Optional[int] = None
    user_id: int
    plan_id: Optional[int] = None
    plan_name: str
    duration_days: int = Field(ge=1)
    start_date: datetime
    expiry_date: datetime
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    reminder_flags: ReminderFlags = Field(default_factory=ReminderFlags)
    grace_days_used: int = Field(default=0, ge=0)
    grace_notifications: GraceNotifications = Field(default_factory=GraceNotifications)
    is_renewal: bool = False
    approved_by: Optional[int] = None
    invite_link: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _expiry_after_start(self) -> "Subscription":
        if self.expiry_date <= self.start_date:
            raise ValueError("expiry_date must be later than start_date")
        return self

    @property
    def is_open(self) -> bool:
        """Return ``True`` while the subscription still grants (or is about to revoke) access."""
        return self.status.is_open


class AccessRequest(BaseModel):
    """A user's request for premium access awaiting admin review."""

    id: int
    user_id: int
    status: RequestStatus = RequestStatus.PENDING
    requested_at: datetime = Field(default_factory=_utcnow)
    action_at: Optional[datetime] = None
    action_by: Optional[int] = None
    plan_id: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Offer(BaseModel):
    """Time-limited discount shown to users."""

    id: int
    title: str
    discount_percent: int = Field(default=0, ge=0, le=100)
    valid_till: datetime
    is_active: bool = True

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class AuditEvent(BaseModel):
    """Append-only audit record; ``actor_id`` 0 denotes the system."""

    action: AuditAction
    actor_id: int = SYSTEM_ACTOR_ID
    target_user_id: Optional[int] = None
    details: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class DailySummary(BaseModel):
    """Activity counters for one local calendar day."""

    day: datetime
    new_users: int = 0
    requests_received: int = 0
    approvals: int = 0
    renewals: int = 0
    expired_today: int = 0

    model_config = ConfigDict(populate_by_name=True, frozen=True)
