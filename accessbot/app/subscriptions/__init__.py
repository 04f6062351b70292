"""Subscription domain package: models, issuance, and persistence contracts."""

from .models import (
    CONVERTED_STATUSES,
    OPEN_STATUSES,
    SYSTEM_ACTOR_ID,
    TERMINAL_STATUSES,
    AccessRequest,
    AuditAction,
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
from .service import AuditLogger, SubscriptionRepository, SubscriptionService

__all__ = [
    "AccessRequest",
    "AuditAction",
    "AuditEvent",
    "AuditLogger",
    "CONVERTED_STATUSES",
    "DailySummary",
    "GraceLatch",
    "GraceNotifications",
    "OPEN_STATUSES",
    "Offer",
    "Plan",
    "ReminderCheckpoint",
    "ReminderFlags",
    "RequestStatus",
    "SYSTEM_ACTOR_ID",
    "Subscription",
    "SubscriptionRepository",
    "SubscriptionService",
    "SubscriptionStatus",
    "TERMINAL_STATUSES",
    "User",
    "UserRole",
    "UserStatus",
]
