"""Builds the lifecycle services once and hands them out explicitly."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo
from typing import Dict, Optional

from .app.approvals.service import ApprovalService
from .app.delivery.blocked import BlockedRecipientHandler
from .app.delivery.broadcast import BroadcastService
from .app.delivery.gateway import LogChannel, MembershipProvider, NotificationGateway
from .app.delivery.messenger import Messenger
from .app.delivery.telegram import TelegramBotClient
from .app.lifecycle.grace import GracePeriodEngine
from .app.lifecycle.inactivity import InactiveUserDetector
from .app.lifecycle.offers import OfferExpirySweep
from .app.lifecycle.reconciler import MembershipReconciler
from .app.lifecycle.reminders import ReminderEngine
from .app.lifecycle.summary import DailySummaryJob
from .app.referrals.service import ReferralService
from .app.sessions import InMemoryActorSessionStore
from .app.subscriptions.repository import PostgresAuditLog, PostgresSubscriptionRepository
from .app.subscriptions.service import AuditLogger, SubscriptionRepository, SubscriptionService
from .app.timeutils import Clock, resolve_timezone
from .config import BotConfig
from .scheduler import DailyJobScheduler, ScheduledJob


@dataclass
class AppContext:
    config: BotConfig
    tz: tzinfo
    repository: SubscriptionRepository
    audit_logger: AuditLogger
    messenger: Messenger
    log_channel: LogChannel
    subscriptions: SubscriptionService
    referrals: ReferralService
    approvals: ApprovalService
    broadcasts: BroadcastService
    reminders: ReminderEngine
    grace: GracePeriodEngine
    reconciler: MembershipReconciler
    inactivity: InactiveUserDetector
    summary: DailySummaryJob
    offers: OfferExpirySweep
    scheduler: DailyJobScheduler


def build_scheduler(
    config: BotConfig,
    tz: tzinfo,
    *,
    reminders: ReminderEngine,
    grace: GracePeriodEngine,
    inactivity: InactiveUserDetector,
    reconciler: MembershipReconciler,
    summary: DailySummaryJob,
    offers: OfferExpirySweep,
    clock: Optional[Clock] = None,
) -> DailyJobScheduler:
    runners = {
        "reminders": reminders.run,
        "grace": grace.run,
        "inactivity": inactivity.run,
        "reconcile": reconciler.run,
        "summary": summary.run,
        "offers": offers.run,
    }
    jobs: Dict[str, ScheduledJob] = {
        name: ScheduledJob(name=name, at=config.schedule[name], run=runner)
        for name, runner in runners.items()
    }
    return DailyJobScheduler(jobs, tz=tz, clock=clock)


def build_app_context(
    config: BotConfig,
    *,
    repository: Optional[SubscriptionRepository] = None,
    audit_logger: Optional[AuditLogger] = None,
    gateway: Optional[NotificationGateway] = None,
    membership: Optional[MembershipProvider] = None,
    clock: Optional[Clock] = None,
) -> AppContext:
    """Construct every service from ``config``; collaborators may be overridden."""

    tz = resolve_timezone(config.timezone)
    if gateway is None or membership is None:
        client = TelegramBotClient(config.bot_token, api_base=config.telegram_api_base)
        gateway = gateway or client
        membership = membership or client
    repository = repository or PostgresSubscriptionRepository()
    audit_logger = audit_logger or PostgresAuditLog()

    log_channel = LogChannel(gateway=gateway, channel_id=config.log_channel_id)
    blocked = BlockedRecipientHandler(repository=repository, audit_logger=audit_logger, log_channel=log_channel)
    messenger = Messenger(gateway=gateway, blocked_handler=blocked)

    group_id = config.premium_group_id
    subscriptions = SubscriptionService(
        repository=repository,
        audit_logger=audit_logger,
        clock=clock,
        remove_member=lambda user_id: membership.remove_member(group_id, user_id),
    )
    referrals = ReferralService(
        repository=repository,
        messenger=messenger,
        audit_logger=audit_logger,
        bonus_days=config.bonus_referral_days,
        clock=clock,
    )
    approvals = ApprovalService(
        repository=repository,
        subscriptions=subscriptions,
        referrals=referrals,
        messenger=messenger,
        membership=membership,
        audit_logger=audit_logger,
        log_channel=log_channel,
        group_id=config.premium_group_id,
        tz=tz,
        invite_ttl_seconds=config.invite_ttl_seconds,
        clock=clock,
    )
    broadcasts = BroadcastService(
        repository=repository,
        messenger=messenger,
        audit_logger=audit_logger,
        log_channel=log_channel,
        sessions=InMemoryActorSessionStore(clock=clock),
        delay_seconds=config.broadcast_delay_seconds,
        clock=clock,
    )

    reminders = ReminderEngine(repository=repository, messenger=messenger, tz=tz, clock=clock)
    grace = GracePeriodEngine(
        repository=repository,
        messenger=messenger,
        membership=membership,
        audit_logger=audit_logger,
        log_channel=log_channel,
        group_id=config.premium_group_id,
        tz=tz,
        grace_period_days=config.grace_period_days,
        clock=clock,
    )
    reconciler = MembershipReconciler(
        repository=repository,
        messenger=messenger,
        membership=membership,
        audit_logger=audit_logger,
        log_channel=log_channel,
        group_id=config.premium_group_id,
        invite_ttl_seconds=config.invite_ttl_seconds,
        clock=clock,
    )
    inactivity = InactiveUserDetector(
        repository=repository,
        messenger=messenger,
        inactivity_days=config.inactivity_days,
        expired_days=config.expired_reengage_days,
        clock=clock,
    )
    summary = DailySummaryJob(repository=repository, log_channel=log_channel, tz=tz, clock=clock)
    offers = OfferExpirySweep(repository=repository, clock=clock)

    scheduler = build_scheduler(
        config,
        tz,
        reminders=reminders,
        grace=grace,
        inactivity=inactivity,
        reconciler=reconciler,
        summary=summary,
        offers=offers,
        clock=clock,
    )
    return AppContext(
        config=config,
        tz=tz,
        repository=repository,
        audit_logger=audit_logger,
        messenger=messenger,
        log_channel=log_channel,
        subscriptions=subscriptions,
        referrals=referrals,
        approvals=approvals,
        broadcasts=broadcasts,
        reminders=reminders,
        grace=grace,
        reconciler=reconciler,
        inactivity=inactivity,
        summary=summary,
        offers=offers,
        scheduler=scheduler,
    )


__all__ = ["AppContext", "build_app_context", "build_scheduler"]
