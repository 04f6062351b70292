"""Admin approval and rejection of premium access requests."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Optional

from ..delivery import messages
from ..delivery.gateway import LogChannel, MembershipProvider
from ..delivery.messenger import Messenger
from ..errors import MembershipProviderError, RequestAlreadyProcessedError
from ..referrals.service import ReferralBonusOutcome, ReferralService
from ..subscriptions.models import (
    AccessRequest,
    AuditAction,
    AuditEvent,
    Plan,
    RequestStatus,
    Subscription,
    UserStatus,
)
from ..subscriptions.service import AuditLogger, SubscriptionRepository, SubscriptionService
from ..timeutils import current_time, format_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalResult:
    request: AccessRequest
    subscription: Subscription
    invite_link: Optional[str]
    referral: ReferralBonusOutcome


@dataclass
class ApprovalService:
    repository: SubscriptionRepository
    subscriptions: SubscriptionService
    referrals: ReferralService
    messenger: Messenger
    membership: MembershipProvider
    audit_logger: AuditLogger
    log_channel: LogChannel
    group_id: int
    tz: tzinfo
    invite_ttl_seconds: int = 600
    clock: Optional[Callable[[], datetime]] = None

    def _pending_request(self, request_id: int) -> AccessRequest:
        request = self.repository.get_request(request_id)
        if request is None:
            raise LookupError("Request not found")
        if request.status != RequestStatus.PENDING:
            raise RequestAlreadyProcessedError(request_id, request.status.value)
        return request

    def approve(self, request_id: int, plan_id: int, admin_id: int) -> ApprovalResult:
        request = self._pending_request(request_id)
        plan = self.repository.get_plan(plan_id)
        if plan is None:
            raise LookupError("Plan not found")

        resolved = self.repository.resolve_request(
            request_id,
            status=RequestStatus.APPROVED,
            action_by=admin_id,
            action_at=current_time(self.clock),
            plan_id=plan.id,
        )
        if resolved is None:
            raise RequestAlreadyProcessedError(request_id, "processed")

        try:
            subscription = self.subscriptions.create_or_renew(request.user_id, plan, admin_id)
        except Exception:
            # Hand the request back so the approval can be retried.
            reopened = self.repository.reopen_request(request_id, action_by=admin_id)
            logger.warning(
                "Subscription issuance failed; request reopened",
                exc_info=True,
                extra={"request_id": request_id, "reopened": reopened is not None},
            )
            raise
        invite_link = self._notify_member(subscription, plan)
        referral = self.referrals.award_referral_bonus(request.user_id)

        label = "Renewed" if subscription.is_renewal else "Approved"
        self.log_channel.post(
            f"✅ *Subscription {label}*\n"
            f"User: `{request.user_id}`\n"
            f"Plan: {plan.name} ({plan.duration_days}d)\n"
            f"Expires: {format_date(subscription.expiry_date, self.tz)}\n"
            f"By: {admin_id}"
        )
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.APPROVE_REQUEST,
                actor_id=admin_id,
                target_user_id=request.user_id,
                details={
                    "plan": plan.name,
                    "duration_days": str(plan.duration_days),
                    "is_renewal": str(subscription.is_renewal).lower(),
                },
            )
        )
        return ApprovalResult(
            request=resolved,
            subscription=subscription,
            invite_link=invite_link,
            referral=referral,
        )

    def _notify_member(self, subscription: Subscription, plan: Plan) -> Optional[str]:
        already_member = False
        if subscription.is_renewal:
            try:
                already_member = self.membership.is_member(self.group_id, subscription.user_id)
            except MembershipProviderError:
                logger.warning("Membership check failed during approval", exc_info=True)

        if already_member:
            self.messenger.send(subscription.user_id, messages.access_renewed(subscription, plan, self.tz))
            return None

        invite_link = None
        try:
            invite_link = self.membership.create_single_use_invite(
                self.group_id, subscription.user_id, self.invite_ttl_seconds
            )
        except MembershipProviderError:
            logger.warning("Invite creation failed during approval", exc_info=True)
        if invite_link:
            self.repository.record_invite_link(subscription.id, invite_link)
        self.messenger.send(
            subscription.user_id,
            messages.access_approved(subscription, plan, invite_link, self.invite_ttl_seconds, self.tz),
        )
        return invite_link

    def reject(self, request_id: int, admin_id: int) -> AccessRequest:
        self._pending_request(request_id)
        resolved = self.repository.resolve_request(
            request_id,
            status=RequestStatus.REJECTED,
            action_by=admin_id,
            action_at=current_time(self.clock),
        )
        if resolved is None:
            raise RequestAlreadyProcessedError(request_id, "processed")

        # A rejected renewal leaves a still-open subscription's mirrored status alone.
        if self.repository.get_open_subscription(resolved.user_id) is None:
            self.repository.update_user_status(
                resolved.user_id, status=UserStatus.INACTIVE, grace_days_remaining=None
            )
        self.messenger.send(resolved.user_id, messages.request_rejected())
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.REJECT_REQUEST,
                actor_id=admin_id,
                target_user_id=resolved.user_id,
                details={"request_id": str(request_id)},
            )
        )
        return resolved
