"""Referral tracking and the one-time bonus for a referral's first subscription."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..delivery import messages
from ..delivery.messenger import Messenger
from ..subscriptions.models import (
    CONVERTED_STATUSES,
    AuditAction,
    AuditEvent,
    Subscription,
    User,
)
from ..subscriptions.service import AuditLogger, SubscriptionRepository
from ..timeutils import current_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferralBonusOutcome:
    """What the awarder did for one approval."""

    awarded: bool
    referrer_id: Optional[int] = None
    extended_subscription: Optional[Subscription] = None


_NOT_ELIGIBLE = ReferralBonusOutcome(awarded=False)


@dataclass
class ReferralService:
    """Links referred users to referrers and extends the referrer's access once."""

    repository: SubscriptionRepository
    messenger: Messenger
    audit_logger: AuditLogger
    bonus_days: int = 3
    clock: Optional[Callable[[], datetime]] = None

    def register_referral(self, user: User, referral_code: Optional[str]) -> bool:
        """Record who referred ``user``; the first valid code wins."""

        if not referral_code or user.referred_by is not None:
            return False
        referrer = self.repository.get_user_by_referral_code(referral_code.strip().upper())
        if referrer is None or referrer.telegram_id == user.telegram_id:
            return False
        linked = self.repository.set_user_referrer(user.telegram_id, referrer.telegram_id)
        if linked:
            logger.info(
                "Referral recorded",
                extra={"user_id": user.telegram_id, "referrer_id": referrer.telegram_id},
            )
        return linked

    def award_referral_bonus(self, telegram_id: int) -> ReferralBonusOutcome:
        """Award the referrer's bonus if ``telegram_id`` just converted for the first time.

        The bonus is dropped, not queued, when the referrer has no active
        subscription. Either way the referred user's flag is flipped so the
        rule fires at most once. Errors are logged and never propagate to the
        approval that triggered the award.
        """

        try:
            return self._award(telegram_id)
        except Exception:
            logger.exception("Referral bonus processing failed", extra={"user_id": telegram_id})
            return _NOT_ELIGIBLE

    def _award(self, telegram_id: int) -> ReferralBonusOutcome:
        user = self.repository.get_user(telegram_id)
        if user is None or user.referred_by is None or user.referral_bonus_applied:
            return _NOT_ELIGIBLE
        if self.repository.count_subscriptions(telegram_id, CONVERTED_STATUSES) != 1:
            return _NOT_ELIGIBLE

        # Claim first so concurrent approvals cannot both extend the referrer.
        if not self.repository.mark_referral_bonus_applied(telegram_id):
            return _NOT_ELIGIBLE

        referrer_id = user.referred_by
        extended = self._extend_referrer(referrer_id)
        if extended is not None:
            self.messenger.send(referrer_id, messages.referral_bonus(user, self.bonus_days))

        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.REFERRAL_BONUS,
                target_user_id=referrer_id,
                details={
                    "referred_user": str(telegram_id),
                    "bonus_days": str(self.bonus_days),
                    "applied": str(extended is not None).lower(),
                },
            )
        )
        logger.info(
            "Referral bonus processed",
            extra={"referrer_id": referrer_id, "applied": extended is not None, "bonus_days": self.bonus_days},
        )
        return ReferralBonusOutcome(awarded=extended is not None, referrer_id=referrer_id, extended_subscription=extended)

    def _extend_referrer(self, referrer_id: int) -> Optional[Subscription]:
        now = current_time(self.clock)
        subscription = self.repository.find_active_subscription(referrer_id, now=now)
        if subscription is None:
            return None
        extended = self.repository.extend_expiry(
            subscription.id,
            expected_version=subscription.version,
            expiry_date=subscription.expiry_date + timedelta(days=self.bonus_days),
        )
        if extended is None:
            logger.warning(
                "Referrer subscription changed concurrently; bonus dropped",
                extra={"subscription_id": subscription.id},
            )
        return extended
