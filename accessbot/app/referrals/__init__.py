"""Referral registration and one-time bonus awards."""

from .service import ReferralBonusOutcome, ReferralService

__all__ = ["ReferralBonusOutcome", "ReferralService"]
