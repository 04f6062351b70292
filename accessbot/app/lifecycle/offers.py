"""Deactivates offers whose validity window has passed."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..subscriptions.service import SubscriptionRepository
from ..timeutils import current_time
from .results import JobSummary

logger = logging.getLogger(__name__)


@dataclass
class OfferExpirySweep:
    repository: SubscriptionRepository
    clock: Optional[Callable[[], datetime]] = None

    def run(self) -> JobSummary:
        summary = JobSummary(job="offers")
        deactivated = self.repository.deactivate_expired_offers(current_time(self.clock))
        summary.bump("deactivated", deactivated)
        if deactivated:
            logger.info("Expired offers deactivated", extra={"count": deactivated})
        return summary
