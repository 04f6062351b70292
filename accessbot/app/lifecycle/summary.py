"""Nightly activity report posted to the admin log channel."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Optional

from ..delivery.gateway import LogChannel
from ..subscriptions.models import DailySummary
from ..subscriptions.service import SubscriptionRepository
from ..timeutils import current_time, day_window
from .results import JobSummary

logger = logging.getLogger(__name__)


def render_daily_summary(summary: DailySummary, tz: tzinfo) -> str:
    day_label = summary.day.astimezone(tz).strftime("%d/%m/%Y")
    return (
        f"📊 *Daily Activity Summary ({day_label})*\n\n"
        f"👤 New Users: {summary.new_users}\n"
        f"📩 Requests Received: {summary.requests_received}\n"
        f"✅ Approvals: {summary.approvals}\n"
        f"🔄 Renewals: {summary.renewals}\n"
        f"❌ Expired Today: {summary.expired_today}\n"
    )


@dataclass
class DailySummaryJob:
    repository: SubscriptionRepository
    log_channel: LogChannel
    tz: tzinfo
    clock: Optional[Callable[[], datetime]] = None

    def run(self) -> JobSummary:
        now = current_time(self.clock)
        result = JobSummary(job="summary")
        start, end = day_window(now, self.tz)
        summary = self.repository.compute_daily_summary(start, end)
        self.repository.save_daily_summary(summary)
        if self.log_channel.post(render_daily_summary(summary, self.tz)):
            result.delivered = 1
        else:
            logger.warning("Daily summary was not posted", extra={"day": start.isoformat()})
        result.counters.update(summary.model_dump(exclude={"day"}))
        return result
