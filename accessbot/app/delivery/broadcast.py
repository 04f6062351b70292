"""Paced bulk messaging to user segments."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Sequence

from ..sessions import ActorSession, ActorSessionStore
from ..subscriptions.models import AuditAction, AuditEvent, User, UserRole, UserStatus
from ..subscriptions.service import AuditLogger, SubscriptionRepository
from ..timeutils import current_time
from .gateway import DeliveryResult, LogChannel, OutboundMessage
from .messenger import Messenger

logger = logging.getLogger(__name__)

BROADCAST_ACTION = "broadcast"
NEW_USER_WINDOW = timedelta(days=3)


class BroadcastTarget(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    EXPIRED = "expired"
    NEW = "new"


@dataclass(frozen=True)
class BroadcastResult:
    target: BroadcastTarget
    sent: int
    failed: int


@dataclass
class BroadcastService:
    """Sends one text to every matching user, one at a time with a fixed pause."""

    repository: SubscriptionRepository
    messenger: Messenger
    audit_logger: AuditLogger
    log_channel: LogChannel
    sessions: ActorSessionStore
    delay_seconds: float = 0.05
    clock: Optional[Callable[[], datetime]] = None
    sleep: Callable[[float], None] = field(default=time.sleep)

    def begin(self, actor_id: int, target: BroadcastTarget) -> ActorSession:
        session = ActorSession(actor_id=actor_id, action=BROADCAST_ACTION, target=target.value)
        self.sessions.put(session)
        return session

    def cancel(self, actor_id: int) -> bool:
        return self.sessions.pop(actor_id) is not None

    def submit(self, actor_id: int, text: str) -> Optional[BroadcastResult]:
        """Consume the actor's pending broadcast, if any, and send ``text``."""

        session = self.sessions.get(actor_id)
        if session is None or session.action != BROADCAST_ACTION:
            return None
        self.sessions.pop(actor_id)
        return self.broadcast(BroadcastTarget(session.target or BroadcastTarget.ALL.value), text, actor_id)

    def recipients(self, target: BroadcastTarget) -> Sequence[User]:
        if target == BroadcastTarget.ACTIVE:
            return self.repository.list_users(role=UserRole.USER, statuses=[UserStatus.ACTIVE])
        if target == BroadcastTarget.EXPIRED:
            return self.repository.list_users(role=UserRole.USER, statuses=[UserStatus.EXPIRED])
        if target == BroadcastTarget.NEW:
            since = current_time(self.clock) - NEW_USER_WINDOW
            return self.repository.list_users(role=UserRole.USER, created_after=since)
        return self.repository.list_users(role=UserRole.USER)

    def broadcast(self, target: BroadcastTarget, text: str, actor_id: int) -> BroadcastResult:
        users = self.recipients(target)
        message = OutboundMessage(text=text)
        sent = failed = 0
        for index, user in enumerate(users):
            if index and self.delay_seconds > 0:
                self.sleep(self.delay_seconds)
            if self.messenger.send(user.telegram_id, message) == DeliveryResult.DELIVERED:
                sent += 1
            else:
                failed += 1

        result = BroadcastResult(target=target, sent=sent, failed=failed)
        self.log_channel.post(
            f"📢 *Broadcast Complete*\n✅ Sent: {sent}\n❌ Failed: {failed}\nTarget: {target.value}"
        )
        self.audit_logger.log(
            AuditEvent(
                action=AuditAction.BROADCAST,
                actor_id=actor_id,
                details={
                    "target": target.value,
                    "sent": str(sent),
                    "failed": str(failed),
                    "message": text[:100],
                },
            )
        )
        logger.info("Broadcast finished", extra={"target": target.value, "sent": sent, "failed": failed})
        return result
