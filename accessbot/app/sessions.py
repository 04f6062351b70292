"""TTL-bounded store for admins' in-progress multi-step actions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


class ActorSession(BaseModel):
    """A pending action awaiting the actor's next message."""

    actor_id: int
    action: str
    target: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class ActorSessionStore(Protocol):
    """Protocol describing the session operations used by the services."""

    def get(self, actor_id: int) -> Optional[ActorSession]:
        ...

    def put(self, session: ActorSession) -> None:
        ...

    def pop(self, actor_id: int) -> Optional[ActorSession]:
        ...


@dataclass
class _SessionEntry:
    value: ActorSession
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryActorSessionStore:
    """Per-actor sessions that lapse after ``ttl`` and never exceed ``max_entries``."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(minutes=15),
        max_entries: int = 1024,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._entries: Dict[int, _SessionEntry] = {}
        self._ttl = ttl
        self._max_entries = max(1, max_entries)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, actor_id: int) -> Optional[ActorSession]:
        now = self._clock()
        entry = self._entries.get(actor_id)
        if not entry:
            return None
        if entry.is_expired(now):
            self._entries.pop(actor_id, None)
            return None
        return entry.value

    def put(self, session: ActorSession) -> None:
        now = self._clock()
        self._purge(now)
        if session.actor_id not in self._entries and len(self._entries) >= self._max_entries:
            oldest = min(self._entries, key=lambda key: self._entries[key].expires_at)
            self._entries.pop(oldest, None)
        self._entries[session.actor_id] = _SessionEntry(value=session, expires_at=now + self._ttl)

    def pop(self, actor_id: int) -> Optional[ActorSession]:
        session = self.get(actor_id)
        self._entries.pop(actor_id, None)
        return session

    def _purge(self, now: datetime) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
