from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from accessbot.app.delivery.blocked import BlockedRecipientHandler
from accessbot.app.delivery.gateway import LogChannel
from accessbot.app.delivery.messenger import Messenger
from accessbot.app.subscriptions.models import Plan
from accessbot.app.timeutils import resolve_timezone
from accessbot.tests.fakes import (
    LOG_CHANNEL_ID,
    FakeGateway,
    FakeMembership,
    FixedClock,
    InMemorySubscriptionRepository,
    RecordingAuditLogger,
)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def tz():
    return resolve_timezone("UTC")


@pytest.fixture
def repo(clock: FixedClock) -> InMemorySubscriptionRepository:
    repository = InMemorySubscriptionRepository(clock)
    repository.add_plan(Plan(id=1, name="Monthly", duration_days=30, price=Decimal("9.99")))
    repository.add_plan(Plan(id=2, name="Weekly", duration_days=7, price=Decimal("2.99")))
    return repository


@pytest.fixture
def audit() -> RecordingAuditLogger:
    return RecordingAuditLogger()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def membership() -> FakeMembership:
    return FakeMembership()


@pytest.fixture
def log_channel(gateway: FakeGateway) -> LogChannel:
    return LogChannel(gateway=gateway, channel_id=LOG_CHANNEL_ID)


@pytest.fixture
def messenger(gateway, repo, audit, log_channel) -> Messenger:
    handler = BlockedRecipientHandler(repository=repo, audit_logger=audit, log_channel=log_channel)
    return Messenger(gateway=gateway, blocked_handler=handler)
