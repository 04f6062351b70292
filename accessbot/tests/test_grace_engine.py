"""Tests for the grace-period sweep."""
from __future__ import annotations

from datetime import timedelta

import pytest

from accessbot.app.lifecycle.grace import (
    GraceActionKind,
    GracePeriodEngine,
    evaluate_grace,
    plan_grace_actions,
)
from accessbot.app.subscriptions.models import (
    GraceLatch,
    GraceNotifications,
    SubscriptionStatus,
    UserStatus,
)
from accessbot.tests.fakes import GROUP_ID, add_subscription, add_user


@pytest.fixture
def engine(repo, messenger, membership, audit, log_channel, tz, clock) -> GracePeriodEngine:
    return GracePeriodEngine(
        repository=repo,
        messenger=messenger,
        membership=membership,
        audit_logger=audit,
        log_channel=log_channel,
        group_id=GROUP_ID,
        tz=tz,
        grace_period_days=3,
        clock=clock,
    )


def _grace_texts(gateway, user_id):
    return [
        text
        for text in gateway.texts_for(user_id)
        if "Grace Period Reminder" in text or "Final Warning" in text
    ]


def test_long_overdue_subscription_is_revoked_in_one_run(engine, repo, membership, gateway, audit, clock):
    add_user(repo, 1, status=UserStatus.ACTIVE)
    membership.members.add(1)
    subscription = add_subscription(repo, 1, expiry=clock() - timedelta(days=4))

    summary = engine.run()

    stored = repo.get_subscription(subscription.id)
    assert stored.status == SubscriptionStatus.EXPIRED
    assert stored.grace_days_used == 3
    assert stored.grace_notifications == GraceNotifications()
    assert membership.removed == [1]
    assert _grace_texts(gateway, 1) == []
    assert repo.get_user(1).status == UserStatus.EXPIRED
    assert repo.get_user(1).grace_days_remaining == 0
    assert summary.counters == {"enter_grace": 1, "revoke": 1}
    ban = [event for event in audit.events if event.action.value == "ban_user"]
    assert ban[0].details["reason"] == "grace period expired"


def test_rerun_after_revoke_is_a_no_op(engine, repo, membership, gateway, clock):
    add_user(repo, 1)
    membership.members.add(1)
    add_subscription(repo, 1, expiry=clock() - timedelta(days=4))
    engine.run()
    sent_before = len(gateway.sent)

    summary = engine.run()

    assert summary.candidates == 0
    assert membership.removed == [1]
    assert len(gateway.sent) == sent_before


def test_expiry_earlier_today_does_not_enter_grace(engine, repo, clock):
    add_user(repo, 1)
    subscription = add_subscription(repo, 1, expiry=clock() - timedelta(hours=2))

    summary = engine.run()

    assert summary.candidates == 0
    assert repo.get_subscription(subscription.id).status == SubscriptionStatus.ACTIVE


def test_full_grace_walkthrough(engine, repo, membership, gateway, audit, clock):
    add_user(repo, 7, status=UserStatus.ACTIVE)
    membership.members.add(7)
    # Expired yesterday evening.
    subscription = add_subscription(repo, 7, expiry=clock() - timedelta(hours=13))

    engine.run()
    stored = repo.get_subscription(subscription.id)
    assert stored.status == SubscriptionStatus.GRACE
    assert repo.get_user(7).status == UserStatus.EXPIRED
    assert repo.get_user(7).grace_days_remaining == 3
    assert any("Subscription Expired" in text for text in gateway.texts_for(7))
    assert "grace_started" in audit.actions()

    clock.advance(days=1)
    engine.run()
    engine.run()
    reminders = [text for text in gateway.texts_for(7) if "Grace Period Reminder" in text]
    assert len(reminders) == 1
    assert "2 days left" in reminders[0]
    assert repo.get_subscription(subscription.id).grace_notifications.is_set(GraceLatch.DAY1)

    clock.advance(days=1)
    engine.run()
    engine.run()
    warnings = [text for text in gateway.texts_for(7) if "Final Warning" in text]
    assert len(warnings) == 1
    assert membership.removed == []

    clock.advance(days=1)
    engine.run()
    assert repo.get_subscription(subscription.id).status == SubscriptionStatus.EXPIRED
    assert membership.removed == [7]
    assert any("Access Removed" in text for text in gateway.texts_for(7))


def test_membership_failure_still_records_expiry(engine, repo, membership, clock):
    add_user(repo, 1)
    add_user(repo, 2)
    membership.members.update({1, 2})
    membership.failing.add(1)
    first = add_subscription(repo, 1, expiry=clock() - timedelta(days=5))
    second = add_subscription(repo, 2, expiry=clock() - timedelta(days=5))

    engine.run()

    assert repo.get_subscription(first.id).status == SubscriptionStatus.EXPIRED
    assert repo.get_subscription(second.id).status == SubscriptionStatus.EXPIRED
    assert membership.removed == [2]


def test_failure_on_one_subscription_does_not_stop_the_batch(engine, repo, membership, clock, monkeypatch):
    add_user(repo, 1)
    add_user(repo, 2)
    first = add_subscription(repo, 1, expiry=clock() - timedelta(days=5))
    second = add_subscription(repo, 2, expiry=clock() - timedelta(days=5))
    original = repo.update_user_status

    def flaky_update(telegram_id, **kwargs):
        if telegram_id == 1:
            raise RuntimeError("database unavailable")
        return original(telegram_id, **kwargs)

    monkeypatch.setattr(repo, "update_user_status", flaky_update)

    summary = engine.run()

    assert summary.failures == 1
    assert repo.get_subscription(first.id).status == SubscriptionStatus.GRACE
    assert repo.get_subscription(second.id).status == SubscriptionStatus.EXPIRED
    assert membership.removed == [2]


def test_renewed_subscription_is_not_revoked(engine, repo, membership, clock):
    add_user(repo, 1)
    subscription = add_subscription(repo, 1, expiry=clock() - timedelta(days=5), status=SubscriptionStatus.GRACE)
    # A concurrent approval renews the record after the candidates were read.
    stale = repo.get_subscription(subscription.id)
    repo.renew_subscription(
        subscription.id,
        expected_version=stale.version,
        plan=repo.get_plan(1),
        expiry_date=clock() + timedelta(days=30),
        approved_by=42,
    )

    engine.run()

    assert repo.get_subscription(subscription.id).status == SubscriptionStatus.ACTIVE
    assert membership.removed == []


def test_evaluate_grace_with_two_day_window_prefers_final_warning(repo, clock):
    subscription = add_subscription(repo, 1, expiry=clock() - timedelta(days=1), status=SubscriptionStatus.GRACE)

    assert evaluate_grace(subscription, 1, 2) == GraceActionKind.FINAL_WARNING
    assert evaluate_grace(subscription, 2, 2) == GraceActionKind.REVOKE
    assert evaluate_grace(subscription, 0, 3) is None
    assert evaluate_grace(subscription, 0, 1) is None
    assert evaluate_grace(subscription, 1, 1) == GraceActionKind.REVOKE

    warned = subscription.model_copy(update={"grace_notifications": GraceNotifications(day2=True)})
    assert evaluate_grace(warned, 1, 2) is None


def test_plan_grace_actions_is_pure(repo, clock, tz):
    active = add_subscription(repo, 1, expiry=clock() - timedelta(days=1, hours=10))

    actions = plan_grace_actions(clock(), tz, 3, [active], [])

    assert [action.kind for action in actions] == [GraceActionKind.ENTER_GRACE, GraceActionKind.EARLY_REMINDER]
    assert repo.get_subscription(active.id).status == SubscriptionStatus.ACTIVE


def _engine_with_grace(grace_period_days, repo, messenger, membership, audit, log_channel, tz, clock):
    return GracePeriodEngine(
        repository=repo,
        messenger=messenger,
        membership=membership,
        audit_logger=audit,
        log_channel=log_channel,
        group_id=GROUP_ID,
        tz=tz,
        grace_period_days=grace_period_days,
        clock=clock,
    )


def test_two_day_grace_sends_only_the_final_warning(
    repo, messenger, membership, audit, log_channel, gateway, tz, clock
):
    engine = _engine_with_grace(2, repo, messenger, membership, audit, log_channel, tz, clock)
    add_user(repo, 7, status=UserStatus.ACTIVE)
    membership.members.add(7)
    subscription = add_subscription(repo, 7, expiry=clock() - timedelta(hours=13))

    engine.run()
    assert repo.get_subscription(subscription.id).status == SubscriptionStatus.GRACE
    assert repo.get_user(7).grace_days_remaining == 2
    assert _grace_texts(gateway, 7) == []

    clock.advance(days=1)
    engine.run()
    engine.run()
    texts = _grace_texts(gateway, 7)
    assert len(texts) == 1
    assert "Final Warning" in texts[0]
    assert membership.removed == []

    clock.advance(days=1)
    engine.run()
    engine.run()
    assert repo.get_subscription(subscription.id).status == SubscriptionStatus.EXPIRED
    assert membership.removed == [7]
    assert len(_grace_texts(gateway, 7)) == 1


def test_one_day_grace_revokes_without_warnings(
    repo, messenger, membership, audit, log_channel, gateway, tz, clock
):
    engine = _engine_with_grace(1, repo, messenger, membership, audit, log_channel, tz, clock)
    add_user(repo, 7, status=UserStatus.ACTIVE)
    membership.members.add(7)
    subscription = add_subscription(repo, 7, expiry=clock() - timedelta(hours=13))

    summary = engine.run()
    assert summary.counters == {"enter_grace": 1}
    assert repo.get_subscription(subscription.id).status == SubscriptionStatus.GRACE
    assert any("Subscription Expired" in text for text in gateway.texts_for(7))

    clock.advance(days=1)
    engine.run()
    engine.run()
    assert repo.get_subscription(subscription.id).status == SubscriptionStatus.EXPIRED
    assert membership.removed == [7]
    assert _grace_texts(gateway, 7) == []
    assert audit.actions().count("ban_user") == 1
