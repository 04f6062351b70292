"""User-facing message bodies sent by the lifecycle jobs."""
from __future__ import annotations

from datetime import tzinfo
from typing import Optional, Sequence

from ..subscriptions.models import Plan, ReminderCheckpoint, Subscription, User
from ..timeutils import format_date
from .gateway import Button, OutboundMessage, button_rows

_CHECKPOINT_LABELS = {
    ReminderCheckpoint.DAY7: "7 days",
    ReminderCheckpoint.DAY3: "3 days",
    ReminderCheckpoint.DAY1: "1 day",
    ReminderCheckpoint.DAY0: "less than 24 hours",
}


def renewal_buttons(plans: Sequence[Plan]):
    rows = []
    for plan in plans:
        label = f"🔄 Renew {plan.duration_days} Days"
        if plan.price:
            label += f" · {plan.price} {plan.currency}"
        rows.append([Button(text=label, callback_data=f"renew_request_{plan.id}")])
    return button_rows(rows)


def expiry_reminder(
    subscription: Subscription,
    checkpoint: ReminderCheckpoint,
    plans: Sequence[Plan],
    tz: Optional[tzinfo] = None,
) -> OutboundMessage:
    return OutboundMessage(
        text=(
            "⏰ *Subscription Reminder*\n\n"
            f"Your subscription expires in *{_CHECKPOINT_LABELS[checkpoint]}*!\n"
            f"📅 Expiry date: *{format_date(subscription.expiry_date, tz)}*\n\n"
            "Tap a button below to renew:"
        ),
        buttons=renewal_buttons(plans),
    )


def grace_started(
    subscription: Subscription,
    grace_days: int,
    plans: Sequence[Plan],
    tz: Optional[tzinfo] = None,
) -> OutboundMessage:
    return OutboundMessage(
        text=(
            "❌ *Subscription Expired*\n\n"
            f"Your subscription expired on *{format_date(subscription.expiry_date, tz)}*.\n\n"
            f"⏳ You have a {grace_days}-day grace period. Renew now to keep your access!"
        ),
        buttons=renewal_buttons(plans),
    )


def grace_reminder(days_left: int, plans: Sequence[Plan]) -> OutboundMessage:
    return OutboundMessage(
        text=(
            "⚠️ *Grace Period Reminder*\n\n"
            f"Your subscription has expired. You have {days_left} days left before removal."
        ),
        buttons=renewal_buttons(plans),
    )


def final_warning(plans: Sequence[Plan]) -> OutboundMessage:
    return OutboundMessage(
        text=(
            "🔴 *Final Warning!*\n\n"
            "You will be removed from the Premium Group in *1 day* if you don't renew.\n\n"
            "Renew now to keep access!"
        ),
        buttons=renewal_buttons(plans),
    )


def access_removed() -> OutboundMessage:
    return OutboundMessage(
        text=(
            "🚫 *Access Removed*\n\n"
            "Your grace period has ended. You have been removed from the Premium Group.\n\n"
            "Request a new subscription using /start."
        )
    )


def rejoin_invite(invite_link: str, ttl_seconds: int) -> OutboundMessage:
    minutes = max(1, ttl_seconds // 60)
    return OutboundMessage(
        text=(
            "🔗 *Rejoining Instructions*\n\n"
            "You have an active subscription but aren't in the group.\n"
            f"Here's a new invite link:\n\n{invite_link}\n\n"
            f"⚠️ This link expires in {minutes} minutes and is single-use."
        )
    )


def referral_bonus(referred: User, bonus_days: int) -> OutboundMessage:
    name = referred.name or str(referred.telegram_id)
    return OutboundMessage(
        text=(
            "🎁 *Referral Bonus!*\n\n"
            f"Your referral *{name}* just subscribed!\n"
            f"+{bonus_days} bonus days added to your subscription. 🎉"
        )
    )


def access_approved(
    subscription: Subscription,
    plan: Plan,
    invite_link: Optional[str],
    ttl_seconds: int,
    tz: Optional[tzinfo] = None,
) -> OutboundMessage:
    text = (
        "🎉 *Access Approved!*\n\n"
        f"📋 Plan: *{plan.name}*\n"
        f"📅 Valid for: *{plan.duration_days} days*\n"
        f"⏰ Expires on: *{format_date(subscription.expiry_date, tz)}*\n\n"
    )
    if invite_link:
        text += (
            f"🔗 *Join the Premium Group:*\n{invite_link}\n\n"
            f"⚠️ This link is *single-use* and expires in *{max(1, ttl_seconds // 60)} minutes*.\n\n"
        )
    text += "Thank you for joining! 🙏\n\n📌 Do not block this bot, you need it for subscription updates."
    return OutboundMessage(text=text)


def access_renewed(subscription: Subscription, plan: Plan, tz: Optional[tzinfo] = None) -> OutboundMessage:
    return OutboundMessage(
        text=(
            "🎉 *Subscription Renewed!*\n\n"
            f"📋 Plan: *{plan.name}*\n"
            f"➕ Extended by: *{plan.duration_days} days*\n"
            f"📅 New Expiry: *{format_date(subscription.expiry_date, tz)}*\n\n"
            "You remain in the Premium Group. No action needed.\n\n"
            "Thank you for renewing! 🙏"
        )
    )


def request_rejected() -> OutboundMessage:
    return OutboundMessage(
        text=(
            "❌ *Request Not Approved*\n\n"
            "Your access request was reviewed but could not be approved at this time.\n\n"
            "You can submit a new request from the main menu."
        )
    )


def reengagement(user: User) -> OutboundMessage:
    return OutboundMessage(
        text=(
            f"👋 *We miss you, {user.name or 'there'}!*\n\n"
            "It's been a while since we've seen you. We have a special offer waiting for you!\n\n"
            "Tap below to see what's available:"
        ),
        buttons=button_rows(
            [
                [Button(text="🎁 View Special Offers", callback_data="view_offers")],
                [Button(text="🌟 Request Access", callback_data="request_access")],
            ]
        ),
    )
