"""Daily sweeps that drive subscriptions through their lifecycle."""

from .grace import GraceAction, GraceActionKind, GracePeriodEngine, evaluate_grace, plan_grace_actions
from .inactivity import InactiveUserDetector
from .offers import OfferExpirySweep
from .reconciler import MembershipReconciler, plan_reconciliation
from .reminders import ReminderAction, ReminderEngine, plan_reminders
from .results import JobSummary
from .summary import DailySummaryJob, render_daily_summary

__all__ = [
    "DailySummaryJob",
    "GraceAction",
    "GraceActionKind",
    "GracePeriodEngine",
    "InactiveUserDetector",
    "JobSummary",
    "MembershipReconciler",
    "OfferExpirySweep",
    "ReminderAction",
    "ReminderEngine",
    "evaluate_grace",
    "plan_grace_actions",
    "plan_reconciliation",
    "plan_reminders",
    "render_daily_summary",
]
