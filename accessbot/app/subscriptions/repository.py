"""Persistence layer for users, subscriptions, and audit events."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .models import (
    AccessRequest,
    AuditEvent,
    DailySummary,
    GraceLatch,
    GraceNotifications,
    Plan,
    ReminderCheckpoint,
    ReminderFlags,
    RequestStatus,
    Subscription,
    SubscriptionStatus,
    User,
    UserRole,
    UserStatus,
)

ConnectionFactory = Callable[[], PgConnection]

# Column names are interpolated into SQL, so only these whitelisted values may be used.
_REMINDER_COLUMNS = {
    ReminderCheckpoint.DAY7: "reminder_day7",
    ReminderCheckpoint.DAY3: "reminder_day3",
    ReminderCheckpoint.DAY1: "reminder_day1",
    ReminderCheckpoint.DAY0: "reminder_day0",
}
_GRACE_COLUMNS = {
    GraceLatch.DAY1: "grace_day1",
    GraceLatch.DAY2: "grace_day2",
}


@contextmanager
def managed_connection(
    conn: Optional[PgConnection] = None,
    conn_factory: Optional[ConnectionFactory] = None,
):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = (conn_factory or get_conn)()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_user(row: dict) -> User:
    return User(
        telegram_id=int(row["telegram_id"]),
        name=row.get("name") or "",
        username=row.get("username"),
        role=UserRole(row["role"]),
        status=UserStatus(row["status"]),
        is_blocked=bool(row["is_blocked"]),
        referral_code=row["referral_code"],
        referred_by=row.get("referred_by"),
        referral_bonus_applied=bool(row["referral_bonus_applied"]),
        last_interaction=row["last_interaction"],
        grace_days_remaining=row.get("grace_days_remaining"),
        awaiting_support=bool(row.get("awaiting_support")),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_plan(row: dict) -> Plan:
    return Plan(
        id=int(row["id"]),
        name=row["name"],
        duration_days=int(row["duration_days"]),
        price=row["price"],
        currency=row["currency"],
        is_active=bool(row["is_active"]),
    )


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        plan_id=row.get("plan_id"),
        plan_name=row["plan_name"],
        duration_days=int(row["duration_days"]),
        start_date=row["start_date"],
        expiry_date=row["expiry_date"],
        status=SubscriptionStatus(row["status"]),
        reminder_flags=ReminderFlags(
            day7=row["reminder_day7"],
            day3=row["reminder_day3"],
            day1=row["reminder_day1"],
            day0=row["reminder_day0"],
        ),
        grace_days_used=int(row["grace_days_used"]),
        grace_notifications=GraceNotifications(day1=row["grace_day1"], day2=row["grace_day2"]),
        is_renewal=bool(row["is_renewal"]),
        approved_by=row.get("approved_by"),
        invite_link=row.get("invite_link"),
        version=int(row["version"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_request(row: dict) -> AccessRequest:
    return AccessRequest(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        status=RequestStatus(row["status"]),
        requested_at=row["requested_at"],
        action_at=row.get("action_at"),
        action_by=row.get("action_by"),
        plan_id=row.get("plan_id"),
    )


def _row_to_summary(row: dict) -> DailySummary:
    return DailySummary(
        day=row["day"],
        new_users=int(row["new_users"]),
        requests_received=int(row["requests_received"]),
        approvals=int(row["approvals"]),
        renewals=int(row["renewals"]),
        expired_today=int(row["expired_today"]),
    )


def _status_values(statuses: Iterable[Any]) -> List[str]:
    return [status.value for status in statuses]


class _PostgresStore:
    def __init__(
        self,
        *,
        conn: Optional[PgConnection] = None,
        conn_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self._conn = conn
        self._conn_factory = conn_factory

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn, self._conn_factory) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()


class PostgresSubscriptionRepository(_PostgresStore):
    """Concrete repository persisting the lifecycle models in PostgreSQL.

    Mutations are single conditional ``UPDATE ... RETURNING`` statements so a
    concurrent writer that already moved the row makes the call a no-op.
    """

    # Users
    def get_user(self, telegram_id: int) -> Optional[User]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM users WHERE telegram_id = %s LIMIT 1", (telegram_id,))
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM users WHERE referral_code = %s LIMIT 1",
                (referral_code.strip().upper(),),
            )
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def save_user(self, user: User) -> User:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO users (
                    telegram_id,
                    name,
                    username,
                    role,
                    status,
                    is_blocked,
                    referral_code,
                    referred_by,
                    referral_bonus_applied,
                    last_interaction,
                    grace_days_remaining,
                    awaiting_support
                )
                VALUES (%(telegram_id)s, %(name)s, %(username)s, %(role)s, %(status)s,
                        %(is_blocked)s, %(referral_code)s, %(referred_by)s,
                        %(referral_bonus_applied)s, %(last_interaction)s,
                        %(grace_days_remaining)s, %(awaiting_support)s)
                ON CONFLICT (telegram_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    username = EXCLUDED.username,
                    role = EXCLUDED.role,
                    status = EXCLUDED.status,
                    is_blocked = EXCLUDED.is_blocked,
                    last_interaction = EXCLUDED.last_interaction,
                    grace_days_remaining = EXCLUDED.grace_days_remaining,
                    awaiting_support = EXCLUDED.awaiting_support,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "telegram_id": user.telegram_id,
                    "name": user.name,
                    "username": user.username,
                    "role": user.role.value,
                    "status": user.status.value,
                    "is_blocked": user.is_blocked,
                    "referral_code": user.referral_code,
                    "referred_by": user.referred_by,
                    "referral_bonus_applied": user.referral_bonus_applied,
                    "last_interaction": user.last_interaction,
                    "grace_days_remaining": user.grace_days_remaining,
                    "awaiting_support": user.awaiting_support,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist user")
            return _row_to_user(row)

    def set_user_referrer(self, telegram_id: int, referrer_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET referred_by = %s, updated_at = NOW()
                WHERE telegram_id = %s AND referred_by IS NULL AND telegram_id <> %s
                """,
                (referrer_id, telegram_id, referrer_id),
            )
            return cursor.rowcount > 0

    def update_user_status(
        self,
        telegram_id: int,
        *,
        status: UserStatus,
        grace_days_remaining: Optional[int],
    ) -> Optional[User]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET status = %s, grace_days_remaining = %s, updated_at = NOW()
                WHERE telegram_id = %s
                RETURNING *
                """,
                (status.value, grace_days_remaining, telegram_id),
            )
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def mark_user_blocked(self, telegram_id: int) -> Optional[User]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET is_blocked = TRUE, status = %s, updated_at = NOW()
                WHERE telegram_id = %s
                RETURNING *
                """,
                (UserStatus.BLOCKED.value, telegram_id),
            )
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def mark_referral_bonus_applied(self, telegram_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET referral_bonus_applied = TRUE, updated_at = NOW()
                WHERE telegram_id = %s AND referral_bonus_applied = FALSE
                """,
                (telegram_id,),
            )
            return cursor.rowcount > 0

    def list_users(
        self,
        *,
        role: UserRole,
        statuses: Optional[Iterable[UserStatus]] = None,
        created_after: Optional[datetime] = None,
        include_blocked: bool = False,
    ) -> Sequence[User]:
        clauses = ["role = %s"]
        params: List[Any] = [role.value]
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append(_status_values(statuses))
        if created_after is not None:
            clauses.append("created_at >= %s")
            params.append(created_after)
        if not include_blocked:
            clauses.append("is_blocked = FALSE")
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM users WHERE {' AND '.join(clauses)} ORDER BY telegram_id",
                params,
            )
            rows = cursor.fetchall() or []
            return [_row_to_user(row) for row in rows]

    def list_inactive_users(self, *, inactive_before: datetime, expired_before: datetime) -> Sequence[User]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM users
                WHERE role = %s
                  AND is_blocked = FALSE
                  AND (
                        (status = %s AND last_interaction < %s)
                     OR (status = %s AND updated_at < %s)
                  )
                ORDER BY telegram_id
                """,
                (
                    UserRole.USER.value,
                    UserStatus.ACTIVE.value,
                    inactive_before,
                    UserStatus.EXPIRED.value,
                    expired_before,
                ),
            )
            rows = cursor.fetchall() or []
            return [_row_to_user(row) for row in rows]

    # Plans and requests
    def get_plan(self, plan_id: int) -> Optional[Plan]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM plans WHERE id = %s LIMIT 1", (plan_id,))
            row = cursor.fetchone()
            return _row_to_plan(row) if row else None

    def list_active_plans(self) -> Sequence[Plan]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM plans WHERE is_active = TRUE ORDER BY duration_days, id")
            rows = cursor.fetchall() or []
            return [_row_to_plan(row) for row in rows]

    def get_request(self, request_id: int) -> Optional[AccessRequest]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM access_requests WHERE id = %s LIMIT 1", (request_id,))
            row = cursor.fetchone()
            return _row_to_request(row) if row else None

    def resolve_request(
        self,
        request_id: int,
        *,
        status: RequestStatus,
        action_by: int,
        action_at: datetime,
        plan_id: Optional[int] = None,
    ) -> Optional[AccessRequest]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE access_requests
                SET status = %s, action_by = %s, action_at = %s, plan_id = COALESCE(%s, plan_id)
                WHERE id = %s AND status = %s
                RETURNING *
                """,
                (status.value, action_by, action_at, plan_id, request_id, RequestStatus.PENDING.value),
            )
            row = cursor.fetchone()
            return _row_to_request(row) if row else None

    def reopen_request(self, request_id: int, *, action_by: int) -> Optional[AccessRequest]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE access_requests
                SET status = %s, action_by = NULL, action_at = NULL
                WHERE id = %s AND status = %s AND action_by = %s
                RETURNING *
                """,
                (RequestStatus.PENDING.value, request_id, RequestStatus.APPROVED.value, action_by),
            )
            row = cursor.fetchone()
            return _row_to_request(row) if row else None

    # Subscriptions
    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscriptions WHERE id = %s LIMIT 1", (subscription_id,))
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def get_open_subscription(self, user_id: int) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE user_id = %s AND status = ANY(%s)
                ORDER BY expiry_date DESC
                LIMIT 1
                """,
                (user_id, [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.GRACE.value]),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def find_active_subscription(self, user_id: int, *, now: datetime) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE user_id = %s AND status = %s AND expiry_date > %s
                ORDER BY expiry_date DESC
                LIMIT 1
                """,
                (user_id, SubscriptionStatus.ACTIVE.value, now),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def create_subscription(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO subscriptions (
                    user_id,
                    plan_id,
                    plan_name,
                    duration_days,
                    start_date,
                    expiry_date,
                    status,
                    is_renewal,
                    approved_by,
                    invite_link
                )
                VALUES (%(user_id)s, %(plan_id)s, %(plan_name)s, %(duration_days)s,
                        %(start_date)s, %(expiry_date)s, %(status)s, %(is_renewal)s,
                        %(approved_by)s, %(invite_link)s)
                RETURNING *
                """,
                {
                    "user_id": subscription.user_id,
                    "plan_id": subscription.plan_id,
                    "plan_name": subscription.plan_name,
                    "duration_days": subscription.duration_days,
                    "start_date": subscription.start_date,
                    "expiry_date": subscription.expiry_date,
                    "status": subscription.status.value,
                    "is_renewal": subscription.is_renewal,
                    "approved_by": subscription.approved_by,
                    "invite_link": subscription.invite_link,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def count_subscriptions(self, user_id: int, statuses: Iterable[SubscriptionStatus]) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS total FROM subscriptions WHERE user_id = %s AND status = ANY(%s)",
                (user_id, _status_values(statuses)),
            )
            row = cursor.fetchone()
            return int(row["total"]) if row else 0

    def list_due_for_reminder(
        self,
        checkpoint: ReminderCheckpoint,
        *,
        window_start: datetime,
        window_end: datetime,
    ) -> Sequence[Subscription]:
        column = _REMINDER_COLUMNS[checkpoint]
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM subscriptions
                WHERE status = %s
                  AND expiry_date >= %s
                  AND expiry_date < %s
                  AND {column} = FALSE
                ORDER BY expiry_date, id
                """,
                (SubscriptionStatus.ACTIVE.value, window_start, window_end),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def list_active_expired_before(self, cutoff: datetime) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE status = %s AND expiry_date < %s
                ORDER BY expiry_date, id
                """,
                (SubscriptionStatus.ACTIVE.value, cutoff),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def list_active_valid_at(self, now: datetime) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE status = %s AND expiry_date > %s
                ORDER BY expiry_date, id
                """,
                (SubscriptionStatus.ACTIVE.value, now),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def list_by_status(self, statuses: Iterable[SubscriptionStatus]) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE status = ANY(%s)
                ORDER BY updated_at DESC, id DESC
                """,
                (_status_values(statuses),),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def set_reminder_flag(self, subscription_id: int, checkpoint: ReminderCheckpoint) -> bool:
        column = _REMINDER_COLUMNS[checkpoint]
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE subscriptions
                SET {column} = TRUE, updated_at = NOW()
                WHERE id = %s AND {column} = FALSE
                """,
                (subscription_id,),
            )
            return cursor.rowcount > 0

    def set_grace_notification(self, subscription_id: int, latch: GraceLatch) -> bool:
        column = _GRACE_COLUMNS[latch]
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE subscriptions
                SET {column} = TRUE, updated_at = NOW()
                WHERE id = %s AND status = %s AND {column} = FALSE
                """,
                (subscription_id, SubscriptionStatus.GRACE.value),
            )
            return cursor.rowcount > 0

    def transition_status(
        self,
        subscription_id: int,
        *,
        expected: SubscriptionStatus,
        new_status: SubscriptionStatus,
        grace_days_used: int,
    ) -> Optional[Subscription]:
        entering_grace = new_status == SubscriptionStatus.GRACE
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET status = %(new_status)s,
                    grace_days_used = %(grace_days_used)s,
                    grace_day1 = CASE WHEN %(entering_grace)s THEN FALSE ELSE grace_day1 END,
                    grace_day2 = CASE WHEN %(entering_grace)s THEN FALSE ELSE grace_day2 END,
                    version = version + 1,
                    updated_at = NOW()
                WHERE id = %(id)s AND status = %(expected)s
                RETURNING *
                """,
                {
                    "new_status": new_status.value,
                    "grace_days_used": grace_days_used,
                    "entering_grace": entering_grace,
                    "id": subscription_id,
                    "expected": expected.value,
                },
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def renew_subscription(
        self,
        subscription_id: int,
        *,
        expected_version: int,
        plan: Plan,
        expiry_date: datetime,
        approved_by: Optional[int],
    ) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET plan_id = %(plan_id)s,
                    plan_name = %(plan_name)s,
                    duration_days = %(duration_days)s,
                    expiry_date = %(expiry_date)s,
                    status = %(active)s,
                    reminder_day7 = FALSE,
                    reminder_day3 = FALSE,
                    reminder_day1 = FALSE,
                    reminder_day0 = FALSE,
                    grace_days_used = 0,
                    grace_day1 = FALSE,
                    grace_day2 = FALSE,
                    is_renewal = TRUE,
                    approved_by = %(approved_by)s,
                    version = version + 1,
                    updated_at = NOW()
                WHERE id = %(id)s
                  AND version = %(expected_version)s
                  AND status = ANY(%(open_statuses)s)
                RETURNING *
                """,
                {
                    "plan_id": plan.id,
                    "plan_name": plan.name,
                    "duration_days": plan.duration_days,
                    "expiry_date": expiry_date,
                    "active": SubscriptionStatus.ACTIVE.value,
                    "approved_by": approved_by,
                    "id": subscription_id,
                    "expected_version": expected_version,
                    "open_statuses": [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.GRACE.value],
                },
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def extend_expiry(
        self,
        subscription_id: int,
        *,
        expected_version: int,
        expiry_date: datetime,
    ) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET expiry_date = %s, version = version + 1, updated_at = NOW()
                WHERE id = %s AND version = %s AND status = %s
                RETURNING *
                """,
                (expiry_date, subscription_id, expected_version, SubscriptionStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def record_invite_link(self, subscription_id: int, invite_link: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE subscriptions SET invite_link = %s, updated_at = NOW() WHERE id = %s",
                (invite_link, subscription_id),
            )

    # Offers and reporting
    def deactivate_expired_offers(self, now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE offers SET is_active = FALSE WHERE is_active = TRUE AND valid_till < %s",
                (now,),
            )
            return cursor.rowcount

    def compute_daily_summary(self, day_start: datetime, day_end: datetime) -> DailySummary:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM users
                      WHERE created_at >= %(start)s AND created_at < %(end)s) AS new_users,
                    (SELECT COUNT(*) FROM access_requests
                      WHERE requested_at >= %(start)s AND requested_at < %(end)s) AS requests_received,
                    (SELECT COUNT(*) FROM access_requests
                      WHERE status = %(approved)s
                        AND action_at >= %(start)s AND action_at < %(end)s) AS approvals,
                    (SELECT COUNT(*) FROM subscriptions
                      WHERE is_renewal = TRUE
                        AND updated_at >= %(start)s AND updated_at < %(end)s) AS renewals,
                    (SELECT COUNT(*) FROM subscriptions
                      WHERE status = %(expired)s
                        AND updated_at >= %(start)s AND updated_at < %(end)s) AS expired_today
                """,
                {
                    "start": day_start,
                    "end": day_end,
                    "approved": RequestStatus.APPROVED.value,
                    "expired": SubscriptionStatus.EXPIRED.value,
                },
            )
            row = cursor.fetchone() or {}
            return DailySummary(
                day=day_start,
                new_users=int(row.get("new_users", 0)),
                requests_received=int(row.get("requests_received", 0)),
                approvals=int(row.get("approvals", 0)),
                renewals=int(row.get("renewals", 0)),
                expired_today=int(row.get("expired_today", 0)),
            )

    def save_daily_summary(self, summary: DailySummary) -> DailySummary:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO daily_summaries (
                    day,
                    new_users,
                    requests_received,
                    approvals,
                    renewals,
                    expired_today
                )
                VALUES (%(day)s, %(new_users)s, %(requests_received)s, %(approvals)s,
                        %(renewals)s, %(expired_today)s)
                ON CONFLICT (day) DO UPDATE SET
                    new_users = EXCLUDED.new_users,
                    requests_received = EXCLUDED.requests_received,
                    approvals = EXCLUDED.approvals,
                    renewals = EXCLUDED.renewals,
                    expired_today = EXCLUDED.expired_today,
                    updated_at = NOW()
                RETURNING *
                """,
                summary.model_dump(),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist daily summary")
            return _row_to_summary(row)


class PostgresAuditLog(_PostgresStore):
    """Append-only audit sink backed by the ``audit_events`` table."""

    def log(self, event: AuditEvent) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO audit_events (actor_id, action, target_user_id, details, occurred_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    event.actor_id,
                    event.action.value,
                    event.target_user_id,
                    psycopg2.extras.Json(event.details),
                    event.occurred_at,
                ),
            )
