"""Bot configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Dict, FrozenSet, Mapping, Optional
import math
import os

from .app.errors import ConfigurationError
from .app.timeutils import resolve_timezone

DEFAULT_SCHEDULE: Dict[str, time] = {
    "reminders": time(8, 0),
    "grace": time(9, 0),
    "inactivity": time(10, 0),
    "reconcile": time(11, 0),
    "summary": time(23, 59),
    "offers": time(0, 5),
}


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings passed straight to :func:`psycopg2.connect`."""

    host: str = "127.0.0.1"
    port: int = 5432
    dbname: str = "accessbot"
    user: str = "accessbot"
    password: str = "accessbot"
    connect_timeout: int = 5

    def as_dict(self) -> Dict[str, object]:
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }


@dataclass(frozen=True)
class BotConfig:
    """Configuration for the lifecycle engine and its Telegram adapter."""

    bot_token: str
    premium_group_id: int
    log_channel_id: Optional[int]
    super_admin_ids: FrozenSet[int]
    grace_period_days: int = 3
    bonus_referral_days: int = 3
    invite_ttl_seconds: int = 600
    broadcast_delay_seconds: float = 0.05
    inactivity_days: int = 30
    expired_reengage_days: int = 7
    timezone: str = "UTC"
    schedule: Dict[str, time] = field(default_factory=lambda: dict(DEFAULT_SCHEDULE))
    telegram_api_base: str = "https://api.telegram.org"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    log_level: str = "INFO"
    scheduler_enabled: bool = True

    def validate_required(self) -> None:
        """Raise :class:`ConfigurationError` when a key needed at runtime is missing."""

        missing = []
        if not self.bot_token:
            missing.append("BOT_TOKEN")
        if not self.premium_group_id:
            missing.append("PREMIUM_GROUP_ID")
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int, name: str = "value") -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float, name: str = "value") -> float:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def _to_time(value: Optional[str], *, default: time, name: str = "value") -> time:
    """Parse ``HH:MM`` into a :class:`datetime.time`."""

    if value is None or value.strip() == "":
        return default
    try:
        hour_text, minute_text = value.strip().split(":", 1)
        return time(int(hour_text), int(minute_text))
    except ValueError as exc:
        raise ConfigurationError(f"{name} must look like HH:MM, got {value!r}") from exc


def _to_id_list(value: Optional[str], *, name: str = "value") -> FrozenSet[int]:
    if not value:
        return frozenset()
    try:
        return frozenset(int(part) for part in value.split(",") if part.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a comma-separated list of ids, got {value!r}") from exc


def _parse_connect_timeout(raw_value: Optional[str]) -> int:
    timeout = _to_float(raw_value, default=5.0, name="DB_CONNECT_TIMEOUT")
    if timeout < 0:
        raise ConfigurationError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_bot_config(env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Load :class:`BotConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    grace_period_days = _to_int(env_mapping.get("GRACE_PERIOD_DAYS"), default=3, name="GRACE_PERIOD_DAYS")
    if grace_period_days < 1:
        raise ConfigurationError("GRACE_PERIOD_DAYS must be at least 1")

    timezone_name = (env_mapping.get("BOT_TIMEZONE") or "UTC").strip() or "UTC"
    try:
        resolve_timezone(timezone_name)
    except Exception as exc:
        raise ConfigurationError(f"Unknown BOT_TIMEZONE {timezone_name!r}") from exc

    schedule = {
        job: _to_time(env_mapping.get(f"SCHEDULE_{job.upper()}"), default=default, name=f"SCHEDULE_{job.upper()}")
        for job, default in DEFAULT_SCHEDULE.items()
    }

    database = DatabaseConfig(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432, name="DB_PORT"),
        dbname=env_mapping.get("DB_NAME", "accessbot"),
        user=env_mapping.get("DB_USER", "accessbot"),
        password=env_mapping.get("DB_PASSWORD", "accessbot"),
        connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT")),
    )

    return BotConfig(
        bot_token=(env_mapping.get("BOT_TOKEN") or "").strip(),
        premium_group_id=_to_int(env_mapping.get("PREMIUM_GROUP_ID"), default=0, name="PREMIUM_GROUP_ID"),
        log_channel_id=_to_int(env_mapping.get("LOG_CHANNEL_ID"), default=0, name="LOG_CHANNEL_ID") or None,
        super_admin_ids=_to_id_list(env_mapping.get("SUPER_ADMIN_IDS"), name="SUPER_ADMIN_IDS"),
        grace_period_days=grace_period_days,
        bonus_referral_days=max(
            0, _to_int(env_mapping.get("BONUS_REFERRAL_DAYS"), default=3, name="BONUS_REFERRAL_DAYS")
        ),
        invite_ttl_seconds=max(
            1, _to_int(env_mapping.get("INVITE_TTL_SECONDS"), default=600, name="INVITE_TTL_SECONDS")
        ),
        broadcast_delay_seconds=max(
            0.0,
            _to_float(
                env_mapping.get("BROADCAST_DELAY_SECONDS"), default=0.05, name="BROADCAST_DELAY_SECONDS"
            ),
        ),
        inactivity_days=max(1, _to_int(env_mapping.get("INACTIVITY_DAYS"), default=30, name="INACTIVITY_DAYS")),
        expired_reengage_days=max(
            1, _to_int(env_mapping.get("EXPIRED_REENGAGE_DAYS"), default=7, name="EXPIRED_REENGAGE_DAYS")
        ),
        timezone=timezone_name,
        schedule=schedule,
        telegram_api_base=(env_mapping.get("TELEGRAM_API_BASE") or "https://api.telegram.org").rstrip("/"),
        database=database,
        log_level=(env_mapping.get("LOG_LEVEL") or "INFO").strip().upper(),
        scheduler_enabled=_to_bool(env_mapping.get("SCHEDULER_ENABLED"), default=True),
    )


__all__ = ["BotConfig", "DatabaseConfig", "DEFAULT_SCHEDULE", "load_bot_config"]
