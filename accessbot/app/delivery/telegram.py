"""Telegram Bot API adapter for message delivery and group membership."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional
from urllib import error as urllib_error, request as urllib_request

from ..errors import MembershipProviderError
from .gateway import DeliveryResult, OutboundMessage

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"
MEMBER_STATUSES = frozenset({"member", "administrator", "creator"})


class TelegramAPIError(Exception):
    """Raised when the Bot API rejects a call or cannot be reached."""

    def __init__(self, method: str, description: str, *, error_code: Optional[int] = None) -> None:
        super().__init__(f"{method}: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code

    @property
    def is_forbidden(self) -> bool:
        return self.error_code == 403


def _reply_markup(message: OutboundMessage) -> Optional[Dict[str, Any]]:
    if not message.buttons:
        return None
    return {
        "inline_keyboard": [
            [{"text": button.text, "callback_data": button.callback_data} for button in row]
            for row in message.buttons
        ]
    }


class TelegramBotClient:
    """Minimal JSON client for the Bot API methods the lifecycle engine needs.

    Implements both :class:`NotificationGateway` and :class:`MembershipProvider`.
    Every call is a single HTTPS request without retries.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 10.0,
        opener: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._base_url = f"{api_base.rstrip('/')}/bot{token}"
        self._timeout = timeout
        self._open = opener or urllib_request.urlopen

    def call(self, method: str, payload: Dict[str, Any]) -> Any:
        body = json.dumps(payload).encode("utf-8")
        req = urllib_request.Request(
            f"{self._base_url}/{method}",
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with self._open(req, timeout=self._timeout) as response:
                raw = response.read()
        except urllib_error.HTTPError as exc:
            raw = exc.read() or b""
            description = _describe(raw) or exc.reason
            raise TelegramAPIError(method, str(description), error_code=exc.code) from exc
        except (urllib_error.URLError, OSError) as exc:
            raise TelegramAPIError(method, str(exc)) from exc

        try:
            data = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TelegramAPIError(method, "invalid JSON response") from exc
        if not data.get("ok"):
            raise TelegramAPIError(
                method,
                str(data.get("description", "unknown error")),
                error_code=data.get("error_code"),
            )
        return data.get("result")

    # NotificationGateway
    def deliver(self, chat_id: int, message: OutboundMessage) -> DeliveryResult:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": message.text}
        if message.parse_mode:
            payload["parse_mode"] = message.parse_mode
        markup = _reply_markup(message)
        if markup:
            payload["reply_markup"] = markup
        try:
            self.call("sendMessage", payload)
        except TelegramAPIError as exc:
            if exc.is_forbidden:
                return DeliveryResult.UNREACHABLE
            logger.warning(
                "sendMessage failed",
                extra={"chat_id": chat_id, "error_code": exc.error_code, "error": exc.description},
            )
            return DeliveryResult.TRANSIENT_ERROR
        return DeliveryResult.DELIVERED

    # MembershipProvider
    def is_member(self, group_id: int, user_id: int) -> bool:
        try:
            member = self.call("getChatMember", {"chat_id": group_id, "user_id": user_id})
        except TelegramAPIError as exc:
            if exc.error_code == 400:
                # "user not found" / "participant not found"
                return False
            raise MembershipProviderError(str(exc)) from exc
        return (member or {}).get("status") in MEMBER_STATUSES

    def create_single_use_invite(self, group_id: int, user_id: int, ttl_seconds: int) -> Optional[str]:
        payload = {
            "chat_id": group_id,
            "name": f"User_{user_id}",
            "member_limit": 1,
            "expire_date": int(time.time()) + max(1, ttl_seconds),
        }
        try:
            invite = self.call("createChatInviteLink", payload)
        except TelegramAPIError as exc:
            raise MembershipProviderError(str(exc)) from exc
        return (invite or {}).get("invite_link")

    def remove_member(self, group_id: int, user_id: int) -> bool:
        try:
            result = self.call("banChatMember", {"chat_id": group_id, "user_id": user_id})
        except TelegramAPIError as exc:
            raise MembershipProviderError(str(exc)) from exc
        logger.info("User banned from group", extra={"user_id": user_id, "group_id": group_id})
        # Lift the ban so a later invite link still works after renewal.
        try:
            self.call("unbanChatMember", {"chat_id": group_id, "user_id": user_id, "only_if_banned": True})
        except TelegramAPIError as exc:
            logger.warning(
                "unbanChatMember failed",
                extra={"user_id": user_id, "group_id": group_id, "error": exc.description},
            )
        return bool(result)


def _describe(raw: bytes) -> Optional[str]:
    try:
        return json.loads(raw.decode("utf-8")).get("description")
    except (json.JSONDecodeError, UnicodeDecodeError, AttributeError):
        return None
