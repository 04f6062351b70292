import io
import json
from urllib import error as urllib_error

import pytest

from accessbot.app.delivery.gateway import Button, DeliveryResult, OutboundMessage
from accessbot.app.delivery.telegram import TelegramBotClient
from accessbot.app.errors import MembershipProviderError


class _Response:
    def __init__(self, payload):
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class FakeOpener:
    """Stands in for ``urlopen``; replies are queued per Bot API method."""

    def __init__(self):
        self.requests = []
        self.replies = {}

    def reply(self, method, result=None, *, http_error=None, description="error"):
        self.replies[method] = (result, http_error, description)

    def __call__(self, req, timeout=None):
        method = req.full_url.rsplit("/", 1)[-1]
        self.requests.append((method, json.loads(req.data.decode("utf-8"))))
        result, http_error, description = self.replies.get(method, (True, None, ""))
        if http_error is not None:
            body = json.dumps({"ok": False, "error_code": http_error, "description": description})
            raise urllib_error.HTTPError(req.full_url, http_error, description, {}, io.BytesIO(body.encode("utf-8")))
        return _Response({"ok": True, "result": result})

    def payload_for(self, method):
        return next(payload for name, payload in self.requests if name == method)


@pytest.fixture
def opener():
    return FakeOpener()


@pytest.fixture
def client(opener):
    return TelegramBotClient("123:abc", api_base="http://bot.test/", opener=opener)


def test_deliver_sends_markdown_with_buttons(client, opener):
    message = OutboundMessage(text="*hi*", buttons=((Button(text="Renew", callback_data="renew"),),))

    assert client.deliver(5, message) is DeliveryResult.DELIVERED
    payload = opener.payload_for("sendMessage")
    assert payload["chat_id"] == 5
    assert payload["parse_mode"] == "Markdown"
    assert payload["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == "renew"


def test_forbidden_marks_recipient_unreachable(client, opener):
    opener.reply("sendMessage", http_error=403, description="Forbidden: bot was blocked by the user")

    assert client.deliver(5, OutboundMessage(text="hi")) is DeliveryResult.UNREACHABLE


def test_other_errors_are_transient(client, opener):
    opener.reply("sendMessage", http_error=429, description="Too Many Requests")

    assert client.deliver(5, OutboundMessage(text="hi")) is DeliveryResult.TRANSIENT_ERROR


@pytest.mark.parametrize(
    "status, expected",
    [("member", True), ("administrator", True), ("creator", True), ("left", False), ("kicked", False)],
)
def test_membership_status_mapping(client, opener, status, expected):
    opener.reply("getChatMember", {"status": status})

    assert client.is_member(-100, 7) is expected


def test_unknown_participant_is_not_a_member(client, opener):
    opener.reply("getChatMember", http_error=400, description="Bad Request: user not found")

    assert client.is_member(-100, 7) is False


def test_membership_outage_raises(client, opener):
    opener.reply("getChatMember", http_error=502, description="Bad Gateway")

    with pytest.raises(MembershipProviderError):
        client.is_member(-100, 7)


def test_invite_links_are_single_use(client, opener):
    opener.reply("createChatInviteLink", {"invite_link": "https://t.me/+abc"})

    assert client.create_single_use_invite(-100, 7, 600) == "https://t.me/+abc"
    payload = opener.payload_for("createChatInviteLink")
    assert payload["member_limit"] == 1
    assert payload["name"] == "User_7"


def test_remove_member_bans_then_lifts_ban(client, opener):
    assert client.remove_member(-100, 7) is True
    assert [method for method, _ in opener.requests] == ["banChatMember", "unbanChatMember"]


def test_remove_member_failure_raises(client, opener):
    opener.reply("banChatMember", http_error=400, description="Bad Request: not enough rights")

    with pytest.raises(MembershipProviderError):
        client.remove_member(-100, 7)
