import json

import pytest

import app as bot
from clockin_bot.commands import Reply
from clockin_bot.models import RequestStatus
from clockin_bot.notify import APPROVE_ACTION, DENY_ACTION


class FakeBoltApp:
    """Captures the handlers ``register`` attaches."""

    def __init__(self):
        self.commands, self.actions, self.views, self.events = {}, {}, {}, {}

    @staticmethod
    def _into(table, key):
        def deco(fn):
            table[key] = fn
            return fn
        return deco

    def command(self, name):
        return self._into(self.commands, name)

    def action(self, action_id):
        return self._into(self.actions, action_id)

    def view(self, callback_id):
        return self._into(self.views, callback_id)

    def event(self, name):
        return self._into(self.events, name)


class Calls:
    def __init__(self):
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append(kwargs or (args[0] if args else None))


class FakeClient:
    def __init__(self):
        self.opened = []
        self.posted = []

    def views_open(self, trigger_id, view):
        self.opened.append((trigger_id, view))

    def chat_postMessage(self, **kwargs):
        self.posted.append(kwargs)


class FakeWebhook:
    sent = []

    def __init__(self, url):
        self.url = url

    def send(self, **kwargs):
        FakeWebhook.sent.append((self.url, kwargs))


@pytest.fixture
def bolt(commands, directory):
    FakeWebhook.sent = []
    fake = FakeBoltApp()
    bot.register(fake, commands, directory, webhook=FakeWebhook)
    return fake


def run_slash(bolt, command, user_id, text=""):
    ack, respond = Calls(), Calls()
    bolt.commands[command](ack=ack, body={"user_id": user_id, "text": text}, respond=respond)
    assert len(ack.calls) == 1
    return respond.calls[0]


def test_every_command_is_registered(bolt):
    assert set(bolt.commands) == set(bot.SLASH_COMMANDS)
    for name in ("/clockin", "/clockout", "/viewattendance", "/overtime", "/editattendance", "/help"):
        assert name in bolt.commands
    assert set(bolt.actions) == {APPROVE_ACTION, DENY_ACTION}
    assert set(bolt.views) == {bot.DENY_VIEW}


def test_slash_command_replies_ephemeral(bolt):
    sent = run_slash(bolt, "/clockin", "U100", "7:30 AM")
    assert sent["response_type"] == "ephemeral"
    assert "7:30 AM" in sent["text"]


def test_viewattendance_replies_in_channel(bolt):
    sent = run_slash(bolt, "/viewattendance", "U100")
    assert sent["response_type"] == "in_channel"


def test_reply_kwargs_carries_blocks():
    kwargs = bot.reply_kwargs(Reply("x", blocks=[{"type": "divider"}]))
    assert kwargs == {"text": "x", "response_type": "ephemeral", "blocks": [{"type": "divider"}]}


def test_approve_button_replaces_message(bolt, commands, request_store):
    commands.dispatch("overtime", commands.directory.lookup("U100"), "05/29/2024 2 reporting")
    ack, respond = Calls(), Calls()
    body = {"user": {"id": "UAPPR"}, "actions": [{"value": "req1"}]}
    bolt.actions[APPROVE_ACTION](ack=ack, body=body, respond=respond)

    assert respond.calls[0]["replace_original"] is True
    assert "Approved" in respond.calls[0]["text"]
    assert request_store.get("req1").status == RequestStatus.APPROVED


def test_approve_button_keeps_message_on_error(bolt):
    respond = Calls()
    body = {"user": {"id": "UAPPR"}, "actions": [{"value": "missing"}]}
    bolt.actions[APPROVE_ACTION](ack=Calls(), body=body, respond=respond)
    assert respond.calls[0]["replace_original"] is False


def test_deny_button_opens_modal(bolt):
    client = FakeClient()
    body = {
        "user": {"id": "UAPPR"},
        "actions": [{"value": "req1"}],
        "trigger_id": "T1",
        "response_url": "https://hooks.example/r1",
    }
    bolt.actions[DENY_ACTION](ack=Calls(), body=body, respond=Calls(), client=client)
    trigger, view = client.opened[0]
    assert trigger == "T1"
    assert view["callback_id"] == bot.DENY_VIEW
    assert json.loads(view["private_metadata"]) == {"request_id": "req1", "response_url": "https://hooks.example/r1"}


def test_deny_button_refuses_non_approvers(bolt):
    client, respond = FakeClient(), Calls()
    body = {"user": {"id": "U200"}, "actions": [{"value": "req1"}], "trigger_id": "T1"}
    bolt.actions[DENY_ACTION](ack=Calls(), body=body, respond=respond, client=client)
    assert client.opened == []
    assert "Only approvers" in respond.calls[0]["text"]


def submitted_view(request_id, response_url="", reason="no budget"):
    view = bot.build_deny_view(request_id, response_url)
    view["state"] = {"values": {bot.DENY_BLOCK: {bot.DENY_INPUT: {"value": reason}}}}
    return view


def test_deny_submit_updates_original_message(bolt, commands, request_store):
    commands.dispatch("overtime", commands.directory.lookup("U100"), "05/29/2024 2")
    client = FakeClient()
    view = submitted_view("req1", "https://hooks.example/r1")
    bolt.views[bot.DENY_VIEW](ack=Calls(), body={"user": {"id": "UAPPR"}}, view=view, client=client)

    stored = request_store.get("req1")
    assert (stored.status, stored.deny_reason) == (RequestStatus.DENIED, "no budget")
    url, kwargs = FakeWebhook.sent[0]
    assert url == "https://hooks.example/r1"
    assert kwargs["replace_original"] is True
    assert "Denied" in kwargs["text"]
    assert client.posted == []


def test_deny_submit_without_response_url_sends_dm(bolt, commands):
    commands.dispatch("overtime", commands.directory.lookup("U100"), "05/29/2024 2")
    client = FakeClient()
    bolt.views[bot.DENY_VIEW](ack=Calls(), body={"user": {"id": "UAPPR"}}, view=submitted_view("req1"), client=client)
    assert FakeWebhook.sent == []
    assert client.posted[0]["channel"] == "UAPPR"


def test_deny_reason_is_optional():
    assert bot.deny_reason_from(bot.build_deny_view("req1")) == ""


def test_mention_points_to_help(bolt):
    say = Calls()
    bolt.events["app_mention"](body={}, say=say)
    assert "/help" in say.calls[0]
