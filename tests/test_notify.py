import datetime as dt

import pytest
from slack_sdk.errors import SlackApiError

from clockin_bot.errors import UpstreamUnavailable
from clockin_bot.models import Request, RequestStatus, RequestType
from clockin_bot.notify import (
    APPROVE_ACTION,
    SlackNotifier,
    build_request_blocks,
    decision_text,
    is_transient_slack_error,
    slack_retrying,
)
from clockin_bot.retry import Retrying


class FakeChatClient:
    def __init__(self, fail=False, errors=None):
        self.fail = fail
        self.errors = errors or {}  # channel -> Slack error codes to raise, in order
        self.attempts = []
        self.posted = []

    def chat_postMessage(self, **kwargs):
        channel = kwargs["channel"]
        self.attempts.append(channel)
        if self.fail:
            raise slack_error("channel_not_found")
        pending = self.errors.get(channel)
        if pending:
            raise slack_error(pending.pop(0))
        self.posted.append(kwargs)


def slack_error(code):
    return SlackApiError(code, {"ok": False, "error": code})


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("clockin_bot.retry.time.sleep", lambda s: None)


def make_request(**kw):
    base = dict(request_id="r1", type=RequestType.OVERTIME, employee_key="U100", employee_name="alice",
                date=dt.date(2024, 5, 29), hours="2", reason="reporting")
    base.update(kw)
    return Request(**base)


def test_blocks_carry_request_id():
    blocks = build_request_blocks(make_request())
    assert "alice" in blocks[0]["text"]["text"]
    assert blocks[1]["elements"][0]["action_id"] == APPROVE_ACTION
    assert {e["value"] for e in blocks[1]["elements"]} == {"r1"}


def test_decision_text():
    approved = make_request(status=RequestStatus.APPROVED)
    assert decision_text(approved, True) == "✅ Your overtime request for 05/29/2024 (2h) was approved."
    assert "were not added" in decision_text(approved, False)
    denied = make_request(status=RequestStatus.DENIED, deny_reason="budget")
    assert decision_text(denied, False).endswith("Reason: budget")


def test_submitted_dms_every_approver():
    client = FakeChatClient()
    SlackNotifier(client).request_submitted(make_request(), ["UA", "", "UB"])
    assert [p["channel"] for p in client.posted] == ["UA", "UB"]
    assert client.posted[0]["blocks"][1]["type"] == "actions"


def test_submitted_without_approvers_only_logs(caplog):
    client = FakeChatClient()
    SlackNotifier(client).request_submitted(make_request(), [])
    assert client.posted == []
    assert "no approvers configured" in caplog.text


def test_decided_dms_requester():
    client = FakeChatClient()
    SlackNotifier(client).request_decided(make_request(status=RequestStatus.DENIED), False)
    assert client.posted[0]["channel"] == "U100"
    assert "denied" in client.posted[0]["text"]


def test_failures_surface_as_upstream_unavailable():
    notifier = SlackNotifier(FakeChatClient(fail=True), Retrying(retries=2, retry_on=(SlackApiError,)))
    with pytest.raises(UpstreamUnavailable):
        notifier.request_decided(make_request(status=RequestStatus.APPROVED), True)


def test_one_unreachable_approver_does_not_block_the_others(caplog):
    client = FakeChatClient(errors={"UBAD": ["channel_not_found"]})
    SlackNotifier(client, slack_retrying(retries=3, base=0)).request_submitted(make_request(), ["UBAD", "UGOOD"])
    assert [p["channel"] for p in client.posted] == ["UGOOD"]
    assert "could not notify approver UBAD" in caplog.text


def test_submitted_fails_only_when_no_approver_got_it():
    client = FakeChatClient(fail=True)
    notifier = SlackNotifier(client, slack_retrying(retries=3, base=0))
    with pytest.raises(UpstreamUnavailable):
        notifier.request_submitted(make_request(), ["UA", "UB"])
    assert client.attempts == ["UA", "UB"]


def test_permanent_slack_errors_are_not_retried():
    client = FakeChatClient(errors={"U100": ["not_authed"]})
    notifier = SlackNotifier(client, slack_retrying(retries=5, base=0))
    with pytest.raises(UpstreamUnavailable):
        notifier.request_decided(make_request(status=RequestStatus.APPROVED), True)
    assert client.attempts == ["U100"]


def test_rate_limited_dm_is_retried():
    client = FakeChatClient(errors={"U100": ["ratelimited", "ratelimited"]})
    SlackNotifier(client, slack_retrying(retries=5, base=0)).request_decided(
        make_request(status=RequestStatus.APPROVED), True)
    assert client.attempts == ["U100"] * 3
    assert client.posted[0]["channel"] == "U100"


def test_transient_slack_errors():
    assert is_transient_slack_error(OSError("reset"))
    assert is_transient_slack_error(slack_error("ratelimited"))
    assert is_transient_slack_error(slack_error("internal_error"))
    assert not is_transient_slack_error(slack_error("channel_not_found"))
    assert not is_transient_slack_error(slack_error("not_authed"))
