from __future__ import annotations

import logging
from typing import Iterable, Protocol

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from .errors import UpstreamUnavailable
from .models import Request, RequestStatus
from .retry import TRANSIENT_STATUS, Retrying, status_of
from .timeparse import format_date

logger = logging.getLogger(__name__)

APPROVE_ACTION = "request_approve"
DENY_ACTION = "request_deny"

TRANSIENT_SLACK_ERRORS = frozenset({
    "ratelimited", "rate_limited", "internal_error", "fatal_error", "service_unavailable", "request_timeout",
})


# --- only rate limits, 5xx and network errors are worth another attempt ---
def is_transient_slack_error(e: BaseException) -> bool:
    if not isinstance(e, SlackApiError):
        return True
    if status_of(e) in TRANSIENT_STATUS:
        return True
    resp = e.response
    error = resp.get("error") if hasattr(resp, "get") else None
    return error in TRANSIENT_SLACK_ERRORS


def slack_retrying(**kwargs) -> Retrying:
    return Retrying(retry_on=(SlackApiError, OSError), retry_if=is_transient_slack_error, **kwargs)


class Notifier(Protocol):
    def request_submitted(self, request: Request, approver_ids: Iterable[str]) -> None:
        raise NotImplementedError

    def request_decided(self, request: Request, hours_applied: bool) -> None:
        raise NotImplementedError


def describe_request(r: Request) -> str:
    lines = [
        f"*{r.type.value.title()} request* from <@{r.employee_key}> ({r.employee_name})",
        f"• Date: {format_date(r.date)}",
        f"• Hours: {r.hours}",
        f"• Reason: {r.reason or '-'}",
    ]
    return "\n".join(lines)


# --- approver DM with Approve / Deny buttons ---
def build_request_blocks(r: Request) -> list[dict]:
    return [
        {"type": "section", "text": {"type": "mrkdwn", "text": describe_request(r)}},
        {
            "type": "actions",
            "block_id": "request_decision",
            "elements": [
                {
                    "type": "button",
                    "action_id": APPROVE_ACTION,
                    "style": "primary",
                    "text": {"type": "plain_text", "text": "Approve"},
                    "value": r.request_id,
                },
                {
                    "type": "button",
                    "action_id": DENY_ACTION,
                    "style": "danger",
                    "text": {"type": "plain_text", "text": "Deny"},
                    "value": r.request_id,
                },
            ],
        },
    ]


def decision_text(r: Request, hours_applied: bool) -> str:
    what = f"{r.type.value} request for {format_date(r.date)} ({r.hours}h)"
    if r.status == RequestStatus.APPROVED:
        msg = f"✅ Your {what} was approved."
        if not hours_applied:
            msg += " There is no attendance record for that day yet, so the hours were not added to the sheet."
        return msg
    msg = f"❌ Your {what} was denied."
    if r.deny_reason:
        msg += f"\nReason: {r.deny_reason}"
    return msg


class SlackNotifier:
    def __init__(self, client: WebClient, retrying: Retrying | None = None):
        self._client = client
        self._retry = retrying or slack_retrying()

    def _dm(self, user_id: str, text: str, blocks: list[dict] | None = None) -> None:
        kwargs = {"channel": user_id, "text": text}
        if blocks:
            kwargs["blocks"] = blocks
        try:
            self._retry(lambda: self._client.chat_postMessage(**kwargs), what=f"DM {user_id}")
        except SlackApiError as e:
            raise UpstreamUnavailable(f"Slack could not deliver a message to <@{user_id}>.") from e

    def request_submitted(self, request: Request, approver_ids: Iterable[str]) -> None:
        """DM every approver; raises UpstreamUnavailable only if none got it."""
        targets = [a for a in approver_ids if a]
        if not targets:
            logger.warning("no approvers configured; request %s has nobody to notify", request.request_id)
            return
        text = f"New {request.type.value} request from {request.employee_name} for {format_date(request.date)}"
        blocks = build_request_blocks(request)
        delivered = 0
        for approver in targets:
            try:
                self._dm(approver, text, blocks)
                delivered += 1
            except UpstreamUnavailable as e:
                logger.error("could not notify approver %s about request %s: %r",
                             approver, request.request_id, e.__cause__)
        if not delivered:
            raise UpstreamUnavailable("None of the approvers could be notified.")

    def request_decided(self, request: Request, hours_applied: bool) -> None:
        self._dm(request.employee_key, decision_text(request, hours_applied))
