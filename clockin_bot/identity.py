from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from .errors import UpstreamUnavailable
from .notify import slack_retrying
from .retry import Retrying
from .store import AdminStore

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"^<@([A-Z0-9]+)(?:\|([^>]*))?>$", re.IGNORECASE)  # <@U123|bob>
MAILTO_RE = re.compile(r"^<mailto:([^|>]+)(?:\|[^>]*)?>$", re.IGNORECASE)
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Person:
    user_id: str
    name: str
    email: str = ""


def parse_mention(token: str) -> tuple[str, str] | None:
    """(user_id, label) for an escaped Slack mention, else None."""
    m = MENTION_RE.match((token or "").strip())
    if not m:
        return None
    return m.group(1).upper(), (m.group(2) or "").strip()


def parse_email(token: str) -> str | None:
    s = (token or "").strip()
    m = MAILTO_RE.match(s)
    if m:
        s = m.group(1)
    s = s.strip().lower()
    return s if EMAIL_RE.match(s) else None


class SlackDirectory:
    """Resolves Slack user ids to display names and e-mails (``users.info``)."""

    def __init__(self, client: WebClient, retrying: Retrying | None = None):
        self._client = client
        self._retry = retrying or slack_retrying(retries=3)
        self._cache: dict[str, Person] = {}

    def lookup(self, user_id: str) -> Person:
        cached = self._cache.get(user_id)
        if cached:
            return cached
        try:
            info = self._retry(lambda: self._client.users_info(user=user_id), what=f"users.info {user_id}")
        except (UpstreamUnavailable, SlackApiError):
            # unresolved callers still get served, keyed by their id
            return Person(user_id=user_id, name=user_id)
        user = info["user"]
        p = user.get("profile") or {}
        person = Person(
            user_id=user_id,
            name=p.get("display_name") or p.get("real_name") or user.get("real_name") or user.get("name") or user_id,
            email=(p.get("email") or "").lower(),
        )
        self._cache[user_id] = person
        return person


class AdminPolicy:
    """Admins are listed by Slack id or e-mail (env) or in the Admins sheet."""

    def __init__(
        self,
        admins: AdminStore,
        *,
        admin_ids: Iterable[str] = (),
        admin_emails: Iterable[str] = (),
        approver_ids: Iterable[str] = (),
    ):
        self._admins = admins
        self.admin_ids = {s.strip() for s in admin_ids if s.strip()}
        self.admin_emails = {e.strip().lower() for e in admin_emails if e.strip()}
        self.approver_ids = [s.strip() for s in approver_ids if s.strip()]

    def is_admin(self, person: Person) -> bool:
        if person.user_id in self.admin_ids:
            return True
        email = (person.email or "").lower()
        if not email:
            return False
        if email in self.admin_emails:
            return True
        return email in self._admins.emails()

    def can_approve(self, person: Person) -> bool:
        return person.user_id in self.approver_ids or self.is_admin(person)

    def approver_targets(self) -> list[str]:
        """Slack ids that receive approval DMs."""
        return list(self.approver_ids) or sorted(self.admin_ids)
