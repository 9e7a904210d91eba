from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

import pytz
from dotenv import load_dotenv

from .service import DEFAULT_TIMEZONE


def _csv(v: str | None) -> tuple[str, ...]:
    return tuple(s.strip() for s in (v or "").split(",") if s.strip())


@dataclass(frozen=True)
class Settings:
    slack_bot_token: str
    slack_app_token: str
    sheet_id: str
    service_account_file: str = "service_account.json"
    timezone: str = DEFAULT_TIMEZONE
    admin_ids: tuple[str, ...] = ()
    admin_emails: tuple[str, ...] = ()
    approver_ids: tuple[str, ...] = ()
    retries: int = 5
    retry_base: float = 0.2
    http_timeout: int = 10
    lock_timeout: float = 10.0
    log_level: str = "INFO"

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Read settings from ``env`` (default ``os.environ``).

        Missing Slack tokens or sheet id raise KeyError; an unknown timezone
        raises ``pytz.UnknownTimeZoneError``.
        """
        env = os.environ if env is None else env
        s = cls(
            slack_bot_token=env["SLACK_BOT_TOKEN"],
            slack_app_token=env["SLACK_APP_TOKEN"],
            sheet_id=env["SHEET_ID"],
            service_account_file=env.get("SERVICE_ACCOUNT_FILE") or "service_account.json",
            timezone=env.get("TIMEZONE") or DEFAULT_TIMEZONE,
            admin_ids=_csv(env.get("ADMIN_IDS")),
            admin_emails=tuple(e.lower() for e in _csv(env.get("ADMIN_EMAILS"))),
            approver_ids=_csv(env.get("APPROVER_IDS")),
            retries=int(env.get("RETRIES") or 5),
            retry_base=float(env.get("RETRY_BASE") or 0.2),
            http_timeout=int(env.get("HTTP_TIMEOUT") or 10),
            lock_timeout=float(env.get("LOCK_TIMEOUT") or 10),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
        s.tz  # fail fast on a bad TIMEZONE
        return s


def load_settings() -> Settings:
    load_dotenv()
    return Settings.from_env()
