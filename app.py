import json
import logging

import gspread
from google.oauth2.service_account import Credentials
from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from slack_sdk.webhook import WebhookClient

from clockin_bot.approvals import ApprovalWorkflow
from clockin_bot.commands import COMMANDS, Commands, Reply
from clockin_bot.identity import AdminPolicy, SlackDirectory
from clockin_bot.locks import KeyedLocks
from clockin_bot.notify import APPROVE_ACTION, DENY_ACTION, SlackNotifier, slack_retrying
from clockin_bot.service import AttendanceService
from clockin_bot.settings import Settings, load_settings
from clockin_bot.sheets_store import (
    SheetsAdminStore,
    SheetsAttendanceStore,
    SheetsRequestStore,
    default_retrying,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

SLASH_COMMANDS = {f"/{name}": name for name in COMMANDS}

DENY_VIEW = "deny_reason_submit"
DENY_BLOCK = "deny_reason"
DENY_INPUT = "reason_input"


# ---------- wiring ----------
def open_spreadsheet(settings: Settings) -> gspread.Spreadsheet:
    creds = Credentials.from_service_account_file(settings.service_account_file, scopes=SCOPES)
    gc = gspread.authorize(creds)
    gc.set_timeout(settings.http_timeout)
    return gc.open_by_key(settings.sheet_id)


def build_commands(settings: Settings, spreadsheet, client) -> tuple[Commands, SlackDirectory]:
    sheets_retry = default_retrying(retries=settings.retries, base=settings.retry_base)
    slack_retry = slack_retrying(retries=settings.retries, base=settings.retry_base)
    locks = KeyedLocks(timeout=settings.lock_timeout)

    attendance = AttendanceService(SheetsAttendanceStore(spreadsheet, sheets_retry), tz=settings.tz, locks=locks)
    admins = SheetsAdminStore(spreadsheet, sheets_retry)
    policy = AdminPolicy(
        admins,
        admin_ids=settings.admin_ids,
        admin_emails=settings.admin_emails,
        approver_ids=settings.approver_ids,
    )
    workflow = ApprovalWorkflow(
        SheetsRequestStore(spreadsheet, sheets_retry),
        attendance,
        SlackNotifier(client, slack_retry),
        policy.approver_targets,
        locks=locks,
    )
    directory = SlackDirectory(client, slack_retry)
    return Commands(attendance, workflow, policy, admins, directory), directory


def reply_kwargs(reply: Reply) -> dict:
    kwargs = {"text": reply.text, "response_type": "in_channel" if reply.in_channel else "ephemeral"}
    if reply.blocks:
        kwargs["blocks"] = reply.blocks
    return kwargs


# ---------- deny modal: optional reason ----------
def build_deny_view(request_id: str, response_url: str = "") -> dict:
    return {
        "type": "modal",
        "callback_id": DENY_VIEW,
        "private_metadata": json.dumps({"request_id": request_id, "response_url": response_url}),
        "title": {"type": "plain_text", "text": "Deny request"},
        "submit": {"type": "plain_text", "text": "Deny"},
        "close": {"type": "plain_text", "text": "Cancel"},
        "blocks": [
            {
                "type": "input",
                "block_id": DENY_BLOCK,
                "optional": True,
                "label": {"type": "plain_text", "text": "Reason"},
                "element": {"type": "plain_text_input", "action_id": DENY_INPUT, "multiline": True},
            }
        ],
    }


def deny_reason_from(view: dict) -> str:
    values = (view.get("state") or {}).get("values") or {}
    return ((values.get(DENY_BLOCK) or {}).get(DENY_INPUT) or {}).get("value") or ""


def register(app, commands: Commands, directory: SlackDirectory, webhook=WebhookClient) -> None:
    """Attach every slash command, button and modal handler to ``app``."""

    # --- slash commands: ack first, answer through respond ---
    def slash_handler(name: str):
        def handler(ack, body, respond):
            ack()
            caller = directory.lookup(body["user_id"])
            reply = commands.dispatch(name, caller, body.get("text") or "")
            respond(**reply_kwargs(reply))
        handler.__name__ = f"{name}_cmd"
        return handler

    for command, name in SLASH_COMMANDS.items():
        app.command(command)(slash_handler(name))

    # --- approver buttons ---
    @app.action(APPROVE_ACTION)
    def on_approve(ack, body, respond):
        ack()
        caller = directory.lookup(body["user"]["id"])
        reply = commands.decide(caller, body["actions"][0]["value"], True)
        respond(text=reply.text, replace_original=reply.ok)

    @app.action(DENY_ACTION)
    def on_deny(ack, body, respond, client):
        ack()
        caller = directory.lookup(body["user"]["id"])
        if not commands.policy.can_approve(caller):
            respond(text="Only approvers can decide requests.", replace_original=False)
            return
        view = build_deny_view(body["actions"][0]["value"], body.get("response_url") or "")
        client.views_open(trigger_id=body["trigger_id"], view=view)

    @app.view(DENY_VIEW)
    def on_deny_submit(ack, body, view, client):
        ack()
        meta = json.loads(view.get("private_metadata") or "{}")
        caller = directory.lookup(body["user"]["id"])
        reply = commands.decide(caller, meta.get("request_id", ""), False, deny_reason_from(view))
        url = meta.get("response_url")
        try:
            if url and reply.ok:
                webhook(url).send(text=reply.text, replace_original=True)
            else:
                client.chat_postMessage(channel=caller.user_id, text=reply.text)
        except (SlackApiError, OSError):
            logger.exception("could not deliver deny result for %s", meta.get("request_id"))

    # ---------- mention ----------
    @app.event("app_mention")
    def on_mention(body, say):
        say("Use `/clockin`, `/clockout` or `/help` to see every command.")


def create_app(settings: Settings) -> App:
    client = WebClient(token=settings.slack_bot_token, timeout=settings.http_timeout)
    app = App(client=client)
    commands, directory = build_commands(settings, open_spreadsheet(settings), client)
    register(app, commands, directory)
    return app


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    SocketModeHandler(create_app(settings), settings.slack_app_token).start()


if __name__ == "__main__":
    main()
