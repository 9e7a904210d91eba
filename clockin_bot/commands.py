"""Slash-command surface, independent of the Slack transport.

Every command takes the calling ``Person`` and the raw command text and
returns a ``Reply``. Domain errors become replies here; anything unexpected
is logged and answered with a generic message so one bad command never
affects the next one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import wraps

from .approvals import ApprovalWorkflow, normalize_hours
from .errors import AttendanceError, InvalidFormat, Unauthorized, human_error
from .identity import AdminPolicy, Person, SlackDirectory, parse_email, parse_mention
from .models import RequestType
from .notify import build_request_blocks, describe_request
from .render import attendance_table, requests_table
from .service import AttendanceService
from .store import AdminStore
from .timeparse import NAMED_RANGES, describe_range, format_date, parse_date

logger = logging.getLogger(__name__)

MERIDIEM_TOKENS = {"am", "pm", "a.m.", "p.m.", "a.m", "p.m"}
MAX_PENDING_SHOWN = 20


@dataclass(frozen=True)
class Reply:
    text: str
    in_channel: bool = False
    blocks: list | None = None
    ok: bool = True


# ---------- error guard: domain errors -> reply, anything else -> generic reply ----------
def slash_guard(fn):
    @wraps(fn)
    def _w(self, caller: Person, *args, **kwargs) -> Reply:
        try:
            return fn(self, caller, *args, **kwargs)
        except AttendanceError as e:
            logger.info("%s by %s rejected: %s", fn.__name__, caller.user_id, e)
            return Reply(str(e), ok=False)
        except Exception as e:
            logger.exception("%s by %s failed", fn.__name__, caller.user_id)
            return Reply(human_error(e), ok=False)
    return _w


def split_times(text: str) -> list[str]:
    """``"7:30 AM 5 pm"`` -> ``["7:30 AM", "5 pm"]``."""
    out: list[str] = []
    for tok in (text or "").split():
        if tok.lower() in MERIDIEM_TOKENS and out:
            out[-1] = f"{out[-1]} {tok}"
        else:
            out.append(tok)
    return out


class Commands:
    def __init__(
        self,
        attendance: AttendanceService,
        workflow: ApprovalWorkflow,
        policy: AdminPolicy,
        admins: AdminStore,
        directory: SlackDirectory | None = None,
    ):
        self.attendance = attendance
        self.workflow = workflow
        self.policy = policy
        self.admins = admins
        self.directory = directory

    # --- lookup table used by the transport ---
    def dispatch(self, name: str, caller: Person, text: str = "") -> Reply:
        handler = COMMANDS.get(name.lstrip("/").lower())
        if handler is None:
            return Reply(f"Unknown command `{name}`. Try `/help`.")
        return handler(self, caller, text or "")

    def _require_admin(self, caller: Person) -> None:
        if not self.policy.is_admin(caller):
            raise Unauthorized()

    def _employee(self, token: str) -> Person:
        """A mentioned user (``<@U123|bob>``) or a raw employee key."""
        m = parse_mention(token)
        if m:
            user_id, label = m
            if self.directory is not None:
                p = self.directory.lookup(user_id)
                if p.name == user_id and label:
                    return Person(user_id=user_id, name=label, email=p.email)
                return p
            return Person(user_id=user_id, name=label or user_id)
        key = (token or "").strip().lstrip("@")
        if not key:
            raise InvalidFormat("employee", "@someone")
        return Person(user_id=key, name=key)

    # =========================================================
    # everyone
    # =========================================================

    @slash_guard
    def clockin(self, caller: Person, text: str = "") -> Reply:
        rec = self.attendance.clock_in(caller.user_id, caller.name, text)
        return Reply(f"✅ Clocked in as *{rec.employee_name}* at *{rec.clock_in}* on {format_date(rec.date)}.")

    @slash_guard
    def clockout(self, caller: Person, text: str = "") -> Reply:
        rec = self.attendance.clock_out(caller.user_id, caller.name, text)
        return Reply(
            f"✅ Clocked out as *{rec.employee_name}* at *{rec.clock_out}* on {format_date(rec.date)}."
            f" Total hours: *{rec.total_hours or '-'}*"
        )

    @slash_guard
    def myattendance(self, caller: Person, text: str = "") -> Reply:
        listing = self.attendance.history(caller.user_id, text)
        if not listing.records:
            return Reply(f"No attendance records found for {describe_range(listing.start, listing.end)}.")
        return Reply(
            f"*Attendance for {caller.name} ({describe_range(listing.start, listing.end)}):*\n"
            + attendance_table(listing.records, with_name=False)
        )

    @slash_guard
    def viewattendance(self, caller: Person, text: str = "") -> Reply:
        listing = self.attendance.view(text)
        period = describe_range(listing.start, listing.end)
        if not listing.records:
            return Reply(f"No attendance records for {period}.", in_channel=True)
        table = attendance_table(listing.records, with_date=listing.start != listing.end)
        return Reply(f"*Attendance for {period}:*\n{table}", in_channel=True)

    def _submit(self, type: RequestType, caller: Person, text: str) -> Reply:
        parts = (text or "").split(maxsplit=2)
        if len(parts) < 2:
            raise InvalidFormat(f"{type.value} command", f"/{type.value} 05/29/2024 2 reporting")
        day = parse_date(parts[0])
        reason = parts[2] if len(parts) > 2 else ""
        sub = self.workflow.submit(type, caller.user_id, caller.name, day, parts[1], reason)
        r = sub.request
        msg = f"📨 {type.value.title()} request for {format_date(r.date)} ({r.hours}h) sent for approval."
        if sub.overwritten:
            msg += "\nYour earlier pending request for that date was replaced."
        if not sub.notified:
            msg += "\n⚠️ Approvers could not be notified right now; the request is saved and still pending."
        return Reply(msg)

    @slash_guard
    def overtime(self, caller: Person, text: str = "") -> Reply:
        return self._submit(RequestType.OVERTIME, caller, text)

    @slash_guard
    def undertime(self, caller: Person, text: str = "") -> Reply:
        return self._submit(RequestType.UNDERTIME, caller, text)

    @slash_guard
    def myrequests(self, caller: Person, text: str = "") -> Reply:
        start, end = self.attendance.resolve_period(text or "this month")
        rows = self.workflow.list_for(caller.user_id, start, end)
        if not rows:
            return Reply(f"No overtime/undertime requests for {describe_range(start, end)}.")
        return Reply(f"*Your requests ({describe_range(start, end)}):*\n" + requests_table(rows))

    @slash_guard
    def help(self, caller: Person, text: str = "") -> Reply:
        ranges = ", ".join(f"`{r}`" for r in NAMED_RANGES)
        text = (
            "*Attendance Bot Help*\n\n"
            "• `/clockin [h:mm AM/PM]`: Clock in (optional time).\n"
            "• `/clockout [h:mm AM/PM]`: Clock out (optional time).\n"
            "• `/myattendance [date|range]`: See your attendance.\n"
            "• `/viewattendance [date|range]`: Show everyone's attendance to the channel.\n"
            "• `/overtime MM/DD/YYYY hours [reason]`: Request overtime.\n"
            "• `/undertime MM/DD/YYYY hours [reason]`: Request undertime.\n"
            "• `/myrequests [date|range]`: See your overtime/undertime requests.\n"
            f"Dates are `MM/DD/YYYY`, ranges `MM/DD/YYYY-MM/DD/YYYY` or one of {ranges}.\n"
        )
        if self.policy.is_admin(caller):
            text += (
                "\n*Admin Commands:*\n"
                "• `/approve`: List pending overtime/undertime requests to approve.\n"
                "• `/addovertime @user MM/DD/YYYY hours [reason]`: Set overtime.\n"
                "• `/addundertime @user MM/DD/YYYY hours [reason]`: Set undertime.\n"
                "• `/editattendance @user MM/DD/YYYY IN [OUT]`: Edit a user's record.\n"
                "• `/history @user [date|range]`: Get a user's attendance history.\n"
                "• `/addadmin email`: Add admin.\n"
                "• `/removeadmin email`: Remove admin.\n"
            )
        return Reply(text)

    # =========================================================
    # admins
    # =========================================================

    def _direct_set(self, type: RequestType, caller: Person, text: str) -> Reply:
        self._require_admin(caller)
        parts = (text or "").split(maxsplit=3)
        if len(parts) < 3:
            raise InvalidFormat(f"add{type.value} command", f"/add{type.value} @someone 05/29/2024 2 reporting")
        who = self._employee(parts[0])
        day = parse_date(parts[1])
        hours = normalize_hours(parts[2])
        reason = parts[3] if len(parts) > 3 else ""
        self.attendance.set_adjustment(who.user_id, day, type, hours, employee_name=who.name)
        self.workflow.record_direct(type, who.user_id, who.name, day, hours, reason, decided_by=caller.user_id)
        return Reply(f"✅ {type.value.title()} for *{who.name}* on {format_date(day)} set to {hours}h.")

    @slash_guard
    def addovertime(self, caller: Person, text: str = "") -> Reply:
        return self._direct_set(RequestType.OVERTIME, caller, text)

    @slash_guard
    def addundertime(self, caller: Person, text: str = "") -> Reply:
        return self._direct_set(RequestType.UNDERTIME, caller, text)

    @slash_guard
    def editattendance(self, caller: Person, text: str = "") -> Reply:
        self._require_admin(caller)
        parts = (text or "").split(maxsplit=2)
        times = split_times(parts[2]) if len(parts) > 2 else []
        if len(parts) < 3 or not 1 <= len(times) <= 2:
            raise InvalidFormat("editattendance command", "/editattendance @someone 05/29/2024 8:00 AM 5:00 PM")
        who = self._employee(parts[0])
        day = parse_date(parts[1])
        rec = self.attendance.edit(who.user_id, who.name, day, times[0], times[1] if len(times) > 1 else "")
        return Reply(
            f"✅ Updated *{rec.employee_name}* on {format_date(day)}: "
            f"{rec.clock_in} - {rec.clock_out or '-'} (total {rec.total_hours or '-'})."
        )

    @slash_guard
    def history(self, caller: Person, text: str = "") -> Reply:
        self._require_admin(caller)
        parts = (text or "").split(maxsplit=1)
        if not parts:
            raise InvalidFormat("history command", "/history @someone this month")
        who = self._employee(parts[0])
        listing = self.attendance.history(who.user_id, parts[1] if len(parts) > 1 else "")
        period = describe_range(listing.start, listing.end)
        if not listing.records:
            return Reply(f"No attendance records for *{who.name}* for {period}.")
        return Reply(f"*Attendance for {who.name} ({period}):*\n" + attendance_table(listing.records, with_name=False))

    @slash_guard
    def addadmin(self, caller: Person, text: str = "") -> Reply:
        self._require_admin(caller)
        email = parse_email(text)
        if not email:
            raise InvalidFormat("e-mail address", "/addadmin jane@example.com")
        if not self.admins.add(email):
            return Reply(f"{email} is already an admin.")
        logger.info("admin %s added by %s", email, caller.user_id)
        return Reply(f"✅ {email} is now an admin.")

    @slash_guard
    def removeadmin(self, caller: Person, text: str = "") -> Reply:
        self._require_admin(caller)
        email = parse_email(text)
        if not email:
            raise InvalidFormat("e-mail address", "/removeadmin jane@example.com")
        if not self.admins.remove(email):
            return Reply(f"{email} is not listed in the Admins sheet.")
        logger.info("admin %s removed by %s", email, caller.user_id)
        return Reply(f"✅ {email} is no longer an admin.")

    # =========================================================
    # approvals
    # =========================================================

    @slash_guard
    def approve(self, caller: Person, text: str = "") -> Reply:
        if not self.policy.can_approve(caller):
            raise Unauthorized("Only approvers can review requests.")
        pending = self.workflow.pending()
        if not pending:
            return Reply("No pending overtime/undertime requests.")
        blocks = []
        for r in pending[:MAX_PENDING_SHOWN]:
            blocks += build_request_blocks(r)
            blocks.append({"type": "divider"})
        more = len(pending) - MAX_PENDING_SHOWN
        text = f"{len(pending)} pending request(s)."
        if more > 0:
            text += f" Showing the oldest {MAX_PENDING_SHOWN}."
        return Reply(text, blocks=blocks)

    @slash_guard
    def decide(self, caller: Person, request_id: str, approved: bool = True, deny_reason: str = "") -> Reply:
        if not self.policy.can_approve(caller):
            raise Unauthorized("Only approvers can decide requests.")
        decision = self.workflow.decide(request_id, approved, caller.user_id, deny_reason)
        r = decision.request
        verb = "✅ Approved" if approved else "❌ Denied"
        msg = f"{verb} by <@{caller.user_id}>\n{describe_request(r)}"
        if r.deny_reason:
            msg += f"\n• Deny reason: {r.deny_reason}"
        if approved and decision.hours_applied:
            msg += f"\n{r.hours}h written to {format_date(r.date)}."
        for note in decision.notes:
            msg += f"\n⚠️ {note}"
        return Reply(msg)


COMMANDS = {
    "clockin": Commands.clockin,
    "clockout": Commands.clockout,
    "myattendance": Commands.myattendance,
    "viewattendance": Commands.viewattendance,
    "overtime": Commands.overtime,
    "undertime": Commands.undertime,
    "myrequests": Commands.myrequests,
    "help": Commands.help,
    "addovertime": Commands.addovertime,
    "addundertime": Commands.addundertime,
    "editattendance": Commands.editattendance,
    "history": Commands.history,
    "addadmin": Commands.addadmin,
    "removeadmin": Commands.removeadmin,
    "approve": Commands.approve,
}
