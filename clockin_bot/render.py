import unicodedata as ud
from typing import Sequence

from .models import AttendanceRecord, Request
from .timeparse import format_date


# --- display width (wide CJK characters count as 2) ---
def disp_width(s: str) -> int:
    w = 0
    for ch in s or "":
        e = ud.east_asian_width(ch)
        w += 2 if e in ("W", "F") else 1
    return w


def pad_right(s: str, target: int) -> str:
    w = disp_width(s)
    return s + " " * max(0, target - w)


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Fixed-width table in a code block."""
    widths = [disp_width(h) for h in headers]
    for r in rows:
        for i, v in enumerate(r):
            widths[i] = max(widths[i], disp_width(v or "-"))
    lines = [" | ".join(pad_right(h, widths[i]) for i, h in enumerate(headers)).rstrip()]
    lines.append("-|-".join("-" * w for w in widths))
    for r in rows:
        lines.append(" | ".join(pad_right(v or "-", widths[i]) for i, v in enumerate(r)).rstrip())
    return "```" + "\n".join(lines) + "```"


def attendance_table(records: Sequence[AttendanceRecord], *, with_name: bool = True, with_date: bool = True) -> str:
    headers = []
    if with_name:
        headers.append("Name")
    if with_date:
        headers.append("Date")
    headers += ["In", "Out", "Total", "OT", "UT"]
    rows = []
    for r in records:
        row = []
        if with_name:
            row.append(r.employee_name or r.employee_key)
        if with_date:
            row.append(format_date(r.date))
        row += [r.clock_in, r.clock_out, r.total_hours, r.overtime_hours, r.undertime_hours]
        rows.append(row)
    return render_table(headers, rows)


def requests_table(requests: Sequence[Request]) -> str:
    rows = [
        [format_date(r.date), r.type.value, r.hours, r.status.value, r.reason]
        for r in requests
    ]
    return render_table(["Date", "Type", "Hours", "Status", "Reason"], rows)
