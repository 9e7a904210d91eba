"""Google Sheets (gspread) implementations of the store protocols.

Layout: one worksheet per year for attendance, plus ``Requests`` and
``Admins``. Row 1 is always the header and is skipped on reads.
"""
from __future__ import annotations

import datetime as dt
import logging
import threading

import gspread
from gspread.exceptions import APIError, WorksheetNotFound

from .errors import InvalidFormat
from .models import AttendanceRecord, Request, RequestStatus, RequestType
from .retry import TRANSIENT_STATUS, Retrying, status_of
from .store import check_fields, request_matches, same_key
from .timeparse import format_date, parse_date

logger = logging.getLogger(__name__)

ATTENDANCE_HEADER = [
    "Name of Employee", "Date", "Clock In", "Clock Out", "Total Hours",
    "Overtime Hours", "Undertime Hours", "Employee Key",
]
REQUESTS_HEADER = [
    "Type", "UserId", "Name", "Date", "Hours", "Reason", "Status", "RequestTime",
    "RequestId", "DecidedBy", "DenyReason",
]
ADMINS_HEADER = ["Email"]

REQUESTS_SHEET = "Requests"
ADMINS_SHEET = "Admins"

# AttendanceRecord field -> 0-based column
FIELD_COLUMNS = {
    "employee_name": 0,
    "clock_in": 2,
    "clock_out": 3,
    "total_hours": 4,
    "overtime_hours": 5,
    "undertime_hours": 6,
}

KEY_COLUMN = 7

VALUE_INPUT = "RAW"  # dates/times must read back exactly as written


def col_letter(i: int) -> str:
    return chr(ord("A") + i)


def cell_range(col: int, rownum: int) -> str:
    return f"{col_letter(col)}{rownum}"


def is_transient_api_error(e: BaseException) -> bool:
    """Network errors, 429s and 5xx are worth another try; 403 or 404 are not."""
    if not isinstance(e, APIError):
        return True
    return status_of(e) in TRANSIENT_STATUS


def default_retrying(**kwargs) -> Retrying:
    return Retrying(retry_on=(APIError, OSError), retry_if=is_transient_api_error, **kwargs)


def _cell(row: list, i: int) -> str:
    return (row[i] if i < len(row) else "") or ""


# --- row <-> record ---
def record_to_row(r: AttendanceRecord) -> list[str]:
    return [
        r.employee_name, format_date(r.date), r.clock_in, r.clock_out, r.total_hours,
        r.overtime_hours, r.undertime_hours, r.employee_key,
    ]


def row_to_record(row: list) -> AttendanceRecord | None:
    try:
        d = parse_date(_cell(row, 1))
    except InvalidFormat:
        return None
    name = _cell(row, 0).strip()
    key = _cell(row, KEY_COLUMN).strip() or name  # rows from older sheets carry only the name
    return AttendanceRecord(
        employee_key=key,
        employee_name=name,
        date=d,
        clock_in=_cell(row, 2).strip(),
        clock_out=_cell(row, 3).strip(),
        total_hours=_cell(row, 4).strip(),
        overtime_hours=_cell(row, 5).strip(),
        undertime_hours=_cell(row, 6).strip(),
    )


def request_to_row(r: Request) -> list[str]:
    return [
        r.type.value, r.employee_key, r.employee_name, format_date(r.date), r.hours, r.reason,
        r.status.value, r.request_time, r.request_id, r.decided_by, r.deny_reason,
    ]


def row_to_request(row: list) -> Request | None:
    try:
        return Request(
            request_id=_cell(row, 8).strip(),
            type=RequestType(_cell(row, 0).strip().lower()),
            employee_key=_cell(row, 1).strip(),
            employee_name=_cell(row, 2).strip(),
            date=parse_date(_cell(row, 3)),
            hours=_cell(row, 4).strip(),
            reason=_cell(row, 5),
            status=RequestStatus(_cell(row, 6).strip().upper()),
            request_time=_cell(row, 7).strip(),
            decided_by=_cell(row, 9).strip(),
            deny_reason=_cell(row, 10),
        )
    except (ValueError, InvalidFormat):
        return None


class _Worksheets:
    """Lazily created, cached worksheets with a fixed header row."""

    def __init__(self, spreadsheet: gspread.Spreadsheet, retrying: Retrying):
        self._sh = spreadsheet
        self.retry = retrying
        self._cache: dict[str, gspread.Worksheet] = {}
        self._lock = threading.Lock()

    def get(self, title: str, header: list[str]) -> gspread.Worksheet:
        with self._lock:
            ws = self._cache.get(title)
            if ws is None:
                ws = self.retry(lambda: self._open_or_create(title, header), what=f"open sheet {title}")
                self._cache[title] = ws
            return ws

    def existing(self, title: str, header: list[str]) -> gspread.Worksheet | None:
        """Like ``get`` but never creates the sheet; None when it is missing."""
        with self._lock:
            ws = self._cache.get(title)
            if ws is None:
                try:
                    ws = self.retry(lambda: self._open(title, header), what=f"open sheet {title}")
                except WorksheetNotFound:
                    return None
                self._cache[title] = ws
            return ws

    def _open(self, title: str, header: list[str]) -> gspread.Worksheet:
        ws = self._sh.worksheet(title)
        self._ensure_header(ws, header)
        return ws

    def _open_or_create(self, title: str, header: list[str]) -> gspread.Worksheet:
        try:
            ws = self._sh.worksheet(title)
        except WorksheetNotFound:
            try:
                ws = self._sh.add_worksheet(title=title, rows=1000, cols=len(header))
                logger.info("created sheet %s", title)
            except APIError:
                # another process created it between our lookup and add
                ws = self._sh.worksheet(title)
        self._ensure_header(ws, header)
        return ws

    @staticmethod
    def _ensure_header(ws: gspread.Worksheet, header: list[str]) -> None:
        first = ws.row_values(1)
        if not any((c or "").strip() for c in first):
            ws.update(range_name=f"A1:{col_letter(len(header) - 1)}1", values=[header],
                      value_input_option=VALUE_INPUT)

    def values(self, ws: gspread.Worksheet) -> list[list[str]]:
        return self.retry(ws.get_all_values, what=f"read {ws.title}") or []

    def append(self, ws: gspread.Worksheet, row: list[str]) -> None:
        self.retry(lambda: ws.append_row(row, value_input_option=VALUE_INPUT, table_range="A1"),
                   what=f"append to {ws.title}")

    def write_cells(self, ws: gspread.Worksheet, rownum: int, cells: dict[int, str]) -> None:
        data = [{"range": cell_range(c, rownum), "values": [[v]]} for c, v in sorted(cells.items())]
        if data:
            self.retry(lambda: ws.batch_update(data, value_input_option=VALUE_INPUT),
                       what=f"update {ws.title} row {rownum}")


# =========================================================
# attendance
# =========================================================

class SheetsAttendanceStore:
    def __init__(self, spreadsheet: gspread.Spreadsheet, retrying: Retrying | None = None):
        self._ws = _Worksheets(spreadsheet, retrying or default_retrying())

    def _segment(self, year: int) -> gspread.Worksheet:
        return self._ws.get(str(int(year)), ATTENDANCE_HEADER)

    def _existing_segment(self, year: int) -> gspread.Worksheet | None:
        return self._ws.existing(str(int(year)), ATTENDANCE_HEADER)

    def ensure_segment(self, year: int) -> None:
        self._segment(year)

    def _locate(self, employee_key: str, date: dt.date, employee_name: str = "") -> tuple[int, AttendanceRecord] | None:
        """Row number and record for (key, date).

        Rows without a key match on the name. A row found through
        ``employee_name`` gets ``employee_key`` written into its key column.
        """
        ws = self._existing_segment(date.year)
        if ws is None:
            return None
        want = format_date(date)
        hits = []  # (needs_key, rownum, record)
        for rownum, row in enumerate(self._ws.values(ws)[1:], start=2):
            if _cell(row, 1).strip() != want:
                continue
            rec = row_to_record(row)
            if rec is None:
                continue
            stored_key = _cell(row, KEY_COLUMN).strip()
            if same_key(rec.employee_key, employee_key):
                hits.append((False, rownum, rec))
            elif not stored_key and employee_name and same_key(rec.employee_name, employee_name):
                hits.append((True, rownum, rec))
        if not hits:
            return None

        hits.sort(key=lambda h: h[0])  # stable: direct key matches first, then row order
        needs_key, rownum, rec = hits[0]
        for other in hits[1:]:
            logger.warning("duplicate attendance row %d for %s on %s (keeping row %d)",
                           other[1], employee_key, want, rownum)
        if needs_key:
            self._ws.write_cells(ws, rownum, {KEY_COLUMN: employee_key})
            logger.info("sheet %s row %d: filled in key %s for %s", ws.title, rownum, employee_key, rec.employee_name)
            rec.employee_key = employee_key
        return rownum, rec

    def find(self, employee_key: str, date: dt.date, /, employee_name: str = "") -> AttendanceRecord | None:
        hit = self._locate(employee_key, date, employee_name)
        return hit[1] if hit else None

    def append(self, record: AttendanceRecord) -> None:
        self._ws.append(self._segment(record.date.year), record_to_row(record))

    def update_fields(self, employee_key: str, date: dt.date, /, **fields) -> AttendanceRecord | None:
        check_fields(fields)
        hit = self._locate(employee_key, date, fields.get("employee_name") or "")
        if not hit:
            return None
        rownum, rec = hit
        cells = {FIELD_COLUMNS[name]: str(value or "") for name, value in fields.items()}
        self._ws.write_cells(self._segment(date.year), rownum, cells)
        for name, value in fields.items():
            setattr(rec, name, str(value or ""))
        return rec

    def _scan(self, start: dt.date, end: dt.date):
        for year in range(start.year, end.year + 1):
            ws = self._existing_segment(year)
            if ws is None:
                continue
            for row in self._ws.values(ws)[1:]:
                rec = row_to_record(row)
                if rec and start <= rec.date <= end:
                    yield rec

    def list_by_date(self, start: dt.date, end: dt.date) -> list[AttendanceRecord]:
        rows = list(self._scan(start, end))
        rows.sort(key=lambda r: r.date)
        return rows

    def list_for_employee(self, employee_key: str, start: dt.date, end: dt.date) -> list[AttendanceRecord]:
        return [r for r in self.list_by_date(start, end) if same_key(r.employee_key, employee_key)]


# =========================================================
# requests
# =========================================================

class SheetsRequestStore:
    def __init__(self, spreadsheet: gspread.Spreadsheet, retrying: Retrying | None = None):
        self._ws = _Worksheets(spreadsheet, retrying or default_retrying())

    def _sheet(self) -> gspread.Worksheet:
        return self._ws.get(REQUESTS_SHEET, REQUESTS_HEADER)

    def _rows(self):
        for rownum, row in enumerate(self._ws.values(self._sheet())[1:], start=2):
            req = row_to_request(row)
            if req is None:
                if any((c or "").strip() for c in row):
                    logger.warning("skipping unreadable Requests row %d", rownum)
                continue
            yield rownum, req

    def append(self, request: Request) -> None:
        self._ws.append(self._sheet(), request_to_row(request))

    def get(self, request_id: str) -> Request | None:
        for _, req in self._rows():
            if req.request_id and req.request_id == request_id:
                return req
        return None

    def find(self, *, type=None, employee_key=None, start=None, end=None, status=None) -> list[Request]:
        return [
            req for _, req in self._rows()
            if request_matches(req, type=type, employee_key=employee_key, start=start, end=end, status=status)
        ]

    def set_status(self, request_id: str, status: RequestStatus, *, decided_by: str = "", deny_reason: str = "") -> bool:
        for rownum, req in self._rows():
            if req.request_id != request_id:
                continue
            if req.status != RequestStatus.PENDING:
                return False
            self._ws.write_cells(self._sheet(), rownum, {6: status.value, 9: decided_by, 10: deny_reason})
            return True
        return False


# =========================================================
# admins
# =========================================================

class SheetsAdminStore:
    def __init__(self, spreadsheet: gspread.Spreadsheet, retrying: Retrying | None = None):
        self._ws = _Worksheets(spreadsheet, retrying or default_retrying())
        self._retry = self._ws.retry

    def _sheet(self) -> gspread.Worksheet:
        return self._ws.get(ADMINS_SHEET, ADMINS_HEADER)

    def _rows(self):
        for rownum, row in enumerate(self._ws.values(self._sheet())[1:], start=2):
            email = _cell(row, 0).strip().lower()
            if email:
                yield rownum, email

    def emails(self) -> set[str]:
        return {e for _, e in self._rows()}

    def add(self, email: str) -> bool:
        e = email.strip().lower()
        if e in self.emails():
            return False
        self._ws.append(self._sheet(), [e])
        return True

    def remove(self, email: str) -> bool:
        e = email.strip().lower()
        # bottom-up so row numbers stay valid if the address is listed twice
        hits = [rownum for rownum, v in self._rows() if v == e]
        ws = self._sheet()
        for rownum in reversed(hits):
            self._retry(lambda rn=rownum: ws.delete_rows(rn), what="remove admin")
        return bool(hits)
