from __future__ import annotations

import datetime as dt
import re

import pytest
import pytz
from gspread.exceptions import WorksheetNotFound

from clockin_bot.approvals import ApprovalWorkflow
from clockin_bot.commands import Commands
from clockin_bot.errors import UpstreamUnavailable
from clockin_bot.identity import AdminPolicy, Person
from clockin_bot.locks import KeyedLocks
from clockin_bot.service import AttendanceService
from clockin_bot.store import InMemoryAdminStore, InMemoryAttendanceStore, InMemoryRequestStore

TZ = pytz.timezone("Asia/Manila")
A1_RE = re.compile(r"^([A-Z]+)(\d+)")


def a1(cell: str) -> tuple[int, int]:
    """``"F3"`` -> (row index 2, col index 5)."""
    m = A1_RE.match(cell)
    col = 0
    for ch in m.group(1):
        col = col * 26 + (ord(ch) - ord("A") + 1)
    return int(m.group(2)) - 1, col - 1


# =========================================================
# gspread fakes
# =========================================================

class FakeWorksheet:
    def __init__(self, title: str, rows=None):
        self.title = title
        self.rows: list[list[str]] = [list(r) for r in (rows or [])]
        self.fail_next = 0  # raise OSError for the next N reads
        self.reads = 0

    def _set(self, r: int, c: int, value) -> None:
        while len(self.rows) <= r:
            self.rows.append([])
        row = self.rows[r]
        while len(row) <= c:
            row.append("")
        row[c] = "" if value is None else str(value)

    def row_values(self, n: int) -> list[str]:
        return list(self.rows[n - 1]) if n <= len(self.rows) else []

    def update(self, range_name=None, values=None, value_input_option=None):
        r0, c0 = a1(range_name)
        for i, row in enumerate(values or []):
            for j, v in enumerate(row):
                self._set(r0 + i, c0 + j, v)

    def get_all_values(self):
        self.reads += 1
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("connection reset")
        return [list(r) for r in self.rows]

    def append_row(self, values, value_input_option=None, table_range=None):
        self.rows.append(["" if v is None else str(v) for v in values])

    def batch_update(self, data, value_input_option=None):
        for item in data:
            r, c = a1(item["range"])
            self._set(r, c, item["values"][0][0])

    def delete_rows(self, index: int, end_index=None):
        del self.rows[index - 1:(end_index or index)]


class FakeSpreadsheet:
    def __init__(self, sheets: dict[str, list] | None = None):
        self.sheets = {t: FakeWorksheet(t, rows) for t, rows in (sheets or {}).items()}
        self.created: list[str] = []

    def worksheet(self, title: str) -> FakeWorksheet:
        if title not in self.sheets:
            raise WorksheetNotFound(title)
        return self.sheets[title]

    def add_worksheet(self, title: str, rows: int = 1000, cols: int = 26) -> FakeWorksheet:
        ws = FakeWorksheet(title)
        self.sheets[title] = ws
        self.created.append(title)
        return ws


# =========================================================
# Slack-side fakes
# =========================================================

class RecordingNotifier:
    def __init__(self):
        self.submitted: list[tuple] = []
        self.decided: list[tuple] = []
        self.fail = False

    def request_submitted(self, request, approver_ids):
        if self.fail:
            raise UpstreamUnavailable()
        self.submitted.append((request, list(approver_ids)))

    def request_decided(self, request, hours_applied):
        if self.fail:
            raise UpstreamUnavailable()
        self.decided.append((request, hours_applied))


class FakeDirectory:
    def __init__(self, people=()):
        self.people = {p.user_id: p for p in people}

    def lookup(self, user_id: str) -> Person:
        return self.people.get(user_id) or Person(user_id=user_id, name=user_id)


class FakeClock:
    def __init__(self, when: dt.datetime):
        self.when = when

    def set(self, hour: int, minute: int = 0, day: dt.date | None = None) -> None:
        d = day or self.when.date()
        self.when = TZ.localize(dt.datetime(d.year, d.month, d.day, hour, minute))

    def __call__(self) -> dt.datetime:
        return self.when


# =========================================================
# fixtures
# =========================================================

ALICE = Person("U100", "alice", "alice@example.com")
BOB = Person("U200", "bob", "bob@example.com")
BOSS = Person("UADMIN", "boss", "boss@example.com")
APPROVER = Person("UAPPR", "approver", "approver@example.com")


@pytest.fixture
def clock():
    return FakeClock(TZ.localize(dt.datetime(2024, 5, 29, 7, 30)))


@pytest.fixture
def attendance_store():
    return InMemoryAttendanceStore()


@pytest.fixture
def locks():
    return KeyedLocks(timeout=1.0)


@pytest.fixture
def attendance(attendance_store, clock, locks):
    return AttendanceService(attendance_store, tz=TZ, locks=locks, clock=clock)


@pytest.fixture
def request_store():
    return InMemoryRequestStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(request_store, attendance, notifier, locks):
    ids = iter(f"req{i}" for i in range(1, 1000))
    return ApprovalWorkflow(request_store, attendance, notifier, [APPROVER.user_id],
                            locks=locks, new_id=lambda: next(ids))


@pytest.fixture
def admins():
    return InMemoryAdminStore()


@pytest.fixture
def policy(admins):
    return AdminPolicy(admins, admin_ids=[BOSS.user_id], approver_ids=[APPROVER.user_id])


@pytest.fixture
def directory():
    return FakeDirectory([ALICE, BOB, BOSS, APPROVER])


@pytest.fixture
def commands(attendance, workflow, policy, admins, directory):
    return Commands(attendance, workflow, policy, admins, directory)
