"""Store protocols and their in-memory implementations.

The attendance service and the approval workflow only see these protocols;
``sheets_store`` provides the Google Sheets versions used in production.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import replace
from typing import Iterable, Protocol, Sequence

from .models import UPDATABLE_FIELDS, AttendanceRecord, Request, RequestStatus, RequestType

logger = logging.getLogger(__name__)


def same_key(a: str | None, b: str | None) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def check_fields(fields: dict) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"not updatable: {', '.join(sorted(unknown))}")


class AttendanceStore(Protocol):
    def ensure_segment(self, year: int) -> None:
        raise NotImplementedError

    def find(self, employee_key: str, date: dt.date, /, employee_name: str = "") -> AttendanceRecord | None:
        """The record for (key, date). ``employee_name`` lets a store match rows
        written before records carried a key."""

        raise NotImplementedError

    def append(self, record: AttendanceRecord) -> None:
        raise NotImplementedError

    def update_fields(self, employee_key: str, date: dt.date, /, **fields) -> AttendanceRecord | None:
        """Write ``fields`` into the matching row; None if there is no row."""

        raise NotImplementedError

    def list_by_date(self, start: dt.date, end: dt.date) -> Sequence[AttendanceRecord]:
        raise NotImplementedError

    def list_for_employee(self, employee_key: str, start: dt.date, end: dt.date) -> Sequence[AttendanceRecord]:
        raise NotImplementedError


class RequestStore(Protocol):
    def append(self, request: Request) -> None:
        raise NotImplementedError

    def get(self, request_id: str) -> Request | None:
        raise NotImplementedError

    def find(
        self,
        *,
        type: RequestType | None = None,
        employee_key: str | None = None,
        start: dt.date | None = None,
        end: dt.date | None = None,
        status: RequestStatus | None = None,
    ) -> Sequence[Request]:
        raise NotImplementedError

    def set_status(
        self,
        request_id: str,
        status: RequestStatus,
        *,
        decided_by: str = "",
        deny_reason: str = "",
    ) -> bool:
        """Move a PENDING request to ``status``; False if it was not PENDING."""

        raise NotImplementedError


class AdminStore(Protocol):
    def emails(self) -> set[str]:
        raise NotImplementedError

    def add(self, email: str) -> bool:
        raise NotImplementedError

    def remove(self, email: str) -> bool:
        raise NotImplementedError


def request_matches(r: Request, *, type=None, employee_key=None, start=None, end=None, status=None) -> bool:
    if type is not None and r.type != type:
        return False
    if employee_key is not None and not same_key(r.employee_key, employee_key):
        return False
    if start is not None and r.date < start:
        return False
    if end is not None and r.date > end:
        return False
    if status is not None and r.status != status:
        return False
    return True


# =========================================================
# in-memory implementations
# =========================================================

class InMemoryAttendanceStore:
    """Year-partitioned list of records; insertion order is kept per year."""

    def __init__(self, records: Iterable[AttendanceRecord] = ()):
        self._segments: dict[int, list[AttendanceRecord]] = {}
        for r in records:
            self.append(r)

    @property
    def segments(self) -> list[int]:
        return sorted(self._segments)

    def ensure_segment(self, year: int) -> None:
        self._segments.setdefault(int(year), [])

    def _index(self, employee_key: str, date: dt.date) -> int | None:
        rows = self._segments.get(date.year, [])
        hits = [i for i, r in enumerate(rows) if r.date == date and same_key(r.employee_key, employee_key)]
        if len(hits) > 1:
            logger.warning("duplicate attendance rows for %s on %s; using the first", employee_key, date)
        return hits[0] if hits else None

    def find(self, employee_key: str, date: dt.date, /, employee_name: str = "") -> AttendanceRecord | None:
        i = self._index(employee_key, date)
        return None if i is None else replace(self._segments[date.year][i])

    def append(self, record: AttendanceRecord) -> None:
        self.ensure_segment(record.date.year)
        self._segments[record.date.year].append(replace(record))

    def update_fields(self, employee_key: str, date: dt.date, /, **fields) -> AttendanceRecord | None:
        check_fields(fields)
        i = self._index(employee_key, date)
        if i is None:
            return None
        rows = self._segments[date.year]
        rows[i] = replace(rows[i], **fields)
        return replace(rows[i])

    def _scan(self, start: dt.date, end: dt.date):
        for year in range(start.year, end.year + 1):
            for r in self._segments.get(year, []):
                if start <= r.date <= end:
                    yield r

    def list_by_date(self, start: dt.date, end: dt.date) -> list[AttendanceRecord]:
        rows = [replace(r) for r in self._scan(start, end)]
        # stable: insertion order within a day
        rows.sort(key=lambda r: r.date)
        return rows

    def list_for_employee(self, employee_key: str, start: dt.date, end: dt.date) -> list[AttendanceRecord]:
        return [r for r in self.list_by_date(start, end) if same_key(r.employee_key, employee_key)]

    def all(self) -> list[AttendanceRecord]:
        return [replace(r) for y in self.segments for r in self._segments[y]]


class InMemoryRequestStore:
    def __init__(self):
        self._rows: list[Request] = []

    def append(self, request: Request) -> None:
        self._rows.append(replace(request))

    def get(self, request_id: str) -> Request | None:
        for r in self._rows:
            if r.request_id == request_id:
                return replace(r)
        return None

    def find(self, *, type=None, employee_key=None, start=None, end=None, status=None) -> list[Request]:
        return [
            replace(r) for r in self._rows
            if request_matches(r, type=type, employee_key=employee_key, start=start, end=end, status=status)
        ]

    def set_status(self, request_id: str, status: RequestStatus, *, decided_by: str = "", deny_reason: str = "") -> bool:
        for i, r in enumerate(self._rows):
            if r.request_id != request_id:
                continue
            if r.status != RequestStatus.PENDING:
                return False
            self._rows[i] = replace(r, status=status, decided_by=decided_by, deny_reason=deny_reason)
            return True
        return False


class InMemoryAdminStore:
    def __init__(self, emails: Iterable[str] = ()):
        self._emails = {e.strip().lower() for e in emails if e.strip()}

    def emails(self) -> set[str]:
        return set(self._emails)

    def add(self, email: str) -> bool:
        e = email.strip().lower()
        if e in self._emails:
            return False
        self._emails.add(e)
        return True

    def remove(self, email: str) -> bool:
        e = email.strip().lower()
        if e not in self._emails:
            return False
        self._emails.discard(e)
        return True
