from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable

import pytz

from .errors import (
    AlreadyClockedIn,
    AlreadyClockedOut,
    ClockOutBeforeClockIn,
    NotClockedIn,
    RecordNotFound,
)
from .hours import calculate_total_hours
from .locks import KeyedLocks
from .models import AttendanceRecord, RequestType
from .store import AttendanceStore
from .timeparse import canonical_time, clock_minutes, format_date, resolve_range

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Manila"


@dataclass(frozen=True)
class AttendanceListing:
    start: dt.date
    end: dt.date
    records: list[AttendanceRecord]


class AttendanceService:
    """Clock-in/clock-out use cases over an AttendanceStore.

    Per (employee, date) a record moves NoRecord -> ClockedIn -> ClockedOut.
    Every read-modify-write of a row runs under that key's lock.
    """

    def __init__(
        self,
        store: AttendanceStore,
        *,
        tz=None,
        locks: KeyedLocks | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ):
        self._store = store
        self.tz = tz or pytz.timezone(DEFAULT_TIMEZONE)
        self._locks = locks or KeyedLocks()
        self._clock = clock or (lambda: dt.datetime.now(self.tz))

    def now(self) -> dt.datetime:
        return self._clock()

    def today(self) -> dt.date:
        return self.now().date()

    def resolve_period(self, text: str | None) -> tuple[dt.date, dt.date]:
        return resolve_range(text, self.today())

    def _date_label(self, day: dt.date) -> str:
        return "" if day == self.today() else format_date(day)

    # --- clock in ---
    def clock_in(self, employee_key: str, employee_name: str, time_text: str = "", day: dt.date | None = None) -> AttendanceRecord:
        now = self.now()
        day = day or now.date()
        at = canonical_time(time_text, now)
        name = employee_name or employee_key

        with self._locks.hold(employee_key, day):
            self._store.ensure_segment(day.year)
            rec = self._store.find(employee_key, day, employee_name=name)
            if rec and rec.clock_in:
                raise AlreadyClockedIn(rec.clock_in)
            if rec:
                fields = {"employee_name": name, "clock_in": at}
                if rec.clock_out:
                    fields["total_hours"] = calculate_total_hours(at, rec.clock_out)
                rec = self._store.update_fields(employee_key, day, **fields) or rec.with_fields(**fields)
            else:
                rec = AttendanceRecord(employee_key=employee_key, employee_name=name, date=day, clock_in=at)
                self._store.append(rec)

        logger.info("clock-in %s (%s) %s at %s", employee_key, name, format_date(day), at)
        return rec

    # --- clock out ---
    def clock_out(self, employee_key: str, employee_name: str, time_text: str = "", day: dt.date | None = None) -> AttendanceRecord:
        now = self.now()
        day = day or now.date()
        at = canonical_time(time_text, now)
        name = employee_name or employee_key

        with self._locks.hold(employee_key, day):
            rec = self._store.find(employee_key, day, employee_name=name)
            if not rec or not rec.clock_in:
                raise NotClockedIn(self._date_label(day))
            if rec.clock_out:
                raise AlreadyClockedOut(rec.clock_out)
            in_min = clock_minutes(rec.clock_in)
            if in_min is not None and clock_minutes(at) < in_min:
                raise ClockOutBeforeClockIn(rec.clock_in, at)

            fields = {
                "employee_name": name,
                "clock_out": at,
                "total_hours": calculate_total_hours(rec.clock_in, at),
            }
            rec = self._store.update_fields(employee_key, day, **fields) or rec.with_fields(**fields)

        logger.info("clock-out %s (%s) %s at %s, total %s", employee_key, name, format_date(day), at, rec.total_hours)
        return rec

    # --- reads ---
    def view(self, period: str | None = "") -> AttendanceListing:
        start, end = self.resolve_period(period)
        return AttendanceListing(start, end, list(self._store.list_by_date(start, end)))

    def history(self, employee_key: str, period: str | None = "") -> AttendanceListing:
        start, end = self.resolve_period(period)
        return AttendanceListing(start, end, list(self._store.list_for_employee(employee_key, start, end)))

    def find(self, employee_key: str, day: dt.date) -> AttendanceRecord | None:
        return self._store.find(employee_key, day)

    # --- admin ---
    def set_adjustment(self, employee_key: str, day: dt.date, type: RequestType, hours: str, *,
                       employee_name: str = "") -> AttendanceRecord:
        """Write overtime/undertime hours into an existing row."""
        fields = {type.field: hours}
        if employee_name:
            fields["employee_name"] = employee_name
        with self._locks.hold(employee_key, day):
            rec = self._store.update_fields(employee_key, day, **fields)
        if rec is None:
            raise RecordNotFound(employee_name or employee_key, format_date(day))
        logger.info("%s for %s on %s set to %s", type.value, employee_key, format_date(day), hours)
        return rec

    def edit(self, employee_key: str, employee_name: str, day: dt.date, clock_in: str, clock_out: str = "") -> AttendanceRecord:
        """Overwrite a day's times, creating the row if needed."""
        at_in = canonical_time(clock_in)
        at_out = canonical_time(clock_out) if (clock_out or "").strip() else ""
        if at_out and clock_minutes(at_out) < clock_minutes(at_in):
            raise ClockOutBeforeClockIn(at_in, at_out)
        name = employee_name or employee_key
        fields = {
            "employee_name": name,
            "clock_in": at_in,
            "clock_out": at_out,
            "total_hours": calculate_total_hours(at_in, at_out),
        }

        with self._locks.hold(employee_key, day):
            self._store.ensure_segment(day.year)
            rec = self._store.update_fields(employee_key, day, **fields)
            if rec is None:
                rec = AttendanceRecord(employee_key=employee_key, date=day, **fields)
                self._store.append(rec)

        logger.info("edited %s on %s: %s - %s", employee_key, format_date(day), at_in, at_out or "-")
        return rec
