from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from enum import Enum

from .hours import calculate_total_hours


class RequestType(str, Enum):
    OVERTIME = "overtime"
    UNDERTIME = "undertime"

    @property
    def field(self) -> str:
        """AttendanceRecord field an approved request writes into."""
        return "overtime_hours" if self is RequestType.OVERTIME else "undertime_hours"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    OVERWRITTEN = "OVERWRITTEN"


class AttendanceState(str, Enum):
    NO_RECORD = "no_record"
    CLOCKED_IN = "clocked_in"
    CLOCKED_OUT = "clocked_out"


@dataclass
class AttendanceRecord:
    employee_key: str
    employee_name: str
    date: dt.date
    clock_in: str = ""
    clock_out: str = ""
    total_hours: str = ""
    overtime_hours: str = ""
    undertime_hours: str = ""

    @property
    def state(self) -> AttendanceState:
        if self.clock_out:
            return AttendanceState.CLOCKED_OUT
        if self.clock_in:
            return AttendanceState.CLOCKED_IN
        return AttendanceState.NO_RECORD

    def with_fields(self, **fields) -> AttendanceRecord:
        rec = replace(self, **fields)
        if ("clock_in" in fields or "clock_out" in fields) and rec.clock_in and rec.clock_out:
            rec.total_hours = calculate_total_hours(rec.clock_in, rec.clock_out)
        return rec


UPDATABLE_FIELDS = frozenset({
    "employee_name", "clock_in", "clock_out", "total_hours", "overtime_hours", "undertime_hours",
})


@dataclass
class Request:
    request_id: str
    type: RequestType
    employee_key: str
    employee_name: str
    date: dt.date
    hours: str
    reason: str = ""
    status: RequestStatus = RequestStatus.PENDING
    request_time: str = ""
    decided_by: str = ""
    deny_reason: str = ""


@dataclass
class Decision:
    request: Request
    hours_applied: bool = False
    notes: list[str] = field(default_factory=list)
