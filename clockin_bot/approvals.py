from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from .errors import InvalidFormat, RecordNotFound, RequestNotPending, UpstreamUnavailable
from .hours import format_hours, parse_hours
from .locks import KeyedLocks
from .models import Decision, Request, RequestStatus, RequestType
from .notify import Notifier
from .service import AttendanceService
from .store import RequestStore
from .timeparse import format_date

logger = logging.getLogger(__name__)

HOURS_EXAMPLE = "2"


@dataclass
class Submission:
    request: Request
    overwritten: list[Request] = field(default_factory=list)
    notified: bool = True


def normalize_hours(text: str) -> str:
    value = parse_hours(text)
    if value is None:
        raise InvalidFormat("hours (more than 0, at most 24)", HOURS_EXAMPLE)
    return format_hours(value)


class ApprovalWorkflow:
    """Overtime/undertime requests: submit -> PENDING -> APPROVED / DENIED.

    A new request for the same (type, employee, date) marks the pending one
    OVERWRITTEN. Approved hours are written into the attendance row.
    """

    def __init__(
        self,
        requests: RequestStore,
        attendance: AttendanceService,
        notifier: Notifier,
        approver_ids: Iterable[str] | Callable[[], Iterable[str]] = (),
        *,
        locks: KeyedLocks | None = None,
        new_id: Callable[[], str] | None = None,
    ):
        self._requests = requests
        self._attendance = attendance
        self._notifier = notifier
        self._approvers = approver_ids
        self._locks = locks or KeyedLocks()
        self._new_id = new_id or (lambda: uuid.uuid4().hex)

    def approvers(self) -> list[str]:
        src = self._approvers() if callable(self._approvers) else self._approvers
        return [a for a in src if a]

    def _now_iso(self) -> str:
        return self._attendance.now().isoformat(timespec="seconds")

    # --- submit ---
    def submit(self, type: RequestType, employee_key: str, employee_name: str, day: dt.date,
               hours: str, reason: str = "") -> Submission:
        hours = normalize_hours(hours)
        with self._locks.hold(type.value, employee_key, day):
            overwritten = []
            for old in self._requests.find(type=type, employee_key=employee_key, start=day, end=day,
                                           status=RequestStatus.PENDING):
                if self._requests.set_status(old.request_id, RequestStatus.OVERWRITTEN):
                    overwritten.append(replace(old, status=RequestStatus.OVERWRITTEN))
            req = Request(
                request_id=self._new_id(),
                type=type,
                employee_key=employee_key,
                employee_name=employee_name or employee_key,
                date=day,
                hours=hours,
                reason=(reason or "").strip(),
                request_time=self._now_iso(),
            )
            self._requests.append(req)

        logger.info("%s request %s by %s for %s (%sh), %d overwritten",
                    type.value, req.request_id, employee_key, format_date(day), hours, len(overwritten))
        sub = Submission(req, overwritten)
        try:
            self._notifier.request_submitted(req, self.approvers())
        except UpstreamUnavailable:
            logger.error("could not notify approvers about request %s", req.request_id)
            sub.notified = False
        return sub

    # --- approve / deny ---
    def decide(self, request_id: str, approved: bool, decided_by: str, deny_reason: str = "") -> Decision:
        req = self._requests.get(request_id)
        if req is None or req.status != RequestStatus.PENDING:
            raise RequestNotPending()

        status = RequestStatus.APPROVED if approved else RequestStatus.DENIED
        reason = "" if approved else (deny_reason or "").strip()
        notes = []
        hours_applied = False
        # hours first: a failed write must leave the request PENDING
        with self._locks.hold(req.type.value, req.employee_key, req.date):
            current = self._requests.get(request_id)
            if current is None or current.status != RequestStatus.PENDING:
                raise RequestNotPending()
            if approved:
                try:
                    self._attendance.set_adjustment(req.employee_key, req.date, req.type, req.hours,
                                                    employee_name=req.employee_name)
                    hours_applied = True
                except RecordNotFound as e:
                    logger.warning("approved request %s has no attendance row to update", request_id)
                    notes.append(f"{e} The approval is recorded but the hours were not written.")
            if not self._requests.set_status(request_id, status, decided_by=decided_by, deny_reason=reason):
                raise RequestNotPending()
        req = replace(current, status=status, decided_by=decided_by, deny_reason=reason)
        decision = Decision(req, hours_applied, notes)
        logger.info("request %s %s by %s", request_id, status.value, decided_by)

        try:
            self._notifier.request_decided(req, decision.hours_applied)
        except UpstreamUnavailable:
            logger.error("could not notify %s about request %s", req.employee_key, request_id)
            decision.notes.append(f"Could not notify {req.employee_name} about the decision.")
        return decision

    # --- admin direct set keeps an audit row ---
    def record_direct(self, type: RequestType, employee_key: str, employee_name: str, day: dt.date,
                      hours: str, reason: str, decided_by: str) -> Request:
        req = Request(
            request_id=self._new_id(),
            type=type,
            employee_key=employee_key,
            employee_name=employee_name or employee_key,
            date=day,
            hours=hours,
            reason=(reason or "").strip(),
            status=RequestStatus.APPROVED,
            request_time=self._now_iso(),
            decided_by=decided_by,
        )
        self._requests.append(req)
        return req

    def list_for(self, employee_key: str, start: dt.date, end: dt.date) -> list[Request]:
        rows = list(self._requests.find(employee_key=employee_key, start=start, end=end))
        rows.sort(key=lambda r: (r.date, r.request_time))
        return rows

    def pending(self) -> list[Request]:
        return list(self._requests.find(status=RequestStatus.PENDING))
