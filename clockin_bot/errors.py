import logging

logger = logging.getLogger(__name__)


class AttendanceError(Exception):
    """Base for every failure that is reported back to the caller.

    ``str(err)`` is the user-facing message.
    """


class InvalidFormat(AttendanceError):
    def __init__(self, what: str, example: str = ""):
        msg = f"Invalid {what}."
        if example:
            msg += f" Example: `{example}`"
        super().__init__(msg)
        self.what = what
        self.example = example


class AlreadyClockedIn(AttendanceError):
    def __init__(self, at: str):
        super().__init__(f"You already clocked in today at *{at}*.")
        self.at = at


class AlreadyClockedOut(AttendanceError):
    def __init__(self, at: str):
        super().__init__(f"You already clocked out today at *{at}*.")
        self.at = at


class NotClockedIn(AttendanceError):
    def __init__(self, date_text: str = ""):
        when = f" on {date_text}" if date_text else " today"
        super().__init__(f"You have not clocked in{when}. Use `/clockin` first.")


class ClockOutBeforeClockIn(AttendanceError):
    def __init__(self, clock_in: str, clock_out: str):
        super().__init__(f"Clock-out time {clock_out} is earlier than your clock-in time {clock_in}.")
        self.clock_in = clock_in
        self.clock_out = clock_out


class Unauthorized(AttendanceError):
    def __init__(self, msg: str = "This command is for admins only."):
        super().__init__(msg)


class UpstreamUnavailable(AttendanceError):
    def __init__(self, msg: str = "The attendance sheet is not reachable right now. Please try again later."):
        super().__init__(msg)


class RequestNotPending(AttendanceError):
    def __init__(self, msg: str = "This request was already processed."):
        super().__init__(msg)


class RecordNotFound(AttendanceError):
    def __init__(self, employee: str, date_text: str):
        super().__init__(f"No attendance record for *{employee}* on {date_text}.")
        self.employee = employee
        self.date_text = date_text


class RequestInProgress(AttendanceError):
    def __init__(self):
        super().__init__("Your previous command is still being processed. Please try again in a moment.")


# --- convert an exception into a message that is safe to show in Slack ---
def human_error(e: Exception) -> str:
    if isinstance(e, AttendanceError):
        return str(e)
    s = str(e).upper()
    if "PERMISSION" in s or "INSUFFICIENT" in s:
        return "Permission error. Check that the sheet is shared with the service account."
    if "RATE_LIMIT" in s or "429" in s:
        return "Too many requests. Please try again in a moment."
    logger.error("unexpected error: %r", e)
    return "Something went wrong while processing your command. Please try again later."
