from .timeparse import clock_minutes

LUNCH_START = 12 * 60
LUNCH_END = 13 * 60
LUNCH_MINUTES = 60


def format_duration(minutes: int) -> str:
    minutes = max(0, int(minutes))
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


# --- worked time between clock-in and clock-out, lunch deducted ---
def worked_minutes(in_min: int, out_min: int) -> int:
    # negative intervals clamp to zero; no overnight wrap
    duration = out_min - in_min
    if in_min < LUNCH_END and out_min > LUNCH_START:
        duration -= LUNCH_MINUTES
    return max(0, duration)


def calculate_total_hours(clock_in: str | None, clock_out: str | None) -> str:
    """``HH:MM`` worked between two clock texts, or "" if either is missing."""
    if not clock_in or not clock_out:
        return ""
    in_min = clock_minutes(clock_in)
    out_min = clock_minutes(clock_out)
    if in_min is None or out_min is None:
        return ""
    return format_duration(worked_minutes(in_min, out_min))


def parse_hours(text: str) -> float | None:
    """Hours for overtime/undertime: ``2``, ``1.5``, ``2h``, ``1:30``."""
    s = (text or "").strip().lower()
    for suffix in ("hours", "hrs", "hr", "h"):
        if s.endswith(suffix):
            s = s[: -len(suffix)].strip()
            break
    try:
        if ":" in s:
            h, m = (int(p) for p in s.split(":", 1))
            if not 0 <= m < 60:
                return None
            value = h + m / 60
        else:
            value = float(s)
    except ValueError:
        return None
    if not 0 < value <= 24:
        return None
    return value


def format_hours(value: float) -> str:
    return f"{round(value, 2):g}"
