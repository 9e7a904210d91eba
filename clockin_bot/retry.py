import logging
import random
import time

from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 5
DEFAULT_BASE = 0.2
DEFAULT_MAX_SLEEP = 2.0

TRANSIENT_STATUS = frozenset({408, 429, 500, 502, 503, 504})


def status_of(e: BaseException) -> int | None:
    """HTTP status carried by an API error's ``response``, if any."""
    return getattr(getattr(e, "response", None), "status_code", None)


# --- exponential backoff retry ---
def with_retry(fn, retries=DEFAULT_RETRIES, base=DEFAULT_BASE, max_sleep=DEFAULT_MAX_SLEEP,
               retry_on: tuple[type[BaseException], ...] = (Exception,), retry_if=None, what: str = "call"):
    """
    Call ``fn`` until it succeeds, at most ``retries`` times. Guards Sheets/Slack
    calls against network errors and 429s.

    Only exceptions in ``retry_on`` for which ``retry_if(e)`` holds (when given)
    are retried; anything else propagates at once. When the attempts run out
    the last error is chained into UpstreamUnavailable.
    """
    last = None
    for i in range(max(1, retries)):
        try:
            return fn()
        except retry_on as e:
            if retry_if is not None and not retry_if(e):
                logger.warning("%s failed permanently: %r", what, e)
                raise
            last = e
            if i == retries - 1:
                break
            sleep = min(max_sleep, base * (2 ** i) + random.uniform(0, base))
            logger.warning("%s failed (attempt %d/%d): %r; retrying in %.2fs", what, i + 1, retries, e, sleep)
            time.sleep(sleep)
    logger.error("%s failed after %d attempts: %r", what, retries, last)
    raise UpstreamUnavailable() from last


class Retrying:
    """Retry settings bound once and reused by a store or notifier."""

    def __init__(self, retries=DEFAULT_RETRIES, base=DEFAULT_BASE, max_sleep=DEFAULT_MAX_SLEEP,
                 retry_on: tuple[type[BaseException], ...] = (Exception,), retry_if=None):
        self.retries = retries
        self.base = base
        self.max_sleep = max_sleep
        self.retry_on = retry_on
        self.retry_if = retry_if

    def __call__(self, fn, what: str = "call"):
        return with_retry(fn, retries=self.retries, base=self.base, max_sleep=self.max_sleep,
                          retry_on=self.retry_on, retry_if=self.retry_if, what=what)
