import logging
import time


class RateLimitFilter(logging.Filter):
    """
    Rate limit filter to prevent log spam.
    Only allows the same log message once per period.
    """

    def __init__(self, period_sec: float = 2.0):
        super().__init__()
        self.period = period_sec
        self._last: dict[tuple, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        key = (record.name, record.levelno, record.getMessage())
        now = time.monotonic()
        last = self._last.get(key)
        if last is not None and now - last < self.period:
            return False
        self._last[key] = now
        return True


def install_rate_limit(logger: logging.Logger, period_sec: float = 30.0) -> RateLimitFilter:
    """Attach a RateLimitFilter once per logger"""
    for existing in logger.filters:
        if isinstance(existing, RateLimitFilter):
            return existing
    rate_filter = RateLimitFilter(period_sec=period_sec)
    logger.addFilter(rate_filter)
    return rate_filter
