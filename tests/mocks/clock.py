"""Manual clock for deterministic TTL tests."""


class ManualClock:
    """Clock whose time only moves when ``advance`` is called.

    Example:
        >>> clock = ManualClock()
        >>> cache = TTLCache(ttl_seconds=60, clock=clock)
        >>> clock.advance(61)  # every entry is now expired
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds
