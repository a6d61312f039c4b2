from datetime import datetime, timezone


class Clock:
    """Source of the current time. Swap it out to freeze time in tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = Clock()
