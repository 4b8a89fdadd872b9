"""Clock abstractions for testable time management."""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol


class Clock(Protocol):
    """Clock interface for testable time management."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class UTCClock:
    """Default clock implementation using the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


Sleeper = Callable[[float], Awaitable[None]]

default_sleeper: Sleeper = asyncio.sleep
