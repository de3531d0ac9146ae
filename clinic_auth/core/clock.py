"""Wall-clock abstraction shared by token issuance and lockout bookkeeping."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current time as integer epoch seconds."""

    def now(self) -> int:
        """Return current UTC time in epoch seconds."""


class SystemClock:
    """Clock backed by the process wall clock."""

    def now(self) -> int:
        return int(time.time())
