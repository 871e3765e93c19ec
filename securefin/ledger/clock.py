"""Commit timestamps for ledger records."""

from datetime import datetime
from typing import Callable, Optional

from securefin.models.ledger import utc_now


class LedgerClock:
    """
    Hands out timestamps that never go backwards, even if the wall clock
    does. Records stamped in commit order sort in commit order.
    """

    def __init__(self, time_source: Callable[[], datetime] = utc_now):
        self._time_source = time_source
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        current = self._time_source()
        if self._last is not None and current < self._last:
            current = self._last
        self._last = current
        return current
