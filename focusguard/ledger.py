from __future__ import annotations

import logging
from datetime import date

from .database import FocusGuardDatabase
from .models import ExtraTimeLedgerEntry

logger = logging.getLogger(__name__)


class UsageLedger:
    """Earned and used bonus minutes per app per day.

    Both mutators are additive increments executed by the store in a single
    statement, so concurrent challenge submissions and deductions never lose
    each other's contribution.
    """

    def __init__(self, db: FocusGuardDatabase):
        self._db = db

    def entry(self, app_id: str, day: date) -> ExtraTimeLedgerEntry:
        found = self._db.get_extra_time(app_id, day)
        if found is None:
            return ExtraTimeLedgerEntry(app_id=app_id, day=day)
        return found

    def remaining(self, app_id: str, day: date) -> int:
        return self.entry(app_id, day).remaining

    def add_earned(self, app_id: str, day: date, minutes: int) -> None:
        if minutes <= 0:
            return
        self._db.add_extra_earned(app_id, day, minutes)
        logger.info(f"ledger earned app={app_id} day={day} minutes={minutes}")

    def add_used(self, app_id: str, day: date, minutes: int) -> None:
        if minutes <= 0:
            return
        if not self._db.add_extra_used(app_id, day, minutes):
            logger.debug(f"ledger use ignored app={app_id} day={day}: nothing earned yet")
            return
        logger.info(f"ledger used app={app_id} day={day} minutes={minutes}")
