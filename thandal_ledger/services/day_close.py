"""End-of-day close: finalize unresolved repayments and roll collections into capital"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from thandal_ledger.domain.exceptions import DayAlreadyClosedError
from thandal_ledger.domain.models import DayCloseResult, RepaymentStatus
from thandal_ledger.infrastructure.database.repositories import DayCloseRepository, RepaymentRepository
from thandal_ledger.infrastructure.observability.logging import log_day_close
from thandal_ledger.infrastructure.observability.metrics import record_day_close
from thandal_ledger.services.capital import CapitalLedger
from thandal_ledger.utils.clock import Clock

logger = logging.getLogger(__name__)


class DayCloseService:
    """
    Closes one lender's business day inside the caller's transaction.

    Steps:
    1. Claim (lender, today) in day_close; the unique constraint makes a
       concurrent second close fail instead of double-counting
    2. Mark every Unpaid row due on or before today (Active loans) as Missed;
       pending balances are untouched
    3. Sum every paid row not yet counted by an earlier close (today, plus
       backdated payments and days that were never closed), stamp them with
       this close and add the sum to idle capital
    4. Store the counts on the day_close row

    Running it again on the same day returns the stored collection total with
    missed_count=0 and changes nothing.
    """

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.day_closes = DayCloseRepository(db)
        self.repayments = RepaymentRepository(db)
        self.capital = CapitalLedger(db, clock)

    def close_day(self, lender_id: str, request_id: Optional[str] = None) -> DayCloseResult:
        today = self.clock.today()

        existing = self.day_closes.get_day_close(lender_id, today)
        if existing is not None:
            result = DayCloseResult(
                business_date=today,
                missed_count=0,
                collected_total_paise=existing.collected_paise,
                already_closed=True,
            )
            record_day_close(0, existing.collected_paise, already_closed=True)
            log_day_close(lender_id, today.isoformat(), 0, existing.collected_paise, True, request_id)
            return result

        try:
            day_close = self.day_closes.create_day_close(lender_id, today, 0, 0, self.clock.now())
        except IntegrityError as e:
            raise DayAlreadyClosedError(f"Day {today.isoformat()} is being closed concurrently for {lender_id}") from e

        unresolved = self.repayments.get_unresolved_through(lender_id, today)
        for row in unresolved:
            row.status = RepaymentStatus.MISSED.value
        self.db.flush()

        settled = self.repayments.get_unsettled_through(lender_id, today)
        for row in settled:
            row.settled_day_close_id = day_close.id
        self.db.flush()

        collected = sum(row.amount_paid_paise for row in settled)
        self.capital.on_day_close(lender_id, collected)

        day_close.missed_count = len(unresolved)
        day_close.collected_paise = collected
        self.db.flush()

        record_day_close(len(unresolved), collected, already_closed=False)
        log_day_close(lender_id, today.isoformat(), len(unresolved), collected, False, request_id)

        return DayCloseResult(
            business_date=today,
            missed_count=len(unresolved),
            collected_total_paise=collected,
            missed_repayment_ids=[str(row.id) for row in unresolved],
        )
