"""Capital ledger - lender idle cash, outstanding principal and snapshot history"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from thandal_ledger.domain import capital
from thandal_ledger.domain.exceptions import CapitalAlreadyInitializedError, InvalidAmountError
from thandal_ledger.domain.models import CapitalEvent, CapitalPosition
from thandal_ledger.infrastructure.database.models import CapitalSnapshot
from thandal_ledger.infrastructure.database.repositories import (
    CapitalRepository,
    LoanRepository,
    RepaymentRepository,
)
from thandal_ledger.utils.clock import Clock

logger = logging.getLogger(__name__)


class CapitalLedger:
    """
    Appends a capital snapshot on every capital-relevant event.

    pending_loan_paise is never carried forward from the previous snapshot:
    it is recomputed from the lender's Active loans each time, so per-payment
    changes to Loan.pending_paise cannot drift away from the aggregate.
    """

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.snapshots = CapitalRepository(db)
        self.loans = LoanRepository(db)
        self.repayments = RepaymentRepository(db)

    def _idle(self, user_id: str) -> int:
        latest = self.snapshots.get_latest(user_id)
        return latest.idle_capital_paise if latest else 0

    def _append(self, user_id: str, position: CapitalPosition, event: CapitalEvent, note: Optional[str] = None) -> CapitalSnapshot:
        snapshot = self.snapshots.append_snapshot(user_id, self.clock.today(), position, event, note)
        if snapshot.idle_capital_paise < 0:
            logger.warning(
                "Idle capital is negative",
                extra={"user_id": user_id, "idle_capital_paise": snapshot.idle_capital_paise, "event": event.value},
            )
        return snapshot

    def get_position(self, user_id: str) -> CapitalPosition:
        """Current capital: last recorded idle cash, live pending principal, today's collections so far"""
        return CapitalPosition(
            idle_capital_paise=self._idle(user_id),
            pending_loan_paise=self.loans.get_active_pending_total(user_id),
            amount_collected_today_paise=self.repayments.get_collected_on(user_id, self.clock.today()),
        )

    def get_history(self, user_id: str, limit: int = 30) -> List[CapitalSnapshot]:
        return self.snapshots.get_history(user_id, limit)

    def initialize(self, user_id: str, idle_capital_paise: int) -> CapitalSnapshot:
        """Start tracking with the lender's cash in hand; allowed once"""
        if idle_capital_paise < 0:
            raise InvalidAmountError("Initial capital cannot be negative")
        if self.snapshots.get_latest(user_id) is not None:
            raise CapitalAlreadyInitializedError(f"Capital already initialized for {user_id}")

        position = CapitalPosition(
            idle_capital_paise=idle_capital_paise,
            pending_loan_paise=self.loans.get_active_pending_total(user_id),
        )
        return self._append(user_id, position, CapitalEvent.INITIALIZED)

    def on_loan_issued(self, user_id: str, principal_paise: int, upfront_deducted_paise: int) -> CapitalSnapshot:
        """Disbursed cash leaves the idle pool; the new loan must already be flushed"""
        position = capital.after_loan_issued(
            idle_capital_paise=self._idle(user_id),
            principal_paise=principal_paise,
            upfront_deducted_paise=upfront_deducted_paise,
            pending_loan_paise=self.loans.get_active_pending_total(user_id),
        )
        return self._append(user_id, position, CapitalEvent.LOAN_ISSUED)

    def on_loan_registered(self, user_id: str) -> CapitalSnapshot:
        """A migrated loan adds pending principal without moving idle cash"""
        position = CapitalPosition(
            idle_capital_paise=self._idle(user_id),
            pending_loan_paise=self.loans.get_active_pending_total(user_id),
        )
        return self._append(user_id, position, CapitalEvent.LOAN_REGISTERED)

    def on_loan_written_off(self, user_id: str, note: Optional[str] = None) -> CapitalSnapshot:
        """A force-closed or defaulted loan stops counting as pending principal"""
        position = CapitalPosition(
            idle_capital_paise=self._idle(user_id),
            pending_loan_paise=self.loans.get_active_pending_total(user_id),
        )
        return self._append(user_id, position, CapitalEvent.LOAN_WRITTEN_OFF, note)

    def on_day_close(self, user_id: str, collected_paise: int) -> CapitalSnapshot:
        position = capital.after_day_close(
            idle_capital_paise=self._idle(user_id),
            collected_paise=collected_paise,
            pending_loan_paise=self.loans.get_active_pending_total(user_id),
        )
        return self._append(user_id, position, CapitalEvent.DAY_CLOSED)

    def adjust(self, user_id: str, delta_paise: int, note: Optional[str] = None) -> CapitalSnapshot:
        position = capital.after_adjustment(
            idle_capital_paise=self._idle(user_id),
            delta_paise=delta_paise,
            pending_loan_paise=self.loans.get_active_pending_total(user_id),
        )
        return self._append(user_id, position, CapitalEvent.ADJUSTED, note)
