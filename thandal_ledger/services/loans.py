"""Loan issuance, migration and lifecycle operations"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, List

from sqlalchemy.orm import Session

from thandal_ledger.domain.exceptions import (
    BorrowerNotFoundError,
    InvalidAmountError,
    InvalidScheduleError,
    LoanNotActiveError,
    LoanNotFoundError,
)
from thandal_ledger.domain.installments import generate_repayment_schedule, normalize_weekdays
from thandal_ledger.domain.models import PAID_STATUSES, LoanStatus, RepaymentStatus
from thandal_ledger.infrastructure.database.models import Loan, Repayment
from thandal_ledger.infrastructure.database.repositories import (
    BorrowerRepository,
    LoanRepository,
    RepaymentRepository,
)
from thandal_ledger.infrastructure.observability.metrics import loans_issued_counter
from thandal_ledger.services.capital import CapitalLedger
from thandal_ledger.utils.clock import Clock
from thandal_ledger.utils.date_utils import weekday_names
from thandal_ledger.utils.ids import parse_uuid

logger = logging.getLogger(__name__)


@dataclass
class LoanDetails:
    """Loan with its repayment statistics and due dates grouped by status"""

    loan: Loan
    repayments: List[Repayment]
    repayment_stats: Dict[str, int]
    repayment_dates_by_status: Dict[str, List[date]]


def _validate_terms(principal_paise: int, upfront_deducted_paise: int, daily_repayment_paise: int, days_to_repay: List[str]) -> List[str]:
    """Reject unusable loan terms; returns canonical weekday names"""
    if principal_paise <= 0:
        raise InvalidAmountError("Principal must be positive")
    if daily_repayment_paise <= 0:
        raise InvalidAmountError("Daily repayment amount must be positive")
    if upfront_deducted_paise < 0 or upfront_deducted_paise >= principal_paise:
        raise InvalidAmountError("Upfront deduction must be at least 0 and below the principal")
    return weekday_names(normalize_weekdays(days_to_repay))


def summarize_repayments(repayments: List[Repayment]) -> Dict[str, int]:
    """Counts per status plus expected vs collected totals"""
    stats = {status.value: 0 for status in RepaymentStatus}
    for row in repayments:
        stats[row.status] += 1
    stats["total_installments"] = len(repayments)
    stats["total_due_paise"] = sum(r.amount_due_paise for r in repayments)
    stats["total_paid_paise"] = sum(
        r.amount_paid_paise for r in repayments if RepaymentStatus(r.status) in PAID_STATUSES
    )
    return stats


class LoanService:
    """Creates loans with their schedules and moves them through Active -> Closed/Defaulted"""

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.borrowers = BorrowerRepository(db)
        self.loans = LoanRepository(db)
        self.repayments = RepaymentRepository(db)
        self.capital = CapitalLedger(db, clock)

    def _require_borrower(self, borrower_id):
        borrower_uuid = parse_uuid(borrower_id, BorrowerNotFoundError, "borrower id")
        borrower = self.borrowers.get_borrower(borrower_uuid)
        if borrower is None:
            raise BorrowerNotFoundError(f"Borrower {borrower_id} not found")
        return borrower

    def get_loan(self, loan_id, for_update: bool = False) -> Loan:
        loan_uuid = parse_uuid(loan_id, LoanNotFoundError, "loan id")
        loan = self.loans.get_loan(loan_uuid, for_update=for_update)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def issue_loan(
        self,
        lender_id: str,
        borrower_id,
        principal_paise: int,
        upfront_deducted_paise: int,
        daily_repayment_paise: int,
        days_to_repay: List[str],
    ) -> Loan:
        """
        Issue a new loan: schedule, repayment rows and capital move in one transaction.

        The first due date is the first selected weekday after today.
        """
        days = _validate_terms(principal_paise, upfront_deducted_paise, daily_repayment_paise, days_to_repay)
        borrower = self._require_borrower(borrower_id)

        issued_on = self.clock.today()
        schedule = generate_repayment_schedule(issued_on, principal_paise, daily_repayment_paise, days)

        loan = self.loans.create_loan(
            borrower_id=borrower.id,
            issued_by_id=lender_id,
            principal_paise=principal_paise,
            upfront_deducted_paise=upfront_deducted_paise,
            daily_repayment_paise=daily_repayment_paise,
            pending_paise=principal_paise,
            days_to_repay=days,
            issued_at=issued_on,
            due_date=schedule[-1].due_date,
        )
        self.repayments.create_schedule(loan, schedule)
        self.capital.on_loan_issued(lender_id, principal_paise, upfront_deducted_paise)

        loans_issued_counter.labels(origin="new").inc()
        logger.info(
            "Loan issued",
            extra={
                "loan_id": str(loan.id),
                "user_id": lender_id,
                "principal_paise": principal_paise,
                "installments": len(schedule),
            },
        )
        return loan

    def register_existing_loan(
        self,
        lender_id: str,
        borrower_id,
        principal_paise: int,
        upfront_deducted_paise: int,
        daily_repayment_paise: int,
        days_to_repay: List[str],
        issued_at: date,
        pending_paise: int,
    ) -> Loan:
        """
        Bring a loan that predates the system under ledger control.

        Only the still-pending amount is scheduled, starting after today;
        what was recovered earlier is kept on the loan so the pending
        invariant still holds. Idle capital does not move.
        """
        days = _validate_terms(principal_paise, upfront_deducted_paise, daily_repayment_paise, days_to_repay)
        if pending_paise <= 0 or pending_paise > principal_paise:
            raise InvalidAmountError("Pending amount must be positive and not exceed the principal")

        today = self.clock.today()
        if issued_at > today:
            raise InvalidScheduleError("Issue date of an existing loan cannot be in the future")

        borrower = self._require_borrower(borrower_id)
        schedule = generate_repayment_schedule(today, pending_paise, daily_repayment_paise, days)

        loan = self.loans.create_loan(
            borrower_id=borrower.id,
            issued_by_id=lender_id,
            principal_paise=principal_paise,
            upfront_deducted_paise=upfront_deducted_paise,
            daily_repayment_paise=daily_repayment_paise,
            pending_paise=pending_paise,
            recovered_before_registration_paise=principal_paise - pending_paise,
            days_to_repay=days,
            issued_at=issued_at,
            due_date=schedule[-1].due_date,
        )
        self.repayments.create_schedule(loan, schedule)
        self.capital.on_loan_registered(lender_id)

        loans_issued_counter.labels(origin="existing").inc()
        logger.info(
            "Existing loan registered",
            extra={"loan_id": str(loan.id), "user_id": lender_id, "pending_paise": pending_paise},
        )
        return loan

    def get_loan_details(self, loan_id) -> LoanDetails:
        loan = self.get_loan(loan_id)
        repayments = self.repayments.get_by_loan(loan.id)

        dates_by_status: Dict[str, List[date]] = defaultdict(list)
        for row in repayments:
            dates_by_status[row.status].append(row.due_date)

        return LoanDetails(
            loan=loan,
            repayments=repayments,
            repayment_stats=summarize_repayments(repayments),
            repayment_dates_by_status=dict(dates_by_status),
        )

    def _end_loan(self, loan_id, status: LoanStatus) -> Loan:
        loan = self.get_loan(loan_id, for_update=True)
        if loan.status != LoanStatus.ACTIVE.value:
            raise LoanNotActiveError(f"Loan {loan.id} is already {loan.status}")

        loan.status = status.value
        loan.closed_at = self.clock.now()
        self.db.flush()

        self.capital.on_loan_written_off(loan.issued_by_id, note=f"{status.value} loan {loan.id}")
        logger.info(
            "Loan ended by lender",
            extra={"loan_id": str(loan.id), "loan_status": status.value, "pending_paise": loan.pending_paise},
        )
        return loan

    def close_loan(self, loan_id) -> Loan:
        """Lender force-closes a loan; unpaid balance stops counting as pending capital"""
        return self._end_loan(loan_id, LoanStatus.CLOSED)

    def mark_defaulted(self, loan_id) -> Loan:
        return self._end_loan(loan_id, LoanStatus.DEFAULTED)
