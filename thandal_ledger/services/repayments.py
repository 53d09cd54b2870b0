"""Payment recording, today's collection list and repayment history"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from thandal_ledger.config import settings
from thandal_ledger.domain.classifier import resolve_payment
from thandal_ledger.domain.exceptions import (
    DayAlreadyClosedError,
    InvalidAmountError,
    InvalidDateRangeError,
    LedgerValidationError,
    LoanNotActiveError,
    LoanNotFoundError,
    NoOutstandingRepaymentsError,
    StateConflictError,
)
from thandal_ledger.domain.models import HistoryFilter, LoanStatus, RepaymentStatus
from thandal_ledger.infrastructure.database.models import Borrower, Loan, Repayment
from thandal_ledger.infrastructure.database.repositories import (
    DayCloseRepository,
    LoanRepository,
    PaymentReceiptRepository,
    RepaymentRepository,
)
from thandal_ledger.infrastructure.observability.logging import log_payment
from thandal_ledger.infrastructure.observability.metrics import record_payment
from thandal_ledger.utils.clock import Clock
from thandal_ledger.utils.date_utils import history_window, local_date
from thandal_ledger.utils.ids import parse_uuid


@dataclass
class DueRepayment:
    """Repayment due today joined with what a collector needs to see"""

    repayment: Repayment
    loan: Loan
    borrower: Borrower


@dataclass
class CollectionStatus:
    business_date: date
    amount_collected_today_paise: int
    amount_expected_today_paise: int
    is_closed: bool


class RepaymentService:
    """
    Applies payments to a loan's schedule.

    Payments are matched FIFO: the caller names a loan, never a due date, and
    the earliest Unpaid row of that loan is the one resolved. One payment
    resolves exactly one row.
    """

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.loans = LoanRepository(db)
        self.repayments = RepaymentRepository(db)
        self.receipts = PaymentReceiptRepository(db)
        self.day_closes = DayCloseRepository(db)

    def record_payment(
        self,
        borrower_id,
        loan_id,
        amount_paise: int,
        paid_at: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Repayment:
        """
        Classify a payment against the loan's oldest Unpaid due date.

        Raises:
            InvalidAmountError: amount <= 0
            LedgerValidationError: paid_at lies in the future
            LoanNotFoundError: unknown loan, or loan of another borrower
            LoanNotActiveError: loan Closed or Defaulted
            DayAlreadyClosedError: lender already closed the payment's business day
            NoOutstandingRepaymentsError: every row is resolved
        """
        if amount_paise is None or amount_paise <= 0:
            raise InvalidAmountError("Payment amount must be positive")

        loan_uuid = parse_uuid(loan_id, LoanNotFoundError, "loan id")
        borrower_uuid = parse_uuid(borrower_id, LoanNotFoundError, "borrower id")

        if idempotency_key:
            receipt = self.receipts.get_receipt(idempotency_key)
            if receipt is not None:
                if receipt.loan_id != loan_uuid or receipt.amount_paise != amount_paise:
                    raise StateConflictError("Idempotency key was already used for a different payment")
                return receipt.repayment

        loan = self.loans.get_loan(loan_uuid, for_update=True)
        if loan is None or loan.borrower_id != borrower_uuid:
            raise LoanNotFoundError(f"Loan {loan_id} not found for borrower {borrower_id}")
        if loan.status != LoanStatus.ACTIVE.value:
            raise LoanNotActiveError(f"Loan {loan.id} is {loan.status}")

        now = self.clock.now()
        if paid_at is None:
            paid_at = now
        elif paid_at.tzinfo is None:
            paid_at = paid_at.replace(tzinfo=now.tzinfo)
        if paid_at > now:
            raise LedgerValidationError("Payment timestamp cannot be in the future")
        paid_on = local_date(paid_at, settings.timezone)

        if self.day_closes.get_day_close(loan.issued_by_id, paid_on) is not None:
            raise DayAlreadyClosedError(f"Collections for {paid_on.isoformat()} are already closed")

        row = self.repayments.get_earliest_unpaid(loan.id)
        if row is None:
            raise NoOutstandingRepaymentsError(f"Loan {loan.id} has no outstanding repayments")

        outcome = resolve_payment(
            current_status=RepaymentStatus(row.status),
            due_date=row.due_date,
            expected_paise=row.amount_due_paise,
            amount_paise=amount_paise,
            paid_on=paid_on,
            pending_paise=loan.pending_paise,
        )

        row.status = outcome.status.value
        row.amount_paid_paise = outcome.applied_paise
        row.paid_at = paid_at
        row.paid_on = paid_on

        loan.pending_paise = outcome.pending_after_paise
        if loan.pending_paise == 0:
            loan.status = LoanStatus.CLOSED.value
            loan.closed_at = now

        if idempotency_key:
            self.receipts.create_receipt(idempotency_key, loan.id, row.id, amount_paise)
        self.db.flush()

        record_payment(outcome.status.value)
        log_payment(
            loan_id=str(loan.id),
            repayment_id=str(row.id),
            status=outcome.status.value,
            applied_paise=outcome.applied_paise,
            pending_after_paise=outcome.pending_after_paise,
            request_id=request_id,
        )
        return row

    def get_today_due(self, lender_id: str) -> List[DueRepayment]:
        """Every row due today on the lender's Active loans, paid or not"""
        rows = self.repayments.get_due_on(lender_id, self.clock.today())
        return [DueRepayment(repayment=r, loan=l, borrower=b) for r, l, b in rows]

    def get_collection_status(self, lender_id: str) -> CollectionStatus:
        today = self.clock.today()
        return CollectionStatus(
            business_date=today,
            amount_collected_today_paise=self.repayments.get_collected_on(lender_id, today),
            amount_expected_today_paise=self.repayments.get_expected_on(lender_id, today),
            is_closed=self.day_closes.get_day_close(lender_id, today) is not None,
        )

    def get_repayment_history(
        self,
        lender_id: str,
        filter_type: str = HistoryFilter.WEEK.value,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        min_amount_paise: Optional[int] = None,
        max_amount_paise: Optional[int] = None,
    ) -> Dict[str, List[dict]]:
        """
        Collected payments grouped by business date, newest date first.

        Filters:
        - 24h / week / month: window ending today
        - custom: requires both start_date and end_date (inclusive)

        Returns:
            {"YYYY-MM-DD": [{"borrower_id", "borrower_name", "amount_paid_paise"}, ...]}
        """
        try:
            filter_type = HistoryFilter(filter_type)
        except ValueError as e:
            raise InvalidDateRangeError(
                f"Invalid filter type {filter_type!r}. Use '24h', 'week', 'month', or 'custom'."
            ) from e

        if filter_type == HistoryFilter.CUSTOM:
            if start_date is None or end_date is None:
                raise InvalidDateRangeError("Custom date range requires startDate and endDate.")
            start, end = start_date, end_date
        else:
            start, end = history_window(filter_type.value, self.clock.today())

        if start > end:
            raise InvalidDateRangeError("startDate must not be after endDate")
        if min_amount_paise is not None and max_amount_paise is not None and min_amount_paise > max_amount_paise:
            raise InvalidDateRangeError("minAmount must not exceed maxAmount")

        grouped: Dict[str, List[dict]] = {}
        for row, borrower in self.repayments.get_paid_between(lender_id, start, end, min_amount_paise, max_amount_paise):
            grouped.setdefault(row.paid_on.isoformat(), []).append(
                {
                    "borrower_id": str(borrower.id),
                    "borrower_name": borrower.name,
                    "amount_paid_paise": row.amount_paid_paise,
                }
            )
        return dict(sorted(grouped.items(), reverse=True))
