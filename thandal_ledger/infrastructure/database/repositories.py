"""Data access layer for ledger entities"""

import uuid
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
from thandal_ledger.infrastructure.database.models import (
    Borrower,
    CapitalSnapshot,
    DayClose,
    Loan,
    PaymentReceipt,
    Repayment,
    RiskThreshold,
)
from thandal_ledger.domain.models import (
    PAID_STATUSES,
    CapitalEvent,
    CapitalPosition,
    LoanStatus,
    RepaymentStatus,
    ScheduledInstallment,
)

_PAID_VALUES = [s.value for s in PAID_STATUSES]


class BorrowerRepository:
    """Repository for borrower lookups"""

    def __init__(self, db: Session):
        self.db = db

    def create_borrower(self, name: str, phone_number: Optional[str] = None) -> Borrower:
        borrower = Borrower(name=name, phone_number=phone_number)
        self.db.add(borrower)
        self.db.flush()
        return borrower

    def get_borrower(self, borrower_id: uuid.UUID) -> Optional[Borrower]:
        return self.db.get(Borrower, borrower_id)


class LoanRepository:
    """Repository for loans"""

    def __init__(self, db: Session):
        self.db = db

    def create_loan(
        self,
        borrower_id: uuid.UUID,
        issued_by_id: str,
        principal_paise: int,
        upfront_deducted_paise: int,
        daily_repayment_paise: int,
        pending_paise: int,
        days_to_repay: List[str],
        issued_at: date,
        due_date: date,
        recovered_before_registration_paise: int = 0,
    ) -> Loan:
        """Persist a new Active loan"""
        loan = Loan(
            borrower_id=borrower_id,
            issued_by_id=issued_by_id,
            principal_paise=principal_paise,
            upfront_deducted_paise=upfront_deducted_paise,
            daily_repayment_paise=daily_repayment_paise,
            pending_paise=pending_paise,
            recovered_before_registration_paise=recovered_before_registration_paise,
            days_to_repay=days_to_repay,
            issued_at=issued_at,
            due_date=due_date,
            status=LoanStatus.ACTIVE.value,
        )
        self.db.add(loan)
        self.db.flush()  # Get ID without committing
        return loan

    def get_loan(self, loan_id: uuid.UUID, for_update: bool = False) -> Optional[Loan]:
        """Fetch loan; for_update takes a row lock so mutations on one loan serialize"""
        query = self.db.query(Loan).filter(Loan.id == loan_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_loan_statuses_for_borrower(self, borrower_id: uuid.UUID) -> List[LoanStatus]:
        rows = self.db.query(Loan.status).filter(Loan.borrower_id == borrower_id).all()
        return [LoanStatus(status) for (status,) in rows]

    def get_active_pending_total(self, issued_by_id: str) -> int:
        """Sum of pending principal over the lender's Active loans"""
        total = (
            self.db.query(func.coalesce(func.sum(Loan.pending_paise), 0))
            .filter(Loan.issued_by_id == issued_by_id, Loan.status == LoanStatus.ACTIVE.value)
            .scalar()
        )
        return int(total)

    def get_lenders_to_close(self, day: date) -> List[str]:
        """Lenders with Active loans or with collected cash no day-close has counted yet"""
        active = self.db.query(Loan.issued_by_id).filter(Loan.status == LoanStatus.ACTIVE.value)
        collected = (
            self.db.query(Loan.issued_by_id)
            .join(Repayment, Repayment.loan_id == Loan.id)
            .filter(
                Repayment.status.in_(_PAID_VALUES),
                Repayment.paid_on <= day,
                Repayment.settled_day_close_id.is_(None),
            )
        )
        rows = active.union(collected).all()
        return sorted(user_id for (user_id,) in rows)


class RepaymentRepository:
    """Repository for scheduled repayment rows"""

    def __init__(self, db: Session):
        self.db = db

    def create_schedule(self, loan: Loan, installments: Iterable[ScheduledInstallment]) -> List[Repayment]:
        """Bulk-create Unpaid rows, one per due date"""
        rows = [
            Repayment(
                loan_id=loan.id,
                borrower_id=loan.borrower_id,
                due_date=inst.due_date,
                amount_due_paise=inst.amount_paise,
                amount_paid_paise=0,
                status=RepaymentStatus.UNPAID.value,
            )
            for inst in installments
        ]
        self.db.add_all(rows)
        self.db.flush()
        return rows

    def get_earliest_unpaid(self, loan_id: uuid.UUID) -> Optional[Repayment]:
        """Oldest outstanding obligation of a loan (FIFO payment target)"""
        return (
            self.db.query(Repayment)
            .filter(Repayment.loan_id == loan_id, Repayment.status == RepaymentStatus.UNPAID.value)
            .order_by(Repayment.due_date.asc())
            .with_for_update()
            .first()
        )

    def get_by_loan(self, loan_id: uuid.UUID) -> List[Repayment]:
        return (
            self.db.query(Repayment)
            .filter(Repayment.loan_id == loan_id)
            .order_by(Repayment.due_date.asc())
            .all()
        )

    def get_by_borrower(self, borrower_id: uuid.UUID) -> List[Repayment]:
        return (
            self.db.query(Repayment)
            .filter(Repayment.borrower_id == borrower_id)
            .order_by(Repayment.due_date.asc())
            .all()
        )

    def get_due_on(self, issued_by_id: str, day: date) -> List[Tuple[Repayment, Loan, Borrower]]:
        """Rows due on a day for the lender's Active loans, with loan and borrower for display"""
        return (
            self.db.query(Repayment, Loan, Borrower)
            .join(Loan, Repayment.loan_id == Loan.id)
            .join(Borrower, Repayment.borrower_id == Borrower.id)
            .filter(
                Loan.issued_by_id == issued_by_id,
                Loan.status == LoanStatus.ACTIVE.value,
                Repayment.due_date == day,
            )
            .order_by(Borrower.name.asc(), Repayment.due_date.asc())
            .all()
        )

    def get_unresolved_through(self, issued_by_id: str, day: date) -> List[Repayment]:
        """Unpaid rows due on or before a day, on the lender's Active loans, locked"""
        return (
            self.db.query(Repayment)
            .join(Loan, Repayment.loan_id == Loan.id)
            .filter(
                Loan.issued_by_id == issued_by_id,
                Loan.status == LoanStatus.ACTIVE.value,
                Repayment.status == RepaymentStatus.UNPAID.value,
                Repayment.due_date <= day,
            )
            .order_by(Repayment.due_date.asc())
            .with_for_update(of=Repayment)
            .all()
        )

    def get_collected_on(self, issued_by_id: str, day: date) -> int:
        """Amount applied by payments whose business date is the given day"""
        total = (
            self.db.query(func.coalesce(func.sum(Repayment.amount_paid_paise), 0))
            .join(Loan, Repayment.loan_id == Loan.id)
            .filter(
                Loan.issued_by_id == issued_by_id,
                Repayment.paid_on == day,
                Repayment.status.in_(_PAID_VALUES),
            )
            .scalar()
        )
        return int(total)

    def get_unsettled_through(self, issued_by_id: str, day: date) -> List[Repayment]:
        """Paid rows with paid_on on or before a day whose cash no day-close has counted yet, locked"""
        return (
            self.db.query(Repayment)
            .join(Loan, Repayment.loan_id == Loan.id)
            .filter(
                Loan.issued_by_id == issued_by_id,
                Repayment.status.in_(_PAID_VALUES),
                Repayment.paid_on <= day,
                Repayment.settled_day_close_id.is_(None),
            )
            .order_by(Repayment.paid_on.asc())
            .with_for_update(of=Repayment)
            .all()
        )

    def get_expected_on(self, issued_by_id: str, day: date) -> int:
        """Installment total due on a day across the lender's Active loans"""
        total = (
            self.db.query(func.coalesce(func.sum(Repayment.amount_due_paise), 0))
            .join(Loan, Repayment.loan_id == Loan.id)
            .filter(
                Loan.issued_by_id == issued_by_id,
                Loan.status == LoanStatus.ACTIVE.value,
                Repayment.due_date == day,
            )
            .scalar()
        )
        return int(total)

    def get_paid_between(
        self,
        issued_by_id: str,
        start: date,
        end: date,
        min_amount_paise: Optional[int] = None,
        max_amount_paise: Optional[int] = None,
    ) -> List[Tuple[Repayment, Borrower]]:
        """Paid rows with paid_on inside [start, end], newest first"""
        query = (
            self.db.query(Repayment, Borrower)
            .join(Loan, Repayment.loan_id == Loan.id)
            .join(Borrower, Repayment.borrower_id == Borrower.id)
            .filter(
                Loan.issued_by_id == issued_by_id,
                Repayment.status.in_(_PAID_VALUES),
                Repayment.paid_on >= start,
                Repayment.paid_on <= end,
            )
        )
        if min_amount_paise is not None:
            query = query.filter(Repayment.amount_paid_paise >= min_amount_paise)
        if max_amount_paise is not None:
            query = query.filter(Repayment.amount_paid_paise <= max_amount_paise)
        return query.order_by(Repayment.paid_at.desc()).all()


class PaymentReceiptRepository:
    """Repository for payment idempotency keys"""

    def __init__(self, db: Session):
        self.db = db

    def get_receipt(self, idempotency_key: str) -> Optional[PaymentReceipt]:
        return self.db.get(PaymentReceipt, idempotency_key)

    def create_receipt(
        self, idempotency_key: str, loan_id: uuid.UUID, repayment_id: uuid.UUID, amount_paise: int
    ) -> PaymentReceipt:
        receipt = PaymentReceipt(
            idempotency_key=idempotency_key,
            loan_id=loan_id,
            repayment_id=repayment_id,
            amount_paise=amount_paise,
        )
        self.db.add(receipt)
        self.db.flush()
        return receipt


class CapitalRepository:
    """Repository for append-only capital snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def get_latest(self, user_id: str) -> Optional[CapitalSnapshot]:
        return (
            self.db.query(CapitalSnapshot)
            .filter(CapitalSnapshot.user_id == user_id)
            .order_by(CapitalSnapshot.id.desc())
            .first()
        )

    def get_history(self, user_id: str, limit: int = 30) -> List[CapitalSnapshot]:
        return (
            self.db.query(CapitalSnapshot)
            .filter(CapitalSnapshot.user_id == user_id)
            .order_by(CapitalSnapshot.id.desc())
            .limit(limit)
            .all()
        )

    def append_snapshot(
        self,
        user_id: str,
        snapshot_date: date,
        position: CapitalPosition,
        event: CapitalEvent,
        note: Optional[str] = None,
    ) -> CapitalSnapshot:
        """Write a new snapshot; totals are derived here so they can never disagree"""
        snapshot = CapitalSnapshot(
            user_id=user_id,
            snapshot_date=snapshot_date,
            idle_capital_paise=position.idle_capital_paise,
            pending_loan_paise=position.pending_loan_paise,
            total_capital_paise=position.total_capital_paise,
            amount_collected_today_paise=position.amount_collected_today_paise,
            event=event.value,
            note=note,
        )
        self.db.add(snapshot)
        self.db.flush()
        return snapshot


class DayCloseRepository:
    """Repository for closed business days"""

    def __init__(self, db: Session):
        self.db = db

    def get_day_close(self, user_id: str, business_date: date) -> Optional[DayClose]:
        return (
            self.db.query(DayClose)
            .filter(DayClose.user_id == user_id, DayClose.business_date == business_date)
            .first()
        )

    def create_day_close(
        self, user_id: str, business_date: date, missed_count: int, collected_paise: int, closed_at: datetime
    ) -> DayClose:
        day_close = DayClose(
            user_id=user_id,
            business_date=business_date,
            missed_count=missed_count,
            collected_paise=collected_paise,
            closed_at=closed_at,
        )
        self.db.add(day_close)
        self.db.flush()
        return day_close


class RiskThresholdRepository:
    """Repository for lender risk band overrides"""

    def __init__(self, db: Session):
        self.db = db

    def get_threshold(self, user_id: str) -> Optional[RiskThreshold]:
        return self.db.get(RiskThreshold, user_id)

    def upsert_threshold(self, user_id: str, low_threshold: int, medium_threshold: int) -> RiskThreshold:
        threshold = self.get_threshold(user_id)
        if threshold is None:
            threshold = RiskThreshold(user_id=user_id, low_threshold=low_threshold, medium_threshold=medium_threshold)
            self.db.add(threshold)
        else:
            threshold.low_threshold = low_threshold
            threshold.medium_threshold = medium_threshold
        self.db.flush()
        return threshold
