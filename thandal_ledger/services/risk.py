"""Borrower risk assessment (read-only over the ledger) and lender thresholds"""

from typing import Optional, Tuple

from sqlalchemy.orm import Session

from thandal_ledger.config import settings
from thandal_ledger.domain.exceptions import BorrowerNotFoundError, LedgerValidationError
from thandal_ledger.domain.models import RepaymentRecord, RepaymentStatus, RiskAssessment
from thandal_ledger.domain.scoring import assess_borrower
from thandal_ledger.infrastructure.database.models import RiskThreshold
from thandal_ledger.infrastructure.database.repositories import (
    BorrowerRepository,
    LoanRepository,
    RepaymentRepository,
    RiskThresholdRepository,
)
from thandal_ledger.utils.ids import parse_uuid


class RiskService:
    def __init__(self, db: Session):
        self.db = db
        self.borrowers = BorrowerRepository(db)
        self.loans = LoanRepository(db)
        self.repayments = RepaymentRepository(db)
        self.thresholds = RiskThresholdRepository(db)

    def get_thresholds(self, user_id: Optional[str]) -> Tuple[int, int]:
        """(low, medium) for a lender, falling back to configured defaults"""
        threshold = self.thresholds.get_threshold(user_id) if user_id else None
        if threshold is None:
            return settings.risk_low_threshold, settings.risk_medium_threshold
        return threshold.low_threshold, threshold.medium_threshold

    def get_risk_assessment(self, borrower_id, lender_id: Optional[str] = None) -> RiskAssessment:
        """
        Score a borrower from all of their repayment rows.

        Thresholds come from lender_id, else from the lender of the
        borrower's first loan, else from settings.
        """
        borrower_uuid = parse_uuid(borrower_id, BorrowerNotFoundError, "borrower id")
        borrower = self.borrowers.get_borrower(borrower_uuid)
        if borrower is None:
            raise BorrowerNotFoundError(f"Borrower {borrower_id} not found")

        if lender_id is None and borrower.loans:
            lender_id = min(borrower.loans, key=lambda l: l.issued_at).issued_by_id
        low, medium = self.get_thresholds(lender_id)

        records = [
            RepaymentRecord(due_date=r.due_date, status=RepaymentStatus(r.status), paid_on=r.paid_on)
            for r in self.repayments.get_by_borrower(borrower.id)
        ]
        return assess_borrower(
            borrower_id=str(borrower.id),
            repayments=records,
            loan_statuses=self.loans.get_loan_statuses_for_borrower(borrower.id),
            low_threshold=low,
            medium_threshold=medium,
        )

    def update_thresholds(
        self, user_id: str, low_threshold: Optional[int] = None, medium_threshold: Optional[int] = None
    ) -> RiskThreshold:
        """Partial update; unspecified bounds keep their current value"""
        if low_threshold is None and medium_threshold is None:
            raise LedgerValidationError("At least one threshold value must be provided.")

        current_low, current_medium = self.get_thresholds(user_id)
        low = current_low if low_threshold is None else low_threshold
        medium = current_medium if medium_threshold is None else medium_threshold
        if not 0 <= medium <= low <= 100:
            raise LedgerValidationError("Thresholds must satisfy 0 <= medium <= low <= 100")

        return self.thresholds.upsert_threshold(user_id, low, medium)
