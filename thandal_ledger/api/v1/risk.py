"""Risk endpoints - borrower assessment and lender thresholds"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from thandal_ledger.api.dependencies import get_request_id
from thandal_ledger.api.errors import to_http_exception
from thandal_ledger.api.v1.schemas import RiskAssessmentResponse, RiskThresholdRequest, RiskThresholdResponse
from thandal_ledger.domain.exceptions import LedgerError, PersistenceFailureError
from thandal_ledger.infrastructure.database.session import get_db
from thandal_ledger.services.risk import RiskService

router = APIRouter()


@router.get("/borrowers/{borrower_id}/risk-assessment", response_model=RiskAssessmentResponse)
def get_risk_assessment(
    borrower_id: str,
    lender_id: Optional[str] = Query(None, description="Use this lender's thresholds"),
    db: Session = Depends(get_db),
):
    """
    Score a borrower from their full repayment history.

    Read-only: nothing is written to the ledger.
    """
    try:
        assessment = RiskService(db).get_risk_assessment(borrower_id, lender_id)
    except LedgerError as e:
        raise to_http_exception(e)

    factors = assessment.factors
    return RiskAssessmentResponse(
        borrower_id=assessment.borrower_id,
        risk_score=assessment.risk_score,
        risk_level=assessment.risk_level.value,
        counts_by_status=factors.counts_by_status,
        total_loans=factors.total_loans,
        completed_loans=factors.completed_loans,
        defaulted_loans=factors.defaulted_loans,
        total_repayments=factors.total_repayments,
        on_time_rate=factors.on_time_rate,
        repayment_rate=factors.repayment_rate,
        default_rate=factors.default_rate,
        average_delay_in_days=factors.average_delay_days,
    )


@router.put("/risk-thresholds/{user_id}", response_model=RiskThresholdResponse)
def update_risk_thresholds(
    user_id: str,
    request_body: RiskThresholdRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Override the Low/Medium risk boundaries for one lender"""
    request_id = get_request_id(request)

    try:
        threshold = RiskService(db).update_thresholds(
            user_id, request_body.low_threshold, request_body.medium_threshold
        )
        response = RiskThresholdResponse(
            user_id=threshold.user_id,
            low_threshold=threshold.low_threshold,
            medium_threshold=threshold.medium_threshold,
        )
        db.commit()
        return response

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error updating thresholds: {e}"), request_id)
