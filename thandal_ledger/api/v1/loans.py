"""Loan endpoints - issue, register existing, details, force-close, default"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from thandal_ledger.api.dependencies import get_clock, get_event_client, get_request_id
from thandal_ledger.api.errors import to_http_exception
from thandal_ledger.api.v1.schemas import (
    IssueLoanRequest,
    LoanDetailsResponse,
    LoanSchema,
    RegisterExistingLoanRequest,
)
from thandal_ledger.api.v1.serializers import loan_to_schema, repayment_to_schema
from thandal_ledger.domain.exceptions import LedgerError, PersistenceFailureError
from thandal_ledger.infrastructure.clients.events import EventClient
from thandal_ledger.infrastructure.database.session import get_db
from thandal_ledger.services.loans import LoanService
from thandal_ledger.utils.clock import Clock

router = APIRouter()


@router.post("/loans", response_model=LoanSchema, status_code=201)
def issue_loan(
    request_body: IssueLoanRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    event_client: EventClient = Depends(get_event_client),
):
    """
    Issue a loan to a borrower.

    Flow:
    1. Validate terms and repayment weekdays
    2. Generate the due-date schedule (first due date is after today)
    3. Persist loan + Unpaid repayment rows
    4. Move disbursed cash out of idle capital
    5. Commit, then publish LOAN_ISSUED
    """
    request_id = get_request_id(request)

    try:
        loan = LoanService(db, clock).issue_loan(
            lender_id=request_body.lender_id,
            borrower_id=request_body.borrower_id,
            principal_paise=request_body.principal_paise,
            upfront_deducted_paise=request_body.upfront_deducted_paise,
            daily_repayment_paise=request_body.daily_repayment_paise,
            days_to_repay=request_body.days_to_repay,
        )
        response = loan_to_schema(loan)
        db.commit()

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error issuing loan: {e}"), request_id)

    background_tasks.add_task(
        event_client.send_event,
        {
            "event": "LOAN_ISSUED",
            "loan_id": response.loan_id,
            "lender_id": response.lender_id,
            "borrower_id": response.borrower_id,
            "principal_paise": response.principal_paise,
            "disbursed_paise": response.disbursed_paise,
        },
    )
    return response


@router.post("/loans/existing", response_model=LoanSchema, status_code=201)
def register_existing_loan(
    request_body: RegisterExistingLoanRequest,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Register a loan issued before the lender started using the ledger"""
    request_id = get_request_id(request)

    try:
        loan = LoanService(db, clock).register_existing_loan(
            lender_id=request_body.lender_id,
            borrower_id=request_body.borrower_id,
            principal_paise=request_body.principal_paise,
            upfront_deducted_paise=request_body.upfront_deducted_paise,
            daily_repayment_paise=request_body.daily_repayment_paise,
            days_to_repay=request_body.days_to_repay,
            issued_at=request_body.issued_at,
            pending_paise=request_body.pending_paise,
        )
        response = loan_to_schema(loan)
        db.commit()
        return response

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error registering loan: {e}"), request_id)


@router.get("/loans/{loan_id}", response_model=LoanDetailsResponse)
def get_loan_details(
    loan_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Retrieve a loan with repayment statistics.

    Returns:
        Loan, counts per repayment status, due dates grouped by status,
        and every repayment row in due-date order
    """
    try:
        details = LoanService(db, clock).get_loan_details(loan_id)
    except LedgerError as e:
        raise to_http_exception(e)

    return LoanDetailsResponse(
        loan=loan_to_schema(details.loan),
        repayment_stats=details.repayment_stats,
        repayment_dates_by_status=details.repayment_dates_by_status,
        repayments=[repayment_to_schema(r) for r in details.repayments],
    )


def _end_loan(action: str, loan_id: str, request: Request, db: Session, clock: Clock) -> LoanSchema:
    request_id = get_request_id(request)
    service = LoanService(db, clock)

    try:
        loan = service.close_loan(loan_id) if action == "close" else service.mark_defaulted(loan_id)
        response = loan_to_schema(loan)
        db.commit()
        return response

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error ending loan: {e}"), request_id)


@router.post("/loans/{loan_id}/close", response_model=LoanSchema)
def close_loan(loan_id: str, request: Request, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Force-close an Active loan"""
    return _end_loan("close", loan_id, request, db, clock)


@router.post("/loans/{loan_id}/default", response_model=LoanSchema)
def mark_loan_defaulted(loan_id: str, request: Request, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Mark an Active loan as Defaulted"""
    return _end_loan("default", loan_id, request, db, clock)
