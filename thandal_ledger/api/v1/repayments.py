"""Repayment endpoints - record payment, today's dues, history, day-close"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from thandal_ledger.api.dependencies import get_clock, get_event_client, get_request_id
from thandal_ledger.api.errors import to_http_exception
from thandal_ledger.api.v1.schemas import (
    CollectionStatusResponse,
    DayCloseRequest,
    DayCloseResponse,
    DueRepaymentSchema,
    RecordPaymentRequest,
    RecordPaymentResponse,
    RepaymentHistoryResponse,
    TodayDueResponse,
)
from thandal_ledger.api.v1.serializers import repayment_to_schema
from thandal_ledger.domain.exceptions import LedgerError, PersistenceFailureError
from thandal_ledger.infrastructure.clients.events import EventClient
from thandal_ledger.infrastructure.database.session import get_db
from thandal_ledger.services.day_close import DayCloseService
from thandal_ledger.services.repayments import RepaymentService
from thandal_ledger.utils.clock import Clock

router = APIRouter()


@router.post("/loans/{loan_id}/payments", response_model=RecordPaymentResponse)
def record_payment(
    loan_id: str,
    request_body: RecordPaymentRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    event_client: EventClient = Depends(get_event_client),
):
    """
    Record a payment against the loan's oldest Unpaid due date.

    Sending the same idempotency_key again returns the original result
    without applying the amount twice.
    """
    request_id = get_request_id(request)

    try:
        row = RepaymentService(db, clock).record_payment(
            borrower_id=request_body.borrower_id,
            loan_id=loan_id,
            amount_paise=request_body.amount_paise,
            paid_at=request_body.paid_at,
            idempotency_key=request_body.idempotency_key,
            request_id=request_id,
        )
        response = RecordPaymentResponse(
            repayment=repayment_to_schema(row),
            loan_pending_paise=row.loan.pending_paise,
            loan_status=row.loan.status,
        )
        db.commit()

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error recording payment: {e}"), request_id)

    background_tasks.add_task(
        event_client.send_event,
        {
            "event": "PAYMENT_RECORDED",
            "loan_id": response.repayment.loan_id,
            "repayment_id": response.repayment.repayment_id,
            "status": response.repayment.status,
            "amount_paid_paise": response.repayment.amount_paid_paise,
            "loan_pending_paise": response.loan_pending_paise,
        },
    )
    return response


@router.get("/repayments/due-today", response_model=TodayDueResponse)
def get_today_due(
    lender_id: str = Query(..., min_length=1, description="Lender identifier"),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Repayments due today on the lender's Active loans, with borrower details"""
    due = RepaymentService(db, clock).get_today_due(lender_id)

    return TodayDueResponse(
        lender_id=lender_id,
        business_date=clock.today(),
        repayments=[
            DueRepaymentSchema(
                repayment_id=str(item.repayment.id),
                loan_id=str(item.loan.id),
                borrower_id=str(item.borrower.id),
                borrower_name=item.borrower.name,
                phone_number=item.borrower.phone_number,
                due_date=item.repayment.due_date,
                amount_due_paise=item.repayment.amount_due_paise,
                amount_paid_paise=item.repayment.amount_paid_paise,
                status=item.repayment.status,
                loan_pending_paise=item.loan.pending_paise,
            )
            for item in due
        ],
    )


@router.get("/repayments/collection-status", response_model=CollectionStatusResponse)
def get_collection_status(
    lender_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Collected vs expected so far today, and whether the day is closed"""
    status = RepaymentService(db, clock).get_collection_status(lender_id)

    return CollectionStatusResponse(
        lender_id=lender_id,
        business_date=status.business_date,
        amount_collected_today_paise=status.amount_collected_today_paise,
        amount_expected_today_paise=status.amount_expected_today_paise,
        is_closed=status.is_closed,
    )


@router.get("/repayments/history", response_model=RepaymentHistoryResponse)
def get_repayment_history(
    lender_id: str = Query(..., min_length=1),
    filter_type: str = Query("week", description="24h | week | month | custom"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    min_amount_paise: Optional[int] = Query(None, ge=0),
    max_amount_paise: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Payment history grouped by date.

    Returns:
        {"YYYY-MM-DD": [{borrower_id, borrower_name, amount_paid_paise}]}
    """
    try:
        history = RepaymentService(db, clock).get_repayment_history(
            lender_id=lender_id,
            filter_type=filter_type,
            start_date=start_date,
            end_date=end_date,
            min_amount_paise=min_amount_paise,
            max_amount_paise=max_amount_paise,
        )
    except LedgerError as e:
        raise to_http_exception(e)

    return RepaymentHistoryResponse(lender_id=lender_id, filter_type=filter_type, history=history)


@router.post("/day-close", response_model=DayCloseResponse)
def close_day(
    request_body: DayCloseRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    event_client: EventClient = Depends(get_event_client),
):
    """
    Close the lender's business day.

    Unpaid rows due today or earlier become Missed, today's collections
    move into idle capital. Calling it again the same day is a no-op.
    """
    request_id = get_request_id(request)

    try:
        result = DayCloseService(db, clock).close_day(request_body.lender_id, request_id=request_id)
        db.commit()

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error closing day: {e}"), request_id)

    if not result.already_closed:
        background_tasks.add_task(
            event_client.send_event,
            {
                "event": "DAY_CLOSED",
                "lender_id": request_body.lender_id,
                "business_date": result.business_date.isoformat(),
                "missed_count": result.missed_count,
                "collected_total_paise": result.collected_total_paise,
            },
        )

    return DayCloseResponse(
        lender_id=request_body.lender_id,
        business_date=result.business_date,
        missed_count=result.missed_count,
        collected_total_paise=result.collected_total_paise,
        already_closed=result.already_closed,
    )
