"""Capital endpoints - current position, history, initialize, adjust"""

from typing import List
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from thandal_ledger.api.dependencies import get_clock, get_request_id
from thandal_ledger.api.errors import to_http_exception
from thandal_ledger.api.v1.schemas import (
    AdjustCapitalRequest,
    CapitalResponse,
    CapitalSnapshotSchema,
    InitializeCapitalRequest,
)
from thandal_ledger.domain.exceptions import LedgerError, PersistenceFailureError
from thandal_ledger.infrastructure.database.models import CapitalSnapshot
from thandal_ledger.infrastructure.database.session import get_db
from thandal_ledger.services.capital import CapitalLedger
from thandal_ledger.utils.clock import Clock

router = APIRouter()


def _snapshot_to_schema(snapshot: CapitalSnapshot) -> CapitalSnapshotSchema:
    return CapitalSnapshotSchema(
        snapshot_id=snapshot.id,
        user_id=snapshot.user_id,
        date=snapshot.snapshot_date,
        event=snapshot.event,
        idle_capital_paise=snapshot.idle_capital_paise,
        pending_loan_paise=snapshot.pending_loan_paise,
        total_capital_paise=snapshot.total_capital_paise,
        amount_collected_today_paise=snapshot.amount_collected_today_paise,
        note=snapshot.note,
    )


@router.get("/capital/{user_id}", response_model=CapitalResponse)
def get_capital(user_id: str, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """
    Current capital position.

    pending_loan_paise is summed from Active loans at request time, so it
    already reflects payments collected since the last snapshot.
    """
    position = CapitalLedger(db, clock).get_position(user_id)

    return CapitalResponse(
        user_id=user_id,
        date=clock.today(),
        idle_capital_paise=position.idle_capital_paise,
        pending_loan_paise=position.pending_loan_paise,
        total_capital_paise=position.total_capital_paise,
        amount_collected_today_paise=position.amount_collected_today_paise,
    )


@router.get("/capital/{user_id}/history", response_model=List[CapitalSnapshotSchema])
def get_capital_history(
    user_id: str,
    limit: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Most recent capital snapshots, newest first"""
    return [_snapshot_to_schema(s) for s in CapitalLedger(db, clock).get_history(user_id, limit)]


@router.post("/capital/{user_id}/initialize", response_model=CapitalSnapshotSchema, status_code=201)
def initialize_capital(
    user_id: str,
    request_body: InitializeCapitalRequest,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Start capital tracking with the lender's cash in hand"""
    request_id = get_request_id(request)

    try:
        snapshot = CapitalLedger(db, clock).initialize(user_id, request_body.idle_capital_paise)
        response = _snapshot_to_schema(snapshot)
        db.commit()
        return response

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error initializing capital: {e}"), request_id)


@router.post("/capital/{user_id}/adjust", response_model=CapitalSnapshotSchema)
def adjust_capital(
    user_id: str,
    request_body: AdjustCapitalRequest,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Add or withdraw idle cash manually"""
    request_id = get_request_id(request)

    try:
        snapshot = CapitalLedger(db, clock).adjust(user_id, request_body.delta_paise, request_body.note)
        response = _snapshot_to_schema(snapshot)
        db.commit()
        return response

    except LedgerError as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    except SQLAlchemyError as e:
        db.rollback()
        raise to_http_exception(PersistenceFailureError(f"Database error adjusting capital: {e}"), request_id)
