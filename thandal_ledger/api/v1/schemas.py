"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Dict, List, Optional


class IssueLoanRequest(BaseModel):
    """Request body for POST /v1/loans"""

    lender_id: str = Field(..., min_length=1, description="Lender (user) identifier")
    borrower_id: str = Field(..., min_length=1, description="Borrower identifier")
    principal_paise: int = Field(..., gt=0, description="Principal in paise")
    upfront_deducted_paise: int = Field(0, ge=0, description="Fee withheld at disbursement")
    daily_repayment_paise: int = Field(..., gt=0, description="Installment per repayment day")
    days_to_repay: List[str] = Field(..., min_length=1, max_length=7, description="Day names, e.g. Monday")


class RegisterExistingLoanRequest(IssueLoanRequest):
    """Request body for POST /v1/loans/existing"""

    issued_at: date
    pending_paise: int = Field(..., gt=0, description="Principal still outstanding today")


class LoanSchema(BaseModel):
    loan_id: str
    borrower_id: str
    lender_id: str
    principal_paise: int
    upfront_deducted_paise: int
    disbursed_paise: int
    daily_repayment_paise: int
    pending_paise: int
    days_to_repay: List[str]
    issued_at: date
    due_date: date
    status: str
    installments: int


class RepaymentSchema(BaseModel):
    """Single repayment row"""

    repayment_id: str
    loan_id: str
    due_date: date
    amount_due_paise: int
    amount_paid_paise: int
    status: str
    paid_at: Optional[datetime] = None


class LoanDetailsResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}"""

    loan: LoanSchema
    repayment_stats: Dict[str, int]
    repayment_dates_by_status: Dict[str, List[date]]
    repayments: List[RepaymentSchema]


class RecordPaymentRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/payments"""

    borrower_id: str = Field(..., min_length=1)
    amount_paise: int = Field(..., gt=0, description="Amount received in paise")
    paid_at: Optional[datetime] = Field(None, description="Defaults to now")
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)


class RecordPaymentResponse(BaseModel):
    repayment: RepaymentSchema
    loan_pending_paise: int
    loan_status: str


class DueRepaymentSchema(BaseModel):
    """Row due today with display fields"""

    repayment_id: str
    loan_id: str
    borrower_id: str
    borrower_name: str
    phone_number: Optional[str] = None
    due_date: date
    amount_due_paise: int
    amount_paid_paise: int
    status: str
    loan_pending_paise: int


class TodayDueResponse(BaseModel):
    lender_id: str
    business_date: date
    repayments: List[DueRepaymentSchema]


class CollectionStatusResponse(BaseModel):
    lender_id: str
    business_date: date
    amount_collected_today_paise: int
    amount_expected_today_paise: int
    is_closed: bool


class HistoryEntry(BaseModel):
    borrower_id: str
    borrower_name: str
    amount_paid_paise: int


class RepaymentHistoryResponse(BaseModel):
    """Response for GET /v1/repayments/history, grouped by YYYY-MM-DD"""

    lender_id: str
    filter_type: str
    history: Dict[str, List[HistoryEntry]]


class DayCloseRequest(BaseModel):
    """Request body for POST /v1/day-close"""

    lender_id: str = Field(..., min_length=1)


class DayCloseResponse(BaseModel):
    lender_id: str
    business_date: date
    missed_count: int
    collected_total_paise: int
    already_closed: bool


class CapitalResponse(BaseModel):
    """Response for GET /v1/capital/{user_id}"""

    user_id: str
    date: date
    idle_capital_paise: int
    pending_loan_paise: int
    total_capital_paise: int
    amount_collected_today_paise: int


class CapitalSnapshotSchema(BaseModel):
    snapshot_id: int
    user_id: str
    date: date
    event: str
    idle_capital_paise: int
    pending_loan_paise: int
    total_capital_paise: int
    amount_collected_today_paise: int
    note: Optional[str] = None


class InitializeCapitalRequest(BaseModel):
    idle_capital_paise: int = Field(..., ge=0)


class AdjustCapitalRequest(BaseModel):
    delta_paise: int = Field(..., description="Positive adds cash, negative withdraws")
    note: Optional[str] = Field(None, max_length=500)


class RiskAssessmentResponse(BaseModel):
    """Response for GET /v1/borrowers/{borrower_id}/risk-assessment"""

    borrower_id: str
    risk_score: int
    risk_level: str
    counts_by_status: Dict[str, int]
    total_loans: int
    completed_loans: int
    defaulted_loans: int
    total_repayments: int
    on_time_rate: float
    repayment_rate: float
    default_rate: float
    average_delay_in_days: float


class RiskThresholdRequest(BaseModel):
    low_threshold: Optional[int] = Field(None, ge=0, le=100)
    medium_threshold: Optional[int] = Field(None, ge=0, le=100)


class RiskThresholdResponse(BaseModel):
    user_id: str
    low_threshold: int
    medium_threshold: int
