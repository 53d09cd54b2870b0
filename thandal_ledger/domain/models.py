"""Domain models - pure Python dataclasses and enums representing ledger entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional


class StringEnum(str, Enum):
    """Enum with string behavior so values persist and serialize as plain text"""


class LoanStatus(StringEnum):
    ACTIVE = "Active"
    CLOSED = "Closed"
    DEFAULTED = "Defaulted"


class RepaymentStatus(StringEnum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    MISSED = "Missed"
    PAID_LATE = "Paid_Late"
    PAID_IN_ADVANCE = "Paid_in_Advance"
    PAID_PARTIAL = "Paid_Partial"
    PAID_PARTIAL_LATE = "Paid_Partial_Late"
    PAID_PARTIAL_ADVANCE = "Paid_Partial_Advance"


PAID_STATUSES = frozenset(
    {
        RepaymentStatus.PAID,
        RepaymentStatus.PAID_LATE,
        RepaymentStatus.PAID_IN_ADVANCE,
        RepaymentStatus.PAID_PARTIAL,
        RepaymentStatus.PAID_PARTIAL_LATE,
        RepaymentStatus.PAID_PARTIAL_ADVANCE,
    }
)

LATE_STATUSES = frozenset({RepaymentStatus.PAID_LATE, RepaymentStatus.PAID_PARTIAL_LATE})

ON_TIME_STATUSES = frozenset({RepaymentStatus.PAID, RepaymentStatus.PAID_IN_ADVANCE})


class RiskLevel(StringEnum):
    LOW = "Low_Risk"
    MEDIUM = "Medium_Risk"
    HIGH = "High_Risk"


class HistoryFilter(StringEnum):
    LAST_24H = "24h"
    WEEK = "week"
    MONTH = "month"
    CUSTOM = "custom"


class CapitalEvent(StringEnum):
    """Reason a capital snapshot was appended"""

    INITIALIZED = "initialized"
    LOAN_ISSUED = "loan_issued"
    LOAN_REGISTERED = "loan_registered"
    LOAN_WRITTEN_OFF = "loan_written_off"
    DAY_CLOSED = "day_closed"
    ADJUSTED = "adjusted"


@dataclass
class ScheduledInstallment:
    """Single due date in a repayment schedule"""

    due_date: date
    amount_paise: int


@dataclass
class PaymentOutcome:
    """Result of classifying one payment against one repayment row"""

    status: RepaymentStatus
    applied_paise: int
    pending_after_paise: int


@dataclass
class CapitalPosition:
    """Lender capital at a point in time"""

    idle_capital_paise: int
    pending_loan_paise: int
    amount_collected_today_paise: int = 0

    @property
    def total_capital_paise(self) -> int:
        return self.idle_capital_paise + self.pending_loan_paise


@dataclass
class RepaymentRecord:
    """Read-only view of a repayment row used by the risk scorer"""

    due_date: date
    status: RepaymentStatus
    paid_on: Optional[date] = None


@dataclass
class RiskFactors:
    """Aggregated repayment behaviour used for scoring"""

    counts_by_status: Dict[str, int]
    total_loans: int
    completed_loans: int
    defaulted_loans: int
    total_repayments: int
    on_time_rate: float
    repayment_rate: float
    default_rate: float
    average_delay_days: float


@dataclass
class RiskAssessment:
    """Output of borrower risk scoring"""

    borrower_id: str
    risk_score: int
    risk_level: RiskLevel
    factors: RiskFactors


@dataclass
class DayCloseResult:
    """Summary of a day-close sweep for one lender"""

    business_date: date
    missed_count: int
    collected_total_paise: int
    already_closed: bool = False
    missed_repayment_ids: List[str] = field(default_factory=list)
