"""Risk scoring engine - borrower reliability from repayment history"""

from collections import Counter
from typing import List, Sequence

from thandal_ledger.domain.models import (
    LATE_STATUSES,
    ON_TIME_STATUSES,
    PAID_STATUSES,
    LoanStatus,
    RepaymentRecord,
    RepaymentStatus,
    RiskAssessment,
    RiskFactors,
    RiskLevel,
)


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


def analyze_repayments(repayments: List[RepaymentRecord], loan_statuses: Sequence[LoanStatus]) -> RiskFactors:
    """
    Aggregate a borrower's repayment rows and loans into risk metrics.

    Rates are percentages over resolved rows only (status != Unpaid), so
    future installments do not count against a borrower.
    - on_time_rate: Paid + Paid_in_Advance
    - repayment_rate: every Paid-family status, partials included
    - average_delay_days: mean (paid_on - due_date) over late-family rows
    """
    counts = Counter(r.status.value for r in repayments)
    resolved = [r for r in repayments if r.status != RepaymentStatus.UNPAID]

    on_time = sum(1 for r in resolved if r.status in ON_TIME_STATUSES)
    paid = sum(1 for r in resolved if r.status in PAID_STATUSES)

    delays = [
        max((r.paid_on - r.due_date).days, 0)
        for r in resolved
        if r.status in LATE_STATUSES and r.paid_on is not None
    ]
    average_delay = round(sum(delays) / len(delays), 2) if delays else 0.0

    total_loans = len(loan_statuses)
    defaulted = sum(1 for s in loan_statuses if s == LoanStatus.DEFAULTED)
    completed = sum(1 for s in loan_statuses if s == LoanStatus.CLOSED)

    return RiskFactors(
        counts_by_status={status.value: counts.get(status.value, 0) for status in RepaymentStatus},
        total_loans=total_loans,
        completed_loans=completed,
        defaulted_loans=defaulted,
        total_repayments=len(resolved),
        on_time_rate=_percent(on_time, len(resolved)),
        repayment_rate=_percent(paid, len(resolved)),
        default_rate=_percent(defaulted, total_loans),
        average_delay_days=average_delay,
    )


def calculate_risk_score(factors: RiskFactors) -> int:
    """
    Calculate risk score from 0 (highest risk) to 100 (lowest risk).

    Scoring weights:
    - 40%: On-time rate
    - 30%: Repayment rate (any payment at all, partial or late)
    - 20%: Loans not defaulted
    - 10%: Delay penalty, one point per average day late
    """
    score = (
        factors.on_time_rate * 0.4
        + factors.repayment_rate * 0.3
        + (100 - factors.default_rate) * 0.2
        + (100 - factors.average_delay_days) * 0.1
    )
    return max(0, min(100, round(score)))


def determine_risk_level(score: int, low_threshold: int = 70, medium_threshold: int = 40) -> RiskLevel:
    """
    Map score to a band.

    - score >= low_threshold:    Low_Risk
    - score >= medium_threshold: Medium_Risk
    - otherwise:                 High_Risk
    """
    if score >= low_threshold:
        return RiskLevel.LOW
    elif score >= medium_threshold:
        return RiskLevel.MEDIUM
    else:
        return RiskLevel.HIGH


def assess_borrower(
    borrower_id: str,
    repayments: List[RepaymentRecord],
    loan_statuses: Sequence[LoanStatus],
    low_threshold: int = 70,
    medium_threshold: int = 40,
) -> RiskAssessment:
    """Main entry point: aggregate, score and band one borrower"""
    factors = analyze_repayments(repayments, loan_statuses)
    score = calculate_risk_score(factors)

    return RiskAssessment(
        borrower_id=borrower_id,
        risk_score=score,
        risk_level=determine_risk_level(score, low_threshold, medium_threshold),
        factors=factors,
    )
