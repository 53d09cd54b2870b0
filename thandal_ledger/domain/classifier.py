"""Repayment classification - decides the terminal status of a paid due date"""

from datetime import date

from thandal_ledger.domain.exceptions import AlreadyResolvedError, InvalidAmountError
from thandal_ledger.domain.models import PaymentOutcome, RepaymentStatus

# (timing, is_partial) -> status. Overpayment classifies like an exact payment.
_STATUS_TABLE = {
    ("on_time", False): RepaymentStatus.PAID,
    ("on_time", True): RepaymentStatus.PAID_PARTIAL,
    ("late", False): RepaymentStatus.PAID_LATE,
    ("late", True): RepaymentStatus.PAID_PARTIAL_LATE,
    ("advance", False): RepaymentStatus.PAID_IN_ADVANCE,
    ("advance", True): RepaymentStatus.PAID_PARTIAL_ADVANCE,
}


def payment_timing(due_date: date, paid_on: date) -> str:
    """on_time | late | advance, comparing calendar dates only"""
    if paid_on == due_date:
        return "on_time"
    if paid_on > due_date:
        return "late"
    return "advance"


def classify_payment(
    due_date: date,
    paid_on: date,
    expected_paise: int,
    amount_paise: int,
) -> RepaymentStatus:
    """
    Map payment timing and size to one of the six Paid-family statuses.

    | timing  | amount >= expected | amount < expected     |
    |---------|--------------------|-----------------------|
    | on time | Paid               | Paid_Partial          |
    | late    | Paid_Late          | Paid_Partial_Late     |
    | advance | Paid_in_Advance    | Paid_Partial_Advance  |
    """
    if amount_paise <= 0:
        raise InvalidAmountError("Payment amount must be positive")

    is_partial = amount_paise < expected_paise
    return _STATUS_TABLE[(payment_timing(due_date, paid_on), is_partial)]


def resolve_payment(
    current_status: RepaymentStatus,
    due_date: date,
    expected_paise: int,
    amount_paise: int,
    paid_on: date,
    pending_paise: int,
) -> PaymentOutcome:
    """
    Classify a payment against an Unpaid row and compute its effect on pending.

    The applied amount is capped at the loan's pending balance, so pending
    never goes below zero. A partial payment's shortfall is not rescheduled;
    it simply reduces pending by less than one installment.

    Raises:
        InvalidAmountError: amount <= 0
        AlreadyResolvedError: row is not Unpaid
    """
    if amount_paise <= 0:
        raise InvalidAmountError("Payment amount must be positive")
    if current_status != RepaymentStatus.UNPAID:
        raise AlreadyResolvedError(f"Repayment due {due_date.isoformat()} is already {current_status.value}")

    status = classify_payment(due_date, paid_on, expected_paise, amount_paise)
    applied = min(amount_paise, max(pending_paise, 0))

    return PaymentOutcome(
        status=status,
        applied_paise=applied,
        pending_after_paise=max(pending_paise - applied, 0),
    )
