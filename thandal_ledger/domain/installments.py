"""Repayment schedule generation for daily-installment loans"""

from datetime import date, timedelta
from typing import Iterable, List, Set

from thandal_ledger.domain.exceptions import InvalidScheduleError
from thandal_ledger.domain.models import ScheduledInstallment
from thandal_ledger.utils.date_utils import parse_weekdays


def normalize_weekdays(days_to_repay: Iterable[str]) -> Set[int]:
    """
    Validate repayment weekdays and return them as date.weekday() numbers.

    Raises:
        InvalidScheduleError: If the selection is empty or names an unknown day
    """
    try:
        weekdays = parse_weekdays(days_to_repay)
    except ValueError as e:
        raise InvalidScheduleError(str(e)) from e
    if not weekdays:
        raise InvalidScheduleError("At least one repayment day must be selected")
    return weekdays


def installment_count(amount_paise: int, daily_repayment_paise: int) -> int:
    """Number of installments needed to cover amount: ceil(amount / daily)"""
    return -(-amount_paise // daily_repayment_paise)


def generate_repayment_schedule(
    issued_on: date,
    principal_paise: int,
    daily_repayment_paise: int,
    days_to_repay: Iterable[str],
) -> List[ScheduledInstallment]:
    """
    Generate the due dates that recover a loan's principal.

    Rules:
    - First candidate day is the day AFTER issuance (no collection on issue day)
    - Walk forward one calendar day at a time, emitting a due date on every
      selected weekday
    - Each installment is daily_repayment_paise; the last one is clipped to
      the remainder so installments sum exactly to principal_paise

    Args:
        issued_on: Loan issue date (or registration date for migrated loans)
        principal_paise: Amount the schedule must recover
        daily_repayment_paise: Fixed installment size
        days_to_repay: Day names, e.g. ["Monday", ..., "Saturday"]

    Returns:
        Ordered ScheduledInstallment list, ceil(principal / daily) entries

    Example:
        principal 1200, daily 500, Mon/Wed/Fri, issued Monday 2024-06-03
        -> Wed 06-05: 500, Fri 06-07: 500, Mon 06-10: 200
    """
    if principal_paise <= 0:
        raise InvalidScheduleError("Principal must be positive")
    if daily_repayment_paise <= 0:
        raise InvalidScheduleError("Daily repayment amount must be positive")

    weekdays = normalize_weekdays(days_to_repay)

    count = installment_count(principal_paise, daily_repayment_paise)
    installments = []
    remaining = principal_paise
    current = issued_on
    while len(installments) < count:
        current = current + timedelta(days=1)
        if current.weekday() not in weekdays:
            continue

        amount = min(daily_repayment_paise, remaining)
        installments.append(ScheduledInstallment(due_date=current, amount_paise=amount))
        remaining -= amount

    return installments
