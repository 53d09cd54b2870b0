"""Capital arithmetic for a lender's idle cash and outstanding principal"""

from thandal_ledger.domain.exceptions import InvalidAmountError
from thandal_ledger.domain.models import CapitalPosition


def disbursed_amount(principal_paise: int, upfront_deducted_paise: int) -> int:
    """Cash that actually leaves the lender; the upfront fee stays as profit"""
    return principal_paise - upfront_deducted_paise


def after_loan_issued(
    idle_capital_paise: int,
    principal_paise: int,
    upfront_deducted_paise: int,
    pending_loan_paise: int,
) -> CapitalPosition:
    """
    Position after disbursing a loan.

    pending_loan_paise must already include the new loan's principal.
    """
    return CapitalPosition(
        idle_capital_paise=idle_capital_paise - disbursed_amount(principal_paise, upfront_deducted_paise),
        pending_loan_paise=pending_loan_paise,
    )


def after_day_close(idle_capital_paise: int, collected_paise: int, pending_loan_paise: int) -> CapitalPosition:
    """Collections of the closed day return to the idle pool"""
    return CapitalPosition(
        idle_capital_paise=idle_capital_paise + collected_paise,
        pending_loan_paise=pending_loan_paise,
        amount_collected_today_paise=collected_paise,
    )


def after_adjustment(idle_capital_paise: int, delta_paise: int, pending_loan_paise: int) -> CapitalPosition:
    """
    Manual cash movement (owner adds or withdraws money).

    Raises:
        InvalidAmountError: zero delta, or a withdrawal larger than idle cash
    """
    if delta_paise == 0:
        raise InvalidAmountError("Adjustment must be non-zero")
    new_idle = idle_capital_paise + delta_paise
    if new_idle < 0:
        raise InvalidAmountError(
            f"Withdrawal of {-delta_paise} exceeds idle capital of {idle_capital_paise}"
        )
    return CapitalPosition(idle_capital_paise=new_idle, pending_loan_paise=pending_loan_paise)
