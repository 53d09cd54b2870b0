"""Domain-specific exceptions"""


class LedgerError(Exception):
    """Base exception for the ledger core"""

    pass


class LedgerValidationError(LedgerError):
    """Input has the wrong shape or is out of range; retrying will not help"""

    pass


class InvalidAmountError(LedgerValidationError):
    """Monetary amount is zero, negative or otherwise unusable"""

    pass


class InvalidScheduleError(LedgerValidationError):
    """Loan terms cannot produce a finite repayment schedule"""

    pass


class InvalidDateRangeError(LedgerValidationError):
    """History filter bounds are missing or inverted"""

    pass


class StateConflictError(LedgerError):
    """Request conflicts with current ledger state; caller must re-fetch"""

    pass


class LoanNotFoundError(StateConflictError):
    """Loan does not exist or does not belong to the given borrower"""

    pass


class BorrowerNotFoundError(StateConflictError):
    """Borrower does not exist"""

    pass


class AlreadyResolvedError(StateConflictError):
    """Repayment row already carries a terminal status"""

    pass


class NoOutstandingRepaymentsError(StateConflictError):
    """Loan has no Unpaid repayment rows left"""

    pass


class LoanNotActiveError(StateConflictError):
    """Loan is Closed or Defaulted and accepts no further mutation"""

    pass


class DayAlreadyClosedError(StateConflictError):
    """Lender already closed the business day the request targets"""

    pass


class CapitalAlreadyInitializedError(StateConflictError):
    """Capital tracking was already started for this lender"""

    pass


class PersistenceFailureError(LedgerError):
    """Storage failed mid-transaction; the whole operation was rolled back"""

    pass
