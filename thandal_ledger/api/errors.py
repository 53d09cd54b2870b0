"""Translate ledger exceptions into HTTP errors"""

import logging
from fastapi import HTTPException

from thandal_ledger.domain.exceptions import (
    BorrowerNotFoundError,
    LedgerError,
    LedgerValidationError,
    LoanNotFoundError,
    PersistenceFailureError,
    StateConflictError,
)


def to_http_exception(error: LedgerError, request_id: str = "unknown") -> HTTPException:
    """
    Map the ledger taxonomy to status codes.

    - validation: 422, not retryable
    - unknown loan/borrower: 404
    - other state conflicts: 409, caller must re-fetch
    - persistence: 503, whole request rolled back and safe to retry
    """
    if isinstance(error, LedgerValidationError):
        logging.warning(f"Validation error: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, (LoanNotFoundError, BorrowerNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, StateConflictError):
        logging.warning(f"State conflict: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, PersistenceFailureError):
        logging.error(f"Persistence failure: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=503, detail="Ledger storage unavailable")
    logging.error(f"Unexpected ledger error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
