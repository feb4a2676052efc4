"""Mapping of domain errors onto HTTP responses"""

import logging
from fastapi import HTTPException

from paydesk.domain.exceptions import (
    InstallmentCancelledError,
    InvalidAmountError,
    InvalidPaymentMethodError,
    LedgerInconsistencyError,
    NotFoundError,
    StoreUnavailableError,
)

STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (InvalidAmountError, 422),
    (InvalidPaymentMethodError, 422),
    (LedgerInconsistencyError, 409),
    (InstallmentCancelledError, 409),
    (StoreUnavailableError, 503),
)


def http_error(error: Exception, request_id: str) -> HTTPException:
    """Translate an exception raised by a service call; unknown errors become 500"""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            if status_code >= 500:
                logging.error(f"Store unavailable: {error}", extra={"request_id": request_id})
                return HTTPException(status_code=status_code, detail="Store unavailable")
            logging.warning(f"{type(error).__name__}: {error}", extra={"request_id": request_id})
            return HTTPException(status_code=status_code, detail=str(error))

    logging.exception(f"Unexpected error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
