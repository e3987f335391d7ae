import logging

from fastapi import HTTPException, status

from rps_arena.exceptions import (
    ArenaException,
    InsufficientFundsError,
    LedgerError,
    LedgerTimeoutError,
    NotFoundError,
    StateConflictError,
    UnavailableError,
    ValidationError,
)

# Most specific first: LedgerTimeoutError is also a LedgerError.
STATUS_BY_EXCEPTION = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StateConflictError, status.HTTP_409_CONFLICT),
    (UnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (LedgerTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (LedgerError, status.HTTP_502_BAD_GATEWAY),
]


def to_http_exception(error: ArenaException) -> HTTPException:
    for exception_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(error, exception_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if status_code >= 500:
        logging.error(f"Request failed: {error}")
    return HTTPException(status_code=status_code, detail=str(error))
