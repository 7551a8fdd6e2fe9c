import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from eventbook.domain.exceptions import (
    BookingEngineError,
    CapacityExceededError,
    DuplicateRequestError,
    GatewayError,
    GatewayTimeoutError,
    InvalidRefundError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    PaymentRequiredError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

# Most specific class first.
_STATUS_CODES: list[tuple[type[BookingEngineError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (CapacityExceededError, status.HTTP_409_CONFLICT),
    (DuplicateRequestError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (PaymentRequiredError, status.HTTP_402_PAYMENT_REQUIRED),
    (InvalidRefundError, status.HTTP_400_BAD_REQUEST),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (GatewayTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
]


def status_code_for(exc: BookingEngineError) -> int:
    if exc.code == "GATEWAY_NOT_CONFIGURED":
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    for exc_class, code in _STATUS_CODES:
        if isinstance(exc, exc_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def booking_engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("Request failed. path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
    else:
        logger.info("Request rejected. path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": exc.code, "message": exc.message}},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(BookingEngineError, booking_engine_error_handler)
