class BookingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking engine.

    Every subclass carries a stable ``code`` that API clients can match on.
    """

    code = "BOOKING_ENGINE_ERROR"

    def __init__(self, message: str, code: str | None = None):
        if code:
            self.code = code
        self.message = message
        super().__init__(message)


class NotFoundError(BookingEngineError):
    code = "NOT_FOUND"


class InvalidStateError(BookingEngineError):
    code = "INVALID_STATE"


class InvalidStateTransitionError(InvalidStateError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class PermissionDeniedError(BookingEngineError):
    code = "ACCESS_DENIED"


class CapacityExceededError(BookingEngineError):
    """Raised when an event has fewer free spots than requested."""

    code = "EVENT_FULL"


class PaymentRequiredError(BookingEngineError):
    code = "PAYMENT_REQUIRED"


class InvalidRefundError(BookingEngineError):
    code = "NOTHING_TO_REFUND"


class DuplicateRequestError(BookingEngineError):
    """Raised when an idempotent request conflicts with previous data."""

    code = "DUPLICATE_BOOKING"


class GatewayError(BookingEngineError):
    """Network, 4xx or 5xx failure reported by the payment provider."""

    code = "GATEWAY_ERROR"
    retryable = False


class GatewayTimeoutError(GatewayError):
    code = "GATEWAY_TIMEOUT"
    retryable = True


class InvalidRequestError(BookingEngineError):
    """Raised when caller-supplied or gateway-supplied data is malformed."""

    code = "INVALID_REQUEST"
