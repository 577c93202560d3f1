class FanNuError(Exception):
    """
    Base exception for all domain-level errors
    inside the FanNu booking engine.
    """

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(FanNuError):
    """Raised for malformed or out-of-range input. Carries field-level details."""

    code = "VALIDATION_ERROR"


class NotFoundError(FanNuError):
    code = "NOT_FOUND"


class CreatorNotFoundError(NotFoundError):
    def __init__(self, ref: str):
        super().__init__(f"Creator not found: {ref}")


class BookingNotFoundError(NotFoundError):
    def __init__(self, ref: str):
        super().__init__(f"Booking not found: {ref}")


class QuoteNotFoundError(NotFoundError):
    def __init__(self, ref: str):
        super().__init__(f"Quote not found: {ref}")


class PaymentNotFoundError(NotFoundError):
    def __init__(self, ref: str):
        super().__init__(f"Payment not found: {ref}")


class ConflictError(FanNuError):
    """Raised when a write collides with existing data (duplicates, races)."""

    code = "CONFLICT"


class ReferenceCodeExhaustedError(ConflictError):
    def __init__(self, attempts: int):
        super().__init__(
            f"Could not allocate a unique code after {attempts} attempts"
        )


class PaymentMismatchError(ConflictError):
    """Raised when a provider callback disagrees with the stored payment."""


class CreatorUnavailableError(FanNuError):
    code = "INVALID_STATE"


class InvalidSignatureError(FanNuError):
    code = "INVALID_SIGNATURE"


class InvalidStateTransitionError(FanNuError):
    """
    Raised when an illegal state transition is attempted.
    """

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_state: str, to_state: str, message: str | None = None):
        self.from_state = from_state
        self.to_state = to_state

        if message is None:
            message = (
                f"Illegal state transition attempted: "
                f"{from_state} -> {to_state}"
            )
        super().__init__(
            message,
            details={"from_state": from_state, "to_state": to_state},
        )


class QuoteNotActiveError(InvalidStateTransitionError):
    code = "QUOTE_NOT_ACTIVE"

    def __init__(self, quote_status: str):
        super().__init__(
            from_state=quote_status,
            to_state="ACCEPTED",
            message=f"Quote is no longer active (status {quote_status})",
        )


class QuoteExpiredError(InvalidStateTransitionError):
    """The quote is past expires_at even if its stored status still reads ACTIVE."""

    code = "QUOTE_EXPIRED"

    def __init__(self, expires_at: str):
        super().__init__(
            from_state="ACTIVE",
            to_state="ACCEPTED",
            message=f"Quote expired at {expires_at}; ask the creator to re-quote",
        )
