"""
Booking engine errors.

Services raise these; the Flask error handler registered in create_app()
turns them into JSON responses using status_code and code, so routes stay thin.
"""


class BookingError(Exception):
    status_code = 400
    code = "BookingError"

    def __init__(self, message: str = None, **details):
        self.message = message or (self.__doc__ or self.code).strip()
        super().__init__(self.message)
        self.details = details

    def to_dict(self):
        body = {"error": self.message, "code": self.code}
        body.update(self.details)
        return body


class ValidationError(BookingError):
    """Malformed service, date or time."""
    status_code = 400
    code = "ValidationError"


class NotFoundError(BookingError):
    """Booking or order not found."""
    status_code = 404
    code = "NotFoundError"


class CapacityExceededError(BookingError):
    """Slot is full."""
    status_code = 409
    code = "CapacityExceededError"

    def __init__(self, message: str = None, payment_captured: bool = False, **details):
        super().__init__(message, **details)
        self.payment_captured = payment_captured

    def to_dict(self):
        body = super().to_dict()
        body["paymentCaptured"] = self.payment_captured
        return body


class PaymentVerificationError(BookingError):
    """Payment signature verification failed."""
    status_code = 400
    code = "PaymentVerificationError"


class InvalidTransitionError(BookingError):
    """Operation not valid for the current booking status."""
    status_code = 409
    code = "InvalidTransitionError"


class NothingDueError(BookingError):
    """No balance due."""
    status_code = 400
    code = "NothingDueError"
