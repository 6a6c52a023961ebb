"""
Payment domain errors.
Each error carries the HTTP status the API layer answers with.
"""


class PaymentError(Exception):
    """Base class for payment lifecycle errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaymentError):
    """Bad amount, date or installment count. Raised before any persistence."""

    status_code = 422


class NotFoundError(PaymentError):
    """Unknown payment reference, plan or installment."""

    status_code = 404


class ConflictError(PaymentError):
    """Illegal transition out of a terminal state, or a duplicate record."""

    status_code = 409


class GatewayError(PaymentError):
    """The payment gateway call failed or timed out."""

    status_code = 502


class PersistenceError(PaymentError):
    """A store write failed."""

    status_code = 500
