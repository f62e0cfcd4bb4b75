"""Exceptions raised by the payment core."""


class PaymentError(Exception):
    """Base exception for payment processing errors."""

    pass


class PaymentValidationError(PaymentError):
    """Raised when payment input validation fails."""

    pass


class TransactionNotFoundError(PaymentError):
    """Raised when no transaction exists for a request id."""

    def __init__(self, transaction_request_id: str):
        super().__init__(f"Transaction not found: {transaction_request_id}")
        self.transaction_request_id = transaction_request_id


class UpstreamError(PaymentError):
    """Raised when the payment provider fails or answers unexpectedly."""

    pass
