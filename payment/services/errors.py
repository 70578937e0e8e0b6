class PaymentServiceError(Exception):
    """Base exception for earnings and payout errors."""


class InvalidInputError(PaymentServiceError):
    """Raised for malformed amounts, percentages, ids or duplicate records."""


class InsufficientBalanceError(PaymentServiceError):
    """Raised when a payout exceeds the vendor's available (or reserved) funds."""


class InvalidStateError(PaymentServiceError):
    """Raised for a status transition the payout state machine does not allow."""


class AlreadyPaidError(PaymentServiceError):
    """Raised when an earning selected for payout is no longer available."""


class ConcurrentModificationError(PaymentServiceError):
    """Raised when a payout request changed since the caller last read it."""


class ObjectNotFoundError(PaymentServiceError):
    pass


class ImmutableRecordError(PaymentServiceError):
    pass


class PaymentConfigurationError(PaymentServiceError):
    """Raised when required Paystack settings are missing."""


class PaymentGatewayError(PaymentServiceError):
    """Raised when Paystack API calls fail."""
