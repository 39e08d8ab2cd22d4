class StockyError(Exception):
    pass


class ValidationError(StockyError):
    """Malformed input, raised before any database interaction."""


class UnsupportedActionError(ValidationError):
    pass


class DuplicateRequestError(StockyError):
    """The idempotency key was already used; the request is a no-op."""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Reward with idempotency key '{idempotency_key}' already processed")


class PriceNotFoundError(StockyError):
    def __init__(self, symbol: str, message: str = ""):
        self.symbol = symbol
        super().__init__(message or f"No price available for {symbol}")


class UnbalancedTransactionError(StockyError):
    pass


class PersistenceError(StockyError):
    """A unit of work could not be committed and was rolled back."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message)
