"""Typed exception hierarchy for swap operations.

Lets callers tell transient failures (worth retrying a read) from
permanent ones, and lets the error handler classify without string
matching where possible.
"""


class SwapError(Exception):
    """Base class for all swap backend errors."""


class TransientSwapError(SwapError):
    """Temporary failure that may succeed on retry (network, 5xx, timeout)."""


class RateLimitError(TransientSwapError):
    """Gateway rate limit hit (429)."""
    def __init__(self, message: str = "Rate limit exceeded", retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class SlippageExceededError(TransientSwapError):
    """Output fell below amountOutMinimum; price moved during submission."""


class ServiceUnavailableError(TransientSwapError):
    """Gateway or DEX unreachable."""


class PermanentSwapError(SwapError):
    """Non-recoverable failure (bad pair, auth, insufficient balance)."""


class InsufficientBalanceError(PermanentSwapError):
    """Wallet does not hold enough of the input token."""
    def __init__(self, message: str = "Insufficient balance", balance: float = 0.0, required: float = 0.0):
        super().__init__(message)
        self.balance = balance
        self.required = required


class PairNotFoundError(PermanentSwapError):
    """No pool/quote exists for the configured token pair."""


class InvalidSwapError(PermanentSwapError):
    """Rejected swap parameters (amount, fee tier, token id)."""


class AuthenticationError(PermanentSwapError):
    """Gateway rejected the API key or signature."""
