"""Exception hierarchy for the trade parser."""


class TradeParserError(Exception):
    """Base class for all trade parser errors."""


class MalformedTransactionError(TradeParserError):
    """Transaction payload is missing the message or the status meta."""


class FetchError(TradeParserError):
    """Transaction data could not be fetched from any provider."""


class RateLimitedError(FetchError):
    """Provider answered HTTP 429."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class CircuitOpenError(FetchError):
    """Fetcher circuit breaker is open, request was not attempted."""


class ConfigError(TradeParserError):
    """Invalid parser configuration."""
