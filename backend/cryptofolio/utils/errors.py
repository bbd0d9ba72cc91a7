"""Custom error classes."""
from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers in structured results."""
    PRECONDITION = "precondition"  # fixable by the user before any I/O
    UPSTREAM = "upstream"
    RATE_LIMITED = "rate_limited"
    UNRECOGNIZED = "unrecognized"


class CryptofolioError(Exception):
    """Base exception for the application."""
    kind: ErrorKind = ErrorKind.UPSTREAM


class AdapterError(CryptofolioError):
    """Upstream failure inside a chain or exchange adapter."""
    pass


class RateLimitedError(AdapterError):
    """Upstream answered with a rate-limit status."""
    kind = ErrorKind.RATE_LIMITED


class PriceServiceError(CryptofolioError):
    """Error related to price fetching."""
    pass


class TaxCalculationError(CryptofolioError):
    """Error related to tax calculation."""
    pass


class PersistenceError(CryptofolioError):
    """Durable collaborator could not be read or written."""
    pass


class CexIntegrationError(CryptofolioError):
    """Error related to CEX integration."""
    pass
