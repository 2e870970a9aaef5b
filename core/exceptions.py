"""Shared exception types for the trading core.

Policy rejections (impact too high, price outside thresholds, deviation below
threshold) are not exceptions; strategies and the executor report them as
outcomes instead.
"""

from typing import List, Optional


class SolharvestError(Exception):
    """Base class for all errors raised by the trading core."""


class ConfigurationInvalid(SolharvestError):
    """Raised when configuration cannot be validated at construction time."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [message])
        super().__init__(message)


class RateLimitedError(SolharvestError):
    """Raised by adapters when a provider signals rate limiting (HTTP 429)."""

    def __init__(self, source: str, status_code: int = 429, retry_after: Optional[float] = None):
        super().__init__(f"{source}: rate limit exceeded (status {status_code})")
        self.source = source
        self.status_code = status_code
        self.retry_after = retry_after


class ServiceUnavailable(SolharvestError):
    """Raised when required market or account data cannot be fetched safely."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        super().__init__(source)
        self.source = source
        self.original = original


class ExecutionFailed(SolharvestError):
    """Raised when a swap submission or confirmation fails."""

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature
