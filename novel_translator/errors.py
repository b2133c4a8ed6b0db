"""
Exception types shared across the translator.
"""
from __future__ import annotations

from typing import Optional


class ConfigError(Exception):
    """Invalid or incomplete configuration (unknown model, missing key, ...)."""
    pass


class LLMError(Exception):
    """Base error for completion API calls."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LLMRetryableError(LLMError):
    """Retryable error (network, rate limit, server error, malformed payload)."""
    pass


class LLMFatalError(LLMError):
    """Non-retryable error (auth failure, bad request)."""
    pass
