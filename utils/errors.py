"""
Defines custom exception classes for the application.
"""
from typing import Any, Optional


class AIReviewException(Exception):
    """Base exception class for aireview application."""
    pass

class ProviderError(AIReviewException):
    """Raised when an error occurs with an LLM provider."""
    pass

class FormatterError(AIReviewException):
    """Raised when an error occurs during report formatting."""
    pass

class ConfigError(AIReviewException):
    """Raised when there is a configuration error."""
    pass

class GitHubError(AIReviewException):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int = 0, response_body: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
