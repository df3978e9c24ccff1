"""Custom exceptions for the Sprint Report Generator."""

from typing import Any, Dict, Optional


class ReportError(Exception):
    """Base exception for Sprint Report Generator."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SecurityError(ReportError):
    """Security-related errors."""


class AuthenticationError(ReportError):
    """Authentication failures."""


class ValidationError(ReportError):
    """Input validation errors."""


class ConfigurationError(ReportError):
    """Configuration-related errors."""


class IntegrationError(ReportError):
    """External integration errors."""


class JiraIntegrationError(IntegrationError):
    """Jira-specific integration errors."""


class RateLimitError(IntegrationError):
    """API rate limiting errors."""


class ConnectionError(ReportError):
    """Connection-related errors."""


class ExportError(ReportError):
    """Export-related errors."""


class TemplateNotFoundError(ExportError):
    """The report template file does not exist."""
