"""Categorized error handling with actionable messages.

Provides structured error types with exit codes and recovery suggestions
for the credential layer, the API clients and the CLI.
"""

from __future__ import annotations

import json
from enum import IntEnum
from typing import ClassVar


class ExitCode(IntEnum):
    """Exit codes for scripting integration.

    Standard categories:
    - 0: Success
    - 1-9: Usage/config errors (operator can fix)
    - 10-19: Credential errors
    - 20-29: Network errors
    - 30-39: API errors
    - 40-49: System errors
    """

    SUCCESS = 0

    # Usage/config errors (1-9)
    USAGE_ERROR = 1
    CONFIG_ERROR = 2
    INVALID_ARGUMENT = 4

    # Credential errors (10-19)
    CREDENTIAL_INVALID = 10
    CREDENTIAL_UNREADABLE = 11
    AUTH_FAILED = 12
    AUTH_PERMISSION = 13

    # Network errors (20-29)
    NETWORK_ERROR = 20

    # API errors (30-39)
    API_ERROR = 30
    API_RATE_LIMIT = 31
    API_SERVER_ERROR = 32
    API_NOT_FOUND = 33

    # System errors (40-49)
    WATCHER_SETUP = 40
    SYSTEM_ERROR = 49


class HcloudCCMError(Exception):
    """Base exception for hcloud-ccm with structured error info.

    Attributes:
        message: Human-readable error message.
        code: Exit code for scripting.
        suggestion: Actionable recovery suggestion.
        details: Optional additional context.
    """

    code: ClassVar[ExitCode] = ExitCode.USAGE_ERROR
    suggestion: ClassVar[str] = ""

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        details: str | None = None,
    ):
        self.message = message
        self._suggestion = suggestion
        self.details = details
        super().__init__(message)

    def get_suggestion(self) -> str:
        """Get the recovery suggestion."""
        return self._suggestion or self.suggestion

    def format_full(self) -> str:
        """Format the complete error message with suggestion."""
        parts = [f"Error: {self.message}"]
        if self.details:
            parts.append(f"Details: {self.details}")
        suggestion = self.get_suggestion()
        if suggestion:
            parts.append(f"Suggestion: {suggestion}")
        return "\n".join(parts)


# Config Errors


class ConfigError(HcloudCCMError):
    """Invalid environment or startup configuration."""

    code = ExitCode.CONFIG_ERROR
    suggestion = "Check the HCLOUD_* and ROBOT_* environment variables."


# Credential Errors


class CredentialError(HcloudCCMError):
    """Base class for problems with on-disk credential material."""

    code = ExitCode.CREDENTIAL_INVALID


class CredentialValidationError(CredentialError):
    """Credential material is absent or malformed."""

    code = ExitCode.CREDENTIAL_INVALID
    suggestion = (
        "Rewrite the credential files in the secret directory. "
        "The previously loaded credentials stay active until then."
    )


class CredentialReadError(CredentialError):
    """A credential file exists but could not be read."""

    code = ExitCode.CREDENTIAL_UNREADABLE
    suggestion = "Check the file permissions of the mounted secret volume."


class WatcherSetupError(HcloudCCMError):
    """The credentials directory cannot be watched."""

    code = ExitCode.WATCHER_SETUP
    suggestion = (
        "Ensure the secret volume is mounted at the expected path "
        "(<root>/etc/hetzner-secret)."
    )


# API Errors


class APIError(HcloudCCMError):
    """Generic API error.

    Attributes:
        status_code: HTTP status code, if the server answered.
        error_code: Machine readable error code from the response body.
    """

    code = ExitCode.API_ERROR
    suggestion = "Try again later. If the problem persists, check the provider status page."

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        suggestion: str | None = None,
        details: str | None = None,
    ):
        super().__init__(message, suggestion=suggestion, details=details)
        self.status_code = status_code
        self.error_code = error_code


class AuthenticationError(APIError):
    """The remote API rejected the active credentials."""

    code = ExitCode.AUTH_FAILED
    suggestion = (
        "The active credentials were rejected. Rotate them by rewriting "
        "the credential files; they are picked up without a restart."
    )


class PermissionDeniedError(APIError):
    """API access denied for the active credentials."""

    code = ExitCode.AUTH_PERMISSION
    suggestion = "Ensure the token has read/write permissions for the project."


class NotFoundError(APIError):
    """Requested resource does not exist."""

    code = ExitCode.API_NOT_FOUND
    suggestion = ""


class RateLimitError(APIError):
    """API rate limit exceeded."""

    code = ExitCode.API_RATE_LIMIT
    suggestion = "The API rate limit was hit. Increase ROBOT_CACHE_TIMEOUT or wait."


class ServerError(APIError):
    """API server error (5xx)."""

    code = ExitCode.API_SERVER_ERROR
    suggestion = "The provider API is experiencing issues. Try again later."


class NetworkError(APIError):
    """Transport failure before any HTTP response was received."""

    code = ExitCode.NETWORK_ERROR
    suggestion = "Check connectivity to the API endpoint and proxy settings."


class InvalidProviderIDError(HcloudCCMError):
    """Provider ID of a node cannot be parsed."""

    code = ExitCode.INVALID_ARGUMENT


def _extract_error_envelope(body: bytes | str | None) -> tuple[str | None, str | None]:
    """Pull ``(code, message)`` out of an ``{"error": {...}}`` response body."""
    if not body:
        return None, None
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None, None
    if not isinstance(payload, dict):
        return None, None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None, None
    return error.get("code"), error.get("message")


def categorize_http_error(
    status_code: int, reason: str = "", body: bytes | str | None = None
) -> APIError:
    """Convert an HTTP status code to the appropriate error type.

    Both remote APIs report failures as ``{"error": {"code": ..., "message": ...}}``;
    when present the message reads ``"<message> (<code>)"``.

    Args:
        status_code: HTTP status code.
        reason: Optional reason phrase.
        body: Optional raw response body.

    Returns:
        Appropriate APIError subclass instance.
    """
    error_code, error_message = _extract_error_envelope(body)
    if error_message:
        message = f"{error_message} ({error_code})" if error_code else error_message
    else:
        message = f"API error: {status_code}"
        if reason:
            message += f" {reason}"

    if status_code == 401:
        cls: type[APIError] = AuthenticationError
    elif status_code == 403:
        cls = PermissionDeniedError
    elif status_code == 404:
        cls = NotFoundError
    elif status_code == 429:
        cls = RateLimitError
    elif status_code >= 500:
        cls = ServerError
    else:
        cls = APIError
    return cls(message, status_code=status_code, error_code=error_code)


def format_error_for_user(error: Exception, verbose: bool = False) -> str:
    """Format any exception for operator display.

    Args:
        error: Exception to format.
        verbose: If True, include details and suggestions.

    Returns:
        Formatted error message string.
    """
    if isinstance(error, HcloudCCMError):
        if verbose:
            return error.format_full()
        return f"Error: {error.message}"
    return f"Error: {error}"


def get_exit_code(error: Exception) -> int:
    """Get the exit code for an exception."""
    if isinstance(error, HcloudCCMError):
        return error.code
    if isinstance(error, PermissionError):
        return ExitCode.CREDENTIAL_UNREADABLE
    if isinstance(error, ValueError):
        return ExitCode.INVALID_ARGUMENT
    return ExitCode.SYSTEM_ERROR


__all__ = [
    "ExitCode",
    "HcloudCCMError",
    "ConfigError",
    "CredentialError",
    "CredentialValidationError",
    "CredentialReadError",
    "WatcherSetupError",
    "APIError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "InvalidProviderIDError",
    "categorize_http_error",
    "format_error_for_user",
    "get_exit_code",
]
