"""
Error taxonomy for generation calls.

``ConfigurationError`` and ``ValidationError`` are raised before any network
call is made.  ``TransportError`` and ``GenerationTimeoutError`` are produced
by the orchestrator from httpx failures and carry a user-displayable message.
``GenerationCancelled`` marks caller-initiated cancellation and is never shown
to the user.
"""

from __future__ import annotations


class ErrorCategory:
    INVALID_REQUEST = "invalid_request"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    BUSY = "busy"


class GenerationError(Exception):
    category: str = ErrorCategory.NETWORK

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(GenerationError):
    category = ErrorCategory.CONFIGURATION


class NoProviderConfiguredError(ConfigurationError):
    """No enabled, fully configured provider can serve the request."""

    def __init__(self, provider: str | None = None) -> None:
        if provider:
            msg = f"AI provider {provider!r} is not enabled or not fully configured."
        else:
            msg = "No AI API configured. Please configure an AI provider in settings."
        super().__init__(msg)
        self.provider = provider


class NoModelSelectedError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("No AI model selected.")


class ModelNotFoundError(ConfigurationError):
    """The model string names no model, and the provider has no default."""

    def __init__(self, model_string: str) -> None:
        super().__init__(f"No such model: {model_string!r}.")
        self.model_string = model_string


class ValidationError(GenerationError):
    category = ErrorCategory.VALIDATION


class GenerationBusyError(GenerationError):
    category = ErrorCategory.BUSY

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"A generation is already running for {entity_id!r}.")
        self.entity_id = entity_id


class TransportError(GenerationError):
    def __init__(
        self,
        message: str,
        category: str = ErrorCategory.NETWORK,
        status_code: int | None = None,
        detail: str = "",
    ) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code
        self.detail = detail


class GenerationTimeoutError(GenerationError):
    category = ErrorCategory.TIMEOUT

    def __init__(self, timeout: float) -> None:
        super().__init__("Generation is taking too long. Please try again.")
        self.timeout = timeout


class GenerationCancelled(GenerationError):
    category = ErrorCategory.CANCELLED

    def __init__(self) -> None:
        super().__init__("Generation cancelled.")


# ---------------------------------------------------------------------------
# HTTP status mapping
# ---------------------------------------------------------------------------

def classify_status(status_code: int) -> str:
    """Map an HTTP status code onto an :class:`ErrorCategory` value."""
    if status_code == 400:
        return ErrorCategory.INVALID_REQUEST
    if status_code in (401, 403):
        return ErrorCategory.AUTH
    if status_code == 404:
        return ErrorCategory.NOT_FOUND
    if status_code == 429:
        return ErrorCategory.RATE_LIMITED
    if status_code >= 500:
        return ErrorCategory.BACKEND_UNAVAILABLE
    return ErrorCategory.INVALID_REQUEST


def user_message(category: str, provider: str, status_code: int | None = None) -> str:
    """User-facing text for a transport failure."""
    if category == ErrorCategory.INVALID_REQUEST:
        return "Invalid request. Please check your API settings."
    if category == ErrorCategory.AUTH:
        if status_code == 403:
            return "Access denied. Your API key may not have the required permissions."
        return f"Invalid API key. Please check your {provider} API key in settings."
    if category == ErrorCategory.NOT_FOUND:
        return f"The selected model was not found at {provider}."
    if category == ErrorCategory.RATE_LIMITED:
        return "Rate limit reached. Please wait a moment and try again."
    if category == ErrorCategory.BACKEND_UNAVAILABLE:
        return f"{provider} server error. Please try again later."
    return f"Could not reach {provider}. Please check your connection."
