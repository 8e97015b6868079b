# src/edge_dispatcher/exceptions.py

"""
Shared custom exceptions for the Edge Dispatcher service.

Centralizing exception definitions in a separate module prevents circular
import errors between the shim, signing, proxy and routing modules.

Exception Hierarchy:
- EdgeDispatcherError (base)
  - RecoverableError (handled locally, never surfaced to the client)
    - BackendUnavailable
    - UnknownStatusError
  - FatalRequestError (ends the request)
    - MalformedBodyError
    - BodyConsumedError
    - InvalidEventError
    - DispatchFailure
  - ConfigurationError
"""

from typing import Any, Dict, Optional


class EdgeDispatcherError(Exception):
    """Base exception for all Edge Dispatcher errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}  # Copy context to prevent mutation

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_message": self.message,
            "context": self.context,
            "recoverable": isinstance(self, RecoverableError),
        }


class RecoverableError(EdgeDispatcherError):
    """Base class for errors the dispatcher recovers from without failing the request."""
    pass


class FatalRequestError(EdgeDispatcherError):
    """Base class for errors that end the current request."""
    pass


# === Shim Errors ===

class MalformedBodyError(FatalRequestError):
    """Raised when a request body cannot be decoded as URL-encoded UTF-8 text."""

    def __init__(self, reason: str, **kwargs):
        message = f"Malformed form body: {reason}"
        context = {"reason": reason}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="MALFORMED_BODY", context=context, **kwargs)


class BodyConsumedError(FatalRequestError):
    """Raised when a single-read body stream is read (or cloned) a second time."""

    def __init__(self, **kwargs):
        super().__init__(
            "Body stream has already been consumed", error_code="BODY_CONSUMED", **kwargs
        )


class UnknownStatusError(RecoverableError):
    """Raised when a status code has no reason phrase in the status table."""

    def __init__(self, status: int, **kwargs):
        message = f"No reason phrase for status code {status}"
        context = {"status": status}
        super().__init__(message, error_code="UNKNOWN_STATUS", context=context, **kwargs)


# === Backend Errors ===

class BackendUnavailable(RecoverableError):
    """Raised when the object-storage backend cannot be reached."""

    def __init__(self, backend: str, reason: str, **kwargs):
        message = f"Backend '{backend}' unavailable: {reason}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"backend": backend, "reason": reason})
        super().__init__(message, error_code="BACKEND_UNAVAILABLE", context=context, **kwargs)


# === Dispatch Errors ===

class InvalidEventError(FatalRequestError):
    """Raised when the host event does not match the expected payload shape."""

    def __init__(self, message: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "INVALID_EVENT"
        super().__init__(message, **kwargs)


class DispatchFailure(FatalRequestError):
    """Wraps any uncaught exception raised while routing a request."""

    def __init__(self, cause: BaseException, **kwargs):
        message = f"Dispatch failed: {type(cause).__name__}"
        context = {"cause_type": type(cause).__name__}
        super().__init__(message, error_code="DISPATCH_FAILURE", context=context, **kwargs)


# === Configuration Errors ===

class ConfigurationError(EdgeDispatcherError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===

def is_recoverable_error(error: Exception) -> bool:
    """Check if an error is handled without failing the request."""
    return isinstance(error, RecoverableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, EdgeDispatcherError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "error_message": str(error),
            "recoverable": False,  # Unknown errors default to fatal
        }
