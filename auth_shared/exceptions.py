"""
Exception hierarchy for the bearer auth client.

This module defines the closed set of domain errors returned by the auth
orchestrator, plus the failures raised by the network and secure storage
collaborators before they are classified.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for authentication operations."""

    # Resource build errors (1000-1099)
    INTERNAL_ERROR = "BUILD_1001"

    # Network and status code errors (2000-2099)
    INTERNAL_SERVER_ERROR = "NETWORK_2001"
    NETWORK_ERROR = "NETWORK_2002"

    # Session and user conflict errors (3000-3099)
    USER_ALREADY_LOGGED_OUT = "SESSION_3001"
    USER_NOT_FOUND = "SESSION_3002"
    USER_ALREADY_EXISTS = "SESSION_3003"

    # Secure storage errors (4000-4099)
    SECURE_STORAGE_ERROR = "STORAGE_4001"

    # Decode errors (5000-5099)
    BAD_DATA = "DECODE_5001"

    # Unclassified errors (9000-9099)
    UNKNOWN_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RECONNECT = "reconnect"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


USER_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.INTERNAL_ERROR: "The client is misconfigured. Contact your administrator.",
    ErrorCode.INTERNAL_SERVER_ERROR: "The server rejected the request.",
    ErrorCode.NETWORK_ERROR: "Could not reach the server. Check your connection.",
    ErrorCode.USER_ALREADY_LOGGED_OUT: "You are already logged out.",
    ErrorCode.USER_NOT_FOUND: "No account matches these credentials.",
    ErrorCode.USER_ALREADY_EXISTS: "An account with these credentials already exists.",
    ErrorCode.SECURE_STORAGE_ERROR: "Could not access the secure credential store.",
    ErrorCode.BAD_DATA: "The server sent a response that could not be read.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred.",
}


class AuthError(Exception):
    """
    Base class for all domain errors of the auth client.

    Carries an error code, context and recovery suggestions so callers can
    branch on the code and log the rest.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[BaseException] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or USER_MESSAGES.get(error_code, message)
        self.timestamp = datetime.now()

        if cause is not None:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'name': self.error_code.name,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause is not None else None
            }
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error_code.name}, {self.message!r})"


class BuildError(AuthError):
    """A request could not be built from the configuration or payload."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INTERNAL_ERROR,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.CONTACT_ADMIN],
            **kwargs
        )


class NetworkError(AuthError):
    """Transport failures and status codes without a more specific meaning."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NETWORK_ERROR,
        status_code: Optional[int] = None,
        **kwargs
    ):
        context = kwargs.pop('context', {})
        if status_code is not None:
            context['status_code'] = status_code

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            context=context,
            **kwargs
        )
        self.status_code = status_code


class SessionError(AuthError):
    """Conflicts between the request and the user's session or account."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: Optional[int] = None,
        **kwargs
    ):
        context = kwargs.pop('context', {})
        if status_code is not None:
            context['status_code'] = status_code

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )
        self.status_code = status_code


class SecureStorageError(AuthError):
    """The secure credential store failed."""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if key:
            context['key'] = key

        super().__init__(
            message=message,
            error_code=ErrorCode.SECURE_STORAGE_ERROR,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


class DecodeError(AuthError):
    """A response body could not be turned into a token."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.BAD_DATA,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.CONTACT_ADMIN],
            **kwargs
        )


class UnknownError(AuthError):
    """Anything not otherwise classified."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNKNOWN_ERROR,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY],
            **kwargs
        )


# Collaborator failures, raised before classification

class TransportError(Exception):
    """Base exception for network executor failures."""
    pass


class StatusCodeError(TransportError):
    """The server answered with a non-success status code."""

    def __init__(self, status_code: int, body: bytes = b""):
        super().__init__(f"Request failed with status {status_code}")
        self.status_code = status_code
        self.body = body


class ConnectionFailedError(TransportError):
    """The server could not be reached."""
    pass


class StorageBackendError(Exception):
    """Base exception for secure store failures."""
    pass


def handle_exception(
    exception: BaseException,
    context: Optional[Dict[str, Any]] = None
) -> AuthError:
    """
    Convert a generic exception to a structured AuthError.

    Args:
        exception: The original exception
        context: Additional context information

    Returns:
        The exception itself if it is already an AuthError, else an UnknownError
    """
    if isinstance(exception, AuthError):
        return exception

    return UnknownError(
        message=str(exception) or type(exception).__name__,
        context=context,
        cause=exception
    )
