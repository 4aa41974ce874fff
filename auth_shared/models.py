"""
Core data models for the bearer auth client.

This module defines the configuration, request descriptors and operation
results shared between the auth orchestrator and its collaborators.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional
from enum import Enum

from auth_shared.exceptions import AuthError, ErrorCode


class OperationKind(Enum):
    """Remote operations issued against the identity endpoint."""
    LOGIN = "login"
    REGISTER = "register"
    LOGOUT = "logout"


class AuthState(Enum):
    """Authentication state of an orchestrator."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthConfig:
    """
    Endpoint configuration for the identity service.

    Values are not validated here; a path or host that cannot form a URL is
    reported as a build error when a request is made.
    """
    scheme: str
    host: str
    login_path: str
    register_path: str
    logout_path: str
    port: Optional[int] = None
    token_field: Optional[str] = None
    remember_me: bool = False
    auth_header: str = "Authorization"
    auth_scheme: str = "Bearer"

    def path_for(self, kind: OperationKind) -> str:
        """Return the configured path for an operation."""
        if kind is OperationKind.LOGIN:
            return self.login_path
        if kind is OperationKind.REGISTER:
            return self.register_path
        return self.logout_path


@dataclass
class RequestDescriptor:
    """Transport-agnostic description of an HTTP request."""
    method: str
    url: str
    body: Optional[bytes] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a login, register or logout operation."""
    success: bool
    token: Optional[str] = None
    error: Optional[AuthError] = None

    @classmethod
    def ok(cls, token: Optional[str] = None) -> "AuthResult":
        return cls(success=True, token=token)

    @classmethod
    def failure(cls, error: AuthError) -> "AuthResult":
        return cls(success=False, error=error)

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.error_code if self.error is not None else None
