"""
Core interfaces for the bearer auth client.

This module defines the abstract collaborators the auth orchestrator
consumes, and the observer base class for authentication state changes.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import RequestDescriptor


class INetworkExecutor(ABC):
    """Interface for executing requests on a shared HTTP pipeline."""

    @abstractmethod
    async def execute(self, request: RequestDescriptor) -> bytes:
        """
        Execute a request and return the response body.

        Raises:
            TransportError: On a non-success status code or connectivity failure
        """
        pass

    @abstractmethod
    def set_header(self, name: str, value: str) -> None:
        """Set a header sent with every subsequent request."""
        pass

    @abstractmethod
    def clear_header(self, name: str) -> None:
        """Stop sending a header with subsequent requests."""
        pass


class ISecureStore(ABC):
    """Interface for a secure key-value store such as the OS keychain."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is not present."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a value. Removing a missing key is not an error."""
        pass


class AuthObserver:
    """
    Listener for login and logout transitions.

    Both hooks default to no-ops; subclasses override the ones they need.
    """

    def on_login(self) -> None:
        pass

    def on_logout(self) -> None:
        pass
