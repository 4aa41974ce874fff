"""
Shared fixtures and collaborator doubles for the auth client tests.
"""

import asyncio
import sys
from collections import defaultdict, deque
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from auth_shared.exceptions import StatusCodeError, StorageBackendError
from auth_shared.interfaces import INetworkExecutor, ISecureStore
from auth_shared.models import AuthConfig, RequestDescriptor


class FakeSecureStore(ISecureStore):
    """In-memory secure store that can be told to fail per operation."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(values or {})
        self.failing: Set[Tuple[str, str]] = set()

    def fail(self, operation: str, key: str) -> None:
        self.failing.add((operation, key))

    def _check(self, operation: str, key: str) -> None:
        if (operation, key) in self.failing:
            raise StorageBackendError(f"{operation} {key} failed")

    def set(self, key: str, value: str) -> None:
        self._check('set', key)
        self.values[key] = value

    def get(self, key: str) -> Optional[str]:
        self._check('get', key)
        return self.values.get(key)

    def delete(self, key: str) -> None:
        self._check('delete', key)
        self.values.pop(key, None)


class FakeNetworkExecutor(INetworkExecutor):
    """
    Network executor double that records requests and header mutations.

    Responses are configured per URL path; a gate makes execute() wait
    until the test releases it.
    """

    def __init__(self, default_body: bytes = b"tok123"):
        self.default_body = default_body
        self.requests: List[RequestDescriptor] = []
        self.headers: Dict[str, str] = {}
        self.header_log: List[Tuple[str, ...]] = []
        self._responses: Dict[str, Tuple[int, bytes]] = {}
        self._queued: Dict[str, deque] = defaultdict(deque)
        self._errors: Dict[str, Exception] = {}
        self._gates: Dict[str, asyncio.Event] = {}

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def respond(self, path: str, body: bytes = b"", status: int = 200) -> None:
        self._responses[path] = (status, body)

    def respond_once(self, path: str, body: bytes = b"", status: int = 200) -> None:
        """Answer the next request to path, ahead of respond()."""
        self._queued[path].append((status, body))

    def raise_on(self, path: str, error: Exception) -> None:
        self._errors[path] = error

    def gate(self, path: str) -> asyncio.Event:
        event = asyncio.Event()
        self._gates[path] = event
        return event

    async def wait_for_requests(self, count: int) -> None:
        while len(self.requests) < count:
            await asyncio.sleep(0)

    async def execute(self, request: RequestDescriptor) -> bytes:
        self.requests.append(request)
        path = urlsplit(request.url).path

        gate = self._gates.get(path)
        if gate is not None:
            await gate.wait()

        if path in self._errors:
            raise self._errors[path]

        if self._queued[path]:
            status, body = self._queued[path].popleft()
        else:
            status, body = self._responses.get(path, (200, self.default_body))
        if not 200 <= status < 300:
            raise StatusCodeError(status, body)
        return body

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value
        self.header_log.append(('set', name, value))

    def clear_header(self, name: str) -> None:
        self.headers.pop(name, None)
        self.header_log.append(('clear', name))


class RecordingObserver:
    """Observer that counts notifications."""

    def __init__(self):
        self.events: List[str] = []

    def on_login(self) -> None:
        self.events.append('login')

    def on_logout(self) -> None:
        self.events.append('logout')


@pytest.fixture
def auth_config():
    return AuthConfig(
        scheme="https",
        host="api.example.com",
        login_path="/login",
        register_path="/register",
        logout_path="/logout"
    )


@pytest.fixture
def secure_store():
    return FakeSecureStore()


@pytest.fixture
def network():
    return FakeNetworkExecutor()


@pytest.fixture
def credentials():
    return {"email": "a@b.com", "password": "x"}
