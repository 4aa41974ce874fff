"""
Tests for the auth orchestrator: login, register, logout, automatic login,
observer notification and serialization of concurrent operations.
"""

import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from auth_client.auth.orchestrator import AuthOrchestrator
from auth_client.auth.token_storage import CREDENTIALS_KEY, TOKEN_KEY
from auth_shared.exceptions import ConnectionFailedError, ErrorCode
from auth_shared.models import AuthState

from conftest import FakeNetworkExecutor, FakeSecureStore, RecordingObserver


def make_orchestrator(network, store, config, observer=None):
    orchestrator = AuthOrchestrator(network, store, config)
    if observer is not None:
        orchestrator.subscribe(observer)
    return orchestrator


def assert_consistent(orchestrator, store, network):
    """Cached flag, stored token and session header agree."""
    token = store.values.get(TOKEN_KEY)
    assert orchestrator.is_authenticated == (token is not None)
    if token is None:
        assert "Authorization" not in network.headers
    else:
        assert network.headers["Authorization"] == f"Bearer {token}"


class TestLogin:
    """Login and register flows."""

    @pytest.mark.asyncio
    async def test_login_success(self, network, secure_store, auth_config, credentials):
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        result = await orchestrator.login(credentials)

        assert result.success
        assert result.token == "tok123"
        assert orchestrator.is_authenticated
        assert orchestrator.state == AuthState.AUTHENTICATED
        assert secure_store.values[TOKEN_KEY] == "tok123"
        assert network.headers["Authorization"] == "Bearer tok123"
        assert observer.events == ['login']

        request = network.requests[0]
        assert request.method == 'POST'
        assert request.url == "https://api.example.com/login"
        assert json.loads(request.body) == credentials

    @pytest.mark.asyncio
    async def test_register_success(self, network, secure_store, auth_config, credentials):
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        result = await orchestrator.register(credentials)

        assert result.success
        assert network.requests[0].url == "https://api.example.com/register"
        assert orchestrator.is_authenticated
        assert observer.events == ['login']

    @pytest.mark.asyncio
    async def test_register_conflict(self, network, secure_store, auth_config, credentials):
        network.respond("/register", status=409)
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        result = await orchestrator.register(credentials)

        assert not result.success
        assert result.error_code == ErrorCode.USER_ALREADY_EXISTS
        assert not orchestrator.is_authenticated
        assert TOKEN_KEY not in secure_store.values
        assert observer.events == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [
        (400, ErrorCode.INTERNAL_SERVER_ERROR),
        (401, ErrorCode.USER_ALREADY_LOGGED_OUT),
        (404, ErrorCode.USER_NOT_FOUND),
        (500, ErrorCode.NETWORK_ERROR),
    ])
    async def test_login_status_errors(self, network, secure_store, auth_config, credentials,
                                       status, expected):
        network.respond("/login", status=status)
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        result = await orchestrator.login(credentials)

        assert result.error_code == expected
        assert not orchestrator.is_authenticated
        assert observer.events == []
        assert_consistent(orchestrator, secure_store, network)

    @pytest.mark.asyncio
    async def test_login_unreachable(self, network, secure_store, auth_config, credentials):
        network.raise_on("/login", ConnectionFailedError("unreachable"))
        orchestrator = make_orchestrator(network, secure_store, auth_config)

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_failed_login_keeps_existing_session(self, network, auth_config, credentials):
        """A rejected login does not touch a session that is already established."""
        store = FakeSecureStore({TOKEN_KEY: "old"})
        network.respond("/login", status=404)
        orchestrator = make_orchestrator(network, store, auth_config)

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.USER_NOT_FOUND
        assert orchestrator.is_authenticated
        assert store.values[TOKEN_KEY] == "old"
        assert network.headers["Authorization"] == "Bearer old"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"", b"   "])
    async def test_empty_body_is_bad_data(self, network, secure_store, auth_config, credentials, body):
        network.respond("/login", body=body)
        orchestrator = make_orchestrator(network, secure_store, auth_config)

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.BAD_DATA
        assert not orchestrator.is_authenticated
        assert TOKEN_KEY not in secure_store.values

    @pytest.mark.asyncio
    async def test_token_field(self, network, secure_store, auth_config, credentials):
        network.respond("/login", body=b'{"token": "tok123"}')
        orchestrator = make_orchestrator(network, secure_store, replace(auth_config, token_field="token"))

        result = await orchestrator.login(credentials)

        assert result.token == "tok123"
        assert secure_store.values[TOKEN_KEY] == "tok123"

    @pytest.mark.asyncio
    async def test_token_save_failure(self, network, secure_store, auth_config, credentials):
        secure_store.fail('set', TOKEN_KEY)
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.SECURE_STORAGE_ERROR
        assert not orchestrator.is_authenticated
        assert observer.events == []
        assert_consistent(orchestrator, secure_store, network)

    @pytest.mark.asyncio
    async def test_credentials_save_failure_rolls_back_token(self, network, secure_store,
                                                              auth_config, credentials):
        secure_store.fail('set', CREDENTIALS_KEY)
        observer = RecordingObserver()
        orchestrator = make_orchestrator(
            network, secure_store, replace(auth_config, remember_me=True), observer
        )
        await orchestrator.auto_login_task

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.SECURE_STORAGE_ERROR
        assert TOKEN_KEY not in secure_store.values
        assert not orchestrator.is_authenticated
        assert observer.events == []


class TestBuildFailures:
    """Requests that cannot be built never reach the network."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["login", "register"])
    async def test_blank_path(self, network, secure_store, auth_config, credentials, operation):
        config = replace(auth_config, login_path="", register_path="")
        orchestrator = make_orchestrator(network, secure_store, config)

        result = await getattr(orchestrator, operation)(credentials)

        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert network.call_count == 0
        assert not orchestrator.is_authenticated

    @pytest.mark.asyncio
    async def test_blank_logout_path(self, network, auth_config):
        """The local session is still cleared when the logout request cannot be built."""
        store = FakeSecureStore({TOKEN_KEY: "tok123"})
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, store, replace(auth_config, logout_path=""), observer)

        result = await orchestrator.logout()

        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert network.call_count == 0
        assert not orchestrator.is_authenticated
        assert TOKEN_KEY not in store.values
        assert observer.events == ['logout']

    @pytest.mark.asyncio
    async def test_bad_host(self, network, secure_store, auth_config, credentials):
        orchestrator = make_orchestrator(network, secure_store, replace(auth_config, host=""))

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert network.call_count == 0


class TestLogout:
    """Logout flows."""

    @pytest.mark.asyncio
    async def test_logout_success(self, network, secure_store, auth_config, credentials):
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)
        await orchestrator.login(credentials)

        result = await orchestrator.logout()

        assert result.success
        assert not orchestrator.is_authenticated
        assert orchestrator.state == AuthState.UNAUTHENTICATED
        assert TOKEN_KEY not in secure_store.values
        assert "Authorization" not in network.headers
        assert observer.events == ['login', 'logout']

        request = network.requests[-1]
        assert request.method == 'PUT'
        assert request.url == "https://api.example.com/logout"
        assert request.body == b"tok123"

    @pytest.mark.asyncio
    async def test_logout_without_token(self, network, secure_store, auth_config):
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        result = await orchestrator.logout()

        assert result.error_code == ErrorCode.USER_ALREADY_LOGGED_OUT
        assert network.call_count == 0
        assert observer.events == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure,expected", [
        (ConnectionFailedError("unreachable"), ErrorCode.NETWORK_ERROR),
        (None, ErrorCode.USER_ALREADY_LOGGED_OUT),
    ])
    async def test_remote_failure_keeps_local_logout(self, network, auth_config, failure, expected):
        if failure is None:
            network.respond("/logout", status=401)
        else:
            network.raise_on("/logout", failure)
        store = FakeSecureStore({TOKEN_KEY: "tok123"})
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, store, auth_config, observer)

        result = await orchestrator.logout()

        assert result.error_code == expected
        assert not orchestrator.is_authenticated
        assert TOKEN_KEY not in store.values
        assert "Authorization" not in network.headers
        assert observer.events == ['logout']

    @pytest.mark.asyncio
    async def test_logout_storage_failure(self, network, auth_config):
        store = FakeSecureStore({TOKEN_KEY: "tok123"})
        store.fail('delete', TOKEN_KEY)
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, store, auth_config, observer)

        result = await orchestrator.logout()

        assert result.error_code == ErrorCode.SECURE_STORAGE_ERROR
        assert network.call_count == 0
        assert observer.events == []
        assert_consistent(orchestrator, store, network)

    @pytest.mark.asyncio
    async def test_logout_removes_stored_credentials(self, network, secure_store, auth_config, credentials):
        orchestrator = make_orchestrator(network, secure_store, replace(auth_config, remember_me=True))
        await orchestrator.auto_login_task
        await orchestrator.login(credentials)
        assert CREDENTIALS_KEY in secure_store.values

        await orchestrator.logout()

        assert secure_store.values == {}


class TestCallbacks:
    """Completion callbacks and observers."""

    @pytest.mark.asyncio
    async def test_then_receives_result(self, network, secure_store, auth_config, credentials):
        received = []
        orchestrator = make_orchestrator(network, secure_store, auth_config)

        result = await orchestrator.login(credentials, then=received.append)

        assert received == [result]

    @pytest.mark.asyncio
    async def test_failing_then_does_not_break_operation(self, network, secure_store, auth_config, credentials):
        orchestrator = make_orchestrator(network, secure_store, auth_config)

        result = await orchestrator.logout(then=Mock(side_effect=RuntimeError("boom")))

        assert result.error_code == ErrorCode.USER_ALREADY_LOGGED_OUT

    @pytest.mark.asyncio
    async def test_unsubscribed_observer_not_notified(self, network, secure_store, auth_config, credentials):
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)
        orchestrator.unsubscribe(observer)

        await orchestrator.login(credentials)

        assert observer.events == []

    @pytest.mark.asyncio
    async def test_observer_sees_committed_state(self, network, secure_store, auth_config, credentials):
        seen = []
        orchestrator = make_orchestrator(network, secure_store, auth_config)

        class Checker(RecordingObserver):
            def on_login(self):
                seen.append((orchestrator.is_authenticated, secure_store.values.get(TOKEN_KEY)))

            def on_logout(self):
                seen.append((orchestrator.is_authenticated, secure_store.values.get(TOKEN_KEY)))

        checker = Checker()
        orchestrator.subscribe(checker)

        await orchestrator.login(credentials)
        await orchestrator.logout()

        assert seen == [(True, "tok123"), (False, None)]

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_unknown_error(self, secure_store, auth_config, credentials):
        network = FakeNetworkExecutor()
        network.set_header = Mock(side_effect=RuntimeError("pipeline closed"))
        orchestrator = make_orchestrator(network, secure_store, auth_config)

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.UNKNOWN_ERROR
        assert orchestrator.is_authenticated == (TOKEN_KEY in secure_store.values)


    @pytest.mark.asyncio
    async def test_unexpected_executor_error_is_unknown(self, network, secure_store, auth_config, credentials):
        """Only transport failures are classified as network errors."""
        cause = KeyError("missing")
        network.raise_on("/login", cause)
        audit = Mock()
        orchestrator = AuthOrchestrator(network, secure_store, auth_config, audit_logger=audit)

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.UNKNOWN_ERROR
        assert result.error.cause is cause
        assert not orchestrator.is_authenticated
        audit.log_error.assert_called_once_with(result.error, operation="login")

    @pytest.mark.asyncio
    async def test_unexpected_executor_error_during_logout(self, network, auth_config):
        network.raise_on("/logout", TypeError("bad argument"))
        store = FakeSecureStore({TOKEN_KEY: "tok123"})
        orchestrator = make_orchestrator(network, store, auth_config)

        result = await orchestrator.logout()

        assert result.error_code == ErrorCode.UNKNOWN_ERROR
        assert not orchestrator.is_authenticated
        assert_consistent(orchestrator, store, network)

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, network, secure_store, auth_config, credentials):
        network.raise_on("/login", asyncio.TimeoutError())
        orchestrator = make_orchestrator(network, secure_store, auth_config)

        result = await orchestrator.login(credentials)

        assert result.error_code == ErrorCode.NETWORK_ERROR


class TestSessionRestore:
    """State picked up from the secure store at construction."""

    def test_stored_token_restores_session(self, network, auth_config):
        store = FakeSecureStore({TOKEN_KEY: "tok123"})

        orchestrator = make_orchestrator(network, store, auth_config)

        assert orchestrator.is_authenticated
        assert network.headers["Authorization"] == "Bearer tok123"

    def test_unreadable_store_starts_unauthenticated(self, network, auth_config):
        store = FakeSecureStore({TOKEN_KEY: "tok123"})
        store.fail('get', TOKEN_KEY)

        orchestrator = make_orchestrator(network, store, auth_config)

        assert not orchestrator.is_authenticated
        assert network.headers == {}

    def test_no_auto_login_without_event_loop(self, network, auth_config, credentials):
        store = FakeSecureStore({CREDENTIALS_KEY: json.dumps(credentials)})

        orchestrator = make_orchestrator(network, store, replace(auth_config, remember_me=True))

        assert orchestrator.auto_login_task is None
        assert network.call_count == 0


class TestAutoLogin:
    """Automatic login with remembered credentials."""

    @pytest.mark.asyncio
    async def test_auto_login_roundtrip(self, secure_store, auth_config, credentials):
        """Credentials remembered by one client log the next one in."""
        config = replace(auth_config, remember_me=True)
        first_network = FakeNetworkExecutor()
        first = make_orchestrator(first_network, secure_store, config)
        await first.auto_login_task
        await first.login(credentials)
        secure_store.values.pop(TOKEN_KEY)

        network = FakeNetworkExecutor()
        observer = RecordingObserver()
        second = AuthOrchestrator(network, secure_store, config)
        second.subscribe(observer)
        await second.auto_login_task

        assert second.is_authenticated
        assert network.headers["Authorization"] == "Bearer tok123"
        assert json.loads(network.requests[0].body) == credentials
        assert observer.events == ['login']

    @pytest.mark.asyncio
    async def test_auto_login_without_credentials(self, network, secure_store, auth_config):
        orchestrator = make_orchestrator(network, secure_store, replace(auth_config, remember_me=True))

        await orchestrator.auto_login_task

        assert network.call_count == 0
        assert not orchestrator.is_authenticated

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 404])
    async def test_rejected_credentials_forgotten(self, network, auth_config, credentials, status):
        network.respond("/login", status=status)
        store = FakeSecureStore({CREDENTIALS_KEY: json.dumps(credentials), TOKEN_KEY: "stale"})
        observer = RecordingObserver()
        orchestrator = AuthOrchestrator(network, store, replace(auth_config, remember_me=True))
        orchestrator.subscribe(observer)

        await orchestrator.auto_login_task

        assert store.values == {}
        assert not orchestrator.is_authenticated
        assert "Authorization" not in network.headers
        assert observer.events == ['logout']

    @pytest.mark.asyncio
    async def test_network_failure_keeps_credentials(self, network, auth_config, credentials):
        network.raise_on("/login", ConnectionFailedError("offline"))
        store = FakeSecureStore({CREDENTIALS_KEY: json.dumps(credentials)})
        orchestrator = make_orchestrator(network, store, replace(auth_config, remember_me=True))

        await orchestrator.auto_login_task

        assert CREDENTIALS_KEY in store.values
        assert not orchestrator.is_authenticated

    @pytest.mark.asyncio
    async def test_rejected_auto_login_keeps_queued_login(self, network, auth_config, credentials):
        """A login queued behind a rejected automatic login keeps its session."""
        stale = {"email": "old@b.com", "password": "old"}
        store = FakeSecureStore({CREDENTIALS_KEY: json.dumps(stale)})
        gate = network.gate("/login")
        network.respond_once("/login", status=404)
        observer = RecordingObserver()
        orchestrator = AuthOrchestrator(network, store, replace(auth_config, remember_me=True))
        orchestrator.subscribe(observer)

        await network.wait_for_requests(1)
        login_task = asyncio.create_task(orchestrator.login(credentials))
        for _ in range(5):
            await asyncio.sleep(0)
        assert network.call_count == 1

        gate.set()
        await orchestrator.auto_login_task
        result = await login_task

        assert result.success
        assert store.values[TOKEN_KEY] == result.token
        assert json.loads(store.values[CREDENTIALS_KEY]) == credentials
        assert orchestrator.is_authenticated
        assert network.headers["Authorization"] == f"Bearer {result.token}"
        assert observer.events == ['login']
        assert json.loads(network.requests[0].body) == stale
        assert json.loads(network.requests[1].body) == credentials

    @pytest.mark.asyncio
    async def test_explicit_auto_login(self, network, auth_config, credentials):
        store = FakeSecureStore({CREDENTIALS_KEY: json.dumps(credentials)})
        orchestrator = make_orchestrator(network, store, auth_config)

        await orchestrator.try_auto_login()

        assert orchestrator.is_authenticated


class TestConcurrency:
    """Operations are serialized and leave state consistent."""

    @pytest.mark.asyncio
    async def test_logout_waits_for_login(self, network, secure_store, auth_config, credentials):
        gate = network.gate("/login")
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        login_task = asyncio.create_task(orchestrator.login(credentials))
        await network.wait_for_requests(1)
        logout_task = asyncio.create_task(orchestrator.logout())
        for _ in range(5):
            await asyncio.sleep(0)

        assert network.call_count == 1

        gate.set()
        login_result, logout_result = await asyncio.gather(login_task, logout_task)

        assert login_result.success
        assert logout_result.success
        assert [request.method for request in network.requests] == ['POST', 'PUT']
        assert observer.events == ['login', 'logout']
        assert_consistent(orchestrator, secure_store, network)

    @pytest.mark.asyncio
    async def test_login_waits_for_logout(self, network, auth_config, credentials):
        store = FakeSecureStore({TOKEN_KEY: "old"})
        gate = network.gate("/logout")
        orchestrator = make_orchestrator(network, store, auth_config)

        logout_task = asyncio.create_task(orchestrator.logout())
        await network.wait_for_requests(1)
        login_task = asyncio.create_task(orchestrator.login(credentials))
        for _ in range(5):
            await asyncio.sleep(0)

        assert network.call_count == 1

        gate.set()
        await asyncio.gather(logout_task, login_task)

        assert orchestrator.is_authenticated
        assert store.values[TOKEN_KEY] == "tok123"
        assert_consistent(orchestrator, store, network)

    @pytest.mark.asyncio
    async def test_many_operations(self, network, secure_store, auth_config, credentials):
        observer = RecordingObserver()
        orchestrator = make_orchestrator(network, secure_store, auth_config, observer)

        operations = [
            orchestrator.login(credentials) if i % 3 else orchestrator.logout()
            for i in range(12)
        ]
        results = await asyncio.gather(*operations)

        assert_consistent(orchestrator, secure_store, network)
        logouts = [result for i, result in enumerate(results) if i % 3 == 0]
        logins = [result for i, result in enumerate(results) if i % 3]
        assert all(result.success for result in logins)
        assert observer.events.count("login") == len(logins)
        assert observer.events.count("logout") == sum(result.success for result in logouts)
