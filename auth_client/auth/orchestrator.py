"""
Auth Orchestrator for the bearer auth client.

This module owns the authentication state of the client. It sequences
request building, network execution, secure storage and the session
header for login, register and logout, and notifies observers of every
transition. All failures are returned as AuthResult values.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from auth_shared.exceptions import (
    AuthError, BuildError, ErrorCode, SecureStorageError, SessionError,
    handle_exception
)
from auth_shared.interfaces import INetworkExecutor, ISecureStore
from auth_shared.logging_config import AuditLogger, log_structured_error
from auth_shared.models import AuthConfig, AuthResult, AuthState, OperationKind
from auth_client.api_client import AiohttpNetworkExecutor, RetryConfig
from auth_client.config import ClientConfiguration
from auth_client.error_mapper import TRANSPORT_FAILURES, map_transport_error, decode_token
from auth_client.observers import ObserverRegistry
from auth_client.resource_builder import ResourceBuilder
from auth_client.auth.session_headers import SessionHeaderManager
from auth_client.auth.token_storage import KeyringSecureStore, TokenStoreAdapter

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

ResultCallback = Callable[[AuthResult], None]

# Auto-login failures meaning the stored session can never be resumed
SESSION_INVALID_CODES = frozenset([
    ErrorCode.USER_NOT_FOUND,
    ErrorCode.USER_ALREADY_LOGGED_OUT,
])


class AuthOrchestrator:
    """
    Manages a single bearer token's lifecycle on one client.

    login, register and logout are serialized by one asyncio lock held for
    the whole operation, so the token store, the session header and the
    cached authentication flag always change together. Observers are
    notified inside that critical section, exactly once per transition.
    """

    def __init__(
        self,
        network_executor: INetworkExecutor,
        secure_store: ISecureStore,
        config: AuthConfig,
        logger: Optional[logging.Logger] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self._network = network_executor
        self._store = TokenStoreAdapter(secure_store, self._logger)
        self._headers = SessionHeaderManager(
            network_executor, config.auth_header, config.auth_scheme, self._logger
        )
        self._resources = ResourceBuilder(config)
        self._observers = ObserverRegistry(self._logger)
        self._audit = audit_logger or AuditLogger()

        self._operation_lock = asyncio.Lock()
        self._authenticated = False
        self._auto_login_task: Optional[asyncio.Task] = None

        self._restore_session()

        if config.remember_me:
            self._schedule_auto_login()

    @classmethod
    def from_configuration(
        cls,
        configuration: ClientConfiguration,
        logger: Optional[logging.Logger] = None,
        audit_logger: Optional[AuditLogger] = None
    ) -> "AuthOrchestrator":
        """
        Create an orchestrator with the default collaborators.

        The network executor is an AiohttpNetworkExecutor using the
        configured timeout and retry attempts; the secure store is a
        KeyringSecureStore for the configured service and storage directory.
        """
        network_executor = AiohttpNetworkExecutor(
            timeout=configuration.get_timeout(),
            retry_config=RetryConfig(max_retries=configuration.get_retry_attempts())
        )
        secure_store = KeyringSecureStore(
            service_name=configuration.get_keyring_service(),
            storage_dir=configuration.get_storage_dir()
        )
        return cls(
            network_executor,
            secure_store,
            configuration.get_auth_config(),
            logger=logger,
            audit_logger=audit_logger
        )

    @property
    def network_executor(self) -> INetworkExecutor:
        return self._network

    @property
    def secure_store(self) -> ISecureStore:
        return self._store.secure_store

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    @property
    def state(self) -> AuthState:
        return AuthState.AUTHENTICATED if self._authenticated else AuthState.UNAUTHENTICATED

    @property
    def auto_login_task(self) -> Optional[asyncio.Task]:
        """Task running the automatic login scheduled at construction, if any."""
        return self._auto_login_task

    def subscribe(self, observer: Any) -> None:
        """Register an observer. The orchestrator does not keep it alive."""
        self._observers.add(observer)

    def unsubscribe(self, observer: Any) -> None:
        self._observers.remove(observer)

    # Public operations

    async def login(
        self,
        credentials: Dict[str, str],
        then: Optional[ResultCallback] = None
    ) -> AuthResult:
        """
        Log in with the given credentials.

        Args:
            credentials: Field name to value mapping sent to the login endpoint
            then: Optional callback receiving the result

        Returns:
            The token on success, a classified error otherwise
        """
        result = await self._serialized(
            OperationKind.LOGIN, lambda: self._acquire_token(OperationKind.LOGIN, credentials)
        )
        self._deliver(result, then)
        return result

    async def register(
        self,
        credentials: Dict[str, str],
        then: Optional[ResultCallback] = None
    ) -> AuthResult:
        """
        Register a new account and start a session with it.

        Same contract as login(), against the register endpoint.
        """
        result = await self._serialized(
            OperationKind.REGISTER, lambda: self._acquire_token(OperationKind.REGISTER, credentials)
        )
        self._deliver(result, then)
        return result

    async def logout(self, then: Optional[ResultCallback] = None) -> AuthResult:
        """
        End the current session.

        The local session is cleared before the server is told about it,
        and stays cleared whatever the server answers.
        """
        result = await self._serialized(OperationKind.LOGOUT, self._end_session)
        self._deliver(result, then)
        return result

    async def try_auto_login(self) -> None:
        """
        Log in again with the credentials stored by a previous session.

        Does nothing when no credentials are stored. Never raises. Credentials
        the server rejects are removed in the same critical section as the
        attempt, so a login queued behind it is never undone.
        """
        try:
            async with self._operation_lock:
                try:
                    credentials = self._store.get_credentials()
                except SecureStorageError as e:
                    self._logger.warning(f"Automatic login skipped, stored credentials unreadable: {e.message}")
                    return

                if not credentials:
                    self._logger.debug("No stored credentials, skipping automatic login")
                    return

                self._logger.info("Attempting automatic login with stored credentials")
                result = await self._run(
                    OperationKind.LOGIN, lambda: self._acquire_token(OperationKind.LOGIN, credentials)
                )

                if result.success:
                    self._logger.info("Automatic login succeeded")
                    return

                self._logger.warning(f"Automatic login failed: {result.error_code.name}")
                if result.error_code in SESSION_INVALID_CODES:
                    # Still under the lock that produced the rejection
                    self._purge_session("automatic login rejected")

        except Exception:
            self._logger.exception("Automatic login aborted")

    # Critical section

    async def _serialized(
        self,
        kind: OperationKind,
        operation: Callable[[], Awaitable[AuthResult]]
    ) -> AuthResult:
        async with self._operation_lock:
            return await self._run(kind, operation)

    async def _run(
        self,
        kind: OperationKind,
        operation: Callable[[], Awaitable[AuthResult]]
    ) -> AuthResult:
        """Run an operation while the caller holds the operation lock."""
        try:
            result = await operation()
        except Exception as e:
            error = handle_exception(e, context={'operation': kind.value})
            log_structured_error(self._logger, error, operation=kind.value)
            self._audit.log_error(error, operation=kind.value)
            self._resync_state()
            result = AuthResult.failure(error)

        if result.success:
            self._audit.log_authentication(kind.value, success=True)
        else:
            self._audit.log_authentication(
                kind.value, success=False, failure_reason=result.error_code.name
            )

        return result

    async def _acquire_token(self, kind: OperationKind, credentials: Dict[str, str]) -> AuthResult:
        try:
            request = self._resources.build(kind, credentials)
        except BuildError as e:
            self._logger.error(f"Cannot build {kind.value} request: {e.message}")
            return AuthResult.failure(e)

        try:
            body = await self._network.execute(request)
        except TRANSPORT_FAILURES as e:
            error = map_transport_error(e)
            self._logger.warning(f"{kind.value.capitalize()} failed: {error.error_code.name}")
            return AuthResult.failure(error)

        try:
            token = decode_token(body, self.config.token_field)
            self._commit_login(token, credentials, kind)
        except AuthError as e:
            self._logger.error(f"{kind.value.capitalize()} response not committed: {e.message}")
            return AuthResult.failure(e)

        self._logger.info(f"{kind.value.capitalize()} successful")
        return AuthResult.ok(token)

    def _commit_login(self, token: str, credentials: Dict[str, str], kind: OperationKind) -> None:
        self._store.save_token(token)

        if self.config.remember_me:
            try:
                self._store.save_credentials(credentials)
            except SecureStorageError:
                self._rollback_token()
                raise

        self._headers.attach(token)
        self._authenticated = True
        self._audit.log_session_change(True, kind.value)
        self._observers.notify_login()

    async def _end_session(self) -> AuthResult:
        try:
            token = self._store.get_token()
        except SecureStorageError as e:
            return AuthResult.failure(e)

        if token is None:
            if self._authenticated or self._headers.is_attached:
                # Store was emptied behind our back; align silently
                self._headers.detach()
                self._authenticated = False
            self._logger.info("Logout requested without a stored token")
            return AuthResult.failure(SessionError(
                "No stored token, user is already logged out",
                error_code=ErrorCode.USER_ALREADY_LOGGED_OUT
            ))

        request = None
        build_error: Optional[BuildError] = None
        try:
            request = self._resources.build(OperationKind.LOGOUT, token)
        except BuildError as e:
            build_error = e

        try:
            self._store.delete_credentials()
            self._store.delete_token()
        except SecureStorageError as e:
            self._resync_state()
            return AuthResult.failure(e)

        self._headers.detach()
        self._authenticated = False
        self._audit.log_session_change(False, OperationKind.LOGOUT.value)
        self._observers.notify_logout()

        if build_error is not None:
            self._logger.error(f"Cannot build logout request: {build_error.message}")
            return AuthResult.failure(build_error)

        try:
            await self._network.execute(request)
        except TRANSPORT_FAILURES as e:
            error = map_transport_error(e)
            self._logger.warning(
                f"Remote logout failed ({error.error_code.name}), local session already cleared"
            )
            return AuthResult.failure(error)

        self._logger.info("Logout successful")
        return AuthResult.ok()

    def _purge_session(self, reason: str) -> None:
        try:
            self._store.delete_credentials()
            self._store.delete_token()
        except SecureStorageError as e:
            self._logger.warning(f"Could not clear invalid session: {e.message}")
        self._resync_state(reason)

    # State helpers

    def _restore_session(self) -> None:
        try:
            token = self._store.get_token()
        except SecureStorageError:
            self._logger.warning("Stored token unreadable, starting unauthenticated")
            return

        if token:
            self._headers.attach(token)
            self._authenticated = True
            self._logger.info("Restored session from secure storage")

    def _rollback_token(self) -> None:
        try:
            self._store.delete_token()
        except SecureStorageError as e:
            self._logger.warning(f"Could not roll back token after failed commit: {e.message}")
        self._resync_state("rolled back")

    def _resync_state(self, reason: str = "resync") -> None:
        """Align the cached flag and the session header with the token store."""
        was_authenticated = self._authenticated

        try:
            token = self._store.get_token()
        except SecureStorageError:
            token = None

        try:
            if token:
                self._headers.attach(token)
            elif self._headers.is_attached:
                self._headers.detach()
        except Exception:
            self._logger.exception("Session header could not be aligned with the token store")

        self._authenticated = token is not None
        if was_authenticated == self._authenticated:
            return

        self._audit.log_session_change(self._authenticated, reason)
        if self._authenticated:
            self._observers.notify_login()
        else:
            self._observers.notify_logout()

    def _schedule_auto_login(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug("No running event loop, automatic login must be awaited explicitly")
            return
        self._auto_login_task = loop.create_task(self.try_auto_login())

    def _deliver(self, result: AuthResult, then: Optional[ResultCallback]) -> None:
        if then is None:
            return
        try:
            then(result)
        except Exception:
            self._logger.exception("Completion callback raised")
