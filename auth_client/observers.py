"""
Multicast notification of authentication state changes.

The registry holds weak, identity-keyed references: it never keeps an
observer alive, and an observer that is garbage collected simply stops
receiving notifications. Callers must keep their own reference to any
observer they subscribe.
"""

import logging
import threading
import weakref
from collections import OrderedDict
from typing import Any, Callable, List, Optional

from auth_shared.interfaces import AuthObserver


class CallbackObserver(AuthObserver):
    """Observer built from individual callables, for registering only the hooks you need."""

    def __init__(
        self,
        on_login: Optional[Callable[[], None]] = None,
        on_logout: Optional[Callable[[], None]] = None
    ):
        self._on_login = on_login
        self._on_logout = on_logout

    def on_login(self) -> None:
        if self._on_login is not None:
            self._on_login()

    def on_logout(self) -> None:
        if self._on_logout is not None:
            self._on_logout()


class ObserverRegistry:
    """
    Identity-keyed set of observers with ordered broadcast.

    Membership changes are safe from any thread and from inside a hook:
    broadcast works on a snapshot and skips observers removed meanwhile.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._observers: "OrderedDict[int, weakref.ref]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._live_observers())

    def __contains__(self, observer: Any) -> bool:
        with self._lock:
            ref = self._observers.get(id(observer))
            return ref is not None and ref() is observer

    def add(self, observer: Any) -> bool:
        """
        Register an observer.

        Returns:
            False if the same object is already registered
        """
        key = id(observer)
        with self._lock:
            existing = self._observers.get(key)
            if existing is not None and existing() is observer:
                return False
            # A dead entry whose id was reused must not lend its position
            self._observers.pop(key, None)
            self._observers[key] = weakref.ref(observer, self._make_reaper(key))

        self._logger.debug(f"Observer registered: {type(observer).__name__}")
        return True

    def remove(self, observer: Any) -> bool:
        """
        Unregister an observer.

        Returns:
            False if the object was not registered
        """
        key = id(observer)
        with self._lock:
            existing = self._observers.get(key)
            if existing is None or existing() is not observer:
                return False
            del self._observers[key]

        self._logger.debug(f"Observer removed: {type(observer).__name__}")
        return True

    def clear(self) -> None:
        with self._lock:
            self._observers.clear()

    def broadcast(self, hook_name: str) -> int:
        """
        Invoke a hook on every registered observer, in registration order.

        Observers without the hook are skipped. An exception raised by one
        observer is logged and does not stop the others.

        Returns:
            Number of observers whose hook ran without raising
        """
        with self._lock:
            snapshot = list(self._observers.items())

        delivered = 0
        for key, ref in snapshot:
            observer = ref()
            if observer is None:
                continue

            with self._lock:
                current = self._observers.get(key)
                if current is None or current() is not observer:
                    continue

            hook = getattr(observer, hook_name, None)
            if not callable(hook):
                continue

            try:
                hook()
                delivered += 1
            except Exception:
                self._logger.exception(
                    f"Observer {type(observer).__name__} failed in {hook_name}"
                )

        return delivered

    def notify_login(self) -> int:
        return self.broadcast('on_login')

    def notify_logout(self) -> int:
        return self.broadcast('on_logout')

    def _live_observers(self) -> List[Any]:
        with self._lock:
            refs = list(self._observers.values())
        return [observer for observer in (ref() for ref in refs) if observer is not None]

    def _make_reaper(self, key: int) -> Callable[[weakref.ref], None]:
        registry_ref = weakref.ref(self)

        def reap(ref: weakref.ref) -> None:
            registry = registry_ref()
            if registry is None:
                return
            with registry._lock:
                if registry._observers.get(key) is ref:
                    del registry._observers[key]

        return reap
