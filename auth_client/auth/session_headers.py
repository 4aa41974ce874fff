"""
Bearer header management on the shared request pipeline.
"""

import logging
from typing import Optional

from auth_shared.interfaces import INetworkExecutor


class SessionHeaderManager:
    """Attaches and detaches the session token on a network executor."""

    def __init__(
        self,
        network: INetworkExecutor,
        header_name: str = "Authorization",
        scheme: str = "Bearer",
        logger: Optional[logging.Logger] = None
    ):
        self.network = network
        self.header_name = header_name
        self.scheme = scheme
        self._attached = False
        self._logger = logger or logging.getLogger(__name__)

    @property
    def is_attached(self) -> bool:
        return self._attached

    def header_value(self, token: str) -> str:
        return f"{self.scheme} {token}" if self.scheme else token

    def attach(self, token: str) -> None:
        self.network.set_header(self.header_name, self.header_value(token))
        self._attached = True
        self._logger.debug(f"Session header {self.header_name} attached")

    def detach(self) -> None:
        self.network.clear_header(self.header_name)
        self._attached = False
        self._logger.debug(f"Session header {self.header_name} detached")
