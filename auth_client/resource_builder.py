"""
Request construction for the identity endpoint.

Turns credentials or a token plus the endpoint configuration into a
RequestDescriptor. Configuration problems are reported as BuildError
before any network activity happens.
"""

import json
import logging
from typing import Dict, Union
from urllib.parse import urlunsplit

from auth_shared.exceptions import BuildError
from auth_shared.models import AuthConfig, OperationKind, RequestDescriptor

logger = logging.getLogger(__name__)

JSON_HEADERS = {
    'Content-Type': 'application/json',
    'Accept': 'application/json',
}


class ResourceBuilder:
    """Builds login, register and logout requests for one AuthConfig."""

    def __init__(self, config: AuthConfig):
        self.config = config

    def build(
        self,
        kind: OperationKind,
        payload: Union[Dict[str, str], str]
    ) -> RequestDescriptor:
        """
        Build the request for an operation.

        Args:
            kind: Operation to build
            payload: Credentials mapping for login/register, token for logout

        Raises:
            BuildError: If no valid absolute URL or body can be formed
        """
        if kind is OperationKind.LOGOUT:
            return self.build_logout(payload)
        return self.build_credentials_request(kind, payload)

    def build_credentials_request(
        self,
        kind: OperationKind,
        credentials: Dict[str, str]
    ) -> RequestDescriptor:
        url = self.build_url(self.config.path_for(kind))

        try:
            body = json.dumps(credentials).encode('utf-8')
        except (TypeError, ValueError) as e:
            raise BuildError(f"Credentials for {kind.value} are not JSON serializable", cause=e)

        return RequestDescriptor(method='POST', url=url, body=body, headers=dict(JSON_HEADERS))

    def build_logout(self, token: str) -> RequestDescriptor:
        """The logout request carries the raw token as its body."""
        url = self.build_url(self.config.logout_path)

        if not isinstance(token, str) or not token:
            raise BuildError("Logout requires a non-empty token")

        return RequestDescriptor(
            method='PUT',
            url=url,
            body=token.encode('utf-8'),
            headers={'Content-Type': 'text/plain; charset=utf-8'}
        )

    def build_url(self, path: str) -> str:
        """
        Compose scheme, host, optional port and path into an absolute URL.

        Raises:
            BuildError: For a blank path, scheme or host, or malformed values
        """
        scheme = (self.config.scheme or '').strip().lower()
        host = (self.config.host or '').strip()
        path = (path or '').strip()

        if not path:
            raise BuildError("Endpoint path is empty", context={'host': host})
        if not scheme or not scheme.isalpha():
            raise BuildError(f"Invalid URL scheme: {self.config.scheme!r}")
        if not host or any(ch.isspace() or ch in '/?#@' for ch in host):
            raise BuildError(f"Invalid host: {self.config.host!r}")
        if any(ch.isspace() for ch in path):
            raise BuildError(f"Endpoint path contains whitespace: {path!r}")

        netloc = host
        if self.config.port is not None:
            try:
                port = int(self.config.port)
            except (TypeError, ValueError) as e:
                raise BuildError(f"Invalid port: {self.config.port!r}", cause=e)
            if not 0 < port < 65536:
                raise BuildError(f"Invalid port: {port}")
            netloc = f"{host}:{port}"

        if not path.startswith('/'):
            path = '/' + path

        return urlunsplit((scheme, netloc, path, '', ''))
