"""
Classification of transport failures and response bodies.

map_transport_error() turns whatever the network executor raised into a
member of the domain error taxonomy; decode_token() turns a success body
into a token.
"""

import asyncio
import json
from typing import Dict, Optional, Tuple

from aiohttp import ClientError, ClientResponseError

from auth_shared.exceptions import (
    AuthError, ErrorCode, NetworkError, SessionError, DecodeError,
    StatusCodeError, TransportError
)

# Failures a network executor may raise for a request it could not complete
TRANSPORT_FAILURES = (TransportError, ClientError, asyncio.TimeoutError, OSError, AuthError)

# Status codes the identity endpoint is allowed to return, and their meaning
STATUS_CODE_MAP: Dict[int, Tuple[ErrorCode, str]] = {
    400: (ErrorCode.INTERNAL_SERVER_ERROR, "Server rejected the request"),
    401: (ErrorCode.USER_ALREADY_LOGGED_OUT, "Session is not valid on the server"),
    404: (ErrorCode.USER_NOT_FOUND, "User not found"),
    409: (ErrorCode.USER_ALREADY_EXISTS, "User already exists"),
}


def _status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, StatusCodeError):
        return error.status_code
    if isinstance(error, ClientResponseError):
        return error.status
    return None


def map_transport_error(error: BaseException) -> AuthError:
    """
    Map a network executor failure to a domain error.

    Args:
        error: Exception raised while executing a request

    Returns:
        The classified error. Unmapped status codes and connectivity
        failures become NetworkError(NETWORK_ERROR) wrapping the cause.
    """
    if isinstance(error, AuthError):
        return error

    status_code = _status_code_of(error)
    mapped = STATUS_CODE_MAP.get(status_code) if status_code is not None else None

    if mapped is None:
        return NetworkError(
            f"Network request failed: {error}",
            error_code=ErrorCode.NETWORK_ERROR,
            status_code=status_code,
            cause=error
        )

    error_code, message = mapped
    if error_code is ErrorCode.INTERNAL_SERVER_ERROR:
        return NetworkError(message, error_code=error_code, status_code=status_code, cause=error)
    return SessionError(message, error_code=error_code, status_code=status_code, cause=error)


def decode_token(body: bytes, token_field: Optional[str] = None) -> str:
    """
    Extract the token from a login or register response body.

    Args:
        body: Raw response body
        token_field: JSON field holding the token, or None for a raw body

    Raises:
        DecodeError: If the body does not contain a usable token
    """
    try:
        text = body.decode('utf-8').strip()
    except (UnicodeDecodeError, AttributeError) as e:
        raise DecodeError("Response body is not UTF-8 text", cause=e)

    if not text:
        raise DecodeError("Response body is empty")

    if token_field is None:
        # A JSON string literal is accepted as a raw token too
        if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
            try:
                text = json.loads(text)
            except ValueError as e:
                raise DecodeError("Response body is a malformed JSON string", cause=e)
            if not isinstance(text, str) or not text.strip():
                raise DecodeError("Response body is an empty token")
            text = text.strip()
        return text

    try:
        payload = json.loads(text)
    except ValueError as e:
        raise DecodeError("Response body is not valid JSON", cause=e)

    if not isinstance(payload, dict):
        raise DecodeError("Response body is not a JSON object")

    token = payload.get(token_field)
    if not isinstance(token, str) or not token.strip():
        raise DecodeError(
            f"Response field '{token_field}' does not hold a token",
            context={'token_field': token_field}
        )
    return token.strip()
