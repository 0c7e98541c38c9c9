"""
Bearer-token authorization for realtime-channel handshakes.

The transport hands us an "auth data" object that is either
``{"request": <request>, ...}`` or the request-like payload itself, plus an
``accept`` continuation whose calling convention depends on which of the two
it is. Requests may be Werkzeug/Flask request objects or plain mappings with
``headers`` and ``query`` (or ``_query``) entries.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from utils.log import get_logger

logger = get_logger(__name__)

CREDENTIALS_BAD_FORMAT = "credentials_bad_format"
CREDENTIALS_REQUIRED = "credentials_required"
INVALID_TOKEN = "invalid_token"
INTERNAL_ERROR = "internal_error"


class UnauthorizedError(Exception):
    def __init__(self, code: str, message: str, inner: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.inner = inner

    def __repr__(self):
        return f"UnauthorizedError({self.code!r}, {self.message!r})"


@dataclass
class HandshakeResult:
    ok: bool
    data: Any
    error: Optional[UnauthorizedError] = None

    @property
    def token(self) -> Optional[str]:
        if self.ok and isinstance(self.data, Mapping):
            return self.data.get("token")
        return None


def default_success(data, accept):
    if _has_request(data):
        accept()
    else:
        accept(None, True)


def default_fail(error, data, accept):
    if _has_request(data):
        accept(error)
    else:
        accept(None, False)


def validate_handshake(tokens, data) -> HandshakeResult:
    """Resolve the handshake's bearer token against the token store."""
    req = _request_of(data)

    try:
        token = _bearer_token(_headers_of(req))
    except UnauthorizedError as error:
        return HandshakeResult(ok=False, data=data, error=error)

    if not token:
        token = _query_of(req).get("token")

    if not token:
        error = UnauthorizedError(CREDENTIALS_REQUIRED, "No authorization token was found")
        return HandshakeResult(ok=False, data=data, error=error)

    try:
        found = tokens.find(token=token)
    except SQLAlchemyError as exc:
        logger.exception("handshake_token_lookup_failed")
        error = UnauthorizedError(INTERNAL_ERROR, "Token lookup failed", inner=exc)
        return HandshakeResult(ok=False, data=data, error=error)

    if not found:
        error = UnauthorizedError(INVALID_TOKEN, "Token could not be found")
        return HandshakeResult(ok=False, data=data, error=error)

    return HandshakeResult(ok=True, data={**_as_dict(data), "token": token})


def authorize(tokens, success: Callable = None, fail: Callable = None):
    """
    Build a handshake validator ``(data, accept)`` bound to a token store.

    ``success(data, accept)`` and ``fail(error, data, accept)`` override how
    the outcome is reported to the transport.
    """
    on_success = success or default_success
    on_fail = fail or default_fail

    def validator(data, accept):
        result = validate_handshake(tokens, data)
        if result.ok:
            return on_success(result.data, accept)

        logger.info("handshake_rejected", code=result.error.code)
        return on_fail(result.error, data, accept)

    return validator


def _bearer_token(headers) -> Optional[str]:
    header = _authorization_header(headers)
    if not header:
        return None

    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError(CREDENTIALS_BAD_FORMAT, "Format is Authorization: Bearer [token]")
    return parts[1]


def _has_request(data) -> bool:
    return _get(data, "request") is not None


def _request_of(data):
    return _get(data, "request") or data


def _headers_of(req):
    return _get(req, "headers") or {}


def _query_of(req) -> Mapping:
    for name in ("_query", "query", "args"):
        query = _get(req, name)
        if query and _get(query, "token"):
            return query
    return {}


def _get(obj, key):
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _authorization_header(headers) -> Optional[str]:
    if isinstance(headers, Mapping):
        for name, value in headers.items():
            if name.lower() == "authorization":
                return value
        return None
    # werkzeug Headers: lookups are already case-insensitive
    return headers.get("authorization")


def _as_dict(data) -> dict:
    if isinstance(data, Mapping):
        return dict(data)
    return {"payload": data}
