"""Client helpers."""
from __future__ import annotations

import base64
import json
import logging
from typing import Any, Callable, Optional, TypeVar

from . import __version__
from .errors import (
    APIError,
    NotOpenedError,
    ProtocolError,
    SerializationError,
    StratumError,
    TransportError,
    UsageError,
)
from .session import LOGIN_RESOURCE, StratumSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = f"StratumClient/{__version__}"
SUCCESS_CODES = (200, 201)
JSON_CONTENT_TYPE = "application/json"


def _is_json(content_type: str) -> bool:
    return content_type.split(";", 1)[0].strip().lower() == JSON_CONTENT_TYPE


def _encode(data: Any) -> Optional[bytes]:
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    try:
        return json.dumps(data).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"cannot encode post data: {exc}") from exc


def _headers(session: StratumSession) -> dict[str, str]:
    agent = USER_AGENT
    if session.user_agent:
        agent = f"{agent} ({session.user_agent})"
    return {
        "User-Agent": agent,
        "Content-Type": JSON_CONTENT_TYPE,
        "Accept": JSON_CONTENT_TYPE,
    }


def call(
    session: StratumSession,
    method: str,
    query: str,
    data: Any = None,
) -> bytes:
    """Perform an API call and return the raw response body.

    Args:
        session: A StratumSession opened with ``open()``
        method: HTTP method, case-insensitive
        query: Resource query appended to the base URL path, e.g.
            ``"platform/?select=id,name&where=name~linux"``
        data: Request body. Bytes are sent as they are, anything else is
            encoded as JSON. Not allowed with GET.

    Returns:
        bytes: The JSON body of a 200 or 201 response

    Raises:
        UsageError: If data is given with GET
        NotOpenedError: If the session has not been opened
        SerializationError: If data cannot be encoded or a JSON error body cannot be decoded
        APIError: If the API answered with a JSON error document
        TransportError: On network failure or a non-JSON error response
        ProtocolError: If a successful response is not JSON
    """

    method = method.upper()
    if data is not None and method == "GET":
        raise UsageError(f"post data not allowed with method {method}")

    login = query == LOGIN_RESOURCE
    if not login and not session.opened:
        raise NotOpenedError("session not opened with open()")
    url = session.url_for(query)

    body = _encode(data)
    headers = _headers(session)

    if login and method == "GET":
        secret = base64.b64encode(f"{session.username}:{session.password}".encode("utf-8"))
        headers["Authorization"] = "Basic " + secret.decode("ascii")
    else:
        headers["Authorization"] = "Bearer " + session.ensure_fresh_credential()

    logger.debug("%s %s", method, url)
    try:
        resp = session.transport.request(
            method,
            url,
            headers=headers,
            data=body,
            timeout=session.timeout,
            verify=session.verify,
        )
    except StratumError:
        raise
    except Exception as exc:
        raise TransportError(str(exc)) from exc
    logger.debug("%s %s -> %s", method, url, resp.status)

    content_type = resp.content_type
    if resp.status_code not in SUCCESS_CODES:
        if _is_json(content_type):
            try:
                document = json.loads(resp.content)
            except ValueError as exc:
                raise SerializationError(
                    f"{resp.status}: cannot decode error response: {exc}"
                ) from exc
            raise APIError.from_json(
                document, status=resp.status, status_code=resp.status_code
            )
        raise TransportError(resp.status, resp.status_code)

    if not _is_json(content_type):
        raise ProtocolError(f"server responded with unknown Content-Type: {content_type}")

    return resp.content


def unmarshal(
    session: StratumSession,
    method: str,
    query: str,
    data: Any = None,
    into: Optional[Callable[[Any], T]] = None,
) -> Optional[T]:
    """Perform an API call and decode the response.

    If ``into`` is None the body is discarded without being decoded and None
    is returned. Otherwise the decoded JSON document is passed to ``into``
    and its result returned, e.g. ``into=list`` for the plain rows or
    ``into=rows(Platform)`` for a list of ``Platform`` objects.
    """
    content = call(session, method, query, data)
    if into is None:
        return None
    try:
        document = json.loads(content)
    except ValueError as exc:
        raise SerializationError(f"cannot decode response: {exc}") from exc
    try:
        return into(document)
    except (TypeError, ValueError, KeyError) as exc:
        raise SerializationError(f"cannot convert response: {exc}") from exc


def get(
    session: StratumSession,
    query: str,
    into: Optional[Callable[[Any], T]] = None,
) -> Optional[T]:
    """Perform a GET call. See :func:`unmarshal`."""
    return unmarshal(session, "GET", query, None, into)


def post(
    session: StratumSession,
    query: str,
    data: Any = None,
    into: Optional[Callable[[Any], T]] = None,
) -> Optional[T]:
    """Perform a POST call. See :func:`unmarshal`."""
    return unmarshal(session, "POST", query, data, into)


def put(
    session: StratumSession,
    query: str,
    data: Any = None,
    into: Optional[Callable[[Any], T]] = None,
) -> Optional[T]:
    """Perform a PUT call. See :func:`unmarshal`."""
    return unmarshal(session, "PUT", query, data, into)


def delete(
    session: StratumSession,
    query: str,
    data: Any = None,
    into: Optional[Callable[[Any], T]] = None,
) -> Optional[T]:
    """Perform a DELETE call. See :func:`unmarshal`."""
    return unmarshal(session, "DELETE", query, data, into)


def rows(cls: Callable[..., T]) -> Callable[[Any], list[T]]:
    """Return an ``into`` converter building ``cls(**row)`` for each row.

    Example:
        >>> @dataclass
        ... class Platform:
        ...     id: int
        ...     name: str
        >>> platforms = get(session, "platform/?select=id,name", into=rows(Platform))
    """

    def convert(document: Any) -> list[T]:
        if isinstance(document, dict):
            document = [document]
        if not isinstance(document, list):
            raise TypeError(f"expected a JSON array, got {type(document).__name__}")
        return [cls(**row) for row in document]

    return convert
