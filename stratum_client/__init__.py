"""Client library for the query based Stratum REST API.

The Stratum API has no traditional resources: everything is addressed with
a resource query (``select``, ``where``, ``orderby`` and ``returning``
parameters appended to a table path). The API documentation is served by the
API server itself at ``https://<server>/stratum/docs/``.

Example:
    >>> from dataclasses import dataclass
    >>> from stratum_client import StratumSession, get, rows
    >>> @dataclass
    ... class Platform:
    ...     id: int
    ...     name: str
    >>> session = StratumSession(
    ...     username="myuser",
    ...     password="mypassword",
    ...     base_url="https://server/stratum/v1",
    ... )
    >>> session.open()
    >>> for p in get(session, "platform/?orderby=name&select=id,name&where=name~linux", into=rows(Platform)):
    ...     print(f"[{p.id}] {p.name}")
"""

__version__ = "1.0"

from .errors import (
    APIError,
    BackendError,
    ConfigError,
    NotOpenedError,
    ProtocolError,
    SerializationError,
    StratumError,
    TransportError,
    UsageError,
)
from .credential import CredentialCell, LoginResponse
from .session import StratumSession
from .client import call, delete, get, post, put, rows, unmarshal

__all__ = [
    "StratumSession",
    "CredentialCell",
    "LoginResponse",
    "call",
    "unmarshal",
    "get",
    "post",
    "put",
    "delete",
    "rows",
    "StratumError",
    "ConfigError",
    "UsageError",
    "NotOpenedError",
    "SerializationError",
    "TransportError",
    "ProtocolError",
    "APIError",
    "BackendError",
]
