"""Error classes for the Stratum API client."""
from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional


class StratumError(Exception):
    """Base exception for all Stratum client errors."""


class ConfigError(StratumError):
    """Raised when the session configuration is missing or invalid."""


class UsageError(StratumError):
    """Raised when a call violates the method/payload contract."""


class NotOpenedError(StratumError):
    """Raised when an API call is made before ``StratumSession.open()``."""


class SerializationError(StratumError):
    """Raised when a payload or response cannot be encoded or decoded."""


class ProtocolError(StratumError):
    """Raised when the server answers with something the client cannot use."""


class TransportError(StratumError):
    """Raised for network failures and non-JSON error responses."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class BackendError:
    """Error detail reported by the database behind the API."""

    sql: str = ""
    severity: str = ""
    message: str = ""
    detail: str = ""
    code: str = ""

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "BackendError":
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v) for k, v in data.items() if k in known and v is not None})


class APIError(StratumError):
    """Raised when the API returns a JSON error document.

    Attributes:
        status: HTTP status line, e.g. ``"400 Bad Request"``
        status_code: HTTP status code
        message: Top level ``error`` field of the document
        backend: Database error detail, when the failure happened there
    """

    def __init__(
        self,
        message: str = "",
        *,
        status: str = "",
        status_code: Optional[int] = None,
        backend: Optional[BackendError] = None,
    ) -> None:
        self.message = message
        self.status = status
        self.status_code = status_code
        self.backend = backend
        super().__init__(self._render())

    @classmethod
    def from_json(
        cls, data: Any, *, status: str, status_code: int
    ) -> "APIError":
        if not isinstance(data, dict):
            raise SerializationError(
                f"error response is not a JSON object: {type(data).__name__}"
            )
        backend = data.get("backend")
        if backend is not None and not isinstance(backend, dict):
            raise SerializationError("error response field 'backend' is not an object")
        message = data.get("error") or ""
        return cls(
            str(message),
            status=status,
            status_code=status_code,
            backend=BackendError.from_json(backend) if backend else None,
        )

    def _render(self) -> str:
        parts = [p for p in (self.status, self.message) if p]
        if self.backend is not None:
            for label in ("sql", "message", "code", "severity", "detail"):
                value = getattr(self.backend, label)
                if value:
                    parts.append(f"{label}: {value}")
        return ": ".join(parts)

    def __str__(self) -> str:
        return self._render()
