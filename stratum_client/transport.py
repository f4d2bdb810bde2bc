"""Transport abstractions."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import os
from typing import Mapping, Optional

from .errors import TransportError


@dataclass
class TransportResponse:
    """Status, headers and the fully read body of an HTTP response."""

    status_code: int
    reason: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def status(self) -> str:
        """Status line in the ``"404 Not Found"`` form."""
        return f"{self.status_code} {self.reason}".strip()

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""


class Transport(ABC):
    """Abstract transport interface."""

    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        data: Optional[bytes],
        timeout: float,
        verify: bool,
    ) -> TransportResponse:  # noqa: D401
        """Send a request and return the complete response.

        Network level failures are raised as :class:`TransportError`.
        """
        raise NotImplementedError


class RequestsTransport(Transport):
    """Transport using the requests library.

    Every request is attempted exactly once; credential refresh is the only
    retry the client performs.

    Args:
        pool_maxsize: Connections kept per host. Defaults to the
            ``STRATUM_POOL_MAXSIZE`` env var or ``10``.
        force_close: If True, send ``Connection: close`` with each request to
            disable keep-alives.
    """

    def __init__(
        self,
        *,
        pool_maxsize: int | None = None,
        force_close: bool = False,
    ) -> None:
        import requests
        from requests.adapters import HTTPAdapter
        from urllib3.util import Retry

        maxsize = pool_maxsize if pool_maxsize is not None else int(
            os.getenv("STRATUM_POOL_MAXSIZE", "10")
        )
        retry = Retry(total=0, connect=0, read=0, redirect=0, raise_on_status=False)
        adapter = HTTPAdapter(max_retries=retry, pool_maxsize=maxsize)
        session = requests.Session()
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        if force_close:
            session.headers["Connection"] = "close"
        self._session = session
        self._errors = requests.RequestException

    def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        data: Optional[bytes],
        timeout: float,
        verify: bool,
    ) -> TransportResponse:
        try:
            resp = self._session.request(
                method,
                url,
                headers=dict(headers),
                data=data,
                timeout=timeout,
                verify=verify,
            )
        except self._errors as exc:
            raise TransportError(str(exc)) from exc
        return TransportResponse(
            status_code=resp.status_code,
            reason=resp.reason or "",
            headers=dict(resp.headers),
            content=resp.content,
        )
