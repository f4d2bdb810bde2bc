"""Bearer credential state shared by all calls on a session."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import ProtocolError, SerializationError

logger = logging.getLogger(__name__)


@dataclass
class LoginResponse:
    """Body of a successful ``login/v1`` call."""

    access_token: str
    expires_in: int = 0
    token_type: str = ""

    @classmethod
    def from_json(cls, data: Any) -> "LoginResponse":
        if not isinstance(data, dict):
            raise SerializationError(
                f"login response is not a JSON object: {type(data).__name__}"
            )
        token = data.get("access_token")
        if not token or not isinstance(token, str):
            raise ProtocolError("login response did not contain an access_token")
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError) as exc:
            raise SerializationError(
                f"login response has invalid expires_in: {data.get('expires_in')!r}"
            ) from exc
        return cls(token, expires_in, str(data.get("token_type") or ""))

    def __str__(self) -> str:
        return f"{self.access_token} {self.expires_in} {self.token_type}"


@dataclass
class CredentialCell:
    """Thread-safe holder for the bearer token and its expiry.

    The token and ``valid_until`` are only ever read and written together
    while holding ``lock``. ``current_token`` runs the whole
    check, refresh and read sequence under the lock, so callers racing past an
    expired token cause a single login.

    Attributes:
        token: Current bearer token, empty when none is held
        valid_until: ``clock()`` value at which the token stops being usable
        clock: Monotonic time source in seconds
    """

    token: str = ""
    valid_until: float = 0.0
    clock: Callable[[], float] = time.monotonic

    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _usable(self) -> bool:
        return bool(self.token) and self.clock() < self.valid_until

    def _store(self, login: LoginResponse) -> None:
        self.token = login.access_token
        self.valid_until = self.clock() + login.expires_in

    def is_valid(self) -> bool:
        """Return True if a token is held and has not expired."""
        with self.lock:
            return self._usable()

    def clear(self) -> None:
        with self.lock:
            self.token = ""
            self.valid_until = 0.0

    def replace(self, login: LoginResponse) -> None:
        """Supersede the current credential with a fresh login result."""
        with self.lock:
            self._store(login)

    def current_token(self, refresh: Callable[[], LoginResponse]) -> str:
        """Return a usable token, logging in again first if necessary.

        Args:
            refresh: Performs the login exchange and returns its result. It
                is called with the lock held and must not touch this cell.

        Raises:
            Whatever ``refresh`` raises. The stale token stays cleared.
        """
        with self.lock:
            if not self._usable():
                if self.token:
                    logger.info("Bearer token expired, logging in again")
                self.token = ""
                self.valid_until = 0.0
                self._store(refresh())
            return self.token
