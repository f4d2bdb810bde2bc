"""Session object for the Stratum API."""
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field, fields
from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

from .credential import CredentialCell, LoginResponse
from .errors import ConfigError, SerializationError
from .transport import RequestsTransport, Transport

logger = logging.getLogger(__name__)

LOGIN_RESOURCE = "login/v1"
DEFAULT_TIMEOUT = 30

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class StratumSession:
    """Configuration and credential state for one Stratum API account.

    The session is unusable until :meth:`open` has validated the
    configuration and logged in. After that every call authenticates with a
    bearer token which is refreshed transparently when it expires.

    Attributes:
        username: API user name used for the Basic authenticated login
        password: Password for ``username``
        base_url: API location including the resource prefix
            (e.g. ``'https://server/stratum/v1'``)
        user_agent: Optional tag appended to the ``User-Agent`` header
        timeout: Per request timeout in seconds (default: 30)
        insecure_skip_verify: Disable TLS certificate verification
        transport: Transport implementation for making HTTP requests (defaults to RequestsTransport)
        credential: Holder of the bearer token and its expiry
    """

    username: str = ""
    password: str = field(default="", repr=False)
    base_url: str = ""
    user_agent: str = ""
    timeout: float = DEFAULT_TIMEOUT
    insecure_skip_verify: bool = False
    transport: Transport = field(default_factory=RequestsTransport, repr=False)
    credential: CredentialCell = field(default_factory=CredentialCell, repr=False)

    prefix: str = field(init=False, default="")
    endpoint: str = field(init=False, default="")
    opened: bool = field(init=False, default=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    @classmethod
    def from_env(cls, prefix: str = "STRATUM_", **overrides: Any) -> "StratumSession":
        """Build a session from ``STRATUM_*`` environment variables.

        Reads ``USERNAME``, ``PASSWORD``, ``BASE_URL``, ``USER_AGENT``,
        ``TIMEOUT`` and ``INSECURE_SKIP_VERIFY``. Keyword arguments take
        precedence over the environment. The session is not opened.
        """
        timeout = os.getenv(prefix + "TIMEOUT", "")
        try:
            timeout_value = float(timeout) if timeout else DEFAULT_TIMEOUT
        except ValueError as exc:
            raise ConfigError(f"invalid: {prefix}TIMEOUT={timeout!r}") from exc
        settings: dict[str, Any] = {
            "username": os.getenv(prefix + "USERNAME", ""),
            "password": os.getenv(prefix + "PASSWORD", ""),
            "base_url": os.getenv(prefix + "BASE_URL", ""),
            "user_agent": os.getenv(prefix + "USER_AGENT", ""),
            "timeout": timeout_value,
            "insecure_skip_verify": os.getenv(prefix + "INSECURE_SKIP_VERIFY", "").strip().lower()
            in _TRUTHY,
        }
        settings.update(overrides)
        return cls(**settings)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any], **overrides: Any) -> "StratumSession":
        """Build a session from a decoded configuration file section."""
        allowed = {f.name for f in fields(cls) if f.init and f.name not in ("transport", "credential")}
        unknown = sorted(set(config) - allowed)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
        settings = dict(config)
        if settings.get("timeout") in (None, ""):
            settings.pop("timeout", None)
        settings.update(overrides)
        return cls(**settings)

    def _validate(self) -> tuple[str, str, float]:
        if not self.username:
            raise ConfigError("missing: username")
        if not self.password:
            raise ConfigError("missing: password")
        if not self.base_url:
            raise ConfigError("missing: base_url")
        if "\r" in self.user_agent or "\n" in self.user_agent:
            raise ConfigError(f"invalid: user_agent {self.user_agent!r}")
        try:
            timeout = float(self.timeout or DEFAULT_TIMEOUT)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid: timeout={self.timeout!r}") from exc
        if timeout < 0:
            raise ConfigError(f"invalid: timeout={self.timeout!r}")

        try:
            parts = urlsplit(self.base_url.strip())
        except ValueError as exc:
            raise ConfigError(f"invalid: base_url: {exc}") from exc
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigError(f"invalid: base_url {self.base_url!r}")
        if not parts.path.strip("/"):
            raise ConfigError("missing: path part in base_url")
        endpoint = urlunsplit((parts.scheme, parts.netloc, "", "", ""))
        return endpoint, parts.path, timeout

    def open(self) -> None:
        """Validate the configuration and log on to the API.

        The path of ``base_url`` becomes the resource prefix and the login
        uses Basic authentication. Further calls use the bearer token from the
        login, which is refreshed transparently when it expires.

        A second call re-validates and logs in again. Until that login
        succeeds the session counts as not opened, so concurrent calls fail
        with NotOpenedError instead of using the old configuration.

        Raises:
            ConfigError: If a field is missing or invalid. Nothing is sent.
            APIError, TransportError, ProtocolError, SerializationError: If the
                login fails.
        """
        with self._lock:
            endpoint, prefix, timeout = self._validate()
            self.opened = False
            self.endpoint = endpoint
            self.prefix = prefix
            self.timeout = timeout
            if self.insecure_skip_verify:
                logger.warning("TLS certificate verification disabled for %s", endpoint)
            self.login()
            self.opened = True
        logger.info("Opened Stratum session for %s at %s%s", self.username, endpoint, prefix)

    def login(self) -> LoginResponse:
        """Log in with Basic authentication and store the new bearer token.

        The held credential is discarded first, so a failed login leaves no
        token behind.
        """
        self.credential.clear()
        resp = self._exchange()
        self.credential.replace(resp)
        return resp

    def ensure_fresh_credential(self) -> str:
        """Return a usable bearer token, logging in again if it is missing or expired."""
        return self.credential.current_token(self._exchange)

    def _exchange(self) -> LoginResponse:
        from .client import call

        body = call(self, "GET", LOGIN_RESOURCE)
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise SerializationError(f"invalid login response: {exc}") from exc
        resp = LoginResponse.from_json(data)
        logger.info(
            "Logged in to %s as %s, token valid for %ds",
            self.endpoint,
            self.username,
            resp.expires_in,
        )
        return resp

    @property
    def verify(self) -> bool:
        return not self.insecure_skip_verify

    def url_for(self, query: str) -> str:
        """Build the request URL for a resource query.

        Exactly one ``/`` separates the endpoint, the prefix and the query
        whatever slashes the caller or the configuration supplied.
        """
        root = self.endpoint.rstrip("/")
        if query == LOGIN_RESOURCE:
            return f"{root}/{LOGIN_RESOURCE}"
        return f"{root}/{self.prefix.strip('/')}/{query.lstrip('/')}"
