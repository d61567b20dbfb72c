"""Configuration store holding the client identity.

A client is initialized once. Repeating ``initialize`` with the same
client id is a no-op; a different client id is rejected and the stored
configuration is kept.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading

from urllib.parse import urlparse

from .config import DEFAULT_AUTHORITY
from .exceptions import (
    ClientIdConflictError,
    InitError,
    MissingClientIdError,
    MissingRedirectUrlError,
    NoClientError,
)
from .types import ClientConfig


logger = logging.getLogger("idbridge.client")

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def _validate_authority(authority: str) -> str:
    """Return the normalized authority URL or raise InitError."""
    parsed = urlparse(authority)
    secure = parsed.scheme == "https"
    loopback = parsed.scheme == "http" and parsed.hostname in _LOOPBACK_HOSTS
    if not parsed.netloc or not (secure or loopback):
        msg = "Error initializing client"
        raise InitError(msg, detail=f"Authority must be an https URL: {authority!r}")
    return authority.rstrip("/")


class ConfigurationStore:
    """Holds the validated ClientConfig of one client."""

    def __init__(self) -> None:
        self._config: ClientConfig | None = None
        self._lock = threading.Lock()

    @property
    def config(self) -> ClientConfig | None:
        """The stored configuration, or None before initialization."""
        return self._config

    @property
    def is_initialized(self) -> bool:
        """True once ``initialize`` has succeeded."""
        return self._config is not None

    def initialize(
        self,
        client_id: str | None,
        authority: str | None,
        redirect_uri: str | None,
    ) -> tuple[ClientConfig, bool]:
        """Validate and store the client identity.

        Parameters
        ----------
        client_id : str or None
            Application (client) id. Required.
        authority : str or None
            Authority URL; ``DEFAULT_AUTHORITY`` when omitted.
        redirect_uri : str or None
            Registered redirect URI. Required.

        Returns
        -------
        tuple[ClientConfig, bool]
            The stored configuration and whether this call created it.

        Raises
        ------
        MissingClientIdError
            If ``client_id`` is missing or blank.
        MissingRedirectUrlError
            If ``redirect_uri`` is missing or blank.
        ClientIdConflictError
            If already initialized with another client id.
        InitError
            If the authority URL is unusable.
        """
        if not client_id:
            msg = "Call must include a clientId"
            raise MissingClientIdError(msg)
        if not redirect_uri:
            msg = "Call must include a redirectUrl"
            raise MissingRedirectUrlError(msg)

        with self._lock:
            if self._config is not None:
                if self._config.client_id == client_id:
                    logger.debug("Client already initialized")
                    return self._config, False
                msg = "Attempting to initialize with multiple clientIds."
                raise ClientIdConflictError(
                    msg, current=self._config.client_id, requested=client_id
                )

            config = ClientConfig(
                client_id=client_id,
                authority=_validate_authority(authority or DEFAULT_AUTHORITY),
                redirect_uri=redirect_uri,
            )
            self._config = config

        logger.info("Initialized client %s at %s", config.client_id, config.authority)
        return config, True

    def require(self) -> ClientConfig:
        """Return the configuration or raise NoClientError."""
        config = self._config
        if config is None:
            msg = "Client must be initialized before attempting to acquire a token."
            raise NoClientError(msg)
        return config

    def reset(self) -> None:
        """Forget the stored configuration."""
        with self._lock:
            self._config = None
