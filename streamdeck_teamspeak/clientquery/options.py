"""Connection options and the settings source that supplies them."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol

from .protocol import DEFAULT_HOST, DEFAULT_PORT

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionOptions:
    """Where and how to reach the ClientQuery interface."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    api_key: str = field(default="", repr=False)

    @classmethod
    def from_settings(cls, settings: Optional[Mapping[str, Any]]) -> "ConnectionOptions":
        """Parse the global settings mapping pushed by the host application.

        Keys are ``host``, ``port`` and ``apiKey``. Missing, empty or
        invalid values fall back to the defaults.
        """
        settings = settings or {}

        host = str(settings.get("host") or "").strip() or DEFAULT_HOST

        port = DEFAULT_PORT
        raw_port = settings.get("port")
        if raw_port not in (None, ""):
            try:
                port = int(raw_port)
            except (TypeError, ValueError):
                _LOGGER.warning("Ignoring invalid port %r", raw_port)
            else:
                if not 0 < port < 65536:
                    _LOGGER.warning("Ignoring out-of-range port %d", port)
                    port = DEFAULT_PORT

        api_key = str(settings.get("apiKey") or "").strip()

        return cls(host=host, port=port, api_key=api_key)

    @property
    def masked_api_key(self) -> str:
        """API key shortened for log output."""
        if not self.api_key:
            return ""
        return self.api_key[:8] + "..."


SettingsCallback = Callable[[Mapping[str, Any]], None]


class SettingsProvider(Protocol):
    """Source of global settings, pushed on change or on request."""

    def on_did_receive_settings(self, callback: SettingsCallback) -> None:
        ...

    def request_settings(self) -> None:
        ...
