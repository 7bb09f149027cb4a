"""Global settings sources."""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from .clientquery.options import SettingsCallback

_LOGGER = logging.getLogger(__name__)

ENV_HOST = "TS3_HOST"
ENV_PORT = "TS3_PORT"
ENV_APIKEY = "TS3_APIKEY"


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Read global settings from ``TS3_HOST``, ``TS3_PORT`` and ``TS3_APIKEY``.

    Unset variables are left out so that the defaults apply.
    """
    environ = os.environ if environ is None else environ
    settings: Dict[str, Any] = {}
    for key, name in (("host", ENV_HOST), ("port", ENV_PORT), ("apiKey", ENV_APIKEY)):
        value = environ.get(name)
        if value:
            settings[key] = value
    return settings


class StaticSettingsProvider:
    """Settings provider holding a fixed mapping.

    Stands in for the host application's settings channel: listeners are
    called whenever :meth:`request_settings` or :meth:`update` is used.
    """

    def __init__(self, settings: Optional[Mapping[str, Any]] = None) -> None:
        self._settings: Dict[str, Any] = dict(settings or {})
        self._listeners: List[SettingsCallback] = []

    @property
    def settings(self) -> Dict[str, Any]:
        return dict(self._settings)

    def on_did_receive_settings(self, callback: SettingsCallback) -> None:
        self._listeners.append(callback)

    def request_settings(self) -> None:
        self._push()

    def update(self, settings: Mapping[str, Any]) -> None:
        """Replace the settings and push them to listeners."""
        self._settings = dict(settings)
        self._push()

    def _push(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(dict(self._settings))
            except Exception as e:
                _LOGGER.warning("Settings listener error: %s", e)
