"""Macro-button control for TeamSpeak 3 over the ClientQuery interface.

Example usage:
    from streamdeck_teamspeak import ConnectionManager, StaticSettingsProvider
    from streamdeck_teamspeak.actions import ToggleMute

    manager = ConnectionManager(StaticSettingsProvider({"apiKey": "..."}))
    manager.initialize()
    mute = ToggleMute(manager)
"""

from .clientquery import ConnectionManager, ConnectionOptions, ObservedState
from .config import StaticSettingsProvider

__all__ = [
    "ConnectionManager",
    "ConnectionOptions",
    "ObservedState",
    "StaticSettingsProvider",
]
