"""TeamSpeak 3 ClientQuery driver.

This package talks to the ClientQuery interface of a locally running
TeamSpeak 3 client: it keeps one session connected, reconnects with
backoff, and polls the client so callers can mirror its state.

Example usage:
    from streamdeck_teamspeak.clientquery import ConnectionManager, protocol

    manager = ConnectionManager(settings_provider)
    manager.initialize()
    manager.on_state_change(lambda state: print(state.input_muted))

    client = manager.require_client()
    await client.execute(protocol.set_input_muted(True))

For the protocol itself, see the ClientQuery help shipped with the
TeamSpeak 3 client (``help`` command).
"""

from . import protocol
from .backoff import Backoff
from .errors import (
    AuthError,
    BannerTimeoutError,
    ClientQueryError,
    CommandTimeoutError,
    NotConnectedError,
    ProtocolError,
    TransportError,
)
from .manager import ConnectionManager, ConnectionState
from .mock import MockSession
from .options import ConnectionOptions, SettingsProvider
from .protocol import QueryError, QueryResponse, decode, escape, unescape
from .session import Session, SessionState
from .state import ObservedState, Subscription

__all__ = [
    # Connection management
    "ConnectionManager",
    "ConnectionState",
    "Backoff",
    # Session
    "Session",
    "SessionState",
    "MockSession",
    "ConnectionOptions",
    "SettingsProvider",
    # State
    "ObservedState",
    "Subscription",
    # Protocol
    "protocol",
    "QueryError",
    "QueryResponse",
    "decode",
    "escape",
    "unescape",
    # Errors
    "ClientQueryError",
    "TransportError",
    "BannerTimeoutError",
    "AuthError",
    "NotConnectedError",
    "CommandTimeoutError",
    "ProtocolError",
]
