"""Exceptions raised by the ClientQuery driver."""

from typing import Optional


class ClientQueryError(Exception):
    """Base class for all ClientQuery driver errors."""


class TransportError(ClientQueryError):
    """The TCP connection could not be opened or was lost."""


class BannerTimeoutError(ClientQueryError):
    """The welcome banner did not arrive in time after connecting."""


class AuthError(ClientQueryError):
    """The ``auth`` command returned a nonzero status."""

    def __init__(self, error_id: int, msg: str) -> None:
        super().__init__(f"Authentication failed: {msg} (id={error_id})")
        self.error_id = error_id
        self.msg = msg


class NotConnectedError(ClientQueryError):
    """A command was issued while no connected session is available."""

    def __init__(self, message: str = "Not connected to TeamSpeak 3 ClientQuery") -> None:
        super().__init__(message)


class CommandTimeoutError(ClientQueryError):
    """No status line arrived for a command within the command timeout."""

    def __init__(self, command: str, timeout: Optional[float] = None) -> None:
        super().__init__(f"Command timeout: {command}")
        self.command = command
        self.timeout = timeout


class ProtocolError(ClientQueryError):
    """A response was well-formed but lacked a field the caller needs.

    Decoding itself never raises this; it degrades to defaults instead.
    """
