"""TeamSpeak 3 ClientQuery TCP session.

This module implements one connection to the ClientQuery interface of a
locally running TeamSpeak 3 client. The protocol carries no request IDs, so
commands are written one at a time: the next command goes out only after
the previous one has received its status line or timed out.
"""

import asyncio
import codecs
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .errors import (
    AuthError,
    BannerTimeoutError,
    ClientQueryError,
    CommandTimeoutError,
    NotConnectedError,
    TransportError,
)
from .options import ConnectionOptions
from .protocol import (
    BANNER_TOKEN,
    QueryResponse,
    auth,
    decode,
    split_response,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 2.0
DEFAULT_BANNER_TIMEOUT = 5.0
READ_CHUNK_SIZE = 4096


class SessionState:
    """Session state constants."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_BANNER = "awaiting_banner"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"


@dataclass
class PendingRequest:
    """A queued command and the future its caller is waiting on.

    ``answered`` is set when the status line arrives, even if the caller
    has stopped waiting, so the slot stays busy until the reply is read.
    """
    command: str
    future: "asyncio.Future[QueryResponse]" = field(repr=False)
    answered: asyncio.Event = field(default_factory=asyncio.Event, repr=False)


class Session:
    """One ClientQuery connection.

    Handles:
    - Opening the TCP connection and waiting for the welcome banner
    - API key authentication
    - Serialized command execution with per-command timeouts
    - Matching inbound status lines to the command in flight

    A Session is not reconnected after it drops; the connection manager
    builds a fresh one instead.
    """

    def __init__(
        self,
        options: Optional[ConnectionOptions] = None,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        banner_timeout: float = DEFAULT_BANNER_TIMEOUT,
    ) -> None:
        """Initialize the session.

        Args:
            options: Host, port and API key (defaults to the local client)
            command_timeout: Seconds to wait for each command's status line
            banner_timeout: Seconds to wait for the welcome banner
        """
        self._options = options or ConnectionOptions()
        self._command_timeout = command_timeout
        self._banner_timeout = banner_timeout

        self._state = SessionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

        # Inbound text not yet matched to a response
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._banner_seen: Optional[asyncio.Event] = None

        # Command queue
        self._queue: "asyncio.Queue[PendingRequest]" = asyncio.Queue()
        self._in_flight: Optional[PendingRequest] = None

        # Tasks
        self._reader_task: Optional[asyncio.Task] = None
        self._command_task: Optional[asyncio.Task] = None

        self._close_callbacks: List[Callable[[], None]] = []

    def __repr__(self) -> str:
        return (
            f"<Session {self._options.host}:{self._options.port} {self._state}>"
        )

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    @property
    def state(self) -> str:
        """Current session state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether the session is connected and ready for commands."""
        return self._state == SessionState.CONNECTED

    async def connect(self) -> None:
        """Connect, wait for the banner and authenticate if a key is set.

        Raises:
            TransportError: The TCP connection failed or dropped
            BannerTimeoutError: The banner did not arrive in time
            AuthError: The API key was rejected
        """
        if self._state != SessionState.DISCONNECTED:
            if self.is_connected:
                return
            raise ClientQueryError(f"Session is busy ({self._state})")

        host, port = self._options.host, self._options.port
        self._set_state(SessionState.CONNECTING)
        _LOGGER.debug("Connecting to ClientQuery at %s:%d", host, port)

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._command_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            self._set_state(SessionState.DISCONNECTED)
            raise TransportError(
                f"Cannot connect to {host}:{port}: {e or 'timed out'}"
            ) from e

        self._buffer = ""
        self._decoder.reset()
        self._banner_seen = asyncio.Event()
        self._set_state(SessionState.AWAITING_BANNER)
        self._reader_task = asyncio.create_task(self._read_loop())

        try:
            await self._wait_for_banner()
            self._command_task = asyncio.create_task(self._command_loop())

            if self._options.api_key:
                self._set_state(SessionState.AUTHENTICATING)
                await self._authenticate(self._options.api_key)

            self._set_state(SessionState.CONNECTED)
        except BaseException:
            await self.disconnect()
            raise

    async def disconnect(self) -> None:
        """Close the connection. Safe to call at any time."""
        writer = self._writer
        tasks = [t for t in (self._reader_task, self._command_task) if t]
        self._close(NotConnectedError("Session disconnected"))

        current = asyncio.current_task()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                _LOGGER.debug("Session task ended with error: %s", e)

        if writer is not None:
            try:
                await writer.wait_closed()
            except Exception as e:
                _LOGGER.debug("Error while closing ClientQuery socket: %s", e)

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` once a connected session goes down."""
        self._close_callbacks.append(callback)

    async def authenticate(self, api_key: str) -> None:
        """Authenticate with an API key.

        Raises:
            AuthError: The key was rejected
        """
        if not self.is_connected:
            raise NotConnectedError()
        await self._authenticate(api_key)

    async def execute(self, command: str) -> QueryResponse:
        """Queue a command and wait for its decoded response.

        Protocol-level failures come back in ``response.error``; only
        transport problems and timeouts raise.

        Raises:
            NotConnectedError: The session is not connected
            CommandTimeoutError: No status line arrived in time
            TransportError: The connection dropped while waiting
        """
        if not self.is_connected:
            raise NotConnectedError()
        return await self._submit(command)

    async def _authenticate(self, api_key: str) -> None:
        response = await self._submit(auth(api_key))
        if not response.ok:
            raise AuthError(response.error.id, response.error.msg)
        _LOGGER.debug("Authenticated with ClientQuery")

    async def _submit(self, command: str) -> QueryResponse:
        if self._writer is None:
            raise NotConnectedError()
        request = PendingRequest(
            command=command,
            future=asyncio.get_running_loop().create_future(),
        )
        self._queue.put_nowait(request)
        return await request.future

    async def _wait_for_banner(self) -> None:
        try:
            await asyncio.wait_for(
                self._banner_seen.wait(),
                timeout=self._banner_timeout,
            )
        except asyncio.TimeoutError as e:
            raise BannerTimeoutError(
                f"No ClientQuery banner within {self._banner_timeout:.1f}s"
            ) from e

        if self._state != SessionState.AWAITING_BANNER:
            raise TransportError("Connection closed before the banner arrived")
        _LOGGER.debug("Banner received")

    async def _command_loop(self) -> None:
        """Write queued commands one at a time."""
        while self._writer is not None:
            request = await self._queue.get()
            if request.future.done():
                # Caller gave up before its turn
                continue
            await self._run(request)

    async def _run(self, request: PendingRequest) -> None:
        self._in_flight = request
        try:
            self._writer.write((request.command + "\n").encode("utf-8"))
            await self._writer.drain()
        except OSError as e:
            error = TransportError(f"Write failed: {e}")
            self._fail(request, error)
            self._close(error)
            return

        try:
            await asyncio.wait_for(
                request.answered.wait(),
                timeout=self._command_timeout,
            )
        except asyncio.TimeoutError:
            _LOGGER.warning(
                "Command timed out after %.1fs: %s",
                self._command_timeout,
                request.command.split(" ", 1)[0],
            )
            self._fail(
                request,
                CommandTimeoutError(request.command, self._command_timeout),
            )
        finally:
            if self._in_flight is request:
                self._in_flight = None

    async def _read_loop(self) -> None:
        """Feed inbound bytes to the buffer until the connection ends."""
        reason = "Connection closed by TeamSpeak"
        try:
            while True:
                data = await self._reader.read(READ_CHUNK_SIZE)
                if not data:
                    break
                self._on_data(data)
        except OSError as e:
            reason = f"Connection lost: {e}"

        if self._state != SessionState.DISCONNECTED:
            _LOGGER.info("ClientQuery connection ended: %s", reason)
            self._close(TransportError(reason))

    def _on_data(self, data: bytes) -> None:
        self._buffer += self._decoder.decode(data)

        if self._state == SessionState.AWAITING_BANNER:
            index = self._buffer.find(BANNER_TOKEN)
            if index == -1:
                return
            end = self._buffer.find("\n", index)
            if end == -1:
                return
            self._buffer = self._buffer[end + 1:].lstrip("\r")
            self._banner_seen.set()
            return

        while True:
            raw, self._buffer = split_response(self._buffer)
            if raw is None:
                return

            request = self._in_flight
            if request is None:
                _LOGGER.debug("Discarding unmatched response: %s", raw[:200])
                continue

            self._in_flight = None
            request.answered.set()
            _LOGGER.debug(
                "Response for %r: %s",
                request.command.split(" ", 1)[0],
                raw[:200],
            )
            if not request.future.done():
                request.future.set_result(decode(raw))

    def _close(self, error: ClientQueryError) -> None:
        """Tear down transport and tasks, failing every pending command."""
        was_connected = self.is_connected
        if self._state != SessionState.DISCONNECTED:
            self._set_state(SessionState.DISCONNECTED)

        if self._banner_seen is not None:
            self._banner_seen.set()

        if self._in_flight is not None:
            self._fail(self._in_flight, error)
            self._in_flight = None

        while not self._queue.empty():
            self._fail(self._queue.get_nowait(), NotConnectedError())

        current = asyncio.current_task()
        for task in (self._reader_task, self._command_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._reader_task = None
        self._command_task = None

        writer, self._writer, self._reader = self._writer, None, None
        if writer is not None:
            try:
                writer.close()
            except Exception as e:
                _LOGGER.debug("Error while closing ClientQuery socket: %s", e)

        if was_connected:
            for callback in list(self._close_callbacks):
                try:
                    callback()
                except Exception as e:
                    _LOGGER.warning("Close callback error: %s", e)

    @staticmethod
    def _fail(request: PendingRequest, error: Exception) -> None:
        if not request.future.done():
            request.future.set_exception(error)

    def _set_state(self, state: str) -> None:
        if state != self._state:
            self._state = state
            _LOGGER.debug("Session state: %s", state)
