"""Shared test fixtures for the streamdeck_teamspeak test suite.

FakeClientQuery is an in-process TCP server speaking just enough ClientQuery
to exercise Session against a real socket. FakeSessionFactory builds
socket-free sessions for ConnectionManager and action tests.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Set, Tuple, Union
from unittest.mock import AsyncMock

import pytest

from streamdeck_teamspeak.clientquery.errors import NotConnectedError, TransportError
from streamdeck_teamspeak.clientquery.options import ConnectionOptions
from streamdeck_teamspeak.clientquery.protocol import OK_RESPONSE, QueryResponse

BANNER = (
    "TS3 Client\n\r"
    "Welcome to the TeamSpeak 3 ClientQuery interface, type \"help\" for a "
    "list of commands and \"help <command>\" for information on a specific "
    "command.\n\r"
    "selected schandlerid=1\n\r"
)

OK_LINE = "error id=0 msg=ok\n\r"

Reply = Union[str, List[str], None]


# ── In-process ClientQuery server ──


class FakeClientQuery:
    """Minimal ClientQuery server bound to an ephemeral localhost port.

    ``replies`` maps a command name to the raw text sent back (a list of
    strings is written as separate chunks). Commands in ``silent`` get no
    reply, commands in ``close_on`` drop the connection, and ``delays``
    holds per-command sleeps before replying.
    """

    def __init__(self, banner: Optional[str] = BANNER, api_key: Optional[str] = None) -> None:
        self.banner = banner
        self.api_key = api_key
        self.replies: Dict[str, Reply] = {}
        self.silent: Set[str] = set()
        self.close_on: Set[str] = set()
        self.delays: Dict[str, float] = {}

        # (command line, replies already sent when it arrived)
        self.received: List[Tuple[str, int]] = []
        self.replies_sent = 0

        self.port = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []

    @property
    def commands(self) -> List[str]:
        return [line for line, _ in self.received]

    def options(self, api_key: str = "") -> ConnectionOptions:
        return ConnectionOptions(host="127.0.0.1", port=self.port, api_key=api_key)

    async def __aenter__(self) -> "FakeClientQuery":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc_info) -> None:
        for writer in self._writers:
            writer.close()
        self._server.close()
        await self._server.wait_closed()

    def reply_for(self, line: str) -> Reply:
        name = line.split(" ", 1)[0]
        if name in self.silent:
            return None
        if name == "auth" and self.api_key is not None:
            if line != f"auth apikey={self.api_key}":
                return "error id=256 msg=invalid\\sapikey\n\r"
        return self.replies.get(name, OK_LINE)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        if self.banner:
            writer.write(self.banner.encode("utf-8"))
            await writer.drain()

        lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

        async def pump() -> None:
            while True:
                raw = await reader.readline()
                if not raw:
                    await lines.put(None)
                    return
                line = raw.decode("utf-8").rstrip("\r\n")
                self.received.append((line, self.replies_sent))
                await lines.put(line)

        pump_task = asyncio.create_task(pump())
        try:
            while True:
                line = await lines.get()
                if line is None:
                    return
                name = line.split(" ", 1)[0]
                if name in self.close_on:
                    return
                if name in self.delays:
                    await asyncio.sleep(self.delays[name])

                reply = self.reply_for(line)
                if reply is None:
                    continue
                chunks = [reply] if isinstance(reply, str) else reply
                self.replies_sent += 1
                for i, chunk in enumerate(chunks):
                    if i:
                        await asyncio.sleep(0.01)
                    writer.write(chunk.encode("utf-8"))
                    await writer.drain()
        finally:
            pump_task.cancel()
            writer.close()


@pytest.fixture
def fake_server() -> FakeClientQuery:
    return FakeClientQuery()


async def closed_port() -> int:
    """Return a localhost port with nothing listening on it."""
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port


# ── Socket-free sessions ──


class FakeSession:
    """Stand-in for Session driven by a FakeSessionFactory."""

    def __init__(self, options: ConnectionOptions, factory: "FakeSessionFactory") -> None:
        self.options = options
        self._factory = factory
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.commands: List[str] = []
        self.close_callbacks: List[Callable[[], None]] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connect_calls += 1
        self._factory.connect_attempts += 1
        if self._factory.gate is not None:
            await self._factory.gate.wait()
        if self._factory.failures != 0:
            self._factory.failures -= 1
            raise TransportError("Connection refused")
        self.connected = True

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        self.close_callbacks.append(callback)

    def drop(self) -> None:
        """Lose the connection as if the client went away."""
        if self.connected:
            self.connected = False
            for callback in self.close_callbacks:
                callback()

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.drop()

    async def execute(self, command: str) -> QueryResponse:
        if not self.connected:
            raise NotConnectedError()
        self.commands.append(command)
        self._factory.commands.append(command)
        result = self._factory.responses.get(command.split(" ", 1)[0], OK_RESPONSE)
        if callable(result):
            result = result(command)
        if isinstance(result, Exception):
            raise result
        return result


class FakeSessionFactory:
    """Builds FakeSessions sharing one failure budget and response table.

    ``failures`` is the number of connect attempts that fail before one
    succeeds; a negative value fails forever.
    """

    def __init__(
        self,
        failures: int = 0,
        responses: Optional[Dict[str, Union[QueryResponse, Exception, Callable]]] = None,
    ) -> None:
        self.failures = failures
        self.responses = responses if responses is not None else {}
        self.sessions: List[FakeSession] = []
        self.commands: List[str] = []
        self.connect_attempts = 0
        self.gate: Optional[asyncio.Event] = None

    def __call__(self, options: ConnectionOptions) -> FakeSession:
        session = FakeSession(options, self)
        self.sessions.append(session)
        return session


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


# ── Button handles ──


def make_handle() -> AsyncMock:
    """Button handle with awaitable display methods."""
    return AsyncMock()
