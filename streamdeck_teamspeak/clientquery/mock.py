"""Session stand-in that logs commands instead of sending them.

Useful for working on button behaviour without a running TeamSpeak client.
The mock remembers the mute, away and channel values it is told to set and
reports them back to ``whoami`` and ``clientvariable`` so the heartbeat and
the buttons behave as they would against a real client.
"""

import logging
from typing import Dict, List

from .errors import NotConnectedError
from .protocol import QueryError, QueryResponse, parse_params, unescape
from .session import Session, SessionState

_LOGGER = logging.getLogger(__name__)

MOCK_CLIENT_ID = "1"
MOCK_CHANNEL_ID = "1"


class MockSession(Session):
    """Session that never opens a socket and answers every command with ok."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.commands: List[str] = []
        self.variables: Dict[str, str] = {
            "client_input_muted": "0",
            "client_output_muted": "0",
            "client_away": "0",
            "client_away_message": "",
        }
        self.channel_id = MOCK_CHANNEL_ID

    async def connect(self) -> None:
        _LOGGER.info(
            "[mock] Would connect to ClientQuery at %s:%d",
            self.options.host,
            self.options.port,
        )
        self._set_state(SessionState.CONNECTED)
        if self.options.api_key:
            await self.authenticate(self.options.api_key)

    async def disconnect(self) -> None:
        _LOGGER.info("[mock] Would disconnect from ClientQuery")
        self._close(NotConnectedError("Session disconnected"))

    async def authenticate(self, api_key: str) -> None:
        _LOGGER.info("[mock] Would authenticate with API key: %s...", api_key[:8])

    async def execute(self, command: str) -> QueryResponse:
        _LOGGER.info("[mock] Would execute command: %s", command)
        self.commands.append(command)

        name, _, rest = command.partition(" ")
        params = {k: unescape(v) for k, v in parse_params(rest).items()}

        if name == "whoami":
            return self._reply({"clid": MOCK_CLIENT_ID, "cid": self.channel_id})
        if name == "clientvariable":
            return self._reply({"clid": params.get("clid", ""), **self.variables})
        if name == "clientupdate":
            for key, value in params.items():
                if key in self.variables:
                    self.variables[key] = value
            if params.get("client_away") == "0":
                self.variables["client_away_message"] = ""
        elif name == "clientmove" and "cid" in params:
            self.channel_id = params["cid"]
        return QueryResponse()

    @staticmethod
    def _reply(row: Dict[str, str]) -> QueryResponse:
        return QueryResponse(rows=(row,), error=QueryError())
