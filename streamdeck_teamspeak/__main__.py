"""Development entry point.

Connects to the local TeamSpeak 3 client and logs every state change,
runs a single raw ClientQuery command and prints the decoded response, or
presses one button and logs what it would display::

    python -m streamdeck_teamspeak --api-key XXXX
    python -m streamdeck_teamspeak --execute channellist
    python -m streamdeck_teamspeak --mock --press toggle-away --setting awayMessage=brb
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Mapping, Optional

from .actions import ACTIONS, find_action
from .clientquery import ConnectionManager, MockSession, ObservedState
from .clientquery.protocol import DEFAULT_HOST, DEFAULT_PORT
from .config import StaticSettingsProvider, settings_from_env

_LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="streamdeck_teamspeak",
        description="Mirror TeamSpeak 3 client state over ClientQuery",
    )
    parser.add_argument("--host", help=f"ClientQuery host (default: {DEFAULT_HOST})")
    parser.add_argument("--port", type=int, help=f"ClientQuery port (default: {DEFAULT_PORT})")
    parser.add_argument("--api-key", help="ClientQuery API key")
    parser.add_argument("--execute", metavar="COMMAND", help="Run one command and exit")
    parser.add_argument(
        "--press",
        metavar="ACTION",
        help="Press one button and exit (%s)" % ", ".join(
            a.uuid.rsplit(".", 1)[-1] for a in ACTIONS
        ),
    )
    parser.add_argument(
        "--setting",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Button setting for --press (repeatable)",
    )
    parser.add_argument("--mock", action="store_true", help="Log commands instead of sending them")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)
    try:
        args.settings = parse_settings(args.setting)
    except ValueError as e:
        parser.error(str(e))
    return args


class LoggingHandle:
    """Button handle that logs what the button would display."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.alerted = False

    async def set_title(self, title: str) -> None:
        _LOGGER.info("[%s] title=%r", self.name, title)

    async def set_state(self, state: int) -> None:
        _LOGGER.info("[%s] state=%d", self.name, state)

    async def show_ok(self) -> None:
        _LOGGER.info("[%s] OK", self.name)

    async def show_alert(self) -> None:
        self.alerted = True
        _LOGGER.info("[%s] ALERT", self.name)

    async def set_settings(self, settings: Mapping[str, Any]) -> None:
        _LOGGER.info("[%s] settings=%s", self.name, dict(settings))


def parse_settings(pairs: List[str]) -> Dict[str, str]:
    settings: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        settings[key] = value
    return settings


async def press(manager: ConnectionManager, name: str, settings: Mapping[str, Any]) -> int:
    """Connect, take one state snapshot and press the named button once."""
    try:
        action = find_action(name)(manager)
    except KeyError:
        _LOGGER.error("Unknown action: %s", name)
        return 2

    await manager.get_client()
    await manager.poll()

    handle = LoggingHandle(name)
    await action.on_key_down(handle, settings)
    return 1 if handle.alerted else 0


def _log_state(state: ObservedState) -> None:
    _LOGGER.info(
        "clid=%s cid=%s input_muted=%s output_muted=%s away=%s",
        state.client_id,
        state.channel_id,
        state.input_muted,
        state.output_muted,
        state.away,
    )


async def run(args: argparse.Namespace) -> int:
    settings = settings_from_env()
    if args.host:
        settings["host"] = args.host
    if args.port:
        settings["port"] = args.port
    if args.api_key:
        settings["apiKey"] = args.api_key

    manager = ConnectionManager(
        StaticSettingsProvider(settings),
        session_factory=MockSession if args.mock else None,
    )
    manager.initialize()
    try:
        if args.press:
            return await press(manager, args.press, args.settings)

        if args.execute:
            client = await manager.get_client()
            response = await client.execute(args.execute)
            for row in response.rows:
                print(row)
            print(f"error id={response.error.id} msg={response.error.msg}")
            return 0 if response.ok else 1

        manager.on_state_change(_log_state)
        await asyncio.Event().wait()
    finally:
        await manager.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
