"""Button actions for TeamSpeak 3.

Each action reacts to the host's appear, disappear and key-down events for
one kind of button. The host side is reached only through
:class:`ButtonHandle`, one per visible button instance.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Set, Type

from .clientquery import protocol
from .clientquery.errors import ProtocolError
from .clientquery.manager import ConnectionManager
from .clientquery.state import ObservedState, Subscription

_LOGGER = logging.getLogger(__name__)

DEFAULT_AWAY_MESSAGE = "Away from keyboard"


class ButtonHandle(Protocol):
    """Display side of one button instance."""

    async def set_title(self, title: str) -> None:
        ...

    async def set_state(self, state: int) -> None:
        ...

    async def show_ok(self) -> None:
        ...

    async def show_alert(self) -> None:
        ...

    async def set_settings(self, settings: Mapping[str, Any]) -> None:
        ...


class Action:
    """Base class for button actions."""

    uuid = ""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def on_will_appear(self, handle: ButtonHandle, settings: Mapping[str, Any]) -> None:
        pass

    async def on_will_disappear(self, handle: ButtonHandle) -> None:
        pass

    async def on_key_down(self, handle: ButtonHandle, settings: Mapping[str, Any]) -> None:
        raise NotImplementedError


class StateMirrorAction(Action):
    """Two-state button that mirrors one boolean of the client state.

    Pressing the button flips the value on the client and updates the icon
    right away; the heartbeat confirms it on its next tick.
    """

    def __init__(self, manager: ConnectionManager) -> None:
        super().__init__(manager)
        self._visible: Set[ButtonHandle] = set()
        self._subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()

    def read(self, state: ObservedState) -> bool:
        """Pick this action's value out of a state snapshot."""
        raise NotImplementedError

    def command(self, value: bool, settings: Mapping[str, Any]) -> str:
        """Build the command that sets this action's value."""
        raise NotImplementedError

    async def on_will_appear(self, handle: ButtonHandle, settings: Mapping[str, Any]) -> None:
        self._visible.add(handle)

        if self._subscription is None:
            # Renders every visible instance with the cached snapshot, if any
            self._subscription = self._manager.on_state_change(self._on_state_change)
            return

        state = self._manager.state
        if state is not None:
            await self._render(handle, self.read(state))

    async def on_will_disappear(self, handle: ButtonHandle) -> None:
        self._visible.discard(handle)
        if not self._visible and self._subscription is not None:
            self._subscription.remove()
            self._subscription = None

    async def on_key_down(self, handle: ButtonHandle, settings: Mapping[str, Any]) -> None:
        try:
            client = self._manager.require_client()

            state = self._manager.state
            value = not (state is not None and self.read(state))

            response = await client.execute(self.command(value, settings))
            if not response.ok:
                raise ProtocolError(response.error.msg)

            await self._render(handle, value)
        except Exception as e:
            _LOGGER.error("[TS3] %s error: %s", type(self).__name__, e)
            await handle.show_alert()

    def _on_state_change(self, state: ObservedState) -> None:
        value = self.read(state)
        for handle in list(self._visible):
            task = asyncio.create_task(self._render(handle, value))
            self._tasks.add(task)
            task.add_done_callback(self._on_render_done)

    def _on_render_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.warning("Button update failed: %s", task.exception())

    async def _render(self, handle: ButtonHandle, value: bool) -> None:
        await handle.set_title("")
        await handle.set_state(1 if value else 0)


class ToggleMute(StateMirrorAction):
    """Toggle the microphone."""

    uuid = "me.mehlinger.teamspeak3.toggle-mute"

    def read(self, state: ObservedState) -> bool:
        return state.input_muted

    def command(self, value: bool, settings: Mapping[str, Any]) -> str:
        return protocol.set_input_muted(value)


class ToggleDeafen(StateMirrorAction):
    """Toggle the speakers."""

    uuid = "me.mehlinger.teamspeak3.toggle-deafen"

    def read(self, state: ObservedState) -> bool:
        return state.output_muted

    def command(self, value: bool, settings: Mapping[str, Any]) -> str:
        return protocol.set_output_muted(value)


class ToggleAway(StateMirrorAction):
    """Toggle away status, with the button's ``awayMessage``."""

    uuid = "me.mehlinger.teamspeak3.toggle-away"

    async def on_will_appear(self, handle: ButtonHandle, settings: Mapping[str, Any]) -> None:
        if not settings.get("awayMessage"):
            updated: Dict[str, Any] = dict(settings)
            updated["awayMessage"] = DEFAULT_AWAY_MESSAGE
            await handle.set_settings(updated)
        await super().on_will_appear(handle, settings)

    def read(self, state: ObservedState) -> bool:
        return state.away

    def command(self, value: bool, settings: Mapping[str, Any]) -> str:
        return protocol.set_away(value, settings.get("awayMessage") or None)


class SwitchChannel(Action):
    """Move to the channel named in the button's ``channelName``.

    An optional ``channelPassword`` is hashed by the client before the move.
    """

    uuid = "me.mehlinger.teamspeak3.switch-channel"

    async def on_will_appear(self, handle: ButtonHandle, settings: Mapping[str, Any]) -> None:
        if "channelName" not in settings:
            updated: Dict[str, Any] = dict(settings)
            updated["channelName"] = ""
            await handle.set_settings(updated)
        await handle.set_title("")

    async def on_key_down(self, handle: ButtonHandle, settings: Mapping[str, Any]) -> None:
        channel_name = str(settings.get("channelName") or "").strip()
        if not channel_name:
            await handle.show_alert()
            return

        try:
            moved = await self._switch(channel_name, str(settings.get("channelPassword") or ""))
            if moved:
                _LOGGER.info("[TS3] Moved to channel %r", channel_name)
            await handle.show_ok()
        except Exception as e:
            _LOGGER.error("[TS3] Switch channel error: %s", e)
            await handle.show_alert()

    async def _switch(self, channel_name: str, password: str) -> bool:
        """Move to ``channel_name``. Returns False if already there."""
        client = self._manager.require_client()

        channels = await client.execute(protocol.channellist())
        if not channels.ok:
            raise ProtocolError(f"Failed to get channel list: {channels.error.msg}")

        target = channel_name.lower()
        channel = next(
            (row for row in channels.rows if row.get("channel_name", "").lower() == target),
            None,
        )
        if channel is None or not channel.get("cid"):
            raise ProtocolError(f"Channel not found: {channel_name}")
        channel_id = channel["cid"]

        state = self._manager.state
        client_id = state.client_id if state is not None else ""
        if not client_id:
            me = await client.execute(protocol.whoami())
            client_id = me.first.get("clid", "")
            if not me.ok or not client_id:
                raise ProtocolError("Failed to get client info")

        if state is not None and state.channel_id == channel_id:
            _LOGGER.debug("[TS3] Already in channel %r", channel_name)
            return False

        password_hash = None
        if password.strip():
            hashed = await client.execute(protocol.hashpassword(password))
            password_hash = hashed.first.get("passwordhash")
            if not hashed.ok or not password_hash:
                raise ProtocolError("Failed to hash channel password")

        moved = await client.execute(protocol.clientmove(client_id, channel_id, password_hash))
        if not moved.ok:
            raise ProtocolError(f"Failed to move to channel: {moved.error.msg}")
        return True


ACTIONS = (ToggleMute, ToggleDeafen, ToggleAway, SwitchChannel)


def find_action(name: str) -> Type[Action]:
    """Look up an action class by its UUID or the last segment of it.

    Raises:
        KeyError: No action matches ``name``
    """
    for action in ACTIONS:
        if name in (action.uuid, action.uuid.rsplit(".", 1)[-1]):
            return action
    raise KeyError(name)
