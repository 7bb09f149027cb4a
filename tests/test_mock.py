"""Tests for MockSession and ObservedState snapshots."""
import pytest

from streamdeck_teamspeak.actions import ToggleAway, ToggleMute
from streamdeck_teamspeak.clientquery.errors import NotConnectedError
from streamdeck_teamspeak.clientquery.manager import ConnectionManager
from streamdeck_teamspeak.clientquery.mock import MockSession
from streamdeck_teamspeak.clientquery.options import ConnectionOptions
from streamdeck_teamspeak.clientquery.state import ObservedState, SubscriberRegistry

from conftest import make_handle


class TestMockSession:
    @pytest.mark.asyncio
    async def test_reports_what_it_was_told(self):
        session = MockSession(ConnectionOptions(api_key="KEY"))
        await session.connect()
        assert session.is_connected

        await session.execute("clientupdate client_away=1 client_away_message=Out\\sto\\slunch")
        response = await session.execute("clientvariable clid=1 client_away client_away_message")

        assert response.ok
        assert response.first["client_away"] == "1"
        assert response.first["client_away_message"] == "Out to lunch"

    @pytest.mark.asyncio
    async def test_leaving_away_clears_message(self):
        session = MockSession(ConnectionOptions())
        await session.connect()
        await session.execute("clientupdate client_away=1 client_away_message=x")
        await session.execute("clientupdate client_away=0")
        assert session.variables["client_away_message"] == ""

    @pytest.mark.asyncio
    async def test_clientmove_changes_channel(self):
        session = MockSession(ConnectionOptions())
        await session.connect()
        await session.execute("clientmove clid=1 cid=9")
        response = await session.execute("whoami")
        assert response.first == {"clid": "1", "cid": "9"}

    @pytest.mark.asyncio
    async def test_disconnect(self):
        session = MockSession(ConnectionOptions())
        await session.connect()
        await session.disconnect()
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_require_client_before_connect(self):
        manager = ConnectionManager(session_factory=MockSession)
        manager.apply_configuration(ConnectionOptions())
        with pytest.raises(NotConnectedError):
            manager.require_client()
        await manager.close()

    @pytest.mark.asyncio
    async def test_drives_buttons_through_manager(self):
        manager = ConnectionManager(session_factory=MockSession)
        manager.apply_configuration(ConnectionOptions())
        session = await manager.get_client()
        await manager.poll()

        handle = make_handle()
        await ToggleMute(manager).on_key_down(handle, {})
        await ToggleAway(manager).on_key_down(handle, {"awayMessage": "brb"})
        state = await manager.poll()

        assert session.commands[2:5] == [
            "clientupdate client_input_muted=1",
            "clientupdate client_away=1 client_away_message=brb",
            "whoami",
        ]
        assert state.input_muted
        assert state.away
        assert state.away_message == "brb"
        handle.show_alert.assert_not_awaited()
        await manager.close()


class TestObservedState:
    def test_from_rows(self):
        state = ObservedState.from_rows(
            {"clid": "5", "cid": "12"},
            {
                "client_input_muted": "1",
                "client_output_muted": "0",
                "client_away": "1",
                "client_away_message": "Gone",
            },
        )
        assert state == ObservedState(
            client_id="5",
            channel_id="12",
            input_muted=True,
            output_muted=False,
            away=True,
            away_message="Gone",
        )

    def test_missing_flags_are_false(self):
        state = ObservedState.from_rows({"clid": "5"}, {"client_input_muted": ""})
        assert not state.input_muted
        assert not state.output_muted
        assert not state.away
        assert state.channel_id == ""


class TestSubscriberRegistry:
    def test_remove_is_idempotent(self):
        registry = SubscriberRegistry()
        subscription = registry.subscribe(lambda state: None)
        assert subscription.active
        subscription.remove()
        subscription.remove()
        assert not subscription.active
        assert len(registry) == 0

    def test_notify_in_registration_order(self):
        registry = SubscriberRegistry()
        calls = []
        registry.subscribe(lambda state: calls.append("first"))
        registry.subscribe(lambda state: calls.append("second"))
        registry.notify(ObservedState(client_id="1", channel_id="1"))
        assert calls == ["first", "second"]
