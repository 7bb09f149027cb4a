"""Connection manager for the TeamSpeak 3 ClientQuery session.

The manager owns the current :class:`Session`, rebuilds it whenever the
global settings change, reconnects with exponential backoff and polls the
client on a fixed interval so that buttons can mirror mute and away state
without issuing queries of their own.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Mapping, Optional, Set

from . import protocol
from .backoff import DEFAULT_MAX_DELAY, DEFAULT_MIN_DELAY, Backoff
from .errors import ClientQueryError, NotConnectedError, ProtocolError
from .options import ConnectionOptions, SettingsProvider
from .session import DEFAULT_BANNER_TIMEOUT, DEFAULT_COMMAND_TIMEOUT, Session
from .state import ObservedState, StateCallback, SubscriberRegistry, Subscription

_LOGGER = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 0.5

SessionFactory = Callable[[ConnectionOptions], Session]


class ConnectionState:
    """Connection state constants."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    BACKOFF_WAITING = "backoff_waiting"
    CONNECTED = "connected"


class ConnectionManager:
    """Owns the ClientQuery session for the lifetime of the process.

    Lifecycle: construct once, call :meth:`initialize` once from inside the
    event loop, and :meth:`close` at shutdown. Callers keep a reference to
    the manager; there is no module-level instance.
    """

    def __init__(
        self,
        settings_provider: Optional[SettingsProvider] = None,
        session_factory: Optional[SessionFactory] = None,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        banner_timeout: float = DEFAULT_BANNER_TIMEOUT,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        min_backoff: float = DEFAULT_MIN_DELAY,
        max_backoff: float = DEFAULT_MAX_DELAY,
        on_connection_change: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings_provider: Source of the ``{apiKey, host, port}`` settings
            session_factory: Builds a Session for a set of options
            command_timeout: Seconds to wait for each command's status line
            banner_timeout: Seconds to wait for the welcome banner
            heartbeat_interval: Seconds between state polls
            min_backoff: First reconnect delay in seconds
            max_backoff: Largest reconnect delay in seconds
            on_connection_change: Callback when the connection state changes
        """
        self._settings_provider = settings_provider
        self._command_timeout = command_timeout
        self._banner_timeout = banner_timeout
        self._session_factory = session_factory or self._build_session
        self._heartbeat_interval = heartbeat_interval
        self._on_connection_change = on_connection_change

        self._session: Optional[Session] = None
        self._configured = asyncio.Event()
        self._backoff = Backoff(min_backoff, max_backoff)
        self._connection_state = ConnectionState.DISCONNECTED

        # Observed client state
        self._state: Optional[ObservedState] = None
        self._subscribers = SubscriberRegistry()

        # Tasks
        self._connect_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._initialized = False
        self._closed = False

    @property
    def session(self) -> Optional[Session]:
        """The current session, connected or not."""
        return self._session

    @property
    def state(self) -> Optional[ObservedState]:
        """Latest observed client state, or None before the first poll."""
        return self._state

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    @property
    def connection_state(self) -> str:
        """Current connection state."""
        return self._connection_state

    def initialize(self) -> None:
        """Subscribe to settings and start the heartbeat.

        Must be called from inside the running event loop.
        """
        if self._initialized:
            raise RuntimeError("ConnectionManager is already initialized")
        self._initialized = True

        if self._settings_provider is not None:
            self._settings_provider.on_did_receive_settings(self._on_settings)
            self._settings_provider.request_settings()

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def close(self) -> None:
        """Stop all background work and disconnect."""
        self._closed = True

        tasks = [t for t in (self._heartbeat_task, self._connect_task) if t]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._heartbeat_task = None
        self._connect_task = None

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        session, self._session = self._session, None
        if session is not None:
            await self._disconnect_quietly(session)
        self._set_connection_state(ConnectionState.DISCONNECTED)

    def apply_configuration(self, options: ConnectionOptions) -> None:
        """Replace the current session with one for ``options``.

        The new session is not connected here; the next caller or heartbeat
        tick that needs it will connect it.
        """
        previous = self._session
        if previous is not None:
            self._spawn(self._disconnect_quietly(previous))

        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = None

        self._backoff.reset()
        self._session = self._session_factory(options)
        self._set_connection_state(ConnectionState.DISCONNECTED)
        self._configured.set()

    async def get_client(self) -> Session:
        """Return a connected session, connecting first if needed.

        Waits for the first configuration if none has arrived yet and
        keeps retrying until a connection succeeds.
        """
        while True:
            if self._closed:
                raise NotConnectedError("Connection manager is closed")

            session = self._session
            if session is None:
                await self._configured.wait()
                continue
            if session.is_connected:
                return session

            task = self._ensure_connect_task()
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                if task.cancelled() and task is not self._connect_task:
                    # Superseded by a new configuration; follow the new session
                    continue
                raise

    def require_client(self) -> Session:
        """Return the current session if it is connected.

        Never waits. When not connected, any pending backoff wait is cut
        short so the reconnect happens right away in the background.

        Raises:
            NotConnectedError: No connected session is available
        """
        session = self._session
        if session is not None and session.is_connected:
            return session

        self.cancel_backoff_and_retry()
        if session is not None and not self._closed:
            self._ensure_connect_task()
        raise NotConnectedError()

    def cancel_backoff_and_retry(self) -> None:
        """Cut a pending backoff wait short and reset the delay."""
        if self._backoff.cancel():
            _LOGGER.info("Reconnect backoff canceled, retrying now")

    async def connect_with_backoff(self, session: Session) -> Session:
        """Connect ``session``, retrying with fresh sessions until one succeeds."""
        attempt = 0
        while True:
            attempt += 1
            options = session.options
            self._set_connection_state(ConnectionState.CONNECTING)
            try:
                await session.connect()
            except Exception as e:
                _LOGGER.warning(
                    "Connection attempt %d to %s:%d failed: %s",
                    attempt,
                    options.host,
                    options.port,
                    e,
                )
            else:
                self._backoff.reset()
                session.add_close_callback(partial(self._on_session_closed, session))
                self._set_connection_state(ConnectionState.CONNECTED)
                _LOGGER.info(
                    "Connected to TeamSpeak ClientQuery at %s:%d",
                    options.host,
                    options.port,
                )
                return session

            self._set_connection_state(ConnectionState.BACKOFF_WAITING)
            _LOGGER.info("Reconnecting in %.1f seconds...", self._backoff.delay)
            if await self._backoff.wait():
                self._backoff.increase()

            session = self._session_factory(options)
            self._session = session

    def on_state_change(self, callback: StateCallback) -> Subscription:
        """Register a state callback.

        The callback runs immediately with the current snapshot if there is
        one, then again on every change.
        """
        subscription = self._subscribers.subscribe(callback)
        SubscriberRegistry.deliver(callback, self._state)
        return subscription

    async def poll(self) -> Optional[ObservedState]:
        """Run one heartbeat query.

        Returns:
            The polled state, or None if this tick failed
        """
        try:
            session = await self.get_client()

            me = await session.execute(protocol.whoami())
            if not me.ok:
                _LOGGER.debug("Heartbeat whoami failed: %s", me.error.msg)
                return None
            clid = me.first.get("clid")
            if not clid:
                raise ProtocolError("whoami response has no clid")

            variables = await session.execute(protocol.clientvariable(clid))
            if not variables.ok:
                _LOGGER.debug("Heartbeat clientvariable failed: %s", variables.error.msg)
                return None
        except ClientQueryError as e:
            _LOGGER.debug("Heartbeat skipped: %s", e)
            return None

        state = ObservedState.from_rows(me.first, variables.first)
        self._update_state(state)
        return state

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self.poll()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                _LOGGER.warning("Heartbeat error: %s", e, exc_info=True)

    def _update_state(self, state: ObservedState) -> None:
        if state == self._state:
            return
        self._state = state
        _LOGGER.debug("Client state changed: %s", state)
        self._subscribers.notify(state)

    def _on_settings(self, settings: Mapping[str, Any]) -> None:
        options = ConnectionOptions.from_settings(settings)
        _LOGGER.info(
            "Global settings updated: host=%s port=%d apiKey=%s",
            options.host,
            options.port,
            options.masked_api_key or "<none>",
        )
        self.apply_configuration(options)

    def _on_session_closed(self, session: Session) -> None:
        if session is self._session and not self._closed:
            _LOGGER.info("Lost connection to TeamSpeak ClientQuery")
            self._set_connection_state(ConnectionState.DISCONNECTED)

    def _ensure_connect_task(self) -> asyncio.Task:
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(
                self.connect_with_backoff(self._session)
            )
        return self._connect_task

    def _build_session(self, options: ConnectionOptions) -> Session:
        return Session(
            options,
            command_timeout=self._command_timeout,
            banner_timeout=self._banner_timeout,
        )

    async def _disconnect_quietly(self, session: Session) -> None:
        try:
            await session.disconnect()
        except Exception as e:
            _LOGGER.warning("Error disconnecting previous session: %s", e)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_connection_state(self, state: str) -> None:
        """Update connection state and notify callback."""
        if state != self._connection_state:
            self._connection_state = state
            _LOGGER.info("ClientQuery state: %s", state)
            if self._on_connection_change:
                try:
                    self._on_connection_change(state)
                except Exception as e:
                    _LOGGER.warning("Connection callback error: %s", e)
