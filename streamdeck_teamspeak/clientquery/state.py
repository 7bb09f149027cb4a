"""Observed TeamSpeak client state and change subscriptions."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObservedState:
    """Snapshot of the local TeamSpeak client, as seen by the heartbeat."""
    client_id: str
    channel_id: str
    input_muted: bool = False
    output_muted: bool = False
    away: bool = False
    away_message: str = ""

    @classmethod
    def from_rows(
        cls,
        whoami: Mapping[str, str],
        variables: Mapping[str, str],
    ) -> "ObservedState":
        """Build a snapshot from the first rows of ``whoami`` and ``clientvariable``."""
        return cls(
            client_id=whoami.get("clid", ""),
            channel_id=whoami.get("cid", ""),
            input_muted=variables.get("client_input_muted") == "1",
            output_muted=variables.get("client_output_muted") == "1",
            away=variables.get("client_away") == "1",
            away_message=variables.get("client_away_message", ""),
        )


StateCallback = Callable[[ObservedState], None]


class Subscription:
    """Handle returned by :meth:`SubscriberRegistry.subscribe`."""

    def __init__(self, registry: "SubscriberRegistry", callback: StateCallback) -> None:
        self._registry = registry
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def callback(self) -> StateCallback:
        return self._callback

    def remove(self) -> None:
        """Stop receiving notifications. Safe to call more than once."""
        if self._active:
            self._active = False
            self._registry._discard(self)


class SubscriberRegistry:
    """Ordered list of state callbacks, notified synchronously."""

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: StateCallback) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def notify(self, state: ObservedState) -> None:
        """Call every subscriber in registration order.

        A failing subscriber is logged and does not stop the others.
        """
        for subscription in list(self._subscriptions):
            if subscription.active:
                self.deliver(subscription.callback, state)

    @staticmethod
    def deliver(callback: StateCallback, state: Optional[ObservedState]) -> None:
        if state is None:
            return
        try:
            callback(state)
        except Exception as e:
            _LOGGER.warning("State subscriber error: %s", e, exc_info=True)

    def _discard(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
