"""Cancelable exponential backoff for reconnect attempts."""

import asyncio
import logging
from typing import Optional

_LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0


class Backoff:
    """Exponential backoff whose pending wait can be cut short.

    The delay starts at ``min_delay`` and doubles after every elapsed wait,
    capped at ``max_delay``. A successful connection or an explicit cancel
    brings it back to ``min_delay``.
    """

    def __init__(
        self,
        min_delay: float = DEFAULT_MIN_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
    ) -> None:
        """Initialize the backoff.

        Args:
            min_delay: First delay, in seconds
            max_delay: Upper bound for the delay, in seconds
        """
        if min_delay <= 0 or max_delay < min_delay:
            raise ValueError(
                f"Invalid backoff bounds: min={min_delay}, max={max_delay}"
            )
        self._min_delay = min_delay
        self._max_delay = max_delay
        self._delay = min_delay
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def delay(self) -> float:
        """Delay the next wait will use, in seconds."""
        return self._delay

    @property
    def waiting(self) -> bool:
        """Whether a wait is currently pending."""
        return self._cancel_event is not None

    def reset(self) -> None:
        """Return the delay to its minimum."""
        self._delay = self._min_delay

    def increase(self) -> None:
        """Double the delay, capped at the maximum."""
        self._delay = min(self._delay * 2, self._max_delay)

    async def wait(self) -> bool:
        """Sleep for the current delay unless canceled first.

        Returns:
            True if the full delay elapsed, False if :meth:`cancel` cut it short
        """
        event = asyncio.Event()
        self._cancel_event = event
        try:
            await asyncio.wait_for(event.wait(), timeout=self._delay)
        except asyncio.TimeoutError:
            return True
        finally:
            if self._cancel_event is event:
                self._cancel_event = None
        return False

    def cancel(self) -> bool:
        """Cut a pending wait short and reset the delay.

        Returns:
            True if a wait was pending
        """
        event = self._cancel_event
        if event is None:
            return False
        self.reset()
        event.set()
        _LOGGER.debug("Backoff wait canceled")
        return True
