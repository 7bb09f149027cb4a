"""Tests for streamdeck_teamspeak.clientquery.backoff: cancelable backoff."""
import asyncio

import pytest

from streamdeck_teamspeak.clientquery.backoff import Backoff


class TestBackoffDelay:
    def test_starts_at_minimum(self):
        assert Backoff(1.0, 60.0).delay == 1.0

    def test_doubles_and_caps(self):
        backoff = Backoff(1.0, 60.0)
        delays = []
        for _ in range(8):
            delays.append(backoff.delay)
            backoff.increase()
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0]

    def test_matches_closed_form(self):
        backoff = Backoff(1.0, 60.0)
        for k in range(1, 12):
            assert backoff.delay == min(1.0 * 2 ** (k - 1), 60.0)
            backoff.increase()

    def test_reset(self):
        backoff = Backoff(1.0, 60.0)
        backoff.increase()
        backoff.increase()
        backoff.reset()
        assert backoff.delay == 1.0

    @pytest.mark.parametrize("bounds", [(0, 1.0), (-1.0, 1.0), (2.0, 1.0)])
    def test_invalid_bounds(self, bounds):
        with pytest.raises(ValueError):
            Backoff(*bounds)


class TestBackoffWait:
    @pytest.mark.asyncio
    async def test_wait_elapses(self):
        backoff = Backoff(0.01, 0.1)
        assert await backoff.wait() is True
        assert not backoff.waiting

    @pytest.mark.asyncio
    async def test_cancel_cuts_wait_short_and_resets(self):
        backoff = Backoff(10.0, 60.0)
        backoff.increase()
        waiter = asyncio.create_task(backoff.wait())
        await asyncio.sleep(0)
        assert backoff.waiting

        assert backoff.cancel() is True
        assert await asyncio.wait_for(waiter, timeout=1.0) is False
        assert backoff.delay == 10.0
        assert not backoff.waiting

    def test_cancel_without_wait_is_noop(self):
        backoff = Backoff(1.0, 60.0)
        backoff.increase()
        assert backoff.cancel() is False
        assert backoff.delay == 2.0
