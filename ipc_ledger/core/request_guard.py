"""
REQUEST GENERATION & IN-FLIGHT GUARDS

Async loads are not cancelled; instead every request takes a generation
number when it starts and its result is applied only if that number is
still current when it resolves. Starting a newer request, or closing the
owner, makes older results stale.

Usage:
    token = self._contract_requests.begin()
    data = await client.get_contract_data(contract_id)
    if not self._contract_requests.is_current(token):
        return  # superseded
"""

import logging

logger = logging.getLogger(__name__)


class RequestGeneration:
    """Monotonic request counter for one kind of load."""

    def __init__(self, name: str):
        self.name = name
        self._current = 0
        self._closed = False

    def begin(self) -> int:
        self._current += 1
        return self._current

    def is_current(self, token: int) -> bool:
        current = not self._closed and token == self._current
        if not current:
            logger.info(f"[REQUEST] Discarding stale {self.name} response (generation {token})")
        return current

    def invalidate(self) -> None:
        """Make every outstanding request stale."""
        self._current += 1

    def close(self) -> None:
        """Owner is gone: no response may be applied any more."""
        self._closed = True
        self.invalidate()

    @property
    def closed(self) -> bool:
        return self._closed


class InFlightGuard:
    """Allows a single outstanding request; extra triggers are dropped."""

    def __init__(self, name: str):
        self.name = name
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def try_acquire(self) -> bool:
        if self._in_flight:
            logger.debug(f"[REQUEST] {self.name} already in flight, skipping")
            return False
        self._in_flight = True
        return True

    def release(self) -> None:
        self._in_flight = False
