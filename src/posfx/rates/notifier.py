"""Subscription hub for rate state changes.

Consumers (UI, reports, the WebSocket feed) register a callback and get
every RateSnapshot the manager publishes, so nobody has to poll.
"""

import inspect
from collections.abc import Awaitable, Callable

from posfx.logging import get_logger
from posfx.models import RateSnapshot, RateState

logger = get_logger(__name__)

Subscriber = Callable[[RateSnapshot], Awaitable[None] | None]


class RateNotifier:
    """Fans snapshots out to subscribers and remembers the latest one.

    Callbacks may be plain functions or coroutine functions. A subscriber
    that raises is logged and skipped; it never affects the publisher or
    the other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._latest = RateSnapshot(state=RateState.IDLE, current=None, loading=False)

    @property
    def latest(self) -> RateSnapshot:
        """The most recently published snapshot."""
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback and return a function that unregisters it."""
        self._subscribers.append(callback)
        logger.debug("rate_subscriber_added", total=len(self._subscribers))

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
                logger.debug("rate_subscriber_removed", total=len(self._subscribers))

        return _unsubscribe

    async def publish(self, snapshot: RateSnapshot) -> None:
        """Store snapshot as latest and deliver it to every subscriber in order."""
        self._latest = snapshot
        for callback in self._subscribers.copy():
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    "rate_subscriber_error",
                    state=snapshot.state.value,
                    exc_info=True,
                )
