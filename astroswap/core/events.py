"""
Event Broadcaster - fan-out of engine events to connected observers.

Every message has the shape ``{"type", "data", "timestamp"}``. An observer
is anything with ``async send_json(dict)``; a Starlette ``WebSocket``
qualifies, as do the recording fakes in the tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from astroswap.core.logger import get_logger

logger = get_logger("events")


class Observer(Protocol):
    async def send_json(self, data: Any) -> None: ...


def make_message(kind: str, data: Any) -> Dict[str, Any]:
    return {
        "type": kind,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class EventBroadcaster:
    """
    Registry of observers plus best-effort delivery.

    ``snapshot_fn`` builds the status payload a new observer receives before
    it sees any broadcast.
    """

    def __init__(self, snapshot_fn: Optional[Callable[[], Dict[str, Any]]] = None):
        self._snapshot_fn = snapshot_fn
        self._observers: List[Observer] = []

    def set_snapshot_fn(self, fn: Callable[[], Dict[str, Any]]) -> None:
        self._snapshot_fn = fn

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def __contains__(self, observer: Observer) -> bool:
        return observer in self._observers

    async def register(self, observer: Observer) -> bool:
        """
        Send the status snapshot, then start delivering broadcasts.

        Returns False (and does not register) when the snapshot cannot be
        delivered.
        """
        snapshot = self._snapshot_fn() if self._snapshot_fn else {}
        try:
            await observer.send_json(make_message("status", snapshot))
        except Exception as e:
            logger.debug("Observer dropped before registration", error=str(e))
            return False
        self._observers.append(observer)
        logger.info("Observer registered", total=len(self._observers))
        return True

    def unregister(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)
            logger.info("Observer unregistered", total=len(self._observers))

    async def broadcast(self, kind: str, data: Any) -> int:
        """Deliver to every observer. Returns how many received it."""
        message = make_message(kind, data)
        delivered = 0
        # Iterate a copy; observers may register or drop while we await.
        for observer in list(self._observers):
            try:
                await observer.send_json(message)
                delivered += 1
            except Exception as e:
                logger.debug("Dropping failed observer", event_type=kind, error=str(e))
                self.unregister(observer)
        return delivered
