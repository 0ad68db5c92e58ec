"""
SCRATCH ELITE — Notification Events

Best-effort, advisory notifications from the engine to whatever presents it
(toasts, sounds, a log feed). Two ways to consume:

  bus.subscribe(fn)                 push: fn(event) called synchronously
  bus.subscribe(fn, "badge_earned") push, filtered by type
  bus.drain()                       poll: everything published since the last drain

A listener that raises is logged and skipped; the engine never depends on a
listener being present or succeeding.

Event types:
  tokens_added, tokens_spent, vendor_level_up, tier_unlocked, badge_earned,
  ticket_claimed, tickets_purchased, upgrade_bought, backstop_applied,
  notice (level: info | warn)
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger("scratch.events")

EVENT_TYPES = (
    "tokens_added", "tokens_spent", "vendor_level_up", "tier_unlocked",
    "badge_earned", "ticket_claimed", "tickets_purchased", "upgrade_bought",
    "backstop_applied", "notice",
)


@dataclass
class GameEvent:
    type: str
    data: dict = field(default_factory=dict)
    at: float = 0

    def __post_init__(self):
        if not self.at:
            self.at = time.time()

    def to_json(self) -> str:
        return json.dumps({"event": self.type, **self.data})


class EventBus:

    def __init__(self, history: int = 500):
        self._listeners: list[tuple[Optional[frozenset], Callable]] = []
        self._queue: deque = deque(maxlen=history)

    def subscribe(self, fn: Callable[[GameEvent], None], *types: str) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        entry = (frozenset(types) if types else None, fn)
        self._listeners.append(entry)

        def _unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def publish(self, event: GameEvent) -> GameEvent:
        self._queue.append(event)
        logger.debug(f"[EMIT] {event.to_json()}")
        for types, fn in list(self._listeners):
            if types is not None and event.type not in types:
                continue
            try:
                fn(event)
            except Exception:
                logger.exception(f"Listener {getattr(fn, '__name__', fn)!r} failed on {event.type}")
        return event

    def emit(self, event_type: str, **data) -> GameEvent:
        return self.publish(GameEvent(event_type, data))

    def drain(self) -> list[GameEvent]:
        out = list(self._queue)
        self._queue.clear()
        return out

    def pending(self) -> int:
        return len(self._queue)
