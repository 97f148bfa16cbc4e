"""
Goal: Tiny observer for player events. `subscribe` hands back an unsubscribe handle,
so whoever attached a listener can detach exactly that listener later.
Handlers may be plain functions or coroutines; `emit` awaits them in subscription order.
"""

from __future__ import annotations

from collections import defaultdict
from inspect import iscoroutinefunction
from typing import Any, Callable, Dict, List

from loguru import logger

Handler = Callable[..., Any]
Unsubscribe = Callable[[], None]

# Event names the rotation controller listens for
PLAYBACK_STATE_WILL_CHANGE = "playbackStateWillChange"
AUTHORIZATION_STATUS_DID_CHANGE = "authorizationStatusDidChange"


class EventHub:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Unsubscribe:
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                if iscoroutinefunction(handler):
                    await handler(*args)
                else:
                    handler(*args)
            except Exception:  # noqa: BLE001
                # One bad listener must not starve the rest
                logger.exception("Listener for {} failed", event)


class Subscriptions:
    """A bag of unsubscribe handles released together."""

    def __init__(self) -> None:
        self._handles: List[Unsubscribe] = []

    def add(self, handle: Unsubscribe) -> None:
        self._handles.append(handle)

    def __len__(self) -> int:
        return len(self._handles)

    def release(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            handle()
