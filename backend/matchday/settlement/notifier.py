"""Publish/subscribe hub for settlement announcements."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Awaitable[None] | None]


class SettlementNotifier:
    """Delivers engine result values to listeners registered by type.

    Listener failures are logged and dropped; ``publish`` never raises.
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, message_type: type, listener: Listener) -> None:
        self._listeners[message_type].append(listener)

    async def publish(self, message: Any) -> int:
        """Deliver ``message``. Returns how many listeners handled it cleanly."""
        delivered = 0
        for listener in list(self._listeners.get(type(message), [])):
            try:
                result = listener(message)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Listener {getattr(listener, '__qualname__', listener)} failed "
                    f"for {type(message).__name__}: {e}"
                )
        return delivered
