"""Cancellable expiry slots on the running asyncio loop."""

import asyncio
import logging
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger("room_events.timers")

T = TypeVar("T")


class ExpiringSlot(Generic[T]):
    """Holds at most one value, cleared automatically after a delay.

    Arming the slot again replaces the value and cancels the previous
    timer; the superseded value is simply dropped.

    Example:
        >>> slot: ExpiringSlot[str] = ExpiringSlot("undo", 15.0)
        >>> slot.arm("evt-1")   # inside a running loop
        >>> slot.value
        'evt-1'
    """

    def __init__(
        self,
        name: str,
        seconds: float,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.name = name
        self.seconds = seconds
        self._on_change = on_change
        self._value: Optional[T] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, value: T) -> None:
        """Store ``value`` and (re)start the expiry timer.

        Must be called from within a running event loop.
        """
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._value = value
        self._handle = loop.call_later(self.seconds, self._expire)
        self._notify()

    def clear(self) -> Optional[T]:
        """Drop the value and cancel the timer. Returns the dropped value."""
        self._cancel_timer()
        value, self._value = self._value, None
        if value is not None:
            self._notify()
        return value

    def _expire(self) -> None:
        self._handle = None
        if self._value is None:
            return
        logger.debug("%s window expired for %r", self.name, self._value)
        self._value = None
        self._notify()

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
