import asyncio
import functools
from typing import Any, Callable, Dict, Set, Tuple

from logging_config import get_logger

logger = get_logger(__name__)

# Receives every dispatch, with the event name prepended to the arguments
WILDCARD = "*"

# Lifecycle signals, not application data
CONNECTED = "_connected"
ERROR = "_error"
LEAVE = "_leave"

RESERVED_EVENTS = frozenset({WILDCARD, CONNECTED, ERROR, LEAVE})

Listener = Callable[..., Any]


class ListenerRegistry:
    """Event name -> ordered set of callbacks.

    Each set is a dict with ``None`` values, so insertion order is kept and the
    same callable registered twice is one entry.
    """

    def __init__(self):
        self.events: Dict[str, Dict[Listener, None]] = {}
        self._timers: Dict[Tuple[str, Listener], asyncio.TimerHandle] = {}
        # (event name, original callable) -> wrapper registered by once()
        self._once_wrappers: Dict[Tuple[str, Listener], Listener] = {}
        self._pending: Set[asyncio.Future] = set()

    def _get_fns(self, event_name: str) -> Dict[Listener, None]:
        if event_name not in self.events:
            self.events[event_name] = {}
        return self.events[event_name]

    def listeners(self, event_name: str):
        return list(self.events.get(event_name, ()))

    def on(self, event_name: str, fn: Listener) -> None:
        self._get_fns(event_name)[fn] = None

    def once(self, event_name: str, fn: Listener) -> None:
        """Register `fn` for a single dispatch. `remove(event_name, fn)` cancels it."""
        if (event_name, fn) in self._once_wrappers:
            return

        @functools.wraps(fn)
        def once_fn(*args):
            self._once_wrappers.pop((event_name, fn), None)
            self._discard(event_name, once_fn)
            return fn(*args)

        self._once_wrappers[(event_name, fn)] = once_fn
        self.on(event_name, once_fn)

    def within(self, event_name: str, fn: Listener, timeout: float) -> None:
        """Register `fn` and drop it after `timeout` seconds, fired or not."""
        self.on(event_name, fn)
        self._cancel_timer(event_name, fn)
        loop = asyncio.get_running_loop()
        self._timers[(event_name, fn)] = loop.call_later(
            timeout, self._expire, event_name, fn
        )

    def _expire(self, event_name: str, fn: Listener) -> None:
        self._timers.pop((event_name, fn), None)
        self._discard(event_name, fn)
        logger.debug(f"Listener window closed for event '{event_name}'")

    def _cancel_timer(self, event_name: str, fn: Listener) -> None:
        handle = self._timers.pop((event_name, fn), None)
        if handle is not None:
            handle.cancel()

    def _discard(self, event_name: str, fn: Listener) -> None:
        self._cancel_timer(event_name, fn)
        self.events.get(event_name, {}).pop(fn, None)

    def remove(self, event_name: str, fn: Listener) -> None:
        self._discard(event_name, fn)
        wrapper = self._once_wrappers.pop((event_name, fn), None)
        if wrapper is not None:
            self._discard(event_name, wrapper)

    def prune(self, event_name: str) -> None:
        self.events[event_name] = {}
        for key in [k for k in self._once_wrappers if k[0] == event_name]:
            del self._once_wrappers[key]
        for key in [k for k in self._timers if k[0] == event_name]:
            self._cancel_timer(*key)

    def emit(self, event_name: str, *args) -> None:
        for fn in list(self._get_fns(event_name)):
            self._invoke(event_name, fn, args)

        if event_name == WILDCARD:
            return
        for fn in list(self._get_fns(WILDCARD)):
            self._invoke(event_name, fn, (event_name, *args))

    def _invoke(self, event_name: str, fn: Listener, args: tuple) -> None:
        try:
            result = fn(*args)
        except Exception as e:
            logger.error(f"Listener for event '{event_name}' failed: {e}", exc_info=True)
            return

        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(functools.partial(self._finished, event_name))

    def _finished(self, event_name: str, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Async listener for event '{event_name}' failed: {error}",
                exc_info=error,
            )
