"""
Observer registry — per-session event fan-out with cancellable subscriptions.

Built on pyee, the same emitter aiortc uses for its own peer connection and
data channel events. Listener failures are printed and never propagate into
the code that emitted the event.

Depends on: nothing
"""

import asyncio
import sys
from typing import Any, Callable

from pyee import EventEmitter


class Subscription:
    """Handle returned by EventRegistry.on(); cancel() unregisters the listener."""

    def __init__(self, emitter: EventEmitter, event: str, listener: Callable):
        self._emitter = emitter
        self.event = event
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            self._emitter.remove_listener(self.event, self._listener)
        except KeyError:
            pass  # a `once` listener that already fired


class EventRegistry:
    """Maps event names to ordered listener sets."""

    def __init__(self, label: str = "PeerLink"):
        self._label = label
        self._emitter = EventEmitter()

    def _guard(self, event: str, fn: Callable) -> Callable:
        label = self._label

        def _log_task_error(task: "asyncio.Future") -> None:
            if not task.cancelled() and task.exception() is not None:
                print(f"[{label}] '{event}' listener failed: {task.exception()}", file=sys.stderr)

        def listener(*args: Any) -> None:
            try:
                result = fn(*args)
            except Exception as e:
                print(f"[{label}] '{event}' listener failed: {e}", file=sys.stderr)
                return
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result).add_done_callback(_log_task_error)

        return listener

    def on(self, event: str, fn: Callable) -> Subscription:
        """Register fn for event. Listeners fire in registration order."""
        listener = self._guard(event, fn)
        self._emitter.on(event, listener)
        return Subscription(self._emitter, event, listener)

    def once(self, event: str, fn: Callable) -> Subscription:
        listener = self._guard(event, fn)
        self._emitter.once(event, listener)
        return Subscription(self._emitter, event, listener)

    def emit(self, event: str, *args: Any) -> bool:
        """Fire event. Returns True if at least one listener ran.

        `error` is only emitted when somebody listens; pyee would raise otherwise.
        """
        if event == "error" and not self._emitter.listeners("error"):
            return False
        return self._emitter.emit(event, *args)

    def listener_count(self, event: str) -> int:
        return len(self._emitter.listeners(event))

    def clear(self) -> None:
        self._emitter.remove_all_listeners()
