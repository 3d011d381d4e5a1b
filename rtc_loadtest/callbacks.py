"""
Event callbacks and the worker pool that runs them.

Every (event, handler) pair becomes its own task on a thread pool shared by
all browser sessions. The pool has a fixed number of threads but an
unbounded submission queue: the poller never blocks on dispatch, at the cost
of memory growth if handlers stall for long periods.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import lru_cache
from typing import Callable, Dict, List

import structlog

from .config import get_settings
from .events import Event
from .metrics import METRICS

logger = structlog.get_logger()

EventHandler = Callable[[Event], None]


class CallbackRegistry:
    """Handlers per event name, de-duplicated by identity."""
    
    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()
    
    def add(self, event_name: str, handler: EventHandler):
        with self._lock:
            handlers = self._handlers.setdefault(event_name, [])
            if not any(h is handler for h in handlers):
                handlers.append(handler)
    
    def remove(self, event_name: str):
        """Remove every handler registered for ``event_name``."""
        with self._lock:
            self._handlers.pop(event_name, None)
    
    def handlers_for(self, event_name: str) -> List[EventHandler]:
        with self._lock:
            return list(self._handlers.get(event_name, ()))
    
    def clear(self):
        with self._lock:
            self._handlers.clear()
    
    def __contains__(self, event_name: str) -> bool:
        with self._lock:
            return event_name in self._handlers


class CallbackDispatcher:
    """
    Runs event handlers on a thread pool.
    
    Usage:
        dispatcher = CallbackDispatcher(max_workers=16)
        dispatcher.submit(event, handler)
        dispatcher.shutdown()
    """
    
    def __init__(self, max_workers: int = 32):
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="event-callback",
        )
    
    def submit(self, event: Event, handler: EventHandler) -> Future:
        METRICS.callbacks_dispatched.labels(event=event.name).inc()
        return self._executor.submit(self._run, event, handler)
    
    def _run(self, event: Event, handler: EventHandler):
        try:
            handler(event)
        except Exception as e:
            # A failing handler must not affect other handlers or the poller
            METRICS.callback_errors.labels(event=event.name, error_type=type(e).__name__).inc()
            logger.error(
                "Event callback failed",
                event_name=event.name,
                handler=getattr(handler, "__qualname__", repr(handler)),
                error=str(e),
                exc_info=True,
            )
    
    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


@lru_cache()
def get_dispatcher() -> CallbackDispatcher:
    """Dispatcher shared by every poller that does not bring its own."""
    return CallbackDispatcher(max_workers=get_settings().callback_workers)
