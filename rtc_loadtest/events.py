"""
Events pulled from a browser and the per-session bookkeeping around them.

A browser reports events as JSON objects carrying an ``event`` field with
the event name, e.g. ``{"event": "connectionCreated", "content": "..."}``.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional


@dataclass(frozen=True)
class Event:
    """A single application event emitted by the browser."""
    name: str
    payload: Dict[str, Any] = field(default_factory=dict, compare=False)
    
    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> "Event":
        """
        Build an event from the browser's JSON object.
        
        Raises:
            ValueError: If the object has no string ``event`` field.
        """
        name = obj.get("event") if isinstance(obj, dict) else None
        if not isinstance(name, str):
            raise ValueError(f"Not an event object: {obj!r}")
        return cls(name=name, payload=dict(obj))
    
    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


class EventQueue:
    """
    Unbounded FIFO of events waiting for callback dispatch.
    
    ``append`` and ``popleft`` on a deque are atomic, so the poller can push
    while another thread drains without extra locking. Each entry is handed
    out exactly once.
    """
    
    def __init__(self):
        self._events: deque = deque()
    
    def put(self, event: Event):
        self._events.append(event)
    
    def poll(self) -> Optional[Event]:
        """Remove and return the oldest event, or None when empty."""
        try:
            return self._events.popleft()
        except IndexError:
            return None
    
    def drain(self) -> Iterator[Event]:
        """Yield and consume events until the queue is empty."""
        while True:
            event = self.poll()
            if event is None:
                return
            yield event
    
    def clear(self):
        self._events.clear()
    
    def __len__(self) -> int:
        return len(self._events)


class EventCounter:
    """
    Cumulative number of occurrences per event name.
    
    Counts only grow until ``clear()`` is called at session teardown.
    """
    
    def __init__(self):
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()
    
    def increment(self, event_name: str) -> int:
        """Add one occurrence and return the new count."""
        with self._lock:
            count = self._counts.get(event_name, 0) + 1
            self._counts[event_name] = count
            return count
    
    def get(self, event_name: str) -> int:
        with self._lock:
            return self._counts.get(event_name, 0)
    
    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)
    
    def clear(self):
        with self._lock:
            self._counts.clear()
