"""
Countdown barriers that let test code block until an event has occurred
a target number of times.

Several waiters may be pending on the same event name; each one is counted
down independently.
"""

import threading
import time
from typing import Dict, List, Optional

import structlog

from .events import EventCounter
from .exceptions import WaitCancelled, WaitTimeout

logger = structlog.get_logger()


class Waiter:
    """A single barrier on one event name."""
    
    def __init__(self, event_name: str, target_count: int):
        self.event_name = event_name
        self.target_count = target_count
        self._remaining = target_count
        self._cancelled = False
        self._cond = threading.Condition()
    
    @property
    def remaining(self) -> int:
        with self._cond:
            return self._remaining
    
    @property
    def satisfied(self) -> bool:
        return self.remaining == 0
    
    @property
    def cancelled(self) -> bool:
        with self._cond:
            return self._cancelled
    
    def count_down(self, n: int = 1):
        """Record ``n`` matching events; never goes below zero."""
        with self._cond:
            self._remaining = max(0, self._remaining - n)
            if self._remaining == 0:
                self._cond.notify_all()
    
    def cancel(self):
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()
    
    def wait(self, timeout: Optional[float]) -> bool:
        """
        Block until satisfied, cancelled or timed out.
        
        Returns:
            True if satisfied, False on timeout.
        
        Raises:
            WaitCancelled: If the barrier was cancelled.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._remaining == 0 or self._cancelled, timeout)
            if self._remaining == 0:
                return True
            if self._cancelled:
                raise WaitCancelled(self.event_name)
            return False
    
    def __repr__(self) -> str:
        return (
            f"Waiter(event_name={self.event_name!r}, target_count={self.target_count}, "
            f"remaining={self.remaining})"
        )


class WaiterRegistry:
    """
    Pending waiters of one browser session, keyed by event name.
    
    Registration and event arrival share a lock, so a waiter is seeded from
    exactly the count it was registered against and then sees every later
    event once.
    """
    
    def __init__(self, counter: EventCounter):
        self.counter = counter
        self._waiters: Dict[str, List[Waiter]] = {}
        self._lock = threading.Lock()
    
    def register(self, event_name: str, target_count: int) -> Waiter:
        """Create a waiter pre-decremented by the occurrences seen so far."""
        if target_count < 0:
            raise ValueError(f"target_count must be >= 0, got {target_count}")
        
        waiter = Waiter(event_name, target_count)
        with self._lock:
            waiter.count_down(self.counter.get(event_name))
            if not waiter.satisfied:
                self._waiters.setdefault(event_name, []).append(waiter)
        return waiter
    
    def unregister(self, waiter: Waiter):
        with self._lock:
            pending = self._waiters.get(waiter.event_name)
            if pending and waiter in pending:
                pending.remove(waiter)
                if not pending:
                    del self._waiters[waiter.event_name]
    
    def event_arrived(self, event_name: str) -> int:
        """
        Count one occurrence of ``event_name`` and count down its waiters.
        
        Returns:
            The new cumulative count.
        """
        with self._lock:
            count = self.counter.increment(event_name)
            pending = self._waiters.get(event_name)
            if pending:
                for waiter in pending:
                    waiter.count_down()
                self._waiters[event_name] = [w for w in pending if not w.satisfied]
                if not self._waiters[event_name]:
                    del self._waiters[event_name]
            return count
    
    def wait_until(
        self,
        event_name: str,
        target_count: int,
        timeout: Optional[float],
        log_timeout: bool = True,
    ):
        """
        Block until ``event_name`` has occurred ``target_count`` times in total.
        
        Raises:
            WaitTimeout: If the count is not reached within ``timeout`` seconds.
            WaitCancelled: If the registry is cleared while waiting.
        """
        start = time.monotonic()
        waiter = self.register(event_name, target_count)
        try:
            if waiter.wait(timeout):
                logger.debug(
                    "Event count reached",
                    event_name=event_name,
                    target=target_count,
                    waited_seconds=round(time.monotonic() - start, 3),
                )
                return
        finally:
            self.unregister(waiter)
        
        error = WaitTimeout(event_name, target_count, waiter.remaining, timeout)
        if log_timeout:
            logger.warning(
                "Timeout waiting for event",
                event_name=event_name,
                target=target_count,
                remaining=error.remaining,
                timeout=timeout,
            )
        raise error
    
    def pending(self, event_name: str) -> List[Waiter]:
        with self._lock:
            return list(self._waiters.get(event_name, ()))
    
    def clear(self):
        """Drop every pending waiter, releasing blocked callers."""
        with self._lock:
            waiters = [w for pending in self._waiters.values() for w in pending]
            self._waiters.clear()
        for waiter in waiters:
            waiter.cancel()
    
    def __len__(self) -> int:
        with self._lock:
            return sum(len(p) for p in self._waiters.values())
