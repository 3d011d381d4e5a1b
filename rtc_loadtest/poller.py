"""
Browser Poller - collects events and stats from one browser session.

Each poller owns the full bookkeeping of its session (event queue, counts,
waiters, callbacks) and runs one background thread:

    ┌──────────────┐  collect_and_reset   ┌─────────────┐
    │ Poller loop  │ ───────────────────▶ │ StatsBridge │
    └──────┬───────┘                      └─────────────┘
           │ events: queue + counts + waiters
           │ stats:  BrowserStatsLogger
           ▼
    ┌──────────────────┐
    │CallbackDispatcher│  (thread pool shared by all sessions)
    └──────────────────┘

Usage:
    poller = BrowserPoller(SeleniumBridge(driver), timeline, stats_logger)
    poller.start("user-1", "session-1")
    poller.on("streamCreated", lambda event: print(event.payload))
    poller.wait_until_event_reaches("connectionCreated", 4)
    poller.stop()
"""

import threading
import time
from typing import Any, Dict, Optional

import structlog

from .bridge import Snapshot, StatsBridge
from .callbacks import CallbackDispatcher, CallbackRegistry, EventHandler, get_dispatcher
from .config import get_settings
from .events import EventCounter, EventQueue
from .metrics import METRICS
from .stats import BrowserStatsLogger, LoadTestTimeline, build_stats_record
from .waiters import WaiterRegistry

logger = structlog.get_logger()


class BrowserPoller:
    """
    Polls one browser for application events and WebRTC stats.
    
    Stopping the poller clears counts, waiters and callbacks, so a later
    ``start`` begins from a clean session.
    
    Stats are logged by ``gather_events_and_stats``. The background loop
    logs them as well only when ``collect_stats`` is set.
    """
    
    def __init__(
        self,
        bridge: StatsBridge,
        timeline: Optional[LoadTestTimeline] = None,
        stats_logger: Optional[BrowserStatsLogger] = None,
        dispatcher: Optional[CallbackDispatcher] = None,
        poll_interval: Optional[float] = None,
        wait_timeout: Optional[float] = None,
        collect_stats: Optional[bool] = None,
    ):
        settings = get_settings()
        self.bridge = bridge
        self.timeline = timeline if timeline is not None else LoadTestTimeline()
        self.stats_logger = stats_logger
        self.dispatcher = dispatcher if dispatcher is not None else get_dispatcher()
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds
        self.wait_timeout = wait_timeout if wait_timeout is not None else settings.wait_timeout_seconds
        self.collect_stats = collect_stats if collect_stats is not None else settings.collect_stats
        
        self.event_queue = EventQueue()
        self.event_counts = EventCounter()
        self.waiters = WaiterRegistry(self.event_counts)
        self.callbacks = CallbackRegistry()
        
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._log = logger
    
    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    
    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
    
    def start(self, user_id: str, session_id: str):
        """Start polling in a background thread."""
        if self.running:
            raise RuntimeError(f"Poller for user {user_id} is already running")
        
        self._log = logger.bind(user_id=user_id, session_id=session_id)
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._poll_loop,
            args=(self._stop_event,),
            name=f"poller-{user_id}",
            daemon=True,
        )
        self._thread.start()
        METRICS.active_pollers.inc()
        
        self._log.info(
            "Retrieving events until session is stable",
            interval_seconds=self.poll_interval,
        )
    
    def stop(self, join_timeout: Optional[float] = None):
        """
        Stop polling and reset the session state.
        
        The loop exits after any in-flight collection call returns. Callers
        blocked in ``wait_until_event_reaches`` get ``WaitCancelled``.
        """
        thread = self._thread
        self._stop_event.set()
        if thread is not None:
            if thread is not threading.current_thread():
                thread.join(join_timeout)
            self._thread = None
            METRICS.active_pollers.dec()
        
        self.callbacks.clear()
        self.waiters.clear()
        self.event_counts.clear()
        self.event_queue.clear()
        self._log.info("Events polling stopped")
    
    def __enter__(self) -> "BrowserPoller":
        return self
    
    def __exit__(self, *args):
        self.stop()
    
    # -------------------------------------------------------------------------
    # Test-facing API
    # -------------------------------------------------------------------------
    
    def on(self, event_name: str, handler: EventHandler):
        """Call ``handler(event)`` for every future ``event_name`` event."""
        self.callbacks.add(event_name, handler)
    
    def off(self, event_name: str):
        """Remove every handler registered for ``event_name``."""
        self.callbacks.remove(event_name)
    
    def event_count(self, event_name: str) -> int:
        return self.event_counts.get(event_name)
    
    def wait_until_event_reaches(
        self,
        event_name: str,
        event_number: int,
        timeout: Optional[float] = None,
        log_timeout: bool = True,
    ):
        """
        Block until ``event_name`` has occurred ``event_number`` times since
        polling started (the count is cumulative for the page).
        
        Raises:
            WaitTimeout: If the count is not reached in time.
            WaitCancelled: If the poller is stopped while waiting.
        """
        self.waiters.wait_until(
            event_name,
            event_number,
            timeout if timeout is not None else self.wait_timeout,
            log_timeout=log_timeout,
        )
    
    def gather_events_and_stats(self, user_id: str, round_count: int) -> Optional[Dict[str, Any]]:
        """
        Run one collection pass with stats, then dispatch callbacks.
        
        Returns:
            The logged stats record, or None if the browser returned nothing.
        """
        self._log.debug("Gathering events and stats", user_id=user_id, round=round_count)
        snapshot = self._get_events_and_stats_from_browser()
        record = self._log_stats(snapshot) if snapshot is not None else None
        self._emit_events()
        return record
    
    # -------------------------------------------------------------------------
    # Polling internals
    # -------------------------------------------------------------------------
    
    def _poll_loop(self, stop_event: threading.Event):
        while not stop_event.is_set():
            try:
                self._poll_once()
            except Exception as e:
                # Keep polling: a broken iteration must not end the session
                self._log.error("Error polling browser", error=str(e), exc_info=True)
            stop_event.wait(self.poll_interval)
        self._log.debug("Events polling thread finished")
    
    def _poll_once(self):
        snapshot = self._get_events_and_stats_from_browser()
        if snapshot is not None and self.collect_stats:
            self._log_stats(snapshot)
        self._emit_events()
    
    def _get_events_and_stats_from_browser(self) -> Optional[Snapshot]:
        start = time.perf_counter()
        snapshot = self.bridge.collect_and_reset()
        METRICS.poll_duration.observe(time.perf_counter() - start)
        
        if snapshot is None:
            METRICS.collection_failures.inc()
            return None
        
        for event in snapshot.events:
            self.event_queue.put(event)
            self.waiters.event_arrived(event.name)
            METRICS.events_received.labels(event=event.name).inc()
        
        return snapshot
    
    def _log_stats(self, snapshot: Snapshot) -> Dict[str, Any]:
        record = build_stats_record(snapshot, self.timeline)
        if self.stats_logger is not None:
            self.stats_logger.log_browser_stats(record)
        return record
    
    def _emit_events(self):
        for event in self.event_queue.drain():
            for handler in self.callbacks.handlers_for(event.name):
                self.dispatcher.submit(event, handler)
