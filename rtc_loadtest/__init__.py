"""
Browser Fleet Load Testing Harness
==================================

Drives remote browsers running the real-time communication test web app,
polls each one for application events and WebRTC stats, and lets test code
synchronize on those events.

Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                  BrowserFleet                        │
    │  ┌─────────┐ ┌─────────┐ ┌─────────┐               │
    │  │Poller 1 │ │Poller 2 │ │Poller N │  (threads)    │
    │  └────┬────┘ └────┬────┘ └────┬────┘               │
    │       └───────────┼───────────┘                     │
    │           ┌───────┴────────┐                        │
    │           │ Callback pool  │                        │
    │           └────────────────┘                        │
    └─────────────────────────────────────────────────────┘
           │ execute_script                 │ SSH
           ▼                                ▼
    ┌───────────────┐              ┌─────────────────────┐
    │ Browser (app) │              │ Browser instance    │
    └───────────────┘              │ (record, tcpdump,   │
                                   │  network rules)     │
                                   └─────────────────────┘

Usage:
    from rtc_loadtest import BrowserFleet, Browser, BrowserProperties, Instance
    
    fleet = BrowserFleet()
    fleet.start()
    poller = fleet.add_browser(browser)
    fleet.start_polling("user-1")
    poller.wait_until_event_reaches("streamCreated", 4, timeout=30)
    report = fleet.stop()
"""

from .config import Settings, get_settings
from .log import configure_logging
from .exceptions import (
    LoadTestError,
    WaitTimeout,
    WaitCancelled,
    RemoteOperationError,
    NotConnectedError,
    TemplateError,
)
from .events import Event, EventQueue, EventCounter
from .waiters import Waiter, WaiterRegistry
from .callbacks import CallbackRegistry, CallbackDispatcher
from .bridge import Snapshot, StatsBridge, SeleniumBridge
from .stats import LoadTestTimeline, BrowserStatsLogger, StatsCollector, AggregateStats
from .poller import BrowserPoller
from .models import NetworkRestriction, Instance, BrowserProperties, Browser
from .remote import BrowserSshManager
from .netinfo import NetInfo
from .fleet import BrowserFleet

__version__ = "1.0.0"

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "configure_logging",
    # Errors
    "LoadTestError",
    "WaitTimeout",
    "WaitCancelled",
    "RemoteOperationError",
    "NotConnectedError",
    "TemplateError",
    # Events
    "Event",
    "EventQueue",
    "EventCounter",
    "Waiter",
    "WaiterRegistry",
    "CallbackRegistry",
    "CallbackDispatcher",
    # Browser
    "Snapshot",
    "StatsBridge",
    "SeleniumBridge",
    "BrowserPoller",
    # Stats
    "LoadTestTimeline",
    "BrowserStatsLogger",
    "StatsCollector",
    "AggregateStats",
    # Remote
    "NetworkRestriction",
    "Instance",
    "BrowserProperties",
    "Browser",
    "BrowserSshManager",
    "NetInfo",
    # Fleet
    "BrowserFleet",
]
