"""
Browser Fleet - owns the pollers and SSH channels of every browser in a test.

Handles:
- One poller per browser, all sharing the test timeline, stats sink and
  callback pool
- Optional SSH channel per browser for recording, tcpdump and network
  restrictions
- Local network usage since the test started
- Final stats report
"""

import logging
from typing import Dict, Optional

from .bridge import SeleniumBridge, StatsBridge
from .callbacks import CallbackDispatcher
from .config import Settings, get_settings
from .metrics import MetricsServer
from .models import Browser
from .netinfo import NetInfo, read_local_net_info
from .poller import BrowserPoller
from .remote import BrowserSshManager
from .stats import BrowserStatsLogger, LoadTestTimeline, StatsCollector

logger = logging.getLogger(__name__)


class BrowserFleet:
    """
    Orchestrates the browsers of one load test.
    
    Usage:
        fleet = BrowserFleet()
        fleet.start()
        
        poller = fleet.add_browser(browser)
        fleet.start_polling(browser.properties.user_id)
        poller.wait_until_event_reaches("streamCreated", 4)
        
        report = fleet.stop()
    """
    
    def __init__(self, settings: Optional[Settings] = None, read_net_info: bool = True):
        self.settings = settings or get_settings()
        self.read_net_info = read_net_info
        self.timeline = LoadTestTimeline()
        self.collector = StatsCollector()
        self.stats_logger = BrowserStatsLogger(self.settings.stats_file, self.collector)
        self.dispatcher = CallbackDispatcher(max_workers=self.settings.callback_workers)
        
        self._browsers: Dict[str, Browser] = {}
        self._pollers: Dict[str, BrowserPoller] = {}
        self._ssh: Dict[str, BrowserSshManager] = {}
        self._initial_net_info: Optional[NetInfo] = None
        self._metrics_server: Optional[MetricsServer] = None
    
    def start(self, expose_metrics: bool = False):
        """
        Mark the start of the test.
        
        Args:
            expose_metrics: Also serve Prometheus metrics on
                ``settings.metrics_port``.
        """
        if expose_metrics and self._metrics_server is None:
            self._metrics_server = MetricsServer(self.settings.metrics_port)
            self._metrics_server.start()
        self.timeline = LoadTestTimeline()
        self.collector.start()
        for poller in self._pollers.values():
            poller.timeline = self.timeline
        if self.read_net_info:
            try:
                self._initial_net_info = read_local_net_info()
            except OSError as e:
                logger.warning(f"Network info not available: {e}")
        logger.info(f"Load test started with {len(self._browsers)} browsers")
    
    def add_browser(
        self,
        browser: Browser,
        bridge: Optional[StatsBridge] = None,
        connect_ssh: bool = False,
    ) -> BrowserPoller:
        """
        Register a browser and create its poller.
        
        Raises:
            ValueError: If the user id is already registered.
            paramiko.SSHException, OSError: If ``connect_ssh`` and the SSH
                connection fails.
        """
        user_id = browser.properties.user_id
        if user_id in self._browsers:
            raise ValueError(f"Browser {user_id} already registered")
        
        if bridge is None:
            bridge = SeleniumBridge(browser.driver)
        
        poller = BrowserPoller(
            bridge,
            timeline=self.timeline,
            stats_logger=self.stats_logger,
            dispatcher=self.dispatcher,
            poll_interval=self.settings.poll_interval_seconds,
            wait_timeout=self.settings.wait_timeout_seconds,
            collect_stats=self.settings.collect_stats,
        )
        
        if connect_ssh:
            self._ssh[user_id] = BrowserSshManager(browser, self.settings)
        
        self._browsers[user_id] = browser
        self._pollers[user_id] = poller
        logger.debug(f"Added browser {user_id}, total: {len(self._browsers)}")
        return poller
    
    def start_polling(self, user_id: str):
        browser = self._browsers[user_id]
        session_id = browser.properties.session_id
        self.timeline.mark_session_started(session_id)
        self._pollers[user_id].start(user_id, session_id)
    
    def poller(self, user_id: str) -> BrowserPoller:
        return self._pollers[user_id]
    
    def ssh(self, user_id: str) -> BrowserSshManager:
        """
        Raises:
            KeyError: If the browser was added without an SSH channel.
        """
        return self._ssh[user_id]
    
    def network_usage(self) -> Optional[NetInfo]:
        """Bytes received and sent per local interface since ``start()``."""
        if self._initial_net_info is None:
            return None
        current = read_local_net_info()
        current.decrement_init_info(self._initial_net_info)
        return current
    
    def stop(self, report_file: Optional[str] = None) -> Dict:
        """
        Stop every poller, close SSH channels and build the final report.
        
        Returns:
            Stats report as dictionary.
        """
        logger.info(f"Stopping {len(self._pollers)} pollers...")
        
        for poller in self._pollers.values():
            poller.stop()
        
        for user_id, ssh in self._ssh.items():
            try:
                ssh.close()
            except Exception as e:
                logger.warning(f"Error closing SSH channel of {user_id}: {e}")
        
        self.dispatcher.shutdown(wait=True)
        self.collector.stop()
        
        config = {"browsers": [b.properties.to_dict() for b in self._browsers.values()]}
        report = self.collector.generate_report(config)
        
        report_file = report_file or self.settings.report_file
        if report_file:
            self.collector.save_report(report_file, config)
        
        logger.info("All pollers stopped")
        return report
