"""
Prometheus metrics for the browser load test harness.

Design Principles:
1. Pollers and callback workers only touch in-memory collectors
2. Separate HTTP server for the /metrics endpoint
3. Per-peer WebRTC gauges labelled by session and peer key

Usage:
    from rtc_loadtest.metrics import METRICS, MetricsServer
    
    MetricsServer(port=8080).start()
    
    with METRICS.poll_duration.time():
        snapshot = bridge.collect_and_reset()
    
    METRICS.events_received.labels(event="streamCreated").inc()
"""

import logging
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    start_http_server,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Histogram Buckets (seconds)
# =============================================================================

# One collect-and-reset round trip through the browser driver
POLL_DURATION_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

# Remote command execution over SSH
REMOTE_COMMAND_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

# WebRTC fields exported as gauges, keyed by their name in the browser stats
PEER_STAT_FIELDS = (
    "jitter",
    "delay",
    "rtt",
    "bitRate",
    "bytesReceived",
    "availableSendBandwidth",
    "availableReceiveBandwidth",
)


# =============================================================================
# Metrics Definitions
# =============================================================================

class LoadTestMetrics:
    """Container for all harness metrics."""
    
    def __init__(self):
        # -------------------------------------------------------------------------
        # Polling
        # -------------------------------------------------------------------------
        
        self.poll_duration = Histogram(
            'loadtest_poll_duration_seconds',
            'Time spent in one collect-and-reset call against a browser',
            buckets=POLL_DURATION_BUCKETS,
        )
        
        self.collection_failures = Counter(
            'loadtest_collection_failures_total',
            'Polls where the browser returned no usable snapshot',
        )
        
        self.events_received = Counter(
            'loadtest_events_received_total',
            'Application events pulled from browsers',
            ['event'],
        )
        
        self.active_pollers = Gauge(
            'loadtest_active_pollers',
            'Number of browser sessions currently being polled',
        )
        
        # -------------------------------------------------------------------------
        # Callbacks
        # -------------------------------------------------------------------------
        
        self.callbacks_dispatched = Counter(
            'loadtest_callbacks_dispatched_total',
            'Event callbacks submitted to the worker pool',
            ['event'],
        )
        
        self.callback_errors = Counter(
            'loadtest_callback_errors_total',
            'Event callbacks that raised',
            ['event', 'error_type'],
        )
        
        # -------------------------------------------------------------------------
        # WebRTC stats
        # -------------------------------------------------------------------------
        
        self.peer_stats = {
            field: Gauge(
                f'loadtest_peer_{_snake(field)}',
                f'Last reported WebRTC {field} per peer connection',
                ['session', 'peer'],
            )
            for field in PEER_STAT_FIELDS
        }
        
        # -------------------------------------------------------------------------
        # Remote control
        # -------------------------------------------------------------------------
        
        self.remote_commands = Counter(
            'loadtest_remote_commands_total',
            'Commands sent to browser instances over SSH',
            ['operation', 'status'],  # success, error
        )
        
        self.remote_command_latency = Histogram(
            'loadtest_remote_command_seconds',
            'Remote command execution latency',
            ['operation'],
            buckets=REMOTE_COMMAND_BUCKETS,
        )


def _snake(name: str) -> str:
    return "".join("_" + c.lower() if c.isupper() else c for c in name)


# =============================================================================
# Metrics Server
# =============================================================================

class MetricsServer:
    """
    Manages the Prometheus metrics HTTP server.
    
    Runs in a background thread started by prometheus_client.
    """
    
    def __init__(self, port: int = 8080):
        self.port = port
        self._started = False
    
    def start(self):
        """Start the metrics HTTP server (non-blocking)."""
        if self._started:
            logger.warning("Metrics server already started")
            return
        
        try:
            start_http_server(self.port)
            self._started = True
            logger.info(f"Metrics server started on port {self.port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise


# =============================================================================
# Global Instances
# =============================================================================

# Single instance of metrics - import this in other modules
METRICS = LoadTestMetrics()
