"""
Stats sink - records the WebRTC stats polled from every browser.

Each poll of each session produces one record:

    {
        "<sessionId>": {<peerKey>: <peer stats>, ...},
        "secondsSinceTestStarted": 42,
        "secondsSinceSessionStarted": 17
    }

Records are appended as JSON lines to the stats file, exported as Prometheus
gauges and aggregated into percentile statistics for the final report.
"""

import time
import json
import statistics
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

import structlog

from .bridge import Snapshot
from .metrics import METRICS, PEER_STAT_FIELDS

logger = structlog.get_logger()

TEST_ELAPSED_KEY = "secondsSinceTestStarted"
SESSION_ELAPSED_KEY = "secondsSinceSessionStarted"


class LoadTestTimeline:
    """
    Start instants of the test and of each session under test.
    
    A session that was never marked explicitly is considered started the
    first time its elapsed time is asked for.
    """
    
    def __init__(self, test_started: Optional[float] = None):
        self.test_started = test_started if test_started is not None else time.time()
        self._session_started: Dict[str, float] = {}
        self._lock = threading.Lock()
    
    def mark_session_started(self, session_id: str, when: Optional[float] = None):
        with self._lock:
            self._session_started[session_id] = when if when is not None else time.time()
    
    def session_started(self, session_id: str) -> float:
        with self._lock:
            return self._session_started.setdefault(session_id, time.time())
    
    def seconds_since_test_started(self, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        return int(now - self.test_started)
    
    def seconds_since_session_started(self, session_id: str, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        return int(now - self.session_started(session_id))


def build_stats_record(
    snapshot: Snapshot,
    timeline: LoadTestTimeline,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """Wrap a snapshot's stats with the elapsed-time fields."""
    now = now if now is not None else time.time()
    return {
        snapshot.session_id: snapshot.stats,
        TEST_ELAPSED_KEY: timeline.seconds_since_test_started(now),
        SESSION_ELAPSED_KEY: timeline.seconds_since_session_started(snapshot.session_id, now),
    }


def iter_peer_samples(record: Dict[str, Any]) -> Iterator[Tuple[str, str, Dict[str, Any]]]:
    """
    Yield ``(session_id, peer_key, entry)`` for every peer stats entry.
    
    A peer may report a single object or a list of objects (one per
    candidate pair).
    """
    for session_id, peers in record.items():
        if session_id in (TEST_ELAPSED_KEY, SESSION_ELAPSED_KEY) or not isinstance(peers, dict):
            continue
        for peer_key, entries in peers.items():
            if isinstance(entries, dict):
                entries = [entries]
            if not isinstance(entries, list):
                continue
            for entry in entries:
                if isinstance(entry, dict):
                    yield session_id, peer_key, entry


def _as_number(value: Any) -> Optional[float]:
    # The browser reports some fields as strings ("41")
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class AggregateStats:
    """Aggregated statistics for a metric."""
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    stddev: float = 0.0
    
    @classmethod
    def from_values(cls, values: List[float]) -> "AggregateStats":
        """Calculate statistics from a list of values."""
        if not values:
            return cls()
        
        sorted_values = sorted(values)
        n = len(values)
        
        return cls(
            count=n,
            min=sorted_values[0],
            max=sorted_values[-1],
            mean=statistics.mean(values),
            median=statistics.median(values),
            p90=sorted_values[int(n * 0.90)] if n > 1 else sorted_values[0],
            p95=sorted_values[int(n * 0.95)] if n > 1 else sorted_values[0],
            p99=sorted_values[int(n * 0.99)] if n > 1 else sorted_values[0],
            stddev=statistics.stdev(values) if n > 1 else 0.0,
        )


class StatsCollector:
    """
    Thread-safe aggregation of numeric WebRTC stats across all sessions.
    
    Usage:
        collector = StatsCollector()
        collector.add_record(record)
        report = collector.generate_report()
    """
    
    def __init__(self, fields: Tuple[str, ...] = PEER_STAT_FIELDS):
        self.fields = fields
        self._samples: Dict[str, List[float]] = {f: [] for f in fields}
        self._sessions: set = set()
        self._records = 0
        self._lock = threading.Lock()
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None
    
    def start(self):
        """Mark the start of the load test."""
        self._start_time = time.time()
    
    def stop(self):
        """Mark the end of the load test."""
        self._end_time = time.time()
    
    def add_record(self, record: Dict[str, Any]):
        """Add one logged stats record (thread-safe)."""
        with self._lock:
            self._records += 1
            for session_id, _, entry in iter_peer_samples(record):
                self._sessions.add(session_id)
                for name in self.fields:
                    value = _as_number(entry.get(name))
                    if value is not None:
                        self._samples[name].append(value)
    
    def generate_report(self, config: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Generate the stats report.
        
        Args:
            config: Optional test configuration to include in report.
        """
        with self._lock:
            samples = {name: list(values) for name, values in self._samples.items()}
            records = self._records
            sessions = sorted(self._sessions)
        
        if records == 0:
            return {
                "status": "no_data",
                "message": "No stats collected",
            }
        
        total_duration = (self._end_time or time.time()) - (self._start_time or time.time())
        
        report = {
            "summary": {
                "timestamp": datetime.now().isoformat(),
                "total_duration_seconds": total_duration,
                "records": records,
                "sessions": sessions,
            },
            "stats": {
                name: asdict(AggregateStats.from_values(values))
                for name, values in samples.items()
                if values
            },
        }
        
        if config:
            report["config"] = config
        
        return report
    
    def save_report(self, filepath: str, config: Optional[Dict] = None):
        """Save report to JSON file."""
        report = self.generate_report(config)
        
        with open(filepath, 'w') as f:
            json.dump(report, f, indent=2)
        
        logger.info("Report saved", path=filepath)


class BrowserStatsLogger:
    """
    Sink for the per-poll stats records of every browser session.
    
    Writes go through a single lock so lines from concurrent pollers never
    interleave.
    """
    
    def __init__(self, stats_file: Optional[str] = None, collector: Optional[StatsCollector] = None):
        self.stats_file = stats_file
        self.collector = collector if collector is not None else StatsCollector()
        self._lock = threading.Lock()
    
    def log_browser_stats(self, record: Dict[str, Any]):
        line = json.dumps(record, separators=(",", ":"))
        if self.stats_file:
            with self._lock:
                with open(self.stats_file, "a") as f:
                    f.write(line + "\n")
        
        for session_id, peer_key, entry in iter_peer_samples(record):
            for name, gauge in METRICS.peer_stats.items():
                value = _as_number(entry.get(name))
                if value is not None:
                    gauge.labels(session=session_id, peer=peer_key).set(value)
        
        self.collector.add_record(record)
