import json
import os
import tempfile
import time
import unittest

from prometheus_client import REGISTRY

from rtc_loadtest.bridge import Snapshot
from rtc_loadtest.stats import (
    AggregateStats,
    BrowserStatsLogger,
    LoadTestTimeline,
    StatsCollector,
    build_stats_record,
)


def record(session_id="session-1", **peers):
    return {session_id: peers, "secondsSinceTestStarted": 1, "secondsSinceSessionStarted": 1}


class TestLoadTestTimeline(unittest.TestCase):
    
    def test_elapsed_seconds_are_integers(self):
        timeline = LoadTestTimeline(test_started=100.0)
        timeline.mark_session_started("s", 110.0)
        self.assertEqual(timeline.seconds_since_test_started(now=125.7), 25)
        self.assertEqual(timeline.seconds_since_session_started("s", now=125.7), 15)
    
    def test_unknown_session_starts_on_first_use(self):
        timeline = LoadTestTimeline()
        self.assertEqual(timeline.seconds_since_session_started("new"), 0)
    
    def test_build_stats_record_shape(self):
        timeline = LoadTestTimeline(test_started=time.time() - 3)
        snapshot = Snapshot(session_id="s", stats={"peer": {"rtt": 1}})
        rec = build_stats_record(snapshot, timeline)
        self.assertEqual(set(rec), {"s", "secondsSinceTestStarted", "secondsSinceSessionStarted"})
        self.assertEqual(rec["s"], {"peer": {"rtt": 1}})
        self.assertEqual(rec["secondsSinceTestStarted"], 3)


class TestAggregateStats(unittest.TestCase):
    
    def test_from_values(self):
        stats = AggregateStats.from_values([1.0, 2.0, 3.0, 4.0])
        self.assertEqual(stats.count, 4)
        self.assertEqual(stats.min, 1.0)
        self.assertEqual(stats.max, 4.0)
        self.assertEqual(stats.mean, 2.5)
    
    def test_empty(self):
        self.assertEqual(AggregateStats.from_values([]).count, 0)


class TestStatsCollector(unittest.TestCase):
    
    def test_report_aggregates_numeric_fields(self):
        collector = StatsCollector()
        collector.start()
        collector.add_record(record(**{"user-1-1": [{"jitter": "20", "rtt": 1, "transport": "udp"}]}))
        collector.add_record(record(**{"user-1-2": {"jitter": 30, "delay": "x"}}))
        collector.stop()
        
        report = collector.generate_report({"users": 2})
        
        self.assertEqual(report["summary"]["records"], 2)
        self.assertEqual(report["summary"]["sessions"], ["session-1"])
        self.assertEqual(report["stats"]["jitter"]["count"], 2)
        self.assertEqual(report["stats"]["jitter"]["mean"], 25.0)
        self.assertEqual(report["stats"]["rtt"]["count"], 1)
        self.assertNotIn("delay", report["stats"])
        self.assertEqual(report["config"], {"users": 2})
    
    def test_no_data(self):
        self.assertEqual(StatsCollector().generate_report()["status"], "no_data")


class TestBrowserStatsLogger(unittest.TestCase):
    
    def test_records_written_as_json_lines(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "stats.log")
            sink = BrowserStatsLogger(path)
            sink.log_browser_stats(record(**{"peer-a": {"jitter": 5}}))
            sink.log_browser_stats(record(**{"peer-a": {"jitter": 7}}))
            
            with open(path) as f:
                lines = [json.loads(line) for line in f]
        
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[1]["session-1"]["peer-a"]["jitter"], 7)
        self.assertEqual(sink.collector.generate_report()["stats"]["jitter"]["count"], 2)
    
    def test_peer_gauges_updated(self):
        sink = BrowserStatsLogger()
        sink.log_browser_stats(record(session_id="gauge-session", **{"peer-g": {"rtt": 12, "bitRate": "480"}}))
        
        labels = {"session": "gauge-session", "peer": "peer-g"}
        rtt = REGISTRY.get_sample_value("loadtest_peer_rtt", labels)
        bitrate = REGISTRY.get_sample_value("loadtest_peer_bit_rate", labels)
        self.assertEqual(rtt, 12.0)
        self.assertEqual(bitrate, 480.0)


if __name__ == '__main__':
    unittest.main()
