"""
Bridge between the harness and the test web application running in a
browser.

The web application accumulates events and WebRTC stats in
``window.openviduLoadTest``. One collection pass looks like:

    {
        "sessionId": "session-1",
        "events": [
            {"event": "connectionCreated", "content": "t0lt3h9nnmafi2hl"},
            ...
        ],
        "stats": {
            "user-1-1": [
                {
                    "availableReceiveBandwidth": 1587,
                    "availableSendBandwidth": 292,
                    "bitRate": 482,
                    "bytesReceived": "5338277",
                    "candidateType": "local",
                    "delay": "41",
                    "jitter": "23",
                    "localAddress": "192.168.0.102:53533",
                    "remoteAddress": "172.17.0.2:23496",
                    "rtt": "1",
                    "transport": "udp"
                },
                ...
            ],
            "user-1-2": ...
        }
    }
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

import structlog
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.remote.webelement import WebElement

from .events import Event

logger = structlog.get_logger()

# Accumulate, serialize and reset in a single script so nothing emitted by
# the page between two calls is lost or read twice.
COLLECT_AND_RESET_SCRIPT = (
    "window.collectEventsAndStats();"
    "var result = JSON.stringify(window.openviduLoadTest);"
    "window.resetEventsAndStats();"
    "return result;"
)

HAS_MEDIA_STREAM_SCRIPT = "return !!arguments[0].srcObject;"

HAS_AUDIO_TRACKS_SCRIPT = (
    "var s = arguments[0].srcObject;"
    "return !!s && s.getAudioTracks().length > 0 && s.getAudioTracks()[0].enabled;"
)

HAS_VIDEO_TRACKS_SCRIPT = (
    "var s = arguments[0].srcObject;"
    "return !!s && s.getVideoTracks().length > 0 && s.getVideoTracks()[0].enabled;"
)


@dataclass
class Snapshot:
    """Events and stats returned by one collection pass."""
    session_id: str
    events: List[Event] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)


class StatsBridge(Protocol):
    """Anything able to pull a snapshot out of a live browser."""
    
    def collect_and_reset(self) -> Optional[Snapshot]:
        """Return the accumulated snapshot and clear it, or None on failure."""
        ...


def parse_snapshot(raw: Any) -> Optional[Snapshot]:
    """
    Parse the serialized ``window.openviduLoadTest`` object.
    
    Returns None when ``raw`` is not a JSON object string with the expected
    shape. Malformed entries inside ``events`` are skipped.
    """
    if not isinstance(raw, str):
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    
    raw_events = data.get("events")
    if raw_events is None:
        raw_events = []
    elif not isinstance(raw_events, list):
        return None
    
    events = []
    for obj in raw_events:
        try:
            events.append(Event.from_json(obj))
        except ValueError:
            logger.debug("Skipping malformed browser event", raw_event=obj)
    
    stats = data.get("stats")
    return Snapshot(
        session_id=str(data.get("sessionId") or ""),
        events=events,
        stats=stats if isinstance(stats, dict) else {},
    )


class SeleniumBridge:
    """StatsBridge backed by a Selenium WebDriver session."""
    
    def __init__(self, driver: WebDriver):
        self.driver = driver
    
    def collect_and_reset(self) -> Optional[Snapshot]:
        try:
            raw = self.driver.execute_script(COLLECT_AND_RESET_SCRIPT)
        except Exception as e:
            # Page navigating away or driver server gone: retried on next poll
            logger.debug("Collecting events and stats failed", error=e.__class__.__name__, detail=str(e))
            return None
        return parse_snapshot(raw)
    
    def has_media_stream(self, video_element: WebElement) -> bool:
        return bool(self.driver.execute_script(HAS_MEDIA_STREAM_SCRIPT, video_element))
    
    def has_audio_tracks(self, video_element: WebElement) -> bool:
        return bool(self.driver.execute_script(HAS_AUDIO_TRACKS_SCRIPT, video_element))
    
    def has_video_tracks(self, video_element: WebElement) -> bool:
        return bool(self.driver.execute_script(HAS_VIDEO_TRACKS_SCRIPT, video_element))
    
    def assert_media_tracks(
        self,
        video_elements: Iterable[WebElement],
        audio_transmission: bool,
        video_transmission: bool,
    ) -> bool:
        """
        Check every video element carries (or lacks) enabled audio and video
        tracks as expected. Stops at the first mismatch.
        """
        for video in video_elements:
            if audio_transmission != self.has_audio_tracks(video):
                return False
            if video_transmission != self.has_video_tracks(video):
                return False
        return True
