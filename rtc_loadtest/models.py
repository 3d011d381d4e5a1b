"""Browser and instance descriptions shared by the harness."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class NetworkRestriction(Enum):
    """Outbound connectivity allowed to a remote browser."""
    ALL_OPEN = "ALL_OPEN"       # No restriction
    TCP_ONLY = "TCP_ONLY"       # UDP blocked, media must go over TCP
    TURN = "TURN"               # Only relayed (TURN) traffic allowed


@dataclass
class Instance:
    """Remote machine hosting one or more browsers."""
    instance_id: str
    public_ip: str
    private_ip: str = ""
    
    def __str__(self) -> str:
        return f"{self.instance_id} ({self.public_ip})"


@dataclass
class BrowserProperties:
    """Per-browser test settings."""
    user_id: str
    session_id: str
    network_restriction: NetworkRestriction = NetworkRestriction.ALL_OPEN
    record: bool = False
    tcp_dump: bool = False
    
    def change_network_restriction(self, restriction: NetworkRestriction):
        self.network_restriction = restriction
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "network_restriction": self.network_restriction.value,
            "record": self.record,
            "tcp_dump": self.tcp_dump,
        }


@dataclass
class Browser:
    """A browser under test and the machine it runs on."""
    instance: Instance
    properties: BrowserProperties
    driver: Any = field(default=None, repr=False)
