"""
Network information: received and sent bytes per network interface of the
machine running the tests.
"""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class NetInfoEntry:
    rx_bytes: int
    tx_bytes: int


class NetInfo:
    """Byte counters per interface, kept in interface name order."""
    
    def __init__(self, other: Optional["NetInfo"] = None):
        self._entries: Dict[str, NetInfoEntry] = {}
        if other is not None:
            for key, entry in other.entries.items():
                self.put_net_info(key, entry.rx_bytes, entry.tx_bytes)
    
    @property
    def entries(self) -> Dict[str, NetInfoEntry]:
        return {key: self._entries[key] for key in sorted(self._entries)}
    
    def put_net_info(self, key: str, rx_bytes: int, tx_bytes: int):
        self._entries[key] = NetInfoEntry(rx_bytes, tx_bytes)
    
    def decrement_init_info(self, init_net_info: "NetInfo"):
        """
        Subtract the counters captured at test start.
        
        Raises:
            KeyError: If an interface is missing from ``init_net_info``.
        """
        for key, entry in self._entries.items():
            initial = init_net_info._entries[key]
            entry.rx_bytes -= initial.rx_bytes
            entry.tx_bytes -= initial.tx_bytes
    
    def create_header(self) -> str:
        return "".join(
            f",interface_{key}_rx_bytes_sum,interface_{key}_tx_bytes_sum"
            for key in self.entries
        )
    
    def create_entries(self) -> str:
        return "".join(
            f",{entry.rx_bytes},{entry.tx_bytes}"
            for entry in self.entries.values()
        )
    
    def __repr__(self) -> str:
        return f"NetInfo({self.entries!r})"


def parse_proc_net_dev(text: str) -> NetInfo:
    """
    Build a NetInfo from the contents of ``/proc/net/dev``.
    
    After the two header lines every row is ``iface: rx_bytes ... tx_bytes ...``
    with transmitted bytes in the ninth counter column.
    """
    net_info = NetInfo()
    for line in text.splitlines()[2:]:
        if ":" not in line:
            continue
        name, counters = line.split(":", 1)
        fields = counters.split()
        if len(fields) < 9:
            continue
        net_info.put_net_info(name.strip(), int(fields[0]), int(fields[8]))
    return net_info


def read_local_net_info(path: str = "/proc/net/dev") -> NetInfo:
    with open(path) as f:
        return parse_proc_net_dev(f.read())
