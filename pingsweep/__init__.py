"""
pingsweep: ping-gated TCP connect port sweep.

Hosts are checked with one ICMP echo; only hosts that answer get their ports
probed. Results come back as one open/closed record per responding address.
"""

from .ports import InvalidPort, InvalidRange, PortSet, PortSpecError, PortsStatus, format_port_ranges
from .prober import NoSupportedAddressFamily, ReachabilityProber, ScannerError
from .scanner import PortScanner, format_results

__version__ = "0.1.0"
__all__ = [
    "InvalidPort",
    "InvalidRange",
    "NoSupportedAddressFamily",
    "PortScanner",
    "PortSet",
    "PortSpecError",
    "PortsStatus",
    "ReachabilityProber",
    "ScannerError",
    "format_port_ranges",
    "format_results",
]
