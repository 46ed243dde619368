from __future__ import annotations

import ipaddress
import os
import sys
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .ports import PortSet

if sys.platform != "win32":
    import resource  # type: ignore[attr-defined]
else:
    resource = None  # type: ignore[assignment]

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

PING_METHODS: Tuple[str, ...] = ("auto", "icmp", "command")

FD_LIMIT_SAFETY_MARGIN: int = 32

# -----------------------------------------------------------------------------
# Defaults and environment overrides
# -----------------------------------------------------------------------------

# Environment variables named PINGSWEEP_* override each entry before
# command-line parsing applies further changes.
def load_defaults(environ: Optional[Mapping[str, str]] = None) -> Dict[str, object]:
    env = os.environ if environ is None else environ
    return {
        "TIMEOUT_MS": int(env.get("PINGSWEEP_TIMEOUT_MS", "1000")),
        "PING_TIMEOUT": float(env.get("PINGSWEEP_PING_TIMEOUT", "1.0")),
        "CONCURRENCY": int(env.get("PINGSWEEP_CONCURRENCY", "1024")),  # Zero disables the limit
        "QUEUE_SIZE": int(env.get("PINGSWEEP_QUEUE_SIZE", "100")),
        "PING_METHOD": env.get("PINGSWEEP_PING_METHOD", "auto"),
    }


DEFAULTS: Dict[str, object] = load_defaults()


@dataclass
class ScanConfiguration:
    """Resolved parameters for one sweep over a list of addresses."""

    ports: PortSet
    addresses: List[IPAddress]
    timeout_ms: int = 1000
    ping_timeout: float = 1.0
    concurrency: int = 1024
    queue_size: int = 100
    ping_method: str = "auto"
    verbose: bool = False

# -----------------------------------------------------------------------------
# Resource guardrails
# -----------------------------------------------------------------------------

# Return the soft RLIMIT_NOFILE value when available.
def query_process_fd_soft_limit() -> Optional[int]:

    if resource is None:
        return None

    try:
        soft_limit, _ = resource.getrlimit(resource.RLIMIT_NOFILE)  # type: ignore[arg-type]
    except (OSError, ValueError):
        return None

    infinity = getattr(resource, "RLIM_INFINITY", None)
    if infinity is not None and soft_limit == infinity:
        return None
    if soft_limit <= 0:
        return None
    return int(soft_limit)


# Clamp connect concurrency so it respects the process file descriptor soft limit.
# Returns (effective, soft_limit) where soft_limit is None when nothing was clamped.
# Zero keeps the fan-out unbounded and is returned untouched.
def apply_fd_limit_guardrail(desired_concurrency: int) -> Tuple[int, Optional[int]]:

    if desired_concurrency <= 0:
        return 0, None
    soft_limit = query_process_fd_soft_limit()
    if soft_limit is None:
        return desired_concurrency, None

    dynamic_margin = min(max(FD_LIMIT_SAFETY_MARGIN, soft_limit // 10), 256)
    max_allowed = max(1, soft_limit - dynamic_margin)
    if desired_concurrency <= max_allowed:
        return desired_concurrency, None
    return max_allowed, soft_limit


def running_as_root() -> bool:
    try:
        return os.geteuid() == 0
    except AttributeError:
        return False


# Resolve "auto" to raw ICMP when privileged, else the system ping command.
def select_ping_method(requested_method: str) -> str:
    if requested_method not in PING_METHODS:
        raise ValueError(f"unknown ping method {requested_method!r}")
    if requested_method != "auto":
        return requested_method
    return "icmp" if running_as_root() else "command"
