from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import platform
import re
import shutil
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Set, Union

import scapy.all as scapy

from .config import IPAddress

logger = logging.getLogger(__name__)

# Payload size of every echo request, matching the classic ping default.
ECHO_PAYLOAD_SIZE: int = 56

IDENTIFIER_SPACE: int = 1 << 16

# Extra wall-clock time granted to the ping command on top of its own wait.
COMMAND_GRACE_SECONDS: float = 0.5


class ScannerError(Exception):
    """Base class for failures that stop a sweep before it starts."""


class NoSupportedAddressFamily(ScannerError):
    """Raised when the target list yields neither an IPv4 nor an IPv6 sender."""

    def __init__(self) -> None:
        super().__init__("tried to create port scanner with no supported IP versions")

# -----------------------------------------------------------------------------
# Echo identifier allocation
# -----------------------------------------------------------------------------

class IdentifierAllocator:
    """Hands out 16-bit echo identifiers that are unique among in-flight probes.

    A probe asks for the identifier derived from its address index and gets the
    next free value when that one is taken. When every identifier is in flight
    the caller waits until one is released.
    """

    def __init__(self) -> None:
        self._in_flight: Set[int] = set()
        self._vacancy: Optional[asyncio.Event] = None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def acquire(self, preferred: int) -> int:
        while len(self._in_flight) >= IDENTIFIER_SPACE:
            if self._vacancy is None:
                self._vacancy = asyncio.Event()
            await self._vacancy.wait()

        identifier = preferred % IDENTIFIER_SPACE
        while identifier in self._in_flight:
            identifier = (identifier + 1) % IDENTIFIER_SPACE
        self._in_flight.add(identifier)
        return identifier

    def release(self, identifier: int) -> None:
        self._in_flight.discard(identifier)
        if self._vacancy is not None:
            self._vacancy.set()
            self._vacancy = None

# -----------------------------------------------------------------------------
# Raw ICMP echo using Scapy (requires root)
# -----------------------------------------------------------------------------

class ScapyEchoSender:
    """Sends ICMP or ICMPv6 echo requests for one address family.

    Scapy's ``sr1`` blocks, so every request runs in this sender's own thread
    pool. One instance is shared by all probes of its family.
    """

    def __init__(self, family: int, timeout_seconds: float, max_workers: int = 64) -> None:
        if family not in (4, 6):
            raise ValueError(f"unsupported IP version {family}")
        self.family = family
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix=f"icmpv{family}",
        )

    def build_echo_request(self, address: IPAddress, identifier: int, sequence: int):
        payload = bytes(ECHO_PAYLOAD_SIZE)
        if self.family == 4:
            return scapy.IP(dst=str(address)) / scapy.ICMP(type=8, id=identifier, seq=sequence) / scapy.Raw(load=payload)
        return scapy.IPv6(dst=str(address)) / scapy.ICMPv6EchoRequest(id=identifier, seq=sequence, data=payload)

    def is_echo_reply(self, response) -> bool:
        # Unreachable and time-exceeded errors also match the request in sr1.
        if self.family == 4:
            return bool(response.haslayer(scapy.ICMP) and response[scapy.ICMP].type == 0)
        return bool(response.haslayer(scapy.ICMPv6EchoReply))

    def send_and_wait(self, address: IPAddress, identifier: int, sequence: int) -> Optional[float]:
        # Send one echo request and return the round-trip time in ms, or None without a reply.
        probe_pkt = self.build_echo_request(address, identifier, sequence)
        start = time.perf_counter()
        response = scapy.sr1(probe_pkt, timeout=self.timeout_seconds, verbose=0)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if response is None or not self.is_echo_reply(response):
            return None
        return elapsed_ms

    async def echo(self, address: IPAddress, identifier: int, sequence: int = 0) -> Optional[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor,
            self.send_and_wait,
            address,
            identifier,
            sequence,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

# -----------------------------------------------------------------------------
# System ping command (no privileges needed)
# -----------------------------------------------------------------------------

LATENCY_PATTERN = re.compile(r"time[=<]\s*([0-9]+(?:\.[0-9]+)?)\s*([a-z]+)")

SUCCESS_MARKERS = (
    "ttl=",
    "time=",
    "time<",
    "reply from",
    "bytes from",
)


def determine_ping_command(family: int, timeout_seconds: float) -> Optional[List[str]]:
    # Build a one-shot ping command line for the platform, or None when ping is missing.
    system_name = platform.system().lower()
    if system_name == "darwin" and family == 6:
        ping6_path = shutil.which("ping6")
        if not ping6_path:
            return None
        return [ping6_path, "-n", "-c", "1", "-s", str(ECHO_PAYLOAD_SIZE)]

    ping_path = shutil.which("ping")
    if not ping_path:
        return None
    timeout_ms = max(1, int(timeout_seconds * 1000))
    if system_name == "windows":
        return [ping_path, f"-{family}", "-n", "1", "-w", str(timeout_ms), "-l", str(ECHO_PAYLOAD_SIZE)]
    if system_name == "darwin":
        return [ping_path, "-n", "-c", "1", "-W", str(timeout_ms), "-s", str(ECHO_PAYLOAD_SIZE)]
    wait_seconds = max(1, math.ceil(timeout_seconds))
    return [ping_path, f"-{family}", "-n", "-c", "1", "-W", str(wait_seconds), "-s", str(ECHO_PAYLOAD_SIZE)]


def parse_latency_from_ping(output_text: str) -> Optional[float]:

    match = LATENCY_PATTERN.search(output_text.lower())
    if not match:
        return None
    value = float(match.group(1))
    unit = match.group(2)
    if unit == "ms":
        return value
    if unit == "s":
        return value * 1000.0
    if unit == "us":
        return value / 1000.0
    return value


def interpret_ping_output(return_code: Optional[int], output_text: str) -> Optional[float]:
    # Round-trip time in ms for a successful ping run, None otherwise.
    if return_code != 0:
        return None
    output_text_lower = output_text.lower()
    if "destination host unreachable" in output_text_lower:
        return None
    if "100% packet loss" in output_text_lower:
        return None
    if not any(marker in output_text_lower for marker in SUCCESS_MARKERS):
        return None
    latency_ms = parse_latency_from_ping(output_text_lower)
    if latency_ms is None:
        return 0.0
    return latency_ms


class CommandEchoSender:
    """Echo sender backed by one run of the system ``ping`` command per probe.

    The command picks its own identifier and sequence, so both arguments of
    ``echo`` are only kept for interface parity with ``ScapyEchoSender``.
    """

    def __init__(self, family: int, timeout_seconds: float) -> None:
        if family not in (4, 6):
            raise ValueError(f"unsupported IP version {family}")
        self.family = family
        self.timeout_seconds = timeout_seconds
        self.command = determine_ping_command(family, timeout_seconds)
        if self.command is None:
            logger.warning("Unable to locate the system ping command for IPv%d", family)

    async def echo(self, address: IPAddress, identifier: int, sequence: int = 0) -> Optional[float]:
        if self.command is None:
            return None

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                str(address),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError:
            return None

        try:
            stdout_data, stderr_data = await asyncio.wait_for(
                process.communicate(), self.timeout_seconds + COMMAND_GRACE_SECONDS
            )
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            return None

        output_blob = (stdout_data or b"") + (stderr_data or b"")
        return interpret_ping_output(process.returncode, output_blob.decode("utf-8", errors="ignore"))

    def close(self) -> None:
        pass


EchoSender = Union[ScapyEchoSender, CommandEchoSender]

# -----------------------------------------------------------------------------
# Reachability gate
# -----------------------------------------------------------------------------

class ReachabilityProber:
    """Answers "is this host up, and how fast" with one echo per address."""

    def __init__(self,
                 sender_v4: Optional[EchoSender] = None,
                 sender_v6: Optional[EchoSender] = None) -> None:
        if sender_v4 is None and sender_v6 is None:
            raise NoSupportedAddressFamily()
        self._senders: Dict[int, EchoSender] = {}
        if sender_v4 is not None:
            self._senders[4] = sender_v4
        if sender_v6 is not None:
            self._senders[6] = sender_v6
        self.identifiers = IdentifierAllocator()

    @classmethod
    def for_addresses(cls,
                      addresses: Sequence[IPAddress],
                      method: str = "icmp",
                      timeout_seconds: float = 1.0) -> ReachabilityProber:
        # Provision one sender per address family present in the target list.
        has_v4 = any(address.version == 4 for address in addresses)
        has_v6 = any(address.version == 6 for address in addresses)
        if not (has_v4 or has_v6):
            raise NoSupportedAddressFamily()

        if method == "icmp":
            factory = ScapyEchoSender
        elif method == "command":
            factory = CommandEchoSender
        else:
            raise ValueError(f"unknown ping method {method!r}")

        sender_v4 = factory(4, timeout_seconds) if has_v4 else None
        sender_v6 = factory(6, timeout_seconds) if has_v6 else None
        return cls(sender_v4, sender_v6)

    @property
    def families(self) -> List[int]:
        return sorted(self._senders)

    def sender_for(self, address: IPAddress) -> Optional[EchoSender]:
        return self._senders.get(address.version)

    async def probe(self, address: IPAddress, index: int) -> Optional[float]:
        # Round-trip time in ms when the host answers, None on any failure.
        sender = self.sender_for(address)
        if sender is None:
            logger.debug("No IPv%d sender available for %s", address.version, address)
            return None

        identifier = await self.identifiers.acquire(index)
        try:
            logger.debug("Pinging %s (id=%d)...", address, identifier)
            return await sender.echo(address, identifier, 0)
        except Exception as exc:
            logger.debug("Ping to %s failed: %s: %s", address, type(exc).__name__, exc)
            return None
        finally:
            self.identifiers.release(identifier)

    def close(self) -> None:
        for sender in self._senders.values():
            sender.close()
