from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

from .config import IPAddress
from .ports import PortSet, PortsStatus
from .prober import NoSupportedAddressFamily, ReachabilityProber
from .sweep import sweep_address

logger = logging.getLogger(__name__)

OnChecked = Callable[[IPAddress, int, bool], None]

DEFAULT_QUEUE_SIZE: int = 100

_END_OF_RESULTS = object()


class PortScanner:
    """Ping-gated TCP connect sweep over a list of addresses.

    Every address is probed once; only responding addresses have their ports
    swept. All port outcomes flow through one bounded queue into a single
    consumer that builds the per-address :class:`PortsStatus` records.

    Args:
        ports: Ports to connect to on every responding address
        addresses: Target addresses, IPv4 and IPv6 mixed
        timeout_ms: Connect timeout for each port
        on_checked: Called once per outcome with (address, port, is_open)
        concurrency: Upper bound on in-flight connects, 0 for no bound
        prober: Reachability gate; built from the address list when omitted
        ping_method: "icmp" or "command", used when no prober is given
        ping_timeout: Seconds to wait for each echo reply
        queue_size: Capacity of the result queue

    Raises:
        NoSupportedAddressFamily: the address list is empty
    """

    def __init__(self,
                 ports: PortSet,
                 addresses: Sequence[IPAddress],
                 timeout_ms: int = 1000,
                 on_checked: Optional[OnChecked] = None,
                 *,
                 concurrency: int = 0,
                 prober: Optional[ReachabilityProber] = None,
                 ping_method: str = "icmp",
                 ping_timeout: float = 1.0,
                 queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.addresses: List[IPAddress] = list(addresses)
        if not self.addresses:
            raise NoSupportedAddressFamily()
        if prober is None:
            prober = ReachabilityProber.for_addresses(self.addresses, ping_method, ping_timeout)

        self.ports = ports
        self.timeout_ms = timeout_ms
        self.on_checked = on_checked
        self.concurrency = max(0, concurrency)
        self.prober = prober
        self.queue_size = max(1, queue_size)

    async def scan_address(self,
                           target_ip: IPAddress,
                           index: int,
                           results: asyncio.Queue,
                           connect_limit: Optional[asyncio.Semaphore]) -> None:
        rtt_ms = await self.prober.probe(target_ip, index)
        if rtt_ms is None:
            logger.debug("%s isn't responding", target_ip)
            return

        logger.debug("%s is responding, pinged in %dms", target_ip, rtt_ms)
        logger.debug("Checking %d ports on %s...", len(self.ports), target_ip)
        await sweep_address(target_ip, list(self.ports), self.timeout_ms, results, connect_limit)

    async def _close_when_done(self, producers: List[asyncio.Task], results: asyncio.Queue) -> None:
        # The end marker goes in only after every producer has put its last outcome.
        finished = await asyncio.gather(*producers, return_exceptions=True)
        await results.put(_END_OF_RESULTS)
        for outcome in finished:
            if isinstance(outcome, BaseException):
                raise outcome

    async def scan(self) -> Dict[IPAddress, PortsStatus]:
        results: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        connect_limit = asyncio.Semaphore(self.concurrency) if self.concurrency > 0 else None

        producers: List[asyncio.Task] = []
        for index, target_ip in enumerate(self.addresses):
            producers.append(asyncio.create_task(
                self.scan_address(target_ip, index, results, connect_limit)
            ))
        closer = asyncio.create_task(self._close_when_done(producers, results))

        statuses: Dict[IPAddress, PortsStatus] = {}
        while True:
            item = await results.get()
            if item is _END_OF_RESULTS:
                break
            target_ip, port, is_open = item
            if self.on_checked is not None:
                self.on_checked(target_ip, port, is_open)
            statuses.setdefault(target_ip, PortsStatus()).record(port, is_open)

        # Re-raises a producer crash once everything it sent has been consumed.
        await closer

        for status in statuses.values():
            status.sort()
        return statuses

    def run(self) -> Dict[IPAddress, PortsStatus]:
        # Synchronous entry point running scan() on a fresh event loop.
        try:
            return asyncio.run(self.scan())
        finally:
            self.prober.close()


def format_results(statuses: Dict[IPAddress, PortsStatus]) -> Dict[IPAddress, str]:
    return {target_ip: str(status) for target_ip, status in statuses.items()}
