from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import List, NamedTuple, Optional

from .config import IPAddress

logger = logging.getLogger(__name__)


class PortOutcome(NamedTuple):
    """Result of one connect attempt, as it travels to the aggregator."""

    address: IPAddress
    port: int
    is_open: bool

# -----------------------------------------------------------------------------
# TCP connect probe using asyncio streams
# -----------------------------------------------------------------------------

async def check_port(target_ip: IPAddress, target_port: int, timeout_ms: int) -> PortOutcome:
    # Open a TCP connection within timeout_ms. Established is open, anything else is closed.
    logger.debug("Checking %s:%d... (timeout = %dms)", target_ip, target_port, timeout_ms)
    try:
        open_task = asyncio.open_connection(host=str(target_ip), port=target_port)
        _reader, writer = await asyncio.wait_for(open_task, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError:
        logger.debug("%s:%d timed out", target_ip, target_port)
        return PortOutcome(target_ip, target_port, False)
    except OSError as os_err:
        logger.error("Unexpected error connecting to %s:%d: %r", target_ip, target_port, os_err)
        return PortOutcome(target_ip, target_port, False)

    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return PortOutcome(target_ip, target_port, True)

# -----------------------------------------------------------------------------
# Per-address sweep: one task per port, every outcome funneled into the queue
# -----------------------------------------------------------------------------

async def sweep_address(target_ip: IPAddress,
                        selected_ports: List[int],
                        timeout_ms: int,
                        results: asyncio.Queue,
                        connect_limit: Optional[asyncio.Semaphore] = None) -> None:
    # Probe every port of the set concurrently, duplicates included.

    async def run_one_port_probe(port_number: int) -> None:
        if connect_limit is None:
            outcome = await check_port(target_ip, port_number, timeout_ms)
        else:
            async with connect_limit:
                outcome = await check_port(target_ip, port_number, timeout_ms)
        await results.put(outcome)

    tasks: List[asyncio.Task] = [asyncio.create_task(run_one_port_probe(p)) for p in selected_ports]
    if not tasks:
        return

    await asyncio.gather(*tasks)
