# --------------
# Ping-gated TCP connect sweep.
#
# Every target address gets one ICMP echo; only addresses that answer have
# their ports probed with a full TCP connect.
#
# -------------- EXAMPLES --------------
# Scan a few ports and a range on two hosts (raw ICMP needs root, otherwise
# the system ping command is used):
#   sudo pingsweep 22,80,443,8000-8100 192.168.1.10 192.168.1.11
#
# IPv6 and IPv4 mixed, verbose progress, 200ms connect timeout, JSON output:
#   pingsweep 1-1024 10.0.0.5 fe80::1 -v -t 200 --json
#
# Limit in-flight connects and force the ping command backend:
#   pingsweep 1-65535 10.0.0.5 -c 256 --ping-method command --csv sweep.csv
# -----------------------------------------------------------------------------

from __future__ import annotations

import argparse
import ipaddress
import logging
from typing import List, Optional

from .config import DEFAULTS, PING_METHODS, IPAddress, ScanConfiguration, apply_fd_limit_guardrail, running_as_root, select_ping_method
from .logger import setup_logging
from .ports import PortSet, PortSpecError
from .prober import ScannerError
from .report import print_report, resolve_auto_filename, utc_now_str, write_results_to_csv, write_results_to_json
from .scanner import PortScanner

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Argument types
# -----------------------------------------------------------------------------

def port_set_argument(value: str) -> PortSet:
    try:
        return PortSet.parse(value)
    except PortSpecError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def ip_address_argument(value: str) -> IPAddress:
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid IP address {value!r}")

# -----------------------------------------------------------------------------
# CLI builder
# -----------------------------------------------------------------------------

def build_cli_parser() -> argparse.ArgumentParser:
    # Build and return the CLI argument parser with descriptive help.
    parser = argparse.ArgumentParser(
        prog="pingsweep",
        description="Program to quickly scan open ports on hosts that answer a ping"
    )

    parser.add_argument(
        "ports",
        type=port_set_argument,
        help=(
            'Comma-separated list of ports or port ranges, e.g. "443,3000-5000". '
            "Ranges are inclusive: 23-45 scans ports 23, ..., 45."
        )
    )

    parser.add_argument(
        "addrs",
        nargs="+",
        type=ip_address_argument,
        metavar="ADDR",
        help="IP addresses to scan. Can be either IPv4 or IPv6."
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Emit verbose logs about the process."
    )

    parser.add_argument(
        "-t", "--timeout",
        type=int,
        default=int(DEFAULTS["TIMEOUT_MS"]),
        help="Timeout (ms) when trying to connect to a port to check if it's open."
    )

    parser.add_argument(
        "--ping-timeout",
        type=float,
        default=float(DEFAULTS["PING_TIMEOUT"]),
        help="Seconds to wait for the echo reply of each host."
    )

    parser.add_argument(
        "-c", "--concurrency",
        type=int,
        default=int(DEFAULTS["CONCURRENCY"]),
        help="Maximum connects in flight across all hosts (0 = unlimited)."
    )

    parser.add_argument(
        "--queue-size",
        type=int,
        default=int(DEFAULTS["QUEUE_SIZE"]),
        help="Capacity of the result queue between probes and the aggregator."
    )

    parser.add_argument(
        "--ping-method",
        choices=list(PING_METHODS),
        default=str(DEFAULTS["PING_METHOD"]),
        help="icmp = raw echo via Scapy (root), command = system ping, auto = icmp when root."
    )

    parser.add_argument(
        "--csv",
        nargs="?",
        const="AUTO",
        help="Write results to CSV. If no filename is given, an auto timestamped one is used."
    )

    parser.add_argument(
        "--json",
        nargs="?",
        const="AUTO",
        help="Write results to JSON. If no filename is given, an auto timestamped one is used."
    )

    return parser


def configuration_from_arguments(parsed_arguments: argparse.Namespace) -> ScanConfiguration:
    return ScanConfiguration(
        ports=parsed_arguments.ports,
        addresses=list(parsed_arguments.addrs),
        timeout_ms=parsed_arguments.timeout,
        ping_timeout=parsed_arguments.ping_timeout,
        concurrency=parsed_arguments.concurrency,
        queue_size=parsed_arguments.queue_size,
        ping_method=parsed_arguments.ping_method,
        verbose=parsed_arguments.verbose,
    )

# -----------------------------------------------------------------------------
# Live progress
# -----------------------------------------------------------------------------

def report_checked_port(target_ip: IPAddress, port: int, is_open: bool) -> None:
    if is_open:
        logger.info("Port %d on %s is open!", port, target_ip)
    else:
        logger.debug("Port %d on %s is closed", port, target_ip)

# -----------------------------------------------------------------------------
# Main entry point
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    cli_parser = build_cli_parser()
    args = cli_parser.parse_args(argv)
    setup_logging(args.verbose)
    configuration = configuration_from_arguments(args)

    try:
        ping_method = select_ping_method(configuration.ping_method)
    except ValueError as exc:
        logger.error("%s (choose from %s)", exc, ", ".join(PING_METHODS))
        return 2
    if ping_method == "icmp" and not running_as_root():
        print("Root privileges required for --ping-method icmp. Rerun with sudo or use --ping-method command.")
        return 2

    concurrency, soft_limit = apply_fd_limit_guardrail(configuration.concurrency)
    if soft_limit is not None:
        logger.warning(
            "Adjusted concurrency to %d to stay below the open file limit (%d).", concurrency, soft_limit
        )

    try:
        scanner = PortScanner(
            configuration.ports,
            configuration.addresses,
            configuration.timeout_ms,
            report_checked_port,
            concurrency=concurrency,
            ping_method=ping_method,
            ping_timeout=configuration.ping_timeout,
            queue_size=configuration.queue_size,
        )
    except ScannerError as exc:
        logger.error("Failed to create port scanner: %s", exc)
        return 1

    print("*** PINGSWEEP ***")
    print("")
    print(
        f"SCAN start={utc_now_str()} "
        f"ping={ping_method} "
        f"targets={len(configuration.addresses)} "
        f"ports={len(configuration.ports)} "
        f"concurrency={concurrency or 'unlimited'} "
        f"timeout={configuration.timeout_ms}ms"
    )
    print("")

    try:
        results = scanner.run()
    except KeyboardInterrupt:
        print("Interrupted.")
        return 130

    print_report(results, len(configuration.addresses))

    csv_path = resolve_auto_filename(args.csv, "scan_csv", "csv")
    if csv_path:
        write_results_to_csv(csv_path, results)
    json_path = resolve_auto_filename(args.json, "scan_json", "json")
    if json_path:
        write_results_to_json(json_path, results)
    return 0
