from __future__ import annotations

import csv
import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, TextIO

from .config import IPAddress
from .ports import PortsStatus

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Time and formatting helpers
# -----------------------------------------------------------------------------

def utc_now_str() -> str:
    # Return current time in UTC formatted for the report.
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def ts_utc_compact() -> str:
    # Return a compact timestamp for filenames.
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def resolve_auto_filename(requested: Optional[str], prefix: str, extension: str) -> Optional[str]:
    # "AUTO" becomes a timestamped name; anything else passes through.
    if requested == "AUTO":
        return f"{prefix}_{ts_utc_compact()}.{extension}"
    return requested


def sorted_addresses(results: Dict[IPAddress, PortsStatus]) -> List[IPAddress]:
    # IPv4 first, then IPv6, each in numeric order.
    return sorted(results, key=lambda address: (address.version, int(address)))

# -----------------------------------------------------------------------------
# Terminal report
# -----------------------------------------------------------------------------

def print_report(results: Dict[IPAddress, PortsStatus],
                 targets_scanned: int,
                 out: Optional[TextIO] = None) -> None:
    # One line per responding address, then a summary line.
    lines: List[str] = []
    for address in sorted_addresses(results):
        lines.append(f"{address}: {results[address]}")

    open_found = sum(len(status.open) for status in results.values())
    silent = targets_scanned - len(results)
    lines.append("")
    lines.append(
        f"SCAN end={utc_now_str()} responding={len(results)} "
        f"silent={silent} open_found={open_found}"
    )
    print("\n".join(lines), file=out)

# -----------------------------------------------------------------------------
# CSV and JSON writers
# -----------------------------------------------------------------------------

def build_result_rows(results: Dict[IPAddress, PortsStatus]) -> List[Dict[str, object]]:
    rows: List[Dict[str, object]] = []
    for address in sorted_addresses(results):
        status = results[address]
        for port in status.open:
            rows.append({"host": str(address), "port": port, "status": "open"})
        for port in status.closed:
            rows.append({"host": str(address), "port": port, "status": "closed"})
    return rows


def write_results_to_csv(csv_path: str, results: Dict[IPAddress, PortsStatus]) -> bool:
    # Write one row per probed port with a fixed header. Failures are reported, not raised.
    try:
        with open(csv_path, mode="w", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(["host", "port", "status"])
            for row in build_result_rows(results):
                writer.writerow([row["host"], row["port"], row["status"]])
    except OSError as exc:
        logger.error("Failed to write CSV %s: %s", csv_path, exc)
        return False
    print(f"csv -> {csv_path}")
    return True


def write_results_to_json(json_path: str, results: Dict[IPAddress, PortsStatus]) -> bool:
    # Write the per-address status as pretty printed JSON. Failures are reported, not raised.
    document: Dict[str, Dict[str, object]] = {}
    for address in sorted_addresses(results):
        status = results[address]
        document[str(address)] = {
            "open": list(status.open),
            "closed": list(status.closed),
            "summary": str(status),
        }
    try:
        with open(json_path, mode="w") as fh:
            json.dump(document, fh, indent=2)
    except OSError as exc:
        logger.error("Failed to write JSON %s: %s", json_path, exc)
        return False
    print(f"json -> {json_path}")
    return True
