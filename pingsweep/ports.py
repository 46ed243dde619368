from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Sequence

MAX_PORT: int = 65535

PORT_NUMBER_PATTERN = re.compile(r"\+?[0-9]+")

# -----------------------------------------------------------------------------
# Port specification errors
# -----------------------------------------------------------------------------

class PortSpecError(ValueError):
    """Raised when a port specification string cannot be parsed."""


class InvalidPort(PortSpecError):
    """A token is not a port number in [0, 65535]."""

    def __init__(self, token: str) -> None:
        super().__init__(f"invalid port {token!r}")
        self.token = token


class InvalidRange(PortSpecError):
    """A range token has its lower bound above its upper bound."""

    def __init__(self, lower: int, upper: int) -> None:
        super().__init__(
            f"invalid port range {lower}-{upper}: lower limit must not exceed upper limit"
        )
        self.lower = lower
        self.upper = upper

# -----------------------------------------------------------------------------
# Port list parsing
# -----------------------------------------------------------------------------

def parse_port_number(token: str) -> int:
    # Parse one 16-bit unsigned port number. Whitespace and signs other than '+' are rejected.
    if not PORT_NUMBER_PATTERN.fullmatch(token):
        raise InvalidPort(token)
    # Leading zeros aside, more than five digits can never fit in 16 bits.
    digits = token.lstrip("+").lstrip("0") or "0"
    if len(digits) > 5:
        raise InvalidPort(token)
    value = int(digits)
    if value > MAX_PORT:
        raise InvalidPort(token)
    return value


class PortSet(Sequence[int]):
    """Ordered, non-deduplicated list of ports to probe on every reachable host.

    Ports keep the order of the tokens they came from; only the ports of an
    expanded ``lower-upper`` range are ascending. A port given twice is probed
    twice.
    """

    def __init__(self, ports: Iterable[int] = ()) -> None:
        self._ports: List[int] = list(ports)

    @classmethod
    def parse(cls, port_spec: str) -> PortSet:
        ports: List[int] = []
        for token in port_spec.split(","):
            if "-" in token:
                left, right = token.split("-", 1)
                lower = parse_port_number(left)
                upper = parse_port_number(right)
                if lower > upper:
                    raise InvalidRange(lower, upper)
                ports.extend(range(lower, upper + 1))
            else:
                ports.append(parse_port_number(token))
        return cls(ports)

    def __getitem__(self, index):
        return self._ports[index]

    def __len__(self) -> int:
        return len(self._ports)

    def __iter__(self) -> Iterator[int]:
        return iter(self._ports)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PortSet):
            return self._ports == other._ports
        if isinstance(other, list):
            return self._ports == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"PortSet({self._ports!r})"

# -----------------------------------------------------------------------------
# Status record and compact range formatting
# -----------------------------------------------------------------------------

def format_port_ranges(sorted_ports: Sequence[int]) -> str:
    # Render sorted ports as "1,3-5,9": consecutive runs collapse into lo-hi, empty is "none".
    if not sorted_ports:
        return "none"

    tokens: List[str] = []
    run_start = sorted_ports[0]
    previous = sorted_ports[0]
    for port in sorted_ports[1:]:
        if port - previous > 1:
            tokens.append(_format_run(run_start, previous))
            run_start = port
        previous = port
    tokens.append(_format_run(run_start, previous))
    return ",".join(tokens)


def _format_run(first: int, last: int) -> str:
    if first == last:
        return str(first)
    return f"{first}-{last}"


class PortsStatus:
    """Open and closed ports observed for one responding address."""

    def __init__(self) -> None:
        self.open: List[int] = []
        self.closed: List[int] = []

    def record(self, port: int, is_open: bool) -> None:
        if is_open:
            self.open.append(port)
        else:
            self.closed.append(port)

    def sort(self) -> None:
        self.open.sort()
        self.closed.sort()

    def __str__(self) -> str:
        return f"open: {format_port_ranges(self.open)};closed: {format_port_ranges(self.closed)}"

    def __repr__(self) -> str:
        return f"PortsStatus(open={self.open!r}, closed={self.closed!r})"
