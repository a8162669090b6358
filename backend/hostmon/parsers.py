"""
parsers.py - Diagnostic Output Parsers

Turns raw ping, traceroute and netstat output into structured results.
These are pure functions: text in, records out, no I/O.

Single-value extraction (parse_ping_latency) is best effort and never
raises; it falls back to "N/A" or an excerpt of the input. Structured
extraction (parse_ping_summary, parse_traceroute) raises ParseFailure
when nothing recognisable is found. parse_connections skips rows it
cannot read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from hostmon.dialects import DIALECTS, Dialect
from hostmon.errors import ParseFailure

LATENCY_FALLBACK = "N/A"
EXCERPT_LENGTH = 50

_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")
_PROBE_LATENCY = re.compile(r"<?(\d+(?:\.\d+)?)\s*(?:ms|毫秒)")
_ADDRESS = re.compile(r"^[0-9A-Za-z.:\-_%]+$")


@dataclass
class NetworkHop:
    hop_number: int
    address: str
    hostname: Optional[str] = None
    latency_ms: Optional[float] = None
    packet_loss_percent: Optional[float] = None


@dataclass
class DiagnosticResult:
    success: bool
    message: str
    latency_ms: Optional[float] = None
    packet_loss_percent: Optional[float] = None
    hops: Optional[List[NetworkHop]] = None


@dataclass
class NetworkConnectionInfo:
    local_address: str
    local_port: int
    protocol: str
    state: str = ""
    remote_address: Optional[str] = None
    remote_port: Optional[int] = None
    pid: Optional[int] = None
    process_name: Optional[str] = None


def excerpt(text: str, limit: int = EXCERPT_LENGTH) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


# ---------------------------------------------------------------------------
# ping
# ---------------------------------------------------------------------------


def parse_ping_latency(text: str, dialect: Optional[Dialect] = None) -> str:
    """
    Pulls the latency out of a single ping reply, e.g. "15.2" from
    "64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=15.2 ms".

    Without a dialect, the markers of every known dialect are tried.
    Returns "N/A" when no marker is present, and a short excerpt of the
    input when a marker is present but no number follows it.
    """
    if not text:
        return LATENCY_FALLBACK

    if dialect is not None:
        markers = dialect.latency_markers
    else:
        markers = tuple(m for d in DIALECTS.values() for m in d.latency_markers)

    # Earliest marker in the text wins
    found = [(text.find(m), m) for m in markers if m in text]
    if not found:
        return LATENCY_FALLBACK
    index, marker = min(found)

    rest = text[index + len(marker):]
    unit = rest.find("ms")
    if unit != -1:
        value = rest[:unit].strip()
        if _NUMBER.match(value):
            return value

    return excerpt(text)


def parse_ping_summary(text: str, dialect: Dialect) -> DiagnosticResult:
    """
    Reads the statistics block at the end of a ping run.

    Returns a successful result with the average latency and packet loss
    when the average is found. When every packet was lost there is no
    average line; that comes back as an unsuccessful result with 100%
    loss. Anything else raises ParseFailure.
    """
    average = dialect.average_pattern.search(text or "")
    loss = dialect.loss_pattern.search(text or "")
    loss_percent = float(loss.group(1)) if loss else None

    if average:
        latency = float(average.group(1))
        return DiagnosticResult(
            success=True,
            message=f"Ping succeeded: average {latency:g} ms",
            latency_ms=latency,
            packet_loss_percent=loss_percent,
        )

    if loss_percent is not None and loss_percent >= 100:
        return DiagnosticResult(
            success=False,
            message="Ping failed: all packets lost",
            packet_loss_percent=loss_percent,
        )

    raise ParseFailure(
        f"unrecognised {dialect.name} ping output",
        excerpt=excerpt(text or ""),
    )


# ---------------------------------------------------------------------------
# traceroute
# ---------------------------------------------------------------------------


def parse_traceroute(text: str, dialect: Dialect) -> DiagnosticResult:
    """
    Builds the hop list from tracert/traceroute output.

    Banner lines, fully timed-out hops and anything else that does not
    look like a hop are skipped. No hops at all raises ParseFailure.
    """
    hops: List[NetworkHop] = []

    for line in (text or "").splitlines():
        hop = _parse_hop(line, dialect)
        if hop is not None:
            hops.append(hop)

    if not hops:
        raise ParseFailure(
            f"no hops found in {dialect.name} traceroute output",
            excerpt=excerpt(text or ""),
        )

    return DiagnosticResult(
        success=True,
        message=f"Traceroute completed: {len(hops)} hops",
        latency_ms=hops[-1].latency_ms,
        hops=hops,
    )


def _parse_hop(line: str, dialect: Dialect) -> Optional[NetworkHop]:
    match = dialect.hop_pattern.match(line)
    if not match:
        return None

    host = match.group("host")
    address = match.group("address") or host
    if not _ADDRESS.match(address):
        return None

    hostname = host if host != address else None

    probes = (match.groupdict().get("lead") or "") + (match.group("probes") or "")
    latencies = _PROBE_LATENCY.findall(probes)
    lost = probes.count("*")
    sent = len(latencies) + lost

    return NetworkHop(
        hop_number=int(match.group("hop")),
        address=address,
        hostname=hostname,
        latency_ms=float(latencies[0]) if latencies else None,
        packet_loss_percent=(lost * 100.0 / sent) if sent else None,
    )


# ---------------------------------------------------------------------------
# netstat
# ---------------------------------------------------------------------------


def parse_connections(text: str, dialect: Dialect) -> List[NetworkConnectionInfo]:
    """
    Parses a netstat connection table.

    The first lines are the header and are skipped. Rows that cannot be
    read are skipped too, so the result may be shorter than the table.
    """
    lines = (text or "").splitlines()[dialect.connection_header_lines:]

    connections = []
    for line in lines:
        conn = _parse_connection(line, dialect)
        if conn is not None:
            connections.append(conn)
    return connections


def _parse_connection(line: str, dialect: Dialect) -> Optional[NetworkConnectionInfo]:
    parts = line.split()
    col = dialect.connection_local_column
    if len(parts) < col + 3:
        return None

    protocol = parts[0].lower()
    if not protocol.startswith(("tcp", "udp")):
        return None

    local = _split_endpoint(parts[col])
    remote = _split_endpoint(parts[col + 1])
    if local is None or remote is None:
        return None
    local_address, local_port = local
    if local_address is None or local_port is None:
        return None

    # UDP rows usually have no state column
    tail = parts[col + 2:]
    if len(tail) == 1 and protocol.startswith("udp"):
        state, owner = "", tail[0]
    else:
        state, owner = tail[0], " ".join(tail[1:])

    pid, process_name = _split_owner(owner, dialect.connection_pid_separator)

    return NetworkConnectionInfo(
        local_address=local_address,
        local_port=local_port,
        remote_address=remote[0],
        remote_port=remote[1],
        protocol=protocol,
        state=state,
        pid=pid,
        process_name=process_name,
    )


def _split_endpoint(endpoint: str) -> Optional[Tuple[Optional[str], Optional[int]]]:
    """
    Splits "host:port" on the last colon, so IPv6 works:
    "[::]:135" and ":::22" both give ("::", port). "*" means unset.
    Returns None when the endpoint is malformed.
    """
    if endpoint == "*:*":
        return None, None

    host, sep, port = endpoint.rpartition(":")
    if not sep or not host:
        return None

    host = host.strip("[]")
    if host == "*":
        host = None

    if port == "*":
        return host, None
    if not port.isdigit():
        return None
    return host, int(port)


def _split_owner(owner: str, separator: Optional[str]) -> Tuple[Optional[int], Optional[str]]:
    if not owner or owner == "-":
        return None, None

    if separator is None:
        return (int(owner), None) if owner.isdigit() else (None, None)

    pid, _, name = owner.partition(separator)
    if not pid.isdigit():
        return None, None
    return int(pid), (name or None)
