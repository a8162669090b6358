"""
dialects.py - Diagnostic Output Dialects

ping, tracert/traceroute and netstat print different text on Windows
and on POSIX systems. Each Dialect collects the markers and patterns for
one of them, so the parsers only hold the control logic.

Windows output may be English or Simplified Chinese; both are covered by
the WINDOWS dialect.
"""

from __future__ import annotations

import platform
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple

from hostmon.errors import ValidationError


@dataclass(frozen=True)
class Dialect:
    name: str

    # Single-reply latency, e.g. "time=15ms" or "时间=15ms"
    latency_markers: Tuple[str, ...]

    # Summary lines; group 1 is the number
    average_pattern: Pattern[str]
    loss_pattern: Pattern[str]

    # One traceroute hop; named groups hop, host, address (optional), probes,
    # and optionally lead (timed-out probes printed before the host)
    hop_pattern: Pattern[str]

    # netstat: lines to skip, column of the local address, and the
    # separator between pid and program name in the owner column
    connection_header_lines: int
    connection_local_column: int
    connection_pid_separator: Optional[str]


WINDOWS = Dialect(
    name="windows",
    latency_markers=("time=", "time<", "时间=", "时间<"),
    average_pattern=re.compile(r"(?:Average|平均)\s*=\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE),
    loss_pattern=re.compile(r"\((\d+(?:\.\d+)?)%\s*(?:loss|丢失)\)", re.IGNORECASE),
    # "  4    12 ms    11 ms    12 ms  dns.google [8.8.8.8]"
    hop_pattern=re.compile(
        r"^\s*(?P<hop>\d+)\s+"
        r"(?P<probes>(?:(?:<?\d+(?:\.\d+)?\s*(?:ms|毫秒)|\*)\s+){1,3})"
        r"(?P<host>[^\s\[]+)(?:\s+\[(?P<address>[^\]]+)\])?\s*$"
    ),
    connection_header_lines=4,
    connection_local_column=1,
    connection_pid_separator=None,
)

POSIX = Dialect(
    name="posix",
    latency_markers=("time=",),
    average_pattern=re.compile(
        r"(?:rtt|round-trip)\s+min/avg/max/(?:mdev|stddev)\s*=\s*[\d.]+/(\d+(?:\.\d+)?)/"
    ),
    loss_pattern=re.compile(r"(\d+(?:\.\d+)?)%\s+packet\s+loss"),
    # " 1  _gateway (192.168.1.1)  0.512 ms  0.480 ms  0.463 ms"
    # " 2  * 10.0.0.1 (10.0.0.1)  5.1 ms  4.9 ms" (first probe timed out)
    hop_pattern=re.compile(
        r"^\s*(?P<hop>\d+)\s+"
        r"(?P<lead>(?:\*\s+)*)"
        r"(?P<host>[^\s(*][^\s(]*)(?:\s+\((?P<address>[^)]+)\))?"
        r"(?P<probes>(?:\s+.*)?)$"
    ),
    connection_header_lines=4,
    connection_local_column=3,
    connection_pid_separator="/",
)

DIALECTS = {d.name: d for d in (WINDOWS, POSIX)}


def dialect_for(system: Optional[str] = None) -> Dialect:
    """
    Picks the dialect for a platform name ("Windows", "Linux", "Darwin")
    or the current host when none is given.
    """
    system = system or platform.system()
    return WINDOWS if system.lower().startswith("win") else POSIX


def get_dialect(name: Optional[str]) -> Dialect:
    """Looks up a dialect by its name; None means the host platform's."""
    if name is None:
        return dialect_for()
    try:
        return DIALECTS[name.lower()]
    except KeyError:
        raise ValidationError(f"unknown dialect {name!r}, expected one of {sorted(DIALECTS)}") from None
