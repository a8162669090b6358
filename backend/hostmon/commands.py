"""
commands.py - Diagnostic Command Runner

Runs ping, tracert/traceroute and netstat and hands their output to the
parsers. Each command is given its own wait bound (-w / -W) so it ends
on its own; the subprocess timeout is only an outer guard.

Callers are expected to run these off the event loop (FastAPI does this
for plain `def` routes).
"""

from __future__ import annotations

import logging
import subprocess
from typing import List, Optional

import psutil

from hostmon import config
from hostmon.dialects import WINDOWS, Dialect, dialect_for
from hostmon.errors import TransportFailure
from hostmon.parsers import (
    DiagnosticResult,
    NetworkConnectionInfo,
    parse_connections,
    parse_ping_summary,
    parse_traceroute,
)

logger = logging.getLogger(__name__)


def ping_command(host: str, count: int, dialect: Dialect, timeout: int) -> List[str]:
    if dialect is WINDOWS:
        return ["ping", "-n", str(count), "-w", str(timeout * 1000), host]
    return ["ping", "-c", str(count), "-W", str(timeout), host]


def traceroute_command(host: str, dialect: Dialect, timeout: int, max_hops: int) -> List[str]:
    if dialect is WINDOWS:
        return ["tracert", "-h", str(max_hops), "-w", str(timeout * 1000), host]
    return ["traceroute", "-m", str(max_hops), "-w", str(timeout), host]


def netstat_command(dialect: Dialect) -> List[str]:
    if dialect is WINDOWS:
        return ["netstat", "-ano"]
    return ["netstat", "-tunap"]


def run_command(args: List[str], timeout: float) -> str:
    """
    Runs a command and returns its standard output.

    A non-zero exit status is not an error here: ping exits 1 when
    packets are lost but still prints statistics worth parsing.
    Raises TransportFailure when the command cannot be started or
    overruns the outer timeout.
    """
    logger.debug("Running %s", " ".join(args))
    try:
        completed = subprocess.run(
            args,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise TransportFailure(f"command not found: {args[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise TransportFailure(f"{args[0]} did not finish within {timeout:g}s") from exc
    except OSError as exc:
        raise TransportFailure(f"could not run {args[0]}: {exc}") from exc

    if completed.returncode != 0:
        logger.info("%s exited with status %d", args[0], completed.returncode)
    return completed.stdout or ""


def run_ping(host: str, count: int = 4, dialect: Optional[Dialect] = None) -> DiagnosticResult:
    dialect = dialect or dialect_for()
    timeout = config.COMMAND_TIMEOUT_SECONDS
    args = ping_command(host, count, dialect, timeout)
    # Each echo may wait up to `timeout`, plus a little slack
    output = run_command(args, timeout=count * (timeout + 1) + 2)
    return parse_ping_summary(output, dialect)


def run_traceroute(host: str, dialect: Optional[Dialect] = None) -> DiagnosticResult:
    dialect = dialect or dialect_for()
    timeout = config.COMMAND_TIMEOUT_SECONDS
    max_hops = config.TRACEROUTE_MAX_HOPS
    args = traceroute_command(host, dialect, timeout, max_hops)
    # Three probes per hop, each bounded by `timeout`
    output = run_command(args, timeout=max_hops * 3 * timeout + 5)
    return parse_traceroute(output, dialect)


def list_connections(dialect: Optional[Dialect] = None) -> List[NetworkConnectionInfo]:
    """
    Lists network connections. Windows netstat only reports pids, so
    process names are filled in from psutil where possible.
    """
    dialect = dialect or dialect_for()
    output = run_command(netstat_command(dialect), timeout=config.COMMAND_TIMEOUT_SECONDS * 2)
    connections = parse_connections(_align_header(output, dialect), dialect)

    for conn in connections:
        if conn.pid is not None and conn.process_name is None:
            try:
                conn.process_name = psutil.Process(conn.pid).name()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                # Process ended or belongs to another user
                continue
    return connections


def _align_header(output: str, dialect: Dialect) -> str:
    """
    Rewrites netstat output so the column header ends exactly at line
    dialect.connection_header_lines. Linux `netstat -tunap` prints two
    header lines, Windows `netstat -ano` prints four.

    Output without a "Proto" header line is returned unchanged.
    """
    lines = output.splitlines()
    for index, line in enumerate(lines):
        if line.strip().lower().startswith("proto"):
            padding = [""] * (dialect.connection_header_lines - 1)
            return "\n".join(padding + [line] + lines[index + 1:])
    return output
