"""
collector.py - System Metrics Source

Reads CPU, memory, load, disk and network figures through psutil and
packs them into a TelemetrySample.

MetricsSource keeps the little state sampling needs (the previous
network counters, used to work out throughput). The caller owns the
instance and passes it to whatever samples with it; there is no shared
module-level handle.
"""

from __future__ import annotations

import time
import warnings
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import psutil

from hostmon.schemas import DiskUsageEntry, NetworkTrafficEntry, TelemetrySample


@dataclass
class ProcessInfo:
    pid: int
    name: str
    cpu_usage: float
    memory_usage: float
    cmd: str = ""
    exe: str = ""


class MetricsSource:
    def __init__(self):
        self._previous_net: Optional[Tuple[float, int]] = None
        self.network_rate: float = 0.0
        # The first cpu_percent(None) call always returns 0.0
        psutil.cpu_percent(interval=None)

    def sample(self) -> TelemetrySample:
        """
        Collects one sample of the current system vitals.
        """
        mem = psutil.virtual_memory()
        net = psutil.net_io_counters()

        self._update_network_rate(net.bytes_recv + net.bytes_sent)

        return TelemetrySample(
            timestamp=datetime.now(timezone.utc),
            cpu_usage=psutil.cpu_percent(interval=None),
            memory_usage=mem.percent,
            memory_total=mem.total,
            system_load=_load_average(),
            disk_usage=_disk_usage(),
            network_traffic=NetworkTrafficEntry(
                bytes_received=net.bytes_recv,
                bytes_sent=net.bytes_sent,
                packets_received=net.packets_recv,
                packets_sent=net.packets_sent,
            ),
        )

    def evaluation_values(self, sample: TelemetrySample) -> Dict[str, float]:
        """
        The four numbers the alert engine checks, taken from a sample.

        disk is the fullest volume; network is bytes per second since the
        previous sample.
        """
        disk = max((d.usage_percent for d in sample.disk_usage), default=0.0)
        return {
            "cpu": sample.cpu_usage,
            "memory": sample.memory_usage,
            "disk": disk,
            "network": self.network_rate,
        }

    def _update_network_rate(self, total_bytes: int) -> None:
        now = time.monotonic()
        if self._previous_net is not None:
            then, previous_bytes = self._previous_net
            elapsed = now - then
            if elapsed > 0:
                self.network_rate = max(total_bytes - previous_bytes, 0) / elapsed
        self._previous_net = (now, total_bytes)


def _load_average() -> float:
    try:
        return psutil.getloadavg()[0]
    except (AttributeError, OSError):
        return 0.0


def _disk_usage() -> List[DiskUsageEntry]:
    disks = []
    for part in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(part.mountpoint)
        except (PermissionError, OSError):
            # Skip partitions we can't access
            continue
        disks.append(
            DiskUsageEntry(
                mount_point=part.mountpoint,
                used_bytes=usage.used,
                total_bytes=usage.total,
                usage_percent=usage.percent,
            )
        )
    return disks


def list_processes(limit: Optional[int] = None) -> List[ProcessInfo]:
    """
    Gets running processes, busiest CPU first.
    """
    processes = []
    for proc in psutil.process_iter(["pid", "name", "cpu_percent", "memory_percent", "cmdline", "exe"]):
        try:
            info = proc.info
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        processes.append(
            ProcessInfo(
                pid=info["pid"],
                name=info["name"] or "",
                cpu_usage=info["cpu_percent"] or 0.0,
                memory_usage=round(info["memory_percent"] or 0.0, 2),
                cmd=" ".join(info["cmdline"] or []),
                exe=info["exe"] or "",
            )
        )

    processes.sort(key=lambda p: p.cpu_usage, reverse=True)
    return processes[:limit] if limit else processes


def processes_as_maps(processes: Optional[List[ProcessInfo]] = None) -> List[Dict[str, str]]:
    """
    Deprecated: string-to-string maps for clients that predate ProcessInfo.
    Use list_processes() instead.
    """
    warnings.warn(
        "processes_as_maps() is deprecated, use list_processes()",
        DeprecationWarning,
        stacklevel=2,
    )
    if processes is None:
        processes = list_processes()
    return [{key: str(value) for key, value in asdict(p).items()} for p in processes]
