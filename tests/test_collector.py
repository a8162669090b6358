from types import SimpleNamespace

import pytest

from builders import make_sample
from hostmon import collector
from hostmon.collector import MetricsSource, ProcessInfo
from hostmon.schemas import DiskUsageEntry


@pytest.fixture
def fake_psutil(monkeypatch):
    """Points the collector at fixed psutil readings."""
    counters = {"recv": 1000, "sent": 500}

    monkeypatch.setattr(collector.psutil, "cpu_percent", lambda interval=None: 42.0)
    monkeypatch.setattr(
        collector.psutil,
        "virtual_memory",
        lambda: SimpleNamespace(percent=61.5, total=8 * 1024**3),
    )
    monkeypatch.setattr(
        collector.psutil,
        "net_io_counters",
        lambda: SimpleNamespace(
            bytes_recv=counters["recv"],
            bytes_sent=counters["sent"],
            packets_recv=10,
            packets_sent=5,
        ),
    )
    monkeypatch.setattr(collector.psutil, "getloadavg", lambda: (1.5, 1.0, 0.5))
    monkeypatch.setattr(
        collector.psutil,
        "disk_partitions",
        lambda all=False: [SimpleNamespace(mountpoint="/"), SimpleNamespace(mountpoint="/locked")],
    )

    def disk_usage(path):
        if path == "/locked":
            raise PermissionError(path)
        return SimpleNamespace(used=30, total=100, percent=30.0)

    monkeypatch.setattr(collector.psutil, "disk_usage", disk_usage)
    return counters


def test_sample_reads_psutil(fake_psutil):
    sample = MetricsSource().sample()

    assert sample.cpu_usage == 42.0
    assert sample.memory_usage == 61.5
    assert sample.memory_total == 8 * 1024**3
    assert sample.system_load == 1.5
    assert [d.mount_point for d in sample.disk_usage] == ["/"]
    assert sample.network_traffic.bytes_received == 1000
    assert sample.timestamp.tzinfo is not None


def test_network_rate_uses_counter_delta(fake_psutil, monkeypatch):
    ticks = iter([100.0, 102.0])
    monkeypatch.setattr(collector, "time", SimpleNamespace(monotonic=lambda: next(ticks)))

    source = MetricsSource()
    source.sample()
    assert source.network_rate == 0.0

    fake_psutil["recv"] += 3000
    fake_psutil["sent"] += 1000
    source.sample()

    assert source.network_rate == 2000.0


def test_evaluation_values_take_fullest_disk(fake_psutil):
    source = MetricsSource()
    sample = make_sample(
        cpu_usage=12.0,
        memory_usage=34.0,
        disks=[
            DiskUsageEntry(mount_point="/", used_bytes=1, total_bytes=10, usage_percent=10.0),
            DiskUsageEntry(mount_point="/data", used_bytes=9, total_bytes=10, usage_percent=90.0),
        ],
    )

    assert source.evaluation_values(sample) == {"cpu": 12.0, "memory": 34.0, "disk": 90.0, "network": 0.0}


def test_evaluation_values_without_disks(fake_psutil):
    values = MetricsSource().evaluation_values(make_sample(disks=[]))
    assert values["disk"] == 0.0


def test_list_processes_sorted_by_cpu(monkeypatch):
    procs = [
        SimpleNamespace(info={"pid": 1, "name": "idle", "cpu_percent": 0.5, "memory_percent": 1.234,
                              "cmdline": None, "exe": None}),
        SimpleNamespace(info={"pid": 2, "name": "busy", "cpu_percent": 80.0, "memory_percent": 10.0,
                              "cmdline": ["busy", "--fast"], "exe": "/usr/bin/busy"}),
    ]
    monkeypatch.setattr(collector.psutil, "process_iter", lambda attrs: iter(procs))

    processes = collector.list_processes()

    assert [p.name for p in processes] == ["busy", "idle"]
    assert processes[0].cmd == "busy --fast"
    assert processes[1].memory_usage == 1.23
    assert collector.list_processes(limit=1)[0].pid == 2


def test_processes_as_maps_is_deprecated():
    processes = [ProcessInfo(pid=7, name="sh", cpu_usage=1.5, memory_usage=0.1)]

    with pytest.warns(DeprecationWarning):
        maps = collector.processes_as_maps(processes)

    assert maps == [
        {"pid": "7", "name": "sh", "cpu_usage": "1.5", "memory_usage": "0.1", "cmd": "", "exe": ""}
    ]
