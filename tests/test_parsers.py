import pytest

from hostmon.dialects import POSIX, WINDOWS, dialect_for, get_dialect
from hostmon.errors import ParseFailure, ValidationError
from hostmon.parsers import (
    LATENCY_FALLBACK,
    NetworkConnectionInfo,
    parse_connections,
    parse_ping_latency,
    parse_ping_summary,
    parse_traceroute,
)

# ---------------------------------------------------------------------------
# Fixtures: literal command output per dialect
# ---------------------------------------------------------------------------

POSIX_PING = """\
PING 8.8.8.8 (8.8.8.8) 56(84) bytes of data.
64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=15.2 ms
64 bytes from 8.8.8.8: icmp_seq=2 ttl=117 time=14.8 ms

--- 8.8.8.8 ping statistics ---
4 packets transmitted, 3 received, 25% packet loss, time 3004ms
rtt min/avg/max/mdev = 14.812/15.034/15.231/0.171 ms
"""

MACOS_PING = """\
--- 1.1.1.1 ping statistics ---
3 packets transmitted, 3 packets received, 0.0% packet loss
round-trip min/avg/max/stddev = 9.101/10.250/11.002/0.801 ms
"""

POSIX_PING_ALL_LOST = """\
--- 10.255.255.1 ping statistics ---
4 packets transmitted, 0 received, 100% packet loss, time 3062ms
"""

WINDOWS_PING_EN = """\
Pinging 8.8.8.8 with 32 bytes of data:
Reply from 8.8.8.8: bytes=32 time=15ms TTL=117
Reply from 8.8.8.8: bytes=32 time=16ms TTL=117

Ping statistics for 8.8.8.8:
    Packets: Sent = 4, Received = 4, Lost = 0 (0% loss),
Approximate round trip times in milli-seconds:
    Minimum = 14ms, Maximum = 16ms, Average = 15ms
"""

WINDOWS_PING_ZH = """\
正在 Ping 8.8.8.8 具有 32 字节的数据:
来自 8.8.8.8 的回复: 字节=32 时间=15ms TTL=117

8.8.8.8 的 Ping 统计信息:
    数据包: 已发送 = 4，已接收 = 3，丢失 = 1 (25% 丢失)，
往返行程的估计时间(以毫秒为单位):
    最短 = 14ms，最长 = 18ms，平均 = 16ms
"""

POSIX_TRACEROUTE = """\
traceroute to 8.8.8.8 (8.8.8.8), 30 hops max, 60 byte packets
 1  _gateway (192.168.1.1)  0.512 ms  0.480 ms  0.463 ms
 2  10.0.0.1 (10.0.0.1)  5.102 ms *  4.900 ms
 3  * 10.0.0.2 (10.0.0.2)  7.100 ms  6.900 ms
 4  * * *
 5  dns.google (8.8.8.8)  12.345 ms  12.001 ms  11.987 ms
"""

WINDOWS_TRACEROUTE = """\

Tracing route to dns.google [8.8.8.8]
over a maximum of 30 hops:

  1    <1 ms    <1 ms    <1 ms  192.168.1.1
  2     5 ms     *        4 ms  10.0.0.1
  3     *        *        *     Request timed out.
  4    12 ms    11 ms    12 ms  dns.google [8.8.8.8]

Trace complete.
"""

# netstat -tunap output with its header aligned to four lines, as
# list_connections passes it on
POSIX_NETSTAT = """\


Active Internet connections (servers and established)
Proto Recv-Q Send-Q Local Address           Foreign Address         State       PID/Program name
tcp        0      0 0.0.0.0:22              0.0.0.0:*               LISTEN      -
tcp        0      0 127.0.0.1:5432          0.0.0.0:*               LISTEN      812/postgres
tcp 0 0 127.0.0.1:8080 0.0.0.0:* LISTEN 1234/myproc
tcp        0      0 192.168.1.5:51234       140.82.112.4:443        ESTABLISHED 4321/Web Content
tcp6       0      0 :::22                   :::*                    LISTEN      -
udp        0      0 0.0.0.0:68              0.0.0.0:*                           990/dhclient
garbage line
"""

WINDOWS_NETSTAT = """\

Active Connections

  Proto  Local Address          Foreign Address        State           PID
  TCP    0.0.0.0:135            0.0.0.0:0              LISTENING       1044
  TCP    192.168.1.5:50123      52.97.1.2:443          ESTABLISHED     7788
  TCP    [::]:445               [::]:0                 LISTENING       4
  UDP    0.0.0.0:5353           *:*                                    2212
  TCP    not-an-endpoint        0.0.0.0:0              LISTENING       1
"""


# ---------------------------------------------------------------------------
# Single ping latency
# ---------------------------------------------------------------------------


def test_latency_from_posix_reply():
    assert parse_ping_latency("64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=15.2 ms") == "15.2"


def test_latency_from_chinese_windows_reply():
    assert parse_ping_latency("Ping 192.168.1.1 成功: 时间=15ms") == "15"


def test_latency_from_sub_millisecond_windows_reply():
    assert parse_ping_latency("Reply from 192.168.1.1: bytes=32 time<1ms TTL=64", WINDOWS) == "1"


def test_latency_without_marker_falls_back():
    assert parse_ping_latency("Request timed out.") == LATENCY_FALLBACK
    assert parse_ping_latency("") == LATENCY_FALLBACK


def test_latency_with_marker_but_no_number_returns_excerpt():
    text = "time=unknown " + "x" * 100
    result = parse_ping_latency(text)
    assert result.startswith("time=unknown")
    assert result.endswith("...")
    assert len(result) < len(text)


def test_latency_respects_dialect_markers():
    # POSIX ping never prints the Chinese marker
    assert parse_ping_latency("时间=15ms", POSIX) == LATENCY_FALLBACK


# ---------------------------------------------------------------------------
# Ping summary
# ---------------------------------------------------------------------------


def test_posix_ping_summary():
    result = parse_ping_summary(POSIX_PING, POSIX)
    assert result.success is True
    assert result.latency_ms == pytest.approx(15.034)
    assert result.packet_loss_percent == 25.0


def test_macos_ping_summary():
    result = parse_ping_summary(MACOS_PING, POSIX)
    assert result.latency_ms == pytest.approx(10.25)
    assert result.packet_loss_percent == 0.0


def test_windows_english_ping_summary():
    result = parse_ping_summary(WINDOWS_PING_EN, WINDOWS)
    assert result.success is True
    assert result.latency_ms == 15.0
    assert result.packet_loss_percent == 0.0


def test_windows_chinese_ping_summary():
    result = parse_ping_summary(WINDOWS_PING_ZH, WINDOWS)
    assert result.latency_ms == 16.0
    assert result.packet_loss_percent == 25.0


def test_ping_summary_all_packets_lost():
    result = parse_ping_summary(POSIX_PING_ALL_LOST, POSIX)
    assert result.success is False
    assert result.latency_ms is None
    assert result.packet_loss_percent == 100.0


def test_ping_summary_unrecognised_output_fails_with_excerpt():
    text = "ping: unknown host nowhere.invalid " * 5
    with pytest.raises(ParseFailure) as excinfo:
        parse_ping_summary(text, POSIX)
    assert excinfo.value.excerpt.startswith("ping: unknown host")
    assert len(excinfo.value.excerpt) <= 53


def test_ping_summary_uses_dialect_patterns():
    with pytest.raises(ParseFailure):
        parse_ping_summary(WINDOWS_PING_EN, POSIX)


# ---------------------------------------------------------------------------
# Traceroute
# ---------------------------------------------------------------------------


def test_posix_traceroute():
    result = parse_traceroute(POSIX_TRACEROUTE, POSIX)

    assert result.success is True
    assert [h.hop_number for h in result.hops] == [1, 2, 3, 5]

    gateway = result.hops[0]
    assert gateway.address == "192.168.1.1"
    assert gateway.hostname == "_gateway"
    assert gateway.latency_ms == pytest.approx(0.512)
    assert gateway.packet_loss_percent == 0.0

    second = result.hops[1]
    assert second.hostname is None
    assert second.latency_ms == pytest.approx(5.102)
    assert second.packet_loss_percent == pytest.approx(100 / 3)

    assert result.hops[3].hostname == "dns.google"
    assert result.latency_ms == pytest.approx(12.345)


def test_posix_hop_with_leading_timeout_is_kept():
    result = parse_traceroute(POSIX_TRACEROUTE, POSIX)

    third = result.hops[2]
    assert third.hop_number == 3
    assert third.address == "10.0.0.2"
    assert third.hostname is None
    assert third.latency_ms == pytest.approx(7.1)
    assert third.packet_loss_percent == pytest.approx(100 / 3)


def test_posix_traceroute_numeric_only():
    text = " 1  192.168.1.1  0.5 ms  0.4 ms  0.4 ms\n"
    hop = parse_traceroute(text, POSIX).hops[0]
    assert hop.address == "192.168.1.1"
    assert hop.hostname is None


def test_windows_traceroute():
    result = parse_traceroute(WINDOWS_TRACEROUTE, WINDOWS)

    assert [h.hop_number for h in result.hops] == [1, 2, 4]
    assert result.hops[0].address == "192.168.1.1"
    assert result.hops[0].latency_ms == 1.0
    assert result.hops[1].packet_loss_percent == pytest.approx(100 / 3)
    assert result.hops[2].address == "8.8.8.8"
    assert result.hops[2].hostname == "dns.google"


def test_traceroute_without_hops_fails():
    with pytest.raises(ParseFailure):
        parse_traceroute("traceroute: unknown host nowhere.invalid", POSIX)
    with pytest.raises(ParseFailure):
        parse_traceroute("", WINDOWS)


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


def test_posix_connection_line():
    header = "Active Internet connections\nProto Recv-Q Send-Q Local Foreign State PID\n\n\n"
    conns = parse_connections(header + "tcp 0 0 127.0.0.1:8080 0.0.0.0:* LISTEN 1234/myproc\n", POSIX)

    assert conns == [
        NetworkConnectionInfo(
            local_address="127.0.0.1",
            local_port=8080,
            protocol="tcp",
            state="LISTEN",
            remote_address="0.0.0.0",
            remote_port=None,
            pid=1234,
            process_name="myproc",
        )
    ]


def test_posix_connection_table():
    conns = parse_connections(POSIX_NETSTAT, POSIX)

    # Every row after the header survives; "garbage line" is skipped
    assert [c.local_port for c in conns] == [22, 5432, 8080, 51234, 22, 68]

    ssh = conns[0]
    assert ssh.state == "LISTEN"
    assert ssh.pid is None

    established = conns[3]
    assert established.remote_address == "140.82.112.4"
    assert established.remote_port == 443
    assert established.process_name == "Web Content"

    ipv6 = conns[4]
    assert ipv6.protocol == "tcp6"
    assert ipv6.local_address == "::"
    assert ipv6.pid is None

    udp = conns[5]
    assert udp.protocol == "udp"
    assert udp.state == ""
    assert udp.pid == 990
    assert udp.process_name == "dhclient"


def test_windows_connection_table():
    conns = parse_connections(WINDOWS_NETSTAT, WINDOWS)

    assert len(conns) == 4
    first = conns[0]
    assert (first.protocol, first.local_address, first.local_port) == ("tcp", "0.0.0.0", 135)
    assert first.state == "LISTENING"
    assert first.pid == 1044
    assert first.process_name is None

    assert conns[2].local_address == "::"
    assert conns[2].remote_port == 0

    udp = conns[3]
    assert udp.remote_address is None
    assert udp.remote_port is None
    assert udp.pid == 2212


def test_connections_from_empty_output():
    assert parse_connections("", POSIX) == []


# ---------------------------------------------------------------------------
# Dialect selection
# ---------------------------------------------------------------------------


def test_dialect_for_platform_names():
    assert dialect_for("Windows") is WINDOWS
    assert dialect_for("Linux") is POSIX
    assert dialect_for("Darwin") is POSIX


def test_get_dialect_by_name():
    assert get_dialect("windows") is WINDOWS
    assert get_dialect("POSIX") is POSIX
    with pytest.raises(ValidationError):
        get_dialect("plan9")
