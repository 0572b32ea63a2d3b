import io
import socket
import struct
from unittest import mock

import pytest

from floodguard.blocker import Blocker, Firewall
from floodguard.detector import Detector
from floodguard.listener import (
    SNAPLEN,
    CaptureError,
    Listener,
    capture,
    first_interface,
)
from floodguard.packets import PacketError


def _frame(src, dst, protocol, transport, ether_type=0x0800):
    eth = b"\x02\x00\x00\x00\x00\x01" + b"\x02\x00\x00\x00\x00\x02" + struct.pack("!H", ether_type)
    ip = struct.pack(
        "!BBHHHBBH4s4s",
        0x45,
        0,
        20 + len(transport),
        1,
        0,
        64,
        protocol,
        0,
        socket.inet_aton(src),
        socket.inet_aton(dst),
    )
    return eth + ip + transport


def _tcp(src, flags, sport=40000, dport=80, dst="10.9.9.9"):
    header = struct.pack("!HHIIBBHHH", sport, dport, 0, 0, 0x50, flags, 1024, 0, 0)
    return _frame(src, dst, 6, header)


def _udp(src, length=8, dst="10.9.9.9"):
    return _frame(src, dst, 17, struct.pack("!HHHH", 5000, 53, length, 0))


def _icmp(src, dst="10.9.9.9"):
    return _frame(src, dst, 1, b"\x08\x00\x00\x00\x00\x00\x00\x00")


class _Recorder:
    def __init__(self):
        self.commands = []

    def __call__(self, args):
        self.commands.append(list(args))


def _wired(enhanced=True):
    runner = _Recorder()
    holder = {}
    detector = Detector(on_block=lambda ip: holder["blocker"].auto_block_ip(ip))
    blocker = Blocker(firewall=Firewall(runner), ratio_source=detector.syn_ack_ratio)
    holder["blocker"] = blocker
    out = io.StringIO()
    listener = Listener(detector=detector, blocker=blocker, enhanced=enhanced, out=out)
    return listener, runner, out


class _FakeSocket:
    def __init__(self, items):
        self._items = list(items)
        self.bound = None
        self.options = []
        self.timeout = None
        self.closed = False

    def bind(self, address):
        self.bound = address

    def setsockopt(self, level, option, value):
        self.options.append((level, option, value))

    def settimeout(self, value):
        self.timeout = value

    def recv(self, size):
        item = self._items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self):
        self.closed = True


def test_non_ipv4_frame_is_ignored():
    listener, _, out = _wired(enhanced=False)
    frame = _frame("10.1.2.3", "10.9.9.9", 6, b"\x00" * 20, ether_type=0x86DD)
    assert listener.handle_packet(frame) is False
    assert out.getvalue() == ""


def test_tcp_syn_is_reported_and_counted():
    listener, _, out = _wired(enhanced=False)
    assert listener.handle_packet(_tcp("10.1.2.3", 0x02, sport=40000, dport=80)) is True
    text = out.getvalue()
    assert "Source IP: 10.1.2.3" in text
    assert "Target IP: 10.9.9.9" in text
    assert "Protocol: 6" in text
    assert "TCP Source Port: 40000" in text
    assert "TCP Target Port: 80" in text
    assert "TCP Flags: 0x02" in text
    assert "SYN packet detected" in text
    assert listener.detector.syn_count("10.1.2.3") == 1
    assert listener.detector.packet_count("10.1.2.3") == 1


def test_packet_size_uses_given_length():
    listener, _, out = _wired(enhanced=False)
    frame = _tcp("10.1.2.3", 0x10)
    listener.handle_packet(frame, 1500)
    assert "Packet size: 1500 bytes" in out.getvalue()
    assert "SYN packet detected" not in out.getvalue()


def test_packet_size_defaults_to_frame_length():
    listener, _, out = _wired(enhanced=False)
    frame = _udp("10.1.2.3")
    listener.handle_packet(frame)
    assert f"Packet size: {len(frame)} bytes" in out.getvalue()


def test_udp_frame_is_reported_and_counted():
    listener, _, out = _wired(enhanced=False)
    assert listener.handle_packet(_udp("10.4.4.4", length=8)) is True
    text = out.getvalue()
    assert "UDP Source Port: 5000" in text
    assert "UDP Target Port: 53" in text
    assert "UDP Length: 8" in text
    assert listener.detector.packet_count("10.4.4.4") == 1


def test_icmp_frame_is_counted():
    listener, _, out = _wired(enhanced=True)
    assert listener.handle_packet(_icmp("10.5.5.5")) is True
    assert "ICMP packet detected" in out.getvalue()
    assert listener.detector.packet_count("10.5.5.5") == 1


def test_enhanced_drops_frames_from_blocked_source():
    listener, _, out = _wired(enhanced=True)
    listener.blocker.add_to_blocked("10.6.6.6")
    assert listener.handle_packet(_udp("10.6.6.6")) is False
    assert "Packet from blocked IP 10.6.6.6 dropped" in out.getvalue()
    assert listener.detector.packet_count("10.6.6.6") == 0


def test_plain_mode_does_not_drop_blocked_source():
    listener, _, _ = _wired(enhanced=False)
    listener.blocker.add_to_blocked("10.6.6.6")
    assert listener.handle_packet(_udp("10.6.6.6")) is True
    assert listener.detector.packet_count("10.6.6.6") == 1


def test_syn_flood_gets_source_blocked():
    listener, runner, _ = _wired(enhanced=True)
    src = "10.7.7.7"
    results = [listener.handle_packet(_tcp(src, 0x02)) for _ in range(10)]
    assert listener.blocker.is_blocked(src)
    assert ["iptables", "-A", "INPUT", "-s", src, "-j", "DROP"] in runner.commands
    assert results[-1] is False
    assert listener.detector.syn_count(src) == 4


def test_plain_mode_never_blocks():
    listener, runner, _ = _wired(enhanced=False)
    for _ in range(10):
        listener.handle_packet(_tcp("10.7.7.7", 0x02))
    assert not listener.blocker.is_blocked("10.7.7.7")
    assert runner.commands == []


def test_whitelisted_source_is_never_blocked():
    listener, runner, _ = _wired(enhanced=True)
    results = [listener.handle_packet(_tcp("127.0.0.1", 0x02)) for _ in range(10)]
    assert all(results)
    assert not listener.blocker.is_blocked("127.0.0.1")
    assert runner.commands == []


def test_default_wiring_links_detector_and_blocker():
    runner = _Recorder()
    blocker = Blocker(firewall=Firewall(runner))
    listener = Listener(blocker=blocker, enhanced=True, out=io.StringIO())
    for _ in range(10):
        listener.handle_packet(_tcp("10.8.8.8", 0x02))
    assert blocker.is_blocked("10.8.8.8")


def test_truncated_frame_raises():
    listener, _, _ = _wired(enhanced=False)
    frame = _tcp("10.1.2.3", 0x02)[:40]
    with pytest.raises(PacketError):
        listener.handle_packet(frame)


def test_first_interface_prefers_non_loopback():
    with mock.patch("socket.if_nameindex", return_value=[(1, "lo"), (2, "eth0")]):
        assert first_interface() == "eth0"


def test_first_interface_falls_back_to_loopback():
    with mock.patch("socket.if_nameindex", return_value=[(1, "lo")]):
        assert first_interface() == "lo"


def test_first_interface_without_interfaces_raises():
    with mock.patch("socket.if_nameindex", return_value=[]):
        with pytest.raises(CaptureError):
            first_interface()


def test_first_interface_error_raises_capture_error():
    with mock.patch("socket.if_nameindex", side_effect=OSError("no access")):
        with pytest.raises(CaptureError):
            first_interface()


def _patched_socket(fake):
    return [
        mock.patch.object(socket, "AF_PACKET", 17, create=True),
        mock.patch("socket.socket", return_value=fake),
        mock.patch("socket.if_nametoindex", return_value=3),
    ]


def test_capture_yields_frames_until_end():
    first = _udp("10.1.1.1")
    second = _icmp("10.2.2.2")
    fake = _FakeSocket([first, socket.timeout(), second, b""])
    patches = _patched_socket(fake)
    for p in patches:
        p.start()
    try:
        frames = list(capture("eth0"))
    finally:
        for p in reversed(patches):
            p.stop()
    assert frames == [(first, len(first)), (second, len(second))]
    assert fake.bound == ("eth0", 0)
    assert fake.options[0][2][:4] == struct.pack("i", 3)
    assert fake.closed


def test_capture_cuts_long_frames():
    big = _udp("10.1.1.1") + b"\x00" * (SNAPLEN + 500)
    fake = _FakeSocket([big, b""])
    patches = _patched_socket(fake)
    for p in patches:
        p.start()
    try:
        frames = list(capture("eth0"))
    finally:
        for p in reversed(patches):
            p.stop()
    assert len(frames[0][0]) == SNAPLEN
    assert frames[0][1] == len(big)


def test_capture_read_error_raises():
    first = _udp("10.1.1.1")
    fake = _FakeSocket([first, OSError("interface down")])
    patches = _patched_socket(fake)
    for p in patches:
        p.start()
    try:
        frames = capture("eth0")
        assert next(frames) == (first, len(first))
        with pytest.raises(CaptureError):
            next(frames)
    finally:
        for p in reversed(patches):
            p.stop()
    assert fake.closed


def test_capture_open_error_raises():
    with mock.patch.object(socket, "AF_PACKET", 17, create=True), mock.patch(
        "socket.socket", side_effect=PermissionError("denied")
    ):
        with pytest.raises(CaptureError):
            capture("eth0")


def test_run_processes_captured_frames():
    listener, _, out = _wired(enhanced=False)
    fake = _FakeSocket([_tcp("10.3.3.3", 0x02), b"\x00" * 10, b""])
    patches = _patched_socket(fake)
    for p in patches:
        p.start()
    try:
        handled = listener.run("eth0")
    finally:
        for p in reversed(patches):
            p.stop()
    text = out.getvalue()
    assert handled == 1
    assert "Listening interface: eth0" in text
    assert "Interface opened!" in text
    assert "SYN packet detected" in text
    assert listener.detector.syn_count("10.3.3.3") == 1