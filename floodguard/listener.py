"""Live capture of Ethernet frames and their dispatch to the detector and blocker."""

from __future__ import annotations

import logging
import socket
import struct
import sys
from typing import Iterator, Optional, TextIO

from .blocker import Blocker
from .detector import Detector
from .packets import (
    IPPROTO_ICMP,
    IPPROTO_TCP,
    IPPROTO_UDP,
    PacketError,
    TcpFlags,
    parse_ethernet,
    parse_ipv4,
    parse_tcp,
    parse_udp,
)

logger = logging.getLogger(__name__)

SNAPLEN = 8192
READ_TIMEOUT = 1.0
MAX_FRAME = 65535
ETH_P_ALL = 0x0003

_SOL_PACKET = 263
_PACKET_ADD_MEMBERSHIP = 1
_PACKET_MR_PROMISC = 1
_PACKET_MREQ = struct.Struct("iHH8s")


class CaptureError(RuntimeError):
    """Raised when no interface can be found, opened or read."""


def first_interface() -> str:
    """Name of the first capture interface, preferring one that is not loopback."""
    try:
        interfaces = socket.if_nameindex()
    except OSError as exc:
        raise CaptureError(f"Not found interface: {exc}") from exc
    if not interfaces:
        raise CaptureError("Not found interface")
    names = [name for _, name in interfaces]
    for name in names:
        if name != "lo":
            return name
    return names[0]


def _enable_promiscuous(sock: socket.socket, interface: str) -> None:
    request = _PACKET_MREQ.pack(
        socket.if_nametoindex(interface), _PACKET_MR_PROMISC, 0, b""
    )
    sock.setsockopt(
        getattr(socket, "SOL_PACKET", _SOL_PACKET), _PACKET_ADD_MEMBERSHIP, request
    )


def _read_frames(sock: socket.socket) -> Iterator[tuple[bytes, int]]:
    try:
        while True:
            try:
                data = sock.recv(MAX_FRAME)
            except socket.timeout:
                continue
            except OSError as exc:
                raise CaptureError(f"Capture failed: {exc}") from exc
            if not data:
                return
            yield data[:SNAPLEN], len(data)
    finally:
        sock.close()


def capture(interface: str) -> Iterator[tuple[bytes, int]]:
    """Open ``interface`` in promiscuous mode and yield ``(frame, wire_length)`` pairs.

    Frames longer than ``SNAPLEN`` are cut to that size; the second item keeps
    the length seen on the wire.
    """
    family = getattr(socket, "AF_PACKET", None)
    if family is None:
        raise CaptureError("Not opened interface: packet capture is not supported here")
    try:
        sock = socket.socket(family, socket.SOCK_RAW, socket.htons(ETH_P_ALL))
    except OSError as exc:
        raise CaptureError(f"Not opened interface: {exc}") from exc
    try:
        sock.bind((interface, 0))
        _enable_promiscuous(sock, interface)
        sock.settimeout(READ_TIMEOUT)
    except OSError as exc:
        sock.close()
        raise CaptureError(f"Not opened interface: {exc}") from exc
    return _read_frames(sock)


class Listener:
    """Prints a summary of each IPv4 frame and feeds it to the detector.

    In enhanced mode, frames from blocked sources are dropped before analysis
    and the detector may block sources through the blocker.
    """

    def __init__(
        self,
        detector: Optional[Detector] = None,
        blocker: Optional[Blocker] = None,
        enhanced: bool = True,
        out: Optional[TextIO] = None,
    ) -> None:
        self.detector = (
            detector
            if detector is not None
            else Detector(on_block=lambda ip: self.blocker.auto_block_ip(ip))
        )
        self.blocker = (
            blocker
            if blocker is not None
            else Blocker(ratio_source=lambda ip: self.detector.syn_ack_ratio(ip))
        )
        self.enhanced = enhanced
        self._out = out

    def _emit(self, line: str) -> None:
        print(line, file=self._out if self._out is not None else sys.stdout)

    def handle_packet(self, packet: bytes, length: Optional[int] = None) -> bool:
        """Process one frame; return True when it was analysed.

        Non-IPv4 frames and, in enhanced mode, frames from blocked sources
        return False. Truncated headers raise ``PacketError``.
        """
        if length is None:
            length = len(packet)
        if not parse_ethernet(packet).is_ipv4:
            return False
        ip = parse_ipv4(packet)
        src = ip.source

        if self.enhanced and self.blocker.should_block_packet(src):
            self._emit(f"Packet from blocked IP {src} dropped")
            return False

        self._emit(f"Source IP: {src}")
        self._emit(f"Target IP: {ip.destination}")
        self._emit(f"Protocol: {ip.protocol}")
        self._emit(f"Packet size: {length} bytes")

        if ip.protocol == IPPROTO_TCP:
            tcp = parse_tcp(packet, ip.transport_offset)
            self._emit(f"TCP Source Port: {tcp.source_port}")
            self._emit(f"TCP Target Port: {tcp.destination_port}")
            self._emit(f"TCP Flags: 0x{int(tcp.flags):02x}")
            if tcp.flags & TcpFlags.SYN:
                self._emit("SYN packet detected")
            if self.enhanced:
                self.detector.enhanced_analyze_tcp(packet)
            else:
                self.detector.analyze_tcp(packet)
        elif ip.protocol == IPPROTO_UDP:
            udp = parse_udp(packet, ip.transport_offset)
            self._emit(f"UDP Source Port: {udp.source_port}")
            self._emit(f"UDP Target Port: {udp.destination_port}")
            self._emit(f"UDP Length: {udp.length}")
            self._count(src)
        elif ip.protocol == IPPROTO_ICMP:
            self._emit("ICMP packet detected")
            self._count(src)
        return True

    def _count(self, src: str) -> None:
        if self.enhanced:
            self.detector.enhanced_detect_anomaly(src)
        else:
            self.detector.detect_anomaly(src)

    def run(self, interface: Optional[str] = None) -> int:
        """Capture on ``interface`` (the first one found by default) until it ends.

        Returns the number of frames that were analysed.
        """
        stop = self.blocker.start_monitor() if self.enhanced else None
        try:
            name = interface if interface is not None else first_interface()
            self._emit(f"Listening interface: {name}")
            frames = capture(name)
            if self.enhanced:
                self._emit("Interface opened with integrated blocking!")
            else:
                self._emit("Interface opened!")
            handled = 0
            for frame, length in frames:
                try:
                    if self.handle_packet(frame, length):
                        handled += 1
                except PacketError as exc:
                    logger.debug("Skipping malformed frame: %s", exc)
            return handled
        finally:
            if stop is not None:
                stop.set()