"""Decoding of the Ethernet, IPv4, TCP and UDP headers of captured frames."""

from __future__ import annotations

import enum
import ipaddress
import struct
from dataclasses import dataclass

ETHERNET_HEADER_SIZE = 14
IPV4_MIN_HEADER_SIZE = 20
TCP_HEADER_SIZE = 20
UDP_HEADER_SIZE = 8

ETHERTYPE_IPV4 = 0x0800

IPPROTO_ICMP = 1
IPPROTO_TCP = 6
IPPROTO_UDP = 17

_ETHERNET = struct.Struct("!6s6sH")
_IPV4 = struct.Struct("!BBHHHBBH4s4s")
_TCP = struct.Struct("!HHIIBBHHH")
_UDP = struct.Struct("!HHHH")


class PacketError(ValueError):
    """Raised when a frame is too short to hold the header being decoded."""


class TcpFlags(enum.IntFlag):
    """Bits of the TCP flags byte."""

    FIN = 0x01
    SYN = 0x02
    RST = 0x04
    PSH = 0x08
    ACK = 0x10
    URG = 0x20
    ECE = 0x40
    CWR = 0x80


@dataclass(frozen=True)
class EthernetHeader:
    destination: bytes
    source: bytes
    ether_type: int

    @property
    def is_ipv4(self) -> bool:
        return self.ether_type == ETHERTYPE_IPV4


@dataclass(frozen=True)
class IPv4Header:
    version: int
    ihl: int
    tos: int
    total_length: int
    identification: int
    flags: int
    fragment_offset: int
    ttl: int
    protocol: int
    checksum: int
    source: str
    destination: str

    @property
    def header_length(self) -> int:
        """Length of the IP header in bytes."""
        return self.ihl * 4

    @property
    def transport_offset(self) -> int:
        """Offset within the frame where the transport header starts."""
        return ETHERNET_HEADER_SIZE + self.header_length


@dataclass(frozen=True)
class TcpHeader:
    source_port: int
    destination_port: int
    sequence: int
    acknowledgment: int
    data_offset: int
    flags: TcpFlags
    window: int
    checksum: int
    urgent_pointer: int


@dataclass(frozen=True)
class UdpHeader:
    source_port: int
    destination_port: int
    length: int
    checksum: int


def _unpack(layout: struct.Struct, data: bytes, offset: int, what: str) -> tuple:
    if offset < 0 or len(data) < offset + layout.size:
        raise PacketError(
            f"truncated {what} header: need {layout.size} bytes at offset "
            f"{offset}, frame has {len(data)}"
        )
    return layout.unpack_from(data, offset)


def parse_ethernet(data: bytes) -> EthernetHeader:
    """Decode the Ethernet header at the start of a frame."""
    destination, source, ether_type = _unpack(_ETHERNET, data, 0, "Ethernet")
    return EthernetHeader(destination, source, ether_type)


def parse_ipv4(data: bytes) -> IPv4Header:
    """Decode the IPv4 header that follows the Ethernet header of a frame."""
    (
        version_ihl,
        tos,
        total_length,
        identification,
        flags_fragment,
        ttl,
        protocol,
        checksum,
        source,
        destination,
    ) = _unpack(_IPV4, data, ETHERNET_HEADER_SIZE, "IPv4")
    return IPv4Header(
        version=version_ihl >> 4,
        ihl=version_ihl & 0x0F,
        tos=tos,
        total_length=total_length,
        identification=identification,
        flags=flags_fragment >> 13,
        fragment_offset=flags_fragment & 0x1FFF,
        ttl=ttl,
        protocol=protocol,
        checksum=checksum,
        source=str(ipaddress.IPv4Address(source)),
        destination=str(ipaddress.IPv4Address(destination)),
    )


def parse_tcp(data: bytes, offset: int) -> TcpHeader:
    """Decode a TCP header starting at ``offset`` in the frame."""
    sport, dport, seq, ack, offx2, flags, window, checksum, urgent = _unpack(
        _TCP, data, offset, "TCP"
    )
    return TcpHeader(
        source_port=sport,
        destination_port=dport,
        sequence=seq,
        acknowledgment=ack,
        data_offset=offx2 >> 4,
        flags=TcpFlags(flags),
        window=window,
        checksum=checksum,
        urgent_pointer=urgent,
    )


def parse_udp(data: bytes, offset: int) -> UdpHeader:
    """Decode a UDP header starting at ``offset`` in the frame."""
    sport, dport, length, checksum = _unpack(_UDP, data, offset, "UDP")
    return UdpHeader(sport, dport, length, checksum)


def source_ip(packet: bytes) -> str:
    """Return the dotted source address of an IPv4 frame."""
    return parse_ipv4(packet).source