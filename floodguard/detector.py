"""Per-address traffic counters that spot packet and SYN floods."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .packets import TcpFlags, parse_ipv4, parse_tcp

logger = logging.getLogger(__name__)

TIME_WINDOW = 10
THRESHOLD = 100
MAX_IPS = 1000
SYN_FLOOD_THRESHOLD = 50
SYN_ACK_RATIO_LIMIT = 3.0
CRITICAL_SYN_ACK_RATIO = 5.0


@dataclass
class SynTracker:
    ip: str
    syn_count: int
    ack_count: int
    first_seen: float


@dataclass
class IpTracker:
    ip: str
    packet_count: int
    first_seen: float


class Detector:
    """Tracks SYN/ACK and packet counts per source address within a time window."""

    def __init__(
        self,
        on_block: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._on_block = on_block
        self._clock = clock
        self._syn_trackers: dict[str, SynTracker] = {}
        self._ip_trackers: dict[str, IpTracker] = {}

    def _block(self, ip: str) -> None:
        if self._on_block is not None:
            self._on_block(ip)

    def increment_syn(self, ip: str) -> None:
        now = self._clock()
        tracker = self._syn_trackers.get(ip)
        if tracker is not None:
            if now - tracker.first_seen > TIME_WINDOW:
                tracker.syn_count = 0
                tracker.ack_count = 0
                tracker.first_seen = now
            tracker.syn_count += 1
        elif len(self._syn_trackers) < MAX_IPS:
            self._syn_trackers[ip] = SynTracker(ip, 1, 0, now)

    def increment_ack(self, ip: str) -> None:
        tracker = self._syn_trackers.get(ip)
        if tracker is not None:
            tracker.ack_count += 1

    def syn_ack_ratio(self, ip: str) -> float:
        """SYN count divided by ACK count; the SYN count itself when no ACK was seen."""
        tracker = self._syn_trackers.get(ip)
        if tracker is None:
            return 0.0
        if tracker.ack_count == 0:
            return float(tracker.syn_count) if tracker.syn_count > 0 else 0.0
        return tracker.syn_count / tracker.ack_count

    def syn_count(self, ip: str) -> int:
        tracker = self._syn_trackers.get(ip)
        return tracker.syn_count if tracker is not None else 0

    def packet_count(self, ip: str) -> int:
        tracker = self._ip_trackers.get(ip)
        return tracker.packet_count if tracker is not None else 0

    def detect_anomaly(self, ip: str) -> bool:
        """Count a packet from ``ip``; return True when it exceeds the threshold."""
        now = self._clock()
        tracker = self._ip_trackers.get(ip)
        if tracker is None:
            if len(self._ip_trackers) < MAX_IPS:
                self._ip_trackers[ip] = IpTracker(ip, 1, now)
            return False
        if now - tracker.first_seen > TIME_WINDOW:
            tracker.packet_count = 0
            tracker.first_seen = now
        tracker.packet_count += 1
        if tracker.packet_count > THRESHOLD:
            logger.warning(
                "Anomaly was detected: %s (Packets: %d)", ip, tracker.packet_count
            )
            return True
        return False

    def analyze_tcp(self, packet: bytes) -> str:
        """Update counters from a TCP frame and return its source address."""
        ip_header = parse_ipv4(packet)
        tcp = parse_tcp(packet, ip_header.transport_offset)
        src = ip_header.source
        flags = tcp.flags

        if flags & TcpFlags.SYN and not flags & TcpFlags.ACK:
            self.increment_syn(src)
            logger.info(
                "SYN packet from %s:%d to port %d",
                src,
                tcp.source_port,
                tcp.destination_port,
            )
        if flags & TcpFlags.ACK:
            self.increment_ack(src)
        if flags & TcpFlags.RST:
            logger.info("RST packet from %s - possible port scan", src)
        if flags & TcpFlags.FIN:
            logger.info("FIN packet from %s", src)

        ratio = self.syn_ack_ratio(src)
        if ratio > SYN_ACK_RATIO_LIMIT:
            logger.warning(
                "Potential SYN Flood detected from %s (Ratio: %.2f)", src, ratio
            )
        if src in self._syn_trackers:
            count = self._syn_trackers[src].syn_count
            if count > SYN_FLOOD_THRESHOLD:
                logger.warning("High SYN count from %s: %d packets", src, count)

        self.detect_anomaly(src)
        return src

    def enhanced_detect_anomaly(self, ip: str) -> bool:
        """Count a packet and block ``ip`` when it sends twice the threshold."""
        self.detect_anomaly(ip)
        tracker = self._ip_trackers.get(ip)
        if tracker is not None and tracker.packet_count > THRESHOLD * 2:
            logger.warning(
                "Auto-blocking %s due to excessive packets: %d",
                ip,
                tracker.packet_count,
            )
            self._block(ip)
            return True
        return False

    def enhanced_analyze_tcp(self, packet: bytes) -> str:
        """Analyse a TCP frame and block its source on a critical SYN flood."""
        src = self.analyze_tcp(packet)
        if self.syn_ack_ratio(src) > CRITICAL_SYN_ACK_RATIO:
            logger.warning("Critical SYN flood detected from %s - Auto-blocking", src)
            self._block(src)
        tracker = self._syn_trackers.get(src)
        if tracker is not None and tracker.syn_count > SYN_FLOOD_THRESHOLD * 2:
            logger.warning("Excessive SYN packets from %s - Auto-blocking", src)
            self._block(src)
        return src