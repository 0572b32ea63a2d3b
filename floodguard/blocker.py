"""Blocking of hostile source addresses through iptables and ipset."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

BLOCK_DURATION = 300
TABLE_SIZE = 10000
MAX_BLOCKED_IPS = 1000
ATTACK_SYN_ACK_RATIO = 3.0
MONITOR_INTERVAL = 60

DEFAULT_WHITELIST = ("192.168.1.1", "10.0.0.1", "127.0.0.1")

Runner = Callable[[Sequence[str]], None]


def _run_command(args: Sequence[str]) -> None:
    """Run a firewall command, ignoring its error output and exit status."""
    try:
        subprocess.run(list(args), stderr=subprocess.DEVNULL, check=False)
    except OSError as exc:
        logger.error("Could not run %s: %s", args[0], exc)


class Firewall:
    """Issues iptables and ipset commands through a command runner."""

    def __init__(self, runner: Optional[Runner] = None) -> None:
        self._runner = runner if runner is not None else _run_command

    def block(self, ip: str) -> None:
        self._runner(["iptables", "-A", "INPUT", "-s", ip, "-j", "DROP"])
        logger.info("%s address blocked.", ip)

    def unblock(self, ip: str) -> None:
        self._runner(["iptables", "-D", "INPUT", "-s", ip, "-j", "DROP"])
        logger.info("%s address unblocked.", ip)

    def ipset_add(self, ip: str) -> None:
        self._runner(["ipset", "add", "blacklist", ip])

    def ipset_remove(self, ip: str) -> None:
        self._runner(["ipset", "del", "blacklist", ip])

    def rate_limit(self, ip: str, limit: int) -> None:
        """Accept up to ``limit`` packets per second from ``ip`` and drop the rest."""
        self._runner(
            ["iptables", "-A", "INPUT", "-s", ip, "-m", "limit",
             "--limit", f"{limit}/sec", "-j", "ACCEPT"]
        )
        self._runner(["iptables", "-A", "INPUT", "-s", ip, "-j", "DROP"])

    def block_udp_flood(self, ip: str) -> None:
        self._runner(["iptables", "-A", "INPUT", "-s", ip, "-p", "udp", "-j", "DROP"])


@dataclass
class BlockedIP:
    ip: str
    block_time: float


def hash_ip(ip: str) -> int:
    """Bucket index of an address in a table of ``TABLE_SIZE`` slots."""
    value = 0
    for char in ip:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    return value % TABLE_SIZE


class Blocker:
    """Keeps the list of blocked addresses and decides which packets to drop."""

    def __init__(
        self,
        firewall: Optional[Firewall] = None,
        ratio_source: Optional[Callable[[str], float]] = None,
        whitelist: Iterable[str] = DEFAULT_WHITELIST,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._firewall = firewall if firewall is not None else Firewall()
        self._ratio_source = ratio_source
        self._whitelist = frozenset(whitelist)
        self._clock = clock
        self._blocked: list[BlockedIP] = []
        self._lock = threading.RLock()

    @property
    def blocked(self) -> tuple[BlockedIP, ...]:
        """Blocked addresses in the order they were added."""
        with self._lock:
            return tuple(self._blocked)

    def is_whitelisted(self, ip: str) -> bool:
        return ip in self._whitelist

    def is_blocked(self, ip: str) -> bool:
        with self._lock:
            return any(entry.ip == ip for entry in self._blocked)

    def add_to_blocked(self, ip: str) -> bool:
        """Record ``ip`` as blocked; return False when full or already present."""
        with self._lock:
            if len(self._blocked) >= MAX_BLOCKED_IPS:
                logger.error("Maximum blocked IP limit reached.")
                return False
            if self.is_blocked(ip):
                return False
            self._blocked.append(BlockedIP(ip, self._clock()))
            logger.info(
                "Added %s to blocked list. Total blocked: %d", ip, len(self._blocked)
            )
            return True

    def confirm_attack(self, ip: str) -> bool:
        """True when the SYN/ACK ratio of ``ip`` is above the attack limit."""
        ratio = self._ratio_source(ip) if self._ratio_source is not None else 0.0
        if ratio > ATTACK_SYN_ACK_RATIO:
            logger.warning(
                "Attack confirmed from %s (SYN/ACK ratio: %.2f)", ip, ratio
            )
            return True
        return False

    def should_block_packet(self, ip: str) -> bool:
        """Decide whether a packet from ``ip`` is dropped, blocking new attackers."""
        if self.is_whitelisted(ip):
            return False
        if self.is_blocked(ip):
            return True
        if self.confirm_attack(ip):
            self.add_to_blocked(ip)
            self._firewall.block(ip)
            return True
        return False

    def auto_block_ip(self, ip: str) -> bool:
        """Block ``ip`` in the firewall and ipset unless it is whitelisted."""
        if self.is_whitelisted(ip):
            return False
        self.add_to_blocked(ip)
        self._firewall.block(ip)
        self._firewall.ipset_add(ip)
        logger.warning("Auto-blocked suspicious IP: %s", ip)
        return True

    def check_block_timeouts(self) -> list[str]:
        """Lift blocks older than ``BLOCK_DURATION``; return the released addresses."""
        now = self._clock()
        with self._lock:
            expired = [e for e in self._blocked if now - e.block_time > BLOCK_DURATION]
            self._blocked = [e for e in self._blocked if e not in expired]
        for entry in expired:
            self._firewall.unblock(entry.ip)
        return [entry.ip for entry in expired]

    def start_monitor(self, interval: float = MONITOR_INTERVAL) -> threading.Event:
        """Check timeouts every ``interval`` seconds in a daemon thread.

        Setting the returned event stops the thread.
        """
        stop = threading.Event()

        def loop() -> None:
            while not stop.wait(interval):
                self.check_block_timeouts()

        thread = threading.Thread(target=loop, name="block-monitor", daemon=True)
        thread.start()
        logger.info("Blocker system initialized successfully")
        return stop