"""Flood detection and automatic iptables/ipset blocking for Linux hosts."""

__version__ = "0.1.0"
__all__ = ["packets", "detector", "blocker", "listener", "cli"]