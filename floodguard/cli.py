"""Command-line entry point of the flood protection daemon."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import Optional, Sequence

from .listener import CaptureError, Listener

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _on_signal(signum, frame) -> None:
    print(f"\nReceived signal {signum}, shutting down gracefully...")
    raise SystemExit(1)


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="floodguard",
        description="Watch incoming traffic and block sources of packet and SYN floods.",
    )
    parser.add_argument(
        "-i",
        "--interface",
        help="interface to capture on (default: the first one found)",
    )
    return parser.parse_args(argv)


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start capturing and blocking; return the process exit status."""
    args = _parse_args(argv)
    print("Starting Integrated DDoS Protection System...")

    previous = {sig: signal.signal(sig, _on_signal) for sig in _SIGNALS}
    try:
        if not _is_root():
            print("This program must be run as root!", file=sys.stderr)
            return 1

        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
        print("System initialized. Starting packet capture...")
        try:
            Listener(enhanced=True).run(args.interface)
        except CaptureError as exc:
            print(str(exc), file=sys.stderr)
            return 1
        return 0
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    sys.exit(main())