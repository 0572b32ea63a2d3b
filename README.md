# floodguard

floodguard watches the traffic on a Linux host's network interface and blocks
sources of packet and SYN floods with iptables and ipset.

It captures frames with a raw packet socket in promiscuous mode, decodes every
IPv4 frame and keeps per-source statistics over a 10-second window.

## What it detects

- **SYN/ACK ratio.** SYN packets without ACK count as SYNs; packets with ACK
  count as ACKs. With no ACK seen, the ratio is the SYN count itself.
  - Above 3.0 the source is reported as a possible SYN flood. Its next packet
    gets it blocked with an iptables rule.
  - Above 5.0 it is blocked at once, with an iptables rule and an ipset entry.
- **SYN count.** More than 50 SYNs in the window are reported. More than 100
  get the source blocked.
- **Packet count.** More than 100 packets of any kind in the window are
  reported as an anomaly. TCP packets count too. When a UDP or ICMP packet
  arrives from a source with more than 200 packets in the window, the source
  is blocked.

Statistics are kept for at most 1000 sources. Sources beyond that are not
tracked.

## How blocking works

Blocking adds an `iptables -A INPUT -s <ip> -j DROP` rule. Blocks made by the
detector's thresholds also run `ipset add blacklist <ip>`. Frames from a
blocked source are not analysed further.

These addresses are never blocked:

- `192.168.1.1`
- `10.0.0.1`
- `127.0.0.1`

At most 1000 addresses are held on the blocked list at once. A background
monitor runs every 60 seconds. It releases blocks older than five minutes and
deletes their iptables rule with `iptables -D`.

Errors from the firewall commands are discarded. A command that cannot be
started at all is logged.

## Requirements

- Linux, which provides the raw packet sockets used for capture
- root privileges
- `iptables` and `ipset` on the `PATH`
- an ipset named `blacklist`

## Installation

```
pip install .
```

## Usage

Run it as root:

```
sudo floodguard
```

To capture on a particular interface:

```
sudo floodguard --interface eth0
```

Without `-i`/`--interface`, the first interface other than `lo` is used. `lo`
is used only when it is the only interface.

A summary of every IPv4 frame goes to standard output: addresses, protocol,
size, and the ports and flags of TCP and UDP. Detections and blocks are
logged to standard error.

The command stops on Ctrl-C or SIGTERM with exit status 1. It also exits with
status 1 when it is not run as root, or when the interface cannot be found or
opened.

## Library use

The parts can be used on their own.

- `floodguard.packets`: `parse_ethernet`, `parse_ipv4`, `parse_tcp` and
  `parse_udp` decode headers into frozen dataclasses. They raise `PacketError`
  when a frame is too short. `source_ip` returns the source address of an IPv4
  frame. `TcpFlags` is an `IntFlag` of the TCP flag bits.
- `floodguard.detector.Detector(on_block=None, clock=time.time)` keeps the
  statistics. It has these methods:
  - `increment_syn`, `increment_ack`, `syn_ack_ratio`, `syn_count` and
    `packet_count`
  - `detect_anomaly`, `analyze_tcp`, and `enhanced_detect_anomaly` and
    `enhanced_analyze_tcp`, which also call `on_block`
- `floodguard.blocker.Blocker(firewall=None, ratio_source=None,
  whitelist=DEFAULT_WHITELIST, clock=time.time)` keeps the blocked list. It
  has these methods:
  - `is_whitelisted`, `is_blocked`, `add_to_blocked`, `confirm_attack`,
    `should_block_packet` and `auto_block_ip`
  - `check_block_timeouts`, which returns the released addresses
  - `start_monitor(interval)`, which returns a `threading.Event` that stops the
    monitor when set

  `hash_ip` gives an address's bucket in a 10000-slot table.
- `floodguard.blocker.Firewall(runner=None)` builds the iptables and ipset
  argument lists: `block`, `unblock`, `ipset_add`, `ipset_remove`,
  `rate_limit` and `block_udp_flood`. It hands them to `runner`, which runs
  them with `subprocess` by default. Pass your own runner to record the
  commands instead of running them.
- `floodguard.listener.Listener(detector=None, blocker=None, enhanced=True,
  out=None)` ties the parts together:
  - `handle_packet(packet, length)` processes one frame.
  - `run(interface)` captures until the capture ends.

  With `enhanced=False` it only reports and never blocks.
  `first_interface()` and `capture(interface)` do the interface lookup and
  raw capture. They raise `CaptureError` on failure.

## What it does not do

- It does not drop packets itself. Dropping is left to the iptables rules it
  adds; a frame from a blocked source is only skipped by the analysis.
- When a block expires, only the iptables rule is deleted. The ipset
  `blacklist` entry stays.
- Rules and ipset entries it added are not removed when it stops.
- Capture works only where raw packet sockets are available, which means
  Linux.