"""Collection and printing of per-action XDP packet statistics."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from enum import IntEnum

from xdputil.actions import XdpAction, action2str

NANOSEC_PER_SEC = 1_000_000_000
XDP_ACTION_MAX = XdpAction.REDIRECT + 1
XDP_STATS_MAP_NAME = "xdp_stats_map"

_U64_MASK = 0xFFFFFFFFFFFFFFFF


class MapType(IntEnum):
    """BPF map types that statistics can be read from."""

    ARRAY = 2
    PERCPU_ARRAY = 6


@dataclass
class XdpStatsRecord:
    """Packet and byte counters as stored in the stats map."""

    rx_packets: int = 0
    rx_bytes: int = 0

    @property
    def packets(self):
        return self.rx_packets

    @property
    def bytes(self):
        return self.rx_bytes


@dataclass
class Record:
    """Counters for one action together with the time they were read."""

    timestamp: int = 0
    enabled: bool = False
    total: XdpStatsRecord = field(default_factory=XdpStatsRecord)


def _empty_stats():
    return [Record() for _ in range(XDP_ACTION_MAX)]


@dataclass
class StatsRecord:
    """One record per XDP action, indexed by action number."""

    stats: list = field(default_factory=_empty_stats)

    def __post_init__(self):
        if len(self.stats) != XDP_ACTION_MAX:
            raise ValueError(f"expected {XDP_ACTION_MAX} records, "
                             f"got {len(self.stats)}")

    @classmethod
    def default_enabled(cls):
        """A record with the DROP, PASS, REDIRECT and TX actions enabled."""
        rec = cls()
        for action in (XdpAction.DROP, XdpAction.PASS, XdpAction.REDIRECT,
                       XdpAction.TX):
            rec.stats[action].enabled = True
        return rec


def calc_period(rec, prev):
    """Seconds between the timestamps of two records (0.0 if none)."""
    period = (rec.timestamp - prev.timestamp) & _U64_MASK
    if period > 0:
        return period / NANOSEC_PER_SEC
    return 0.0


def stats_print_one(stats_rec, out=None):
    """Print the running totals of every enabled action."""
    out = sys.stdout if out is None else out
    for action, rec in enumerate(stats_rec.stats):
        if rec.enabled:
            out.write(f"  {action2str(action):<35} {rec.total.rx_packets:11d}"
                      f" pkts {rec.total.rx_bytes // 1024:11d} KiB\n")


def stats_print(stats_rec, stats_prev, out=None):
    """Print totals and rates since *stats_prev* for every enabled action.

    Nothing more is printed once an action shows no elapsed time.
    """
    out = sys.stdout if out is None else out
    now_ns = time.time_ns()
    first = True
    for action, (rec, prev) in enumerate(zip(stats_rec.stats,
                                              stats_prev.stats)):
        if not rec.enabled:
            continue

        packets = (rec.total.rx_packets - prev.total.rx_packets) & _U64_MASK
        nbytes = (rec.total.rx_bytes - prev.total.rx_bytes) & _U64_MASK

        period = calc_period(rec, prev)
        if period == 0:
            return

        if first:
            secs, nsecs = divmod(now_ns, NANOSEC_PER_SEC)
            out.write(f"Period of {period:f}s ending at "
                      f"{secs}.{nsecs // 1000:06d}\n")
            first = False

        pps = packets / period
        bps = (nbytes * 8) / period / 1_000_000
        out.write(f"{action2str(action):<12} {rec.total.rx_packets:11d} pkts"
                  f" ({pps:10.0f} pps) {rec.total.rx_bytes // 1024:11d} KiB"
                  f" ({bps:6.0f} Mbits/s)\n")
    out.write("\n")


def _read_value(lookup, map_type, key):
    if map_type == MapType.ARRAY:
        value = lookup(key)
        return XdpStatsRecord(value.rx_packets, value.rx_bytes)
    if map_type == MapType.PERCPU_ARRAY:
        values = list(lookup(key))
        return XdpStatsRecord(
            sum(v.rx_packets for v in values) & _U64_MASK,
            sum(v.rx_bytes for v in values) & _U64_MASK,
        )
    raise ValueError(f"Unknown map_type: {map_type} cannot handle")


def stats_collect(lookup, map_type, stats_rec):
    """Read the counters of every enabled action into *stats_rec*.

    *lookup* maps an action number to its map value: one record with
    ``rx_packets`` and ``rx_bytes`` for an array map, or an iterable of
    per-CPU records for a per-CPU array map, which are summed.
    """
    for key, rec in enumerate(stats_rec.stats):
        if not rec.enabled:
            continue
        rec.timestamp = time.monotonic_ns()
        rec.total = _read_value(lookup, map_type, key)