# xdputil

Userspace building blocks for XDP tooling, written in plain Python with no
third-party dependencies. Linux only: some helpers use `fcntl`, `resource`
and the bpffs mount table.

## What is inside

| Module              | Purpose |
|---------------------|---------|
| `xdputil.log`       | Levelled logging to stderr: `LogLevel`, `log_print`, `pr_warn`, `pr_info`, `pr_debug`, `set_log_level`, `get_log_level`, `increase_log_level`. |
| `xdputil.parsing`   | Bounds-checked packet header parsing with a moving cursor: `HdrCursor`, `ParseError`, `proto_is_vlan`, `parse_ethhdr`, `parse_iphdr`, `parse_ip6hdr`, `skip_ip6hdrext`, `parse_arphdr`, `parse_icmphdr`, `parse_icmp6hdr`, `parse_icmphdr_common`, `parse_udphdr`, `parse_tcphdr`. |
| `xdputil.xpcapng`   | A small pcapng writer: `PcapngDumper`, `dump_open`, `EpbOptions`, `EpbFlags`. |
| `xdputil.util`      | bpffs discovery (`find_bpf_mount`, `get_bpf_root_dir`), BPF object lookup (`find_bpf_file`), pin directory helpers (`make_dir_subdir`, `unlink_pinned_map`), lock directories (`prog_lock_acquire`, `prog_lock_release`) and memlock limits (`set_rlimit`, `double_rlimit`, `check_bpf_environ`). |
| `xdputil.actions`   | XDP action and attach-mode names: `XdpAction`, `XdpMode`, `action2str`, `mode_name`, `format_bpf_tag`. |
| `xdputil.stats`     | Per-action packet and byte counters and their report: `MapType`, `XdpStatsRecord`, `Record`, `StatsRecord`, `calc_period`, `stats_collect`, `stats_print`, `stats_print_one`. |

## Writing a capture file

```python
from xdputil.xpcapng import EpbFlags, EpbOptions, PcapngDumper

with open("capture.pcapng", "wb") as stream:
    with PcapngDumper(stream, comment="test run",
                      user_application="my-tool") as dumper:
        ifid = dumper.add_interface(
            snap_len=65535, name="eth0",
            mac=bytes.fromhex("020000000001"), ts_resolution=9,
        )
        frame = bytes(60)
        dumper.dump_enhanced_pkt(
            ifid, frame, timestamp=1_700_000_000_000_000_000,
            options=EpbOptions(flags=EpbFlags.INBOUND, queue=0),
        )
```

The section header block is written when the dumper is created. Blocks are
written in host byte order. `add_interface` returns the id of the new
interface, counting from 0. `dump_enhanced_pkt` stores the first `caplen`
bytes of the packet (all of it by default); `length` is the original length.
`EpbOptions` can also carry a drop count, a packet id, an XDP verdict and a
comment.

`dump_open(path)` creates the file with mode 0600 (or uses standard output
for `"-"`) and returns a dumper that closes the file when it is closed.

## Parsing packet headers

```python
from xdputil.parsing import ETH_P_IP, HdrCursor, ParseError, parse_ethhdr, parse_iphdr

cursor = HdrCursor()
try:
    ethertype, eth_header = parse_ethhdr(cursor, frame)
    if ethertype == ETH_P_IP:
        protocol, ip_header = parse_iphdr(cursor, frame)
except ParseError:
    ...  # header truncated or malformed
```

Every parser returns a pair of a value and the header bytes, and advances
the cursor. `parse_ethhdr` skips up to four VLAN tags; `parse_ip6hdr` skips
up to six IPv6 extension headers. `parse_udphdr` returns the payload length
and `parse_tcphdr` the header length including options.

## Statistics

```python
from xdputil.stats import MapType, StatsRecord, XdpStatsRecord, stats_collect, stats_print

counters = {2: XdpStatsRecord(rx_packets=10, rx_bytes=6400)}

def lookup(action):
    return counters.get(action, XdpStatsRecord())

prev = StatsRecord.default_enabled()
stats_collect(lookup, MapType.ARRAY, prev)
current = StatsRecord.default_enabled()
stats_collect(lookup, MapType.ARRAY, current)
stats_print(current, prev)
```

`lookup` is any callable that returns the map value for an action number:
one record for `MapType.ARRAY`, or an iterable of per-CPU records for
`MapType.PERCPU_ARRAY`, which are summed.

## Action names

```python
from xdputil.actions import XdpAction, action2str, mode_name

action2str(XdpAction.DROP)   # "XDP_DROP"
mode_name(2)                 # "skb"
```

## Errors

Failures are raised as exceptions: `ParseError` (a `ValueError`) for bad
packets, `OSError` and its subclasses such as `FileNotFoundError` and
`PermissionError` for filesystem, lock and rlimit problems, and `ValueError`
for out-of-range arguments.

## What this package does not do

It does not talk to the kernel: it does not load, attach, detach or pin
XDP programs, read BPF maps or query interfaces. Statistics are read through
a lookup function that you supply. There is no command-line tool and no
command-line option parser.

## Running the tests

Install the `test` extra and run `pytest`.