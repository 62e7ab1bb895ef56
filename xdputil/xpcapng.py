"""A small PcapNG writer for captured XDP packets.

Blocks are written in the host byte order. The byte-order magic in the
section header lets readers detect that order.
"""

from __future__ import annotations

import io
import os
import struct
import sys
from dataclasses import dataclass
from enum import IntEnum, IntFlag

PCAPNG_SECTION_BLOCK = 0x0A0D0D0A
PCAPNG_INTERFACE_BLOCK = 1
PCAPNG_PACKET_BLOCK = 2
PCAPNG_SIMPLE_PACKET_BLOCK = 3
PCAPNG_NAME_RESOLUTION_BLOCK = 4
PCAPNG_INTERFACE_STATS_BLOCK = 5
PCAPNG_ENHANCED_PACKET_BLOCK = 6

PCAPNG_BYTE_ORDER_MAGIC = 0x1A2B3C4D
PCAPNG_MAJOR_VERSION = 1
PCAPNG_MINOR_VERSION = 0

LINKTYPE_ETHERNET = 1
UINT64_MAX = 0xFFFFFFFFFFFFFFFF


class Opt(IntEnum):
    """Generic option codes."""

    END = 0
    COMMENT = 1


class ShbOpt(IntEnum):
    """Section header block option codes."""

    HARDWARE = 2
    OS = 3
    USERAPPL = 4


class IdbOpt(IntEnum):
    """Interface description block option codes."""

    IF_NAME = 2
    IF_DESCRIPTION = 3
    IF_IPV4_ADDR = 4
    IF_IPV6_ADDR = 5
    IF_MAC_ADDR = 6
    IF_EUI_ADDR = 7
    IF_SPEED = 8
    IF_TSRESOL = 9
    IF_TZONE = 10
    IF_FILTER = 11
    IF_OS = 12
    IF_FCSLEN = 13
    IF_TOFFSET = 14
    IF_HARDWARE = 15


class EpbOpt(IntEnum):
    """Enhanced packet block option codes."""

    FLAGS = 2
    HASH = 3
    DROPCOUNT = 4
    PACKETID = 5
    QUEUE = 6
    VERDICT = 7


class VerdictType(IntEnum):
    """Kinds of verdict recorded in the EPB verdict option."""

    HARDWARE = 0
    EBPF_TC = 1
    EBPF_XDP = 2


class EpbFlags(IntFlag):
    """Direction flags for enhanced packet blocks."""

    INBOUND = 0x1
    OUTBOUND = 0x2


@dataclass
class EpbOptions:
    """Optional fields of an enhanced packet block.

    Zero flags and a zero drop count are left out; the other fields are
    left out when they are None.
    """

    flags: EpbFlags = EpbFlags(0)
    dropcount: int = 0
    packetid: int | None = None
    queue: int | None = None
    xdp_verdict: int | None = None
    comment: str | None = None


def _pad_len(length):
    return (-length) % 4


def _option(code, data=b""):
    if len(data) > 0xFFFF:
        raise ValueError(f"option {code} is too long ({len(data)} bytes)")
    return struct.pack("=HH", code, len(data)) + data + b"\0" * _pad_len(len(data))


def _text(value):
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


_END = _option(Opt.END)


class PcapngDumper:
    """Writes PcapNG blocks to a binary stream.

    The section header block is written on construction.
    """

    def __init__(self, stream, comment=None, hardware=None, os_name=None,
                 user_application=None):
        self._stream = stream
        self._interfaces = 0
        self._closed = False
        self._owns_stream = False
        self._write_shb(comment, hardware, os_name, user_application)

    def _write(self, data):
        if self._closed:
            raise ValueError("dumper is closed")
        written = self._stream.write(data)
        if written is not None and written != len(data):
            raise OSError(f"short write: {written} of {len(data)} bytes")

    def _write_shb(self, comment, hardware, os_name, user_application):
        options = b"".join(
            _option(code, _text(value))
            for code, value in (
                (Opt.COMMENT, comment),
                (ShbOpt.HARDWARE, hardware),
                (ShbOpt.OS, os_name),
                (ShbOpt.USERAPPL, user_application),
            )
            if value is not None
        )
        length = 24 + len(options) + len(_END) + 4
        header = struct.pack("=IIIHHQ", PCAPNG_SECTION_BLOCK, length,
                             PCAPNG_BYTE_ORDER_MAGIC, PCAPNG_MAJOR_VERSION,
                             PCAPNG_MINOR_VERSION, UINT64_MAX)
        self._write(header + options + _END + struct.pack("=I", length))

    def add_interface(self, snap_len, name=None, description=None, mac=None,
                      speed=0, ts_resolution=6, hardware=None):
        """Write an interface description block and return its id."""
        if not 0 <= snap_len <= 0xFFFF:
            raise ValueError(f"snap_len out of range: {snap_len}")
        parts = []
        if name is not None:
            parts.append(_option(IdbOpt.IF_NAME, _text(name)))
        if description is not None:
            parts.append(_option(IdbOpt.IF_DESCRIPTION, _text(description)))
        if mac is not None:
            mac = bytes(mac)
            if len(mac) != 6:
                raise ValueError("MAC address must be 6 bytes")
            parts.append(_option(IdbOpt.IF_MAC_ADDR, mac))
        if speed:
            parts.append(_option(IdbOpt.IF_SPEED, struct.pack("=Q", speed)))
        if ts_resolution not in (0, 6):
            parts.append(_option(IdbOpt.IF_TSRESOL, bytes([ts_resolution])))
        if hardware is not None:
            parts.append(_option(IdbOpt.IF_HARDWARE, _text(hardware)))
        options = b"".join(parts)
        length = 16 + len(options) + len(_END) + 4
        header = struct.pack("=IIHHI", PCAPNG_INTERFACE_BLOCK, length,
                             LINKTYPE_ETHERNET, 0, snap_len)
        self._write(header + options + _END + struct.pack("=I", length))
        ifid = self._interfaces
        self._interfaces += 1
        return ifid

    def dump_enhanced_pkt(self, ifid, pkt, length=None, caplen=None,
                          timestamp=0, options=None):
        """Write an enhanced packet block holding the first *caplen* bytes.

        *length* is the original packet length; both default to len(pkt).
        *timestamp* is in units of the interface's time resolution.
        """
        pkt = bytes(pkt)
        if caplen is None:
            caplen = len(pkt)
        if length is None:
            length = len(pkt)
        if caplen > len(pkt):
            raise ValueError(f"caplen {caplen} exceeds packet size {len(pkt)}")
        if not 0 <= timestamp <= UINT64_MAX:
            raise ValueError(f"timestamp out of range: {timestamp}")
        opts = options if options is not None else EpbOptions()

        parts = []
        if opts.comment is not None:
            parts.append(_option(Opt.COMMENT, _text(opts.comment)))
        if opts.flags:
            parts.append(_option(EpbOpt.FLAGS, struct.pack("=I", int(opts.flags))))
        if opts.dropcount:
            parts.append(_option(EpbOpt.DROPCOUNT, struct.pack("=Q", opts.dropcount)))
        if opts.packetid is not None:
            parts.append(_option(EpbOpt.PACKETID, struct.pack("=Q", opts.packetid)))
        if opts.queue is not None:
            parts.append(_option(EpbOpt.QUEUE, struct.pack("=I", opts.queue)))
        if opts.xdp_verdict is not None:
            verdict = struct.pack("=Bq", VerdictType.EBPF_XDP, opts.xdp_verdict)
            parts.append(_option(EpbOpt.VERDICT, verdict))
        options_data = b"".join(parts)

        data = pkt[:caplen] + b"\0" * _pad_len(caplen)
        block_len = 28 + len(data) + len(options_data) + len(_END) + 4
        header = struct.pack("=IIIIIII", PCAPNG_ENHANCED_PACKET_BLOCK,
                             block_len, ifid, timestamp >> 32,
                             timestamp & 0xFFFFFFFF, caplen, length)
        self._write(header + data + options_data + _END
                    + struct.pack("=I", block_len))

    def flush(self):
        """Flush buffered data and sync it to storage where possible."""
        if self._closed:
            raise ValueError("dumper is closed")
        self._stream.flush()
        try:
            fd = self._stream.fileno()
        except (AttributeError, io.UnsupportedOperation):
            return
        os.fsync(fd)

    def close(self):
        """Stop writing; close the stream if the dumper opened it."""
        if self._closed:
            return
        self._closed = True
        if self._owns_stream:
            self._stream.close()
        else:
            self._stream.flush()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def dump_open(file, comment=None, hardware=None, os_name=None,
              user_application=None):
    """Create *file* (mode 0600) or use stdout for "-", and start a section."""
    if file is None:
        raise ValueError("no file given")
    if file == "-":
        return PcapngDumper(sys.stdout.buffer, comment, hardware, os_name,
                            user_application)
    fd = os.open(file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    stream = os.fdopen(fd, "wb")
    try:
        dumper = PcapngDumper(stream, comment, hardware, os_name,
                              user_application)
    except BaseException:
        stream.close()
        raise
    dumper._owns_stream = True
    return dumper