import io
import os
import stat
import struct

import pytest

from xdputil.xpcapng import (
    PCAPNG_BYTE_ORDER_MAGIC,
    PCAPNG_ENHANCED_PACKET_BLOCK,
    PCAPNG_INTERFACE_BLOCK,
    PCAPNG_SECTION_BLOCK,
    UINT64_MAX,
    EpbFlags,
    EpbOptions,
    PcapngDumper,
    dump_open,
)


def _blocks(data):
    out = []
    off = 0
    while off < len(data):
        btype, length = struct.unpack_from("=II", data, off)
        block = data[off:off + length]
        assert length % 4 == 0
        assert struct.unpack_from("=I", block, length - 4)[0] == length
        out.append((btype, block))
        off += length
    assert off == len(data)
    return out


def _options(block, start):
    opts = []
    off = start
    while True:
        code, length = struct.unpack_from("=HH", block, off)
        if code == 0:
            assert off + 4 == len(block) - 4
            return opts
        opts.append((code, block[off + 4:off + 4 + length]))
        off += 4 + length + ((-length) % 4)


def test_section_header_without_options():
    buf = io.BytesIO()
    PcapngDumper(buf)
    [(btype, block)] = _blocks(buf.getvalue())
    assert btype == PCAPNG_SECTION_BLOCK
    magic, major, minor, section_len = struct.unpack_from("=IHHQ", block, 8)
    assert magic == PCAPNG_BYTE_ORDER_MAGIC
    assert (major, minor) == (1, 0)
    assert section_len == UINT64_MAX
    assert _options(block, 24) == []


def test_section_header_options_in_order():
    buf = io.BytesIO()
    PcapngDumper(buf, comment="hello", hardware="hw", os_name="Linux",
                 user_application="xdpdump")
    [(_, block)] = _blocks(buf.getvalue())
    assert _options(block, 24) == [
        (1, b"hello"), (2, b"hw"), (3, b"Linux"), (4, b"xdpdump"),
    ]


def test_add_interface_ids_are_sequential():
    buf = io.BytesIO()
    dumper = PcapngDumper(buf)
    assert dumper.add_interface(0xFFFF, name="eth0") == 0
    assert dumper.add_interface(0xFFFF, name="eth1") == 1
    blocks = _blocks(buf.getvalue())
    assert [b[0] for b in blocks] == [PCAPNG_SECTION_BLOCK,
                                      PCAPNG_INTERFACE_BLOCK,
                                      PCAPNG_INTERFACE_BLOCK]


def test_interface_block_fields_and_options():
    buf = io.BytesIO()
    dumper = PcapngDumper(buf)
    mac = bytes([0x02, 0, 0, 0, 0, 0x01])
    dumper.add_interface(1500, name="eth0", description="test nic", mac=mac,
                         speed=1000, ts_resolution=9, hardware="virt")
    _, block = _blocks(buf.getvalue())[1]
    link_type, reserved, snap_len = struct.unpack_from("=HHI", block, 8)
    assert (link_type, reserved, snap_len) == (1, 0, 1500)
    assert _options(block, 16) == [
        (2, b"eth0"), (3, b"test nic"), (6, mac),
        (8, struct.pack("=Q", 1000)), (9, bytes([9])), (15, b"virt"),
    ]


@pytest.mark.parametrize("resolution", [0, 6])
def test_default_ts_resolution_is_omitted(resolution):
    buf = io.BytesIO()
    dumper = PcapngDumper(buf)
    dumper.add_interface(100, ts_resolution=resolution)
    _, block = _blocks(buf.getvalue())[1]
    assert _options(block, 16) == []


def test_interface_rejects_bad_mac():
    dumper = PcapngDumper(io.BytesIO())
    with pytest.raises(ValueError):
        dumper.add_interface(100, mac=b"\x01\x02")


def test_enhanced_packet_block_basic():
    buf = io.BytesIO()
    dumper = PcapngDumper(buf)
    ifid = dumper.add_interface(0xFFFF)
    pkt = bytes(range(7))
    ts = (5 << 32) | 17
    dumper.dump_enhanced_pkt(ifid, pkt, len(pkt), len(pkt), ts)
    btype, block = _blocks(buf.getvalue())[2]
    assert btype == PCAPNG_ENHANCED_PACKET_BLOCK
    fields = struct.unpack_from("=IIIII", block, 8)
    assert fields == (ifid, 5, 17, len(pkt), len(pkt))
    assert block[28:28 + len(pkt)] == pkt
    assert block[28 + len(pkt):28 + len(pkt) + 1] == b"\0"
    assert _options(block, 28 + len(pkt) + 1) == []


def test_enhanced_packet_truncated_capture():
    buf = io.BytesIO()
    dumper = PcapngDumper(buf)
    pkt = b"abcdefghij"
    dumper.dump_enhanced_pkt(0, pkt, len(pkt), 4, 0)
    _, block = _blocks(buf.getvalue())[1]
    caplen, origlen = struct.unpack_from("=II", block, 20)
    assert (caplen, origlen) == (4, len(pkt))
    assert block[28:32] == b"abcd"
    assert _options(block, 32) == []


def test_enhanced_packet_options_order():
    buf = io.BytesIO()
    dumper = PcapngDumper(buf)
    opts = EpbOptions(flags=EpbFlags.INBOUND, dropcount=3, packetid=42,
                      queue=7, xdp_verdict=2, comment="note")
    dumper.dump_enhanced_pkt(0, b"\xaa" * 8, options=opts)
    _, block = _blocks(buf.getvalue())[1]
    assert _options(block, 36) == [
        (1, b"note"),
        (2, struct.pack("=I", 1)),
        (4, struct.pack("=Q", 3)),
        (5, struct.pack("=Q", 42)),
        (6, struct.pack("=I", 7)),
        (7, struct.pack("=Bq", 2, 2)),
    ]


def test_enhanced_packet_caplen_too_large():
    dumper = PcapngDumper(io.BytesIO())
    with pytest.raises(ValueError):
        dumper.dump_enhanced_pkt(0, b"abc", 3, 10, 0)


def test_option_too_long_raises():
    with pytest.raises(ValueError):
        PcapngDumper(io.BytesIO(), comment="x" * 70000)


def test_closed_dumper_refuses_writes_but_keeps_stream():
    buf = io.BytesIO()
    dumper = PcapngDumper(buf)
    dumper.close()
    assert not buf.closed
    with pytest.raises(ValueError):
        dumper.dump_enhanced_pkt(0, b"abc")


def test_dump_open_file_roundtrip(tmp_path):
    path = tmp_path / "cap.pcapng"
    with dump_open(str(path), comment="c") as dumper:
        ifid = dumper.add_interface(0xFFFF, name="lo")
        dumper.dump_enhanced_pkt(ifid, b"\x01\x02\x03\x04")
        dumper.flush()
        assert path.stat().st_size > 0
    blocks = _blocks(path.read_bytes())
    assert [b[0] for b in blocks] == [PCAPNG_SECTION_BLOCK,
                                      PCAPNG_INTERFACE_BLOCK,
                                      PCAPNG_ENHANCED_PACKET_BLOCK]
    assert _options(blocks[0][1], 24) == [(1, b"c")]
    assert stat.S_IMODE(os.stat(path).st_mode) & 0o077 == 0


def test_dump_open_closes_owned_file(tmp_path):
    path = tmp_path / "cap.pcapng"
    dumper = dump_open(str(path))
    dumper.close()
    assert dumper._stream.closed


def test_dump_open_requires_file():
    with pytest.raises(ValueError):
        dump_open(None)