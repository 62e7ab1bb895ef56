"""Bounds-checked packet header parsing.

Each parser reads one header at the cursor position, advances the cursor and
returns a pair ``(value, header_bytes)``. The value is the type of the
payload for Ethernet and IP, the type field for ICMP, the opcode for ARP and
a length for UDP and TCP. All values are in host byte order. A header that
does not fit in the data, or is malformed, raises :class:`ParseError`.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

ETH_ALEN = 6
ETH_HLEN = 14
VLAN_HLEN = 4
IPV4_HLEN = 20
IPV6_HLEN = 40
IPV6_OPT_HLEN = 2
ARP_HLEN = 28
ICMP_HLEN = 8
ICMP6_HLEN = 8
ICMP_COMMON_HLEN = 4
UDP_HLEN = 8
TCP_HLEN = 20

ETH_P_IP = 0x0800
ETH_P_ARP = 0x0806
ETH_P_8021Q = 0x8100
ETH_P_IPV6 = 0x86DD
ETH_P_8021AD = 0x88A8

IPPROTO_HOPOPTS = 0
IPPROTO_ICMP = 1
IPPROTO_TCP = 6
IPPROTO_UDP = 17
IPPROTO_ROUTING = 43
IPPROTO_FRAGMENT = 44
IPPROTO_AH = 51
IPPROTO_ICMPV6 = 58
IPPROTO_DSTOPTS = 60
IPPROTO_MH = 135

ARPHRD_ETHER = 1
ARPOP_REQUEST = 1
ARPOP_REPLY = 2

VLAN_MAX_DEPTH = 4
IPV6_EXT_MAX_CHAIN = 6

_ARP = struct.Struct("!HHBBH6s4s6s4s")


class ParseError(ValueError):
    """A header is truncated or malformed."""


@dataclass
class HdrCursor:
    """Current parsing position within a packet."""

    pos: int = 0


def _claim(nh, data, size, what):
    start = nh.pos
    if start + size > len(data):
        raise ParseError(f"truncated {what} header")
    return start


def proto_is_vlan(h_proto):
    """Return True if *h_proto* is an 802.1Q or 802.1ad EtherType."""
    return h_proto in (ETH_P_8021Q, ETH_P_8021AD)


def parse_ethhdr(nh, data):
    """Parse an Ethernet header, skipping up to VLAN_MAX_DEPTH VLAN tags.

    Returns the EtherType of the payload and the Ethernet header bytes.
    """
    start = _claim(nh, data, ETH_HLEN, "Ethernet")
    (h_proto,) = struct.unpack_from("!H", data, start + 2 * ETH_ALEN)
    pos = start + ETH_HLEN
    for _ in range(VLAN_MAX_DEPTH):
        if not proto_is_vlan(h_proto):
            break
        if pos + VLAN_HLEN > len(data):
            break
        (h_proto,) = struct.unpack_from("!H", data, pos + 2)
        pos += VLAN_HLEN
    nh.pos = pos
    return h_proto, bytes(data[start:start + ETH_HLEN])


def skip_ip6hdrext(nh, data, next_hdr_type):
    """Skip IPv6 extension headers; return the first non-extension type."""
    for _ in range(IPV6_EXT_MAX_CHAIN):
        pos = _claim(nh, data, IPV6_OPT_HLEN, "IPv6 extension")
        nexthdr, hdrlen = data[pos], data[pos + 1]
        if next_hdr_type in (IPPROTO_HOPOPTS, IPPROTO_DSTOPTS,
                             IPPROTO_ROUTING, IPPROTO_MH):
            nh.pos = pos + (hdrlen + 1) * 8
        elif next_hdr_type == IPPROTO_AH:
            nh.pos = pos + (hdrlen + 2) * 4
        elif next_hdr_type == IPPROTO_FRAGMENT:
            nh.pos = pos + 8
        else:
            return next_hdr_type
        next_hdr_type = nexthdr
    raise ParseError("IPv6 extension header chain too long")


def parse_ip6hdr(nh, data):
    """Parse an IPv6 header and its extension headers."""
    start = _claim(nh, data, IPV6_HLEN, "IPv6")
    nexthdr = data[start + 6]
    nh.pos = start + IPV6_HLEN
    header = bytes(data[start:start + IPV6_HLEN])
    return skip_ip6hdrext(nh, data, nexthdr), header


def parse_iphdr(nh, data):
    """Parse an IPv4 header including options; return its protocol."""
    start = _claim(nh, data, IPV4_HLEN, "IPv4")
    hdrsize = (data[start] & 0x0F) * 4
    if start + hdrsize > len(data):
        raise ParseError("truncated IPv4 options")
    nh.pos = start + hdrsize
    return data[start + 9], bytes(data[start:start + hdrsize])


def parse_arphdr(nh, data):
    """Parse an Ethernet/IPv4 ARP header; return its opcode."""
    start = _claim(nh, data, ARP_HLEN, "ARP")
    ar_hrd, ar_pro, ar_hln, ar_pln, ar_op, *_ = _ARP.unpack_from(data, start)
    if (ar_hrd != ARPHRD_ETHER or ar_pro != ETH_P_IP
            or ar_hln != ETH_ALEN or ar_pln != 4):
        raise ParseError("unsupported ARP header")
    nh.pos = start + ARP_HLEN
    return ar_op, bytes(data[start:start + ARP_HLEN])


def parse_icmp6hdr(nh, data):
    """Parse an ICMPv6 header; return its type."""
    start = _claim(nh, data, ICMP6_HLEN, "ICMPv6")
    nh.pos = start + ICMP6_HLEN
    return data[start], bytes(data[start:start + ICMP6_HLEN])


def parse_icmphdr(nh, data):
    """Parse an ICMP header; return its type."""
    start = _claim(nh, data, ICMP_HLEN, "ICMP")
    nh.pos = start + ICMP_HLEN
    return data[start], bytes(data[start:start + ICMP_HLEN])


def parse_icmphdr_common(nh, data):
    """Parse the part common to ICMP and ICMPv6 headers; return the type."""
    start = _claim(nh, data, ICMP_COMMON_HLEN, "ICMP")
    nh.pos = start + ICMP_COMMON_HLEN
    return data[start], bytes(data[start:start + ICMP_COMMON_HLEN])


def parse_udphdr(nh, data):
    """Parse a UDP header; return the length of the UDP payload."""
    start = _claim(nh, data, UDP_HLEN, "UDP")
    nh.pos = start + UDP_HLEN
    (length,) = struct.unpack_from("!H", data, start + 4)
    payload_len = length - UDP_HLEN
    if payload_len < 0:
        raise ParseError("UDP length shorter than header")
    return payload_len, bytes(data[start:start + UDP_HLEN])


def parse_tcphdr(nh, data):
    """Parse a TCP header; return the header length including options.

    The cursor advances past the fixed part of the header only.
    """
    start = _claim(nh, data, TCP_HLEN, "TCP")
    length = (data[start + 12] >> 4) * 4
    if start + length > len(data):
        raise ParseError("truncated TCP options")
    nh.pos = start + TCP_HLEN
    return length, bytes(data[start:start + max(length, TCP_HLEN)])