"""XDP program actions, attach modes and BPF tag formatting."""

from __future__ import annotations

from enum import IntEnum

BPF_TAG_SIZE = 8


class XdpAction(IntEnum):
    """Return codes of an XDP program, plus a catch-all for unknown ones."""

    ABORTED = 0
    DROP = 1
    PASS = 2
    TX = 3
    REDIRECT = 4
    UNKNOWN = 5


class XdpMode(IntEnum):
    """Modes in which an XDP program can be attached to an interface."""

    UNSPEC = 0
    NATIVE = 1
    SKB = 2
    HW = 3


_MODE_NAMES = {
    XdpMode.NATIVE: "native",
    XdpMode.SKB: "skb",
    XdpMode.HW: "hw",
    XdpMode.UNSPEC: "unspecified",
}


def action2str(action):
    """Return the name of an XDP action, such as "XDP_PASS", or None."""
    try:
        return f"XDP_{XdpAction(action).name}"
    except ValueError:
        return None


def mode_name(mode):
    """Return the short name of an attach mode, or None if unknown."""
    try:
        return _MODE_NAMES[XdpMode(mode)]
    except ValueError:
        return None


def format_bpf_tag(tag):
    """Format an 8-byte BPF program tag as lower-case hex."""
    tag = bytes(tag)
    if len(tag) != BPF_TAG_SIZE:
        raise ValueError(f"BPF tag must be {BPF_TAG_SIZE} bytes, got {len(tag)}")
    return tag.hex()