"""Userspace helpers for XDP tooling: logging, packet parsing, pcapng writing, bpffs helpers, actions and stats."""

__version__ = "1.5.7"

__all__ = [
    "actions",
    "log",
    "parsing",
    "stats",
    "util",
    "xpcapng",
]