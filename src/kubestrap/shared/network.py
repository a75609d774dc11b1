"""Host network helpers."""

from __future__ import annotations

import ipaddress
import socket

LOOPBACK_IP = "127.0.0.1"


def detect_host_ip(probe_address: str = "10.255.255.255") -> str:
    """Return the primary non-loopback IPv4 address of this host.

    Opens a UDP socket towards a non-routable address so the kernel picks the
    outgoing interface; nothing is sent. Falls back to the hostname lookup,
    then to loopback.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect((probe_address, 1))
        address = sock.getsockname()[0]
        if not is_loopback(address):
            return address
    except OSError:
        pass
    finally:
        sock.close()

    try:
        address = socket.gethostbyname(socket.gethostname())
        if not is_loopback(address):
            return address
    except OSError:
        pass

    return LOOPBACK_IP


def is_loopback(address: str) -> bool:
    """Whether address parses as a loopback IP. Unparseable values are not."""
    try:
        return ipaddress.ip_address(address).is_loopback
    except ValueError:
        return False
