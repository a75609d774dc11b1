"""Shared utilities for kubestrap.

Provides logging configuration and host network helpers used by every
installer component.
"""

from .logging import configure_logging, get_logger, log_context
from .network import LOOPBACK_IP, detect_host_ip, is_loopback

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "log_context",
    # Network
    "LOOPBACK_IP",
    "detect_host_ip",
    "is_loopback",
]
