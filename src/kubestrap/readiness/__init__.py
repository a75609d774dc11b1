"""Readiness probing for launched services.

One polling protocol for every service: a ProbeSpec names the targets, the
consecutive-success threshold and the attempt budget; ReadinessProber
blocks until the policy is met or raises ReadinessTimeout.
"""

from .prober import ProbeResult, ProbeSpec, ReadinessProber
from .targets import (
    CommandTarget,
    HttpTarget,
    Outcome,
    ProbeContext,
    ProbeTarget,
    TargetResult,
    TcpTarget,
    UnixSocketTarget,
    auth_headers,
)

__all__ = [
    # Prober
    "ProbeSpec",
    "ProbeResult",
    "ReadinessProber",
    # Targets
    "ProbeTarget",
    "ProbeContext",
    "TargetResult",
    "Outcome",
    "HttpTarget",
    "TcpTarget",
    "UnixSocketTarget",
    "CommandTarget",
    "auth_headers",
]
