"""Probe targets for the readiness prober.

A target knows how to ask one endpoint "are you up?" over one transport and
classifies the answer as ok, denied (authentication required) or failed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import httpx


class Outcome(Enum):
    """Classification of a single probe."""

    OK = "ok"
    DENIED = "denied"  # 401/403: retry with a credential may help
    FAILED = "failed"


@dataclass
class TargetResult:
    """Result of probing one target once."""

    outcome: Outcome
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


@dataclass
class ProbeContext:
    """Per-call resources shared by every target of a probe round."""

    http: httpx.AsyncClient
    timeout: float


def auth_headers(token: str | None) -> dict[str, str]:
    """Build Authorization header dict.

    Args:
        token: Bearer token string

    Returns:
        Dict with Authorization header, or empty dict if no token
    """
    if token:
        return {"Authorization": f"Bearer {token}"}
    return {}


class ProbeTarget:
    """Base class for probe targets."""

    def describe(self) -> str:
        raise NotImplementedError

    async def probe(self, ctx: ProbeContext, credential: str | None = None) -> TargetResult:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class HttpTarget(ProbeTarget):
    """HTTP(S) GET; any 2xx is success, 401/403 is denied."""

    url: str

    def describe(self) -> str:
        return self.url

    async def probe(self, ctx: ProbeContext, credential: str | None = None) -> TargetResult:
        try:
            response = await asyncio.wait_for(
                ctx.http.get(self.url, headers=auth_headers(credential), timeout=ctx.timeout),
                timeout=ctx.timeout,
            )
        except httpx.ConnectError:
            return TargetResult(Outcome.FAILED, f"{self.url}: connection refused")
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return TargetResult(Outcome.FAILED, f"{self.url}: request timeout")
        except httpx.HTTPError as e:
            return TargetResult(Outcome.FAILED, f"{self.url}: {e}")

        status = response.status_code
        if 200 <= status < 300:
            return TargetResult(Outcome.OK)
        if status in (401, 403):
            return TargetResult(Outcome.DENIED, f"{self.url}: HTTP {status}")
        return TargetResult(Outcome.FAILED, f"{self.url}: HTTP {status}")


@dataclass(frozen=True)
class TcpTarget(ProbeTarget):
    """TCP connect; an accepted connection is success."""

    host: str
    port: int

    def describe(self) -> str:
        return f"tcp://{self.host}:{self.port}"

    async def probe(self, ctx: ProbeContext, credential: str | None = None) -> TargetResult:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=ctx.timeout
            )
        except asyncio.TimeoutError:
            return TargetResult(Outcome.FAILED, f"{self.describe()}: connect timeout")
        except OSError as e:
            return TargetResult(Outcome.FAILED, f"{self.describe()}: {e.strerror or e}")

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return TargetResult(Outcome.OK)


@dataclass(frozen=True)
class UnixSocketTarget(ProbeTarget):
    """Unix domain socket connect; an accepted connection is success."""

    path: Path

    def describe(self) -> str:
        return f"unix://{self.path}"

    async def probe(self, ctx: ProbeContext, credential: str | None = None) -> TargetResult:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self.path)), timeout=ctx.timeout
            )
        except asyncio.TimeoutError:
            return TargetResult(Outcome.FAILED, f"{self.describe()}: connect timeout")
        except OSError as e:
            return TargetResult(Outcome.FAILED, f"{self.describe()}: {e.strerror or e}")

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return TargetResult(Outcome.OK)


@dataclass(frozen=True, init=False)
class CommandTarget(ProbeTarget):
    """Run a command; exit status 0 is success."""

    argv: tuple[str, ...]
    env: Mapping[str, str] | None = field(default=None, compare=False)

    def __init__(self, argv: Sequence[str], env: Mapping[str, str] | None = None):
        object.__setattr__(self, "argv", tuple(str(a) for a in argv))
        object.__setattr__(self, "env", env)

    def describe(self) -> str:
        return " ".join(self.argv)

    async def probe(self, ctx: ProbeContext, credential: str | None = None) -> TargetResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=dict(self.env) if self.env is not None else None,
            )
        except OSError as e:
            return TargetResult(Outcome.FAILED, f"{self.argv[0]}: {e.strerror or e}")

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=ctx.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return TargetResult(Outcome.FAILED, f"{self.describe()}: timed out")

        if process.returncode == 0:
            return TargetResult(Outcome.OK)

        lines = (stderr or b"").decode(errors="replace").strip().splitlines()
        reason = lines[-1] if lines else f"exit status {process.returncode}"
        return TargetResult(Outcome.FAILED, f"{self.describe()}: {reason}")
