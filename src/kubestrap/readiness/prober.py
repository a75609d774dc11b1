"""Readiness polling for launched services.

Turns "the process was started" into "the service answers requests". One
generic loop serves every service; what differs between them is only the
ProbeSpec: which targets to try, how many consecutive good rounds to demand
and how long to keep trying.
"""

from __future__ import annotations

import asyncio
import ssl
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from ..errors import ReadinessTimeout
from ..shared.logging import get_logger
from .targets import Outcome, ProbeContext, ProbeTarget, TargetResult

logger = get_logger(__name__)

# Log a progress line every this many rounds
PROGRESS_EVERY = 10


@dataclass(frozen=True)
class ProbeSpec:
    """What "ready" means for one service.

    Raises:
        ValueError: On construction, if the policy can never be satisfied
            or a bound is out of range.
    """

    targets: Sequence[ProbeTarget]
    success_threshold: int = 1
    max_attempts: int = 30
    interval: float = 1.0
    per_attempt_timeout: float = 2.0
    credential: str | None = field(default=None, repr=False)
    name: str = "service"
    verify: bool | str | Path = False  # TLS verification: False, True or a CA bundle path
    log_path: Path | None = None
    pid: int | None = None  # launched daemon, for diagnostics

    def __post_init__(self) -> None:
        object.__setattr__(self, "targets", tuple(self.targets))
        if not self.targets:
            raise ValueError(f"{self.name}: at least one probe target is required")
        if self.success_threshold < 1:
            raise ValueError(f"{self.name}: success_threshold must be >= 1")
        if self.max_attempts < 1:
            raise ValueError(f"{self.name}: max_attempts must be >= 1")
        if self.success_threshold > self.max_attempts:
            raise ValueError(
                f"{self.name}: success_threshold ({self.success_threshold}) exceeds "
                f"max_attempts ({self.max_attempts}); the probe could never succeed"
            )
        if self.interval < 0:
            raise ValueError(f"{self.name}: interval must be >= 0")
        if self.per_attempt_timeout <= 0:
            raise ValueError(f"{self.name}: per_attempt_timeout must be > 0")

    @property
    def deadline_seconds(self) -> float:
        """Wall-clock budget for the whole probe."""
        return self.max_attempts * (self.interval + self.per_attempt_timeout)


@dataclass
class ProbeResult:
    """Result of a successful readiness wait."""

    ready: bool
    attempts: int = 0
    consecutive: int = 0
    elapsed_seconds: float = 0.0
    target: str | None = None


AttemptCallback = Callable[[int, int, int, "str | None"], None]


class ReadinessProber:
    """Poll probe targets until a ProbeSpec is satisfied."""

    def __init__(
        self,
        diagnostics: Callable[[ProbeSpec], str | None] | None = None,
        sleep: Callable[[float], object] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize readiness prober.

        Args:
            diagnostics: Called once when a probe is exhausted; its text is
                logged and attached to the ReadinessTimeout.
            sleep: Coroutine function used between rounds.
            clock: Monotonic clock used for the deadline.
        """
        self.diagnostics = diagnostics
        self._sleep = sleep
        self._clock = clock

    async def wait_until_ready(
        self,
        spec: ProbeSpec,
        on_attempt: AttemptCallback | None = None,
    ) -> ProbeResult:
        """Poll the probe targets until success_threshold consecutive rounds pass.

        Args:
            spec: Probe policy
            on_attempt: Optional callback called with
                (attempt, max_attempts, consecutive, error) after every round.

        Returns:
            ProbeResult for the satisfied probe.

        Raises:
            ReadinessTimeout: If attempts or the deadline run out first.
        """
        start = self._clock()
        consecutive = 0
        last_error: str | None = None
        attempt = 0

        logger.info(
            "readiness_wait_started",
            service=spec.name,
            targets=[str(t) for t in spec.targets],
            threshold=spec.success_threshold,
            max_attempts=spec.max_attempts,
        )

        verify = spec.verify
        if isinstance(verify, (str, Path)):
            verify = ssl.create_default_context(cafile=str(verify))

        async with httpx.AsyncClient(verify=verify, timeout=spec.per_attempt_timeout) as client:
            ctx = ProbeContext(http=client, timeout=spec.per_attempt_timeout)

            for attempt in range(1, spec.max_attempts + 1):
                ok, detail = await self._run_round(spec, ctx)

                if ok:
                    consecutive += 1
                else:
                    consecutive = 0
                    last_error = detail

                if on_attempt:
                    on_attempt(attempt, spec.max_attempts, consecutive, None if ok else detail)

                if consecutive >= spec.success_threshold:
                    elapsed = self._clock() - start
                    logger.info(
                        "service_ready",
                        service=spec.name,
                        attempts=attempt,
                        elapsed=round(elapsed, 2),
                        target=detail,
                    )
                    return ProbeResult(
                        ready=True,
                        attempts=attempt,
                        consecutive=consecutive,
                        elapsed_seconds=elapsed,
                        target=detail,
                    )

                if attempt % PROGRESS_EVERY == 0:
                    logger.info(
                        "still_waiting",
                        service=spec.name,
                        attempt=attempt,
                        max_attempts=spec.max_attempts,
                        consecutive=consecutive,
                        threshold=spec.success_threshold,
                    )
                else:
                    logger.debug("probe_round", service=spec.name, attempt=attempt, ok=ok, detail=detail)

                if attempt >= spec.max_attempts:
                    break
                if self._deadline_passed(spec, start, attempt):
                    break

                await self._sleep(spec.interval)
                if self._deadline_passed(spec, start, attempt):
                    break

        elapsed = self._clock() - start
        diagnostics = self._collect_diagnostics(spec)
        message = (
            f"{spec.name} did not become ready after {attempt} attempts "
            f"({elapsed:.1f}s). Last error: {last_error}"
        )
        if spec.log_path:
            message += f". Check: tail -100 {spec.log_path}"
        raise ReadinessTimeout(
            message=message,
            attempts=attempt,
            last_error=last_error,
            diagnostics=diagnostics,
            log_path=spec.log_path,
        )

    def _deadline_passed(self, spec: ProbeSpec, start: float, attempt: int) -> bool:
        if self._clock() - start < spec.deadline_seconds:
            return False
        logger.warning("readiness_deadline_reached", service=spec.name, attempt=attempt)
        return True

    async def _run_round(self, spec: ProbeSpec, ctx: ProbeContext) -> tuple[bool, str | None]:
        """Try every target in order; the round passes on the first success.

        Returns:
            (True, description of the answering target) or (False, combined errors)
        """
        errors: list[str] = []
        for target in spec.targets:
            result = await self._probe_target(target, ctx, spec.credential)
            if result.ok:
                return True, target.describe()
            errors.append(result.detail or f"{target}: {result.outcome.value}")
        return False, "; ".join(errors)

    async def _probe_target(
        self, target: ProbeTarget, ctx: ProbeContext, credential: str | None
    ) -> TargetResult:
        """Probe one target, retrying once with the credential if denied."""
        try:
            result = await target.probe(ctx)
            if result.outcome is Outcome.DENIED and credential:
                logger.debug("probe_denied_retrying_with_credential", target=str(target))
                result = await target.probe(ctx, credential=credential)
        except Exception as e:
            result = TargetResult(Outcome.FAILED, f"{target}: {str(e) or type(e).__name__}")
        return result

    def _collect_diagnostics(self, spec: ProbeSpec) -> str | None:
        if not self.diagnostics:
            return None
        try:
            text = self.diagnostics(spec)
        except Exception as e:
            logger.warning("diagnostics_failed", service=spec.name, error=str(e))
            return None
        if text:
            logger.warning("readiness_diagnostics", service=spec.name, diagnostics=text)
        return text
