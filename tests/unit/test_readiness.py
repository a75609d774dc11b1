"""Unit tests for the readiness prober and probe targets."""

from __future__ import annotations

import asyncio
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from kubestrap.errors import ReadinessTimeout
from kubestrap.readiness import (
    CommandTarget,
    HttpTarget,
    Outcome,
    ProbeContext,
    ProbeSpec,
    ProbeTarget,
    ReadinessProber,
    TargetResult,
    TcpTarget,
    UnixSocketTarget,
    auth_headers,
)


class ScriptedTarget(ProbeTarget):
    """Target that answers from a fixed script of booleans."""

    def __init__(self, script, name="scripted"):
        self.script = list(script)
        self.name = name
        self.calls = 0

    def describe(self) -> str:
        return self.name

    async def probe(self, ctx, credential=None) -> TargetResult:
        ok = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        return TargetResult(Outcome.OK if ok else Outcome.FAILED, None if ok else f"{self.name} down")


class FakeClock:
    """Monotonic clock that only moves when the prober sleeps."""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += self.step


def make_prober(**kwargs) -> ReadinessProber:
    return ReadinessProber(sleep=AsyncMock(), **kwargs)


class TestProbeSpec:
    """Tests for ProbeSpec validation."""

    def test_threshold_above_attempts_rejected(self):
        """A threshold the attempt budget can never reach is refused, not clamped."""
        with pytest.raises(ValueError, match="exceeds"):
            ProbeSpec(targets=[ScriptedTarget([True])], success_threshold=5, max_attempts=4)

    def test_credential_hidden_from_repr(self):
        spec = ProbeSpec(targets=[ScriptedTarget([True])], credential="s3cret")
        assert "s3cret" not in repr(spec)
        assert spec.credential == "s3cret"

    def test_threshold_equal_to_attempts_allowed(self):
        spec = ProbeSpec(targets=[ScriptedTarget([True])], success_threshold=4, max_attempts=4)
        assert spec.success_threshold == 4

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"success_threshold": 0},
            {"max_attempts": 0},
            {"interval": -1.0},
            {"per_attempt_timeout": 0},
        ],
    )
    def test_out_of_range_rejected(self, kwargs):
        with pytest.raises(ValueError):
            ProbeSpec(targets=[ScriptedTarget([True])], **kwargs)

    def test_empty_targets_rejected(self):
        with pytest.raises(ValueError, match="target"):
            ProbeSpec(targets=[])

    def test_deadline_is_positive_with_zero_interval(self):
        spec = ProbeSpec(targets=[ScriptedTarget([True])], max_attempts=10, interval=0, per_attempt_timeout=2)
        assert spec.deadline_seconds == 20


class TestConsecutiveThreshold:
    """Tests for the consecutive-success counter."""

    @pytest.mark.asyncio
    async def test_threshold_three_needs_three_rounds(self):
        """Three healthy targets still take exactly three rounds at threshold 3."""
        targets = [ScriptedTarget([True], name=f"t{i}") for i in range(3)]
        spec = ProbeSpec(targets=targets, success_threshold=3, max_attempts=10)

        result = await make_prober().wait_until_ready(spec)

        assert result.ready is True
        assert result.attempts == 3
        assert result.consecutive == 3
        # The round short-circuits on the first healthy target
        assert targets[0].calls == 3
        assert targets[1].calls == 0

    @pytest.mark.asyncio
    async def test_counter_resets_on_failure(self):
        """A failure in between restarts the count."""
        target = ScriptedTarget([True, True, False, True, True, True])
        spec = ProbeSpec(targets=[target], success_threshold=3, max_attempts=10)

        result = await make_prober().wait_until_ready(spec)

        assert result.attempts == 6

    @pytest.mark.asyncio
    async def test_first_round_failure_resets(self):
        target = ScriptedTarget([False, True])
        spec = ProbeSpec(targets=[target], success_threshold=1, max_attempts=5)

        result = await make_prober().wait_until_ready(spec)

        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_non_consecutive_successes_do_not_count(self):
        """Three successes spread over five rounds never satisfy threshold 3."""
        target = ScriptedTarget([True, False, True, False, True])
        spec = ProbeSpec(targets=[target], success_threshold=3, max_attempts=5)

        with pytest.raises(ReadinessTimeout) as exc_info:
            await make_prober().wait_until_ready(spec)

        assert exc_info.value.attempts == 5

    @pytest.mark.asyncio
    async def test_falls_through_to_next_target(self):
        """A round passes when a later target answers."""
        down = ScriptedTarget([False], name="down")
        up = ScriptedTarget([True], name="up")
        spec = ProbeSpec(targets=[down, up], success_threshold=1, max_attempts=3)

        result = await make_prober().wait_until_ready(spec)

        assert result.target == "up"
        assert down.calls == 1


class TestReadinessTimeout:
    """Tests for exhaustion handling."""

    @pytest.mark.asyncio
    async def test_timeout_carries_last_error_and_log_hint(self, tmp_path):
        spec = ProbeSpec(
            targets=[ScriptedTarget([False], name="etcd-health")],
            max_attempts=3,
            name="etcd",
            log_path=tmp_path / "etcd.log",
        )

        with pytest.raises(ReadinessTimeout) as exc_info:
            await make_prober().wait_until_ready(spec)

        error = exc_info.value
        assert error.attempts == 3
        assert error.last_error == "etcd-health down"
        assert error.log_path == tmp_path / "etcd.log"
        assert f"tail -100 {tmp_path / 'etcd.log'}" in str(error)

    @pytest.mark.asyncio
    async def test_diagnostics_collected_once(self):
        diagnostics = MagicMock(return_value="etcd is not running")
        spec = ProbeSpec(targets=[ScriptedTarget([False])], max_attempts=4, name="etcd")

        with pytest.raises(ReadinessTimeout) as exc_info:
            await make_prober(diagnostics=diagnostics).wait_until_ready(spec)

        diagnostics.assert_called_once_with(spec)
        assert exc_info.value.diagnostics == "etcd is not running"

    @pytest.mark.asyncio
    async def test_failing_diagnostics_do_not_mask_timeout(self):
        diagnostics = MagicMock(side_effect=RuntimeError("pgrep exploded"))
        spec = ProbeSpec(targets=[ScriptedTarget([False])], max_attempts=2)

        with pytest.raises(ReadinessTimeout) as exc_info:
            await make_prober(diagnostics=diagnostics).wait_until_ready(spec)

        assert exc_info.value.diagnostics is None

    @pytest.mark.asyncio
    async def test_deadline_stops_early(self):
        """The wall-clock deadline ends the wait before max_attempts."""
        clock = FakeClock(step=60)
        target = ScriptedTarget([False])
        spec = ProbeSpec(targets=[target], max_attempts=100, interval=0, per_attempt_timeout=1)

        with pytest.raises(ReadinessTimeout) as exc_info:
            await ReadinessProber(sleep=clock.sleep, clock=clock).wait_until_ready(spec)

        # the sleep after round 2 crosses the 100s deadline; no third round starts
        assert exc_info.value.attempts == 2
        assert target.calls == 2

    @pytest.mark.asyncio
    async def test_sleeps_between_rounds_only(self):
        sleep = AsyncMock()
        spec = ProbeSpec(targets=[ScriptedTarget([False])], max_attempts=3, interval=0.5)

        with pytest.raises(ReadinessTimeout):
            await ReadinessProber(sleep=sleep).wait_until_ready(spec)

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_on_attempt_callback(self):
        calls = []
        spec = ProbeSpec(targets=[ScriptedTarget([False, True])], max_attempts=5)

        await make_prober().wait_until_ready(spec, on_attempt=lambda *args: calls.append(args))

        assert calls == [(1, 5, 0, "scripted down"), (2, 5, 1, None)]


class TestCredentialFallback:
    """Tests for bearer-credential fallback on denied HTTP targets."""

    @staticmethod
    def denied_without_token():
        async def get(url, headers=None, timeout=None):
            response = MagicMock()
            response.status_code = 200 if headers and "Authorization" in headers else 401
            return response

        return get

    @pytest.mark.asyncio
    async def test_without_credential_exhausts(self):
        """Every round is denied and the wait times out."""
        spec = ProbeSpec(
            targets=[HttpTarget("https://127.0.0.1:6443/readyz"), HttpTarget("https://127.0.0.1:6443/livez")],
            max_attempts=4,
        )

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client_class.return_value.__aenter__.return_value = mock_client
            mock_client.get.side_effect = self.denied_without_token()

            with pytest.raises(ReadinessTimeout) as exc_info:
                await make_prober().wait_until_ready(spec)

        assert exc_info.value.attempts == 4
        assert "HTTP 401" in exc_info.value.last_error

    @pytest.mark.asyncio
    async def test_with_credential_succeeds(self):
        """The denied request is retried with the bearer token in the same round."""
        spec = ProbeSpec(
            targets=[HttpTarget("https://127.0.0.1:6443/readyz")],
            success_threshold=2,
            max_attempts=4,
            credential="s3cret",
        )

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client_class.return_value.__aenter__.return_value = mock_client
            mock_client.get.side_effect = self.denied_without_token()

            result = await make_prober().wait_until_ready(spec)

        assert result.attempts == 2
        # anonymous then authenticated, twice
        assert mock_client.get.await_count == 4
        last_headers = mock_client.get.await_args.kwargs["headers"]
        assert last_headers == {"Authorization": "Bearer s3cret"}

    @pytest.mark.asyncio
    async def test_ca_bundle_becomes_ssl_context(self, tmp_path):
        """A CA path is loaded into an SSL context for the client."""
        spec = ProbeSpec(targets=[HttpTarget("https://127.0.0.1:6443/readyz")], verify=tmp_path / "ca.crt")

        with patch("ssl.create_default_context") as mock_ssl, patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client_class.return_value.__aenter__.return_value = mock_client
            mock_client.get.return_value = MagicMock(status_code=200)

            await make_prober().wait_until_ready(spec)

        mock_ssl.assert_called_once_with(cafile=str(tmp_path / "ca.crt"))
        assert mock_client_class.call_args.kwargs["verify"] is mock_ssl.return_value


class TestHttpTarget:
    """Tests for HttpTarget classification."""

    @staticmethod
    def ctx(response=None, error=None) -> ProbeContext:
        client = AsyncMock()
        if error is not None:
            client.get.side_effect = error
        else:
            client.get.return_value = response
        return ProbeContext(http=client, timeout=1.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,outcome",
        [(200, Outcome.OK), (204, Outcome.OK), (401, Outcome.DENIED), (403, Outcome.DENIED), (500, Outcome.FAILED)],
    )
    async def test_status_classification(self, status, outcome):
        result = await HttpTarget("http://x/health").probe(self.ctx(MagicMock(status_code=status)))
        assert result.outcome is outcome

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        result = await HttpTarget("http://x/health").probe(self.ctx(error=httpx.ConnectError("refused")))
        assert result.outcome is Outcome.FAILED
        assert "connection refused" in result.detail

    @pytest.mark.asyncio
    async def test_timeout(self):
        result = await HttpTarget("http://x/health").probe(self.ctx(error=httpx.ReadTimeout("slow")))
        assert "timeout" in result.detail

    @pytest.mark.asyncio
    async def test_slow_response_bounded_by_attempt_timeout(self):
        """A response trickling in past the timeout fails the attempt."""

        async def slow_get(url, headers=None, timeout=None):
            await asyncio.sleep(5)
            return MagicMock(status_code=200)

        client = AsyncMock()
        client.get.side_effect = slow_get

        result = await HttpTarget("http://x/health").probe(ProbeContext(http=client, timeout=0.05))

        assert result.outcome is Outcome.FAILED
        assert "timeout" in result.detail

    def test_auth_headers(self):
        assert auth_headers("abc") == {"Authorization": "Bearer abc"}
        assert auth_headers(None) == {}


class TestSocketTargets:
    """Tests for TCP, unix socket and command targets against real endpoints."""

    @pytest.mark.asyncio
    async def test_tcp_target_connects(self):
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            result = await TcpTarget("127.0.0.1", port).probe(ProbeContext(http=None, timeout=2.0))
        finally:
            server.close()
            await server.wait_closed()

        assert result.ok

    @pytest.mark.asyncio
    async def test_tcp_target_refused(self):
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        result = await TcpTarget("127.0.0.1", port).probe(ProbeContext(http=None, timeout=2.0))

        assert result.outcome is Outcome.FAILED

    @pytest.mark.asyncio
    async def test_unix_socket_target(self, tmp_path):
        path = tmp_path / "c.sock"
        missing = await UnixSocketTarget(path).probe(ProbeContext(http=None, timeout=1.0))
        assert missing.outcome is Outcome.FAILED

        server = await asyncio.start_unix_server(lambda r, w: w.close(), path=str(path))
        try:
            result = await UnixSocketTarget(path).probe(ProbeContext(http=None, timeout=1.0))
        finally:
            server.close()
            await server.wait_closed()

        assert result.ok

    @pytest.mark.asyncio
    async def test_command_target_exit_status(self):
        ok = CommandTarget([sys.executable, "-c", "raise SystemExit(0)"])
        bad = CommandTarget([sys.executable, "-c", "import sys; sys.stderr.write('not ready\\n'); sys.exit(3)"])
        ctx = ProbeContext(http=None, timeout=10.0)

        assert (await ok.probe(ctx)).ok
        failed = await bad.probe(ctx)
        assert failed.outcome is Outcome.FAILED
        assert failed.detail.endswith("not ready")

    @pytest.mark.asyncio
    async def test_command_target_missing_binary(self, tmp_path):
        result = await CommandTarget([tmp_path / "nope"]).probe(ProbeContext(http=None, timeout=1.0))
        assert result.outcome is Outcome.FAILED

    @pytest.mark.asyncio
    async def test_command_target_timeout(self):
        slow = CommandTarget([sys.executable, "-c", "import time; time.sleep(30)"])
        result = await slow.probe(ProbeContext(http=None, timeout=0.5))
        assert "timed out" in result.detail

    def test_command_target_equality(self):
        assert CommandTarget(["kubectl", "get", "nodes"]) == CommandTarget(("kubectl", "get", "nodes"))
