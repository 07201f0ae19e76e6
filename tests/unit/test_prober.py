"""
Unit tests for the health prober.
"""

import asyncio
import socket

import pytest
from aiohttp import web

from portscout.health.prober import (
    HealthProber,
    HealthTier,
    classify_latency,
)
from portscout.utils.notifications import EventKind, QueueObserver

from tests.utils.async_helpers import wait_for_condition


def free_port() -> int:
    """A port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def http_server():
    """Local aiohttp server with fast, slow and failing routes."""
    async def ok(request):
        return web.Response(text="ok")

    async def slow(request):
        await asyncio.sleep(float(request.query.get("delay", "0.6")))
        return web.Response(text="slow")

    async def broken(request):
        return web.Response(status=500)

    app = web.Application()
    app.router.add_get("/", ok)
    app.router.add_get("/slow", slow)
    app.router.add_get("/broken", broken)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


class FakePing:
    """Scripted latencies or failures per URL."""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []
        self.gate = None

    async def __call__(self, session, url):
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.get(url, 10.0)
        if isinstance(result, Exception):
            raise result
        return result


class TestClassifyLatency:
    """Test tier boundaries."""

    @pytest.mark.parametrize("ms,tier", [
        (0, HealthTier.HEALTHY),
        (499, HealthTier.HEALTHY),
        (500, HealthTier.SLOW),
        (1999, HealthTier.SLOW),
        (2000, HealthTier.DOWN),
        (5000, HealthTier.DOWN),
    ])
    def test_boundaries(self, ms, tier):
        """Test thresholds are half-open."""
        assert classify_latency(ms) is tier


class TestCheckAll:
    """Test probe rounds against scripted results."""

    @pytest.mark.asyncio
    async def test_records_per_target(self):
        """Test every target gets a classified record."""
        ping = FakePing({"http://a": 100.0, "http://b": 800.0, "http://c": 2500.0})
        observer = QueueObserver()
        prober = HealthProber(ping=ping, observer=observer)
        prober.set_targets([("1:1", "http://a"), ("2:2", "http://b"), ("3:3", "http://c")])

        records = await prober.check_all()

        by_key = {r.key: r for r in records}
        assert by_key["1:1"].status is HealthTier.HEALTHY
        assert by_key["1:1"].response_time_ms == 100.0
        assert by_key["2:2"].status is HealthTier.SLOW
        assert by_key["3:3"].status is HealthTier.DOWN
        assert by_key["3:3"].error is None

        [event] = observer.drain()
        assert event.kind is EventKind.UPDATE
        assert event.source == "health"
        assert len(event.payload) == 3

    @pytest.mark.asyncio
    async def test_failure_is_down_with_error(self):
        """Test a failed request records the error and no latency."""
        ping = FakePing({"http://a": ConnectionRefusedError("refused")})
        prober = HealthProber(ping=ping)
        prober.set_targets([("1:1", "http://a")])

        [record] = await prober.check_all()

        assert record.status is HealthTier.DOWN
        assert record.response_time_ms is None
        assert record.error == "refused"

    @pytest.mark.asyncio
    async def test_timeout_message(self):
        """Test timeouts are reported with the configured limit."""
        ping = FakePing({"http://a": asyncio.TimeoutError()})
        prober = HealthProber(timeout_ms=3000, ping=ping)
        prober.set_targets([("1:1", "http://a")])

        [record] = await prober.check_all()

        assert record.status is HealthTier.DOWN
        assert record.error == "Timeout after 3000ms"

    @pytest.mark.asyncio
    async def test_empty_targets_still_emit(self):
        """Test a round with no targets emits an empty update."""
        observer = QueueObserver()
        prober = HealthProber(ping=FakePing(), observer=observer)

        assert await prober.check_all() == []
        assert observer.drain()[0].payload == []

    @pytest.mark.asyncio
    async def test_set_targets_prunes_immediately(self):
        """Test records for removed keys disappear without a new round."""
        prober = HealthProber(ping=FakePing())
        prober.set_targets([("1:1", "http://a"), ("2:2", "http://b")])
        await prober.check_all()

        prober.set_targets([("1:1", "http://a")])

        assert [r.key for r in prober.records()] == ["1:1"]
        assert prober.get("2:2") is None

    @pytest.mark.asyncio
    async def test_results_for_removed_targets_discarded(self):
        """Test a target removed mid-round does not get a record."""
        prober = HealthProber()

        async def ping(session, url):
            if url == "http://b":
                prober.set_targets([("1:1", "http://a")])
            return 10.0

        prober._ping = ping
        prober.set_targets([("1:1", "http://a"), ("2:2", "http://b")])

        records = await prober.check_all()

        assert [r.key for r in records] == ["1:1"]

    @pytest.mark.asyncio
    async def test_record_to_dict(self):
        """Test the serialised record."""
        prober = HealthProber(ping=FakePing({"http://a": 12.34}))
        prober.set_targets([("1:1", "http://a")])

        [record] = await prober.check_all()
        data = record.to_dict()

        assert data["status"] == "healthy"
        assert data["responseTime"] == 12.3
        assert isinstance(data["lastChecked"], int)


class TestRealServer:
    """Test HEAD requests against a local aiohttp server."""

    @pytest.mark.asyncio
    async def test_healthy(self, http_server):
        """Test a fast response."""
        prober = HealthProber()
        prober.set_targets([("k", http_server + "/")])

        [record] = await prober.check_all()

        assert record.status is HealthTier.HEALTHY
        assert record.response_time_ms is not None
        assert record.error is None

    @pytest.mark.asyncio
    async def test_status_code_ignored(self, http_server):
        """Test an error status still counts as reachable."""
        prober = HealthProber()
        prober.set_targets([("k", http_server + "/broken")])

        [record] = await prober.check_all()

        assert record.status is HealthTier.HEALTHY

    @pytest.mark.asyncio
    async def test_slow(self, http_server):
        """Test a response between the thresholds."""
        prober = HealthProber()
        prober.set_targets([("k", http_server + "/slow?delay=0.6")])

        [record] = await prober.check_all()

        assert record.status is HealthTier.SLOW
        assert 500 <= record.response_time_ms < 2000

    @pytest.mark.asyncio
    async def test_timeout(self, http_server):
        """Test the request timeout marks the server down."""
        prober = HealthProber(timeout_ms=200)
        prober.set_targets([("k", http_server + "/slow?delay=1.0")])

        [record] = await prober.check_all()

        assert record.status is HealthTier.DOWN
        assert record.error == "Timeout after 200ms"

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Test nothing listening marks the server down."""
        prober = HealthProber()
        prober.set_targets([("k", f"http://127.0.0.1:{free_port()}/")])

        [record] = await prober.check_all()

        assert record.status is HealthTier.DOWN
        assert record.response_time_ms is None
        assert record.error


class TestTimer:
    """Test the prober's own schedule."""

    @pytest.mark.asyncio
    async def test_start_probes_immediately(self):
        """Test the first round runs at start."""
        ping = FakePing()
        observer = QueueObserver()
        prober = HealthProber(interval_ms=10_000, ping=ping, observer=observer)
        prober.set_targets([("1:1", "http://a")])

        await prober.start()
        try:
            await wait_for_condition(lambda: not observer.queue.empty())
        finally:
            await prober.stop()
            await prober.wait_idle()

        assert ping.calls == ["http://a"]
        assert not prober.is_running

    @pytest.mark.asyncio
    async def test_overlapping_ticks_skipped(self):
        """Test a slow round suppresses ticks instead of stacking them."""
        ping = FakePing()
        ping.gate = asyncio.Event()
        prober = HealthProber(interval_ms=100, ping=ping)
        prober.set_targets([("1:1", "http://a")])

        await prober.start()
        try:
            await asyncio.sleep(0.35)
            assert ping.calls == ["http://a"]
        finally:
            ping.gate.set()
            await prober.stop()
            await prober.wait_idle()

    @pytest.mark.asyncio
    async def test_set_interval_restarts_timer(self):
        """Test a running timer picks up the new interval."""
        prober = HealthProber(interval_ms=10_000, ping=FakePing())
        await prober.start()
        first = prober._timer_task
        try:
            await prober.set_interval(200)
            assert prober.interval_ms == 200
            assert prober._timer_task is not first
            assert prober.is_running
        finally:
            await prober.stop()
            await prober.wait_idle()

    @pytest.mark.asyncio
    async def test_set_interval_when_stopped(self):
        """Test changing the interval does not start the timer."""
        prober = HealthProber(ping=FakePing())
        await prober.set_interval(1000)
        assert not prober.is_running
