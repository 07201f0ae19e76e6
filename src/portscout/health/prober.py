"""
HTTP liveness probing for tracked servers.

On each tick every target gets one HEAD request, all concurrently. The
round-trip time is bucketed into healthy/slow/down. Any response counts as
reachable; the status code is not inspected.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp

from ..utils.errors import ProbeError
from ..utils.logging import get_logger
from ..utils.notifications import EngineObserver, ObserverGroup

logger = get_logger(__name__)


SLOW_THRESHOLD_MS = 500
DOWN_THRESHOLD_MS = 2000
CHECK_TIMEOUT_MS = 3000
DEFAULT_INTERVAL_MS = 5000


class HealthTier(str, Enum):
    """Health classification."""
    HEALTHY = "healthy"
    SLOW = "slow"
    DOWN = "down"


@dataclass
class HealthRecord:
    """Latest probe result for one server key."""
    key: str
    url: str
    status: HealthTier
    last_checked: datetime
    response_time_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "url": self.url,
            "status": self.status.value,
            "responseTime": self.response_time_ms,
            "lastChecked": int(self.last_checked.timestamp() * 1000),
            "error": self.error,
        }


def classify_latency(response_time_ms: float) -> HealthTier:
    """Bucket a round-trip time into a health tier."""
    if response_time_ms < SLOW_THRESHOLD_MS:
        return HealthTier.HEALTHY
    if response_time_ms < DOWN_THRESHOLD_MS:
        return HealthTier.SLOW
    return HealthTier.DOWN


PingFunc = Callable[[aiohttp.ClientSession, str], Awaitable[float]]


async def head_request(session: aiohttp.ClientSession, url: str) -> float:
    """Issue a HEAD request and return the round-trip time in milliseconds."""
    loop = asyncio.get_running_loop()
    start = loop.time()
    async with session.head(url, allow_redirects=False):
        pass
    return (loop.time() - start) * 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthProber:
    """Timer-driven fan-out of HEAD probes over the current server list."""

    name = "health"

    def __init__(
        self,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        timeout_ms: int = CHECK_TIMEOUT_MS,
        observer: Optional[EngineObserver] = None,
        ping: PingFunc = head_request,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the prober.

        Args:
            interval_ms: Milliseconds between probe rounds
            timeout_ms: Per-request total timeout
            observer: Receives update events with every record
            ping: Performs one probe and returns its latency in ms
            clock: Source of timezone-aware timestamps
        """
        self.interval_ms = interval_ms
        self.timeout_ms = timeout_ms
        if isinstance(observer, ObserverGroup):
            self.observer = observer
        else:
            self.observer = ObserverGroup([observer] if observer else [])
        self._ping = ping
        self._clock = clock

        self._targets: Dict[str, str] = {}
        self._records: Dict[str, HealthRecord] = {}

        self._timer_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._round_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def set_targets(self, targets: Iterable[Tuple[str, str]]) -> None:
        """
        Replace the probe targets.

        Records for keys that are no longer targeted are dropped immediately.
        """
        self._targets = {key: url for key, url in targets}
        for key in [k for k in self._records if k not in self._targets]:
            del self._records[key]

    def targets(self) -> List[Tuple[str, str]]:
        return list(self._targets.items())

    def records(self) -> List[HealthRecord]:
        return [replace(record) for record in self._records.values()]

    def get(self, key: str) -> Optional[HealthRecord]:
        record = self._records.get(key)
        return replace(record) if record else None

    async def _check(self, session: aiohttp.ClientSession, key: str, url: str) -> HealthRecord:
        try:
            elapsed = await self._ping(session, url)
        except asyncio.TimeoutError:
            failure = ProbeError(f"Timeout after {self.timeout_ms}ms")
        except Exception as e:
            failure = ProbeError(str(e) or type(e).__name__, cause=e)
        else:
            return HealthRecord(
                key=key,
                url=url,
                status=classify_latency(elapsed),
                last_checked=self._clock(),
                response_time_ms=round(elapsed, 1),
            )

        logger.debug("probe_failed", key=key, url=url, error=failure.message)
        return HealthRecord(
            key=key,
            url=url,
            status=HealthTier.DOWN,
            last_checked=self._clock(),
            error=failure.message,
        )

    async def check_all(self) -> List[HealthRecord]:
        """
        Probe every target concurrently and emit the combined records.

        Results for targets removed while the round was running are discarded.
        """
        targets = list(self._targets.items())
        results: List[HealthRecord] = []

        if targets:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                results = await asyncio.gather(
                    *(self._check(session, key, url) for key, url in targets)
                )

        for record in results:
            if self._targets.get(record.key) == record.url:
                self._records[record.key] = record

        snapshot = self.records()
        logger.debug(
            "probe_round_completed",
            targets=len(targets),
            down=sum(1 for r in snapshot if r.status is HealthTier.DOWN)
        )
        await self.observer.on_update(self.name, snapshot)
        return snapshot

    async def _run_round(self) -> None:
        try:
            await self.check_all()
        except Exception as e:
            logger.error("probe_round_failed", error=str(e), error_type=type(e).__name__)
            await self.observer.on_error(self.name, e)

    def _tick(self) -> None:
        if self._round_task is not None and not self._round_task.done():
            logger.debug("probe_round_skipped")
            return
        self._round_task = asyncio.create_task(self._run_round())

    async def _timer_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            self._tick()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_ms / 1000)
            except asyncio.TimeoutError:
                continue

    async def start(self) -> None:
        """Start probing; restarts the timer if it is already running."""
        await self.stop()
        self._stop_event = asyncio.Event()
        self._timer_task = asyncio.create_task(self._timer_loop(self._stop_event))
        logger.info("prober_started", interval_ms=self.interval_ms)

    async def stop(self) -> None:
        """Stop future rounds; a round in flight finishes on its own."""
        if self._timer_task is None:
            return
        self._stop_event.set()
        task, self._timer_task = self._timer_task, None
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.TimeoutError:
            task.cancel()
        logger.info("prober_stopped")

    async def set_interval(self, interval_ms: int) -> None:
        """Change the round interval, restarting the timer when running."""
        self.interval_ms = interval_ms
        if self.is_running:
            await self.start()

    async def wait_idle(self) -> None:
        """Wait for the round in flight, if any."""
        if self._round_task is not None and not self._round_task.done():
            await asyncio.shield(self._round_task)


__all__ = [
    'HealthTier',
    'HealthRecord',
    'HealthProber',
    'classify_latency',
    'head_request',
    'SLOW_THRESHOLD_MS',
    'DOWN_THRESHOLD_MS',
    'CHECK_TIMEOUT_MS',
]
