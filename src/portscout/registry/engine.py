"""
Reconciliation engine.

Owns the authoritative map of tracked entities for one entity class and runs
one full cycle per timer tick:

    observe -> create/refresh -> expire -> enrich -> sample -> emit

Entities absent from an observation survive for a grace period of twice the
scan interval before they are removed. A cycle whose enumeration fails
outright still expires entities, as if nothing had been observed. At most one
cycle runs at a time per engine; requests that arrive while a cycle is in
flight are coalesced into a single follow-up cycle.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from ..utils.config import ScanConfiguration
from ..utils.errors import EnumerationError, error_context
from ..utils.logging import get_logger
from ..utils.notifications import EngineObserver, ObserverGroup
from .entities import TrackedEntity
from .monitor import MetricsSampler

logger = get_logger(__name__)

E = TypeVar("E", bound=TrackedEntity)

GRACE_MULTIPLIER = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine(ABC, Generic[E]):
    """Base class for the server and script engines."""

    name: str = "entities"

    def __init__(
        self,
        config_provider: Callable[[], ScanConfiguration],
        observer: Optional[EngineObserver] = None,
        sampler: Optional[MetricsSampler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the engine.

        Args:
            config_provider: Returns the configuration for the next cycle
            observer: Receives new/stopped/update/error events
            sampler: CPU/memory sampler; one per engine
            clock: Source of timezone-aware timestamps
        """
        self._config_provider = config_provider
        if isinstance(observer, ObserverGroup):
            self.observer = observer
        else:
            self.observer = ObserverGroup([observer] if observer else [])
        self.sampler = sampler or MetricsSampler()
        self._clock = clock

        self._entities: Dict[str, E] = {}

        self._timer_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._pending = False
        self._interval_seconds = ScanConfiguration().scan_interval_ms / 1000

        self.cycles_completed = 0
        self.cycles_failed = 0

    # Subclass hooks

    @abstractmethod
    async def _observe(self, config: ScanConfiguration) -> Dict[str, Any]:
        """Return the current observations keyed by entity key."""

    @abstractmethod
    def _create(self, key: str, observation: Any, now: datetime) -> E:
        """Build a new entity from its first observation."""

    def _refresh(self, entity: E, observation: Any, now: datetime) -> None:
        """Update an entity that was observed again."""
        entity.last_seen = now

    @abstractmethod
    async def _enrich(self, entities: List[E]) -> None:
        """Fill in metadata for every live entity."""

    @abstractmethod
    def _sort_key(self, entity: E) -> Any:
        """Ordering of the emitted snapshot."""

    # Read access

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def cycle_in_flight(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    def entities(self) -> List[E]:
        """Sorted snapshot copies of every live entity."""
        return [
            entity.snapshot()
            for entity in sorted(self._entities.values(), key=self._sort_key)
        ]

    def get(self, key: str) -> Optional[E]:
        entity = self._entities.get(key)
        return entity.snapshot() if entity else None

    def all_pids(self) -> List[int]:
        """Distinct pids across live entities."""
        return sorted({entity.pid for entity in self._entities.values()})

    def __len__(self) -> int:
        return len(self._entities)

    # Cycle

    async def run_cycle(self) -> bool:
        """
        Run one cycle now, without the in-flight guard.

        Never raises; failures are logged and delivered on the error channel.

        Returns:
            True if the cycle completed
        """
        loop = asyncio.get_running_loop()
        started = loop.time()

        try:
            with error_context(self.name, "cycle"):
                config = self._config_provider()
                now = self._clock()

                try:
                    observed = await self._observe(config)
                except EnumerationError:
                    # Nothing was seen this cycle; grace still runs out
                    if await self._reconcile({}, config, now):
                        await self.observer.on_update(self.name, self.entities())
                    raise
                await self._reconcile(observed, config, now)

                live = list(self._entities.values())
                await self._enrich(live)
                await self._sample_metrics(live)

                snapshot = self.entities()
        except Exception as e:
            self.cycles_failed += 1
            logger.error(
                "cycle_failed",
                engine=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.observer.on_error(self.name, e)
            return False

        await self.observer.on_update(self.name, snapshot)
        self.cycles_completed += 1
        logger.debug(
            "cycle_completed",
            engine=self.name,
            entities=len(snapshot),
            duration_ms=round((loop.time() - started) * 1000, 2)
        )
        return True

    async def _reconcile(
        self,
        observed: Dict[str, Any],
        config: ScanConfiguration,
        now: datetime
    ) -> int:
        """Apply one observation; returns how many entities expired."""
        for key, observation in observed.items():
            entity = self._entities.get(key)
            if entity is None:
                entity = self._create(key, observation, now)
                self._entities[key] = entity
                logger.info("entity_new", engine=self.name, key=key, pid=entity.pid)
                await self.observer.on_new(self.name, entity.snapshot())
            else:
                self._refresh(entity, observation, now)

        removed = 0
        grace = config.scan_interval * GRACE_MULTIPLIER
        for key in [k for k in self._entities if k not in observed]:
            entity = self._entities[key]
            if now - entity.last_seen > grace:
                del self._entities[key]
                logger.info("entity_stopped", engine=self.name, key=key, pid=entity.pid)
                await self.observer.on_stopped(self.name, entity.snapshot())
                removed += 1
        return removed

    async def _sample_metrics(self, live: List[E]) -> None:
        samples = await self.sampler.sample_many(entity.pid for entity in live)
        for entity in live:
            sample = samples.get(entity.pid)
            if sample is not None:
                entity.record_sample(sample)
        self.sampler.prune(self.all_pids())

    # Scheduling

    def _request_cycle(self) -> asyncio.Task:
        if self.cycle_in_flight:
            self._pending = True
            logger.debug("cycle_coalesced", engine=self.name)
            return self._cycle_task
        self._cycle_task = asyncio.create_task(self._drive_cycles())
        return self._cycle_task

    async def _drive_cycles(self) -> None:
        while True:
            self._pending = False
            await self.run_cycle()
            if not self._pending:
                break

    async def trigger_scan(self) -> None:
        """
        Run a cycle outside the timer cadence and wait for it.

        If a cycle is already running, one more cycle is queued behind it and
        this waits for both.
        """
        task = self._request_cycle()
        await asyncio.shield(task)

    def _read_interval(self) -> float:
        try:
            self._interval_seconds = self._config_provider().scan_interval_ms / 1000
        except Exception as e:
            logger.warning("interval_unavailable", engine=self.name, error=str(e))
        return self._interval_seconds

    async def _timer_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            self._request_cycle()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._read_interval())
            except asyncio.TimeoutError:
                continue

    async def start(self) -> None:
        """Start ticking; restarts the timer if it is already running."""
        await self.stop()
        self._stop_event = asyncio.Event()
        self._timer_task = asyncio.create_task(self._timer_loop(self._stop_event))
        logger.info("engine_started", engine=self.name, interval_s=self._read_interval())

    async def stop(self) -> None:
        """
        Stop scheduling cycles.

        A cycle already in flight is left to finish; a queued follow-up is
        dropped.
        """
        self._pending = False
        if self._timer_task is None:
            return

        self._stop_event.set()
        task, self._timer_task = self._timer_task, None

        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("timer_stop_timeout", engine=self.name)
            task.cancel()

        logger.info("engine_stopped", engine=self.name)

    async def wait_idle(self) -> None:
        """Wait until no cycle is in flight."""
        while self.cycle_in_flight:
            await asyncio.shield(self._cycle_task)


__all__ = [
    'ReconciliationEngine',
    'GRACE_MULTIPLIER',
]
