"""
Resource sampling for tracked processes.

Samples CPU percent and resident memory per pid and keeps a short trailing
history per entity for sparkline rendering.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import psutil

from ..utils.logging import get_logger

logger = get_logger(__name__)


HISTORY_SIZE = 6


@dataclass(frozen=True)
class MetricsSample:
    """One CPU/memory reading."""
    cpu_percent: float
    memory_bytes: int


class MetricsHistory:
    """Fixed-capacity FIFO buffers for CPU and memory samples."""

    def __init__(self, size: int = HISTORY_SIZE):
        self.size = size
        self.cpu: deque = deque(maxlen=size)
        self.memory: deque = deque(maxlen=size)

    def append(self, sample: MetricsSample) -> None:
        self.cpu.append(sample.cpu_percent)
        self.memory.append(sample.memory_bytes)

    def __len__(self) -> int:
        return len(self.cpu)

    def to_dict(self) -> Dict[str, List[float]]:
        return {"cpu": list(self.cpu), "memory": list(self.memory)}


class MetricsSampler:
    """
    Per-pid CPU and memory sampler.

    psutil reports CPU percent relative to the previous call on the same
    Process object, so handles are kept between cycles. The first reading
    for a pid is therefore 0.0.
    """

    def __init__(self):
        self._processes: Dict[int, psutil.Process] = {}

    def _sample(self, pid: int) -> Optional[MetricsSample]:
        try:
            process = self._processes.get(pid)
            if process is None or not process.is_running():
                process = psutil.Process(pid)
                self._processes[pid] = process
            with process.oneshot():
                cpu = process.cpu_percent(interval=None)
                memory = process.memory_info().rss
            return MetricsSample(cpu_percent=cpu, memory_bytes=memory)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            self._processes.pop(pid, None)
            return None

    async def sample(self, pid: int) -> Optional[MetricsSample]:
        """Sample one pid; None when the process is gone or unreadable."""
        return await asyncio.to_thread(self._sample, pid)

    async def sample_many(self, pids: Iterable[int]) -> Dict[int, MetricsSample]:
        """Sample several pids in one worker-thread hop."""
        pid_set = set(pids)

        def collect():
            results = {}
            for pid in pid_set:
                sample = self._sample(pid)
                if sample is not None:
                    results[pid] = sample
            return results
        return await asyncio.to_thread(collect)

    def prune(self, live_pids: Iterable[int]) -> None:
        """Forget handles for pids no longer tracked."""
        live = set(live_pids)
        for pid in [p for p in self._processes if p not in live]:
            del self._processes[pid]


__all__ = [
    'HISTORY_SIZE',
    'MetricsSample',
    'MetricsHistory',
    'MetricsSampler',
]
