"""
Tracked entities.

One entity per identity key: `pid:port` for listening servers, `pid` for
script processes. Entities are mutated only by the engine that owns them;
everything handed to observers is a snapshot copy.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .monitor import MetricsHistory, MetricsSample


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def server_key(pid: int, port: int) -> str:
    return f"{pid}:{port}"


def script_key(pid: int) -> str:
    return str(pid)


@dataclass
class TrackedEntity:
    """Fields shared by every tracked process."""
    key: str
    pid: int
    first_seen: datetime
    last_seen: datetime
    protocol: Optional[str] = None
    process_name: Optional[str] = None
    command: Optional[str] = None
    path: Optional[str] = None
    cpu: Optional[float] = None
    memory: Optional[int] = None
    history: MetricsHistory = field(default_factory=MetricsHistory)

    def record_sample(self, sample: MetricsSample) -> None:
        self.cpu = sample.cpu_percent
        self.memory = sample.memory_bytes
        self.history.append(sample)

    def snapshot(self):
        """Independent copy safe to hand to consumers."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        history = self.history.to_dict()
        return {
            "key": self.key,
            "pid": self.pid,
            "protocol": self.protocol,
            "processName": self.process_name,
            "command": self.command,
            "path": self.path,
            "firstSeen": _epoch_ms(self.first_seen),
            "lastSeen": _epoch_ms(self.last_seen),
            "cpu": self.cpu,
            "memory": self.memory,
            "cpuHistory": history["cpu"],
            "memoryHistory": history["memory"],
        }


@dataclass
class ServerEntity(TrackedEntity):
    """A process listening on a port."""
    port: int = 0
    cwd: Optional[str] = None
    framework: Optional[str] = None

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "port": self.port,
            "url": self.url,
            "cwd": self.cwd,
            "framework": self.framework,
        })
        return data


@dataclass
class ScriptEntity(TrackedEntity):
    """A running script interpreter."""
    script_path: Optional[str] = None
    script_name: Optional[str] = None

    @property
    def sort_name(self) -> str:
        return (self.script_name or self.process_name or "").lower()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "scriptPath": self.script_path,
            "scriptName": self.script_name,
        })
        return data


__all__ = [
    'TrackedEntity',
    'ServerEntity',
    'ScriptEntity',
    'server_key',
    'script_key',
]
