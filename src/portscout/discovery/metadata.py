"""
Process metadata resolution.

Resolves display name, command line, executable path and, for servers, a
best-effort project directory for a batch of pids. The directory lookup is a
fallback chain (psutil cwd, then command-line heuristics) whose result is
cached per pid for a short TTL.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Set, Tuple

import psutil

from ..utils.logging import get_logger

logger = get_logger(__name__)


CWD_CACHE_TTL = 30.0  # seconds

_PATH_PREFIX = r"""([A-Za-z]:[^"'<>|*?\s]+|/[^"'<>|*?\s]+)"""

# Tried in order; the first pattern that matches wins.
PROJECT_PATH_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("node_modules", re.compile(_PATH_PREFIX + r"/node_modules", re.IGNORECASE)),
    ("config_file", re.compile(
        _PATH_PREFIX
        + r"/(vite\.config\.[jt]s|next\.config\.[jm]?[jt]s|nuxt\.config\.[jt]s"
        + r"|angular\.json|package\.json)",
        re.IGNORECASE,
    )),
    ("source_dir", re.compile(
        _PATH_PREFIX + r"/(src|app|pages|components)/", re.IGNORECASE
    )),
)


def extract_project_path(command: Optional[str]) -> Optional[str]:
    """
    Guess a project directory from a full command line.

    Windows drive paths are returned with backslashes, POSIX paths as-is.
    """
    if not command:
        return None

    normalized = command.replace("\\", "/")
    for _name, pattern in PROJECT_PATH_PATTERNS:
        match = pattern.search(normalized)
        if match:
            path = match.group(1)
            if re.match(r"^[A-Za-z]:", path):
                return path.replace("/", "\\")
            return path
    return None


@dataclass
class ProcessMetadata:
    """Display metadata for one process."""
    pid: int
    name: Optional[str] = None
    command: Optional[str] = None
    path: Optional[str] = None
    cwd: Optional[str] = None


@dataclass
class _CwdEntry:
    cwd: Optional[str]
    resolved_at: float


class CwdCache:
    """
    Working-directory results keyed by pid.

    Stores both resolved and confirmed-absent results. An entry resolved at
    time t is served for lookups strictly before t + ttl.
    """

    _MISS = object()

    def __init__(self, ttl: float = CWD_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[int, _CwdEntry] = {}

    def lookup(self, pid: int):
        """Return the cached value, or CwdCache._MISS when absent or expired."""
        entry = self._entries.get(pid)
        if entry is None:
            return self._MISS
        if self._clock() - entry.resolved_at >= self.ttl:
            del self._entries[pid]
            return self._MISS
        return entry.cwd

    def is_miss(self, value) -> bool:
        return value is self._MISS

    def store(self, pid: int, cwd: Optional[str]) -> None:
        self._entries[pid] = _CwdEntry(cwd=cwd, resolved_at=self._clock())

    def prune(self, live_pids: Iterable[int]) -> None:
        """Drop entries for pids that are no longer tracked."""
        live = set(live_pids)
        for pid in [p for p in self._entries if p not in live]:
            del self._entries[pid]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pid: int) -> bool:
        return pid in self._entries


def _join_cmdline(cmdline: Optional[List[str]]) -> Optional[str]:
    if not cmdline:
        return None
    return " ".join(cmdline)


def _read_processes(pids: List[int], want_cwd: Set[int]) -> Dict[int, Tuple[ProcessMetadata, Optional[str]]]:
    """Blocking psutil reads; returns metadata plus the directly read cwd."""
    results = {}
    for pid in pids:
        attrs = ["name", "cmdline", "exe"]
        if pid in want_cwd:
            attrs.append("cwd")
        try:
            info = psutil.Process(pid).as_dict(attrs=attrs, ad_value=None)
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            continue
        except psutil.AccessDenied:
            info = {}
        meta = ProcessMetadata(
            pid=pid,
            name=info.get("name"),
            command=_join_cmdline(info.get("cmdline")),
            path=info.get("exe") or None,
        )
        results[pid] = (meta, info.get("cwd") or None)
    return results


class ProcessMetadataResolver:
    """Batch metadata lookups with a private working-directory cache."""

    def __init__(
        self,
        cwd_cache_ttl: float = CWD_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
        reader: Callable[[List[int], Set[int]], Dict[int, Tuple[ProcessMetadata, Optional[str]]]] = _read_processes,
    ):
        self.cwd_cache = CwdCache(ttl=cwd_cache_ttl, clock=clock)
        self._reader = reader

    async def resolve(
        self,
        pids: Iterable[int],
        include_cwd: bool = False
    ) -> Dict[int, ProcessMetadata]:
        """
        Resolve metadata for distinct pids.

        Pids whose process has exited are missing from the result. Fields the
        OS refuses to reveal are left as None.

        Args:
            pids: Process ids to look up
            include_cwd: Also resolve the working directory

        Returns:
            Metadata keyed by pid
        """
        pid_list = sorted(set(pids))
        cached: Dict[int, Optional[str]] = {}
        want_cwd: Set[int] = set()

        if include_cwd:
            for pid in pid_list:
                value = self.cwd_cache.lookup(pid)
                if self.cwd_cache.is_miss(value):
                    want_cwd.add(pid)
                else:
                    cached[pid] = value

        raw = await asyncio.to_thread(self._reader, pid_list, want_cwd)

        resolved: Dict[int, ProcessMetadata] = {}
        for pid, (meta, direct_cwd) in raw.items():
            if include_cwd:
                if pid in cached:
                    meta.cwd = cached[pid]
                else:
                    meta.cwd = direct_cwd or extract_project_path(meta.command)
                    self.cwd_cache.store(pid, meta.cwd)
            resolved[pid] = meta

        logger.debug(
            "metadata_resolved",
            requested=len(pid_list),
            resolved=len(resolved),
            cwd_lookups=len(want_cwd),
            cwd_cache_hits=len(cached)
        )
        return resolved


__all__ = [
    'CWD_CACHE_TTL',
    'PROJECT_PATH_PATTERNS',
    'extract_project_path',
    'ProcessMetadata',
    'CwdCache',
    'ProcessMetadataResolver',
]
