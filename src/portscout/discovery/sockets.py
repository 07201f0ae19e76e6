"""
Listening-socket enumeration.

Two independent sources are merged into one set of (pid, port) observations:
psutil's connection table, and on Windows the `netstat -ano` listing, which
sometimes reports sockets psutil misses. Neither source is treated as ground
truth; the first one only wins when both report the same key.
"""

import asyncio
import re
import socket
import subprocess
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional

import psutil

from ..utils.errors import EnumerationError, SourceUnavailableError
from ..utils.logging import get_logger

logger = get_logger(__name__)


NETSTAT_LISTEN_RE = re.compile(
    r"^\s*TCP\S*\s+\S+:(\d+)\s+\S+\s+LISTENING\s+(\d+)", re.IGNORECASE
)


@dataclass(frozen=True)
class ListeningSocket:
    """One listening socket as reported by a source."""
    pid: int
    port: int
    protocol: str = "tcp"
    state: str = "LISTEN"

    @property
    def key(self) -> str:
        return f"{self.pid}:{self.port}"


SocketSource = Callable[[], Awaitable[List[ListeningSocket]]]


def merge_listening(
    primary: Iterable[ListeningSocket],
    supplementary: Iterable[ListeningSocket],
) -> List[ListeningSocket]:
    """
    Union two observations by pid:port.

    Entries from `primary` are kept as-is; `supplementary` only fills keys the
    primary did not report, so on conflicting fields the primary wins.
    Entries without a pid or port are dropped.
    """
    by_key = {}
    for sock in primary:
        if sock.pid and sock.port > 0:
            by_key.setdefault(sock.key, sock)
    for sock in supplementary:
        if sock.pid and sock.port > 0 and sock.key not in by_key:
            by_key[sock.key] = sock
    return list(by_key.values())


def parse_netstat(output: str) -> List[ListeningSocket]:
    """Extract listening TCP rows (v4 and v6) from `netstat -ano` output."""
    sockets = []
    for line in output.splitlines():
        match = NETSTAT_LISTEN_RE.match(line)
        if match:
            sockets.append(ListeningSocket(
                pid=int(match.group(2)),
                port=int(match.group(1)),
                protocol="tcp",
                state="LISTENING",
            ))
    return sockets


def _collect_psutil() -> List[ListeningSocket]:
    sockets = []
    for conn in psutil.net_connections(kind="tcp"):
        if conn.status != psutil.CONN_LISTEN or not conn.laddr:
            continue
        port = conn.laddr.port
        if not port or port <= 0:
            continue
        protocol = "tcp6" if conn.family == socket.AF_INET6 else "tcp"
        sockets.append(ListeningSocket(
            pid=conn.pid or 0,
            port=port,
            protocol=protocol,
            state=conn.status,
        ))
    return sockets


async def query_psutil() -> List[ListeningSocket]:
    """Listening TCP sockets from psutil, collected off the event loop."""
    return await asyncio.to_thread(_collect_psutil)


async def query_netstat(timeout: float = 5.0) -> List[ListeningSocket]:
    """Listening TCP sockets from `netstat -ano`."""
    proc = await asyncio.create_subprocess_exec(
        "netstat", "-ano",
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise SourceUnavailableError("netstat", f"netstat timed out after {timeout}s")

    if proc.returncode != 0:
        raise SourceUnavailableError(
            "netstat",
            f"netstat exited with {proc.returncode}: "
            f"{stderr.decode(errors='replace').strip()}"
        )
    return parse_netstat(stdout.decode(errors="replace"))


class ListeningSocketEnumerator:
    """Merges the configured sources into the current set of listeners."""

    def __init__(
        self,
        use_netstat: bool = False,
        netstat_timeout: float = 5.0,
        primary_source: Optional[SocketSource] = None,
        supplementary_source: Optional[SocketSource] = None,
    ):
        """
        Initialize the enumerator.

        Args:
            use_netstat: Merge in the netstat listing
            netstat_timeout: Seconds before the netstat call is abandoned
            primary_source: Replacement for the psutil source
            supplementary_source: Replacement for the netstat source
        """
        self.use_netstat = use_netstat
        self._primary = primary_source or query_psutil
        self._supplementary = supplementary_source or (
            lambda: query_netstat(netstat_timeout)
        )

    async def enumerate(self) -> List[ListeningSocket]:
        """
        Return the deduplicated listeners observed right now.

        A failing source is logged and skipped. Raises EnumerationError only
        when every enabled source failed.
        """
        failures: List[SourceUnavailableError] = []
        sources = [("psutil", self._primary)]
        if self.use_netstat:
            sources.append(("netstat", self._supplementary))

        results: List[List[ListeningSocket]] = []
        for name, source in sources:
            try:
                results.append(await source())
            except Exception as e:
                failure = e if isinstance(e, SourceUnavailableError) else (
                    SourceUnavailableError(name, f"{type(e).__name__}: {e}", cause=e)
                )
                logger.warning("source_unavailable", source=name, error=failure.message)
                failures.append(failure)
                results.append([])

        if len(failures) == len(sources):
            raise EnumerationError(failures)

        primary = results[0]
        supplementary = results[1] if len(results) > 1 else []
        merged = merge_listening(primary, supplementary)
        logger.debug(
            "listeners_enumerated",
            primary=len(primary),
            supplementary=len(supplementary),
            merged=len(merged)
        )
        return merged


__all__ = [
    'ListeningSocket',
    'ListeningSocketEnumerator',
    'merge_listening',
    'parse_netstat',
    'query_psutil',
    'query_netstat',
]
