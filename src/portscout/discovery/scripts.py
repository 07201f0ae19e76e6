"""
Script process discovery.

Finds running AutoHotkey interpreters and the script each one is executing.
These processes usually do not listen on a port, so they are discovered from
the process table rather than the socket table.
"""

import asyncio
import re
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import psutil

from ..utils.logging import get_logger

logger = get_logger(__name__)


SCRIPT_PROCESS_MARKERS = ("autohotkey", "ahk")
SCRIPT_EXTENSION = ".ahk"

SCRIPT_PATH_PATTERNS = (
    re.compile(r'"([^"]+\.ahk)"', re.IGNORECASE),
    re.compile(r"'([^']+\.ahk)'", re.IGNORECASE),
    re.compile(r"\s([A-Z]:\\[^\s]+\.ahk)", re.IGNORECASE),
    re.compile(r"\s(/[^\s]+\.ahk)", re.IGNORECASE),
)


@dataclass
class ScriptProcess:
    """A running script interpreter."""
    pid: int
    name: str
    command: Optional[str] = None
    script_path: Optional[str] = None
    script_name: Optional[str] = None


def extract_script_path(command: Optional[str]) -> Optional[str]:
    """Pull the script path out of an interpreter command line."""
    if not command:
        return None

    for pattern in SCRIPT_PATH_PATTERNS:
        match = pattern.search(command)
        if match:
            return match.group(1)

    if command.lower().endswith(SCRIPT_EXTENSION):
        return command.strip("\"'")
    return None


def script_basename(path: str) -> str:
    """Last path component, accepting either separator."""
    return re.split(r"[/\\]", path)[-1] or path


def is_script_process(name: Optional[str]) -> bool:
    lowered = (name or "").lower()
    return any(marker in lowered for marker in SCRIPT_PROCESS_MARKERS)


def to_script_process(info: Dict[str, Any]) -> Optional[ScriptProcess]:
    """Build a ScriptProcess from a psutil info dict, or None if not a script host."""
    name = info.get("name") or ""
    if not is_script_process(name):
        return None

    argv = info.get("cmdline") or []
    command = " ".join(argv) if argv else None

    # argv keeps paths with spaces intact; the joined command does not
    script_path = None
    for arg in reversed(argv[1:]):
        if arg.lower().endswith(SCRIPT_EXTENSION):
            script_path = arg
            break
    if script_path is None:
        script_path = extract_script_path(command)

    return ScriptProcess(
        pid=info["pid"],
        name=name,
        command=command,
        script_path=script_path,
        script_name=script_basename(script_path) if script_path else None,
    )


def _iter_process_info() -> List[Dict[str, Any]]:
    infos = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            infos.append(dict(proc.info))
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return infos


class ScriptProcessFinder:
    """Lists script interpreter processes."""

    def __init__(
        self,
        enabled: Optional[bool] = None,
        process_source: Callable[[], Iterable[Dict[str, Any]]] = _iter_process_info,
    ):
        """
        Initialize the finder.

        Args:
            enabled: Scan at all; defaults to Windows only
            process_source: Returns dicts with pid, name and cmdline keys
        """
        self.enabled = sys.platform == "win32" if enabled is None else enabled
        self._process_source = process_source

    def _find(self) -> List[ScriptProcess]:
        found = []
        for info in self._process_source():
            script = to_script_process(info)
            if script is not None:
                found.append(script)
        return found

    async def find(self) -> List[ScriptProcess]:
        """Return the script processes running right now."""
        if not self.enabled:
            return []
        found = await asyncio.to_thread(self._find)
        logger.debug("script_processes_found", count=len(found))
        return found


__all__ = [
    'ScriptProcess',
    'ScriptProcessFinder',
    'extract_script_path',
    'script_basename',
    'is_script_process',
    'to_script_process',
]
