"""
Script engine: tracks running script interpreters.
"""

from datetime import datetime
from typing import Dict, List, Optional

from ..discovery.metadata import ProcessMetadataResolver
from ..discovery.scripts import ScriptProcess, ScriptProcessFinder
from ..utils.config import ScanConfiguration
from .engine import ReconciliationEngine
from .entities import ScriptEntity, script_key


class ScriptEngine(ReconciliationEngine[ScriptEntity]):
    """Entities keyed by pid, sorted by script name."""

    name = "scripts"

    def __init__(
        self,
        config_provider,
        finder: Optional[ScriptProcessFinder] = None,
        resolver: Optional[ProcessMetadataResolver] = None,
        **kwargs
    ):
        super().__init__(config_provider, **kwargs)
        self.finder = finder or ScriptProcessFinder()
        self.resolver = resolver or ProcessMetadataResolver()

    async def _observe(self, config: ScanConfiguration) -> Dict[str, ScriptProcess]:
        return {script_key(proc.pid): proc for proc in await self.finder.find()}

    def _create(self, key: str, proc: ScriptProcess, now: datetime) -> ScriptEntity:
        return ScriptEntity(
            key=key,
            pid=proc.pid,
            first_seen=now,
            last_seen=now,
            process_name=proc.name,
            command=proc.command,
            script_path=proc.script_path,
            script_name=proc.script_name,
        )

    def _refresh(self, entity: ScriptEntity, proc: ScriptProcess, now: datetime) -> None:
        super()._refresh(entity, proc, now)
        entity.process_name = proc.name or entity.process_name
        entity.command = proc.command or entity.command
        entity.script_path = proc.script_path
        entity.script_name = proc.script_name

    async def _enrich(self, entities: List[ScriptEntity]) -> None:
        metadata = await self.resolver.resolve({entity.pid for entity in entities})
        for entity in entities:
            meta = metadata.get(entity.pid)
            if meta is not None:
                entity.path = meta.path or entity.path

    def _sort_key(self, entity: ScriptEntity):
        return (entity.sort_name, entity.pid)


__all__ = ['ScriptEngine']
