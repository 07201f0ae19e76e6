"""
Server engine: tracks processes listening on watched ports.
"""

from datetime import datetime
from typing import Dict, List, Optional

from ..discovery.classifier import classify
from ..discovery.metadata import ProcessMetadataResolver
from ..discovery.ports import included
from ..discovery.sockets import ListeningSocket, ListeningSocketEnumerator
from ..utils.config import ScanConfiguration
from ..utils.logging import get_logger
from .engine import ReconciliationEngine
from .entities import ServerEntity, server_key

logger = get_logger(__name__)


class ServerEngine(ReconciliationEngine[ServerEntity]):
    """Entities keyed by pid:port, sorted by port."""

    name = "servers"

    def __init__(
        self,
        config_provider,
        enumerator: Optional[ListeningSocketEnumerator] = None,
        resolver: Optional[ProcessMetadataResolver] = None,
        **kwargs
    ):
        super().__init__(config_provider, **kwargs)
        self.enumerator = enumerator or ListeningSocketEnumerator()
        self.resolver = resolver or ProcessMetadataResolver()

    async def _observe(self, config: ScanConfiguration) -> Dict[str, ListeningSocket]:
        observed = {}
        skipped = 0
        for sock in await self.enumerator.enumerate():
            if not included(sock.port, config):
                skipped += 1
                continue
            observed[server_key(sock.pid, sock.port)] = sock
        logger.debug("ports_filtered", kept=len(observed), skipped=skipped)
        return observed

    def _create(self, key: str, sock: ListeningSocket, now: datetime) -> ServerEntity:
        return ServerEntity(
            key=key,
            pid=sock.pid,
            port=sock.port,
            protocol=(sock.protocol or "tcp").lower(),
            first_seen=now,
            last_seen=now,
        )

    async def _enrich(self, entities: List[ServerEntity]) -> None:
        metadata = await self.resolver.resolve(
            {entity.pid for entity in entities}, include_cwd=True
        )
        for entity in entities:
            meta = metadata.get(entity.pid)
            if meta is None:
                continue
            entity.process_name = meta.name or entity.process_name
            entity.command = meta.command or entity.command
            entity.path = meta.path or entity.path
            entity.framework = classify(entity.command, entity.process_name)
            if meta.cwd:
                entity.cwd = meta.cwd
        self.resolver.cwd_cache.prune(self.all_pids())

    def _sort_key(self, entity: ServerEntity):
        return (entity.port, entity.pid)


__all__ = ['ServerEngine']
