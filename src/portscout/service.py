"""
Service wiring.

Connects the server engine, the optional script engine and the health prober
under one start/stop lifecycle. Every server snapshot becomes the prober's
target list before it reaches outside observers.
"""

import asyncio
from typing import Any, Dict, List, Optional

from .discovery.metadata import ProcessMetadataResolver
from .discovery.scripts import ScriptProcessFinder
from .discovery.sockets import ListeningSocketEnumerator
from .health.prober import HealthProber
from .registry.scripts import ScriptEngine
from .registry.servers import ServerEngine
from .utils.config import PortScoutConfig, ScanConfiguration
from .utils.logging import get_logger, log_duration
from .utils.notifications import CallbackObserver, EngineObserver, ObserverGroup

logger = get_logger(__name__)


class PortScoutService:
    """Owns the engines and the prober for one configuration."""

    def __init__(
        self,
        config: Optional[PortScoutConfig] = None,
        observer: Optional[EngineObserver] = None,
        server_engine: Optional[ServerEngine] = None,
        script_engine: Optional[ScriptEngine] = None,
        prober: Optional[HealthProber] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Full configuration; defaults apply when omitted
            observer: Receives events from every engine and the prober
            server_engine: Prebuilt server engine
            script_engine: Prebuilt script engine; built only when enabled
            prober: Prebuilt prober; built only when health checks are enabled
        """
        self.config = config or PortScoutConfig()
        self.observer = ObserverGroup([observer] if observer else [])
        discovery = self.config.discovery

        if server_engine is None:
            resolver = ProcessMetadataResolver(cwd_cache_ttl=discovery.cwd_cache_ttl)
            server_engine = ServerEngine(
                self._scan_config,
                enumerator=ListeningSocketEnumerator(
                    use_netstat=discovery.use_netstat,
                    netstat_timeout=discovery.netstat_timeout,
                ),
                resolver=resolver,
            )
        self.servers = server_engine
        self.servers.observer.add(CallbackObserver(on_update=self._forward_targets))
        self.servers.observer.add(self.observer)

        if script_engine is None and discovery.scan_scripts:
            script_engine = ScriptEngine(
                self._scan_config,
                finder=ScriptProcessFinder(enabled=True),
                resolver=ProcessMetadataResolver(cwd_cache_ttl=discovery.cwd_cache_ttl),
            )
        self.scripts = script_engine
        if self.scripts is not None:
            self.scripts.observer.add(self.observer)

        health = self.config.health
        if prober is None and health.enabled:
            prober = HealthProber(
                interval_ms=health.interval_ms,
                timeout_ms=health.timeout_ms,
            )
        self.prober = prober
        if self.prober is not None:
            self.prober.observer.add(self.observer)

    def _scan_config(self) -> ScanConfiguration:
        return self.config.scan

    def _forward_targets(self, source: str, snapshot: List[Any]) -> None:
        if self.prober is None:
            return
        self.prober.set_targets((entity.key, entity.url) for entity in snapshot)

    async def start(self) -> None:
        """Start every timer. Each one fires immediately."""
        await self.servers.start()
        if self.scripts is not None:
            await self.scripts.start()
        if self.prober is not None:
            await self.prober.start()
        logger.info(
            "service_started",
            scripts=self.scripts is not None,
            health=self.prober is not None
        )

    async def stop(self) -> None:
        """Stop every timer; cycles in flight finish on their own."""
        if self.prober is not None:
            await self.prober.stop()
        if self.scripts is not None:
            await self.scripts.stop()
        await self.servers.stop()
        logger.info("service_stopped")

    @log_duration(logger, "refresh_completed")
    async def refresh(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Run one cycle of each engine and one probe round right now.

        Returns:
            The resulting snapshot, as returned by snapshot()
        """
        scans = [self.servers.trigger_scan()]
        if self.scripts is not None:
            scans.append(self.scripts.trigger_scan())
        await asyncio.gather(*scans)

        if self.prober is not None:
            await self.prober.check_all()
        return self.snapshot()

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """Current servers, scripts and health records as plain dicts."""
        return {
            "servers": [entity.to_dict() for entity in self.servers.entities()],
            "scripts": (
                [entity.to_dict() for entity in self.scripts.entities()]
                if self.scripts is not None else []
            ),
            "health": (
                [record.to_dict() for record in self.prober.records()]
                if self.prober is not None else []
            ),
        }

    async def update_config(self, config: PortScoutConfig) -> None:
        """
        Swap in a new configuration.

        Scan settings apply from the next cycle. Prober timing applies
        immediately. Discovery and enablement switches need a new service.
        """
        self.config = config
        self.servers.enumerator.use_netstat = config.discovery.use_netstat
        if self.prober is not None:
            self.prober.timeout_ms = config.health.timeout_ms
            if self.prober.interval_ms != config.health.interval_ms:
                await self.prober.set_interval(config.health.interval_ms)
        logger.info(
            "service_config_updated",
            scan_interval_ms=config.scan.scan_interval_ms,
            scan_all_ports=config.scan.scan_all_ports
        )


__all__ = ['PortScoutService']
