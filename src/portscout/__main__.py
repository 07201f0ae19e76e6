#!/usr/bin/env python3
"""
portscout runner - entry point for python -m portscout
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .service import PortScoutService
from .utils.config import PortScoutConfig, load_config
from .utils.errors import PortScoutError
from .utils.logging import get_logger, setup_logging
from .utils.notifications import EngineObserver

logger = get_logger("portscout.main")


class LoggingObserver(EngineObserver):
    """Writes discrete engine events to the log."""

    async def on_new(self, source, entity):
        logger.info(
            "tracked",
            source=source,
            key=entity.key,
            process=entity.process_name,
            port=getattr(entity, "port", None)
        )

    async def on_stopped(self, source, entity):
        logger.info("untracked", source=source, key=entity.key, process=entity.process_name)

    async def on_error(self, source, cause):
        logger.warning("engine_error", source=source, error=str(cause))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portscout",
        description="Track local development servers and script processes"
    )
    parser.add_argument("--version", action="version", version=f"portscout {__version__}")
    parser.add_argument("--config", type=str, help="Config file path (yaml, json or toml)")
    parser.add_argument("--once", action="store_true", help="Scan once, print and exit")
    parser.add_argument("--json", action="store_true", help="Print the --once result as JSON")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _format_memory(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return f"{value / (1024 * 1024):.1f} MB"


def _format_cpu(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.1f}"


def render_tables(snapshot: Dict[str, List[Dict[str, Any]]], console: Console) -> None:
    """Print the servers and scripts of a snapshot as rich tables."""
    health = {record["key"]: record for record in snapshot["health"]}

    servers = Table(title="Servers")
    servers.add_column("Port", justify="right")
    servers.add_column("PID", justify="right")
    servers.add_column("Process")
    servers.add_column("Framework")
    servers.add_column("Directory")
    servers.add_column("CPU %", justify="right")
    servers.add_column("Memory", justify="right")
    servers.add_column("Health")

    for server in snapshot["servers"]:
        record = health.get(server["key"])
        servers.add_row(
            str(server["port"]),
            str(server["pid"]),
            server["processName"] or "-",
            server["framework"] or "-",
            server["cwd"] or "-",
            _format_cpu(server["cpu"]),
            _format_memory(server["memory"]),
            record["status"] if record else "-",
        )
    console.print(servers)

    if snapshot["scripts"]:
        scripts = Table(title="Scripts")
        scripts.add_column("PID", justify="right")
        scripts.add_column("Script")
        scripts.add_column("Path")
        scripts.add_column("CPU %", justify="right")
        scripts.add_column("Memory", justify="right")
        for script in snapshot["scripts"]:
            scripts.add_row(
                str(script["pid"]),
                script["scriptName"] or script["processName"] or "-",
                script["scriptPath"] or "-",
                _format_cpu(script["cpu"]),
                _format_memory(script["memory"]),
            )
        console.print(scripts)


def _configure_logging(config: PortScoutConfig) -> None:
    settings = config.logging
    setup_logging(
        app_name=config.app_name,
        log_level=settings.level,
        log_dir=settings.directory,
        enable_json=settings.format == "json",
        enable_file=settings.to_file,
        max_bytes=settings.max_size,
        backup_count=settings.backup_count,
        sentry_dsn=settings.sentry_dsn,
    )


async def run(args: argparse.Namespace) -> int:
    """Load configuration, then scan once or run until interrupted."""
    # Keep stdout clean for --json until the configured handlers are in place
    setup_logging(log_level="DEBUG" if args.debug else "WARNING", enable_file=False)

    extra = {"logging": {"level": "DEBUG"}} if args.debug else None
    loader = await load_config([args.config] if args.config else None, extra)
    config = loader.get_config()
    _configure_logging(config)

    if args.once:
        service = PortScoutService(config)
        snapshot = await service.refresh()
        if args.json:
            print(json.dumps(snapshot, indent=2))
        else:
            render_tables(snapshot, Console())
        return 0

    service = PortScoutService(config, observer=LoggingObserver())
    loader.register_callback(service.update_config)

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(
            signal.SIGHUP, lambda: asyncio.ensure_future(loader.reload())
        )

    await service.start()
    try:
        await stop.wait()
    finally:
        await service.stop()
    return 0


def main() -> None:
    """Main entry point for python -m portscout"""
    args = build_parser().parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nportscout stopped by user", file=sys.stderr)
        sys.exit(0)
    except PortScoutError as e:
        print(f"portscout error: {e.message}", file=sys.stderr)
        for suggestion in e.get_suggestions():
            print(f"  - {suggestion}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
