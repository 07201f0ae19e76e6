"""
portscout - a live inventory of local development servers.

Watches which processes listen on TCP ports, resolves their project
directory and framework, samples CPU and memory, probes each server over
HTTP, and optionally tracks script interpreter processes.
"""

__version__ = "0.1.0"

from .service import PortScoutService
from .utils.config import PortScoutConfig, ScanConfiguration, load_config

__all__ = [
    'PortScoutService',
    'PortScoutConfig',
    'ScanConfiguration',
    'load_config',
]
