"""
Discovery layer for portscout.

Turns raw OS state into observations:
- Port filtering
- Listening-socket enumeration from psutil and netstat
- Process metadata and project directory resolution
- Framework classification
- Script interpreter discovery
"""

from .ports import PortSpec, included, parse_ports, ports_to_string
from .sockets import ListeningSocket, ListeningSocketEnumerator, merge_listening, parse_netstat
from .metadata import ProcessMetadata, ProcessMetadataResolver, CwdCache, extract_project_path
from .classifier import FRAMEWORK_PATTERNS, classify
from .scripts import ScriptProcess, ScriptProcessFinder, extract_script_path

__all__ = [
    # Ports
    'PortSpec',
    'included',
    'parse_ports',
    'ports_to_string',

    # Sockets
    'ListeningSocket',
    'ListeningSocketEnumerator',
    'merge_listening',
    'parse_netstat',

    # Metadata
    'ProcessMetadata',
    'ProcessMetadataResolver',
    'CwdCache',
    'extract_project_path',

    # Classifier
    'FRAMEWORK_PATTERNS',
    'classify',

    # Scripts
    'ScriptProcess',
    'ScriptProcessFinder',
    'extract_script_path',
]
