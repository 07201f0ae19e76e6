"""
Port filter.

Decides whether a listening port is one the user asked to watch, and converts
port lists to and from their "3000, 5173-5199" text form.
"""

from typing import List, Sequence, Tuple, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from ..utils.config import ScanConfiguration


PortSpec = Union[int, Tuple[int, int]]


def port_in_specs(port: int, ports: Sequence[PortSpec]) -> bool:
    """Check a port against explicit values and closed ranges."""
    for spec in ports:
        if isinstance(spec, (tuple, list)):
            low, high = spec
            if low <= port <= high:
                return True
        elif port == spec:
            return True
    return False


def included(port: int, config: "ScanConfiguration") -> bool:
    """
    Return True when `port` passes the configured filter.

    `scan_all_ports` bypasses the filter entirely. Range bounds are not
    validated here; that is the configuration layer's job.
    """
    if config.scan_all_ports:
        return True
    return port_in_specs(port, config.ports)


def parse_ports(text: str) -> List[PortSpec]:
    """
    Parse "3000, 3001, 5173-5199" into [3000, 3001, (5173, 5199)].

    Ranges are normalised so the low bound comes first. Tokens that are not
    integers are dropped.
    """
    result: List[PortSpec] = []
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        if "-" in token:
            low_text, _, high_text = token.partition("-")
            try:
                a, b = int(low_text), int(high_text)
            except ValueError:
                continue
            result.append((min(a, b), max(a, b)))
        else:
            try:
                result.append(int(token))
            except ValueError:
                continue
    return result


def ports_to_string(ports: Sequence[PortSpec]) -> str:
    """Inverse of parse_ports."""
    parts = []
    for spec in ports:
        if isinstance(spec, (tuple, list)):
            parts.append(f"{spec[0]}-{spec[1]}")
        else:
            parts.append(str(spec))
    return ", ".join(parts)


__all__ = [
    'PortSpec',
    'included',
    'port_in_specs',
    'parse_ports',
    'ports_to_string',
]
