"""
Entity registry for portscout.

This package keeps the live inventory:
- Tracked entity types
- The reconciliation engine and its server/script variants
- CPU and memory sampling with short histories
"""

from .entities import TrackedEntity, ServerEntity, ScriptEntity
from .monitor import MetricsSample, MetricsHistory, MetricsSampler
from .engine import ReconciliationEngine
from .servers import ServerEngine
from .scripts import ScriptEngine

__all__ = [
    # Entities
    'TrackedEntity',
    'ServerEntity',
    'ScriptEntity',

    # Monitor
    'MetricsSample',
    'MetricsHistory',
    'MetricsSampler',

    # Engines
    'ReconciliationEngine',
    'ServerEngine',
    'ScriptEngine',
]
