"""
Health probing for portscout.
"""

from .prober import HealthProber, HealthRecord, HealthTier, classify_latency

__all__ = [
    'HealthProber',
    'HealthRecord',
    'HealthTier',
    'classify_latency',
]
