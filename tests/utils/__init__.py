"""
Test utilities for portscout.
"""

from .async_helpers import wait_for_condition, assert_completes_within
from .mock_helpers import (
    MockProcess,
    FakeClock,
    ConfigBox,
    FakeSocketSource,
    FakeSampler,
    FakeMetadataReader,
)

__all__ = [
    "wait_for_condition",
    "assert_completes_within",
    "MockProcess",
    "FakeClock",
    "ConfigBox",
    "FakeSocketSource",
    "FakeSampler",
    "FakeMetadataReader",
]
