"""
Pytest configuration and shared fixtures for portscout tests.
"""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from portscout.discovery.metadata import ProcessMetadataResolver
from portscout.discovery.scripts import ScriptProcessFinder
from portscout.discovery.sockets import ListeningSocketEnumerator
from portscout.registry.scripts import ScriptEngine
from portscout.registry.servers import ServerEngine
from portscout.utils.config import ScanConfiguration
from portscout.utils.notifications import QueueObserver

from tests.utils.mock_helpers import (
    ConfigBox,
    FakeClock,
    FakeMetadataReader,
    FakeSampler,
    FakeSocketSource,
)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config_box() -> ConfigBox:
    """One-second interval watching port 3000 only."""
    return ConfigBox(ScanConfiguration(scan_interval_ms=1000, ports=[3000]))


@pytest.fixture
def observer() -> QueueObserver:
    return QueueObserver()


@pytest.fixture
def socket_source() -> FakeSocketSource:
    return FakeSocketSource()


@pytest.fixture
def metadata_reader() -> FakeMetadataReader:
    return FakeMetadataReader()


@pytest.fixture
def server_engine(config_box, observer, socket_source, metadata_reader, fake_clock) -> ServerEngine:
    """Server engine over fake sources with a manual clock."""
    return ServerEngine(
        config_box,
        enumerator=ListeningSocketEnumerator(primary_source=socket_source),
        resolver=ProcessMetadataResolver(clock=fake_clock.monotonic, reader=metadata_reader),
        observer=observer,
        sampler=FakeSampler(),
        clock=fake_clock.now,
    )


@pytest.fixture
def script_infos() -> list:
    """Process listing consumed by the script finder."""
    return []


@pytest.fixture
def script_engine(config_box, observer, script_infos, metadata_reader, fake_clock) -> ScriptEngine:
    """Script engine over a fake process listing."""
    return ScriptEngine(
        config_box,
        finder=ScriptProcessFinder(enabled=True, process_source=lambda: list(script_infos)),
        resolver=ProcessMetadataResolver(clock=fake_clock.monotonic, reader=metadata_reader),
        observer=observer,
        sampler=FakeSampler(),
        clock=fake_clock.now,
    )
