"""
Unit tests for the script reconciliation engine.
"""

import pytest

from portscout.registry.entities import ScriptEntity
from portscout.utils.notifications import EventKind


def ahk(pid, script=None, name="AutoHotkey64.exe"):
    cmdline = [name] + ([script] if script else [])
    return {"pid": pid, "name": name, "cmdline": cmdline}


class TestScriptEngine:
    """Test script tracking."""

    @pytest.mark.asyncio
    async def test_tracks_script_processes(self, script_engine, observer, script_infos, metadata_reader):
        """Test interpreters become entities keyed by pid."""
        script_infos.extend([
            ahk(40, r"C:\tools\zeta.ahk"),
            ahk(41, r"C:\tools\alpha.ahk"),
            {"pid": 50, "name": "node", "cmdline": ["node"]},
        ])
        metadata_reader.add(40, path=r"C:\AHK\AutoHotkey64.exe")

        await script_engine.run_cycle()

        events = observer.drain()
        assert [e.kind for e in events] == [EventKind.NEW, EventKind.NEW, EventKind.UPDATE]
        snapshot = events[-1].payload
        assert all(isinstance(e, ScriptEntity) for e in snapshot)
        assert [e.key for e in snapshot] == ["41", "40"]
        assert [e.script_name for e in snapshot] == ["alpha.ahk", "zeta.ahk"]
        assert snapshot[1].path == r"C:\AHK\AutoHotkey64.exe"
        assert snapshot[0].protocol is None

    @pytest.mark.asyncio
    async def test_script_change_updates_entity(self, script_engine, script_infos):
        """Test a refreshed observation replaces script fields."""
        script_infos.append(ahk(40, "/s/one.ahk"))
        await script_engine.run_cycle()

        script_infos[0] = ahk(40, "/s/two.ahk")
        await script_engine.run_cycle()

        entity = script_engine.get("40")
        assert entity.script_path == "/s/two.ahk"
        assert entity.script_name == "two.ahk"

    @pytest.mark.asyncio
    async def test_sort_falls_back_to_process_name(self, script_engine, observer, script_infos):
        """Test interpreters without a script sort by process name."""
        script_infos.extend([
            ahk(2, "/s/m.ahk"),
            ahk(1, None, name="AutoHotkeyU64.exe"),
        ])

        await script_engine.run_cycle()

        snapshot = observer.drain()[-1].payload
        assert [e.pid for e in snapshot] == [1, 2]

    @pytest.mark.asyncio
    async def test_grace_period(self, script_engine, observer, script_infos, fake_clock):
        """Test an exited script is removed after the grace period."""
        script_infos.append(ahk(40, "/s/one.ahk"))
        await script_engine.run_cycle()
        script_infos.clear()

        for _ in range(3):
            fake_clock.advance(seconds=1)
            await script_engine.run_cycle()

        stopped = [e for e in observer.drain() if e.kind is EventKind.STOPPED]
        assert [e.payload.key for e in stopped] == ["40"]

    @pytest.mark.asyncio
    async def test_listing_failure_emits_error(self, script_engine, observer):
        """Test a broken process listing reaches the error channel."""
        def broken():
            raise OSError("process table unavailable")

        script_engine.finder._process_source = broken

        assert await script_engine.run_cycle() is False
        assert [e.kind for e in observer.drain()] == [EventKind.ERROR]

    @pytest.mark.asyncio
    async def test_to_dict(self, script_engine, script_infos):
        """Test the serialised form."""
        script_infos.append(ahk(40, "/s/one.ahk"))
        await script_engine.run_cycle()

        data = script_engine.get("40").to_dict()

        assert data["pid"] == 40
        assert data["scriptName"] == "one.ahk"
        assert data["scriptPath"] == "/s/one.ahk"
        assert data["cpuHistory"] == [1.0]
        assert isinstance(data["firstSeen"], int)
