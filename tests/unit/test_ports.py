"""
Unit tests for the port filter.
"""

import pytest

from portscout.discovery.ports import (
    included,
    parse_ports,
    port_in_specs,
    ports_to_string,
)
from portscout.utils.config import ScanConfiguration


class TestIncluded:
    """Test port filter decisions."""

    def test_explicit_port(self):
        """Test explicit port values."""
        config = ScanConfiguration(ports=[3000, 8080])
        assert included(3000, config)
        assert included(8080, config)
        assert not included(3001, config)

    @pytest.mark.parametrize("port,expected", [
        (5172, False),
        (5173, True),
        (5180, True),
        (5199, True),
        (5200, False),
    ])
    def test_range_bounds_are_inclusive(self, port, expected):
        """Test closed range boundaries."""
        config = ScanConfiguration(ports=[(5173, 5199)])
        assert included(port, config) is expected

    def test_scan_all_bypasses_list(self):
        """Test scan_all_ports ignores the port list."""
        config = ScanConfiguration(ports=[3000], scan_all_ports=True)
        assert included(6000, config)
        assert included(1, config)
        assert included(65535, config)

    def test_empty_list_excludes_everything(self):
        """Test an empty list without scan_all."""
        config = ScanConfiguration(ports=[])
        assert not included(3000, config)

    def test_default_ports(self):
        """Test the default watch list."""
        config = ScanConfiguration()
        for port in (3000, 3001, 3002, 5173, 5199, 8000, 8080, 5000, 4200):
            assert included(port, config)
        assert not included(6000, config)

    def test_port_in_specs_accepts_lists(self):
        """Test list-shaped ranges, as produced by JSON config."""
        assert port_in_specs(4000, [[3999, 4001]])
        assert not port_in_specs(4002, [[3999, 4001]])


class TestPortText:
    """Test the text form of port lists."""

    def test_parse_mixed(self):
        """Test values and ranges together."""
        assert parse_ports("3000, 3001, 5173-5199") == [3000, 3001, (5173, 5199)]

    def test_parse_normalises_reversed_range(self):
        """Test a high-low range is flipped."""
        assert parse_ports("5199-5173") == [(5173, 5199)]

    def test_parse_skips_junk(self):
        """Test non-numeric tokens are dropped."""
        assert parse_ports("abc, 3000, , x-y, 8080") == [3000, 8080]

    def test_parse_empty(self):
        """Test empty input."""
        assert parse_ports("") == []

    def test_to_string(self):
        """Test formatting."""
        assert ports_to_string([3000, (5173, 5199)]) == "3000, 5173-5199"

    def test_text_survives_formatting(self):
        """Test formatting then parsing gives the same list."""
        ports = [3000, 3001, (5173, 5199), 8080]
        assert parse_ports(ports_to_string(ports)) == ports
