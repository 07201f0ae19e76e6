"""
Unit tests for the error hierarchy.
"""

import pytest

from portscout.utils.errors import (
    ConfigurationError,
    CycleError,
    EnumerationError,
    ErrorCategory,
    PortScoutError,
    SourceUnavailableError,
    error_context,
)


class TestErrors:
    """Test error types."""

    def test_defaults(self):
        """Test default message and classification."""
        error = ConfigurationError()
        assert error.message == "Configuration error"
        assert error.category is ErrorCategory.CONFIGURATION
        assert error.get_suggestions()

    def test_enumeration_error_lists_sources(self):
        """Test the aggregate message names each failed source."""
        error = EnumerationError([
            SourceUnavailableError("psutil", "access denied"),
            SourceUnavailableError("netstat"),
        ])

        assert "psutil: access denied" in error.message
        assert "netstat: Source 'netstat' unavailable" in error.message
        assert [f.source for f in error.failures] == ["psutil", "netstat"]

    def test_to_dict(self):
        """Test the serialised form."""
        cause = ValueError("bad")
        error = CycleError("cycle broke", cause=cause)

        data = error.to_dict()["error"]

        assert data["code"] == "CYCLE_FAILED"
        assert data["message"] == "cycle broke"
        assert data["cause"] == repr(cause)
        assert data["category"] == "internal"


class TestErrorContext:
    """Test the error_context manager."""

    def test_wraps_foreign_exceptions(self):
        """Test non-portscout exceptions become CycleError."""
        with pytest.raises(CycleError) as exc_info:
            with error_context("servers", "cycle", attempt=1):
                raise KeyError("pid")

        error = exc_info.value
        assert isinstance(error.cause, KeyError)
        assert error.context.component == "servers"
        assert error.context.metadata == {"attempt": 1}
        assert error.context.stack_trace

    def test_annotates_own_exceptions(self):
        """Test portscout errors pass through with context filled in."""
        with pytest.raises(SourceUnavailableError) as exc_info:
            with error_context("servers", "cycle"):
                raise SourceUnavailableError("netstat")

        assert exc_info.value.context.operation == "cycle"

    def test_passes_through_on_success(self):
        """Test nothing happens without an exception."""
        with error_context("servers", "cycle") as context:
            pass
        assert context.component == "servers"

    def test_base_is_exception(self):
        """Test the hierarchy root."""
        assert issubclass(PortScoutError, Exception)
