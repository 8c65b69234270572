"""Tests for structured logging"""

import asyncio

import pytest

from mediagrab.core.logging import (
    add_correlation_ids,
    clear_context,
    configure_logging,
    get_request_id,
    job_id_var,
    new_job_id,
    set_request_id,
)


class TestRequestIDManagement:
    """Test request_id context variable management"""

    def setup_method(self) -> None:
        clear_context()

    def test_set_request_id_explicit(self) -> None:
        """Test setting explicit request_id"""
        result = set_request_id("test-request-123")

        assert result == "test-request-123"
        assert get_request_id() == "test-request-123"

    def test_set_request_id_auto_generate(self) -> None:
        """Test auto-generating request_id"""
        result = set_request_id()

        assert result.startswith("req_")
        assert len(result) == 16  # "req_" (4) + 12 hex chars
        assert get_request_id() == result

    def test_clear_context(self) -> None:
        """Test clearing request and job ids"""
        set_request_id("test-123")
        new_job_id()

        clear_context()

        assert get_request_id() is None
        assert job_id_var.get() is None

    def test_new_job_id(self) -> None:
        """Test job ids are generated and bound to the context"""
        job_id = new_job_id()

        assert job_id.startswith("job_")
        assert len(job_id) == 16
        assert job_id_var.get() == job_id

    @pytest.mark.asyncio
    async def test_request_id_isolation(self) -> None:
        """Test request_id is isolated per task"""

        async def worker(value: str) -> str:
            set_request_id(value)
            await asyncio.sleep(0)
            return get_request_id() or ""

        results = await asyncio.gather(worker("a"), worker("b"))

        assert results == ["a", "b"]


class TestCorrelationProcessor:
    """Test the structlog processor adding correlation ids"""

    def setup_method(self) -> None:
        clear_context()

    def test_adds_ids_when_set(self) -> None:
        """Test request and job ids are added to the event dict"""
        set_request_id("req-1")
        job_id = new_job_id()

        event = add_correlation_ids(None, "info", {"event": "x"})

        assert event["request_id"] == "req-1"
        assert event["job_id"] == job_id

    def test_no_ids_when_unset(self) -> None:
        """Test nothing is added without context"""
        event = add_correlation_ids(None, "info", {"event": "x"})

        assert "request_id" not in event
        assert "job_id" not in event

    def test_existing_keys_preserved(self) -> None:
        """Test explicit request_id in the event wins"""
        set_request_id("req-ctx")

        event = add_correlation_ids(None, "info", {"event": "x", "request_id": "explicit"})

        assert event["request_id"] == "explicit"


class TestConfigureLogging:
    """Test logging configuration"""

    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_configure_logging_formats(self, log_format: str) -> None:
        """Test both renderers configure without error"""
        configure_logging("DEBUG", log_format)

    def test_configure_logging_unknown_level(self) -> None:
        """Test an unknown level falls back to INFO"""
        configure_logging("NOPE", "json")
