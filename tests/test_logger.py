"""Unit tests for structured JSON logger.

Tests verify that the logger writes one JSON object per line to gateway.log
in the output directory, with the fields each event type carries.
"""

import json
import tempfile
from pathlib import Path

from scenecast.gateway.logger import StructuredJSONLogger


def _read_entries(tmpdir):
    log_file = Path(tmpdir) / "gateway.log"
    with open(log_file, 'r', encoding='utf-8') as f:
        return [json.loads(line) for line in f if line.strip()]


class TestStructuredJSONLogger:
    """Test suite for StructuredJSONLogger."""

    def test_logger_creates_log_file(self):
        """Test that logger creates gateway.log in output directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            assert (Path(tmpdir) / "gateway.log").exists()

            logger.close()

    def test_creates_missing_output_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            nested = Path(tmpdir) / "logs" / "gateway"
            with StructuredJSONLogger(output_directory=str(nested)):
                pass
            assert (nested / "gateway.log").exists()

    def test_log_call_start_format(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.log_call_start("text", "openai:text", caller_id="user-1")
            logger.close()

            entry = _read_entries(tmpdir)[0]
            assert entry["event"] == "call_start"
            assert entry["operation"] == "text"
            assert entry["channel"] == "openai:text"
            assert entry["caller_id"] == "user-1"
            assert "timestamp" in entry

    def test_log_call_complete_format(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.log_call_complete("image", "openai:image", duration_ms=123.456, attempts=2)
            logger.close()

            entry = _read_entries(tmpdir)[0]
            assert entry["event"] == "call_complete"
            assert entry["duration_ms"] == 123.46
            assert entry["attempts"] == 2
            assert entry["caller_id"] is None

    def test_log_call_failure_format(self):
        """Test call_failure entries carry error code, message and attempts."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.log_call_failure(
                operation="speech",
                channel="openai:speech",
                error_code="TIMEOUT",
                error_message="Request timed out",
                attempts=3,
                duration_ms=50.0
            )
            logger.close()

            entry = _read_entries(tmpdir)[0]
            assert entry["event"] == "call_failure"
            assert entry["error_code"] == "TIMEOUT"
            assert entry["error_message"] == "Request timed out"
            assert entry["attempts"] == 3
            assert entry["duration_ms"] == 50.0

    def test_failure_without_duration_omits_field(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.log_call_failure("text", "openai:text", "SERVICE_ERROR", "boom", attempts=1)
            logger.close()

            assert "duration_ms" not in _read_entries(tmpdir)[0]

    def test_breaker_and_fallback_events(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.log_breaker_transition("openai:text", "CLOSED", "OPEN")
            logger.log_call_fallback("text", "RATE_LIMITED", caller_id="user-2")
            logger.close()

            transition, fallback = _read_entries(tmpdir)
            assert transition["event"] == "breaker_transition"
            assert transition["old_state"] == "CLOSED"
            assert transition["new_state"] == "OPEN"
            assert fallback["event"] == "call_fallback"
            assert fallback["reason"] == "RATE_LIMITED"

    def test_segmentation_complete_keeps_unicode(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.log_segmentation_complete("rule_based", 3, 1.5, fallback_reason="回應格式錯誤")
            logger.close()

            raw = (Path(tmpdir) / "gateway.log").read_text(encoding='utf-8')
            assert "回應格式錯誤" in raw
            entry = json.loads(raw)
            assert entry["scene_count"] == 3
            assert entry["method"] == "rule_based"

    def test_multiple_log_entries(self):
        """Test that every event lands on its own line."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.log_call_start("text", "openai:text")
            logger.log_call_complete("text", "openai:text", 10.0, 1)
            logger.log_call_start("image", "openai:image")
            logger.log_call_failure("image", "openai:image", "TIMEOUT", "slow", 3)
            logger.close()

            entries = _read_entries(tmpdir)
            assert [e["event"] for e in entries] == [
                "call_start", "call_complete", "call_start", "call_failure"
            ]

    def test_console_only_logger_does_not_fail(self):
        logger = StructuredJSONLogger()
        logger.log_call_start("text", "openai:text")
        logger.log_segmentation_complete("rule_based", 1, 0.1)
        assert logger.log_file_path is None
        logger.close()

    def test_close_is_idempotent(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)
            logger.close()
            logger.close()
            assert logger.json_file_handle is None
