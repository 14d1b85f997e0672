"""Structured JSON logger for gateway and segmentation observability.

Entries are written to gateway.log in the configured directory, one JSON
object per line, and mirrored as human-readable lines on the console logger.

Log Event Types:
- call_start: A provider call was admitted by the gateway
- call_complete: A provider call returned a result
- call_failure: A provider call failed after retries
- call_fallback: A deterministic fallback replaced the provider result
- breaker_transition: A circuit breaker changed state
- segmentation_complete: Text was segmented into scenes
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


LOG_FILE_NAME = "gateway.log"


class StructuredJSONLogger:
    """Structured JSON logger that writes to gateway.log.

    Every entry has the shape:

    {
        "event": "call_start|call_complete|...",
        "timestamp": "ISO8601",
        ...additional fields based on event type...
    }

    Without an output directory only console logging is performed.
    """

    def __init__(self, output_directory: Optional[str] = None):
        self.output_directory = output_directory
        self.log_file_path = None
        self.json_file_handle = None
        self._write_lock = threading.Lock()

        if output_directory:
            self._setup_log_file(output_directory)

        self.logger = logging.getLogger(__name__)

    def _setup_log_file(self, output_directory: str) -> None:
        output_path = Path(output_directory)
        output_path.mkdir(parents=True, exist_ok=True)

        self.log_file_path = output_path / LOG_FILE_NAME
        self.json_file_handle = open(self.log_file_path, 'a', encoding='utf-8')

    def _write_json_log(self, event: str, **fields: Any) -> Dict[str, Any]:
        log_entry = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **fields
        }
        with self._write_lock:
            if self.json_file_handle:
                self.json_file_handle.write(json.dumps(log_entry, ensure_ascii=False) + '\n')
                self.json_file_handle.flush()
        return log_entry

    def log_call_start(self, operation: str, channel: str, caller_id: Optional[str] = None) -> None:
        self._write_json_log(
            "call_start",
            operation=operation,
            channel=channel,
            caller_id=caller_id
        )
        self.logger.debug(f"Starting {operation} on {channel}")

    def log_call_complete(
        self,
        operation: str,
        channel: str,
        duration_ms: float,
        attempts: int,
        caller_id: Optional[str] = None
    ) -> None:
        self._write_json_log(
            "call_complete",
            operation=operation,
            channel=channel,
            duration_ms=round(duration_ms, 2),
            attempts=attempts,
            caller_id=caller_id
        )
        self.logger.info(
            f"Completed {operation} on {channel} in {duration_ms:.2f}ms ({attempts} attempt(s))"
        )

    def log_call_failure(
        self,
        operation: str,
        channel: str,
        error_code: str,
        error_message: str,
        attempts: int,
        caller_id: Optional[str] = None,
        duration_ms: Optional[float] = None
    ) -> None:
        """Log a provider call that failed for good.

        Args:
            operation: Gateway operation name (text, image, speech)
            channel: Provider channel the call went to
            error_code: Machine-readable error kind
            error_message: Human-readable error message
            attempts: Attempts made before giving up
            caller_id: Caller the call was made for
            duration_ms: Optional total duration in milliseconds
        """
        fields = {
            "operation": operation,
            "channel": channel,
            "error_code": error_code,
            "error_message": error_message,
            "attempts": attempts,
            "caller_id": caller_id,
        }
        if duration_ms is not None:
            fields["duration_ms"] = round(duration_ms, 2)

        self._write_json_log("call_failure", **fields)
        self.logger.error(f"Failed {operation} on {channel} [{error_code}]: {error_message}")

    def log_call_fallback(self, operation: str, reason: str, caller_id: Optional[str] = None) -> None:
        self._write_json_log(
            "call_fallback",
            operation=operation,
            reason=reason,
            caller_id=caller_id
        )
        self.logger.warning(f"Using fallback for {operation}: {reason}")

    def log_breaker_transition(self, channel: str, old_state: str, new_state: str) -> None:
        self._write_json_log(
            "breaker_transition",
            channel=channel,
            old_state=old_state,
            new_state=new_state
        )

    def log_segmentation_complete(
        self,
        method: str,
        scene_count: int,
        processing_time_ms: float,
        fallback_reason: Optional[str] = None
    ) -> None:
        fields = {
            "method": method,
            "scene_count": scene_count,
            "processing_time_ms": round(processing_time_ms, 2),
        }
        if fallback_reason:
            fields["fallback_reason"] = fallback_reason

        self._write_json_log("segmentation_complete", **fields)
        self.logger.info(
            f"Segmented text into {scene_count} scene(s) via {method} in {processing_time_ms:.2f}ms"
        )

    def close(self) -> None:
        """Close the log file handle."""
        with self._write_lock:
            if self.json_file_handle:
                self.json_file_handle.close()
                self.json_file_handle = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures log file is closed."""
        self.close()
        return False
