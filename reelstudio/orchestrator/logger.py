"""Structured JSON logger for pipeline observability.

This module provides structured logging that writes JSON-formatted entries
to pipeline.log in the output directory. Each entry is a single JSON object
on one line, making runs easy to replay and analyze.

Log Event Types:
- pipeline_start: A run begins for a product URL
- stage_start: The driver enters a pipeline stage
- stage_complete: A stage finished successfully
- stage_failure: A stage raised an error
- dialogue: An agent emitted a dialogue event
- pipeline_complete: The run reached a terminal state
- pipeline_error: The run aborted with an error
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from reelstudio.schemas.dialogue import DialogueEvent


class StructuredJSONLogger:
    """Structured JSON logger that writes to pipeline.log.

    Every entry has the shape:

    {
        "event": "stage_start|stage_complete|...",
        "timestamp": "ISO8601",
        ...additional fields based on event type...
    }

    The logger maintains both a file handler for JSON logs and a console
    handler for human-readable logs.
    """

    def __init__(self, output_directory: Optional[str] = None):
        """Initialize the structured JSON logger.

        Args:
            output_directory: Directory where pipeline.log will be written.
                            If None, only console logging is enabled.
        """
        self.output_directory = output_directory
        self.log_file_path = None
        self.json_file_handle = None

        if output_directory:
            self._setup_log_file(output_directory)

        self.logger = logging.getLogger(__name__)
        if not self.logger.handlers:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)
            self.logger.setLevel(logging.INFO)

    def _setup_log_file(self, output_directory: str) -> None:
        output_path = Path(output_directory)
        output_path.mkdir(parents=True, exist_ok=True)

        self.log_file_path = output_path / "pipeline.log"
        self.json_file_handle = open(self.log_file_path, 'a', encoding='utf-8')

    def _write_json_log(self, log_entry: Dict[str, Any]) -> None:
        if self.json_file_handle:
            json_line = json.dumps(log_entry, ensure_ascii=False)
            self.json_file_handle.write(json_line + '\n')
            self.json_file_handle.flush()

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()

    def log_pipeline_start(self, product_url: str, config: Dict[str, Any]) -> None:
        """Log the start of a run.

        Args:
            product_url: Product page the run was started for
            config: Pipeline configuration summary
        """
        self._write_json_log({
            "event": "pipeline_start",
            "timestamp": self._timestamp(),
            "product_url": product_url,
            "config": config
        })
        self.logger.info(f"Starting pipeline for {product_url}")

    def log_stage_start(self, stage: str, input_summary: str) -> None:
        """Log the driver entering a stage.

        Args:
            stage: Stage name, e.g. "researching"
            input_summary: Brief summary of the stage input
        """
        self._write_json_log({
            "event": "stage_start",
            "stage": stage,
            "timestamp": self._timestamp(),
            "input_summary": input_summary
        })
        self.logger.info(f"Entering {stage}: {input_summary}")

    def log_stage_complete(self, stage: str, duration_ms: float, output_summary: str) -> None:
        """Log a successfully completed stage.

        Args:
            stage: Stage name
            duration_ms: Stage duration in milliseconds
            output_summary: Brief summary of what the stage produced
        """
        self._write_json_log({
            "event": "stage_complete",
            "stage": stage,
            "timestamp": self._timestamp(),
            "duration_ms": round(duration_ms, 2),
            "output_summary": output_summary,
            "status": "SUCCESS"
        })
        self.logger.info(f"Completed {stage} in {duration_ms:.2f}ms: {output_summary}")

    def log_stage_failure(
        self,
        stage: str,
        error_message: str,
        error_code: str,
        input_context: str,
        duration_ms: Optional[float] = None
    ) -> None:
        """Log a failed stage.

        Args:
            stage: Stage name
            error_message: Human-readable error message
            error_code: Machine-readable error code
            input_context: Relevant input excerpt for debugging
            duration_ms: Optional stage duration in milliseconds
        """
        log_entry = {
            "event": "stage_failure",
            "stage": stage,
            "timestamp": self._timestamp(),
            "error_message": error_message,
            "error_code": error_code,
            "input_context": input_context
        }
        if duration_ms is not None:
            log_entry["duration_ms"] = round(duration_ms, 2)

        self._write_json_log(log_entry)
        self.logger.error(f"Failed {stage} [{error_code}]: {error_message}")

    def log_dialogue(self, event: DialogueEvent) -> None:
        """Log a dialogue event (file only; agents already log to the console)."""
        self._write_json_log({
            "event": "dialogue",
            "timestamp": self._timestamp(),
            "agent": event.agent,
            "role": event.role,
            "type": event.type.value,
            "message": event.message,
            "event_timestamp": event.timestamp
        })

    def log_pipeline_complete(self, duration_seconds: float, status: str, slot_count: int = 0) -> None:
        """Log the end of a run.

        Args:
            duration_seconds: Total run duration in seconds
            status: Terminal state (finished or aborted)
            slot_count: Number of slots returned
        """
        self._write_json_log({
            "event": "pipeline_complete",
            "timestamp": self._timestamp(),
            "duration_seconds": round(duration_seconds, 2),
            "status": status,
            "slot_count": slot_count
        })
        self.logger.info(
            f"Pipeline completed with status {status} in {duration_seconds:.2f}s"
        )

    def log_pipeline_error(
        self,
        error_type: str,
        error_message: str,
        stage: Optional[str] = None
    ) -> None:
        """Log a run-level error.

        Args:
            error_type: Type of error (exception class name)
            error_message: Error message
            stage: Optional stage where the error occurred
        """
        log_entry = {
            "event": "pipeline_error",
            "timestamp": self._timestamp(),
            "error_type": error_type,
            "error_message": error_message
        }
        if stage:
            log_entry["stage"] = stage

        self._write_json_log(log_entry)
        self.logger.error(f"Pipeline error: {error_message}")

    def close(self) -> None:
        """Close the log file handle."""
        if self.json_file_handle:
            self.json_file_handle.close()
            self.json_file_handle = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
