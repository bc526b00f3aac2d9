"""
Logging Utilities for ASTER

- configure_logging(): stream handler plus an optional rotating file log
- mask_secrets(): redact keys and tokens before text reaches a log file
- ReportEventLog: structured JSONL + text trail of report generation events
"""

import json
import logging
import re
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
LOG_FILENAME = "aster.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3

# Patterns for secret masking (environment variables, tokens, keys)
SECRET_PATTERNS = [
    (re.compile(r"(API_KEY|TOKEN|SECRET|PASSWORD|PASS|AUTH)[=:]\s*['\"]?([^'\"\ \n]+)", re.I), r"\1=***"),
    (re.compile(r"(Bearer|token)\s+([a-zA-Z0-9_\-\.]+)", re.I), r"\1 ***"),
    (re.compile(r"-----BEGIN [A-Z ]+-----.*?-----END [A-Z ]+-----", re.DOTALL), "*** PRIVATE KEY ***"),
]


def mask_secrets(text: str) -> str:
    """
    Mask secrets in text before logging.

    Args:
        text: Raw text that may contain secrets

    Returns:
        Text with secrets replaced by ***
    """
    masked = text
    for pattern, replacement in SECRET_PATTERNS:
        masked = pattern.sub(replacement, masked)
    return masked


class SecretMaskingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return mask_secrets(super().format(record))


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Union[str, Path]] = None,
    mask: bool = True,
) -> logging.Logger:
    """
    Configure the ``aster_core`` logger hierarchy.

    Args:
        level: Log level name
        log_dir: If given, also write a rotating ``aster.log`` there
        mask: Redact secrets in the file log

    Returns:
        The package root logger
    """
    root = logging.getLogger("aster_core")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    stream = logging.StreamHandler()
    stream.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(stream)

    if log_dir is not None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path / LOG_FILENAME,
            maxBytes=MAX_LOG_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        formatter_cls = SecretMaskingFormatter if mask else logging.Formatter
        file_handler.setFormatter(formatter_cls(LOG_FORMAT))
        root.addHandler(file_handler)

    return root


class ReportEventLog:
    """
    File-based trail of report generation with structured JSONL support.

    Logs are written to:
    - {log_dir}/events.jsonl - Structured JSONL log
    - {log_dir}/report.log - Human-readable text log
    """

    EVENTS = (
        "decompose",
        "block_generated",
        "block_failed",
        "block_cancelled",
        "variants_generated",
        "verification",
    )

    def __init__(
        self,
        log_dir: Union[str, Path],
        events_log: str = "events.jsonl",
        mask_secrets_enabled: bool = True,
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.mask_secrets_enabled = mask_secrets_enabled

        self.json_log = self.log_dir / events_log
        self.text_log = self.log_dir / "report.log"

    def _mask_if_enabled(self, text: str) -> str:
        if self.mask_secrets_enabled:
            return mask_secrets(text)
        return text

    def record(self, event_type: str, **data: Any) -> Dict[str, Any]:
        """
        Append one event to both logs.

        Args:
            event_type: One of EVENTS
            **data: JSON-compatible event fields

        Returns:
            The event as written
        """
        if event_type not in self.EVENTS:
            raise ValueError(f"Unknown report event: {event_type}")

        timestamp = datetime.now(timezone.utc).isoformat()
        event = {"timestamp": timestamp, "type": event_type, "data": data}

        with self.json_log.open("a", encoding="utf-8") as f:
            f.write(self._mask_if_enabled(json.dumps(event, ensure_ascii=False, default=str)) + "\n")

        details = " ".join(f"{key}={value}" for key, value in data.items())
        line = f"EVENT={event_type}" + (f" {details}" if details else "")
        with self.text_log.open("a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] {self._mask_if_enabled(line)}\n")

        return event

    def read_events(self) -> list:
        """All JSONL events written so far (oldest first)."""
        if not self.json_log.exists():
            return []
        events = []
        with self.json_log.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    events.append(json.loads(line))
        return events
