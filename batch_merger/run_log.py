"""
Per-run event log.

Each merge run writes a JSON Lines manifest and a human-readable text log
into the configured logs directory. Console progress stays on stdout.
"""

import json
import os
import threading
import uuid
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

PATH_LIKE_KEYS = {"file", "source", "fragment", "output", "path", "target", "input"}
# Most recent events kept in memory per logger.
MAX_BUFFERED_EVENTS = 500


def record_warning(warnings: Optional[List[Dict]], code: str, message: str, **context) -> None:
    """Append a structured warning when a warning collector is provided."""
    if warnings is None:
        return
    warning = {'code': code, 'message': message}
    warning.update(context)
    warnings.append(warning)


def new_run_id() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]


class RunLogger:
    """Persist run events to text and JSONL logs."""

    def __init__(
        self,
        logs_dir: Optional[str],
        run_id: Optional[str] = None,
        enabled: bool = True,
        privacy_mode: str = "redacted",
        event_callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        max_buffered_events: int = MAX_BUFFERED_EVENTS,
    ):
        self.enabled = enabled and bool(logs_dir)
        self.privacy_mode = privacy_mode
        self.run_id = run_id or new_run_id()
        self.logs_dir = logs_dir
        self.event_callback = event_callback
        self.events: Deque[Dict[str, Any]] = deque(maxlen=max(1, max_buffered_events))
        self._lock = threading.Lock()
        self._text_handle = None
        self._jsonl_handle = None
        self.text_log_path = None
        self.jsonl_log_path = None

        if self.enabled:
            os.makedirs(self.logs_dir, exist_ok=True)
            self.text_log_path = os.path.join(logs_dir, f"run_{self.run_id}.log")
            self.jsonl_log_path = os.path.join(logs_dir, f"run_{self.run_id}.jsonl")
            self._text_handle = open(self.text_log_path, "a", encoding="utf-8")
            self._jsonl_handle = open(self.jsonl_log_path, "a", encoding="utf-8")

    @classmethod
    def disabled(cls) -> "RunLogger":
        return cls(None, enabled=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self) -> None:
        with self._lock:
            for handle in (self._text_handle, self._jsonl_handle):
                if handle is not None and not handle.closed:
                    handle.close()
            self._text_handle = None
            self._jsonl_handle = None

    def _redact_value(self, key: str, value):
        if self.privacy_mode != "redacted":
            return value
        if isinstance(value, str) and key.lower() in PATH_LIKE_KEYS:
            return os.path.basename(value)
        return value

    def _sanitize_context(self, context: Dict) -> Dict:
        return {key: self._redact_value(key, value) for key, value in context.items()}

    def log(self, level: str, event: str, message: str, **context) -> None:
        timestamp = datetime.now().isoformat()
        safe_context = self._sanitize_context(context)
        payload = {
            "ts": timestamp,
            "run_id": self.run_id,
            "level": level.upper(),
            "event": event,
            "message": message,
            "context": safe_context,
        }
        with self._lock:
            self.events.append(payload)
            if self._jsonl_handle is not None:
                self._jsonl_handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
                self._jsonl_handle.flush()
            if self._text_handle is not None:
                text_context = ""
                if safe_context:
                    context_parts = [f"{key}={value}" for key, value in sorted(safe_context.items())]
                    text_context = " | " + ", ".join(context_parts)
                self._text_handle.write(f"[{timestamp}] {level.upper()} {event}: {message}{text_context}\n")
                self._text_handle.flush()
        if self.event_callback:
            self.event_callback(payload)

    def info(self, event: str, message: str, **context) -> None:
        self.log("info", event, message, **context)

    def warning(self, event: str, message: str, **context) -> None:
        self.log("warning", event, message, **context)

    def error(self, event: str, message: str, **context) -> None:
        self.log("error", event, message, **context)

    def flush_warnings(self, warnings: List[Dict]) -> None:
        """Write collected structured warnings to the run log."""
        for warning in warnings:
            context = {key: value for key, value in warning.items() if key not in ("code", "message")}
            self.warning(warning.get("code", "warning"), warning.get("message", ""), **context)

    def events_named(self, event: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [payload for payload in self.events if payload["event"] == event]
