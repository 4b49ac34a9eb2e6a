"""
DocVault Logging — Named stdlib loggers plus structured JSON event files.

Implements:
- configure_logging: Root handler/level/format setup from LoggingConfig
- FileLogger: Per-area, per-category JSONL files (daily files)
- Event builders for access decisions, file operations and system events
- log(): module-level sink used by the services (no-op until configured)

Files: {directory}/{area}/{category}/{YYYY-MM-DD}.jsonl

Storage and policy failures are logged here with backend detail; the HTTP
layer only ever sees generic messages.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("docvault.engine.logging")

# Valid areas and their permitted categories
AREA_CATEGORIES = {
    "access": ["execution", "security"],
    "storage": ["execution", "security"],
    "uploads": ["execution", "security"],
    "accounts": ["execution", "security"],
    "system": ["execution"],
}

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line for the console handler."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("area", "category", "data")

    def __init__(self, area: str, category: str, data: Dict[str, Any]):
        self.area = area
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-area, per-category files.

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for area, categories in AREA_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / area / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        file_path = self._resolve_path(entry.area, entry.category)
        with self._file_locks[str(file_path)]:
            with open(file_path, "a", encoding="utf-8") as f:
                f.write(entry.to_json())
                f.write("\n")

    def _resolve_path(self, area: str, category: str) -> Path:
        today = date.today().isoformat()
        return self._log_dir / area / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def read(self, area: str, category: str, day: Optional[date] = None) -> List[Dict[str, Any]]:
        """Read all entries for one area/category/day, oldest first."""
        path = self._log_dir / area / category / f"{(day or date.today()).isoformat()}.jsonl"
        if not path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    object_ref: str,
    user_id: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "object_ref": object_ref,
    }
    if user_id is not None:
        entry["user_id"] = user_id
    entry.update(extra)
    return entry


def log_security_event(
    event: str,
    object_ref: str,
    action: str,
    reason: str,
    user_id: Optional[Any] = None,
    role: Optional[str] = None,
    client_ip: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build an access-denied / policy event entry."""
    data = _base_entry(
        event=event,
        level=level,
        object_ref=object_ref,
        user_id=user_id,
        action=action,
        reason=reason,
    )
    if role:
        data["role"] = role
    if client_ip:
        data["client_ip"] = client_ip
    return LogEntry("access", "security", data)


def log_file_access(
    storage_key: str,
    user_id: Any,
    status_code: int,
    size_bytes: Optional[int] = None,
    content_type: Optional[str] = None,
) -> LogEntry:
    """Build a file delivery entry."""
    data = _base_entry(
        event="file_served" if status_code == 200 else "file_not_served",
        level="INFO" if status_code == 200 else "WARNING",
        object_ref=storage_key,
        user_id=user_id,
        status_code=status_code,
    )
    if size_bytes is not None:
        data["size_bytes"] = size_bytes
    if content_type:
        data["content_type"] = content_type
    return LogEntry("access", "execution", data)


def log_storage_event(
    event: str,
    backend: str,
    storage_key: Optional[str],
    success: bool,
    error: Optional[str] = None,
) -> LogEntry:
    """Build a store-adapter entry. Errors carry backend detail."""
    data = _base_entry(
        event=event,
        level="INFO" if success else "ERROR",
        object_ref=storage_key or "",
        backend=backend,
        success=success,
    )
    if error:
        data["error"] = error
    return LogEntry("storage", "execution" if success else "security", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (startup, shutdown, config changes)."""
    data = _base_entry(event=event, level=level, object_ref="system")
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Global sink
# ---------------------------------------------------------------------------

_file_logger: Optional[FileLogger] = None


def configure_logging(config: Any = None, file_events: bool = True) -> Optional[FileLogger]:
    """
    Configure the "docvault" logger tree and the structured event sink.

    Args:
        config: LoggingConfig (or None for defaults).
        file_events: When False, structured events are not written to disk.
    """
    global _file_logger

    level = getattr(config, "level", "INFO")
    fmt = getattr(config, "format", "text")
    directory = getattr(config, "directory", "logs")

    root = logging.getLogger("docvault")
    root.setLevel(level)
    if not any(getattr(h, "_docvault", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler._docvault = True  # type: ignore[attr-defined]
        handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
        root.addHandler(handler)

    _file_logger = FileLogger(directory) if file_events else None
    logger.info(f"Logging configured (level={level}, format={fmt}, events={'on' if file_events else 'off'})")
    return _file_logger


def log(entry: LogEntry) -> bool:
    """Write a structured entry if the sink is configured. Never raises."""
    if _file_logger is None:
        return False
    try:
        _file_logger.write(entry)
        return True
    except OSError as e:
        logger.error(f"Event log write failed: {e}")
        return False


def shutdown_logging() -> None:
    global _file_logger
    _file_logger = None
