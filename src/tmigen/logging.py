"""JSONL event log for generation activity."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import FactKey


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    key: str | None = None
    source: str | None = None
    duration_ms: float | None = None
    item_count: int | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {}}


class JSONLLogger:
    """Logger that writes structured logs in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".tmigen" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        key: FactKey | None = None,
        source: str | None = None,
        duration_ms: float | None = None,
        item_count: int | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            key=str(key) if key is not None else None,
            source=source,
            duration_ms=duration_ms,
            item_count=item_count,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_generation_start(self, key: FactKey, source: str) -> None:
        self.log("generation_start", key=key, source=source)

    def log_facts_ready(
        self, key: FactKey, item_count: int, duration_ms: float, *, restored: bool = False
    ) -> None:
        """Log a successful generation or restore."""
        self.log(
            "facts_ready",
            key=key,
            item_count=item_count,
            duration_ms=duration_ms,
            restored=restored,
        )

    def log_facts_failed(self, key: FactKey, error: str, *, kind: str) -> None:
        """Log a user-visible failure."""
        self.log("facts_failed", key=key, error=error, kind=kind)

    def log_purge(self, reason: str, count: int) -> None:
        """Log removal of stored fact sets."""
        self.log("facts_purged", item_count=count, reason=reason)


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
