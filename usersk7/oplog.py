from __future__ import annotations

import html
import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Tuple, Union

from .constants import DEFAULT_LOG_TTL_SECONDS, TIMESTAMP_FORMAT


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"
    INFO_IMPORTANT = "INFO_IMPORTANT"
    INFO_DETAIL = "INFO_DETAIL"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    severity: Severity
    message: str

    def format(self) -> str:
        return f"[{self.severity.value}] {self.timestamp.strftime(TIMESTAMP_FORMAT)} - {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "LogEntry":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            severity=Severity(data["severity"]),
            message=data["message"],
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogStorage(Protocol):
    """Durable slot for the last run's log (one slot, overwritten each time)."""

    def save(self, entries: List[LogEntry], expires_at: datetime) -> None: ...

    def load(self) -> Optional[Tuple[List[LogEntry], datetime]]: ...


class MemoryLogStorage:
    def __init__(self):
        self._slot: Optional[Tuple[List[LogEntry], datetime]] = None

    def save(self, entries: List[LogEntry], expires_at: datetime) -> None:
        self._slot = (list(entries), expires_at)

    def load(self) -> Optional[Tuple[List[LogEntry], datetime]]:
        if self._slot is None:
            return None
        entries, expires_at = self._slot
        return list(entries), expires_at


class FileLogStorage:
    """JSON file slot, replaced atomically on every save."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def save(self, entries: List[LogEntry], expires_at: datetime) -> None:
        doc = {"expires_at": expires_at.isoformat(), "entries": [e.to_dict() for e in entries]}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".usersk7-log-", suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, ensure_ascii=False)
            os.replace(tmp, str(self.path))
        except OSError:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def load(self) -> Optional[Tuple[List[LogEntry], datetime]]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            doc = json.loads(text)
            expires_at = datetime.fromisoformat(doc["expires_at"])
            entries = [LogEntry.from_dict(item) for item in doc["entries"]]
        except (KeyError, TypeError, ValueError):
            # Unreadable slot is treated as absent.
            return None
        return entries, expires_at


class OperationLog:
    """Append-only log of one export or import run.

    Constructed by the caller and handed to the run. ``clear`` is called once
    at run start and ``persist_last`` once at the end; only the most recent
    persisted run is retained, for ``ttl_seconds``.
    """

    def __init__(
        self,
        storage: Optional[LogStorage] = None,
        *,
        ttl_seconds: int = DEFAULT_LOG_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.storage = storage if storage is not None else MemoryLogStorage()
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: List[LogEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries = []

    def append(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        entry = LogEntry(self.clock(), Severity(severity), message)
        self._entries.append(entry)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.append(message, Severity.INFO)

    def warning(self, message: str) -> LogEntry:
        return self.append(message, Severity.WARNING)

    def error(self, message: str) -> LogEntry:
        return self.append(message, Severity.ERROR)

    def success(self, message: str) -> LogEntry:
        return self.append(message, Severity.SUCCESS)

    def important(self, message: str) -> LogEntry:
        return self.append(message, Severity.INFO_IMPORTANT)

    def detail(self, message: str) -> LogEntry:
        return self.append(message, Severity.INFO_DETAIL)

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def lines(self) -> List[str]:
        return [e.format() for e in self._entries]

    def persist_last(self) -> None:
        expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)
        self.storage.save(self.entries(), expires_at)

    def last_entries(self) -> List[LogEntry]:
        """Entries of the last persisted run, or [] if none or expired."""
        slot = self.storage.load()
        if slot is None:
            return []
        entries, expires_at = slot
        if self.clock() >= expires_at:
            return []
        return entries

    def formatted_last(self, *, html_list: bool = False) -> str:
        """Render the last persisted run as escaped lines ("" when absent)."""
        lines = [html.escape(e.format()) for e in self.last_entries()]
        if not lines:
            return ""
        if html_list:
            return '<ul style="list-style: none; padding-left: 0;"><li>' + "</li><li>".join(lines) + "</li></ul>"
        return "\n".join(lines)
